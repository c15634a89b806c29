"""
dags/formsync/config.py

Runtime configuration for the form sync pipeline.

The syncer never looks configuration up globally — a SyncConfig is built
once (usually via SyncConfig.from_env() inside the DAG task) and passed in.

In Docker:
  forms/  = /opt/airflow/forms/              (volume mount)
  cache/  = /opt/airflow/cache/              (scratch space for temp files)
  index   = /opt/airflow/dags/data/form_index.json
"""

import os
from dataclasses import dataclass
from pathlib import Path

# ── Server endpoints ─────────────────────────────────────────────────────────
# Listing:  <server_url>/moduleServlet/xforms/xformDownload?target=xformslist
# Download: <server_url>/moduleServlet/xforms/<download_locator>
XFORM_ENDPOINT = "/moduleServlet/xforms/"
FORM_LIST_PATH = "xformDownload?target=xformslist"

# ── Request settings ─────────────────────────────────────────────────────────
REQUEST_TIMEOUT = 30
MAX_WORKERS = 4
HEADERS = {
    "Accept": "application/xml,text/xml;q=0.9,*/*;q=0.8",
    "User-Agent": "formsync/1.0",
}

# ── Default paths (inside Docker container) ──────────────────────────────────
DEFAULT_SERVER_URL = "http://localhost:8080/openmrs"
DEFAULT_FORMS_DIR = "/opt/airflow/forms"
DEFAULT_CACHE_DIR = "/opt/airflow/cache"
DEFAULT_INDEX_PATH = "/opt/airflow/dags/data/form_index.json"


@dataclass
class SyncConfig:
    """Everything the syncer needs to know about the server and local storage."""

    server_url: str
    forms_dir: Path
    cache_dir: Path
    index_path: Path
    xform_endpoint: str = XFORM_ENDPOINT
    form_list_path: str = FORM_LIST_PATH
    request_timeout: int = REQUEST_TIMEOUT
    max_workers: int = MAX_WORKERS

    def __post_init__(self):
        self.server_url = self.server_url.rstrip("/")
        self.forms_dir = Path(self.forms_dir)
        self.cache_dir = Path(self.cache_dir)
        self.index_path = Path(self.index_path)

    @classmethod
    def from_env(cls) -> "SyncConfig":
        return cls(
            server_url=os.getenv("FORMSYNC_SERVER_URL", DEFAULT_SERVER_URL),
            forms_dir=Path(os.getenv("FORMSYNC_FORMS_DIR", DEFAULT_FORMS_DIR)),
            cache_dir=Path(os.getenv("FORMSYNC_CACHE_DIR", DEFAULT_CACHE_DIR)),
            index_path=Path(os.getenv("FORMSYNC_INDEX_PATH", DEFAULT_INDEX_PATH)),
            request_timeout=int(os.getenv("FORMSYNC_REQUEST_TIMEOUT", REQUEST_TIMEOUT)),
            max_workers=int(os.getenv("FORMSYNC_MAX_WORKERS", MAX_WORKERS)),
        )

    @property
    def listing_url(self) -> str:
        return self.server_url + self.xform_endpoint + self.form_list_path

    def form_url(self, download_locator: str) -> str:
        return self.server_url + self.xform_endpoint + download_locator

    def ensure_dirs(self) -> None:
        """Create the forms root and scratch directory if missing."""
        self.forms_dir.mkdir(parents=True, exist_ok=True)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.index_path.parent.mkdir(parents=True, exist_ok=True)

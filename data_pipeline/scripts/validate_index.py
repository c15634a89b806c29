"""
scripts/validate_index.py

Validates form_index.json outside Airflow (e.g. after a manual sync).
Writes index_metrics.json next to the index.

Run standalone:  python scripts/validate_index.py
Paths come from the same FORMSYNC_* environment variables the DAG uses.
"""

import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "dags"))

from formsync.config import SyncConfig
from formsync.validate_index import validate_index

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


def main() -> int:
    config = SyncConfig.from_env()
    metrics_path = config.index_path.parent / "index_metrics.json"
    metrics = validate_index(config.index_path, config.forms_dir, metrics_path)

    if metrics["valid"]:
        logger.info("Index is valid.")
        return 0
    logger.error("Index is INVALID (%d errors).", metrics["errors"])
    return 1


if __name__ == "__main__":
    sys.exit(main())

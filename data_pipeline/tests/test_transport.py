"""
tests/test_transport.py

Unit tests for formsync/config.py and formsync/transport.py.

requests.get is patched at formsync.transport.requests.get, no network calls.

Run with:
    pytest tests/test_transport.py -v
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

# ── Path setup ─────────────────────────────────────────────────────────────────
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "dags"))

import formsync.config as cfg
from formsync.config import SyncConfig
from formsync.errors import DownloadFailed, ListingFetchFailed
from formsync.transport import HttpFormTransport


def _config(tmp_path, **kwargs):
    return SyncConfig(
        server_url=kwargs.pop("server_url", "http://openmrs.test/openmrs/"),
        forms_dir=tmp_path / "forms",
        cache_dir=tmp_path / "cache",
        index_path=tmp_path / "data" / "form_index.json",
        **kwargs,
    )


def _response(status=200, content=b"<forms/>"):
    resp = MagicMock()
    resp.status_code = status
    resp.content = content
    if status >= 400:
        resp.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status} Server Error")
    return resp


# ══════════════════════════════════════════════════════════════════════════════
# SyncConfig
# ══════════════════════════════════════════════════════════════════════════════

class TestSyncConfig:
    def test_trailing_slash_stripped(self, tmp_path):
        assert _config(tmp_path).server_url == "http://openmrs.test/openmrs"

    def test_listing_url(self, tmp_path):
        assert _config(tmp_path).listing_url == (
            "http://openmrs.test/openmrs/moduleServlet/xforms/xformDownload?target=xformslist"
        )

    def test_form_url(self, tmp_path):
        assert _config(tmp_path).form_url("download?formId=BP") == (
            "http://openmrs.test/openmrs/moduleServlet/xforms/download?formId=BP"
        )

    def test_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("FORMSYNC_SERVER_URL", "https://emr.example.org")
        monkeypatch.setenv("FORMSYNC_FORMS_DIR", str(tmp_path / "f"))
        monkeypatch.setenv("FORMSYNC_CACHE_DIR", str(tmp_path / "c"))
        monkeypatch.setenv("FORMSYNC_INDEX_PATH", str(tmp_path / "i.json"))
        monkeypatch.setenv("FORMSYNC_MAX_WORKERS", "2")
        config = SyncConfig.from_env()
        assert config.server_url == "https://emr.example.org"
        assert config.forms_dir == tmp_path / "f"
        assert config.index_path == tmp_path / "i.json"
        assert config.max_workers == 2
        assert config.request_timeout == cfg.REQUEST_TIMEOUT

    def test_from_env_defaults(self, monkeypatch):
        for var in ("FORMSYNC_SERVER_URL", "FORMSYNC_FORMS_DIR", "FORMSYNC_CACHE_DIR",
                    "FORMSYNC_INDEX_PATH", "FORMSYNC_REQUEST_TIMEOUT", "FORMSYNC_MAX_WORKERS"):
            monkeypatch.delenv(var, raising=False)
        config = SyncConfig.from_env()
        assert config.server_url == cfg.DEFAULT_SERVER_URL
        assert config.forms_dir == Path(cfg.DEFAULT_FORMS_DIR)

    def test_ensure_dirs(self, tmp_path):
        config = _config(tmp_path)
        config.ensure_dirs()
        assert config.forms_dir.is_dir()
        assert config.cache_dir.is_dir()
        assert config.index_path.parent.is_dir()


# ══════════════════════════════════════════════════════════════════════════════
# HttpFormTransport
# ══════════════════════════════════════════════════════════════════════════════

class TestHttpFormTransport:
    @patch("formsync.transport.requests.get")
    def test_fetch_listing_returns_body(self, mock_get, tmp_path):
        mock_get.return_value = _response(content=b"<forms><form/></forms>")
        config = _config(tmp_path)
        with HttpFormTransport(config) as transport:
            body = transport.fetch_listing().result(timeout=5)
        assert body == b"<forms><form/></forms>"
        args, kwargs = mock_get.call_args
        assert args[0] == config.listing_url
        assert kwargs["timeout"] == cfg.REQUEST_TIMEOUT
        assert kwargs["headers"] == cfg.HEADERS

    @patch("formsync.transport.requests.get")
    def test_fetch_form_hits_download_url(self, mock_get, tmp_path):
        mock_get.return_value = _response(content=b"<h:html/>")
        config = _config(tmp_path)
        with HttpFormTransport(config) as transport:
            assert transport.fetch_form("download?formId=BP").result(timeout=5) == b"<h:html/>"
        assert mock_get.call_args[0][0] == config.form_url("download?formId=BP")

    @patch("formsync.transport.requests.get")
    def test_listing_http_error(self, mock_get, tmp_path):
        mock_get.return_value = _response(status=500)
        with HttpFormTransport(_config(tmp_path)) as transport:
            fut = transport.fetch_listing()
            with pytest.raises(ListingFetchFailed) as excinfo:
                fut.result(timeout=5)
        assert "500" in str(excinfo.value)
        assert excinfo.value.url.endswith("target=xformslist")

    @patch("formsync.transport.requests.get")
    def test_listing_connection_error(self, mock_get, tmp_path):
        mock_get.side_effect = requests.exceptions.ConnectionError("refused")
        with HttpFormTransport(_config(tmp_path)) as transport:
            with pytest.raises(ListingFetchFailed):
                transport.fetch_listing().result(timeout=5)

    @patch("formsync.transport.requests.get")
    def test_form_not_found(self, mock_get, tmp_path):
        mock_get.return_value = _response(status=404)
        with HttpFormTransport(_config(tmp_path)) as transport:
            with pytest.raises(DownloadFailed) as excinfo:
                transport.fetch_form("download?formId=gone").result(timeout=5)
        assert excinfo.value.locator == "download?formId=gone"

    @patch("formsync.transport.requests.get")
    def test_form_timeout(self, mock_get, tmp_path):
        mock_get.side_effect = requests.exceptions.Timeout("read timed out")
        with HttpFormTransport(_config(tmp_path)) as transport:
            with pytest.raises(DownloadFailed):
                transport.fetch_form("download?formId=slow").result(timeout=5)

    @patch("formsync.transport.requests.get")
    def test_redirect_status_is_not_an_error(self, mock_get, tmp_path):
        mock_get.return_value = _response(status=302, content=b"")
        with HttpFormTransport(_config(tmp_path)) as transport:
            assert transport.fetch_form("x").result(timeout=5) == b""
        mock_get.return_value.raise_for_status.assert_not_called()

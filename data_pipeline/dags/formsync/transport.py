"""
dags/formsync/transport.py

HTTP side of the form sync. Every request runs on a small thread pool and
hands back a concurrent.futures.Future, so the syncer composes completions
with callbacks instead of waiting on a shared thread.

Any transport problem (connection error, timeout, HTTP status >= 400) comes
back through the future as ListingFetchFailed / DownloadFailed.
"""

import logging
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor

import requests

from formsync.config import HEADERS, SyncConfig
from formsync.errors import DownloadFailed, ListingFetchFailed

logger = logging.getLogger(__name__)


class FormTransport(ABC):
    """What the syncer needs from the network. Swap in a fake for tests."""

    @abstractmethod
    def fetch_listing(self) -> Future: ...
    @abstractmethod
    def fetch_form(self, download_locator: str) -> Future: ...
    @abstractmethod
    def close(self) -> None: ...

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class HttpFormTransport(FormTransport):
    def __init__(self, config: SyncConfig):
        self.config = config
        self._executor = ThreadPoolExecutor(
            max_workers=config.max_workers,
            thread_name_prefix="formsync",
        )

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def _get(self, url: str) -> bytes:
        """GET *url* and return the body. Raises requests exceptions."""
        resp = requests.get(
            url,
            timeout=self.config.request_timeout,
            headers=HEADERS,
            allow_redirects=True,
        )
        if resp.status_code >= 400:
            resp.raise_for_status()
        logger.debug("GET %s → %d (%d bytes)", url, resp.status_code, len(resp.content))
        return resp.content

    def _get_listing(self) -> bytes:
        url = self.config.listing_url
        try:
            return self._get(url)
        except requests.exceptions.RequestException as exc:
            logger.warning("Network error fetching listing %s: %s", url, exc)
            raise ListingFetchFailed(url, str(exc)) from exc

    def _get_form(self, download_locator: str) -> bytes:
        url = self.config.form_url(download_locator)
        try:
            return self._get(url)
        except requests.exceptions.RequestException as exc:
            logger.warning("Network error fetching %s: %s", url, exc)
            raise DownloadFailed(download_locator, str(exc)) from exc

    def fetch_listing(self) -> Future:
        return self._executor.submit(self._get_listing)

    def fetch_form(self, download_locator: str) -> Future:
        return self._executor.submit(self._get_form, download_locator)

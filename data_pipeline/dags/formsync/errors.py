"""
dags/formsync/errors.py

Error taxonomy for the form sync pipeline.

Only ListingFetchFailed ever escapes FormSyncer.sync_all(). Everything else
is per-form (or per-listing-document) and ends up in the SyncReport + logs.
"""

from pathlib import Path
from typing import Optional


class FormSyncError(Exception):
    pass


class ListingFetchFailed(FormSyncError):
    """The catalog request itself failed — the batch does not proceed."""

    def __init__(self, url: str, reason: str = ""):
        self.url = url
        super().__init__(f"Listing fetch failed for {url}: {reason}" if reason
                         else f"Listing fetch failed for {url}")


class ListingParseFailed(FormSyncError):
    """The listing document was not well-formed XML."""


class DownloadFailed(FormSyncError):
    def __init__(self, locator: str, reason: str = ""):
        self.locator = locator
        super().__init__(f"Download failed for {locator}: {reason}" if reason
                         else f"Download failed for {locator}")


class WriteFailed(FormSyncError):
    """The new body could not be made visible at its destination."""

    def __init__(self, destination: Path, reason: str = ""):
        self.destination = Path(destination)
        super().__init__(f"Write failed for {destination}: {reason}" if reason
                         else f"Write failed for {destination}")


class DeleteFailed(FormSyncError):
    """Best-effort cleanup could not remove a file. Logged, never raised."""

    def __init__(self, path: Path, cause: Optional[BaseException] = None):
        self.path = Path(path)
        self.cause = cause
        super().__init__(f"Could not delete {path}: {cause}")


class FormMetadataError(FormSyncError):
    """A stored form file could not be parsed as an XForm."""

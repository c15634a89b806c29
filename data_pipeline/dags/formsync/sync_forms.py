"""
dags/formsync/sync_forms.py

Core sync logic for the form_sync_dag.
Kept separate from the DAG file so it can be unit-tested independently.

Per-form flow:
  LISTED → DOWNLOADING → WRITTEN → INDEXED
                 │            │         └→ ALREADY_INDEXED  (record exists for path, left untouched)
                 │            └→ WRITE_FAILED / METADATA_FAILED
                 └→ DOWNLOAD_FAILED

There are no retries here — the next sync_all() run is the retry.
"""

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Optional, Union

from formsync.atomic_writer import AtomicFormWriter
from formsync.config import SyncConfig
from formsync.errors import (
    DownloadFailed,
    FormMetadataError,
    ListingFetchFailed,
    ListingParseFailed,
)
from formsync.form_index import FormIndex, StoredForm, normalize_path
from formsync.form_metadata import (
    FORM_ID,
    PUBLIC_KEY_B64,
    SUBMISSION_URI,
    TITLE,
    VERSION,
    parse_form_metadata,
)
from formsync.form_naming import resolve_form_path
from formsync.listing_parser import FormDescriptor, parse_listing
from formsync.transport import FormTransport, HttpFormTransport

# ── Logging ──────────────────────────────────────────────────────────────────
logger = logging.getLogger(__name__)


class FormState(Enum):
    LISTED = "listed"
    DOWNLOADING = "downloading"
    WRITTEN = "written"
    INDEXED = "indexed"
    ALREADY_INDEXED = "already_indexed"
    DOWNLOAD_FAILED = "download_failed"
    WRITE_FAILED = "write_failed"
    METADATA_FAILED = "metadata_failed"


@dataclass
class FormOutcome:
    descriptor: FormDescriptor
    state: FormState = FormState.LISTED
    file_path: Optional[Path] = None
    record_id: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "name": self.descriptor.name,
            "download_locator": self.descriptor.download_locator,
            "form_id": self.descriptor.form_id,
            "state": self.state.value,
            "file_path": str(self.file_path) if self.file_path else None,
            "record_id": self.record_id,
            "error": self.error,
        }


@dataclass
class SyncReport:
    descriptors_listed: int = 0
    listing_parse_failed: bool = False
    outcomes: list[FormOutcome] = field(default_factory=list)

    @property
    def counts(self) -> dict[str, int]:
        counts = {s.value: 0 for s in FormState}
        for o in self.outcomes:
            counts[o.state.value] += 1
        return counts

    def to_dict(self) -> dict:
        return {
            "descriptors_listed": self.descriptors_listed,
            "listing_parse_failed": self.listing_parse_failed,
            "counts": self.counts,
            "forms": [o.to_dict() for o in self.outcomes],
        }


def _resolved(value) -> Future:
    fut: Future = Future()
    fut.set_result(value)
    return fut


class FormSyncer:
    """
    Downloads every form in the server listing and indexes it locally.

    Usage:
        index = FormIndex(config.index_path)
        with FormSyncer(config, index) as syncer:
            report = syncer.sync_all()
    """

    def __init__(
        self,
        config: SyncConfig,
        index: FormIndex,
        transport: Optional[FormTransport] = None,
        writer: Optional[AtomicFormWriter] = None,
    ):
        self.config = config
        self.index = index
        self.transport = transport or HttpFormTransport(config)
        self._owns_transport = transport is None
        self.writer = writer or AtomicFormWriter(config.cache_dir)
        self._dir_locks: dict[Path, threading.Lock] = {}
        self._dir_locks_guard = threading.Lock()

    def close(self):
        if self._owns_transport:
            self.transport.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ── Public entry points ──────────────────────────────────────────────────

    def sync_all(self) -> SyncReport:
        """
        Run one full sync and return its report. Raises ListingFetchFailed
        when the catalog itself cannot be fetched; per-form problems only
        show up in the report and the logs.
        """
        return self.start_sync().result()

    def start_sync(self) -> Future:
        """Like sync_all(), but returns a Future[SyncReport] immediately."""
        result: Future = Future()
        result.set_running_or_notify_cancel()
        logger.info("Requesting form listing from %s", self.config.listing_url)
        self.transport.fetch_listing().add_done_callback(
            partial(self._on_listing_done, result)
        )
        return result

    def download_form(self, descriptor: FormDescriptor) -> Future:
        """
        Download and commit a single form. Returns a Future[FormOutcome]
        that never raises — failures are recorded on the outcome.
        """
        outcome = FormOutcome(descriptor)
        if not descriptor.is_actionable:
            outcome.state = FormState.DOWNLOAD_FAILED
            outcome.error = "descriptor has no name or download locator"
            return _resolved(outcome)

        done: Future = Future()
        done.set_running_or_notify_cancel()
        outcome.state = FormState.DOWNLOADING

        def on_fetched(fut: Future) -> None:
            try:
                finished = self._complete_download(outcome, fut)
            except Exception as exc:
                logger.exception("Unexpected error completing '%s'", descriptor.name)
                outcome.state = FormState.DOWNLOAD_FAILED
                outcome.error = str(exc)
                finished = outcome
            done.set_result(finished)

        self.transport.fetch_form(descriptor.download_locator).add_done_callback(on_fetched)
        return done

    # ── Listing stage ────────────────────────────────────────────────────────

    def _on_listing_done(self, result: Future, listing: Future) -> None:
        try:
            raw = listing.result()
        except Exception as exc:
            logger.error("Form listing fetch failed: %s", exc)
            if not isinstance(exc, ListingFetchFailed):
                exc = ListingFetchFailed(self.config.listing_url, str(exc))
            result.set_exception(exc)
            return

        try:
            self._fan_out(result, raw)
        except Exception as exc:
            logger.exception("Form sync aborted unexpectedly")
            if not result.done():
                result.set_exception(exc)

    def _fan_out(self, result: Future, raw: Union[bytes, str]) -> None:
        report = SyncReport()
        try:
            descriptors = parse_listing(raw)
        except ListingParseFailed as exc:
            logger.error("Could not parse form listing: %s", exc)
            report.listing_parse_failed = True
            descriptors = []

        report.descriptors_listed = len(descriptors)
        actionable = [d for d in descriptors if d.is_actionable]
        logger.info(
            "Listing has %d descriptor(s), %d actionable — starting downloads",
            len(descriptors), len(actionable),
        )

        if not actionable:
            self._finish(result, report)
            return

        slots: list[Optional[FormOutcome]] = [None] * len(actionable)
        remaining = [len(actionable)]
        lock = threading.Lock()

        def on_form_done(i: int, fut: Future) -> None:
            with lock:
                slots[i] = fut.result()
                remaining[0] -= 1
                last = remaining[0] == 0
            if last:
                report.outcomes = list(slots)
                self._finish(result, report)

        for i, descriptor in enumerate(actionable):
            try:
                pending = self.download_form(descriptor)
            except Exception as exc:
                logger.warning("Could not start download of '%s': %s", descriptor.name, exc)
                pending = _resolved(FormOutcome(
                    descriptor, FormState.DOWNLOAD_FAILED, error=str(exc),
                ))
            pending.add_done_callback(partial(on_form_done, i))

    def _finish(self, result: Future, report: SyncReport) -> None:
        c = report.counts
        logger.info(
            "Form sync completed. %d forms processed. "
            "%d indexed, %d already indexed, %d download failed, "
            "%d write failed, %d metadata failed.",
            len(report.outcomes),
            c["indexed"], c["already_indexed"], c["download_failed"],
            c["write_failed"], c["metadata_failed"],
        )
        result.set_result(report)

    # ── Per-form stages ──────────────────────────────────────────────────────

    def _dir_lock(self, directory: Path) -> threading.Lock:
        key = Path(normalize_path(directory))
        with self._dir_locks_guard:
            return self._dir_locks.setdefault(key, threading.Lock())

    def _complete_download(self, outcome: FormOutcome, fut: Future) -> FormOutcome:
        d = outcome.descriptor
        try:
            body = fut.result()
            if isinstance(body, str):
                body = body.encode("utf-8")
            if not isinstance(body, (bytes, bytearray)):
                raise DownloadFailed(
                    d.download_locator, f"unexpected response body {type(body).__name__}"
                )
            logger.debug("Downloaded: %s (%d bytes)", d.name, len(body))
        except Exception as exc:
            outcome.state = FormState.DOWNLOAD_FAILED
            outcome.error = str(exc)
            logger.warning("Failed to download '%s' (%s): %s", d.name, d.download_locator, exc)
            return outcome

        try:
            return self._store_form(outcome, body)
        except Exception as exc:
            # Keep the batch alive no matter what a single form does.
            logger.exception("Unexpected error storing '%s'", d.name)
            outcome.state = FormState.WRITE_FAILED
            outcome.error = str(exc)
            return outcome

    def _store_form(self, outcome: FormOutcome, body: bytes) -> FormOutcome:
        d = outcome.descriptor
        target_dir = self.config.forms_dir

        # Name assignment and commit happen under one lock so two forms with
        # the same sanitized name cannot both claim the same free path.
        with self._dir_lock(target_dir):
            destination = resolve_form_path(d.name, target_dir)
            written = self.writer.write(body, destination)

        if not written.ok:
            outcome.state = FormState.WRITE_FAILED
            outcome.file_path = written.path
            outcome.error = str(written.error)
            logger.warning("Could not store '%s': %s", d.name, written.error)
            return outcome

        outcome.state = FormState.WRITTEN
        outcome.file_path = written.path

        try:
            info = parse_form_metadata(written.path)
        except FormMetadataError as exc:
            outcome.state = FormState.METADATA_FAILED
            outcome.error = str(exc)
            logger.warning("Stored '%s' but could not read its metadata: %s", d.name, exc)
            return outcome

        return self._save_or_skip(outcome, info)

    def _save_or_skip(self, outcome: FormOutcome, info: dict) -> FormOutcome:
        """Insert an index record for the written file unless one exists."""
        path = normalize_path(outcome.file_path)

        existing = self.index.resolve_existing(path)
        if existing is not None:
            outcome.state = FormState.ALREADY_INDEXED
            outcome.record_id = existing
            logger.debug("'%s' already indexed as record %s", path, existing)
            return outcome

        record = StoredForm(
            file_path=path,
            display_name=info[TITLE],
            form_version=info[VERSION],
            form_id=info[FORM_ID],
            submission_uri=info[SUBMISSION_URI],
            public_key_b64=info[PUBLIC_KEY_B64],
        )
        outcome.record_id = self.index.insert(record)
        outcome.state = FormState.INDEXED
        logger.info("Indexed form '%s' → %s", outcome.descriptor.name, path)
        return outcome


# ══════════════════════════════════════════════════════════════════════════════
# Public entry-point called by the DAG
# ══════════════════════════════════════════════════════════════════════════════

def run_sync(config: Optional[SyncConfig] = None) -> dict:
    """
    Main function. Syncs every form the server lists into the forms dir and
    the local index. Returns the report as a plain dict (XCom friendly).
    """
    config = config or SyncConfig.from_env()
    config.ensure_dirs()
    index = FormIndex(config.index_path)

    with FormSyncer(config, index) as syncer:
        report = syncer.sync_all()

    return report.to_dict()

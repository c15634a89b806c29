"""
dags/formsync/atomic_writer.py

Commit a downloaded form body to its final path without ever exposing a
partially written file under that name.

Protocol (order matters):
  1. write the whole body to a temp file in the scratch dir (*.tempDownload)
  2. delete any stale file at the destination (best effort)
  3. move the temp file onto the destination (os.replace)
  4. destination exists → drop leftovers, done; otherwise → WriteFailed

When scratch and forms dir live on different filesystems os.replace raises
EXDEV. The body is then copied to a hidden sibling of the destination first
and replaced from there, so step 3 is still a single rename in the target
directory.
"""

import errno
import logging
import os
import shutil
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from formsync.errors import DeleteFailed, WriteFailed

logger = logging.getLogger(__name__)

TEMP_DOWNLOAD_EXTENSION = ".tempDownload"


@dataclass
class WriteResult:
    path: Path
    error: Optional[WriteFailed] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def delete_and_report(path: Path) -> bool:
    """Delete *path* if present. Failures are logged, never raised."""
    try:
        Path(path).unlink(missing_ok=True)
        return True
    except OSError as exc:
        logger.warning("%s", DeleteFailed(path, exc))
        return False


def _fsync(fh) -> None:
    fh.flush()
    os.fsync(fh.fileno())


def atomic_write_text(path: Path, text: str) -> None:
    """Write *text* to a sibling temp file and replace *path* with it."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f"{path.name}.tmp.{uuid.uuid4().hex}")
    try:
        with tmp.open("w", encoding="utf-8") as fh:
            fh.write(text)
            _fsync(fh)
        os.replace(tmp, path)
    except Exception:
        tmp.unlink(missing_ok=True)
        raise


class AtomicFormWriter:
    """Writes form bodies via the scratch directory; see module docstring."""

    def __init__(self, scratch_dir: Path):
        self.scratch_dir = Path(scratch_dir)

    def write(self, body: bytes, destination: Path) -> WriteResult:
        destination = Path(destination)

        # ── 1. Full body into scratch space ──────────────────────────────────
        try:
            tmp_path = self._write_temp(body, destination.stem)
        except OSError as exc:
            logger.warning("Could not stage temp file for %s: %s", destination, exc)
            return WriteResult(destination, WriteFailed(destination, f"temp file: {exc}"))

        # ── 2. Stale destination ─────────────────────────────────────────────
        if destination.exists():
            logger.debug("Replacing existing file %s", destination)
            delete_and_report(destination)

        # ── 3. Move into place ───────────────────────────────────────────────
        reason = self._move_into_place(tmp_path, destination)

        # ── 4. Verify ────────────────────────────────────────────────────────
        if destination.exists():
            delete_and_report(tmp_path)
            logger.debug("Committed %d bytes to %s", len(body), destination)
            return WriteResult(destination)

        delete_and_report(tmp_path)
        logger.warning("Copy to %s did not take effect: %s", destination, reason)
        return WriteResult(destination, WriteFailed(destination, reason or "destination missing after move"))

    def _write_temp(self, body: bytes, prefix: str) -> Path:
        fd, name = tempfile.mkstemp(
            prefix=f"{prefix}-",
            suffix=TEMP_DOWNLOAD_EXTENSION,
            dir=self.scratch_dir,
        )
        tmp_path = Path(name)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(body)
                _fsync(fh)
        except OSError:
            delete_and_report(tmp_path)
            raise
        return tmp_path

    def _move_into_place(self, tmp_path: Path, destination: Path) -> Optional[str]:
        """Return None on success, else a short reason string."""
        try:
            os.replace(tmp_path, destination)
            return None
        except OSError as exc:
            if exc.errno != errno.EXDEV:
                return str(exc)

        staging = destination.with_name(
            f".{destination.name}.{uuid.uuid4().hex[:8]}{TEMP_DOWNLOAD_EXTENSION}"
        )
        try:
            shutil.copyfile(tmp_path, staging)
            with open(staging, "rb") as fh:
                os.fsync(fh.fileno())
            os.replace(staging, destination)
            return None
        except OSError as exc:
            delete_and_report(staging)
            return str(exc)

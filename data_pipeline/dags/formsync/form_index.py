"""
dags/formsync/form_index.py

Local index of stored forms — one record per form file on disk.

Storage: local JSON file (dags/data/form_index.json)
Later migration: swap _load / _save for a real database; the syncer only
relies on find_by_path / insert / resolve_existing.

JSON schema per record:
{
    "record_id":      <int>,        ← assigned on insert, never reused
    "file_path":      <str>,        ← absolute path, unique key
    "display_name":   <str|null>,
    "form_version":   <str|null>,
    "form_id":        <str|null>,
    "submission_uri": <str|null>,
    "public_key_b64": <str|null>
}
"""

import json
import logging
import os
import threading
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional, Union

from formsync.atomic_writer import atomic_write_text

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def normalize_path(path: PathLike) -> str:
    """Index key for *path*: absolute, but symlinks left alone."""
    return os.path.abspath(str(path))


@dataclass
class StoredForm:
    file_path: str
    display_name: Optional[str] = None
    form_version: Optional[str] = None
    form_id: Optional[str] = None
    submission_uri: Optional[str] = None
    public_key_b64: Optional[str] = None
    record_id: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "StoredForm":
        return cls(
            file_path=d["file_path"],
            display_name=d.get("display_name"),
            form_version=d.get("form_version"),
            form_id=d.get("form_id"),
            submission_uri=d.get("submission_uri"),
            public_key_b64=d.get("public_key_b64"),
            record_id=d.get("record_id"),
        )


class FormIndex:
    """
    JSON-backed index keyed by file path.

    All mutations go through one lock, so concurrent inserts for the same
    path can never produce two records.
    """

    def __init__(self, path: PathLike):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._records: dict[str, StoredForm] = self._load()

    # ── Persistence ──────────────────────────────────────────────────────────

    def _load(self) -> dict[str, StoredForm]:
        if not self.path.exists():
            logger.info("Index file not found — starting with empty index.")
            return {}
        with open(self.path, "r", encoding="utf-8") as fh:
            rows = json.load(fh)
        records = {}
        for row in rows:
            rec = StoredForm.from_dict(row)
            rec.file_path = normalize_path(rec.file_path)
            if rec.file_path in records:
                logger.warning("Duplicate index row for %s — keeping the first", rec.file_path)
                continue
            records[rec.file_path] = rec
        return records

    def _save(self) -> None:
        rows = [r.to_dict() for r in self._records.values()]
        atomic_write_text(self.path, json.dumps(rows, indent=2, ensure_ascii=False))
        logger.debug("Index saved to %s", self.path)

    def _next_id(self) -> int:
        return max((r.record_id or 0 for r in self._records.values()), default=0) + 1

    # ── Queries ──────────────────────────────────────────────────────────────

    def find_by_path(self, path: PathLike) -> Optional[StoredForm]:
        with self._lock:
            return self._records.get(normalize_path(path))

    def resolve_existing(self, path: PathLike) -> Optional[int]:
        """Record handle (record_id) of the existing record for *path*."""
        rec = self.find_by_path(path)
        return rec.record_id if rec is not None else None

    def all_records(self) -> list[StoredForm]:
        with self._lock:
            return list(self._records.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    # ── Mutations ────────────────────────────────────────────────────────────

    def insert(self, record: StoredForm) -> int:
        """
        Insert *record* and return its record_id. If a record for the same
        path already exists, nothing changes and the existing id is returned.
        """
        key = normalize_path(record.file_path)
        with self._lock:
            existing = self._records.get(key)
            if existing is not None:
                logger.debug("Index already has %s (record %s)", key, existing.record_id)
                return existing.record_id

            rec = StoredForm.from_dict({**record.to_dict(), "file_path": key})
            rec.record_id = self._next_id()
            self._records[key] = rec
            try:
                self._save()
            except OSError:
                del self._records[key]
                raise
            logger.debug("Indexed %s as record %d", key, rec.record_id)
            return rec.record_id

"""
dags/formsync/validate_index.py

Validates form_index.json against the forms directory after each sync run.

Checks:
  1. Index file exists and is a JSON list
  2. Every record carries the required fields
  3. No duplicate file_path / record_id
  4. No orphaned records (file_path missing on disk)
  5. Form files on disk that have no record (warning only — the next sync
     or a metadata fix will pick them up)
"""

import json
import logging
from collections import Counter
from pathlib import Path
from typing import Optional

from formsync.atomic_writer import TEMP_DOWNLOAD_EXTENSION
from formsync.form_index import normalize_path
from formsync.form_naming import FORM_EXTENSION

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = {
    "record_id", "file_path", "display_name", "form_version",
    "form_id", "submission_uri", "public_key_b64",
}


def _invalid(message: str) -> dict:
    return {"valid": False, "errors": 1, "error_details": [message]}


def validate_index(index_path: Path, forms_dir: Path,
                   metrics_path: Optional[Path] = None) -> dict:
    """Validate the index and return a metrics dict."""
    index_path = Path(index_path)
    forms_dir = Path(forms_dir)
    errors = []
    warnings = []

    # ── 1. Load ───────────────────────────────────────────────────────────────
    if not index_path.exists():
        logger.error("Index file not found: %s", index_path)
        return _invalid("Index file missing")

    try:
        with open(index_path, "r", encoding="utf-8") as f:
            records = json.load(f)
    except json.JSONDecodeError as e:
        logger.error("Invalid JSON in index: %s", e)
        return _invalid(f"Invalid JSON: {e}")

    if not isinstance(records, list):
        return _invalid("Index root is not a list")

    logger.info("Index contains %d records", len(records))

    # ── 2–4. Per-record checks ────────────────────────────────────────────────
    path_counts = Counter()
    id_counts = Counter()
    orphaned = 0
    untitled = 0

    for i, rec in enumerate(records):
        prefix = f"Record [{i}]"

        if not isinstance(rec, dict):
            errors.append(f"{prefix}: not an object")
            continue

        missing = REQUIRED_FIELDS - set(rec.keys())
        if missing:
            errors.append(f"{prefix}: missing fields {sorted(missing)}")
            continue

        fp = normalize_path(rec["file_path"])
        path_counts[fp] += 1
        id_counts[rec["record_id"]] += 1

        if not Path(fp).exists():
            orphaned += 1
            errors.append(f"{prefix}: file not found at '{fp}'")

        if not rec["display_name"]:
            untitled += 1
            warnings.append(f"{prefix}: no display_name for '{fp}'")

    duplicate_paths = [p for p, n in path_counts.items() if n > 1]
    for p in duplicate_paths:
        errors.append(f"duplicate file_path '{p}'")
    duplicate_ids = [r for r, n in id_counts.items() if n > 1]
    for r in duplicate_ids:
        errors.append(f"duplicate record_id {r}")

    # ── 5. Files without a record ─────────────────────────────────────────────
    unindexed = []
    if forms_dir.exists():
        for f in sorted(forms_dir.glob(f"*{FORM_EXTENSION}")):
            if f.name.startswith(".") or f.name.endswith(TEMP_DOWNLOAD_EXTENSION):
                continue
            if normalize_path(f) not in path_counts:
                unindexed.append(str(f))
                warnings.append(f"unindexed form file '{f}'")

    metrics = {
        "valid":             len(errors) == 0,
        "total_records":     len(records),
        "duplicate_paths":   len(duplicate_paths),
        "duplicate_ids":     len(duplicate_ids),
        "orphaned_records":  orphaned,
        "unindexed_files":   len(unindexed),
        "untitled_forms":    untitled,
        "errors":            len(errors),
        "warnings":          len(warnings),
        "error_details":     errors[:50],
    }

    if metrics_path is not None:
        metrics_path = Path(metrics_path)
        metrics_path.parent.mkdir(parents=True, exist_ok=True)
        with open(metrics_path, "w", encoding="utf-8") as f:
            json.dump(metrics, f, indent=2)

    logger.info(
        "Validation complete: %d records, %d errors, %d warnings, "
        "%d orphaned, %d duplicate paths, %d unindexed files",
        len(records), len(errors), len(warnings),
        orphaned, len(duplicate_paths), len(unindexed),
    )

    if errors:
        for e in errors[:10]:
            logger.error("  %s", e)
        if len(errors) > 10:
            logger.error("  ... and %d more errors", len(errors) - 10)

    return metrics

"""
dags/formsync/form_naming.py

Centralized form file naming.

Pattern:
  <forms_dir>/<stem>.xml
  <forms_dir>/<stem>_2.xml, <stem>_3.xml, ...   (when the plain name is taken)

Where <stem> is the form's display name with every character that is not a
Unicode letter or decimal digit replaced by a space, whitespace collapsed,
and the result trimmed. e.g. "Blood-Pressure (v2)" → "Blood Pressure v2".
"""

import re
import unicodedata
from pathlib import Path

FORM_EXTENSION = ".xml"


def _is_name_char(ch: str) -> bool:
    cat = unicodedata.category(ch)
    return cat.startswith("L") or cat == "Nd"


def sanitize_form_name(name: str) -> str:
    """Return the filesystem-safe stem for a form display name."""
    stem = "".join(ch if _is_name_char(ch) else " " for ch in name)
    stem = re.sub(r"\s+", " ", stem)
    return stem.strip()


def resolve_form_path(name: str, target_dir: Path) -> Path:
    """
    Return the first free path for *name* inside *target_dir*.

    The existence check is not a reservation: callers that can race on the
    same directory must hold a lock until the file has been written.
    """
    target_dir = Path(target_dir)
    stem = sanitize_form_name(name)

    path = target_dir / f"{stem}{FORM_EXTENSION}"
    i = 2
    while path.exists():
        path = target_dir / f"{stem}_{i}{FORM_EXTENSION}"
        i += 1
    return path

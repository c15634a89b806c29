"""
dags/formsync/form_metadata.py

Read identity metadata out of a stored XForm file.

The index record is built from the file on disk, NOT from the listing — the
listing only tells us where to download from.

Expected layout (namespaces are matched by local name):

    <h:html xmlns="http://www.w3.org/2002/xforms" xmlns:h="http://www.w3.org/1999/xhtml">
      <h:head>
        <h:title>Blood Pressure</h:title>
        <model>
          <instance>
            <data id="blood_pressure" version="3"> ... </data>
          </instance>
          <submission action="https://host/submit" base64RsaPublicKey="MIIB..."/>
        </model>
      </h:head>
      ...
    </h:html>
"""

import logging
from pathlib import Path
from typing import Optional

from lxml import etree

from formsync.errors import FormMetadataError

logger = logging.getLogger(__name__)

TITLE = "title"
VERSION = "version"
FORM_ID = "form_id"
SUBMISSION_URI = "submission_uri"
PUBLIC_KEY_B64 = "public_key_b64"


def _local(el) -> str:
    return etree.QName(el).localname


def _child(el, localname: str):
    """First element child of *el* with the given local name, or None."""
    if el is None:
        return None
    return next(
        (c for c in el if isinstance(c.tag, str) and _local(c) == localname),
        None,
    )


def _first_element(el):
    if el is None:
        return None
    return next((c for c in el if isinstance(c.tag, str)), None)


def _clean(value: Optional[str]) -> Optional[str]:
    """Strip whitespace; empty → None."""
    if value is None:
        return None
    value = value.strip()
    return value or None


def parse_form_metadata(path: Path) -> dict:
    """
    Parse the XForm at *path* and return a dict with TITLE, VERSION, FORM_ID,
    SUBMISSION_URI and PUBLIC_KEY_B64 (any of which may be None).
    Raises FormMetadataError when the file cannot be read or is not XML.
    """
    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    try:
        root = etree.parse(str(path), parser=parser).getroot()
    except (OSError, etree.XMLSyntaxError) as exc:
        raise FormMetadataError(f"Could not parse form {path}: {exc}") from exc

    head = _child(root, "head")
    title_el = _child(head, "title")
    model = _child(head, "model")
    instance_root = _first_element(_child(model, "instance"))
    submission = _child(model, "submission")

    form_id = None
    version = None
    if instance_root is not None:
        # Fall back to the instance namespace, as older XForms carry no id.
        form_id = _clean(instance_root.get("id")) or _clean(etree.QName(instance_root).namespace)
        version = _clean(instance_root.get("version"))

    info = {
        TITLE: _clean(title_el.text) if title_el is not None else None,
        VERSION: version,
        FORM_ID: form_id,
        SUBMISSION_URI: _clean(submission.get("action")) if submission is not None else None,
        PUBLIC_KEY_B64: _clean(submission.get("base64RsaPublicKey")) if submission is not None else None,
    }

    if info[TITLE] is None:
        logger.debug("Form %s has no title", path)
    return info

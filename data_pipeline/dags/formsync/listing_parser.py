"""
dags/formsync/listing_parser.py

Parse the server's XForms listing document into FormDescriptors.
Pure — no network, no filesystem.

Accepted shapes:

    <forms>
      <form url="http://host/moduleServlet/xforms/xformDownload?target=xform&amp;formId=3">
        Blood Pressure
      </form>
      ...
    </forms>

    <xforms>
      <xform>
        <form>Blood Pressure</form>
        <downloadUrl url="http://host/.../download?formId=BP"/>
      </xform>
      ...
    </xforms>

In the nested shape each element child of the root is an entry and the
element children of an entry are its fields (a childless entry is its own
single field). In the flat shape no child of the root has element children,
so the root is the one entry: name/locator/id carry over from one <form>
to the next, and a <form> without url reuses the previous form's locator.

NOTE: a descriptor is emitted for every FIELD visited, not once per entry.
Each emitted descriptor carries whatever name/locator/id the entry has
accumulated so far, so multi-field entries produce partial descriptors
before the complete one. Downstream code skips the non-actionable ones.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

from lxml import etree

from formsync.errors import ListingParseFailed

logger = logging.getLogger(__name__)

URL_ATTRIBUTE = "url"
FORM_TAG = "form"


@dataclass(frozen=True)
class FormDescriptor:
    name: Optional[str] = None
    download_locator: Optional[str] = None
    form_id: Optional[str] = None

    @property
    def is_actionable(self) -> bool:
        """True when there is enough to download and name the form."""
        return bool(self.name) and bool(self.download_locator)


def _xml_parser() -> etree.XMLParser:
    # No DTD entity expansion, no network fetches for external subsets.
    return etree.XMLParser(resolve_entities=False, no_network=True)


def _element_children(el) -> list:
    """Element children only — text, comments and PIs are skipped."""
    return [c for c in el if isinstance(c.tag, str)]


def _entries(root) -> list[list]:
    """Field lists, one per entry."""
    children = _element_children(root)
    if children and not any(_element_children(c) for c in children):
        return [children]
    return [_element_children(entry) or [entry] for entry in children]


def _locator_from_url(url: str) -> Optional[str]:
    """Last path segment of *url*, or None when that segment is empty."""
    locator = url[url.rfind("/") + 1:]
    return locator or None


def _form_id_from_locator(locator: str) -> Optional[str]:
    """Everything after the last '=' in *locator*; None if there is no '='."""
    if "=" not in locator:
        return None
    return locator[locator.rfind("=") + 1:]


def _first_attribute(el) -> Optional[tuple[str, str]]:
    return next(iter(el.attrib.items()), None)


def parse_listing(raw: Union[bytes, str]) -> list[FormDescriptor]:
    """
    Parse a raw listing document and return descriptors in document order.
    Raises ListingParseFailed if the document is not well-formed XML.
    """
    if isinstance(raw, str):
        raw = raw.encode("utf-8")

    try:
        root = etree.fromstring(raw, parser=_xml_parser())
    except (etree.XMLSyntaxError, ValueError) as exc:
        raise ListingParseFailed(f"Malformed listing document: {exc}") from exc

    descriptors: list[FormDescriptor] = []

    for fields in _entries(root):
        name = None
        locator = None
        form_id = None

        for field in fields:
            if etree.QName(field).localname == FORM_TAG:
                name = field.text or None

            attr = _first_attribute(field)
            if attr is not None and attr[0] == URL_ATTRIBUTE:
                locator = _locator_from_url(attr[1])
                form_id = _form_id_from_locator(locator) if locator else None

            descriptors.append(FormDescriptor(name, locator, form_id))

    logger.debug("Parsed %d descriptor(s) from listing", len(descriptors))
    return descriptors

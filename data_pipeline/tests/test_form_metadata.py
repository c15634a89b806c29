"""
tests/test_form_metadata.py

Unit tests for formsync/form_metadata.py against small hand-written XForms.

Run with:
    pytest tests/test_form_metadata.py -v
"""

import sys
from pathlib import Path

import pytest

# ── Path setup ─────────────────────────────────────────────────────────────────
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "dags"))

import formsync.form_metadata as fm
from formsync.errors import FormMetadataError


def _xform(title="Blood Pressure", instance='<data id="blood_pressure" version="3"><sys/></data>',
           submission='<submission action="https://example.org/submit" base64RsaPublicKey="MIIBKEY"/>'):
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<h:html xmlns="http://www.w3.org/2002/xforms" xmlns:h="http://www.w3.org/1999/xhtml">\n'
        "  <h:head>\n"
        f"    <h:title>{title}</h:title>\n"
        "    <model>\n"
        f"      <instance>{instance}</instance>\n"
        f"      {submission}\n"
        "    </model>\n"
        "  </h:head>\n"
        "  <h:body/>\n"
        "</h:html>\n"
    )


@pytest.fixture
def write_form(tmp_path):
    def _write(text, name="form.xml"):
        p = tmp_path / name
        p.write_text(text, encoding="utf-8")
        return p
    return _write


# ══════════════════════════════════════════════════════════════════════════════
# Happy path
# ══════════════════════════════════════════════════════════════════════════════

class TestParseFormMetadata:
    def test_all_fields(self, write_form):
        info = fm.parse_form_metadata(write_form(_xform()))
        assert info == {
            fm.TITLE: "Blood Pressure",
            fm.VERSION: "3",
            fm.FORM_ID: "blood_pressure",
            fm.SUBMISSION_URI: "https://example.org/submit",
            fm.PUBLIC_KEY_B64: "MIIBKEY",
        }

    def test_title_whitespace_is_trimmed(self, write_form):
        info = fm.parse_form_metadata(write_form(_xform(title="\n   Vitals  \n")))
        assert info[fm.TITLE] == "Vitals"

    def test_form_id_falls_back_to_instance_namespace(self, write_form):
        instance = '<data xmlns="http://example.org/forms/bp" version="1"/>'
        info = fm.parse_form_metadata(write_form(_xform(instance=instance)))
        assert info[fm.FORM_ID] == "http://example.org/forms/bp"
        assert info[fm.VERSION] == "1"

    def test_no_submission(self, write_form):
        info = fm.parse_form_metadata(write_form(_xform(submission="")))
        assert info[fm.SUBMISSION_URI] is None
        assert info[fm.PUBLIC_KEY_B64] is None

    def test_empty_values_become_none(self, write_form):
        info = fm.parse_form_metadata(write_form(_xform(
            title="", instance='<data id="x" version=""/>',
            submission='<submission action="  "/>',
        )))
        assert info[fm.TITLE] is None
        assert info[fm.VERSION] is None
        assert info[fm.SUBMISSION_URI] is None

    def test_missing_head(self, write_form):
        info = fm.parse_form_metadata(write_form("<html><body/></html>"))
        assert all(v is None for v in info.values())

    def test_comment_before_instance_root(self, write_form):
        instance = '<!-- generated --><data id="cmt" version="2"/>'
        info = fm.parse_form_metadata(write_form(_xform(instance=instance)))
        assert info[fm.FORM_ID] == "cmt"


# ══════════════════════════════════════════════════════════════════════════════
# Unreadable files
# ══════════════════════════════════════════════════════════════════════════════

class TestParseFailures:
    def test_not_xml(self, write_form):
        with pytest.raises(FormMetadataError):
            fm.parse_form_metadata(write_form("this is not xml"))

    def test_truncated_xml(self, write_form):
        with pytest.raises(FormMetadataError):
            fm.parse_form_metadata(write_form(_xform()[:120]))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FormMetadataError):
            fm.parse_form_metadata(tmp_path / "nope.xml")

"""Tests for PDF extraction and the temp-file scope."""

import os

import pytest
from pypdf import PdfWriter

from docingest.errors import ExtractionError
from docingest.worker.loader import load_pdf_pages, temporary_pdf


def test_blank_pdf_has_no_pages_with_text(tmp_path):
    path = tmp_path / "blank.pdf"
    writer = PdfWriter()
    writer.add_blank_page(width=612, height=792)
    with open(path, "wb") as f:
        writer.write(f)

    assert load_pdf_pages(str(path)) == []


def test_garbage_raises_extraction_error(tmp_path):
    path = tmp_path / "broken.pdf"
    path.write_bytes(b"this is not a pdf")

    with pytest.raises(ExtractionError):
        load_pdf_pages(str(path))


def test_temporary_pdf_removed_after_use(tmp_path):
    with temporary_pdf(b"%PDF-1.4 data", str(tmp_path)) as path:
        assert os.path.exists(path)
        assert path.endswith(".pdf")
        with open(path, "rb") as f:
            assert f.read() == b"%PDF-1.4 data"
    assert not os.path.exists(path)


def test_temporary_pdf_removed_on_error(tmp_path):
    with pytest.raises(RuntimeError):
        with temporary_pdf(b"data", str(tmp_path)) as path:
            raise RuntimeError("stage failed")
    assert not os.path.exists(path)
    assert os.listdir(tmp_path) == []

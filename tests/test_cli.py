"""Tests for the worker CLI."""

from unittest.mock import patch

from pypdf import PdfWriter

from docingest.schemas import PageText
from docingest.worker.cli import main


def _blank_pdf(path):
    writer = PdfWriter()
    writer.add_blank_page(width=612, height=792)
    with open(path, "wb") as f:
        writer.write(f)


def test_chunk_writes_jsonl(tmp_path, capsys):
    pdf = tmp_path / "doc.pdf"
    _blank_pdf(pdf)
    out = tmp_path / "out" / "chunks.jsonl"
    pages = [PageText(page_number=1, text="A paragraph about ingestion pipelines. " * 40)]

    with patch("docingest.worker.loader.load_pdf_pages", return_value=pages):
        code = main(["chunk", str(pdf), "-o", str(out)])

    assert code == 0
    lines = out.read_text(encoding="utf-8").splitlines()
    assert len(lines) > 1
    assert '"page_number":1' in lines[0]
    assert f"Chunks: {len(lines)}" in capsys.readouterr().out


def test_chunk_blank_pdf_gives_no_chunks(tmp_path, capsys):
    pdf = tmp_path / "blank.pdf"
    _blank_pdf(pdf)
    out = tmp_path / "chunks.jsonl"

    assert main(["chunk", str(pdf), "-o", str(out)]) == 0
    assert out.read_text(encoding="utf-8") == ""
    assert "Chunks: 0" in capsys.readouterr().out


def test_missing_file(tmp_path, capsys):
    assert main(["chunk", str(tmp_path / "nope.pdf")]) == 1
    assert "file not found" in capsys.readouterr().err


def test_unreadable_pdf(tmp_path, capsys):
    pdf = tmp_path / "broken.pdf"
    pdf.write_bytes(b"not a pdf at all")
    assert main(["chunk", str(pdf), "-o", str(tmp_path / "c.jsonl")]) == 1
    assert "Error" in capsys.readouterr().err

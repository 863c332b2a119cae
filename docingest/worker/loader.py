"""
PDF extraction: pypdf page texts and a scoped temporary file for the download.
"""
from __future__ import annotations

import os
import tempfile
from contextlib import contextmanager
from typing import Iterator, List

import structlog
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from ..errors import ExtractionError
from ..schemas import PageText

logger = structlog.get_logger()


def load_pdf_pages(file_path: str) -> List[PageText]:
    """Extract text per page (1-based page numbers). Pages without text are skipped."""
    try:
        reader = PdfReader(file_path)
        pages = []
        for number, page in enumerate(reader.pages, start=1):
            text = page.extract_text() or ""
            if text.strip():
                pages.append(PageText(page_number=number, text=text))
    except (PyPdfError, OSError, ValueError) as e:
        logger.error("PDF extraction failed", path=file_path, error=str(e))
        raise ExtractionError(f"Could not read PDF: {e}") from e

    logger.info("Extracted PDF pages", path=file_path, pages=len(pages))
    return pages


@contextmanager
def temporary_pdf(data: bytes, temp_dir: str | None = None) -> Iterator[str]:
    """Write `data` to a temp .pdf file and remove it on exit, whatever happens."""
    fd, path = tempfile.mkstemp(suffix=".pdf", dir=temp_dir)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        yield path
    finally:
        if os.path.exists(path):
            os.remove(path)
            logger.debug("Removed temp file", path=path)

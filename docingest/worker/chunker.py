"""
Chunking: split page texts into passages for embedding.
"""
from __future__ import annotations

from typing import List

import structlog
from langchain_text_splitters import RecursiveCharacterTextSplitter

from ..config import settings
from ..schemas import Chunk, PageText

logger = structlog.get_logger()

SEPARATORS = ["\n\n", "\n", ". ", " ", ""]


def make_splitter(chunk_size: int, chunk_overlap: int) -> RecursiveCharacterTextSplitter:
    return RecursiveCharacterTextSplitter(
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        length_function=len,
        separators=SEPARATORS,
    )


def chunk_pages(
    pages: List[PageText],
    chunk_size: int | None = None,
    chunk_overlap: int | None = None,
) -> List[Chunk]:
    """Split each page in order; chunk indexes run across the whole document."""
    splitter = make_splitter(
        chunk_size or settings.CHUNK_SIZE,
        settings.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap,
    )
    chunks: List[Chunk] = []
    for page in pages:
        for text in splitter.split_text(page.text):
            if text:
                chunks.append(Chunk(text=text, page_number=page.page_number, index=len(chunks)))
    return chunks


def split_oversized_chunk(
    chunk: Chunk,
    max_size: int | None = None,
    chunk_overlap: int | None = None,
    min_chars: int | None = None,
) -> List[Chunk]:
    """
    Re-split one chunk at a larger size. On any splitter error the chunk is kept whole.

    Sub-chunks shorter than `min_chars` once trimmed are dropped, so a short
    tail left by the re-split never reaches embedding.
    """
    max_size = max_size or settings.MAX_CHUNK_CHARS
    min_chars = settings.MIN_CHUNK_CHARS if min_chars is None else min_chars
    if chunk_overlap is None:
        chunk_overlap = settings.OVERSIZED_CHUNK_OVERLAP
    try:
        texts = make_splitter(max_size, chunk_overlap).split_text(chunk.text)
    except Exception as e:
        logger.warning("Re-splitting oversized chunk failed, keeping original", index=chunk.index, error=str(e))
        return [chunk]
    parts = []
    for text in texts:
        text = text.strip()
        if len(text) < min_chars:
            continue
        parts.append(Chunk(text=text, page_number=chunk.page_number, index=chunk.index))
    return parts or [chunk]


def validate_chunks(
    chunks: List[Chunk],
    min_chars: int | None = None,
    max_chars: int | None = None,
    chunk_overlap: int | None = None,
) -> List[Chunk]:
    """
    Drop noise chunks and re-split oversized ones.

    Chunks whose trimmed text is shorter than `min_chars` are dropped; chunks
    longer than `max_chars` are replaced in place by their sub-chunks. The
    result is re-indexed 0..n-1 in document order.
    """
    min_chars = settings.MIN_CHUNK_CHARS if min_chars is None else min_chars
    max_chars = max_chars or settings.MAX_CHUNK_CHARS

    valid: List[Chunk] = []
    dropped = resplit = 0
    for chunk in chunks:
        text = chunk.text.strip()
        if len(text) < min_chars:
            dropped += 1
            continue
        if len(text) > max_chars:
            resplit += 1
            valid.extend(split_oversized_chunk(chunk, max_chars, chunk_overlap, min_chars))
            continue
        valid.append(Chunk(text=text, page_number=chunk.page_number, index=chunk.index))

    for i, chunk in enumerate(valid):
        chunk.index = i

    logger.info("Validated chunks", total=len(chunks), valid=len(valid), dropped=dropped, resplit=resplit)
    return valid

"""
Worker CLI: python -m docingest.worker [chunk|submit] [args...]
"""
from __future__ import annotations

import argparse
import asyncio
import hashlib
import json
import sys
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        return _run_worker()

    parser = argparse.ArgumentParser(
        description="PDF ingestion CLI: preview chunks locally or submit a PDF for ingestion.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True, help="Task")

    chunk_parser = subparsers.add_parser("chunk", help="Extract and chunk a PDF to JSONL (no embedding)")
    chunk_parser.add_argument("file", type=Path, help="Path to PDF.")
    chunk_parser.add_argument("--out", "-o", type=Path, default=Path("chunks.jsonl"), help="Output JSONL path.")

    submit_parser = subparsers.add_parser("submit", help="Upload a PDF and queue it for ingestion")
    submit_parser.add_argument("file", type=Path, help="Path to PDF.")
    submit_parser.add_argument("--user-id", default=None, help="Uploader id recorded on the upload.")

    args = parser.parse_args(argv)

    if not args.file.exists():
        print(f"Error: file not found: {args.file}", file=sys.stderr)
        return 1
    if args.command == "chunk":
        return _run_chunk(args)
    if args.command == "submit":
        return asyncio.run(_run_submit(args))
    return 1


def _run_worker() -> int:
    from arq import run_worker

    from .main import WorkerSettings

    run_worker(WorkerSettings)
    return 0


def _run_chunk(args) -> int:
    from .chunker import chunk_pages, validate_chunks
    from .loader import load_pdf_pages

    from ..errors import ExtractionError

    try:
        pages = load_pdf_pages(str(args.file))
    except ExtractionError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    chunks = validate_chunks(chunk_pages(pages))
    args.out.parent.mkdir(parents=True, exist_ok=True)
    with open(args.out, "w", encoding="utf-8") as f:
        for chunk in chunks:
            f.write(chunk.model_dump_json() + "\n")
    print(f"Chunks: {len(chunks)}")
    print(f"Output: {args.out}")
    return 0


async def _run_submit(args) -> int:
    from ..arq_client import close_clients, get_arq_pool, get_redis_client
    from ..database import get_db_session, init_db
    from ..schemas import UploadTargetResponse
    from ..services.intake_service import IntakeService
    from ..services.job_queue import JobQueue
    from ..services.storage_service import storage_service
    from ..services.upload_registry import UploadRegistry

    data = args.file.read_bytes()
    file_hash = hashlib.sha256(data).hexdigest()
    init_db()
    try:
        queue = JobQueue(await get_redis_client(), await get_arq_pool())
        with get_db_session() as db:
            intake = IntakeService(UploadRegistry(db), storage_service, queue)
            target = await intake.request_upload(args.file.name, file_hash)
            if not isinstance(target, UploadTargetResponse):
                print(json.dumps(target.model_dump(mode="json", by_alias=True), indent=2))
                return 0
            storage_service.upload_file(target.object_key, data)
            response = await intake.trigger_processing(
                target.object_key, args.file.name, file_hash, uploader_id=args.user_id
            )
        print(json.dumps(response.model_dump(mode="json", by_alias=True), indent=2))
        return 0
    finally:
        await close_clients()

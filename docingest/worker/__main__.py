"""
Entry point for python -m docingest.worker.

  python -m docingest.worker chunk doc.pdf    -> CLI (extract + chunk to JSONL)
  python -m docingest.worker submit doc.pdf   -> CLI (upload + queue)
  python -m docingest.worker                  -> ARQ worker (job queue)
"""
import sys

from .cli import main

sys.exit(main())

"""PDF ingestion worker: pipeline, ARQ entrypoint and CLI."""

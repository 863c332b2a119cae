"""PDF ingestion service: intake API, job queue and ingestion worker."""

__version__ = "1.0.0"

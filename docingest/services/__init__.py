"""Service clients and domain services for intake and ingestion."""

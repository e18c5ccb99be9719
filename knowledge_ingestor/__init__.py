"""Knowledge ingestion service: connectors, sync orchestration and job lifecycle tracking."""

__version__ = "0.1.0"

"""Health snapshot ingestion, alerting and risk scoring server."""

__version__ = "1.0.0"

"""Match-scoring and notification dispatch engine for a real-estate CRM."""

__version__ = "1.0.0"

"""Book PDF ingestion pipeline: layout reconstruction and LLM-driven structuring."""

__version__ = "0.1.0"

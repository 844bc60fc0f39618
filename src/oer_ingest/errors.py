"""Exception types raised by the ingestion pipeline."""


class IngestError(Exception):
    """Base class for pipeline errors."""


class ConfigError(IngestError):
    """Missing or invalid configuration (e.g. no API key)."""


class ManifestError(IngestError):
    """Manifest file missing or malformed. Aborts the whole run."""


class AssetExtractionError(IngestError):
    """Content images could not be extracted from the source PDF."""


class AnalysisError(IngestError):
    """Source PDF could not be opened or its pages could not be read."""


class ChatServiceError(IngestError):
    """Error from the hosted chat service."""

    def __init__(self, error_type: str, message: str, code: int | None = None):
        self.error_type = error_type
        self.message = message
        self.code = code
        super().__init__(f"{error_type}: {message}")

    @property
    def is_rate_limited(self) -> bool:
        return self.code == 429 or self.error_type == "RESOURCE_EXHAUSTED"


class InvalidResponseError(IngestError):
    """Model reply did not contain a usable JSON array of sections."""


class CheckpointError(IngestError):
    """Checkpoint log holds a corrupt record before its final line."""


class StructuringError(IngestError):
    """Structuring cannot continue (nothing in the checkpoint log to resume from)."""

"""Error types raised by the retrieval core."""


class RAGError(Exception):
    """Base class for all retrieval-core errors."""


class NotFoundError(RAGError, LookupError):
    """An embedding or chunk id is not present."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class ProviderError(RAGError):
    """The embedding provider failed or returned malformed output.

    Never retried internally; the caller owns the retry policy.
    """


class UnsupportedStrategyError(RAGError, ValueError):
    """Unknown chunking strategy or retrieval method."""


class InvalidConfigError(RAGError, ValueError):
    """A configuration value is out of range or malformed."""

class ConfigError(ValueError):
    """Configuration is missing or invalid, or a provider has no credential."""


class GuardrailError(RuntimeError):
    """Statement or procedure rejected by the safety gate."""


class QueryError(RuntimeError):
    """Statement execution failed in a user-facing way."""

    def __init__(self, message: str, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class ProviderError(RuntimeError):
    """Language-model backend call failed."""

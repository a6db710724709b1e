"""Custom exceptions for ctxbundle."""


class CtxBundleError(Exception):
    """Base exception for all ctxbundle errors."""


class ConfigError(CtxBundleError):
    """Configuration-related errors."""


class InvalidInputError(CtxBundleError):
    """Malformed request, file path or file content."""


class StoreError(CtxBundleError):
    """File or conversation store errors."""


class ProviderError(CtxBundleError):
    """Embedding provider errors."""


class ProviderUnavailableError(ProviderError):
    """The embedding provider could not be reached or failed server-side."""


class RateLimitedError(ProviderError):
    """The embedding provider rejected a request because of rate limits."""


class ProviderNotAvailableError(ProviderUnavailableError):
    """Raised when an embedding provider's SDK is not installed."""

    def __init__(self, provider: str, package: str):
        super().__init__(
            f"Provider '{provider}' requires the '{package}' package. "
            f"Install it with: pip install ctxbundle[{provider}]"
        )


class IndexUnavailableError(CtxBundleError):
    """The vector index backend is unreachable."""

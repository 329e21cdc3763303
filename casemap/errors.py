"""
Error taxonomy for the case map view.

- ConfigurationError: missing API key or unusable settings (not retryable)
- ProviderLoadError: provider script could not be fetched (retryable)
- CaseFetchError: case list / search request failed (retryable)
- MapFailure: provider map handle became invalid after initialization
- PhotoDecodeError: marker photo could not be fetched or decoded
"""


class CaseMapError(Exception):
    """Base class for all case map errors."""


class ConfigurationError(CaseMapError):
    pass


class ProviderLoadError(CaseMapError):
    pass


class CaseFetchError(CaseMapError):
    pass


class MapFailure(CaseMapError):
    pass


class PhotoDecodeError(CaseMapError):
    pass

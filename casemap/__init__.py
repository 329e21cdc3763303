# Missing-persons case map
from .app import CaseMapApp
from .errors import (
    CaseFetchError,
    CaseMapError,
    ConfigurationError,
    MapFailure,
    PhotoDecodeError,
    ProviderLoadError,
)

__version__ = "0.1.0"

__all__ = [
    "CaseMapApp",
    "CaseMapError",
    "CaseFetchError",
    "ConfigurationError",
    "MapFailure",
    "PhotoDecodeError",
    "ProviderLoadError",
]

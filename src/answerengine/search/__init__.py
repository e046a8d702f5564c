"""Web, image and video search adapters."""

from .providers import (
    BraveSearchProvider,
    SearchConfig,
    SearchProvider,
    SerperSearchProvider,
    StaticSearchProvider,
    build_provider,
)
from .service import SearchService

__all__ = [
    "BraveSearchProvider",
    "SearchConfig",
    "SearchProvider",
    "SearchService",
    "SerperSearchProvider",
    "StaticSearchProvider",
    "build_provider",
]

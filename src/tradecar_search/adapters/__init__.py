"""Adapter layer — IoC / Strategy pattern for trade listing sources.

Importing this package triggers adapter registration via the
``@AdapterRegistry.register`` decorator on each concrete adapter.
"""

# Import concrete adapters to trigger registration
from tradecar_search.adapters import bca as _bca  # noqa: F401
from tradecar_search.adapters import cartotrade as _cartotrade  # noqa: F401
from tradecar_search.adapters import carwow as _carwow  # noqa: F401
from tradecar_search.adapters import disposalnetwork as _disposalnetwork  # noqa: F401
from tradecar_search.adapters import motorway as _motorway  # noqa: F401
from tradecar_search.adapters.base import (
    Credentials,
    Listing,
    RefinementUnavailable,
    SearchCriteria,
    SourceAdapter,
)
from tradecar_search.adapters.registry import AdapterRegistry

__all__ = [
    "AdapterRegistry",
    "Credentials",
    "Listing",
    "RefinementUnavailable",
    "SearchCriteria",
    "SourceAdapter",
]

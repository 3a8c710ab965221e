"""Shared data contracts and abstract base class for source adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from tradecar_search.errors import ActionableError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from playwright.async_api import Page


# camelCase keys accepted from the legacy HTTP API
_CAMEL_ALIASES: dict[str, str] = {
    "minPrice": "min_price",
    "maxPrice": "max_price",
    "minMileage": "min_mileage",
    "maxMileage": "max_mileage",
    "minAge": "min_age",
    "maxAge": "max_age",
    "vatQualifying": "vat_qualifying",
    "colour": "color",
}

_RANGES = (
    ("min_price", "max_price"),
    ("min_mileage", "max_mileage"),
    ("min_age", "max_age"),
)


@dataclass(frozen=True)
class SearchCriteria:
    """Source-agnostic description of what the caller is looking for.

    Adapters interpret the fields they support and ignore the rest.
    Ages are in whole years.
    """

    make: str
    model: str
    min_price: int | None = None
    max_price: int | None = None
    min_mileage: int | None = None
    max_mileage: int | None = None
    min_age: int | None = None
    max_age: int | None = None
    color: str | None = None
    vat_qualifying: bool | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SearchCriteria:
        """Build criteria from a request body, accepting camelCase aliases.

        Unknown keys are ignored.  Validation is separate — call
        :meth:`validate` before running a search.
        """
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            name = _CAMEL_ALIASES.get(key, key)
            if name in known and value is not None:
                kwargs[name] = value
        kwargs.setdefault("make", "")
        kwargs.setdefault("model", "")
        return cls(**kwargs)

    def validate(self) -> SearchCriteria:
        """Reject criteria no source could act on.

        Raises :class:`~tradecar_search.errors.ActionableError` (VALIDATION)
        for a blank make or model, a negative bound, or an inverted range.
        Returns ``self`` so calls can be chained.
        """
        for name in ("make", "model"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ActionableError.validation(name, "is required and must be non-empty")

        for low_name, high_name in _RANGES:
            low = getattr(self, low_name)
            high = getattr(self, high_name)
            for name, value in ((low_name, low), (high_name, high)):
                if value is None:
                    continue
                if isinstance(value, bool) or not isinstance(value, int):
                    raise ActionableError.validation(name, f"must be a whole number, got {value!r}")
                if value < 0:
                    raise ActionableError.validation(name, f"is {value} — must be >= 0")
            if low is not None and high is not None and low > high:
                raise ActionableError.validation(
                    f"{low_name}/{high_name}",
                    f"minimum {low} is greater than maximum {high}",
                )
        return self


@dataclass(frozen=True)
class Credentials:
    """Login credentials for one source.  Read-only; shared freely."""

    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"


@dataclass(frozen=True)
class RefinementUnavailable:
    """Returned by ``apply_refinements`` when the source cannot satisfy the criteria.

    Not an error: the job ends as ``EmptyBySkip`` with zero items.
    """

    reason: str


@dataclass(frozen=True)
class Listing:
    """Source-agnostic envelope for one vehicle listing.

    Required fields are always populated after adapter extraction
    (possibly as empty strings).  Optional fields degrade gracefully
    when a source does not expose them.

    Immutable once built: the same instances reach progress subscribers
    and the aggregate.  Use :func:`dataclasses.replace` to derive a copy.
    """

    url: str
    image_url: str
    title: str
    price: int | None
    location: str
    registration: str
    source: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    make: str | None = None
    model: str | None = None
    year: int | None = None
    mileage: int | None = None
    fuel_type: str | None = None
    transmission: str | None = None
    body_type: str | None = None
    colour: str | None = None
    metadata: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Read-only view over a private copy
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready dict; optional fields that are ``None`` are omitted."""
        data: dict[str, Any] = {f.name: getattr(self, f.name) for f in fields(self)}
        data["timestamp"] = self.timestamp.isoformat()
        data["metadata"] = dict(self.metadata)
        if not data["metadata"]:
            del data["metadata"]
        return {k: v for k, v in data.items() if v is not None}


class SourceAdapter(ABC):
    """Strategy interface for one trade listing source.

    Each adapter owns: authentication, query construction or UI
    refinement, and listing extraction.  Nothing else — browser
    lifecycle, timeouts and error classification belong to the
    pipeline.  A fresh instance is created for every job, so state
    kept on ``self`` between refinement and extraction never leaks
    into another run.
    """

    @property
    @abstractmethod
    def source_name(self) -> str:
        """Unique identifier string for this source."""
        ...

    @property
    def supports_query_url(self) -> bool:
        """``True`` when :meth:`build_query` yields a navigable results URL.

        Such sources skip UI refinement entirely.
        """
        return False

    @abstractmethod
    async def authenticate(self, page: Page, credentials: Credentials) -> None:
        """Log in on *page*.  Raise on failure."""
        ...

    def build_query(self, criteria: SearchCriteria) -> str:
        """Return the results URL for *criteria*.

        Only called when :attr:`supports_query_url` is ``True``.
        """
        msg = f"{self.source_name} does not build query URLs"
        raise NotImplementedError(msg)

    async def apply_refinements(
        self,
        page: Page,
        criteria: SearchCriteria,
    ) -> RefinementUnavailable | None:
        """Drive the source's filter UI to match *criteria*.

        Return :class:`RefinementUnavailable` when the source does not
        offer the requested make/model; raise on genuine failures.
        """
        return None

    @abstractmethod
    async def extract_items(
        self,
        page: Page,
        criteria: SearchCriteria,
    ) -> list[Listing]:
        """Read listings from the current results page."""
        ...

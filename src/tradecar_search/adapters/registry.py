"""Adapter registry — maps source names to adapter classes.

The orchestrator never imports concrete adapters; a source name from
``settings.toml`` is the only coupling between configuration and code.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from tradecar_search.adapters.base import SourceAdapter


class AdapterRegistry:
    """Decorator-based registry of :class:`SourceAdapter` subclasses.

    Usage::

        @AdapterRegistry.register
        class MotorwayAdapter(SourceAdapter):
            @property
            def source_name(self) -> str:
                return "motorway"
            ...

    :meth:`get` always returns a *new* instance, so per-job state kept on
    an adapter between refinement and extraction is discarded with it.
    """

    _adapters: ClassVar[dict[str, type[SourceAdapter]]] = {}

    @classmethod
    def register(cls, adapter_class: type[SourceAdapter]) -> type[SourceAdapter]:
        """Class decorator — registers an adapter under its ``source_name``."""
        instance = adapter_class.__new__(adapter_class)
        cls._adapters[instance.source_name] = adapter_class
        return adapter_class

    @classmethod
    def get(cls, source_name: str) -> SourceAdapter:
        """Return a fresh adapter for *source_name*.

        Raises ``ValueError`` naming the source when nothing is registered.
        """
        try:
            adapter_class = cls._adapters[source_name]
        except KeyError:
            msg = f"No adapter registered for source: '{source_name}'"
            raise ValueError(msg) from None
        return adapter_class()

    @classmethod
    def supports_query_url(cls, source_name: str) -> bool:
        """Capability flag of the registered adapter, read without a full instance."""
        if source_name not in cls._adapters:
            msg = f"No adapter registered for source: '{source_name}'"
            raise ValueError(msg)
        instance = cls._adapters[source_name].__new__(cls._adapters[source_name])
        return bool(instance.supports_query_url)

    @classmethod
    def is_registered(cls, source_name: str) -> bool:
        return source_name in cls._adapters

    @classmethod
    def list_registered(cls) -> list[str]:
        """All registered source names, in registration order."""
        return list(cls._adapters)

"""
Provider registry: the set of live adapters and the round-robin cursor.

The adapter list is fixed at construction and never changes afterwards;
adding a provider needs a restart. The cursor is the only mutable state and
is advanced under a lock, so concurrent uploads always observe distinct,
sequential cursor values.
"""

import logging
import threading
from typing import Iterator, Sequence

from .adapter import StorageAdapter
from .errors import ValidationFailed
from .models import ProviderType

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """
    Ordered adapters plus a cursor for round-robin selection.

    Uploads use ``next()``; deletes, downloads and URL issuance use
    ``get(provider)`` and never fall back to a different provider.
    """

    def __init__(self, adapters: Sequence[StorageAdapter]) -> None:
        if not adapters:
            raise ValidationFailed("No storage adapters configured")

        by_provider: dict[ProviderType, StorageAdapter] = {}
        for adapter in adapters:
            if adapter.provider in by_provider:
                raise ValidationFailed(
                    f"Storage provider configured twice: {adapter.provider.value}",
                    details={"provider": adapter.provider.value},
                )
            by_provider[adapter.provider] = adapter

        self._adapters: tuple[StorageAdapter, ...] = tuple(adapters)
        self._by_provider = by_provider
        self._cursor = 0
        self._lock = threading.Lock()

        logger.info(
            "Initialized provider registry",
            extra={"providers": [a.provider.value for a in self._adapters]},
        )

    def next(self) -> StorageAdapter:
        """Return the adapter at the cursor and advance it by one."""
        with self._lock:
            adapter = self._adapters[self._cursor]
            self._cursor = (self._cursor + 1) % len(self._adapters)
        return adapter

    def get(self, provider: "ProviderType | str") -> StorageAdapter:
        """
        Return the adapter for a provider tag.

        Raises ValidationFailed when the provider is unknown or was not
        configured at startup.
        """
        try:
            tag = ProviderType.parse(provider)
        except ValueError as e:
            raise ValidationFailed(
                f"Storage provider not available: {provider}",
                details={"provider": str(provider)},
            ) from e

        adapter = self._by_provider.get(tag)
        if adapter is None:
            raise ValidationFailed(
                f"Storage provider not available: {tag.value}",
                details={"provider": tag.value},
            )
        return adapter

    def has(self, provider: ProviderType) -> bool:
        return provider in self._by_provider

    @property
    def cursor(self) -> int:
        with self._lock:
            return self._cursor

    @property
    def providers(self) -> list[ProviderType]:
        return [adapter.provider for adapter in self._adapters]

    def __len__(self) -> int:
        return len(self._adapters)

    def __iter__(self) -> Iterator[StorageAdapter]:
        return iter(self._adapters)


"""
Purpose: Read-only provider lookup used by the engine.
What it does:
- get(provider_id) for bid submission and award re-validation.
- search(...) for the ranking service's candidate pool.
- register / update for the host application (onboarding, availability
  toggles). Providers are frozen, so an update swaps the whole snapshot.
"""

from __future__ import annotations

import threading
from typing import Dict, Iterable, List, Optional

from common.exceptions import ProviderNotFound
from orders.models import ServiceCategory
from .models import Provider


class ProviderDirectory:

    def __init__(self, providers: Iterable[Provider] = ()):
        self._providers: Dict[str, Provider] = {}
        self._lock = threading.Lock()
        for provider in providers:
            self.register(provider)

    def register(self, provider: Provider) -> Provider:
        with self._lock:
            self._providers[provider.id] = provider
        return provider

    def update(self, provider: Provider) -> Provider:
        with self._lock:
            if provider.id not in self._providers:
                raise ProviderNotFound(f"Provider {provider.id} is not registered", detail={"provider_id": provider.id})
            self._providers[provider.id] = provider
        return provider

    def get(self, provider_id: str) -> Provider:
        with self._lock:
            provider = self._providers.get(provider_id)
        if provider is None:
            raise ProviderNotFound(f"Provider {provider_id} is not registered", detail={"provider_id": provider_id})
        return provider

    def find(self, provider_id: str) -> Optional[Provider]:
        with self._lock:
            return self._providers.get(provider_id)

    def search(
        self,
        *,
        category: Optional[ServiceCategory] = None,
        region: Optional[str] = None,
        available_only: bool = False,
    ) -> List[Provider]:
        with self._lock:
            providers = list(self._providers.values())

        results = []
        for provider in providers:
            if category is not None and provider.category != ServiceCategory(category):
                continue
            if region and not provider.can_service_region(region):
                continue
            if available_only and not provider.is_available():
                continue
            results.append(provider)

        results.sort(key=lambda provider: provider.id)
        return results

    def __len__(self) -> int:
        with self._lock:
            return len(self._providers)

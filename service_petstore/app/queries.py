"""
Petstore queries and mutations on top of the query client.

Reads go through the cache under the keys from ``PetstoreKeys``. Writes go
straight to the resource client; only when a write succeeds are the affected
key prefixes invalidated. A failed write propagates unchanged and leaves the
cache alone.
"""

from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from shared.logging import get_logger
from .adapters.petstore_client import Order, Pet, ResourceClient
from .auth.token_provider import CallContext, as_provider
from .caching.client import AuthLike, QueryClient
from .caching.coordinator import QueryPolicy
from .caching.keys import CacheKey, PetstoreKeys


class PetstoreQueries:
    """Cached petstore reads and invalidating writes."""

    def __init__(self, client: QueryClient, resource: ResourceClient, auth: Optional[AuthLike] = None):
        self.client = client
        self.resource = resource
        self.auth = auth
        self.logger = get_logger("petstore.queries")

    def _pets_by_status(self, statuses: Iterable[str]) -> Tuple[CacheKey, Callable[[CallContext], Awaitable[List[Pet]]]]:
        wanted = sorted(set(statuses))

        async def _fetch(context: CallContext) -> List[Pet]:
            return await self.resource.find_pets_by_status(wanted, context) or []

        return PetstoreKeys.pets_by_status(wanted), _fetch

    async def find_pets_by_status(self, statuses: Iterable[str], policy: Optional[QueryPolicy] = None) -> List[Pet]:
        key, fetch = self._pets_by_status(statuses)
        return await self.client.fetch_query(key, fetch, policy, self.auth)

    async def prefetch_pets_by_status(self, statuses: Iterable[str], policy: Optional[QueryPolicy] = None) -> CacheKey:
        """Warm the pets-by-status query without raising; returns its key."""
        key, fetch = self._pets_by_status(statuses)
        await self.client.prefetch_query(key, fetch, policy, self.auth)
        return key

    async def get_pet_by_id(self, pet_id: int, policy: Optional[QueryPolicy] = None) -> Optional[Pet]:
        """Pet ``pet_id``; ids below 1 are not queried."""
        policy = (policy or self.client.default_policy).override(enabled=pet_id > 0)

        async def _fetch(context: CallContext) -> Optional[Pet]:
            return await self.resource.get_pet_by_id(pet_id, context)

        return await self.client.fetch_query(PetstoreKeys.pet(pet_id), _fetch, policy, self.auth)

    async def get_inventory(self, policy: Optional[QueryPolicy] = None) -> Dict[str, int]:
        async def _fetch(context: CallContext) -> Dict[str, int]:
            return await self.resource.get_inventory(context) or {}

        return await self.client.fetch_query(PetstoreKeys.inventory(), _fetch, policy, self.auth)

    async def get_order_by_id(self, order_id: int, policy: Optional[QueryPolicy] = None) -> Optional[Order]:
        policy = (policy or self.client.default_policy).override(enabled=order_id > 0)

        async def _fetch(context: CallContext) -> Optional[Order]:
            return await self.resource.get_order_by_id(order_id, context)

        return await self.client.fetch_query(PetstoreKeys.order(order_id), _fetch, policy, self.auth)

    async def add_pet(self, pet: Pet) -> Pet:
        return await self._mutate(
            "add_pet",
            lambda context: self.resource.add_pet(pet, context),
            [PetstoreKeys.pets(), PetstoreKeys.inventory()],
        )

    async def update_pet(self, pet: Pet) -> None:
        await self._mutate(
            "update_pet",
            lambda context: self.resource.update_pet(pet, context),
            [PetstoreKeys.pets(), PetstoreKeys.inventory()],
        )

    async def delete_pet(self, pet_id: int) -> None:
        await self._mutate(
            "delete_pet",
            lambda context: self.resource.delete_pet(pet_id, context),
            [PetstoreKeys.pets(), PetstoreKeys.inventory()],
        )

    async def place_order(self, order: Order) -> Optional[Order]:
        return await self._mutate(
            "place_order",
            lambda context: self.resource.place_order(order, context),
            [PetstoreKeys.orders(), PetstoreKeys.inventory()],
        )

    def invalidate_all(self) -> int:
        return self.client.invalidate_queries(PetstoreKeys.ALL)

    def invalidate_pets(self) -> int:
        return self.client.invalidate_queries(PetstoreKeys.pets())

    def invalidate_inventory(self) -> int:
        return self.client.invalidate_queries(PetstoreKeys.inventory())

    def invalidate_orders(self) -> int:
        return self.client.invalidate_queries(PetstoreKeys.orders())

    async def _mutate(
        self,
        name: str,
        call: Callable[[CallContext], Awaitable[Any]],
        invalidates: Sequence[CacheKey],
    ) -> Any:
        provider = self.client.coordinator.auth if self.auth is None else as_provider(self.auth)
        context = await provider.credentials()

        # Errors propagate before anything is invalidated
        result = await call(context)

        for prefix in invalidates:
            self.client.invalidate_queries(prefix)
        self.logger.info("Mutation succeeded", mutation=name, invalidated=[list(p) for p in invalidates])
        return result

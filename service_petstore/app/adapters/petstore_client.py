"""
Petstore resource client.
"""

from typing import Any, Dict, Iterable, List, Optional, Protocol
import httpx

from shared.logging import get_logger
from shared.errors import (
    AuthError,
    FetchTimeoutError,
    NetworkError,
    NotFoundError,
    ResourceServiceError,
    ValidationError,
)
from shared.circuit_breaker import CircuitBreaker
from shared.retry import retry_on_exception, RetryConfig
from ..auth.token_provider import ANONYMOUS, CallContext

Pet = Dict[str, Any]
Order = Dict[str, Any]


class ResourceClient(Protocol):
    """Operations the query layer needs from the petstore service."""

    async def find_pets_by_status(self, statuses: List[str], context: CallContext = ANONYMOUS) -> List[Pet]: ...

    async def get_pet_by_id(self, pet_id: int, context: CallContext = ANONYMOUS) -> Optional[Pet]: ...

    async def add_pet(self, pet: Pet, context: CallContext = ANONYMOUS) -> Pet: ...

    async def update_pet(self, pet: Pet, context: CallContext = ANONYMOUS) -> None: ...

    async def delete_pet(self, pet_id: int, context: CallContext = ANONYMOUS) -> None: ...

    async def get_inventory(self, context: CallContext = ANONYMOUS) -> Dict[str, int]: ...

    async def get_order_by_id(self, order_id: int, context: CallContext = ANONYMOUS) -> Optional[Order]: ...

    async def place_order(self, order: Order, context: CallContext = ANONYMOUS) -> Optional[Order]: ...


_MISSING = object()


class PetstoreClient:
    """httpx client for the petstore REST service.

    Credentials come from the ``CallContext`` of each call; the client keeps
    no authorization state of its own. Reads are retried on network errors,
    writes are not.
    """

    SERVICE_NAME = "petstore"

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        retry_config: Optional[RetryConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.transport = transport
        self.logger = get_logger("petstore.resource_client")
        self.retry_config = retry_config or RetryConfig(
            max_attempts=3,
            base_delay=0.5,
            max_delay=5.0,
            exponential_base=2.0,
            jitter=True
        )
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=30.0,
            counted_exceptions=(NetworkError, FetchTimeoutError, ResourceServiceError),
            name="petstore_service"
        )

    @retry_on_exception((NetworkError,), config_attr="retry_config")
    async def find_pets_by_status(self, statuses: Iterable[str], context: CallContext = ANONYMOUS) -> List[Pet]:
        """Pets whose status is any of ``statuses``."""
        result = await self._request("GET", "/pet/findByStatus", context, params={"status": list(statuses)})
        return result or []

    @retry_on_exception((NetworkError,), config_attr="retry_config")
    async def get_pet_by_id(self, pet_id: int, context: CallContext = ANONYMOUS) -> Optional[Pet]:
        return await self._request("GET", f"/pet/{pet_id}", context, not_found=None)

    async def add_pet(self, pet: Pet, context: CallContext = ANONYMOUS) -> Pet:
        return await self._request("POST", "/pet", context, json=pet)

    async def update_pet(self, pet: Pet, context: CallContext = ANONYMOUS) -> None:
        await self._request("PUT", "/pet", context, json=pet)

    async def delete_pet(self, pet_id: int, context: CallContext = ANONYMOUS) -> None:
        await self._request("DELETE", f"/pet/{pet_id}", context)

    @retry_on_exception((NetworkError,), config_attr="retry_config")
    async def get_inventory(self, context: CallContext = ANONYMOUS) -> Dict[str, int]:
        result = await self._request("GET", "/store/inventory", context)
        return result or {}

    @retry_on_exception((NetworkError,), config_attr="retry_config")
    async def get_order_by_id(self, order_id: int, context: CallContext = ANONYMOUS) -> Optional[Order]:
        return await self._request("GET", f"/store/order/{order_id}", context, not_found=None)

    async def place_order(self, order: Order, context: CallContext = ANONYMOUS) -> Optional[Order]:
        return await self._request("POST", "/store/order", context, json=order)

    async def _request(
        self,
        method: str,
        path: str,
        context: CallContext,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        not_found: Any = _MISSING,
    ) -> Any:
        """Execute a request with circuit breaker + error mapping.

        ``not_found`` is returned for a 404 when given; otherwise a 404
        raises ``NotFoundError``.
        """

        async def _send():
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                try:
                    response = await client.request(
                        method,
                        path,
                        params=params,
                        json=json,
                        headers=context.headers(),
                    )
                except httpx.TimeoutException as e:
                    self.logger.error("Petstore request timed out", method=method, path=path, error=str(e))
                    raise FetchTimeoutError(
                        f"{method} {path} timed out",
                        details={"timeout": self.timeout}
                    ) from e
                except httpx.HTTPError as e:
                    self.logger.error("Petstore HTTP error", method=method, path=path, error=str(e))
                    raise NetworkError(
                        f"{method} {path} failed: {e}",
                        details={"http_error": str(e)}
                    ) from e

            return self._handle_response(method, path, response, not_found)

        return await self.circuit_breaker.call(_send)

    def _handle_response(self, method: str, path: str, response: httpx.Response, not_found: Any) -> Any:
        status = response.status_code
        if 200 <= status < 300:
            self.logger.debug("Petstore request succeeded", method=method, path=path, status_code=status)
            if not response.content:
                return None
            try:
                return response.json()
            except ValueError as e:
                self.logger.error("Petstore returned malformed JSON", method=method, path=path, status_code=status)
                raise ResourceServiceError(
                    service=self.SERVICE_NAME,
                    message="Response body is not valid JSON",
                    details={"status_code": status, "method": method, "path": path, "body": response.text}
                ) from e

        details = {"status_code": status, "method": method, "path": path}
        if status in (401, 403):
            raise AuthError(f"Petstore rejected credentials ({status})", details=details)
        if status == 404:
            if not_found is not _MISSING:
                self.logger.info("Petstore resource not found", method=method, path=path)
                return not_found
            raise NotFoundError(f"{path} not found", details=details)
        if status in (400, 405, 422):
            raise ValidationError(f"Petstore rejected request ({status})", details={**details, "body": response.text})

        self.logger.error(
            "Petstore request failed",
            method=method,
            path=path,
            status_code=status,
            response=response.text
        )
        raise ResourceServiceError(
            service=self.SERVICE_NAME,
            message=f"Unexpected status {status}",
            details={**details, "body": response.text}
        )

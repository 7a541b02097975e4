"""
Petstore service: server-side query pipeline and session auth endpoints.
"""

from typing import Any, Dict, List, Optional

from fastapi import Query, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response
from pydantic import BaseModel

from shared.base_service import BaseService
from shared.retry import RetryConfig
from .adapters.petstore_client import PetstoreClient, ResourceClient
from .auth.session_auth import current_user, login, logout, session_token_provider
from .caching.client import QueryClient
from .queries import PetstoreQueries
from .results import Err, Ok, Redirect, Result


class LoginRequest(BaseModel):
    email: str = ""
    password: str = ""


class PetstoreService(BaseService):
    """Petstore query service implementation."""

    def __init__(self, resource_client: Optional[ResourceClient] = None, **config_overrides):
        super().__init__("petstore", 8000, **config_overrides)
        self.resource_client = resource_client or PetstoreClient(
            self.config.petstore_base_url,
            timeout=self.config.request_timeout_seconds,
            retry_config=RetryConfig(
                max_attempts=self.config.retry_max_attempts,
                base_delay=self.config.retry_base_delay,
                max_delay=5.0,
            ),
        )

        self._setup_petstore_routes()
        self.app.state.petstore_service = self

    def query_client_for(self, request: Request) -> QueryClient:
        """Fresh query client bound to the caller's session credentials.

        Each request gets its own store and auth so concurrent users never
        see each other's cache entries or tokens.
        """
        return QueryClient.from_config(
            self.config,
            auth=session_token_provider(request.session),
            metrics=self.metrics,
        )

    def render_result(self, result: Result) -> Response:
        """Translate a flow outcome into an HTTP response."""
        if isinstance(result, Redirect):
            return RedirectResponse(url=result.to, status_code=result.status_code)
        if isinstance(result, Err):
            raise result.error
        if isinstance(result, Ok):
            return JSONResponse(content=result.value)
        raise TypeError(f"Unknown result type: {type(result).__name__}")

    def _setup_petstore_routes(self):
        """Set up petstore routes."""

        @self.app.get("/")
        async def root():
            return {
                "service": self.service_name,
                "message": "Petstore query service",
                "resource_service": self.config.petstore_base_url,
            }

        @self.app.get("/demo/petstore-ssr")
        async def petstore_ssr(request: Request, status: List[str] = Query(default=["available"])) -> Dict[str, Any]:
            """Run the pets query on the server and return it with the dehydrated cache."""
            client = self.query_client_for(request)
            queries = PetstoreQueries(client, self.resource_client)

            key = await queries.prefetch_pets_by_status(status)
            pets = client.get_query_data(key)
            payload = client.dehydrate()

            self.logger.info(
                "Server render prefetched",
                statuses=sorted(set(status)),
                pets=len(pets or []),
                dehydrated=len(payload),
            )
            return {
                "pets": pets or [],
                "dehydratedState": payload.to_transport(),
            }

        @self.app.post("/auth/login")
        async def login_route(request: Request, body: LoginRequest):
            result = await login(request.session, body.email, body.password)
            return self.render_result(result)

        @self.app.post("/auth/logout")
        async def logout_route(request: Request):
            return self.render_result(logout(request.session))

        @self.app.get("/auth/me")
        async def me(request: Request):
            user = current_user(request.session)
            return {"user": user.model_dump() if user else None}


def create_app():
    """Create FastAPI application."""
    service = PetstoreService()
    return service.app


if __name__ == "__main__":
    service = PetstoreService()
    service.run()

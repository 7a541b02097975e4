"""
Integration tests for the server render to client hydration flow.
"""

import asyncio
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from service_petstore.app.adapters.petstore_client import PetstoreClient
from service_petstore.app.auth.credential_store import InMemoryCredentialStorage, store_token, stored_token_provider
from service_petstore.app.caching.client import QueryClient
from service_petstore.app.caching.hydration import HydrationPayload
from service_petstore.app.caching.keys import PetstoreKeys
from service_petstore.app.main import PetstoreService
from service_petstore.app.queries import PetstoreQueries
from shared.retry import RetryConfig


class FakePetstore:
    """In-process stand-in for the petstore REST service."""

    def __init__(self):
        self.pets = {1: {"id": 1, "name": "rex", "status": "available"}}
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "GET" and path.endswith("/pet/findByStatus"):
            statuses = request.url.params.get_list("status")
            return httpx.Response(200, json=[pet for pet in self.pets.values() if pet["status"] in statuses])
        if request.method == "POST" and path.endswith("/pet"):
            pet = json.loads(request.content)
            pet["id"] = max(self.pets) + 1
            self.pets[pet["id"]] = pet
            return httpx.Response(200, json=pet)
        if request.method == "GET" and path.endswith("/store/inventory"):
            counts = {}
            for pet in self.pets.values():
                counts[pet["status"]] = counts.get(pet["status"], 0) + 1
            return httpx.Response(200, json=counts)
        return httpx.Response(404)


class TestSsrHydrationFlow:
    """Server prefetch, dehydrate, transport and client hydrate."""

    @pytest.fixture
    def petstore(self):
        return FakePetstore()

    @pytest.fixture
    def resource(self, petstore):
        return PetstoreClient(
            "http://petstore.test/v2",
            retry_config=RetryConfig(max_attempts=1),
            transport=httpx.MockTransport(petstore),
        )

    def test_server_payload_hydrates_client_without_refetch(self, petstore, resource):
        service = PetstoreService(resource_client=resource)
        with TestClient(service.app) as http:
            rendered = http.get("/demo/petstore-ssr").json()
        assert len(petstore.requests) == 1

        async def client_side():
            browser = QueryClient(stale_time=120.0)
            assert browser.hydrate(HydrationPayload.from_transport(rendered["dehydratedState"])) == 1
            queries = PetstoreQueries(browser, resource)
            return await queries.find_pets_by_status(["available"])

        pets = asyncio.run(client_side())

        assert pets == rendered["pets"]
        assert len(petstore.requests) == 1

    @pytest.mark.asyncio
    async def test_mutation_refreshes_hydrated_queries(self, petstore, resource):
        server = QueryClient(stale_time=120.0)
        await PetstoreQueries(server, resource).prefetch_pets_by_status(["available"])
        wire = server.dehydrate().to_json()

        storage = InMemoryCredentialStorage()
        store_token(storage, "abc")
        browser = QueryClient(auth=stored_token_provider(storage), stale_time=120.0)
        browser.hydrate(HydrationPayload.from_json(wire))
        queries = PetstoreQueries(browser, resource)

        await queries.add_pet({"name": "tom", "status": "available", "photoUrls": []})
        pets = await queries.find_pets_by_status(["available"])

        assert [pet["name"] for pet in pets] == ["rex", "tom"]
        assert petstore.requests[-1].headers["Authorization"] == "Bearer abc"
        assert browser.get_entry(PetstoreKeys.pets_by_status(["available"])).status.value == "success"

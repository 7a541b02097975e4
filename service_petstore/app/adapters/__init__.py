"""
Adapters package for the petstore service.

HTTP client wrappers for the resource service. Adapters own base URLs,
request shapes, retries and error mapping to the shared error types, and
take credentials from the per-call context only.
"""

from .petstore_client import PetstoreClient, ResourceClient

__all__ = [
    "PetstoreClient",
    "ResourceClient",
]

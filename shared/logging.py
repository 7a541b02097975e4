"""
Structured logging for the petstore query layer.

Events are rendered as JSON lines by structlog. Three context variables are
merged into every event by processors: the HTTP request id, the signed-in
user, and the query fields bound with ``query_context`` (the cache key a
fetch works on, the prefix an invalidation sweeps, the fetch outcome).

asyncio tasks copy the context they are created in, so a key bound around a
fetch also tags whatever the resource client logs while serving it, and a
refetch scheduled by an invalidation carries the invalidated prefix.
"""

import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional

import structlog

request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar('user_id', default=None)
query_var: ContextVar[Optional[Dict[str, Any]]] = ContextVar('query', default=None)


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Route structlog through stdlib logging as JSON on stdout."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            ServiceName(service_name),
            add_correlation_context,
            add_query_context,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )


class ServiceName:
    """Processor stamping the emitting service on each event."""

    def __init__(self, service_name: str):
        self.service_name = service_name

    def __call__(self, logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", self.service_name)
        return event_dict


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    request_id = request_id_var.get()
    if request_id:
        event_dict.setdefault("request_id", request_id)

    user_id = user_id_var.get()
    if user_id:
        event_dict.setdefault("user_id", user_id)

    return event_dict


def add_query_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Merge fields bound by ``query_context``; explicit event fields win."""
    for name, value in (query_var.get() or {}).items():
        event_dict.setdefault(name, value)
    return event_dict


@contextmanager
def query_context(**fields: Any) -> Iterator[Dict[str, Any]]:
    """Bind query fields to every event logged inside the block.

    Tuple values (cache keys) are stored as lists. Nested blocks extend the
    enclosing fields; leaving a block restores them.
    """
    bound = dict(query_var.get() or {})
    bound.update({name: _as_list(value) for name, value in fields.items()})
    token = query_var.set(bound)
    try:
        yield bound
    finally:
        query_var.reset(token)


def annotate_query(**fields: Any) -> None:
    """Add fields to the innermost ``query_context`` (e.g. the fetch outcome)."""
    bound = query_var.get()
    if bound is not None:
        bound.update({name: _as_list(value) for name, value in fields.items()})


def _as_list(value: Any) -> Any:
    if isinstance(value, (tuple, list)):
        return [_as_list(item) for item in value]
    return value


def set_request_id(request_id: Optional[str] = None) -> str:
    """Set the request id for the current task, generating one if absent."""
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def set_user_context(user_id: Optional[str] = None):
    if user_id:
        user_id_var.set(user_id)


def clear_context():
    request_id_var.set(None)
    user_id_var.set(None)
    query_var.set(None)


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)

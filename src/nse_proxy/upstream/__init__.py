"""Clients for the upstream NSE website and JSON API."""

from .endpoints import ENDPOINTS, EndpointKind, EndpointSpec, resolve_endpoint
from .fetcher import SymbolFetcher
from .session import SessionContext, SessionEstablisher, SessionProvider

__all__ = [
    "ENDPOINTS",
    "EndpointKind",
    "EndpointSpec",
    "SessionContext",
    "SessionEstablisher",
    "SessionProvider",
    "SymbolFetcher",
    "resolve_endpoint",
]

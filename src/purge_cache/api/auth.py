"""Bearer token authentication and scope checks.

Each configured client has an access token and a list of scopes. A granted
scope satisfies a required one if it is equal to it, or if it ends in `*`
and the required scope starts with everything before the `*`.
"""
from __future__ import annotations

import hmac
from collections.abc import Iterable

from fastapi import Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from purge_cache.config import ClientCredentials
from purge_cache.errors import AuthenticationFailed, InsufficientScopes

security = HTTPBearer(auto_error=False)


def purge_scope(provisioner_id: str, worker_type: str, cache_name: str) -> str:
    return f"purge-cache:{provisioner_id}/{worker_type}:{cache_name}"


def scope_satisfied(granted: Iterable[str], required: str) -> bool:
    for scope in granted:
        if scope == required:
            return True
        if scope.endswith("*") and required.startswith(scope[:-1]):
            return True
    return False


class ClientRegistry:
    """Lookup of configured clients by access token."""

    def __init__(self, clients: Iterable[ClientCredentials]) -> None:
        self._clients = list(clients)

    def find(self, token: str) -> ClientCredentials | None:
        for client in self._clients:
            if hmac.compare_digest(client.access_token.encode(), token.encode()):
                return client
        return None


async def authenticate(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Security(security),
) -> ClientCredentials:
    """Resolve the Bearer token to a configured client."""
    if credentials is None:
        raise AuthenticationFailed("Missing bearer token")
    client = request.app.state.clients.find(credentials.credentials)
    if client is None:
        raise AuthenticationFailed("Invalid token")
    return client


def require_scope(client: ClientCredentials, required: str) -> None:
    if not scope_satisfied(client.scopes, required):
        raise InsufficientScopes(required)

"""
Identity resolution for relay endpoints.

Two modes:
  - authenticated: a bearer token verified against the identity provider
    (GoTrue-style `/auth/v1/user` endpoint). Yields the provider's user id.
  - anonymous: best-effort client address, used only as a rate-limit key.

The webhook's shared-secret check lives here too since it is the same
kind of gate: it runs before anything else touches the request.
"""

from __future__ import annotations

import hmac
import logging

import httpx
from fastapi import Request

from scoutrelay.errors import ServerMisconfigured, Unauthorized

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT = "unknown"


def client_address(request: Request) -> str:
    """First X-Forwarded-For hop, else the peer address, else 'unknown'."""
    xff = request.headers.get("x-forwarded-for", "")
    if xff.strip():
        return xff.split(",")[0].strip() or UNKNOWN_CLIENT
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_CLIENT


def bearer_token(authorization: str | None) -> str:
    """Extract the token from an Authorization header or raise Unauthorized."""
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthorized()
    token = authorization[7:].strip()
    if not token:
        raise Unauthorized()
    return token


def verify_shared_secret(expected: str, provided: str | None):
    """
    Constant-time comparison of the webhook secret.
    An unset expected secret rejects everything.
    """
    if not expected or not provided:
        raise Unauthorized()
    if not hmac.compare_digest(expected.encode(), str(provided).encode()):
        raise Unauthorized()


class IdentityResolver:
    """Verifies bearer tokens against the identity provider."""

    def __init__(
        self,
        auth_url: str,
        anon_key: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.auth_url = (auth_url or "").rstrip("/")
        self.anon_key = anon_key or ""
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.auth_url and self.anon_key)

    async def resolve(self, request: Request) -> str:
        """Return the caller's verified user id."""
        return await self.verify(bearer_token(request.headers.get("authorization")))

    async def verify(self, token: str) -> str:
        if not self.configured:
            raise ServerMisconfigured()

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(
                    f"{self.auth_url}/auth/v1/user",
                    headers={
                        "apikey": self.anon_key,
                        "Authorization": f"Bearer {token}",
                    },
                )
        except httpx.HTTPError as e:
            logger.warning("Identity provider unreachable: %s", e)
            raise Unauthorized("Invalid token") from e

        if resp.status_code != 200:
            logger.info("Token rejected by identity provider (HTTP %d)", resp.status_code)
            raise Unauthorized("Invalid token")

        try:
            user_id = resp.json().get("id", "")
        except ValueError:
            user_id = ""
        if not user_id:
            raise Unauthorized("Invalid token")
        return str(user_id)

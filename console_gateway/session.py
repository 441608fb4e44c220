from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from console_gateway.errors import GatewayError, NotAuthenticated
from console_gateway.models import SessionCredential

if TYPE_CHECKING:
    from console_gateway.clients.upstream import UpstreamGateway


logger = logging.getLogger(__name__)

TICKET_PREFIX = "PVEAuthCookie="


class CredentialHolder:
    """Owns the credential pair for one client session.

    The gateway reads from the holder on every call; only ``authenticate`` and
    ``clear`` write to it.
    """

    def __init__(self, credential: SessionCredential | None = None):
        self._credential = credential

    @classmethod
    def from_headers(
        cls, authorization: str | None, csrf_token: str | None
    ) -> CredentialHolder:
        if not authorization or not csrf_token or not csrf_token.strip():
            return cls()
        ticket = authorization.strip()
        if ticket.startswith(TICKET_PREFIX):
            ticket = ticket[len(TICKET_PREFIX) :]
        if not ticket:
            return cls()
        # The identity is embedded in the ticket (PVE:<user@realm>:...).
        parts = ticket.split(":")
        username = parts[1] if len(parts) > 2 and parts[0] == "PVE" else ""
        return cls(SessionCredential(ticket, csrf_token.strip(), username))

    @property
    def is_authenticated(self) -> bool:
        return self._credential is not None

    def current(self) -> SessionCredential | None:
        return self._credential

    def require(self) -> SessionCredential:
        if self._credential is None:
            raise NotAuthenticated()
        return self._credential

    def clear(self) -> None:
        self._credential = None

    async def authenticate(
        self, gateway: UpstreamGateway, identity: str, secret: str
    ) -> SessionCredential:
        try:
            credential = await gateway.authenticate(identity, secret)
        except GatewayError:
            self.clear()
            raise
        self._credential = credential
        logger.info("session authenticated user=%s", credential.username)
        return credential

"""Connection handle interfaces (for dependency injection)."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from pairbot.storage import CredentialBlob
    from pairbot.transport.events import ConnectionEvent


class ConnectionHandle(Protocol):
    """One live authenticated connection to the messaging service.

    The handle owns its transport; callers only see the event stream and
    the request methods below. Methods raise TransportError subclasses on
    failure.
    """

    session_id: str

    @property
    def supports_profile_status(self) -> bool:
        """Whether update_profile_status does anything for this handle."""
        ...

    def events(self) -> AsyncIterator[ConnectionEvent]:
        """Ordered stream of lifecycle, credential and message events.

        The stream ends after a ``close`` update or when the handle is
        terminated.
        """
        ...

    async def send_message(self, jid: str, content: dict[str, Any]) -> None: ...

    async def send_presence(self, presence: str, jid: str | None = None) -> None: ...

    async def update_profile_status(self, text: str) -> None:
        """Set the account's "about" text (no-op when unsupported)."""
        ...

    async def profile_picture_url(self, jid: str) -> str | None:
        """URL of the full-size profile picture, or None if there is none."""
        ...

    async def request_pairing_code(self, phone: str) -> str: ...

    async def logout(self) -> None:
        """Unlink this device from the account (the remote side forgets it)."""
        ...

    async def terminate(self) -> None:
        """Drop the transport without logging out. Idempotent."""
        ...


class ConnectionFactory(Protocol):
    """Protocol for creating connection handles."""

    async def create(
        self,
        session_id: str,
        blob: CredentialBlob,
        *,
        pairing: bool = False,
    ) -> ConnectionHandle:
        """Open a handle for a session from its stored credentials.

        Args:
            session_id: Session the handle belongs to
            blob: Credentials loaded from the credential store
            pairing: Open in pairing mode (no registered identity yet)
        """
        ...

"""Discord nickname sync for linked players.

Decides when a Discord user's nickname should follow their TETR.IO username.
The rename itself is done by an injected ``renamer`` (the bot), so failures on
the Discord side never touch stored records.
"""

from typing import Awaitable, Callable, Optional

import httpx
import structlog
from pydantic import BaseModel, ConfigDict

from .events import LinkRemoved, ResolverEvent

logger = structlog.get_logger(__name__)

# Discord rejects nicknames longer than this
MAX_NICKNAME_LENGTH = 32

Renamer = Callable[[str, str], Awaitable[None]]


class RenameDecision(BaseModel):
    """Whether a rename should be requested, and to what."""

    chat_identity: str
    requested: bool
    display_name: Optional[str] = None

    model_config = ConfigDict(frozen=True)


def display_name_for(username: str) -> str:
    """Nickname for a TETR.IO username, cut to Discord's limit."""
    return username.strip()[:MAX_NICKNAME_LENGTH]


class PresenceSync:
    """Turns ``UsernameChanged`` events into nickname change requests.

    Remembers the last requested nickname per Discord user until that user's
    link is removed.
    """

    def __init__(self, renamer: Optional[Renamer] = None):
        """
        Args:
            renamer: ``await renamer(chat_identity, display_name)`` performs
                the rename; without one, decisions are only logged
        """
        self._renamer = renamer
        self._requested: dict[str, str] = {}

    def on_username_changed(
        self, chat_identity: str, new_username: str
    ) -> RenameDecision:
        """Decide on a rename; repeating the same target is a no-op."""
        display_name = display_name_for(new_username)
        if not display_name or self._requested.get(chat_identity) == display_name:
            return RenameDecision(chat_identity=chat_identity, requested=False)

        self._requested[chat_identity] = display_name
        return RenameDecision(
            chat_identity=chat_identity, requested=True, display_name=display_name
        )

    def forget(self, chat_identity: str) -> None:
        """Drop the remembered target so the next event requests again."""
        self._requested.pop(chat_identity, None)

    async def handle(self, event: ResolverEvent) -> RenameDecision:
        """Resolver listener: decide and, if needed, ask the bot to rename.

        A removed link drops the remembered target, so relinking later renames
        again.
        """
        if isinstance(event, LinkRemoved):
            self.forget(event.chat_identity)
            return RenameDecision(chat_identity=event.chat_identity, requested=False)

        decision = self.on_username_changed(event.chat_identity, event.new_username)
        if not decision.requested:
            logger.debug(
                "Nickname already requested, skipping",
                chat_identity=event.chat_identity,
            )
            return decision

        logger.info(
            "Requesting nickname change",
            chat_identity=event.chat_identity,
            display_name=decision.display_name,
            old_username=event.old_username,
        )
        if self._renamer is None:
            return decision

        try:
            await self._renamer(event.chat_identity, decision.display_name)
        except Exception:
            self.forget(event.chat_identity)
            raise
        return decision


class WebhookRenamer:
    """Renamer that asks the bot to change a nickname over HTTP.

    Posts ``{"chat_identity": ..., "display_name": ...}`` to ``url``; any
    non-2xx answer raises so ``PresenceSync`` retries on the next event.
    """

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds), transport=transport
        )

    async def __call__(self, chat_identity: str, display_name: str) -> None:
        response = await self._client.post(
            self.url,
            json={"chat_identity": chat_identity, "display_name": display_name},
        )
        response.raise_for_status()

    async def close(self) -> None:
        await self._client.aclose()

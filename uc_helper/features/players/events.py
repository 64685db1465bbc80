"""Events emitted by the identity resolver after a write commits."""

from typing import Awaitable, Callable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict


class UsernameChanged(BaseModel):
    """The stored TETR.IO username for a Discord user changed.

    Also emitted when an account is attached to the record, even under an
    unchanged name. ``old_username`` is None on the first link.
    """

    chat_identity: str
    game_account_id: str
    old_username: Optional[str] = None
    new_username: str

    model_config = ConfigDict(frozen=True)


class LinkRemoved(BaseModel):
    """A Discord user's record no longer holds its TETR.IO account."""

    chat_identity: str
    game_account_id: str
    reason: Literal["unlinked", "superseded"]

    model_config = ConfigDict(frozen=True)


ResolverEvent = Union[UsernameChanged, LinkRemoved]

ResolverEventListener = Callable[[ResolverEvent], Union[None, Awaitable[None]]]

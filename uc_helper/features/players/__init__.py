"""Players feature - Discord to TETR.IO identity linking and lookups."""

from .router import router as players_router
from .resolver import IdentityResolver
from .repository import PlayerRecordStore, PlayerRecordStoreInterface
from .presence import PresenceSync, RenameDecision, WebhookRenamer
from .events import LinkRemoved, UsernameChanged
from .schemas import (
    PlayerRecord,
    PlayerInfo,
    LiveLookup,
    LinkResult,
    RefreshReport,
    RefreshFailure,
)

__all__ = [
    "players_router",
    "IdentityResolver",
    "PlayerRecordStore",
    "PlayerRecordStoreInterface",
    "PresenceSync",
    "RenameDecision",
    "WebhookRenamer",
    "UsernameChanged",
    "LinkRemoved",
    "PlayerRecord",
    "PlayerInfo",
    "LiveLookup",
    "LinkResult",
    "RefreshReport",
    "RefreshFailure",
]

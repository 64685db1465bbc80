"""Pydantic schemas for player records and the players API."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from uc_helper.core.enums import RankTier
from uc_helper.core.tetrio.models import LeagueStats
from .events import UsernameChanged


class PlayerRecord(BaseModel):
    """A persisted player record.

    ``version`` is 0 for a record that has never been stored.
    """

    chat_identity: str = Field(..., min_length=1, max_length=32)
    game_username: str = Field(..., min_length=1, max_length=32)
    game_account_id: Optional[str] = Field(None, description="TETR.IO _id")
    stats: Optional[LeagueStats] = None
    linked_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = Field(0, ge=0)

    model_config = ConfigDict(frozen=True)

    @property
    def linked(self) -> bool:
        """Whether the record still holds a TETR.IO account."""
        return self.game_account_id is not None


class StatsResponse(BaseModel):
    """League stats as shown to the bot."""

    apm: Optional[float] = None
    pps: Optional[float] = None
    vs: Optional[float] = None
    rating: float
    rating_deviation: Optional[float] = None
    glicko: Optional[float] = None
    rank_tier: RankTier
    rank_color: str = Field(..., description="Hex color of the rank tier")
    games_played: int
    games_won: int
    fetched_at: datetime


class PlayerInfo(BaseModel):
    """``whois`` answer backed by a stored record."""

    kind: Literal["record"] = "record"
    chat_identity: str
    game_username: str
    game_account_id: Optional[str] = None
    linked: bool
    linked_at: Optional[datetime] = None
    stats: Optional[StatsResponse] = None
    age_seconds: Optional[float] = Field(
        None, description="Age of the stats snapshot; None when never fetched"
    )
    is_stale: bool = Field(
        ..., description="Snapshot missing or older than the freshness window"
    )


class LiveLookup(BaseModel):
    """``whois`` answer fetched live for a player nobody linked. Never persisted."""

    kind: Literal["live"] = "live"
    game_username: str
    game_account_id: str
    linked: bool = False
    stats: StatsResponse


class LinkResult(BaseModel):
    """Outcome of a successful link."""

    record: PlayerRecord
    created: bool
    superseded_chat_identity: Optional[str] = Field(
        None, description="Discord user whose record was orphaned by this link"
    )
    events: list[UsernameChanged] = Field(default_factory=list)


class LinkRequest(BaseModel):
    """Body of ``POST /players/link``."""

    chat_identity: str = Field(..., min_length=1, max_length=32)
    username: str = Field(..., min_length=1, max_length=64)


class LinkResponse(BaseModel):
    """Response of ``POST /players/link``."""

    player: PlayerInfo
    created: bool
    superseded_chat_identity: Optional[str] = None
    username_changed: bool


class RefreshRequest(BaseModel):
    """Body of ``POST /players/refresh-stale``."""

    max_age_minutes: Optional[int] = Field(
        None, gt=0, description="Defaults to the configured freshness window"
    )


class RefreshFailure(BaseModel):
    """One record the sweep could not refresh."""

    chat_identity: str
    game_account_id: Optional[str] = None
    reason: str


class RefreshReport(BaseModel):
    """Outcome of a stale stats sweep."""

    succeeded: list[str] = Field(
        default_factory=list, description="Chat identities refreshed"
    )
    failed: list[RefreshFailure] = Field(default_factory=list)
    skipped: bool = Field(
        False, description="True when another sweep was already running"
    )

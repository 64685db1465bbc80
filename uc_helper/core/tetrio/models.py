"""Pydantic models for TETR.IO API response data.

The DTOs mirror the wire format. ``to_snapshot`` is the only way raw
responses turn into the typed ``StatsSnapshot`` the rest of the app sees;
values outside what the store can hold are rejected there instead of being
coerced.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from uc_helper.core.enums import RankTier
from .errors import InvalidResponseError

ACCOUNT_ID_PATTERN = r"^[0-9a-f]{24}$"

# Largest value a signed 64-bit column holds
MAX_STORED_INT = 2**63 - 1

# TR is -1 until ten games are played and tops out at 25000
MIN_RATING = -1.0
MAX_RATING = 25000.0


class LeagueDTO(BaseModel):
    """TETRA LEAGUE block of a user object.

    The optional fields are None when the user never played a ranked game.
    """

    gamesplayed: int = Field(0, ge=0, le=MAX_STORED_INT)
    gameswon: int = Field(0, ge=0, le=MAX_STORED_INT)
    rating: float = Field(MIN_RATING, ge=MIN_RATING, le=MAX_RATING)
    rank: Optional[str] = None
    glicko: Optional[float] = Field(None, ge=0)
    rd: Optional[float] = Field(None, ge=0, le=1000)
    apm: Optional[float] = Field(None, ge=0)
    pps: Optional[float] = Field(None, ge=0)
    vs: Optional[float] = Field(None, ge=0)

    model_config = ConfigDict(allow_inf_nan=False, extra="ignore")


class UserDTO(BaseModel):
    """TETR.IO user object (only the fields this app reads)."""

    id: str = Field(..., alias="_id", pattern=ACCOUNT_ID_PATTERN)
    username: str = Field(..., min_length=1, max_length=32)
    league: LeagueDTO = Field(default_factory=LeagueDTO)

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class UserDataDTO(BaseModel):
    """``data`` member of the users endpoint envelope.

    ``user`` stays raw here; ``to_snapshot`` validates it field by field.
    """

    user: Dict[str, Any]


class UserResponseDTO(BaseModel):
    """Envelope returned by ``GET /users/{user}``."""

    success: bool
    error: Optional[Any] = None
    data: Optional[UserDataDTO] = None

    model_config = ConfigDict(extra="ignore")


class LeagueStats(BaseModel):
    """Ranked statistics as stored and displayed, with the time they were fetched."""

    apm: Optional[float] = None
    pps: Optional[float] = None
    vs: Optional[float] = None
    rating: float
    rating_deviation: Optional[float] = None
    glicko: Optional[float] = None
    rank_tier: RankTier = RankTier.UNRANKED
    games_played: int = 0
    games_won: int = 0
    fetched_at: datetime

    model_config = ConfigDict(frozen=True)

    def same_values(self, other: "LeagueStats") -> bool:
        """Compare everything except ``fetched_at``."""
        return self.model_dump(exclude={"fetched_at"}) == other.model_dump(
            exclude={"fetched_at"}
        )


class StatsSnapshot(BaseModel):
    """A user's identity and ranked statistics as returned by the API."""

    account_id: str
    username: str
    stats: LeagueStats

    model_config = ConfigDict(frozen=True)


def to_snapshot(payload: Dict[str, Any], fetched_at: datetime) -> StatsSnapshot:
    """Validate a raw ``data.user`` payload and convert it to a snapshot.

    :param payload: The ``user`` object from the response envelope
    :param fetched_at: When the response was received
    :returns: Typed snapshot
    :raises InvalidResponseError: If the payload is malformed or out of range
    """
    try:
        user = UserDTO.model_validate(payload)
    except ValidationError as e:
        raise InvalidResponseError(
            f"Rejected user payload: {e.error_count()} invalid field(s)",
            response_data={"errors": e.errors(include_url=False, include_input=False)},
        ) from e

    league = user.league
    return StatsSnapshot(
        account_id=user.id,
        username=user.username,
        stats=LeagueStats(
            apm=league.apm,
            pps=league.pps,
            vs=league.vs,
            rating=league.rating,
            rating_deviation=league.rd,
            glicko=league.glicko,
            rank_tier=RankTier.from_api(league.rank),
            games_played=league.gamesplayed,
            games_won=league.gameswon,
            fetched_at=fetched_at,
        ),
    )

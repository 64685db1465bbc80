"""Transformers for converting between layers in the players feature.

- ORM rows → ``PlayerRecord`` (and back to column values)
- ``PlayerRecord`` / ``StatsSnapshot`` → API responses
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from uc_helper.core.enums import RankTier
from uc_helper.core.tetrio.models import LeagueStats, StatsSnapshot
from .orm_models import PlayerRecordORM
from .schemas import LiveLookup, PlayerInfo, PlayerRecord, StatsResponse


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return an aware UTC datetime.

    SQLite hands back naive values; they are stored as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def orm_to_record(row: PlayerRecordORM) -> PlayerRecord:
    """Transform a ``PlayerRecordORM`` row into a ``PlayerRecord``.

    :param row: Row loaded from the database
    :returns: Immutable record
    """
    stats = None
    if row.fetched_at is not None and row.rating is not None:
        stats = LeagueStats(
            apm=row.apm,
            pps=row.pps,
            vs=row.vs,
            rating=row.rating,
            rating_deviation=row.rating_deviation,
            glicko=row.glicko,
            rank_tier=RankTier.from_api(row.rank_tier),
            games_played=row.games_played or 0,
            games_won=row.games_won or 0,
            fetched_at=as_utc(row.fetched_at),
        )

    return PlayerRecord(
        chat_identity=row.chat_identity,
        game_username=row.game_username,
        game_account_id=row.game_account_id,
        stats=stats,
        linked_at=as_utc(row.linked_at),
        updated_at=as_utc(row.updated_at),
        version=row.version,
    )


def record_to_values(record: PlayerRecord) -> Dict[str, Any]:
    """Column values for an INSERT or UPDATE of ``record``.

    ``version``, ``updated_at`` and ``linked_at`` are left to the store.
    """
    stats = record.stats
    values: Dict[str, Any] = {
        "chat_identity": record.chat_identity,
        "game_username": record.game_username,
        "game_account_id": record.game_account_id,
        "apm": None,
        "pps": None,
        "vs": None,
        "rating": None,
        "rating_deviation": None,
        "glicko": None,
        "rank_tier": None,
        "games_played": None,
        "games_won": None,
        "fetched_at": None,
    }
    if stats is not None:
        values.update(
            apm=stats.apm,
            pps=stats.pps,
            vs=stats.vs,
            rating=stats.rating,
            rating_deviation=stats.rating_deviation,
            glicko=stats.glicko,
            rank_tier=stats.rank_tier.value,
            games_played=stats.games_played,
            games_won=stats.games_won,
            fetched_at=as_utc(stats.fetched_at),
        )
    return values


def stats_to_response(stats: LeagueStats) -> StatsResponse:
    """Transform ``LeagueStats`` into the API shape, adding the rank color."""
    return StatsResponse(
        **stats.model_dump(),
        rank_color=stats.rank_tier.color,
    )


def record_to_info(
    record: PlayerRecord, now: datetime, stale_after: timedelta
) -> PlayerInfo:
    """Transform a ``PlayerRecord`` into a ``PlayerInfo`` with its staleness.

    :param record: Stored record
    :param now: Current time (aware)
    :param stale_after: Freshness window
    :returns: Player info; a record without a snapshot is always stale
    """
    age_seconds = None
    is_stale = True
    if record.stats is not None:
        age = now - as_utc(record.stats.fetched_at)
        age_seconds = max(age.total_seconds(), 0.0)
        is_stale = age > stale_after

    return PlayerInfo(
        chat_identity=record.chat_identity,
        game_username=record.game_username,
        game_account_id=record.game_account_id,
        linked=record.linked,
        linked_at=record.linked_at,
        stats=stats_to_response(record.stats) if record.stats else None,
        age_seconds=age_seconds,
        is_stale=is_stale,
    )


def snapshot_to_live(snapshot: StatsSnapshot) -> LiveLookup:
    """Transform a fresh ``StatsSnapshot`` into a ``LiveLookup``."""
    return LiveLookup(
        game_username=snapshot.username,
        game_account_id=snapshot.account_id,
        stats=stats_to_response(snapshot.stats),
    )

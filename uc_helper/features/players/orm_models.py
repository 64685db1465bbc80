"""SQLAlchemy 2.0 ORM model for persisted player records."""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    DateTime as SQLDateTime,
    Float,
    Index,
    Integer,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from uc_helper.core.models import Base


class PlayerRecordORM(Base):
    """One Discord user and the TETR.IO account they linked.

    The stats columns are a cache of the last TETRA LEAGUE snapshot; they are
    all null until the first successful fetch.
    """

    __tablename__ = "player_records"

    # Discord snowflake as a string
    chat_identity: Mapped[str] = mapped_column(
        String(32),
        primary_key=True,
        comment="Discord user id",
    )

    # Null once the record is orphaned by a superseding link or an unlink
    game_account_id: Mapped[Optional[str]] = mapped_column(
        String(24),
        nullable=True,
        unique=True,
        comment="TETR.IO user _id",
    )

    game_username: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="Last known TETR.IO username, display case",
    )

    # League snapshot
    apm: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    pps: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    vs: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    rating: Mapped[Optional[float]] = mapped_column(
        Float, nullable=True, comment="TR, -1 while unranked"
    )
    rating_deviation: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    glicko: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    rank_tier: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    games_played: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    games_won: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    fetched_at: Mapped[Optional[datetime]] = mapped_column(
        SQLDateTime(timezone=True),
        nullable=True,
        index=True,
        comment="When the snapshot was received from TETR.IO",
    )

    # Timestamps
    linked_at: Mapped[datetime] = mapped_column(
        SQLDateTime(timezone=True),
        nullable=False,
        comment="When the current account was first linked",
    )
    updated_at: Mapped[datetime] = mapped_column(
        SQLDateTime(timezone=True),
        nullable=False,
        comment="Last write",
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Incremented on every write; optimistic concurrency token",
    )

    def __repr__(self) -> str:
        return (
            f"<PlayerRecordORM(chat_identity='{self.chat_identity}', "
            f"game_username='{self.game_username}', version={self.version})>"
        )


Index(
    "ix_player_records_game_username_lower",
    func.lower(PlayerRecordORM.game_username),
)

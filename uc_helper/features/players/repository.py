"""Repository pattern implementation for player records.

Every store operation runs in its own session and transaction and is bounded
by the store timeout. Driver errors never leave this module as SQLAlchemy
exceptions: unique violations and lost optimistic races become
``ConflictError``, connectivity failures and timeouts ``StoreUnavailableError``.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, TypeVar

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from uc_helper.core.exceptions import ConflictError, StoreUnavailableError
from uc_helper.core.tetrio.client import normalize_username
from .orm_models import PlayerRecordORM
from .schemas import PlayerRecord
from .transformers import as_utc, orm_to_record, record_to_values

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class PlayerRecordStoreInterface(ABC):
    """Interface for the player record store.

    Enables swapping the SQL implementation for a fake in tests.
    """

    @abstractmethod
    async def get_by_chat_identity(self, chat_identity: str) -> Optional[PlayerRecord]:
        """Get a record by Discord user id.

        :param chat_identity: Discord user id
        :returns: PlayerRecord if found, None otherwise
        """
        pass

    @abstractmethod
    async def get_by_account_id(self, account_id: str) -> Optional[PlayerRecord]:
        """Get the record currently holding a TETR.IO account.

        :param account_id: TETR.IO _id
        :returns: PlayerRecord if found, None otherwise
        """
        pass

    @abstractmethod
    async def find_by_username(self, username: str) -> Optional[PlayerRecord]:
        """Find a record by username, ignoring case.

        :param username: TETR.IO username in any case
        :returns: Most recently updated match, or None
        """
        pass

    @abstractmethod
    async def list_stale(self, cutoff: datetime) -> list[PlayerRecord]:
        """List linked records fetched before ``cutoff`` or never fetched.

        :param cutoff: Snapshots older than this are stale
        :returns: Stale records, oldest snapshot first
        """
        pass

    @abstractmethod
    async def upsert(
        self, record: PlayerRecord, supersede: bool = False
    ) -> PlayerRecord:
        """Insert or conditionally update a record in one transaction.

        :param record: Record to write; ``version`` 0 inserts, otherwise the
            stored version must match
        :param supersede: Clear the account id on any other record holding it
        :returns: Stored record with its new version
        :raises ConflictError: On a unique violation or a version mismatch
        """
        pass

    @abstractmethod
    async def remove(self, chat_identity: str) -> bool:
        """Delete a record.

        :param chat_identity: Discord user id
        :returns: True if a record was deleted
        """
        pass


class PlayerRecordStore(PlayerRecordStoreInterface):
    """SQLAlchemy implementation of the player record store."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        timeout_seconds: float = 5.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the store.

        :param session_factory: Factory producing one session per operation
        :param timeout_seconds: Upper bound for a single operation
        :param clock: Source of ``updated_at``/``linked_at`` timestamps
        """
        self._session_factory = session_factory
        self.timeout_seconds = timeout_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def _run(
        self,
        operation: str,
        work: Callable[[AsyncSession], Awaitable[T]],
        **context,
    ) -> T:
        """Run ``work`` inside a fresh transaction with the store timeout."""

        async def _transaction() -> T:
            async with self._session_factory() as session:
                async with session.begin():
                    return await work(session)

        try:
            return await asyncio.wait_for(_transaction(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            logger.warning(
                "Store operation timed out",
                operation=operation,
                timeout_seconds=self.timeout_seconds,
                **context,
            )
            raise StoreUnavailableError(
                f"{operation} timed out after {self.timeout_seconds}s",
                operation=operation,
                context=context,
                original_error=e,
            ) from e
        except IntegrityError as e:
            raise ConflictError(
                "Unique constraint violated",
                operation=operation,
                context=context,
                original_error=e,
            ) from e
        except (OperationalError, DBAPIError, OSError) as e:
            logger.error(
                "Store operation failed",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
                **context,
            )
            raise StoreUnavailableError(
                str(e),
                operation=operation,
                context=context,
                original_error=e,
            ) from e

    async def get_by_chat_identity(self, chat_identity: str) -> Optional[PlayerRecord]:
        """Get a record by Discord user id."""

        async def _work(session: AsyncSession) -> Optional[PlayerRecord]:
            row = await session.get(PlayerRecordORM, chat_identity)
            return orm_to_record(row) if row is not None else None

        return await self._run(
            "get_by_chat_identity", _work, chat_identity=chat_identity
        )

    async def get_by_account_id(self, account_id: str) -> Optional[PlayerRecord]:
        """Get the record currently holding a TETR.IO account."""

        async def _work(session: AsyncSession) -> Optional[PlayerRecord]:
            result = await session.execute(
                select(PlayerRecordORM).where(
                    PlayerRecordORM.game_account_id == account_id
                )
            )
            row = result.scalar_one_or_none()
            return orm_to_record(row) if row is not None else None

        return await self._run("get_by_account_id", _work, account_id=account_id)

    async def find_by_username(self, username: str) -> Optional[PlayerRecord]:
        """Find a record by username, ignoring case; newest write wins."""
        needle = normalize_username(username)

        async def _work(session: AsyncSession) -> Optional[PlayerRecord]:
            result = await session.execute(
                select(PlayerRecordORM)
                .where(func.lower(PlayerRecordORM.game_username) == needle)
                .order_by(
                    PlayerRecordORM.updated_at.desc(), PlayerRecordORM.chat_identity
                )
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return orm_to_record(row) if row is not None else None

        return await self._run("find_by_username", _work, username=needle)

    async def list_stale(self, cutoff: datetime) -> list[PlayerRecord]:
        """List linked records whose snapshot is older than ``cutoff``."""
        cutoff = as_utc(cutoff)

        async def _work(session: AsyncSession) -> list[PlayerRecord]:
            result = await session.execute(
                select(PlayerRecordORM)
                .where(
                    PlayerRecordORM.game_account_id.is_not(None),
                    (PlayerRecordORM.fetched_at.is_(None))
                    | (PlayerRecordORM.fetched_at < cutoff),
                )
                .order_by(
                    PlayerRecordORM.fetched_at.asc().nulls_first(),
                    PlayerRecordORM.chat_identity,
                )
            )
            return [orm_to_record(row) for row in result.scalars().all()]

        return await self._run("list_stale", _work, cutoff=cutoff.isoformat())

    async def upsert(
        self, record: PlayerRecord, supersede: bool = False
    ) -> PlayerRecord:
        """Insert or conditionally update ``record`` atomically."""
        chat_identity = record.chat_identity
        account_id = record.game_account_id

        async def _work(session: AsyncSession) -> PlayerRecord:
            now = self._clock()
            values = record_to_values(record)
            values["linked_at"] = as_utc(record.linked_at or now)
            values["updated_at"] = now

            if supersede and account_id is not None:
                orphaned = await session.execute(
                    update(PlayerRecordORM)
                    .where(
                        PlayerRecordORM.game_account_id == account_id,
                        PlayerRecordORM.chat_identity != chat_identity,
                    )
                    .values(
                        game_account_id=None,
                        version=PlayerRecordORM.version + 1,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if orphaned.rowcount:
                    logger.info(
                        "Orphaned previous holder of account",
                        account_id=account_id,
                        new_holder=chat_identity,
                    )

            if record.version == 0:
                session.add(PlayerRecordORM(**values, version=1))
                await session.flush()
            else:
                result = await session.execute(
                    update(PlayerRecordORM)
                    .where(
                        PlayerRecordORM.chat_identity == chat_identity,
                        PlayerRecordORM.version == record.version,
                    )
                    .values(**values, version=record.version + 1)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    raise ConflictError(
                        "Record changed since it was read",
                        operation="upsert",
                        context={
                            "chat_identity": chat_identity,
                            "expected_version": record.version,
                        },
                    )

            stored = await session.execute(
                select(PlayerRecordORM)
                .where(PlayerRecordORM.chat_identity == chat_identity)
                .execution_options(populate_existing=True)
            )
            return orm_to_record(stored.scalar_one())

        stored = await self._run(
            "upsert",
            _work,
            chat_identity=chat_identity,
            account_id=account_id,
            version=record.version,
        )
        logger.debug(
            "Player record written",
            chat_identity=chat_identity,
            account_id=account_id,
            version=stored.version,
        )
        return stored

    async def remove(self, chat_identity: str) -> bool:
        """Delete a record by Discord user id."""

        async def _work(session: AsyncSession) -> bool:
            result = await session.execute(
                delete(PlayerRecordORM).where(
                    PlayerRecordORM.chat_identity == chat_identity
                )
            )
            return result.rowcount > 0

        removed = await self._run("remove", _work, chat_identity=chat_identity)
        if removed:
            logger.info("Player record removed", chat_identity=chat_identity)
        return removed

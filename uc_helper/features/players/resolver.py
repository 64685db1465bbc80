"""Identity resolver: links Discord users to TETR.IO accounts and answers lookups.

This is the only layer that retries or reinterprets errors. Client errors
become the user-facing ``IdentityError`` subclasses; store conflicts are
retried and surface as ``LinkConflictError`` once the retries run out;
``StoreUnavailableError`` passes through unchanged.
"""

import asyncio
import inspect
import re
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Union

import structlog

from uc_helper.core.config import Settings, get_global_settings
from uc_helper.core.enums import RelinkPolicy
from uc_helper.core.exceptions import (
    ConflictError,
    InvalidQueryError,
    LinkConflictError,
    NotLinkedError,
    ServiceException,
    ServiceUnavailableError,
    UnknownPlayerError,
)
from uc_helper.core.tetrio.client import (
    TetrioAPIClient,
    looks_like_account_id,
    normalize_username,
)
from uc_helper.core.tetrio.errors import (
    BadRequestError,
    NotFoundError,
    TetrioAPIError,
)
from uc_helper.core.tetrio.models import LeagueStats, StatsSnapshot
from .events import (
    LinkRemoved,
    ResolverEvent,
    ResolverEventListener,
    UsernameChanged,
)
from .repository import PlayerRecordStoreInterface
from .schemas import (
    LinkResult,
    LiveLookup,
    PlayerInfo,
    PlayerRecord,
    RefreshFailure,
    RefreshReport,
)
from .transformers import record_to_info, snapshot_to_live

logger = structlog.get_logger(__name__)

# <@123> and the legacy nickname form <@!123>
MENTION_RE = re.compile(r"^<@!?(\d+)>$")


def parse_mention(text: str) -> Optional[str]:
    """Return the Discord user id of a mention, or None if ``text`` is not one."""
    match = MENTION_RE.match(text.strip())
    return match.group(1) if match else None


class IdentityResolver:
    """Reconciles Discord users, TETR.IO accounts and stored player records."""

    def __init__(
        self,
        client: TetrioAPIClient,
        store: PlayerRecordStoreInterface,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the resolver.

        Args:
            client: TETR.IO API client
            store: Player record store
            settings: Application settings (global settings if None)
            clock: Source of the current time, used for staleness
        """
        settings = settings or get_global_settings()
        self.client = client
        self.store = store
        self.relink_policy = settings.relink_policy
        self.link_conflict_retries = settings.link_conflict_retries
        self.stale_after = timedelta(minutes=settings.stale_after_minutes)
        self.refresh_concurrency = settings.refresh_concurrency
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._listeners: list[ResolverEventListener] = []
        self._refresh_lock = asyncio.Lock()

    # Events

    def subscribe(self, listener: ResolverEventListener) -> Callable[[], None]:
        """Register a listener for ``UsernameChanged`` and ``LinkRemoved`` events.

        Listeners may be plain functions or coroutines. They run after the
        write committed; a failing listener is logged and never undoes it.

        :returns: Callable that removes the listener again
        """
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def _emit(self, events: list[ResolverEvent]) -> None:
        for event in events:
            for listener in list(self._listeners):
                try:
                    result = listener(event)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    logger.error(
                        "Resolver event listener failed",
                        event_type=type(event).__name__,
                        chat_identity=event.chat_identity,
                        error=str(e),
                        exc_info=True,
                    )

    # Remote lookups

    async def _fetch(self, operation: str, query: str, by_account_id: bool = False):
        """Fetch a snapshot, translating client errors for the caller."""
        try:
            if by_account_id:
                return await self.client.fetch_by_account_id(query)
            return await self.client.fetch_by_username(query)
        except NotFoundError as e:
            raise UnknownPlayerError(
                f"No TETR.IO user named {query!r}",
                operation=operation,
                context={"query": query},
                original_error=e,
            ) from e
        except BadRequestError as e:
            raise InvalidQueryError(
                f"{query!r} is not a valid TETR.IO username",
                operation=operation,
                context={"query": query},
                original_error=e,
            ) from e
        except TetrioAPIError as e:
            logger.warning(
                "TETR.IO lookup failed",
                operation=operation,
                query=query,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ServiceUnavailableError(
                "TETR.IO is not answering, try again later",
                operation=operation,
                context={"query": query},
                original_error=e,
            ) from e

    # Link

    async def link(self, chat_identity: str, claimed_username: str) -> LinkResult:
        """
        Link a Discord user to the TETR.IO account behind ``claimed_username``.

        Args:
            chat_identity: Discord user id
            claimed_username: Username as typed by the user

        Returns:
            LinkResult with the stored record

        Raises:
            InvalidQueryError: Empty or malformed username
            UnknownPlayerError: TETR.IO has no such user
            ServiceUnavailableError: TETR.IO kept failing
            LinkConflictError: Account held by someone else under the reject
                policy, or the write kept losing races
            StoreUnavailableError: The store is unreachable
        """
        username = normalize_username(claimed_username)
        if not username:
            raise InvalidQueryError(
                "Username must not be empty",
                operation="link",
                context={"chat_identity": chat_identity},
            )

        snapshot = await self._fetch("link", username)

        for attempt in range(self.link_conflict_retries + 1):
            current = await self.store.get_by_chat_identity(chat_identity)
            holder = await self.store.get_by_account_id(snapshot.account_id)

            superseded = None
            if holder is not None and holder.chat_identity != chat_identity:
                if self.relink_policy == RelinkPolicy.REJECT:
                    raise LinkConflictError(
                        "That TETR.IO account is already linked to another user",
                        operation="link",
                        context={
                            "chat_identity": chat_identity,
                            "account_id": snapshot.account_id,
                            "holder": holder.chat_identity,
                        },
                    )
                superseded = holder.chat_identity

            record = self._reconcile(chat_identity, current, snapshot)
            try:
                stored = await self.store.upsert(
                    record, supersede=self.relink_policy == RelinkPolicy.SUPERSEDE
                )
            except ConflictError as e:
                logger.info(
                    "Link lost a write race, retrying",
                    chat_identity=chat_identity,
                    account_id=snapshot.account_id,
                    attempt=attempt + 1,
                    error=str(e),
                )
                continue

            events = self._username_events(current, stored)
            removed: list[ResolverEvent] = []
            if superseded is not None:
                logger.info(
                    "Account re-linked to a new Discord user",
                    account_id=stored.game_account_id,
                    chat_identity=chat_identity,
                    superseded_chat_identity=superseded,
                )
                removed.append(
                    LinkRemoved(
                        chat_identity=superseded,
                        game_account_id=snapshot.account_id,
                        reason="superseded",
                    )
                )
            await self._emit(removed + events)
            return LinkResult(
                record=stored,
                created=current is None,
                superseded_chat_identity=superseded,
                events=events,
            )

        raise LinkConflictError(
            "The link kept conflicting with concurrent updates",
            operation="link",
            context={
                "chat_identity": chat_identity,
                "account_id": snapshot.account_id,
                "attempts": self.link_conflict_retries + 1,
            },
        )

    def _reconcile(
        self,
        chat_identity: str,
        current: Optional[PlayerRecord],
        snapshot: StatsSnapshot,
    ) -> PlayerRecord:
        """Build the record to write for ``chat_identity`` from a fresh snapshot."""
        if current is None:
            return PlayerRecord(
                chat_identity=chat_identity,
                game_username=snapshot.username,
                game_account_id=snapshot.account_id,
                stats=snapshot.stats,
                linked_at=self._clock(),
            )

        if current.game_account_id != snapshot.account_id:
            return current.model_copy(
                update={
                    "game_username": snapshot.username,
                    "game_account_id": snapshot.account_id,
                    "stats": snapshot.stats,
                    "linked_at": self._clock(),
                }
            )

        return current.model_copy(
            update={
                "game_username": snapshot.username,
                "stats": _newest(current.stats, snapshot.stats),
            }
        )

    @staticmethod
    def _username_events(
        before: Optional[PlayerRecord], after: PlayerRecord
    ) -> list[UsernameChanged]:
        if after.game_account_id is None:
            return []
        old_username = before.game_username if before is not None else None
        attached = before is None or before.game_account_id != after.game_account_id
        if old_username == after.game_username and not attached:
            return []
        return [
            UsernameChanged(
                chat_identity=after.chat_identity,
                game_account_id=after.game_account_id,
                old_username=old_username,
                new_username=after.game_username,
            )
        ]

    # Whois

    def to_info(
        self, record: PlayerRecord, max_age: Optional[timedelta] = None
    ) -> PlayerInfo:
        """Describe a stored record with the age of its snapshot."""
        stale_after = max_age if max_age is not None else self.stale_after
        return record_to_info(record, self._clock(), stale_after)

    async def resolve(
        self, query: str, max_age: Optional[timedelta] = None
    ) -> Union[PlayerInfo, LiveLookup]:
        """
        Answer "who is this": a mention, Discord id, account id or username.

        Stored records are answered without touching the network. Only an
        unknown username or account id is fetched live, and the result is
        never stored.

        Args:
            query: Mention, Discord user id, TETR.IO account id or username
            max_age: Freshness window for ``is_stale`` (setting if None)

        Raises:
            InvalidQueryError: Empty or malformed query
            NotLinkedError: A mention of a Discord user with no record
            UnknownPlayerError: No such TETR.IO user
            ServiceUnavailableError: The live lookup failed
        """
        text = _query_text(query, "resolve")
        record = await self._find_local(text, "resolve")
        if record is None:
            return await self._live_lookup(text, "resolve")
        return self.to_info(record, max_age)

    async def stats(
        self, query: str, max_age: Optional[timedelta] = None
    ) -> Union[PlayerInfo, LiveLookup]:
        """
        Answer the ``stats`` command: like ``resolve``, but a linked record
        whose snapshot is older than the freshness window is refetched by
        account id and stored before it is returned.

        When the refetch fails the stored snapshot is returned as is, with
        ``is_stale`` set.

        Raises:
            InvalidQueryError: Empty or malformed query
            NotLinkedError: A mention of a Discord user with no record
            UnknownPlayerError: No such TETR.IO user
            ServiceUnavailableError: The live lookup failed
        """
        text = _query_text(query, "stats")
        record = await self._find_local(text, "stats")
        if record is None:
            return await self._live_lookup(text, "stats")

        if record.linked and self.to_info(record, max_age).is_stale:
            record = await self._refresh_on_demand(record)
        return self.to_info(record, max_age)

    async def _find_local(self, text: str, operation: str) -> Optional[PlayerRecord]:
        """Find the stored record a query refers to, without the network.

        Lookup order: mention, Discord user id, account id, username.
        """
        mentioned = parse_mention(text)
        if mentioned is not None:
            record = await self.store.get_by_chat_identity(mentioned)
            if record is None:
                raise NotLinkedError(
                    "That user has not linked a TETR.IO account",
                    operation=operation,
                    context={"chat_identity": mentioned},
                )
            return record

        record = await self.store.get_by_chat_identity(text)
        if record is not None:
            return record

        if looks_like_account_id(text):
            return await self.store.get_by_account_id(text.lower())

        return await self.store.find_by_username(text)

    async def _live_lookup(self, text: str, operation: str) -> LiveLookup:
        """Fetch a player nobody linked; the answer is never stored."""
        if looks_like_account_id(text):
            snapshot = await self._fetch(operation, text.lower(), by_account_id=True)
        else:
            snapshot = await self._fetch(operation, text)
        return snapshot_to_live(snapshot)

    async def _refresh_on_demand(self, record: PlayerRecord) -> PlayerRecord:
        log = logger.bind(
            chat_identity=record.chat_identity, account_id=record.game_account_id
        )
        try:
            return await self._refetch(record)
        except TetrioAPIError as e:
            log.warning("On-demand refresh failed, serving stored stats", error=str(e))
            return record
        except ConflictError:
            # Someone else wrote the record first; theirs is at least as new
            log.info("On-demand refresh lost a write race")
            current = await self.store.get_by_chat_identity(record.chat_identity)
            return current or record

    async def _refetch(self, record: PlayerRecord) -> PlayerRecord:
        """Refetch a linked record by account id and store the newer snapshot.

        :raises TetrioAPIError: The fetch failed
        :raises ServiceException: The write failed or lost a race
        """
        snapshot = await self.client.fetch_by_account_id(record.game_account_id)

        if record.stats is not None and record.stats.same_values(snapshot.stats):
            logger.debug(
                "Stats unchanged since last fetch", chat_identity=record.chat_identity
            )

        updated = record.model_copy(
            update={
                "game_username": snapshot.username,
                "stats": _newest(record.stats, snapshot.stats),
            }
        )
        stored = await self.store.upsert(updated)
        await self._emit(self._username_events(record, stored))
        return stored

    # Stale stats sweep

    async def refresh_stale(self, max_age: Optional[timedelta] = None) -> RefreshReport:
        """
        Refetch every linked record whose snapshot is older than ``max_age``.

        Only one sweep runs at a time; a call made while another is in flight
        returns at once with ``skipped=True``. Records are refetched by
        account id, each independently, and failures are collected in the
        report instead of being raised.
        """
        if self._refresh_lock.locked():
            logger.info("Stale sweep already running, skipping")
            return RefreshReport(skipped=True)

        async with self._refresh_lock:
            max_age = max_age if max_age is not None else self.stale_after
            cutoff = self._clock() - max_age
            stale = await self.store.list_stale(cutoff)

            logger.info(
                "Stale sweep started",
                stale_records=len(stale),
                max_age_seconds=max_age.total_seconds(),
            )

            semaphore = asyncio.Semaphore(self.refresh_concurrency)
            report = RefreshReport()

            async def _refresh(record: PlayerRecord) -> None:
                async with semaphore:
                    failure = await self._refresh_one(record)
                if failure is None:
                    report.succeeded.append(record.chat_identity)
                else:
                    report.failed.append(failure)

            await asyncio.gather(*(_refresh(record) for record in stale))

            logger.info(
                "Stale sweep finished",
                succeeded=len(report.succeeded),
                failed=len(report.failed),
            )
            return report

    async def _refresh_one(self, record: PlayerRecord) -> Optional[RefreshFailure]:
        """Refresh one record; return a failure entry instead of raising."""
        account_id = record.game_account_id
        try:
            await self._refetch(record)
        except (TetrioAPIError, ServiceException) as e:
            # ConflictError: the record changed under us, the next sweep catches up
            logger.warning(
                "Stale refresh failed",
                chat_identity=record.chat_identity,
                account_id=account_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return RefreshFailure(
                chat_identity=record.chat_identity,
                game_account_id=account_id,
                reason=f"{type(e).__name__}: {e}",
            )
        return None

    async def wait_for_refresh(self) -> None:
        """Wait until an in-flight ``refresh_stale`` has finished."""
        async with self._refresh_lock:
            pass

    # Unlink

    async def unlink(self, chat_identity: str) -> PlayerRecord:
        """
        Clear the TETR.IO account of a Discord user's record.

        Raises:
            NotLinkedError: No record, or the record is already orphaned
            LinkConflictError: The record kept changing during the write
        """
        for attempt in range(self.link_conflict_retries + 1):
            current = await self.store.get_by_chat_identity(chat_identity)
            if current is None or not current.linked:
                raise NotLinkedError(
                    "That user has not linked a TETR.IO account",
                    operation="unlink",
                    context={"chat_identity": chat_identity},
                )
            try:
                stored = await self.store.upsert(
                    current.model_copy(update={"game_account_id": None})
                )
            except ConflictError:
                logger.info(
                    "Unlink lost a write race, retrying",
                    chat_identity=chat_identity,
                    attempt=attempt + 1,
                )
                continue

            logger.info(
                "Player unlinked",
                chat_identity=chat_identity,
                account_id=current.game_account_id,
            )
            await self._emit(
                [
                    LinkRemoved(
                        chat_identity=chat_identity,
                        game_account_id=current.game_account_id,
                        reason="unlinked",
                    )
                ]
            )
            return stored

        raise LinkConflictError(
            "The unlink kept conflicting with concurrent updates",
            operation="unlink",
            context={"chat_identity": chat_identity},
        )


def _newest(current: Optional[LeagueStats], fresh: LeagueStats) -> LeagueStats:
    """Pick the snapshot with the later ``fetched_at`` so it never moves back."""
    if current is not None and fresh.fetched_at < current.fetched_at:
        return current
    return fresh


def _query_text(query: str, operation: str) -> str:
    text = query.strip()
    if not text:
        raise InvalidQueryError("Query must not be empty", operation=operation)
    return text

"""Player endpoints called by the Discord bot."""

from datetime import timedelta
from typing import Annotated, NoReturn, Optional, Union

import structlog
from fastapi import APIRouter, HTTPException, Query, Response, status
from pydantic import Field

from uc_helper.core.exceptions import (
    InvalidQueryError,
    LinkConflictError,
    NotLinkedError,
    ServiceException,
    ServiceUnavailableError,
    StoreUnavailableError,
    UnknownPlayerError,
)
from .dependencies import IdentityResolverDep, PlayerStoreDep
from .schemas import (
    LinkRequest,
    LinkResponse,
    LiveLookup,
    PlayerInfo,
    RefreshReport,
    RefreshRequest,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/players", tags=["players"])

WhoisResponse = Annotated[Union[PlayerInfo, LiveLookup], Field(discriminator="kind")]

_STATUS_BY_ERROR = (
    (UnknownPlayerError, status.HTTP_404_NOT_FOUND),
    (NotLinkedError, status.HTTP_404_NOT_FOUND),
    (InvalidQueryError, status.HTTP_400_BAD_REQUEST),
    (LinkConflictError, status.HTTP_409_CONFLICT),
    (ServiceUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (StoreUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def _raise_http(error: ServiceException) -> NoReturn:
    """Re-raise a service error as the matching HTTP error."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            raise HTTPException(status_code=status_code, detail=error.message) from error

    logger.error(
        "Unmapped service error",
        error=str(error),
        error_type=type(error).__name__,
    )
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal error",
    ) from error


@router.post("/link", response_model=LinkResponse)
async def link_player(
    request: LinkRequest, resolver: IdentityResolverDep
) -> LinkResponse:
    """
    Link a Discord user to a TETR.IO account by username.

    Re-linking an account held by another Discord user follows the configured
    relink policy.
    """
    try:
        result = await resolver.link(request.chat_identity, request.username)
    except ServiceException as e:
        _raise_http(e)

    return LinkResponse(
        player=resolver.to_info(result.record),
        created=result.created,
        superseded_chat_identity=result.superseded_chat_identity,
        username_changed=bool(result.events),
    )


@router.get("/whois", response_model=WhoisResponse)
async def whois(
    resolver: IdentityResolverDep,
    query: str = Query(
        ...,
        min_length=1,
        max_length=64,
        description="Mention, Discord user id, TETR.IO account id or username",
    ),
    max_age_minutes: Optional[int] = Query(
        None, gt=0, description="Freshness window for is_stale"
    ),
) -> Union[PlayerInfo, LiveLookup]:
    """
    Look up a player.

    Stored players are answered from the database; an unknown username is
    fetched live and not stored.
    """
    max_age = timedelta(minutes=max_age_minutes) if max_age_minutes else None
    try:
        return await resolver.resolve(query, max_age=max_age)
    except ServiceException as e:
        _raise_http(e)


@router.get("/stats", response_model=WhoisResponse)
async def player_stats(
    resolver: IdentityResolverDep,
    query: str = Query(
        ...,
        min_length=1,
        max_length=64,
        description="Mention, Discord user id, TETR.IO account id or username",
    ),
    max_age_minutes: Optional[int] = Query(
        None, gt=0, description="Refetch stored stats older than this"
    ),
) -> Union[PlayerInfo, LiveLookup]:
    """
    Show a player's league stats.

    Stored stats older than the freshness window are refetched and saved
    first; if TETR.IO fails the stored stats are returned marked stale.
    """
    max_age = timedelta(minutes=max_age_minutes) if max_age_minutes else None
    try:
        return await resolver.stats(query, max_age=max_age)
    except ServiceException as e:
        _raise_http(e)


@router.post("/refresh-stale", response_model=RefreshReport)
async def refresh_stale(
    resolver: IdentityResolverDep, request: Optional[RefreshRequest] = None
) -> RefreshReport:
    """Refetch every linked player whose stats are older than the window."""
    max_age = None
    if request is not None and request.max_age_minutes:
        max_age = timedelta(minutes=request.max_age_minutes)
    try:
        return await resolver.refresh_stale(max_age)
    except ServiceException as e:
        _raise_http(e)


@router.delete("/{chat_identity}/link", response_model=PlayerInfo)
async def unlink_player(
    chat_identity: str, resolver: IdentityResolverDep
) -> PlayerInfo:
    """Remove the TETR.IO account from a Discord user's record."""
    try:
        record = await resolver.unlink(chat_identity)
    except ServiceException as e:
        _raise_http(e)
    return resolver.to_info(record)


@router.delete("/{chat_identity}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_player(chat_identity: str, store: PlayerStoreDep) -> Response:
    """Delete a Discord user's record entirely (staff only)."""
    try:
        removed = await store.remove(chat_identity)
    except ServiceException as e:
        _raise_http(e)
    if not removed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Player record not found"
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)

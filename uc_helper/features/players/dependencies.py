"""Dependencies for the players feature.

The client, store and resolver are built once in the application lifespan
and kept on ``app.state``; these providers only hand them out.
"""

from typing import Annotated

from fastapi import Depends, Request

from .repository import PlayerRecordStoreInterface
from .resolver import IdentityResolver


def get_identity_resolver(request: Request) -> IdentityResolver:
    """Get the process-wide identity resolver.

    :param request: Current request
    :returns: Identity resolver created at startup
    """
    return request.app.state.resolver


def get_player_store(request: Request) -> PlayerRecordStoreInterface:
    """Get the process-wide player record store."""
    return request.app.state.store


# Type aliases for cleaner dependency injection
IdentityResolverDep = Annotated[IdentityResolver, Depends(get_identity_resolver)]
PlayerStoreDep = Annotated[PlayerRecordStoreInterface, Depends(get_player_store)]

__all__ = [
    "get_identity_resolver",
    "get_player_store",
    "IdentityResolverDep",
    "PlayerStoreDep",
]

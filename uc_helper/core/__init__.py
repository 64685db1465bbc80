"""Core infrastructure module.

This module exports core utilities used across features.
Never imports from features - only from external libraries.
"""

from .config import Settings, get_settings, get_global_settings
from .database import DatabaseManager
from .enums import RankTier, RelinkPolicy
from .exceptions import (
    ServiceException,
    ConflictError,
    StoreUnavailableError,
    IdentityError,
    UnknownPlayerError,
    ServiceUnavailableError,
    LinkConflictError,
    NotLinkedError,
    InvalidQueryError,
)
from .models import Base

__all__ = [
    "Settings",
    "get_settings",
    "get_global_settings",
    "DatabaseManager",
    "RankTier",
    "RelinkPolicy",
    "ServiceException",
    "ConflictError",
    "StoreUnavailableError",
    "IdentityError",
    "UnknownPlayerError",
    "ServiceUnavailableError",
    "LinkConflictError",
    "NotLinkedError",
    "InvalidQueryError",
    "Base",
]

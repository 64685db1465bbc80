"""
TETR.IO API client package.

Fetches users from the TETR.IO channel API and turns their TETRA LEAGUE data
into validated ``StatsSnapshot`` objects.
"""

from .client import TetrioAPIClient, normalize_username, looks_like_account_id
from .errors import (
    TetrioAPIError,
    NotFoundError,
    TransientError,
    RateLimitError,
    BadRequestError,
    InvalidResponseError,
)
from .models import LeagueStats, StatsSnapshot, to_snapshot

__all__ = [
    "TetrioAPIClient",
    "normalize_username",
    "looks_like_account_id",
    "TetrioAPIError",
    "NotFoundError",
    "TransientError",
    "RateLimitError",
    "BadRequestError",
    "InvalidResponseError",
    "LeagueStats",
    "StatsSnapshot",
    "to_snapshot",
]

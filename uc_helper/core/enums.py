"""Shared enums used across features.

This module provides a single source of truth for enums used in both models and schemas.
"""

from enum import Enum


class RankTier(str, Enum):
    """TETRA LEAGUE letter ranks, lowest to highest. Z means unranked."""

    UNRANKED = "z"
    D = "d"
    D_PLUS = "d+"
    C_MINUS = "c-"
    C = "c"
    C_PLUS = "c+"
    B_MINUS = "b-"
    B = "b"
    B_PLUS = "b+"
    A_MINUS = "a-"
    A = "a"
    A_PLUS = "a+"
    S_MINUS = "s-"
    S = "s"
    S_PLUS = "s+"
    SS = "ss"
    U = "u"
    X = "x"

    @classmethod
    def from_api(cls, value: str | None) -> "RankTier":
        """Parse the API's rank string; anything unknown counts as unranked."""
        if not value:
            return cls.UNRANKED
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.UNRANKED

    @property
    def order(self) -> int:
        """Position in the ladder, 0 for unranked."""
        return list(RankTier).index(self)

    @property
    def color(self) -> str:
        """Hex color the bot uses for embeds of this rank."""
        return _RANK_COLORS[self]


_RANK_COLORS = {
    RankTier.UNRANKED: "828282",
    RankTier.D: "856C84",
    RankTier.D_PLUS: "815880",
    RankTier.C_MINUS: "6C417C",
    RankTier.C: "67287B",
    RankTier.C_PLUS: "522278",
    RankTier.B_MINUS: "5949BE",
    RankTier.B: "4357B5",
    RankTier.B_PLUS: "4880B2",
    RankTier.A_MINUS: "35AA8C",
    RankTier.A: "3EA750",
    RankTier.A_PLUS: "43B536",
    RankTier.S_MINUS: "B79E2B",
    RankTier.S: "D19E26",
    RankTier.S_PLUS: "DBAF37",
    RankTier.SS: "E39D3B",
    RankTier.U: "C75C2E",
    RankTier.X: "B852BF",
}


class RelinkPolicy(str, Enum):
    """How a link to an account already held by another Discord user is handled."""

    SUPERSEDE = "supersede"
    REJECT = "reject"

"""Composable SQL filter predicates for user listings."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

SEARCH_COLUMNS: Tuple[str, ...] = ("name", "email", "phone")

# SQL function registered on every connection by ``Database._connect``.
CASEFOLD_FUNCTION = "casefold"


def casefold(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return str(value).casefold()


@dataclass(frozen=True)
class Predicate:
    """An SQL boolean expression together with its bound parameters."""

    clause: str
    params: Tuple[object, ...] = ()

    @property
    def always_true(self) -> bool:
        return self.clause == ALWAYS_TRUE.clause


ALWAYS_TRUE = Predicate("1 = 1")


def normalize_search_term(term: Optional[str]) -> Optional[str]:
    """Return the trimmed term, or ``None`` when nothing was entered."""

    if term is None:
        return None
    stripped = term.strip()
    return stripped or None


def search_predicate(term: Optional[str]) -> Predicate:
    """Match users whose name, email or phone contains ``term``.

    Comparison is a Unicode case-insensitive substring test on casefolded
    values, so the term is matched literally. The three comparisons form a
    single parenthesised OR group so the result can be AND-ed with further
    filters.
    """

    normalized = normalize_search_term(term)
    if normalized is None:
        return ALWAYS_TRUE

    needle = normalized.casefold()
    conditions = [f"instr({CASEFOLD_FUNCTION}({column}), ?) > 0" for column in SEARCH_COLUMNS]
    return Predicate(
        "(" + " OR ".join(conditions) + ")",
        tuple(needle for _ in SEARCH_COLUMNS),
    )


def and_(*predicates: Predicate) -> Predicate:
    """Combine predicates with ``AND``, skipping always-true members."""

    active = [predicate for predicate in predicates if not predicate.always_true]
    if not active:
        return ALWAYS_TRUE
    if len(active) == 1:
        return active[0]

    params: Tuple[object, ...] = ()
    for predicate in active:
        params += predicate.params
    return Predicate(" AND ".join(f"({p.clause})" for p in active), params)


__all__ = [
    "ALWAYS_TRUE",
    "CASEFOLD_FUNCTION",
    "Predicate",
    "SEARCH_COLUMNS",
    "and_",
    "casefold",
    "normalize_search_term",
    "search_predicate",
]

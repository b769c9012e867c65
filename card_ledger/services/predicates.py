"""
Store-neutral query predicates.

The filter engine decides WHICH predicates apply; a store decides HOW to
evaluate them. These small value types are the contract between the two,
so the engine can be exercised against an in-memory fake store.
"""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Equals:
    field: str
    value: Any


@dataclass(frozen=True)
class Between:
    """
    Range on a field. Either bound may be None (open range).

    `upper_exclusive` turns the upper bound into a strict "<", which is how
    an inclusive calendar to-date is expressed over timestamps.
    """
    field: str
    lower: Any = None
    upper: Any = None
    upper_exclusive: bool = False


@dataclass(frozen=True)
class Contains:
    """Case-insensitive substring match."""
    field: str
    fragment: str


@dataclass(frozen=True)
class SortOrder:
    field: str
    descending: bool = True


Predicate = Equals | Between | Contains

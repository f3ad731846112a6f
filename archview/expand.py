"""
Graph Expander: grow a matched id set along relations.

``expand`` is a pure function of (model, matched ids, include flags). Each
flag performs exactly one pass; multi-hop expansion is done by calling it
again (see :func:`expand_related`).
"""

import logging
from enum import Enum
from typing import FrozenSet, Iterable, Set, Union

from .model import Model

logger = logging.getLogger(__name__)


class IncludeFlag(str, Enum):
    # Relations between already matched elements
    RELATIONS = 'relations'
    # Elements at the other end of relations touching matched elements
    RELATED = 'related'

    @classmethod
    def parse(cls, value: Union[str, 'IncludeFlag']) -> 'IncludeFlag':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lstrip(':').lower())
        except ValueError:
            raise ValueError(f"Unknown include flag '{value}'") from None

    def __str__(self) -> str:
        return self.value


# Application order when several flags are given
FLAG_ORDER = (IncludeFlag.RELATED, IncludeFlag.RELATIONS)


def parse_flags(values: Iterable[Union[str, IncludeFlag]]) -> FrozenSet[IncludeFlag]:
    return frozenset(IncludeFlag.parse(v) for v in values or ())


def related_elements(model: Model, ids: Iterable[str]) -> Set[str]:
    """Endpoints of every relation touching one of the given elements."""
    found = set()
    for item_id in ids:
        if item_id not in model.elements:
            continue
        for rel in model.relations_of(item_id):
            found.add(rel.from_id)
            found.add(rel.to_id)
    return found


def relations_between(model: Model, ids: Iterable[str]) -> Set[str]:
    """Relations whose both endpoints are among the given ids."""
    ids = set(ids)
    found = set()
    for item_id in ids:
        for rel in model.outgoing(item_id):
            if rel.to_id in ids:
                found.add(rel.id)
    return found


def expand(
    model: Model,
    matched: Iterable[str],
    include: Iterable[Union[str, IncludeFlag]] = (),
) -> FrozenSet[str]:
    """
    Expand a matched id set.

    Args:
        model: Model to expand over
        matched: Ids of matched elements/relations; unknown ids are ignored
        include: Include flags; ``related`` is applied before ``relations``

    Returns:
        The expanded id set (always a superset of the known matched ids)
    """
    flags = parse_flags(include)
    result = {item_id for item_id in matched if item_id in model}

    for flag in FLAG_ORDER:
        if flag not in flags:
            continue
        before = len(result)
        if flag is IncludeFlag.RELATED:
            result |= related_elements(model, result)
        else:
            result |= relations_between(model, result)
        logger.debug(f"Expansion '{flag}' added {len(result) - before} ids")

    return frozenset(result)


def expand_related(model: Model, matched: Iterable[str], hops: int = 1) -> FrozenSet[str]:
    """Apply ``related`` expansion ``hops`` times, stopping early at a fixpoint."""
    result = frozenset(item_id for item_id in matched if item_id in model)
    for _ in range(hops):
        grown = expand(model, result, {IncludeFlag.RELATED})
        if grown == result:
            break
        result = grown
    return result

"""
Query Facade: ad-hoc selection over a built Model.

``select`` is the criteria evaluator applied to every element and relation,
with no expansion, ordering or overrides. Results serialize to plain records
that can be narrowed further with a JMESPath expression.

Example:
    items = select(model, 'el:system tag:backend')
    records = to_records(items)
    names = search(model, {'el': 'system'}, '[].name')
"""

import logging
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Union

import jmespath
from jmespath.exceptions import JMESPathError

from .criteria import Criteria, RawCriteria, normalize
from .errors import CriteriaError
from .model import Item, Model

logger = logging.getLogger(__name__)


def select(
    model: Model,
    criteria: Union[RawCriteria, Criteria, str],
    ignore_case: bool = False,
    warn_on_empty: bool = True,
) -> FrozenSet[Item]:
    """
    Select elements and relations matching criteria.

    Args:
        model: Model to query
        criteria: Mapping, list of mappings, compact text or compiled criteria
        ignore_case: Case-insensitive name/desc/doc patterns
        warn_on_empty: Warn about an empty (match-all) conjunction

    Returns:
        Unordered set of matching items
    """
    compiled = normalize(criteria, ignore_case=ignore_case, warn_on_empty=warn_on_empty)
    result = frozenset(item for item in model.items() if compiled.matches(item, model))
    logger.debug(f"Selected {len(result)} of {len(model)} items")
    return result


def select_ids(model: Model, criteria: Union[RawCriteria, Criteria, str], **kwargs) -> FrozenSet[str]:
    return frozenset(item.id for item in select(model, criteria, **kwargs))


def to_records(items: Iterable[Item]) -> List[Dict[str, Any]]:
    """Serialize items to JSON-ready dicts sorted by id for stable output."""
    records = []
    for item in sorted(items, key=lambda i: i.id):
        record = item.to_dict()
        record['category'] = item.category
        records.append(record)
    return records


def search(
    model: Model,
    criteria: Union[RawCriteria, Criteria, str],
    expression: Optional[str] = None,
    **kwargs,
) -> Any:
    """
    Select items and apply a JMESPath expression to their records.

    Raises:
        CriteriaError: On invalid criteria or an invalid JMESPath expression
    """
    records = to_records(select(model, criteria, **kwargs))
    if not expression:
        return records
    try:
        return jmespath.search(expression, records)
    except JMESPathError as e:
        raise CriteriaError(f"Invalid JMESPath expression '{expression}': {e}") from e

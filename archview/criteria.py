"""
Predicate Evaluator for selection criteria.

Grammar:
    criteria    := conjunction | disjunction
    conjunction := {key: value, '!key': value, ...}    every key must hold
    disjunction := [conjunction, ...]                   any conjunction holds

A ``!`` prefix negates that single predicate before it is AND-ed with the
rest. The empty conjunction ``{}`` matches every element and relation.

Criteria are validated and compiled once by :func:`normalize`; the compiled
tree is immutable and safe to share between threads.

Example:
    crit = normalize({'el': 'system', 'tag': 'backend', '!external?': True})
    hits = [item for item in model.items() if crit.matches(item, model)]
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .errors import CriteriaError
from .model import Element, Item, Model, Relation

logger = logging.getLogger(__name__)

RawCriteria = Union[Dict[str, Any], List[Dict[str, Any]]]


@dataclass(frozen=True)
class _PredicateSpec:
    prepare: Callable[[str, Any], Any]
    test: Callable[[Any, Item, Optional[Model]], bool]
    needs_model: bool = False


_PREDICATES: Dict[str, _PredicateSpec] = {}


def _register(*keys: str, prepare: Callable[[str, Any], Any], needs_model: bool = False):
    """Decorator registering a predicate test under one or more keys."""
    def decorator(test):
        for key in keys:
            _PREDICATES[key] = _PredicateSpec(prepare=prepare, test=test, needs_model=needs_model)
        return test
    return decorator


def supported_keys() -> Tuple[str, ...]:
    return tuple(sorted(_PREDICATES))


# =============================================================================
# Value preparation
# =============================================================================

def _scalar(key: str, value: Any) -> str:
    if isinstance(value, (list, tuple, set, frozenset, dict)) or value is None:
        raise CriteriaError(f"'{key}' expects a single value, got {value!r}")
    return str(value)


def _kind(key: str, value: Any) -> str:
    return _scalar(key, value).strip().lstrip(':').lower()


def _collection(key: str, value: Any) -> frozenset:
    if isinstance(value, str):
        return frozenset({value})
    if not isinstance(value, (list, tuple, set, frozenset)):
        raise CriteriaError(f"'{key}' expects a list of values, got {value!r}")
    return frozenset(str(v) for v in value)


def _kinds(key: str, value: Any) -> frozenset:
    return frozenset(v.strip().lstrip(':').lower() for v in _collection(key, value))


def _flag(key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise CriteriaError(f"'{key}' expects true or false, got {value!r}")
    return value


class _RegexPrepare:
    """Compiles regex values; case sensitivity fixed per normalize() call."""

    def __init__(self, flags: int = 0):
        self.flags = flags

    def __call__(self, key: str, value: Any):
        pattern = _scalar(key, value)
        try:
            return re.compile(pattern, self.flags)
        except re.error as e:
            raise CriteriaError(f"Invalid regular expression for '{key}': {e}") from e


# =============================================================================
# Predicates
# =============================================================================

@_register('el', prepare=_kind)
def _el(value, item, model):
    return item.kind.value == value or item.raw_kind.lower() == value


@_register('els', prepare=_kinds)
def _els(value, item, model):
    return item.kind.value in value or item.raw_kind.lower() in value


@_register('id', 'key', prepare=_scalar)
def _id(value, item, model):
    return item.id == value


@_register('ids', prepare=_collection)
def _ids(value, item, model):
    return item.id in value


@_register('namespace', prepare=_scalar)
def _namespace(value, item, model):
    return item.namespace == value


@_register('namespaces', prepare=_collection)
def _namespaces(value, item, model):
    return item.namespace in value


@_register('namespace-prefix', prepare=_scalar)
def _namespace_prefix(value, item, model):
    return item.namespace.startswith(value)


@_register('subtype', prepare=_scalar)
def _subtype(value, item, model):
    return item.subtype == value


@_register('subtypes', prepare=_collection)
def _subtypes(value, item, model):
    return item.subtype in value


@_register('tech', prepare=_scalar)
def _tech(value, item, model):
    return any(value in tech for tech in item.tech)


@_register('techs', prepare=_collection)
def _techs(value, item, model):
    return not value.isdisjoint(item.tech)


@_register('all-techs', prepare=_collection)
def _all_techs(value, item, model):
    return value.issubset(item.tech)


@_register('tag', prepare=_scalar)
def _tag(value, item, model):
    return value in item.tags


@_register('tags', prepare=_collection)
def _tags(value, item, model):
    return not value.isdisjoint(item.tags)


@_register('all-tags', prepare=_collection)
def _all_tags(value, item, model):
    return value.issubset(item.tags)


@_register('external?', prepare=_flag)
def _external(value, item, model):
    return item.external == value


@_register('internal?', prepare=_flag)
def _internal(value, item, model):
    return (not item.external) == value


@_register('element?', prepare=_flag)
def _is_element(value, item, model):
    return isinstance(item, Element) == value


@_register('relation?', prepare=_flag)
def _is_relation(value, item, model):
    return isinstance(item, Relation) == value


@_register('maturity', prepare=_kind)
def _maturity(value, item, model):
    return item.maturity is not None and item.maturity.value == value


@_register('maturities', prepare=_kinds)
def _maturities(value, item, model):
    return item.maturity is not None and item.maturity.value in value


@_register('from', prepare=_scalar)
def _from(value, item, model):
    return isinstance(item, Relation) and item.from_id == value


@_register('to', prepare=_scalar)
def _to(value, item, model):
    return isinstance(item, Relation) and item.to_id == value


@_register('refers-to', prepare=_scalar, needs_model=True)
def _refers_to(value, item, model):
    if not isinstance(item, Element):
        return False
    return any(rel.to_id == value for rel in model.outgoing(item.id))


@_register('referred-by', prepare=_scalar, needs_model=True)
def _referred_by(value, item, model):
    if not isinstance(item, Element):
        return False
    return any(rel.from_id == value for rel in model.incoming(item.id))


@_register('refers?', prepare=_flag, needs_model=True)
def _refers(value, item, model):
    return isinstance(item, Element) and bool(model.outgoing(item.id)) == value


@_register('referred?', prepare=_flag, needs_model=True)
def _referred(value, item, model):
    return isinstance(item, Element) and bool(model.incoming(item.id)) == value


@_register('child-of', prepare=_scalar, needs_model=True)
def _child_of(value, item, model):
    return isinstance(item, Element) and model.hierarchy.is_child_of(item.id, value)


@_register('parent-of', prepare=_scalar, needs_model=True)
def _parent_of(value, item, model):
    return isinstance(item, Element) and model.hierarchy.is_parent_of(item.id, value)


@_register('descendant-of', prepare=_scalar, needs_model=True)
def _descendant_of(value, item, model):
    return isinstance(item, Element) and model.hierarchy.is_descendant_of(item.id, value)


@_register('ancestor-of', prepare=_scalar, needs_model=True)
def _ancestor_of(value, item, model):
    return isinstance(item, Element) and model.hierarchy.is_ancestor_of(item.id, value)


@_register('child?', prepare=_flag, needs_model=True)
def _child(value, item, model):
    return isinstance(item, Element) and model.hierarchy.has_parent(item.id) == value


@_register('children?', prepare=_flag, needs_model=True)
def _children(value, item, model):
    return isinstance(item, Element) and model.hierarchy.has_children(item.id) == value


def _regex_test(field_name: str):
    def test(value, item, model):
        text = getattr(item, field_name)
        if text is None:
            return False
        return value.search(text) is not None
    return test


for _field in ('name', 'desc', 'doc'):
    _PREDICATES[_field] = _PredicateSpec(prepare=_RegexPrepare(), test=_regex_test(_field))


# =============================================================================
# Compiled criteria
# =============================================================================

@dataclass(frozen=True)
class Predicate:
    """One compiled ``key: value`` test, optionally negated."""
    key: str
    value: Any
    negated: bool = False

    def matches(self, item: Item, model: Optional[Model] = None) -> bool:
        spec = _PREDICATES[self.key]
        if spec.needs_model and model is None:
            raise CriteriaError(f"'{self.key}' needs a model to evaluate")
        result = spec.test(self.value, item, model)
        return not result if self.negated else result

    def __str__(self) -> str:
        prefix = '!' if self.negated else ''
        value = self.value.pattern if isinstance(self.value, re.Pattern) else self.value
        if isinstance(value, frozenset):
            value = sorted(value)
        return f"{prefix}{self.key}: {value}"


@dataclass(frozen=True)
class Conjunction:
    predicates: Tuple[Predicate, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.predicates

    def matches(self, item: Item, model: Optional[Model] = None) -> bool:
        return all(p.matches(item, model) for p in self.predicates)


@dataclass(frozen=True)
class Disjunction:
    conjunctions: Tuple[Conjunction, ...] = ()

    def matches(self, item: Item, model: Optional[Model] = None) -> bool:
        return any(c.matches(item, model) for c in self.conjunctions)


Criteria = Union[Conjunction, Disjunction]


def _compile_conjunction(raw: Dict[str, Any], regex_flags: int) -> Conjunction:
    if not isinstance(raw, dict):
        raise CriteriaError(f"Conjunction must be a mapping, got {type(raw).__name__}")

    regex_prepare = _RegexPrepare(regex_flags)
    predicates = []
    for raw_key, value in raw.items():
        key = str(raw_key).strip()
        negated = key.startswith('!')
        key = key.lstrip('!').lstrip(':')
        spec = _PREDICATES.get(key)
        if spec is None:
            raise CriteriaError(f"Unknown criteria key '{raw_key}'")
        prepare = regex_prepare if isinstance(spec.prepare, _RegexPrepare) else spec.prepare
        predicates.append(Predicate(key=key, value=prepare(key, value), negated=negated))

    # Stable order for printing; evaluation is order independent
    predicates.sort(key=lambda p: (p.key, p.negated))
    return Conjunction(tuple(predicates))


def normalize(
    criteria: Union[RawCriteria, Criteria, str, None],
    ignore_case: bool = False,
    warn_on_empty: bool = True,
) -> Criteria:
    """
    Validate and compile criteria.

    Args:
        criteria: Mapping, list of mappings, compact text, or compiled criteria.
            ``None`` is treated as ``{}``.
        ignore_case: Compile name/desc/doc patterns case-insensitively
        warn_on_empty: Log a warning if a conjunction is empty (matches all)

    Returns:
        Compiled Conjunction or Disjunction

    Raises:
        CriteriaError: Unknown key, bad value type or invalid regex
    """
    if isinstance(criteria, (Conjunction, Disjunction)):
        return criteria

    if criteria is None:
        criteria = {}

    if isinstance(criteria, str):
        from .criteria_parser import parse_criteria
        criteria = parse_criteria(criteria)

    flags = re.IGNORECASE if ignore_case else 0

    if isinstance(criteria, dict):
        compiled: Criteria = _compile_conjunction(criteria, flags)
        empty = compiled.is_empty
    elif isinstance(criteria, (list, tuple)):
        compiled = Disjunction(tuple(_compile_conjunction(c, flags) for c in criteria))
        empty = any(c.is_empty for c in compiled.conjunctions)
    else:
        raise CriteriaError(f"Invalid criteria: {criteria!r}")

    if empty and warn_on_empty:
        logger.warning("Criteria contain an empty conjunction {} which matches "
                       "every element and relation")
    return compiled


def matches(criteria: Union[RawCriteria, Criteria], item: Item,
            model: Optional[Model] = None) -> bool:
    """Test a single element or relation against criteria."""
    return normalize(criteria, warn_on_empty=False).matches(item, model)

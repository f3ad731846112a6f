"""
Model Store: merge normalized declarations into an immutable Model.

Declarations arrive grouped by source. Each source is normalized on its own
(nested ``ct`` children flattened, kinds parsed, fields typed), possibly in
parallel; the merge that follows is strictly sequential in source order, then
declaration order, so duplicate-id and unresolved-reference reports are the
same on every run.

Example:
    model = build([
        Source('core', [
            {'el': 'system', 'id': 'acme/api', 'ct': [
                {'el': 'container', 'id': 'acme/api-db', 'tech': 'PostgreSQL'},
            ]},
            {'el': 'person', 'id': 'acme/user'},
            {'el': 'request', 'id': 'acme/user-to-api',
             'from': 'acme/user', 'to': 'acme/api'},
        ]),
    ])
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .errors import DeclarationError, DuplicateIdError, MultipleParentsError, UnresolvedReferenceError
from .hierarchy import DEFAULT_MAX_DEPTH, Hierarchy
from .model import Element, ElementKind, Item, Maturity, Model, Relation, RelationKind

logger = logging.getLogger(__name__)

RawDecl = Dict[str, Any]


@dataclass
class Source:
    """An ordered group of raw declarations from one origin (usually a file)."""
    name: str
    declarations: List[RawDecl] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.declarations)


# (item, human readable location) pairs produced per source
Partial = List[Tuple[Item, str]]


def _as_tuple(value: Any) -> Tuple[str, ...]:
    """Normalize a tech value: comma separated string or list of strings."""
    if value is None:
        return ()
    if isinstance(value, str):
        parts = value.split(',')
    else:
        parts = [str(v) for v in value]
    return tuple(p.strip() for p in parts if p and p.strip())


def _as_tags(value: Any) -> frozenset:
    if value is None:
        return frozenset()
    if isinstance(value, str):
        return frozenset({value})
    return frozenset(str(v) for v in value)


def _is_external(decl: RawDecl, tags: frozenset) -> bool:
    """The external flag, or an 'external' tag."""
    return bool(decl.get('external', decl.get('external?', False))) or 'external' in tags


def _as_maturity(value: Any) -> Optional[Maturity]:
    if value is None:
        return None
    return Maturity.parse(value)


def _raw_kind(decl: RawDecl) -> str:
    return str(decl.get('el', '')).lstrip(':')


def is_relation_decl(decl: RawDecl) -> bool:
    """A declaration is a relation when it names an endpoint."""
    return 'from' in decl or 'to' in decl


def _make_element(decl: RawDecl, source_index: int, decl_index: int,
                  owner: Optional[str]) -> Element:
    raw = _raw_kind(decl)
    tags = _as_tags(decl.get('tags'))
    return Element(
        id=decl['id'],
        kind=ElementKind.parse(raw),
        raw_kind=raw,
        name=decl.get('name'),
        desc=decl.get('desc'),
        doc=decl.get('doc'),
        tech=_as_tuple(decl.get('tech')),
        tags=tags,
        maturity=_as_maturity(decl.get('maturity')),
        external=_is_external(decl, tags),
        subtype=decl.get('subtype'),
        owner_container_id=owner,
        source_index=source_index,
        decl_index=decl_index,
    )


def _make_relation(decl: RawDecl, source_index: int, decl_index: int) -> Relation:
    raw = _raw_kind(decl) or 'rel'
    tags = _as_tags(decl.get('tags'))
    return Relation(
        id=decl['id'],
        kind=RelationKind.parse(raw),
        raw_kind=raw,
        from_id=decl['from'],
        to_id=decl['to'],
        name=decl.get('name'),
        desc=decl.get('desc'),
        doc=decl.get('doc'),
        tech=_as_tuple(decl.get('tech')),
        tags=tags,
        maturity=_as_maturity(decl.get('maturity')),
        external=_is_external(decl, tags),
        subtype=decl.get('subtype'),
        direction=decl.get('direction'),
        source_index=source_index,
        decl_index=decl_index,
    )


def normalize_source(source_index: int, source: Union[Source, Sequence[RawDecl]]) -> Partial:
    """
    Flatten and type the declarations of one source.

    Nested ``ct`` children are emitted depth-first right after their parent;
    child elements record the enclosing element as ``owner_container_id``.

    Raises:
        DeclarationError: On a malformed declaration
        MultipleParentsError: If a nested child names a different owner
    """
    if isinstance(source, Source):
        name, decls = source.name, source.declarations
    else:
        name, decls = f"source {source_index}", source

    if not isinstance(decls, (list, tuple)):
        raise DeclarationError("declarations must be a list", name)

    partial: Partial = []
    counter = 0

    # Explicit stack keeps nesting depth independent of the recursion limit
    stack: List[Tuple[Any, Optional[str]]] = [(d, None) for d in reversed(decls)]
    while stack:
        decl, owner = stack.pop()
        location = f"{name}, declaration {counter}"
        if not isinstance(decl, dict):
            raise DeclarationError(f"expected a mapping, got {type(decl).__name__}", location)
        if not decl.get('id'):
            raise DeclarationError("declaration has no 'id'", location)

        if is_relation_decl(decl):
            if not decl.get('from') or not decl.get('to'):
                raise DeclarationError(
                    f"relation '{decl['id']}' needs both 'from' and 'to'", location)
            partial.append((_make_relation(decl, source_index, counter), location))
        else:
            declared_owner = decl.get('owner')
            if owner and declared_owner and declared_owner != owner:
                raise MultipleParentsError(decl['id'], [owner, declared_owner])
            element = _make_element(decl, source_index, counter, owner or declared_owner)
            partial.append((element, location))
            children = decl.get('ct') or []
            if not isinstance(children, (list, tuple)):
                raise DeclarationError(f"'ct' of '{decl['id']}' must be a list", location)
            stack.extend((child, element.id) for child in reversed(children))
        counter += 1

    logger.debug(f"Normalized {name}: {len(partial)} declarations")
    return partial


def build(
    sources: Iterable[Union[Source, Sequence[RawDecl]]],
    parallel: bool = True,
    max_workers: int = 4,
    max_hierarchy_depth: int = DEFAULT_MAX_DEPTH,
) -> Model:
    """
    Build an immutable Model from ordered sources.

    Args:
        sources: Sources in their precedence order
        parallel: Normalize sources concurrently
        max_workers: Thread pool size when ``parallel`` is set
        max_hierarchy_depth: Bound for containment traversals

    Returns:
        Model with unresolved relations listed in ``model.warnings``

    Raises:
        DeclarationError: Malformed declaration
        DuplicateIdError: Two declarations share an id
        CyclicHierarchyError: Containment has a cycle
        MultipleParentsError: An element is contained twice
    """
    sources = list(sources)

    if parallel and len(sources) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            partials = list(executor.map(normalize_source, range(len(sources)), sources))
    else:
        partials = [normalize_source(i, s) for i, s in enumerate(sources)]

    return merge(partials, max_hierarchy_depth=max_hierarchy_depth)


def merge(partials: Sequence[Partial], max_hierarchy_depth: int = DEFAULT_MAX_DEPTH) -> Model:
    """Merge normalized partials sequentially into a Model."""
    elements: Dict[str, Element] = {}
    pending: List[Tuple[Relation, str]] = []
    locations: Dict[str, str] = {}
    seq = 0

    for partial in partials:
        for item, location in partial:
            if item.id in locations:
                raise DuplicateIdError(item.id, locations[item.id], location)
            locations[item.id] = location
            item = replace(item, seq=seq)
            seq += 1
            if isinstance(item, Element):
                elements[item.id] = item
            else:
                pending.append((item, location))

    warnings: List[UnresolvedReferenceError] = []

    # Owners must exist; an unknown owner is dropped like an unresolved relation
    for element in list(elements.values()):
        owner = element.owner_container_id
        if owner and owner not in elements:
            warnings.append(UnresolvedReferenceError(element.id, [owner], locations[element.id]))
            elements[element.id] = replace(element, owner_container_id=None)

    relations: Dict[str, Relation] = {}
    for rel, location in pending:
        missing = [end for end in dict.fromkeys((rel.from_id, rel.to_id)) if end not in elements]
        if missing:
            warnings.append(UnresolvedReferenceError(rel.id, missing, location))
            continue
        relations[rel.id] = rel

    for warning in warnings:
        logger.warning(str(warning))

    hierarchy = Hierarchy.build(_containment(elements, relations), max_depth=max_hierarchy_depth)

    model = Model(elements, relations, hierarchy=hierarchy, warnings=tuple(warnings))
    logger.info(f"Built model: {len(elements)} elements, {len(relations)} relations, "
                f"{len(warnings)} unresolved references")
    return model


def _containment(elements: Dict[str, Element], relations: Dict[str, Relation]) -> Dict[str, str]:
    """Collect child -> parent pairs from owners and contained-in relations."""
    parents: Dict[str, str] = {}
    for element in elements.values():
        if element.owner_container_id:
            parents[element.id] = element.owner_container_id

    for rel in relations.values():
        if rel.kind is not RelationKind.CONTAINED_IN:
            continue
        current = parents.get(rel.from_id)
        if current is not None and current != rel.to_id:
            raise MultipleParentsError(rel.from_id, [current, rel.to_id])
        parents[rel.from_id] = rel.to_id
    return parents

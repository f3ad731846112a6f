"""
Core data model: elements, relations and the immutable Model snapshot.

Kinds are closed enums with an UNKNOWN member. Tags seen in data that are not
modeled yet parse to UNKNOWN and keep their original spelling in ``raw_kind``,
so selection by kind still works for them.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterator, List, Mapping, Optional, Tuple, Union

from .hierarchy import Hierarchy


def namespace_of(item_id: str) -> str:
    """Return the id with its final ``/segment`` removed ('' if there is none)."""
    if '/' not in item_id:
        return ''
    return item_id.rsplit('/', 1)[0]


class _KindEnum(str, Enum):
    """Enum over string tags with a forgiving parser."""

    @classmethod
    def parse(cls, tag: Optional[str]):
        if isinstance(tag, cls):
            return tag
        if tag is None:
            return cls.UNKNOWN
        value = str(tag).strip().lstrip(':').lower()
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN

    def __str__(self) -> str:
        return self.value


class ElementKind(_KindEnum):
    PERSON = 'person'
    SYSTEM = 'system'
    CONTAINER = 'container'
    COMPONENT = 'component'
    ENTERPRISE_BOUNDARY = 'enterprise-boundary'
    CONTEXT_BOUNDARY = 'context-boundary'
    NODE = 'node'
    ACTOR = 'actor'
    USE_CASE = 'use-case'
    CLASS = 'class'
    INTERFACE = 'interface'
    PROTOCOL = 'protocol'
    ENUM = 'enum'
    STATE_MACHINE = 'state-machine'
    STATE = 'state'
    START_STATE = 'start-state'
    END_STATE = 'end-state'
    FORK = 'fork'
    JOIN = 'join'
    CHOICE = 'choice'
    TRANSITION = 'transition'
    CONCEPT = 'concept'
    ORG_UNIT = 'org-unit'
    CAPABILITY = 'capability'
    KNOWLEDGE = 'knowledge'
    INFORMATION = 'information'
    PROCESS = 'process'
    ARTIFACT = 'artifact'
    # Structurizr's free-form "element"
    CUSTOM = 'element'
    UNKNOWN = 'unknown'


class RelationKind(_KindEnum):
    REQUEST = 'request'
    RESPONSE = 'response'
    SEND = 'send'
    PUBLISH = 'publish'
    SUBSCRIBE = 'subscribe'
    DATAFLOW = 'dataflow'
    REL = 'rel'
    CONTAINED_IN = 'contained-in'
    IMPLEMENTS = 'implements'
    USES = 'uses'
    INCLUDE = 'include'
    EXTENDS = 'extends'
    ASSOCIATION = 'association'
    AGGREGATION = 'aggregation'
    COMPOSITION = 'composition'
    INHERITANCE = 'inheritance'
    IMPLEMENTATION = 'implementation'
    DEPENDENCY = 'dependency'
    LINK = 'link'
    DEPLOYED_TO = 'deployed-to'
    IS_A = 'is-a'
    HAS = 'has'
    STEP = 'step'
    TRANSITION = 'transition'
    UNKNOWN = 'unknown'


class Maturity(_KindEnum):
    PROPOSED = 'proposed'
    DEPRECATED = 'deprecated'
    NONE = 'none'
    UNKNOWN = 'unknown'


CUSTOM_ELEMENT_KINDS = frozenset({ElementKind.CUSTOM, ElementKind.UNKNOWN})


@dataclass(frozen=True)
class Element:
    """A typed node of the architecture graph."""
    id: str
    kind: ElementKind
    raw_kind: str = ''
    name: Optional[str] = None
    desc: Optional[str] = None
    doc: Optional[str] = None
    tech: Tuple[str, ...] = ()
    tags: FrozenSet[str] = frozenset()
    maturity: Optional[Maturity] = None
    external: bool = False
    subtype: Optional[str] = None
    owner_container_id: Optional[str] = None
    source_index: int = 0
    decl_index: int = 0
    seq: int = 0

    category = 'element'

    @property
    def namespace(self) -> str:
        return namespace_of(self.id)

    @property
    def location(self) -> str:
        return f"source {self.source_index}, declaration {self.decl_index}"

    def to_dict(self) -> Dict:
        """Convert to a JSON-ready dictionary (empty fields omitted)."""
        data = {
            'id': self.id,
            'el': self.raw_kind or self.kind.value,
            'namespace': self.namespace,
            'name': self.name,
            'desc': self.desc,
            'doc': self.doc,
            'tech': list(self.tech) or None,
            'tags': sorted(self.tags) or None,
            'maturity': self.maturity.value if self.maturity else None,
            'external': self.external,
            'subtype': self.subtype,
            'owner': self.owner_container_id,
        }
        return {k: v for k, v in data.items() if v is not None}


@dataclass(frozen=True)
class Relation:
    """A typed, directed edge between two elements."""
    id: str
    kind: RelationKind
    from_id: str
    to_id: str
    raw_kind: str = ''
    name: Optional[str] = None
    desc: Optional[str] = None
    doc: Optional[str] = None
    tech: Tuple[str, ...] = ()
    tags: FrozenSet[str] = frozenset()
    maturity: Optional[Maturity] = None
    external: bool = False
    subtype: Optional[str] = None
    direction: Optional[str] = None
    source_index: int = 0
    decl_index: int = 0
    seq: int = 0

    category = 'relation'

    @property
    def namespace(self) -> str:
        return namespace_of(self.id)

    @property
    def location(self) -> str:
        return f"source {self.source_index}, declaration {self.decl_index}"

    def to_dict(self) -> Dict:
        data = {
            'id': self.id,
            'el': self.raw_kind or self.kind.value,
            'from': self.from_id,
            'to': self.to_id,
            'namespace': self.namespace,
            'name': self.name,
            'desc': self.desc,
            'doc': self.doc,
            'tech': list(self.tech) or None,
            'tags': sorted(self.tags) or None,
            'maturity': self.maturity.value if self.maturity else None,
            'external': self.external,
            'direction': self.direction,
        }
        return {k: v for k, v in data.items() if v is not None}


Item = Union[Element, Relation]


class Model:
    """
    Immutable snapshot of merged elements and relations.

    Built once per session by :func:`archview.builder.build`; every consumer
    only reads from it, so a single Model may be shared across threads.
    Relations with unresolved endpoints are not part of ``relations``; they
    are listed in ``warnings``.
    """

    def __init__(
        self,
        elements: Mapping[str, Element],
        relations: Mapping[str, Relation],
        hierarchy: Optional[Hierarchy] = None,
        warnings: Tuple = (),
    ):
        self._elements = MappingProxyType(dict(elements))
        self._relations = MappingProxyType(dict(relations))
        self._hierarchy = hierarchy or Hierarchy({})
        self._warnings = tuple(warnings)

        outgoing: Dict[str, List[Relation]] = {}
        incoming: Dict[str, List[Relation]] = {}
        for rel in self._relations.values():
            outgoing.setdefault(rel.from_id, []).append(rel)
            incoming.setdefault(rel.to_id, []).append(rel)
        self._outgoing = {k: tuple(v) for k, v in outgoing.items()}
        self._incoming = {k: tuple(v) for k, v in incoming.items()}

    @property
    def elements(self) -> Mapping[str, Element]:
        return self._elements

    @property
    def relations(self) -> Mapping[str, Relation]:
        return self._relations

    @property
    def hierarchy(self) -> Hierarchy:
        return self._hierarchy

    @property
    def warnings(self) -> Tuple:
        return self._warnings

    def get(self, item_id: str) -> Optional[Item]:
        """Look up an element or relation by id."""
        item = self._elements.get(item_id)
        if item is None:
            item = self._relations.get(item_id)
        return item

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._elements or item_id in self._relations

    def __len__(self) -> int:
        return len(self._elements) + len(self._relations)

    def items(self) -> Iterator[Item]:
        """Iterate elements then relations, each in merge order."""
        yield from self._elements.values()
        yield from self._relations.values()

    def outgoing(self, element_id: str) -> Tuple[Relation, ...]:
        return self._outgoing.get(element_id, ())

    def incoming(self, element_id: str) -> Tuple[Relation, ...]:
        return self._incoming.get(element_id, ())

    def relations_of(self, element_id: str) -> Tuple[Relation, ...]:
        """Relations touching an element, in merge order."""
        rels = self.outgoing(element_id) + self.incoming(element_id)
        seen = {}
        for rel in sorted(rels, key=lambda r: r.seq):
            seen.setdefault(rel.id, rel)
        return tuple(seen.values())

    def __repr__(self):
        return (f"<Model(elements={len(self._elements)}, "
                f"relations={len(self._relations)}, warnings={len(self._warnings)})>")

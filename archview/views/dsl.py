"""
View Composer.

Turns a view definition into the ordered content list a renderer draws.

Definition shape (YAML/JSON):
    view := {id, kind, title?,
             spec?: {selection?, include?, exclude?, layout?},
             ct?: [ref | {ref, order?, name?, desc?, tech?}, ...],
             base?, mode?, tags?}               # filtered views only

Composition by kind:
    selection-based  select(selection) -> expand(include) -> minus exclude
                     ordered elements first, then relations, each in
                     declaration order
    explicit content ``ct`` entries sorted by ``order`` (ties and missing
                     orders by list position), overrides applied to a
                     display copy; selected items not in ``ct`` follow
    filtered         base view content kept (include) or dropped (exclude)
                     by tag, order and overrides preserved

Overrides never touch the Model: every ContentItem wraps the original item
and presents the overridden fields as a view-specific lens.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from ..criteria import Criteria, RawCriteria, normalize
from ..errors import (
    ArchviewError,
    EmptySelectionWarning,
    InvalidViewTypeError,
    UnresolvedReferenceError,
    ViewError,
)
from ..expand import IncludeFlag, expand, parse_flags
from ..model import CUSTOM_ELEMENT_KINDS, Element, Item, Model, Relation

logger = logging.getLogger(__name__)


class ViewKind(str, Enum):
    CONTEXT = 'context'
    SYSTEM_CONTEXT = 'system-context'
    LANDSCAPE = 'landscape'
    CONTAINER = 'container'
    COMPONENT = 'component'
    DYNAMIC = 'dynamic'
    DEPLOYMENT = 'deployment'
    CUSTOM = 'custom'
    FILTERED = 'filtered'
    CODE = 'code'
    STATE_MACHINE = 'state-machine'
    USE_CASE = 'use-case'
    CONCEPT = 'concept'
    ORGANIZATION = 'organization'
    UNKNOWN = 'unknown'

    @classmethod
    def parse(cls, value: Optional[str]) -> 'ViewKind':
        if isinstance(value, cls):
            return value
        if not value:
            return cls.UNKNOWN
        tag = str(value).strip().lstrip(':').lower()
        if tag.endswith('-view'):
            tag = tag[:-len('-view')]
        try:
            return cls(tag)
        except ValueError:
            return cls.UNKNOWN

    def __str__(self) -> str:
        return self.value


class FilterMode(str, Enum):
    INCLUDE = 'include'
    EXCLUDE = 'exclude'

    def __str__(self) -> str:
        return self.value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass(frozen=True)
class ContentRef:
    """An explicit content entry of a view."""
    ref: str
    order: Optional[float] = None
    name: Optional[str] = None
    desc: Optional[str] = None
    tech: Optional[Tuple[str, ...]] = None

    @classmethod
    def from_value(cls, value: Union[str, Dict[str, Any]], view_id: str = '') -> 'ContentRef':
        if isinstance(value, str):
            return cls(ref=value)
        if not isinstance(value, dict):
            raise ViewError(f"content entry must be an id or a mapping, got {value!r}", view_id)

        ref = value.get('ref', value.get('id'))
        if not ref:
            raise ViewError(f"content entry has no 'ref': {value!r}", view_id)

        order = value.get('order', value.get('index'))
        if order is not None and not _is_number(order):
            raise ViewError(f"'order' of '{ref}' must be a number, got {order!r}", view_id)

        tech = value.get('tech')
        if isinstance(tech, str):
            tech = tuple(t.strip() for t in tech.split(',') if t.strip())
        elif tech is not None:
            tech = tuple(str(t) for t in tech)

        return cls(ref=str(ref), order=order, name=value.get('name'),
                   desc=value.get('desc'), tech=tech)

    def to_dict(self) -> Dict[str, Any]:
        data = {'ref': self.ref, 'order': self.order, 'name': self.name, 'desc': self.desc,
                'tech': list(self.tech) if self.tech is not None else None}
        return {k: v for k, v in data.items() if v is not None}


@dataclass(frozen=True)
class View:
    """A named projection of the Model."""
    id: str
    kind: ViewKind = ViewKind.UNKNOWN
    title: Optional[str] = None
    selection: Optional[RawCriteria] = None
    include: Tuple[IncludeFlag, ...] = ()
    exclude: Optional[RawCriteria] = None
    content: Optional[Tuple[ContentRef, ...]] = None
    layout: Mapping[str, Any] = field(default_factory=dict)
    base_view_id: Optional[str] = None
    mode: FilterMode = FilterMode.INCLUDE
    filter_tags: FrozenSet[str] = frozenset()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'View':
        """
        Build a View from its YAML/JSON definition.

        ``selection``, ``include``, ``exclude`` and ``layout`` may sit under
        ``spec`` or at the top level.

        Raises:
            ViewError: On a malformed definition
        """
        if not isinstance(data, dict):
            raise ViewError(f"view definition must be a mapping, got {type(data).__name__}")
        view_id = data.get('id')
        if not view_id:
            raise ViewError("view definition has no 'id'")

        spec = data.get('spec') or {}
        if not isinstance(spec, dict):
            raise ViewError("'spec' must be a mapping", view_id)
        spec = dict(spec)
        for key in ('selection', 'include', 'exclude', 'layout'):
            if key in data and key not in spec:
                spec[key] = data[key]

        include = spec.get('include') or ()
        if isinstance(include, str):
            include = (include,)
        try:
            flags = parse_flags(include)
        except (TypeError, ValueError) as e:
            raise ViewError(str(e), view_id) from e

        content = None
        if data.get('ct') is not None:
            if not isinstance(data['ct'], (list, tuple)):
                raise ViewError("'ct' must be a list", view_id)
            content = tuple(ContentRef.from_value(v, view_id) for v in data['ct'])

        mode = str(data.get('mode', FilterMode.INCLUDE.value)).lstrip(':').lower()
        try:
            mode = FilterMode(mode)
        except ValueError:
            raise ViewError(f"unknown filter mode '{mode}'", view_id) from None

        tags = data.get('tags') or ()
        if isinstance(tags, str):
            tags = (tags,)
        elif not isinstance(tags, (list, tuple)):
            raise ViewError("'tags' must be a tag or a list of tags", view_id)

        layout = spec.get('layout') or {}
        if not isinstance(layout, dict):
            layout = {'direction': layout}

        return cls(
            id=str(view_id),
            kind=ViewKind.parse(data.get('kind', data.get('el'))),
            title=data.get('title'),
            selection=spec.get('selection'),
            include=tuple(f for f in (IncludeFlag.RELATED, IncludeFlag.RELATIONS) if f in flags),
            exclude=spec.get('exclude'),
            content=content,
            layout=layout,
            base_view_id=data.get('base', data.get('base_view_id')),
            mode=mode,
            filter_tags=frozenset(str(t) for t in tags),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert back to the definition shape (empty parts omitted)."""
        data: Dict[str, Any] = {'id': self.id, 'kind': self.kind.value}
        if self.title:
            data['title'] = self.title
        spec: Dict[str, Any] = {}
        if self.selection is not None:
            spec['selection'] = self.selection
        if self.include:
            spec['include'] = [f.value for f in self.include]
        if self.exclude is not None:
            spec['exclude'] = self.exclude
        if self.layout:
            spec['layout'] = dict(self.layout)
        if spec:
            data['spec'] = spec
        if self.content is not None:
            data['ct'] = [ref.to_dict() for ref in self.content]
        if self.kind is ViewKind.FILTERED:
            data['base'] = self.base_view_id
            data['mode'] = self.mode.value
            data['tags'] = sorted(self.filter_tags)
        return data

    @property
    def is_explicit(self) -> bool:
        return self.content is not None or self.kind is ViewKind.DYNAMIC


@dataclass(frozen=True)
class ContentItem:
    """
    An element or relation as shown in one view.

    The original item is preserved; overrides provide a view-specific lens.
    """
    item: Item
    order_index: int = 0
    name_override: Optional[str] = None
    desc_override: Optional[str] = None
    tech_override: Optional[Tuple[str, ...]] = None
    declared_order: Optional[float] = None

    @property
    def id(self) -> str:
        return self.item.id

    @property
    def category(self) -> str:
        return self.item.category

    @property
    def kind(self):
        return self.item.kind

    @property
    def name(self) -> Optional[str]:
        return self.name_override if self.name_override is not None else self.item.name

    @property
    def desc(self) -> Optional[str]:
        return self.desc_override if self.desc_override is not None else self.item.desc

    @property
    def tech(self) -> Tuple[str, ...]:
        return self.tech_override if self.tech_override is not None else self.item.tech

    @property
    def tags(self) -> FrozenSet[str]:
        return self.item.tags

    @property
    def overridden(self) -> bool:
        return any(v is not None for v in (self.name_override, self.desc_override, self.tech_override))

    def display(self) -> Item:
        """A copy of the item with overrides applied."""
        if not self.overridden:
            return self.item
        return replace(self.item, name=self.name, desc=self.desc, tech=self.tech)

    def to_dict(self) -> Dict[str, Any]:
        data = {'kind': self.category, 'order_index': self.order_index}
        data.update(self.display().to_dict())
        return data

    def __repr__(self):
        marker = '*' if self.overridden else ''
        return f"<ContentItem{marker}({self.order_index}, {self.category} '{self.id}')>"


@dataclass(frozen=True)
class OrderedContent:
    """Composed, read-only content of one view."""
    view_id: str
    view_kind: ViewKind
    items: Tuple[ContentItem, ...] = ()
    title: Optional[str] = None
    layout: Mapping[str, Any] = field(default_factory=dict)
    warnings: Tuple[Exception, ...] = ()

    def __iter__(self) -> Iterator[ContentItem]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def ids(self) -> List[str]:
        return [ci.id for ci in self.items]

    def element_ids(self) -> List[str]:
        return [ci.id for ci in self.items if isinstance(ci.item, Element)]

    def relation_ids(self) -> List[str]:
        return [ci.id for ci in self.items if isinstance(ci.item, Relation)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'view': self.view_id,
            'kind': self.view_kind.value,
            'title': self.title,
            'layout': dict(self.layout),
            'items': [ci.to_dict() for ci in self.items],
            'warnings': [str(w) for w in self.warnings],
        }


def _priority(item: Item) -> int:
    return 0 if isinstance(item, Element) else 1


class ViewComposer:
    """
    Composes views over a Model.

    Stages for every view:
        compose(view) = check(order(expand(select(model))))

    Results are memoized per view id; since the Model is immutable the
    composer can serve several threads, at worst composing a view twice.
    """

    def __init__(
        self,
        model: Model,
        views: Iterable[View] = (),
        ignore_case: bool = False,
        warn_on_empty: bool = True,
    ):
        self.model = model
        self.ignore_case = ignore_case
        self.warn_on_empty = warn_on_empty
        self._views: Dict[str, View] = {}
        self._cache: Dict[str, OrderedContent] = {}
        for view in views:
            self.register(view)

    def register(self, view: View) -> None:
        if view.id in self._views:
            raise ViewError("duplicate view id", view.id)
        self._views[view.id] = view

    def view(self, view_id: str) -> Optional[View]:
        return self._views.get(view_id)

    @property
    def views(self) -> List[View]:
        return list(self._views.values())

    def compose(self, view: Union[View, str]) -> OrderedContent:
        """
        Compose one view.

        Raises:
            InvalidViewTypeError: Filtered view with missing/cyclic base, or
                custom view holding non-custom elements
            ViewError: Unknown view id or malformed definition
            CriteriaError: Invalid selection or exclude criteria
        """
        if isinstance(view, str):
            resolved = self._views.get(view)
            if resolved is None:
                raise ViewError("no such view", view)
            view = resolved
        return self._compose(view, ())

    # =========================================================================
    # Dispatch
    # =========================================================================

    def _compose(self, view: View, visiting: Tuple[str, ...]) -> OrderedContent:
        cached = self._cache.get(view.id)
        if cached is not None and self._views.get(view.id) is view:
            return cached

        warnings: List[Exception] = []
        layout = view.layout

        if view.kind is ViewKind.FILTERED:
            items, layout = self._compose_filtered(view, visiting)
        elif view.is_explicit:
            items = self._compose_explicit(view, warnings)
        else:
            items = self._compose_selection(view)

        if view.kind is ViewKind.CUSTOM:
            self._check_custom(view, items)

        items = tuple(replace(ci, order_index=i) for i, ci in enumerate(items))

        if not items:
            empty = EmptySelectionWarning(view.id)
            warnings.append(empty)
            logger.warning(str(empty))

        content = OrderedContent(
            view_id=view.id,
            view_kind=view.kind,
            items=items,
            title=view.title,
            layout=dict(layout),
            warnings=tuple(warnings),
        )
        logger.debug(f"Composed view '{view.id}': {len(items)} items")

        if self._views.get(view.id) is view:
            self._cache.setdefault(view.id, content)
        return content

    # =========================================================================
    # Selection
    # =========================================================================

    def _criteria(self, raw: Union[RawCriteria, Criteria]) -> Criteria:
        return normalize(raw, ignore_case=self.ignore_case, warn_on_empty=self.warn_on_empty)

    def select_ids(self, view: View) -> List[str]:
        """Selected, expanded and filtered ids of a view, in display order."""
        if view.selection is None:
            return []

        criteria = self._criteria(view.selection)
        matched = {item.id for item in self.model.items() if criteria.matches(item, self.model)}
        expanded = expand(self.model, matched, view.include)

        if view.exclude is not None:
            excluded = self._criteria(view.exclude)
            expanded = {i for i in expanded if not excluded.matches(self.model.get(i), self.model)}

        logger.debug(f"View '{view.id}': {len(matched)} matched, {len(expanded)} after expansion")

        items = [self.model.get(i) for i in expanded]
        items.sort(key=lambda item: (_priority(item), item.seq))
        return [item.id for item in items]

    def _compose_selection(self, view: View) -> List[ContentItem]:
        return [ContentItem(item=self.model.get(i)) for i in self.select_ids(view)]

    # =========================================================================
    # Explicit content
    # =========================================================================

    def _sorted_refs(self, view: View) -> List[Tuple[int, ContentRef]]:
        entries = list(enumerate(view.content or ()))
        with_order = [ref.order is not None for _, ref in entries]

        if all(with_order):
            return sorted(entries, key=lambda e: (e[1].order, e[0]))
        if not any(with_order):
            return entries

        logger.warning(f"View '{view.id}': some content entries have no 'order'; "
                       "they are placed after the ordered ones")
        return sorted(entries, key=lambda e: (
            (0, e[1].order, e[0]) if e[1].order is not None else (1, 0, e[0])
        ))

    def _compose_explicit(self, view: View, warnings: List[Exception]) -> List[ContentItem]:
        items: List[ContentItem] = []
        seen = set()

        for position, ref in self._sorted_refs(view):
            item = self.model.get(ref.ref)
            if item is None:
                missing = UnresolvedReferenceError(view.id, [ref.ref], f"content entry {position}")
                warnings.append(missing)
                logger.warning(str(missing))
                continue
            if ref.ref in seen:
                logger.debug(f"View '{view.id}': duplicate content entry '{ref.ref}' ignored")
                continue
            seen.add(ref.ref)
            items.append(ContentItem(
                item=item,
                name_override=ref.name,
                desc_override=ref.desc,
                tech_override=ref.tech,
                declared_order=ref.order,
            ))

        for item_id in self.select_ids(view):
            if item_id not in seen:
                seen.add(item_id)
                items.append(ContentItem(item=self.model.get(item_id)))

        return items

    # =========================================================================
    # Filtered views
    # =========================================================================

    def _compose_filtered(self, view: View, visiting: Tuple[str, ...]):
        base_id = view.base_view_id
        if not base_id:
            raise InvalidViewTypeError("filtered view has no base view", view.id)

        chain = visiting + (view.id,)
        if base_id in chain:
            path = ' -> '.join(chain + (base_id,))
            raise InvalidViewTypeError(f"cyclic filtered views: {path}", view.id)

        base = self._views.get(base_id)
        if base is None:
            raise InvalidViewTypeError(f"base view '{base_id}' does not exist", view.id)

        try:
            base_content = self._compose(base, chain)
        except InvalidViewTypeError:
            raise
        except ArchviewError as e:
            raise InvalidViewTypeError(f"base view '{base_id}' failed: {e}", view.id) from e

        tags = view.filter_tags
        if view.mode is FilterMode.INCLUDE:
            kept = [ci for ci in base_content.items if not tags.isdisjoint(ci.tags)]
        else:
            kept = [ci for ci in base_content.items if tags.isdisjoint(ci.tags)]

        base_elements = {ci.id for ci in base_content.items if isinstance(ci.item, Element)}
        kept_elements = {ci.id for ci in kept if isinstance(ci.item, Element)}
        dropped = base_elements - kept_elements

        # Edges to an element the filter removed would dangle
        kept = [
            ci for ci in kept
            if not (isinstance(ci.item, Relation)
                    and (ci.item.from_id in dropped or ci.item.to_id in dropped))
        ]

        layout = view.layout or base_content.layout
        return kept, layout

    # =========================================================================
    # Checks
    # =========================================================================

    def _check_custom(self, view: View, items: List[ContentItem]) -> None:
        invalid = [ci.id for ci in items
                   if isinstance(ci.item, Element) and ci.item.kind not in CUSTOM_ELEMENT_KINDS]
        if invalid:
            raise InvalidViewTypeError(
                f"custom view holds non-custom elements: {', '.join(invalid)}", view.id)

"""Containment forest.

Parent/child structure formed by nested declarations (``owner_container_id``)
and ``contained-in`` relations. The forest is validated once when the Model is
built; traversals still track visited ids and a depth bound so they terminate
even on malformed input.
"""

import logging
from typing import Dict, List, Mapping, Optional, Tuple

import networkx as nx

from .errors import CyclicHierarchyError

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 256


def find_cycle(parents: Mapping[str, str]) -> Optional[List[str]]:
    """Return the ids of one containment cycle, or None if there is none."""
    graph = nx.DiGraph()
    graph.add_edges_from(parents.items())
    try:
        edges = nx.find_cycle(graph)
    except nx.NetworkXNoCycle:
        return None
    return [child for child, _parent in edges]


class Hierarchy:
    """Read-only containment forest over element ids."""

    def __init__(self, parents: Mapping[str, str], max_depth: int = DEFAULT_MAX_DEPTH):
        """
        Args:
            parents: child id -> parent id, in merge order
            max_depth: Bound on any single traversal
        """
        self._parents: Dict[str, str] = dict(parents)
        self.max_depth = max_depth
        children: Dict[str, List[str]] = {}
        for child, parent in self._parents.items():
            children.setdefault(parent, []).append(child)
        self._children = {k: tuple(v) for k, v in children.items()}

    @classmethod
    def build(cls, parents: Mapping[str, str], max_depth: int = DEFAULT_MAX_DEPTH) -> 'Hierarchy':
        """Validate ``parents`` as a forest and build the index.

        Raises:
            CyclicHierarchyError: If containment has a cycle
        """
        cycle = find_cycle(parents)
        if cycle:
            raise CyclicHierarchyError(cycle)
        return cls(parents, max_depth=max_depth)

    def parent(self, element_id: str) -> Optional[str]:
        return self._parents.get(element_id)

    def children(self, element_id: str) -> Tuple[str, ...]:
        return self._children.get(element_id, ())

    def roots(self) -> Tuple[str, ...]:
        """Parents that are not themselves contained in anything."""
        return tuple(p for p in self._children if p not in self._parents)

    def ancestors(self, element_id: str) -> Tuple[str, ...]:
        """Parent, grandparent, ... nearest first."""
        result = []
        visited = {element_id}
        current = self._parents.get(element_id)
        while current is not None and current not in visited:
            if len(result) >= self.max_depth:
                logger.warning(f"Ancestor walk from '{element_id}' hit depth bound {self.max_depth}")
                break
            visited.add(current)
            result.append(current)
            current = self._parents.get(current)
        return tuple(result)

    def descendants(self, element_id: str) -> Tuple[str, ...]:
        """All transitive children in depth-first pre-order."""
        result = []
        visited = {element_id}
        stack = [(child, 1) for child in reversed(self.children(element_id))]
        while stack:
            node, depth = stack.pop()
            if node in visited:
                continue
            if depth > self.max_depth:
                logger.warning(f"Descendant walk from '{element_id}' hit depth bound {self.max_depth}")
                continue
            visited.add(node)
            result.append(node)
            stack.extend((child, depth + 1) for child in reversed(self.children(node)))
        return tuple(result)

    def is_child_of(self, element_id: str, parent_id: str) -> bool:
        return self._parents.get(element_id) == parent_id

    def is_parent_of(self, element_id: str, child_id: str) -> bool:
        return self._parents.get(child_id) == element_id

    def is_descendant_of(self, element_id: str, ancestor_id: str) -> bool:
        return ancestor_id in self.ancestors(element_id)

    def is_ancestor_of(self, element_id: str, descendant_id: str) -> bool:
        return element_id in self.ancestors(descendant_id)

    def has_parent(self, element_id: str) -> bool:
        return element_id in self._parents

    def has_children(self, element_id: str) -> bool:
        return element_id in self._children

    def __len__(self) -> int:
        return len(self._parents)

"""
Tests for the containment forest.
"""

import pytest

from archview.errors import CyclicHierarchyError
from archview.hierarchy import Hierarchy, find_cycle


@pytest.fixture
def forest():
    # sys
    # ├── web
    # │   └── handler
    # └── db
    # other
    return Hierarchy.build({
        'web': 'sys',
        'handler': 'web',
        'db': 'sys',
        'lonely': 'other',
    })


class TestTraversal:
    """One-hop and transitive traversals."""

    def test_parent_and_children(self, forest):
        assert forest.parent('web') == 'sys'
        assert forest.parent('sys') is None
        assert forest.children('sys') == ('web', 'db')
        assert forest.children('handler') == ()

    def test_ancestors_nearest_first(self, forest):
        assert forest.ancestors('handler') == ('web', 'sys')
        assert forest.ancestors('sys') == ()

    def test_descendants_depth_first(self, forest):
        assert forest.descendants('sys') == ('web', 'handler', 'db')
        assert forest.descendants('db') == ()

    def test_relationship_checks(self, forest):
        assert forest.is_child_of('web', 'sys')
        assert not forest.is_child_of('handler', 'sys')
        assert forest.is_parent_of('web', 'handler')
        assert forest.is_descendant_of('handler', 'sys')
        assert forest.is_ancestor_of('sys', 'handler')
        assert not forest.is_ancestor_of('handler', 'sys')

    def test_roots(self, forest):
        assert forest.roots() == ('sys', 'other')

    def test_flags(self, forest):
        assert forest.has_parent('db')
        assert not forest.has_parent('sys')
        assert forest.has_children('web')
        assert not forest.has_children('db')
        assert len(forest) == 4


class TestCycles:
    """Cycles are rejected at build time; traversals still terminate."""

    def test_find_cycle_none_for_forest(self):
        assert find_cycle({'a': 'b', 'b': 'c'}) is None

    def test_find_cycle_returns_members(self):
        assert set(find_cycle({'a': 'b', 'b': 'c', 'c': 'a'})) == {'a', 'b', 'c'}

    def test_build_rejects_cycle(self):
        with pytest.raises(CyclicHierarchyError) as exc_info:
            Hierarchy.build({'a': 'b', 'b': 'a'})
        assert 'Cyclic containment' in str(exc_info.value)

    def test_unvalidated_cycle_walks_terminate(self):
        # Given: a hierarchy constructed without validation
        broken = Hierarchy({'a': 'b', 'b': 'c', 'c': 'a'})

        # When / Then: walks stop at already visited ids
        assert broken.ancestors('a') == ('b', 'c')
        assert set(broken.descendants('a')) == {'b', 'c'}
        assert 'a' not in broken.descendants('a')

    def test_depth_bound(self):
        chain = {f'n{i}': f'n{i + 1}' for i in range(10)}
        bounded = Hierarchy(chain, max_depth=3)
        assert bounded.ancestors('n0') == ('n1', 'n2', 'n3')
        assert bounded.descendants('n10') == ('n9', 'n8', 'n7')

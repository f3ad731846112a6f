"""
Tests for archview.builder: merging sources into an immutable Model.

Tests cover:
- Merge order across and within sources
- Nested declarations and owner containment
- Duplicate ids, unresolved references, containment errors
- Deterministic reports and parallel normalization
"""

import pytest

from archview.builder import Source, build, normalize_source
from archview.errors import (
    CyclicHierarchyError,
    DeclarationError,
    DuplicateIdError,
    MultipleParentsError,
    UnresolvedReferenceError,
)
from archview.model import Element, ElementKind, Maturity, Relation, RelationKind


def _sources():
    return [
        Source('a.yaml', [
            {'el': 'system', 'id': 'acme/api', 'ct': [
                {'el': 'container', 'id': 'acme/api-service', 'ct': [
                    {'el': 'component', 'id': 'acme/api-handler'},
                ]},
                {'el': 'container', 'id': 'acme/api-db', 'tech': ['PostgreSQL']},
                {'el': 'request', 'id': 'acme/service-to-db',
                 'from': 'acme/api-service', 'to': 'acme/api-db'},
            ]},
        ]),
        Source('b.yaml', [
            {'el': 'person', 'id': 'acme/user'},
            {'el': 'request', 'id': 'acme/user-to-api', 'from': 'acme/user', 'to': 'acme/api'},
            {'el': 'request', 'id': 'acme/user-to-ghost', 'from': 'acme/user', 'to': 'acme/ghost'},
        ]),
    ]


class TestMerge:
    """Merging declarations from ordered sources."""

    def test_merge_order_is_source_then_declaration(self):
        # Given: two sources with nested declarations
        # When: building the model
        model = build(_sources(), parallel=False)

        # Then: elements keep depth-first declaration order, source by source
        assert list(model.elements) == [
            'acme/api', 'acme/api-service', 'acme/api-handler', 'acme/api-db', 'acme/user',
        ]
        assert list(model.relations) == ['acme/service-to-db', 'acme/user-to-api']

    def test_seq_is_global_merge_position(self):
        model = build(_sources(), parallel=False)
        seqs = [item.seq for item in model.items()]
        assert model.get('acme/api').seq == 0
        assert model.get('acme/user').seq > model.get('acme/api-db').seq
        assert len(set(seqs)) == len(seqs)

    def test_plain_lists_are_accepted_as_sources(self):
        model = build([[{'el': 'system', 'id': 'x'}], [{'el': 'system', 'id': 'y'}]])
        assert list(model.elements) == ['x', 'y']
        assert model.get('y').source_index == 1

    def test_fields_are_normalized(self):
        model = build([[{
            'el': 'container', 'id': 'acme/svc', 'name': 'Service',
            'tech': 'Python, FastAPI ', 'tags': 'backend', 'maturity': 'proposed',
            'external?': True, 'subtype': 'queue',
        }]])
        element = model.get('acme/svc')
        assert element.kind is ElementKind.CONTAINER
        assert element.tech == ('Python', 'FastAPI')
        assert element.tags == frozenset({'backend'})
        assert element.maturity is Maturity.PROPOSED
        assert element.external is True
        assert element.subtype == 'queue'

    def test_external_tag_sets_external_flag(self):
        model = build([[{'el': 'system', 'id': 'acme/db', 'tags': ['backend', 'external']}]])
        assert model.get('acme/db').external is True
        assert model.get('acme/db').to_dict()['external'] is True

    def test_unknown_kinds_keep_raw_tag(self):
        model = build([[
            {'el': 'gizmo', 'id': 'g'},
            {'el': 'gizmo', 'id': 'h'},
            {'el': 'zaps', 'id': 'g-h', 'from': 'g', 'to': 'h'},
        ]])
        assert model.get('g').kind is ElementKind.UNKNOWN
        assert model.get('g').raw_kind == 'gizmo'
        assert model.get('g-h').kind is RelationKind.UNKNOWN

    def test_relation_without_kind_defaults_to_rel(self):
        model = build([[{'el': 'system', 'id': 'a'}, {'el': 'system', 'id': 'b'},
                        {'id': 'a-b', 'from': 'a', 'to': 'b'}]])
        assert model.get('a-b').kind is RelationKind.REL


class TestNesting:
    """Nested ct declarations set owner_container_id."""

    def test_nested_children_get_owner(self):
        model = build(_sources())
        assert model.get('acme/api-service').owner_container_id == 'acme/api'
        assert model.get('acme/api-handler').owner_container_id == 'acme/api-service'
        assert model.get('acme/api').owner_container_id is None

    def test_nested_relation_has_no_owner_field(self):
        model = build(_sources())
        assert isinstance(model.get('acme/service-to-db'), Relation)

    def test_hierarchy_built_from_nesting(self):
        model = build(_sources())
        assert model.hierarchy.children('acme/api') == ('acme/api-service', 'acme/api-db')
        assert model.hierarchy.parent('acme/api-handler') == 'acme/api-service'

    def test_contained_in_relation_adds_parent(self):
        model = build([[
            {'el': 'system', 'id': 'sys'},
            {'el': 'container', 'id': 'box'},
            {'el': 'contained-in', 'id': 'box-in-sys', 'from': 'box', 'to': 'sys'},
        ]])
        assert model.hierarchy.parent('box') == 'sys'

    def test_explicit_owner_field(self):
        model = build([[
            {'el': 'system', 'id': 'sys'},
            {'el': 'container', 'id': 'box', 'owner': 'sys'},
        ]])
        assert model.get('box').owner_container_id == 'sys'
        assert model.hierarchy.children('sys') == ('box',)

    def test_unknown_owner_is_dropped_with_warning(self):
        model = build([[{'el': 'container', 'id': 'box', 'owner': 'nowhere'}]])
        assert model.get('box').owner_container_id is None
        assert model.warnings == (UnresolvedReferenceError('box', ['nowhere'],
                                                           'source 0, declaration 0'),)


class TestDuplicateIds:
    """Duplicate ids are fatal and never last-wins."""

    def test_duplicate_across_sources_raises(self):
        sources = [Source('a', [{'el': 'system', 'id': 'x'}]),
                   Source('b', [{'el': 'person', 'id': 'x'}])]
        with pytest.raises(DuplicateIdError) as exc_info:
            build(sources)
        assert exc_info.value.item_id == 'x'
        assert exc_info.value.first == 'a, declaration 0'
        assert exc_info.value.second == 'b, declaration 0'

    def test_duplicate_between_element_and_relation_raises(self):
        with pytest.raises(DuplicateIdError):
            build([[{'el': 'system', 'id': 'a'}, {'el': 'system', 'id': 'b'},
                    {'el': 'rel', 'id': 'a', 'from': 'a', 'to': 'b'}]])

    def test_duplicate_report_is_deterministic(self):
        sources = [Source('a', [{'el': 'system', 'id': 'x'}, {'el': 'system', 'id': 'y'}]),
                   Source('b', [{'el': 'system', 'id': 'y'}, {'el': 'system', 'id': 'x'}])]
        messages = set()
        for _ in range(5):
            with pytest.raises(DuplicateIdError) as exc_info:
                build(sources, parallel=True)
            messages.add(str(exc_info.value))
        assert messages == {"Duplicate id 'y': declared at a, declaration 1 "
                            "and again at b, declaration 0"}


class TestUnresolvedReferences:
    """Relations with missing endpoints are dropped, not fatal."""

    def test_relation_with_missing_endpoint_is_excluded(self):
        model = build(_sources())
        assert 'acme/user-to-ghost' not in model
        assert 'acme/user' in model

    def test_warning_lists_missing_endpoint(self):
        model = build(_sources())
        assert len(model.warnings) == 1
        warning = model.warnings[0]
        assert isinstance(warning, UnresolvedReferenceError)
        assert warning.item_id == 'acme/user-to-ghost'
        assert warning.missing == ('acme/ghost',)
        assert warning.location == 'b.yaml, declaration 2'

    def test_both_endpoints_missing_reported_once_each(self):
        model = build([[{'el': 'rel', 'id': 'r', 'from': 'p', 'to': 'q'},
                        {'el': 'rel', 'id': 's', 'from': 'p', 'to': 'p'}]])
        assert model.warnings[0].missing == ('p', 'q')
        assert model.warnings[1].missing == ('p',)

    def test_reports_identical_across_builds(self):
        first = build(_sources(), parallel=True)
        second = build(_sources(), parallel=False)
        assert [str(w) for w in first.warnings] == [str(w) for w in second.warnings]


class TestContainmentErrors:
    """Containment must be a forest."""

    def test_cycle_through_contained_in_raises(self):
        decls = [
            {'el': 'system', 'id': 'a'},
            {'el': 'system', 'id': 'b'},
            {'el': 'contained-in', 'id': 'a-in-b', 'from': 'a', 'to': 'b'},
            {'el': 'contained-in', 'id': 'b-in-a', 'from': 'b', 'to': 'a'},
        ]
        with pytest.raises(CyclicHierarchyError) as exc_info:
            build([decls])
        assert set(exc_info.value.cycle) == {'a', 'b'}

    def test_self_containment_raises(self):
        with pytest.raises(CyclicHierarchyError):
            build([[{'el': 'system', 'id': 'a'},
                    {'el': 'contained-in', 'id': 'a-in-a', 'from': 'a', 'to': 'a'}]])

    def test_contained_in_conflicting_with_nesting_raises(self):
        decls = [
            {'el': 'system', 'id': 'sys', 'ct': [{'el': 'container', 'id': 'box'}]},
            {'el': 'system', 'id': 'other'},
            {'el': 'contained-in', 'id': 'box-in-other', 'from': 'box', 'to': 'other'},
        ]
        with pytest.raises(MultipleParentsError) as exc_info:
            build([decls])
        assert exc_info.value.child_id == 'box'
        assert exc_info.value.parents == ('sys', 'other')

    def test_nested_child_naming_other_owner_raises(self):
        decls = [{'el': 'system', 'id': 'sys', 'ct': [
            {'el': 'container', 'id': 'box', 'owner': 'elsewhere'}]}]
        with pytest.raises(MultipleParentsError):
            normalize_source(0, decls)

    def test_redundant_contained_in_is_accepted(self):
        decls = [
            {'el': 'system', 'id': 'sys', 'ct': [{'el': 'container', 'id': 'box'}]},
            {'el': 'contained-in', 'id': 'box-in-sys', 'from': 'box', 'to': 'sys'},
        ]
        model = build([decls])
        assert model.hierarchy.parent('box') == 'sys'


class TestDeclarationErrors:
    """Malformed declarations."""

    def test_missing_id(self):
        with pytest.raises(DeclarationError) as exc_info:
            build([Source('f', [{'el': 'system'}])])
        assert 'f, declaration 0' in str(exc_info.value)

    def test_relation_missing_to(self):
        with pytest.raises(DeclarationError):
            build([[{'el': 'rel', 'id': 'r', 'from': 'a'}]])

    def test_non_mapping_declaration(self):
        with pytest.raises(DeclarationError):
            build([['not a mapping']])

    def test_ct_must_be_list(self):
        with pytest.raises(DeclarationError):
            build([[{'el': 'system', 'id': 's', 'ct': 'oops'}]])

    def test_source_must_be_list(self):
        with pytest.raises(DeclarationError):
            normalize_source(0, Source('bad', {'el': 'system'}))


class TestParallelBuild:
    """Parallel normalization yields the same model as sequential."""

    def test_parallel_equals_sequential(self):
        sources = [Source(f's{i}', [{'el': 'system', 'id': f'ns{i}/sys{j}'} for j in range(20)])
                   for i in range(8)]
        parallel = build(sources, parallel=True, max_workers=4)
        sequential = build(sources, parallel=False)
        assert list(parallel.elements) == list(sequential.elements)
        assert [e.seq for e in parallel.items()] == [e.seq for e in sequential.items()]

    def test_element_instances_are_elements(self):
        model = build(_sources(), parallel=True)
        assert all(isinstance(e, Element) for e in model.elements.values())

"""
Tests for the Predicate Evaluator.

Tests cover:
- Every supported predicate key
- Negation scoped to one key
- Disjunction and the empty conjunction
- Validation errors
"""

import logging

import pytest

from archview.builder import Source, build
from archview.criteria import Conjunction, Disjunction, matches, normalize, supported_keys
from archview.errors import CriteriaError


@pytest.fixture
def model():
    return build([Source('acme', [
        {'el': 'person', 'id': 'acme/user', 'name': 'Customer',
         'desc': 'Buys things online'},
        {'el': 'system', 'id': 'acme/api', 'name': 'Order API', 'tags': ['backend'],
         'tech': ['Python', 'FastAPI'], 'maturity': 'proposed', 'ct': [
             {'el': 'container', 'id': 'acme/api-service', 'tech': 'Python', 'ct': [
                 {'el': 'component', 'id': 'acme/api-handler'},
             ]},
             {'el': 'container', 'id': 'acme/api-db', 'subtype': 'database',
              'tech': 'PostgreSQL', 'tags': ['storage']},
         ]},
        {'el': 'system', 'id': 'acme/db', 'tags': ['backend', 'external'], 'external': True,
         'doc': 'Third party ledger', 'maturity': 'deprecated'},
        {'el': 'gizmo', 'id': 'lab/gadget'},
        {'el': 'request', 'id': 'acme/user-to-api', 'from': 'acme/user', 'to': 'acme/api',
         'tech': 'HTTPS', 'tags': ['sync']},
        {'el': 'dataflow', 'id': 'acme/api-to-db', 'from': 'acme/api', 'to': 'acme/db'},
    ])])


def _select(model, criteria):
    crit = normalize(criteria, warn_on_empty=False)
    return {item.id for item in model.items() if crit.matches(item, model)}


ALL_ELEMENTS = {'acme/user', 'acme/api', 'acme/api-service', 'acme/api-handler',
                'acme/api-db', 'acme/db', 'lab/gadget'}


class TestKindAndId:
    """el/els/id/ids/key."""

    def test_el(self, model):
        assert _select(model, {'el': 'system'}) == {'acme/api', 'acme/db'}

    def test_el_matches_relations(self, model):
        assert _select(model, {'el': 'request'}) == {'acme/user-to-api'}

    def test_el_matches_raw_unknown_tag(self, model):
        assert _select(model, {'el': 'gizmo'}) == {'lab/gadget'}

    def test_els(self, model):
        assert _select(model, {'els': ['person', 'container']}) == {
            'acme/user', 'acme/api-service', 'acme/api-db'}

    def test_id_and_key(self, model):
        assert _select(model, {'id': 'acme/db'}) == {'acme/db'}
        assert _select(model, {'key': 'acme/db'}) == {'acme/db'}

    def test_ids(self, model):
        assert _select(model, {'ids': ['acme/db', 'acme/api-to-db', 'nope']}) == {
            'acme/db', 'acme/api-to-db'}


class TestNamespace:
    """Namespace predicates use exact equality, not substrings."""

    def test_namespace_exact(self, model):
        result = _select(model, {'namespace': 'acme', 'element?': True})
        assert result == ALL_ELEMENTS - {'lab/gadget'}

    def test_namespace_is_not_substring(self, model):
        assert _select(model, {'namespace': 'acm'}) == set()

    def test_namespaces(self, model):
        assert _select(model, {'namespaces': ['lab']}) == {'lab/gadget'}

    def test_namespace_prefix(self, model):
        assert _select(model, {'namespace-prefix': 'la'}) == {'lab/gadget'}


class TestTechAndTags:
    """tech/techs/all-techs and tag/tags/all-tags."""

    def test_tech_is_substring_of_any_entry(self, model):
        assert _select(model, {'tech': 'Fast'}) == {'acme/api'}
        assert _select(model, {'tech': 'Python'}) == {'acme/api', 'acme/api-service'}

    def test_techs_any_of(self, model):
        assert _select(model, {'techs': ['PostgreSQL', 'HTTPS']}) == {
            'acme/api-db', 'acme/user-to-api'}

    def test_all_techs(self, model):
        assert _select(model, {'all-techs': ['Python', 'FastAPI']}) == {'acme/api'}

    def test_tag(self, model):
        assert _select(model, {'tag': 'backend'}) == {'acme/api', 'acme/db'}

    def test_tags_any_of(self, model):
        assert _select(model, {'tags': ['storage', 'sync']}) == {
            'acme/api-db', 'acme/user-to-api'}

    def test_all_tags(self, model):
        assert _select(model, {'all-tags': ['backend', 'external']}) == {'acme/db'}


class TestFlags:
    """Boolean and enum predicates."""

    def test_external(self, model):
        assert _select(model, {'external?': True}) == {'acme/db'}

    def test_internal(self, model):
        assert 'acme/db' not in _select(model, {'internal?': True})
        assert _select(model, {'internal?': False}) == {'acme/db'}

    def test_maturity(self, model):
        assert _select(model, {'maturity': 'proposed'}) == {'acme/api'}
        assert _select(model, {'maturities': ['proposed', 'deprecated']}) == {
            'acme/api', 'acme/db'}

    def test_subtype(self, model):
        assert _select(model, {'subtype': 'database'}) == {'acme/api-db'}
        assert _select(model, {'subtypes': ['database', 'queue']}) == {'acme/api-db'}

    def test_element_and_relation(self, model):
        assert _select(model, {'relation?': True}) == {'acme/user-to-api', 'acme/api-to-db'}
        assert _select(model, {'element?': True}) == ALL_ELEMENTS


class TestRelationPredicates:
    """from/to and reverse references."""

    def test_from_and_to(self, model):
        assert _select(model, {'from': 'acme/user'}) == {'acme/user-to-api'}
        assert _select(model, {'to': 'acme/db'}) == {'acme/api-to-db'}

    def test_refers_to(self, model):
        assert _select(model, {'refers-to': 'acme/api'}) == {'acme/user'}

    def test_referred_by(self, model):
        assert _select(model, {'referred-by': 'acme/api'}) == {'acme/db'}

    def test_refers_and_referred_flags(self, model):
        assert _select(model, {'refers?': True}) == {'acme/user', 'acme/api'}
        assert _select(model, {'referred?': True}) == {'acme/api', 'acme/db'}


class TestHierarchyPredicates:
    """Containment predicates delegate to the forest."""

    def test_child_of(self, model):
        assert _select(model, {'child-of': 'acme/api'}) == {'acme/api-service', 'acme/api-db'}

    def test_parent_of(self, model):
        assert _select(model, {'parent-of': 'acme/api-handler'}) == {'acme/api-service'}

    def test_descendant_of(self, model):
        assert _select(model, {'descendant-of': 'acme/api'}) == {
            'acme/api-service', 'acme/api-db', 'acme/api-handler'}

    def test_ancestor_of(self, model):
        assert _select(model, {'ancestor-of': 'acme/api-handler'}) == {
            'acme/api', 'acme/api-service'}

    def test_child_and_children_flags(self, model):
        assert _select(model, {'children?': True}) == {'acme/api', 'acme/api-service'}
        assert _select(model, {'child?': True}) == {
            'acme/api-service', 'acme/api-db', 'acme/api-handler'}

    def test_hierarchy_predicates_need_a_model(self, model):
        with pytest.raises(CriteriaError):
            matches({'child-of': 'acme/api'}, model.get('acme/api-db'))


class TestTextPredicates:
    """name/desc/doc are regular expressions; absent field never matches."""

    def test_name_regex(self, model):
        assert _select(model, {'name': '^Order'}) == {'acme/api'}

    def test_desc_regex(self, model):
        assert _select(model, {'desc': 'online$'}) == {'acme/user'}

    def test_doc_regex(self, model):
        assert _select(model, {'doc': 'ledger'}) == {'acme/db'}

    def test_absent_field_does_not_match(self, model):
        assert _select(model, {'desc': '.*'}) == {'acme/user'}

    def test_case_sensitive_by_default(self, model):
        assert _select(model, {'name': 'order'}) == set()

    def test_ignore_case(self, model):
        crit = normalize({'name': 'order'}, ignore_case=True)
        assert {i.id for i in model.items() if crit.matches(i, model)} == {'acme/api'}

    def test_negated_absent_field_matches(self, model):
        assert 'acme/db' in _select(model, {'!desc': '.*'})


class TestNegation:
    """A '!' prefix negates only its own predicate."""

    def test_backend_but_not_external(self, model):
        assert _select(model, {'tag': 'backend', '!external?': True}) == {'acme/api'}

    def test_negation_identity_holds_for_every_item(self, model):
        # matches({!k: v, **rest}) == (not matches({k: v})) and matches(rest)
        for item in model.items():
            combined = matches({'!tag': 'backend', 'el': 'system'}, item, model)
            single = matches({'tag': 'backend'}, item, model)
            rest = matches({'el': 'system'}, item, model)
            assert combined == ((not single) and rest)

    def test_negation_of_relation_predicate_on_element(self, model):
        # from is false for elements, so its negation is true
        assert matches({'!from': 'acme/user'}, model.get('acme/user'), model)


class TestDisjunction:
    """Lists of conjunctions match if any conjunction matches."""

    def test_people_or_systems(self, model):
        assert _select(model, [{'el': 'person'}, {'el': 'system'}]) == {
            'acme/user', 'acme/api', 'acme/db'}

    def test_disjunction_identity(self, model):
        c1, c2 = {'tag': 'backend'}, {'el': 'person'}
        for item in model.items():
            assert matches([c1, c2], item, model) == (
                matches(c1, item, model) or matches(c2, item, model))

    def test_empty_list_matches_nothing(self, model):
        assert _select(model, []) == set()


class TestEmptyConjunction:
    """{} matches everything, with a warning."""

    def test_matches_everything(self, model):
        assert _select(model, {}) == {item.id for item in model.items()}

    def test_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger='archview.criteria'):
            normalize({})
        assert 'matches every element' in caplog.text

    def test_warning_can_be_disabled(self, caplog):
        with caplog.at_level(logging.WARNING, logger='archview.criteria'):
            normalize({}, warn_on_empty=False)
        assert caplog.text == ''

    def test_none_means_empty(self, model):
        assert isinstance(normalize(None, warn_on_empty=False), Conjunction)


class TestNormalize:
    """Validation and compilation."""

    def test_returns_compiled_types(self):
        assert isinstance(normalize({'el': 'system'}), Conjunction)
        assert isinstance(normalize([{'el': 'system'}]), Disjunction)

    def test_compiled_criteria_pass_through(self):
        crit = normalize({'el': 'system'})
        assert normalize(crit) is crit

    def test_text_criteria_are_parsed(self, model):
        crit = normalize('el:system !external?:true')
        assert {i.id for i in model.items() if crit.matches(i, model)} == {'acme/api'}

    def test_unknown_key_raises(self):
        with pytest.raises(CriteriaError, match="Unknown criteria key 'colour'"):
            normalize({'colour': 'blue'})

    def test_invalid_regex_raises(self):
        with pytest.raises(CriteriaError):
            normalize({'name': '('})

    def test_flag_requires_bool(self):
        with pytest.raises(CriteriaError):
            normalize({'external?': 'yes'})

    def test_scalar_key_rejects_list(self):
        with pytest.raises(CriteriaError):
            normalize({'el': ['system']})

    def test_plural_key_accepts_single_string(self, model):
        assert _select(model, {'tags': 'storage'}) == {'acme/api-db'}

    def test_leading_colon_keys(self, model):
        assert _select(model, {':el': 'person'}) == {'acme/user'}

    def test_criteria_error_is_value_error(self):
        with pytest.raises(ValueError):
            normalize(42)

    def test_supported_keys_cover_required_set(self):
        required = {
            'el', 'els', 'id', 'ids', 'namespace', 'namespaces', 'tech', 'techs',
            'all-techs', 'tag', 'tags', 'all-tags', 'external?', 'maturity', 'maturities',
            'from', 'to', 'refers-to', 'referred-by', 'child-of', 'parent-of',
            'descendant-of', 'ancestor-of', 'name', 'desc', 'doc',
        }
        assert required <= set(supported_keys())

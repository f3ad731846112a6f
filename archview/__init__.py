"""
archview - architecture model selection and view composition.

Main API:
    from archview import Source, build, select, ViewService

    # Build an immutable model from ordered sources
    model = build([
        Source('core', [
            {'el': 'person', 'id': 'acme/user'},
            {'el': 'system', 'id': 'acme/api', 'tags': ['backend']},
            {'el': 'request', 'id': 'acme/user-to-api',
             'from': 'acme/user', 'to': 'acme/api'},
        ]),
    ])

    # Ad-hoc selection
    systems = select(model, {'el': 'system'})
    internal = select(model, 'tag:backend !external?:true')

    # Compose views for a renderer
    service = ViewService(model, [
        {'id': 'context', 'kind': 'context',
         'spec': {'selection': {'namespace': 'acme'}, 'include': ['relations']}},
    ])
    content = service.compose('context')
"""

from .builder import Source, build
from .criteria import matches, normalize
from .errors import (
    ArchviewError,
    CriteriaError,
    CyclicHierarchyError,
    DeclarationError,
    DuplicateIdError,
    EmptySelectionWarning,
    InvalidViewTypeError,
    ModelError,
    MultipleParentsError,
    UnresolvedReferenceError,
    ViewError,
)
from .expand import IncludeFlag, expand
from .model import Element, ElementKind, Model, Relation, RelationKind
from .query import select
from .views import OrderedContent, View, ViewComposer, ViewService

__version__ = "0.1.0"
__all__ = [
    "ArchviewError",
    "CriteriaError",
    "CyclicHierarchyError",
    "DeclarationError",
    "DuplicateIdError",
    "Element",
    "ElementKind",
    "EmptySelectionWarning",
    "IncludeFlag",
    "InvalidViewTypeError",
    "Model",
    "ModelError",
    "MultipleParentsError",
    "OrderedContent",
    "Relation",
    "RelationKind",
    "Source",
    "UnresolvedReferenceError",
    "View",
    "ViewComposer",
    "ViewError",
    "ViewService",
    "build",
    "expand",
    "matches",
    "normalize",
    "select",
]

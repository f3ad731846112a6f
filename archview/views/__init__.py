"""
Views for archview.

A view is a named, ordered projection of the Model that a renderer draws.
Views are either selection based, explicit content lists (``ct``), or
filtered derivations of another view.

Example:
    from archview.views import ViewService

    service = ViewService(model, [
        {'id': 'context', 'kind': 'context',
         'spec': {'selection': {'namespace': 'acme'}, 'include': ['relations']}},
        {'id': 'backend', 'kind': 'filtered', 'base': 'context',
         'mode': 'include', 'tags': ['backend']},
    ])
    report = service.compose_all()
    for item in report.contents['backend']:
        print(item.order_index, item.id, item.name)
"""

from .dsl import (
    ContentItem,
    ContentRef,
    FilterMode,
    OrderedContent,
    View,
    ViewComposer,
    ViewKind,
)
from .service import CompositionReport, ViewService

__all__ = [
    'ContentItem',
    'ContentRef',
    'CompositionReport',
    'FilterMode',
    'OrderedContent',
    'View',
    'ViewComposer',
    'ViewKind',
    'ViewService',
]

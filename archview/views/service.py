"""
Views Service - High-level API for a catalog of views over one Model.

Provides lookup, batch composition, dependency queries and YAML
import/export of view definitions.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union
import logging
import yaml

from ..config import ArchviewConfig
from ..errors import ArchviewError, ViewError
from ..model import Model
from .dsl import OrderedContent, View, ViewComposer, ViewKind

logger = logging.getLogger(__name__)


def _definition_id(definition: Any, index: int) -> str:
    if isinstance(definition, View):
        return definition.id
    if isinstance(definition, dict) and definition.get('id'):
        return str(definition['id'])
    return f"definition {index}"


@dataclass
class CompositionReport:
    """Result of composing a batch of views.

    ``contents`` and ``errors`` are keyed by view id in catalog order. A view
    appears in exactly one of them.
    """
    contents: Dict[str, OrderedContent] = field(default_factory=dict)
    errors: Dict[str, ArchviewError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    def warnings(self) -> List[Tuple[str, Exception]]:
        """(view id, warning) pairs across all composed views."""
        return [(view_id, w) for view_id, content in self.contents.items() for w in content.warnings]


class ViewService:
    """
    Service for a catalog of views.

    Provides:
    - Registration and lookup of views
    - Single and batch composition
    - Dependency queries over filtered views
    - Import/export of view definitions
    """

    def __init__(
        self,
        model: Model,
        views: Iterable[Union[View, Dict[str, Any]]] = (),
        config: Optional[ArchviewConfig] = None,
    ):
        self.model = model
        self.config = config or ArchviewConfig()
        self.composer = ViewComposer(
            model,
            ignore_case=self.config.selection.regex_ignore_case,
            warn_on_empty=self.config.selection.warn_on_empty_criteria,
        )
        # Malformed definitions are kept per view id so the rest still compose
        self.definition_errors: Dict[str, ViewError] = {}
        for index, view in enumerate(views):
            try:
                self.add(view)
            except ViewError as e:
                key = _definition_id(view, index)
                if self.composer.view(key) is not None or key in self.definition_errors:
                    key = f"{key} (definition {index})"
                logger.error(f"Invalid definition for view '{key}': {e}")
                self.definition_errors[key] = e

    # =========================================================================
    # Catalog
    # =========================================================================

    def add(self, view: Union[View, Dict[str, Any]]) -> View:
        """
        Register a view.

        Raises:
            ViewError: On a malformed definition or a duplicate id
        """
        if not isinstance(view, View):
            view = View.from_dict(view)
        self.composer.register(view)
        logger.debug(f"Registered view '{view.id}' ({view.kind})")
        return view

    def get(self, view_id: str) -> Optional[View]:
        """Get a view by id."""
        return self.composer.view(view_id)

    def list(self) -> List[Dict[str, Any]]:
        """
        List all views with metadata.

        Returns:
            List of view info dicts in catalog order
        """
        return [
            {
                'id': view.id,
                'kind': view.kind.value,
                'title': view.title or '',
                'explicit': view.is_explicit,
                'depends_on': self.dependencies(view.id),
            }
            for view in self.composer.views
        ]

    def __len__(self) -> int:
        return len(self.composer.views)

    # =========================================================================
    # Composition
    # =========================================================================

    def compose(self, view_id: str) -> OrderedContent:
        """Compose a single view; errors propagate."""
        if view_id in self.definition_errors:
            raise self.definition_errors[view_id]
        return self.composer.compose(view_id)

    def compose_all(self, parallel: Optional[bool] = None) -> CompositionReport:
        """
        Compose every view in the catalog.

        A failing view is recorded in ``report.errors`` and does not affect
        the others. Definitions rejected when the catalog was built are
        reported there first.

        Args:
            parallel: Override the configured parallelism

        Returns:
            CompositionReport in catalog order
        """
        if parallel is None:
            parallel = self.config.compose.parallel

        view_ids = [view.id for view in self.composer.views]
        report = CompositionReport(errors=dict(self.definition_errors))

        if parallel and len(view_ids) > 1:
            with ThreadPoolExecutor(max_workers=self.config.compose.max_workers) as executor:
                futures = [(vid, executor.submit(self.composer.compose, vid)) for vid in view_ids]
                outcomes = [(vid, self._outcome(vid, future.result)) for vid, future in futures]
        else:
            outcomes = [(vid, self._outcome(vid, lambda v=vid: self.composer.compose(v)))
                        for vid in view_ids]

        for view_id, outcome in outcomes:
            if isinstance(outcome, ArchviewError):
                report.errors[view_id] = outcome
            else:
                report.contents[view_id] = outcome

        logger.info(f"Composed {len(report.contents)} views, {len(report.errors)} failed")
        return report

    @staticmethod
    def _outcome(view_id: str, call) -> Union[OrderedContent, ArchviewError]:
        try:
            return call()
        except ArchviewError as e:
            logger.error(f"Failed to compose view '{view_id}': {e}")
            return e

    # =========================================================================
    # Dependencies
    # =========================================================================

    def dependencies(self, view_id: str) -> List[str]:
        """
        Get the chain of base views a filtered view depends on.

        Args:
            view_id: View id

        Returns:
            Base view ids, nearest first (stops at a cycle or missing view)
        """
        deps: List[str] = []
        view = self.get(view_id)
        while view is not None and view.kind is ViewKind.FILTERED and view.base_view_id:
            base_id = view.base_view_id
            if base_id == view_id or base_id in deps:
                break
            deps.append(base_id)
            view = self.get(base_id)
        return deps

    def dependents(self, view_id: str) -> List[str]:
        """Get views that (transitively) derive from this view."""
        return [
            view.id for view in self.composer.views
            if view_id in self.dependencies(view.id)
        ]

    # =========================================================================
    # Import/Export
    # =========================================================================

    def export_yaml(self, view_id: str) -> str:
        """
        Export a view definition as YAML.

        Raises:
            ViewError: If the view does not exist
        """
        view = self.get(view_id)
        if view is None:
            raise ViewError("no such view", view_id)
        return yaml.dump(view.to_dict(), default_flow_style=False, allow_unicode=True,
                         sort_keys=False)

    def import_yaml(self, yaml_content: str) -> List[View]:
        """
        Import one view definition or a list of them from YAML.

        Returns:
            The registered views
        """
        try:
            data = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ViewError(f"invalid YAML: {e}") from e

        if isinstance(data, dict) and 'views' in data:
            data = data['views']
        if isinstance(data, dict):
            data = [data]
        if not isinstance(data, list):
            raise ViewError("expected a view mapping or a list of views")

        return [self.add(item) for item in data]

    def import_file(self, path: Path) -> List[View]:
        """Import views from a YAML file."""
        with open(path, encoding='utf-8') as f:
            return self.import_yaml(f.read())

    def export_file(self, view_id: str, path: Path) -> None:
        """Export a view to a YAML file."""
        yaml_content = self.export_yaml(view_id)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(yaml_content)

    def validate(self, definition: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
        """
        Validate a view definition without registering it.

        Filtered views are resolved against the current catalog.

        Returns:
            Tuple of (is_valid, error_message)
        """
        try:
            view = View.from_dict(definition)
            probe = ViewComposer(
                self.model,
                [v for v in self.composer.views if v.id != view.id] + [view],
                ignore_case=self.config.selection.regex_ignore_case,
                warn_on_empty=False,
            )
            probe.compose(view.id)
            return True, None
        except ArchviewError as e:
            return False, str(e)

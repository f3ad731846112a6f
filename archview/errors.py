"""Exception hierarchy for archview.

Build errors (ModelError subclasses) are fatal unless noted; view errors are
caught per view by the batch composer so one broken view never hides the
others.
"""

from typing import Optional, Sequence, Tuple


class ArchviewError(Exception):
    """Base class for all archview errors."""


class ModelError(ArchviewError):
    """Raised while building a Model from declarations."""


class DeclarationError(ModelError):
    """A raw declaration is malformed (missing id, bad endpoints, ...)."""

    def __init__(self, message: str, location: Optional[str] = None):
        self.location = location
        if location:
            message = f"{location}: {message}"
        super().__init__(message)


class DuplicateIdError(ModelError):
    """Two declarations share an id."""

    def __init__(self, item_id: str, first: str, second: str):
        self.item_id = item_id
        self.first = first
        self.second = second
        super().__init__(
            f"Duplicate id '{item_id}': declared at {first} and again at {second}"
        )


class HierarchyError(ModelError):
    """The containment structure is not a forest."""


class CyclicHierarchyError(HierarchyError):
    """Containment contains a cycle."""

    def __init__(self, cycle: Sequence[str]):
        self.cycle: Tuple[str, ...] = tuple(cycle)
        path = " -> ".join(self.cycle + self.cycle[:1])
        super().__init__(f"Cyclic containment: {path}")


class MultipleParentsError(HierarchyError):
    """An element is contained in more than one parent."""

    def __init__(self, child_id: str, parents: Sequence[str]):
        self.child_id = child_id
        self.parents: Tuple[str, ...] = tuple(parents)
        super().__init__(
            f"Element '{child_id}' has more than one parent: {', '.join(self.parents)}"
        )


class UnresolvedReferenceError(ModelError):
    """A relation or content entry references an id that is not in the Model.

    Collected as a warning rather than raised; the referencing item is dropped.
    """

    def __init__(self, item_id: str, missing: Sequence[str], location: Optional[str] = None):
        self.item_id = item_id
        self.missing: Tuple[str, ...] = tuple(missing)
        self.location = location
        where = f" ({location})" if location else ""
        super().__init__(
            f"'{item_id}'{where} references unknown id(s): {', '.join(self.missing)}"
        )

    def __eq__(self, other):
        if not isinstance(other, UnresolvedReferenceError):
            return NotImplemented
        return (self.item_id, self.missing, self.location) == (
            other.item_id, other.missing, other.location
        )

    def __hash__(self):
        return hash((self.item_id, self.missing, self.location))


class CriteriaError(ArchviewError, ValueError):
    """Selection criteria are malformed."""


class ViewError(ArchviewError):
    """A single view could not be composed."""

    def __init__(self, message: str, view_id: Optional[str] = None):
        self.view_id = view_id
        if view_id:
            message = f"View '{view_id}': {message}"
        super().__init__(message)


class InvalidViewTypeError(ViewError):
    """A view's definition does not fit its kind.

    Raised for filtered views with a missing or cyclic base, and for custom
    views that hold non-custom elements.
    """


class EmptySelectionWarning(UserWarning):
    """A view or query resolved to no content."""

    def __init__(self, view_id: str):
        self.view_id = view_id
        super().__init__(f"View '{view_id}' has no content")

from __future__ import annotations


class AssociationError(Exception):
    """Base class for every error raised by sqla_includes."""


class InvalidAssociation(AssociationError, ValueError):
    """Descriptor arguments contradict the association kind or table metadata."""


class UnknownAssociation(AssociationError, LookupError):
    """No association with this name is registered for the entity."""

    def __init__(self, entity: str, name: str) -> None:
        super().__init__(f"No association {name!r} registered on {entity!r}")
        self.entity = entity
        self.name = name


class DuplicateAssociation(AssociationError, ValueError):
    """The association name is already registered for the entity."""

    def __init__(self, entity: str, name: str) -> None:
        super().__init__(f"Association {name!r} is already registered on {entity!r}")
        self.entity = entity
        self.name = name


class DuplicateInclude(AssociationError, ValueError):
    """The association is already included on this request node."""


class CyclicInclude(DuplicateInclude):
    """The association is already open on the path from the root."""


class RegistryFrozen(AssociationError, RuntimeError):
    """Registration attempted after the registry was frozen."""


class RequestFrozen(AssociationError, RuntimeError):
    """The request tree was modified after it was compiled."""


class AmbiguousColumn(AssociationError, RuntimeError):
    """Two selected columns ended up with the same label."""


class HydrationConsistencyError(AssociationError, RuntimeError):
    """Fetched rows contradict the declared cardinality of an association."""

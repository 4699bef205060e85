"""Declared associations compiled into joined SELECTs and hydrated into graphs.

sqla_includes lets you register associations between record types in an
``AssociationRegistry``, compose a request tree with ``fetch(...).include(...)``,
compile it into a single aliased SELECT with ``compile_request`` and rebuild
the nested entity graph from the flat joined rows with ``hydrate``.
``fetch_all`` / ``afetch_all`` do all three against a SQLAlchemy connection or
session.
"""

from ._version import __version__, __version_tuple__
from .associations import Association, AssociationKind, KeyPair, belongs_to, has_many, has_one, through
from .compiler import CompiledPlan, CompileOptions, NodePartition, PlanCompiler, compile_request
from .datastructures import frozendict
from .entity import Entity, passthrough
from .errors import (
    AmbiguousColumn,
    AssociationError,
    CyclicInclude,
    DuplicateAssociation,
    DuplicateInclude,
    HydrationConsistencyError,
    InvalidAssociation,
    RegistryFrozen,
    RequestFrozen,
    UnknownAssociation,
)
from .execution import afetch_all, fetch_all
from .hydrator import GraphNode, Hydrator, hydrate
from .keys import JoinStep, join_condition, join_steps
from .orm import entity_from_model, registry_from_base
from .registry import AssociationRegistry
from .request import RequestNode, fetch


__all__ = (
    "AmbiguousColumn",
    "Association",
    "AssociationError",
    "AssociationKind",
    "AssociationRegistry",
    "CompileOptions",
    "CompiledPlan",
    "CyclicInclude",
    "DuplicateAssociation",
    "DuplicateInclude",
    "Entity",
    "GraphNode",
    "HydrationConsistencyError",
    "Hydrator",
    "InvalidAssociation",
    "JoinStep",
    "KeyPair",
    "NodePartition",
    "PlanCompiler",
    "RegistryFrozen",
    "RequestFrozen",
    "RequestNode",
    "UnknownAssociation",
    "__version__",
    "__version_tuple__",
    "afetch_all",
    "belongs_to",
    "compile_request",
    "entity_from_model",
    "fetch",
    "fetch_all",
    "frozendict",
    "has_many",
    "has_one",
    "hydrate",
    "join_condition",
    "join_steps",
    "passthrough",
    "registry_from_base",
    "through",
)

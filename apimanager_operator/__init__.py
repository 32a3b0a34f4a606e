"""
Package exports
"""

# Local
from . import config, reconcile
from .annotations import has_override, select_mutators
from .components import Backend, BackendReconciler, BaseComponentReconciler
from .exceptions import assert_spec, assert_store
from .managed_object import ResourceIdentity
from .mutators import (
    ArgsMutator,
    CreateOnlyMutator,
    DefaultsOnlyMapMutator,
    DefaultsOnlyMutator,
    EnvVarMutator,
    GenericFieldsMutator,
    MapEntriesMutator,
    Mutator,
    MutatorPipeline,
    ReplicasMutator,
)
from .reconcile import ReconcileManager
from .reconcile_object import ObjectReconciler, ReconcileOutcome
from .scheduler import ReconcileScheduler
from .store import DryRunObjectStore, ObjectStoreBase, OpenshiftObjectStore

"""
Tests for the single object reconcile cycle
"""

# Standard
import copy
import threading

# Third Party
import pytest

# Local
from apimanager_operator import constants
from apimanager_operator.annotations import select_mutators
from apimanager_operator.exceptions import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    ReconcileCancelledError,
    TransientStoreError,
)
from apimanager_operator.managed_object import ResourceIdentity
from apimanager_operator.mutators import CreateOnlyMutator, ReplicasMutator
from apimanager_operator.reconcile_object import ObjectReconciler, ReconcileOutcome
from apimanager_operator.store import DryRunObjectStore
from apimanager_operator.test_helpers.helpers import (
    TEST_NAMESPACE,
    MockObjectStore,
    make_deployment_config,
)

LISTENER_KEY = constants.LISTENER_REPLICAS_OVERRIDE_ANNOTATION
LISTENER_ID = ResourceIdentity(
    kind="DeploymentConfig", name="backend-listener", namespace=TEST_NAMESPACE
)


def test_create_when_missing():
    """A missing object is created as desired"""
    store = MockObjectStore()
    desired = make_deployment_config(replicas=3)
    desired_before = copy.deepcopy(desired)

    outcome = ObjectReconciler(store).reconcile(desired, [ReplicasMutator()])
    assert outcome == ReconcileOutcome.CREATED
    assert store.get_obj("DeploymentConfig", "backend-listener")["spec"][
        "replicas"
    ] == 3
    assert desired == desired_before
    store.update.assert_not_called()


def test_unchanged_second_pass():
    """Reconciling an object that already matches does not write"""
    store = MockObjectStore()
    reconciler = ObjectReconciler(store)
    desired = make_deployment_config(replicas=3)
    reconciler.reconcile(desired, ReplicasMutator())
    version = store.get_obj("DeploymentConfig", "backend-listener")["metadata"][
        "resourceVersion"
    ]

    assert reconciler.reconcile(desired, ReplicasMutator()) == (
        ReconcileOutcome.UNCHANGED
    )
    store.update.assert_not_called()
    assert (
        store.get_obj("DeploymentConfig", "backend-listener")["metadata"][
            "resourceVersion"
        ]
        == version
    )


def test_update_on_drift():
    """Drift in an owned field is written back"""
    store = MockObjectStore(resources=[make_deployment_config(replicas=5)])
    outcome = ObjectReconciler(store).reconcile(
        make_deployment_config(replicas=2), ReplicasMutator()
    )
    assert outcome == ReconcileOutcome.UPDATED
    assert store.get_obj("DeploymentConfig", "backend-listener")["spec"][
        "replicas"
    ] == 2
    store.update.assert_called_once()


def test_autoscaler_owned_replicas():
    """With the override annotation the live replica count is left alone"""
    store = MockObjectStore(resources=[make_deployment_config(replicas=5)])
    mutators = select_mutators({LISTENER_KEY: "true"}, LISTENER_KEY)
    outcome = ObjectReconciler(store).reconcile(
        make_deployment_config(replicas=2), mutators
    )
    assert outcome == ReconcileOutcome.UNCHANGED
    assert store.get_obj("DeploymentConfig", "backend-listener")["spec"][
        "replicas"
    ] == 5


def test_create_only_drift_kept():
    store = MockObjectStore(resources=[make_deployment_config(replicas=5)])
    outcome = ObjectReconciler(store).reconcile(
        make_deployment_config(replicas=1), CreateOnlyMutator()
    )
    assert outcome == ReconcileOutcome.UNCHANGED
    store.update.assert_not_called()


def test_concurrent_write_conflict():
    """A write between the read and the update surfaces as a conflict and the
    other writer's change is kept
    """
    store = MockObjectStore(resources=[make_deployment_config(replicas=5)])

    def concurrent_write():
        current = DryRunObjectStore.get(store, LISTENER_ID)
        current["spec"]["replicas"] = 7
        DryRunObjectStore.update(store, current)

    store.update_fail = concurrent_write
    store.enable_mocks()

    with pytest.raises(ConflictError):
        ObjectReconciler(store).reconcile(
            make_deployment_config(replicas=2), ReplicasMutator()
        )
    assert store.get_obj("DeploymentConfig", "backend-listener")["spec"][
        "replicas"
    ] == 7


def test_create_race():
    """Another writer creating the object first surfaces as AlreadyExistsError"""
    store = MockObjectStore(
        get_fail=NotFoundError, resources=[make_deployment_config()]
    )
    with pytest.raises(AlreadyExistsError):
        ObjectReconciler(store).reconcile(make_deployment_config(), ReplicasMutator())


def test_store_errors_propagate():
    """Errors other than a missing object are raised unmodified"""
    store = MockObjectStore(get_fail=TransientStoreError("timeout"))
    with pytest.raises(TransientStoreError, match="timeout"):
        ObjectReconciler(store).reconcile(make_deployment_config(), ReplicasMutator())
    store.create.assert_not_called()


def test_cancelled_before_store_call():
    """A set cancel event stops the reconcile before any store call"""
    store = MockObjectStore()
    cancel_event = threading.Event()
    cancel_event.set()
    with pytest.raises(ReconcileCancelledError):
        ObjectReconciler(store, cancel_event).reconcile(
            make_deployment_config(), ReplicasMutator()
        )
    store.get.assert_not_called()
    store.create.assert_not_called()


def test_cancelled_between_read_and_write():
    """Cancellation after the read drops the mutated copy without writing"""
    store = MockObjectStore(resources=[make_deployment_config(replicas=5)])
    cancel_event = threading.Event()
    store.get_fail = cancel_event.set
    store.enable_mocks()

    with pytest.raises(ReconcileCancelledError):
        ObjectReconciler(store, cancel_event).reconcile(
            make_deployment_config(replicas=2), ReplicasMutator()
        )
    store.get.assert_called_once()
    store.update.assert_not_called()
    assert store.get_obj("DeploymentConfig", "backend-listener")["spec"][
        "replicas"
    ] == 5

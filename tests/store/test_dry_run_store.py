"""
Tests for the DryRunObjectStore
"""

# Standard
import threading

# Third Party
import pytest

# Local
from apimanager_operator.exceptions import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
)
from apimanager_operator.managed_object import ResourceIdentity
from apimanager_operator.store import DryRunObjectStore
from apimanager_operator.test_helpers.helpers import (
    TEST_NAMESPACE,
    make_deployment_config,
    make_secret,
)

LISTENER_ID = ResourceIdentity(
    kind="DeploymentConfig", name="backend-listener", namespace=TEST_NAMESPACE
)


def test_get_missing():
    with pytest.raises(NotFoundError):
        DryRunObjectStore().get(LISTENER_ID)


def test_create_then_get():
    """A created object gets server-side metadata and can be read back"""
    store = DryRunObjectStore()
    created = store.create(make_deployment_config(replicas=3))
    metadata = created["metadata"]
    assert metadata["uid"]
    assert metadata["creationTimestamp"]
    assert metadata["resourceVersion"]

    fetched = store.get(LISTENER_ID)
    assert fetched == created
    assert fetched["spec"]["replicas"] == 3


def test_create_existing():
    store = DryRunObjectStore([make_deployment_config()])
    with pytest.raises(AlreadyExistsError):
        store.create(make_deployment_config())


def test_same_name_different_kind_or_namespace():
    """The identity key is (kind, namespace, name)"""
    store = DryRunObjectStore([make_deployment_config(name="backend")])
    store.create(make_secret("backend", {"a": "b"}))
    store.create(make_deployment_config(name="backend", namespace="other"))
    assert len(store.list_objects()) == 3
    assert len(store.list_objects(kind="DeploymentConfig")) == 2
    assert len(store.list_objects(namespace="other")) == 1


def test_update_bumps_version_and_keeps_identity():
    """An update increases the version and keeps uid and creationTimestamp"""
    store = DryRunObjectStore([make_deployment_config()])
    current = store.get(LISTENER_ID)
    current["spec"]["replicas"] = 4
    updated = store.update(current)

    assert int(updated["metadata"]["resourceVersion"]) > int(
        current["metadata"]["resourceVersion"]
    )
    assert updated["metadata"]["uid"] == current["metadata"]["uid"]
    assert (
        updated["metadata"]["creationTimestamp"]
        == current["metadata"]["creationTimestamp"]
    )
    assert store.get(LISTENER_ID)["spec"]["replicas"] == 4


def test_update_missing():
    with pytest.raises(NotFoundError):
        DryRunObjectStore().update(make_deployment_config())


def test_update_stale_version():
    """An update based on an old read is rejected"""
    store = DryRunObjectStore([make_deployment_config()])
    first = store.get(LISTENER_ID)
    second = store.get(LISTENER_ID)

    first["spec"]["replicas"] = 2
    store.update(first)

    second["spec"]["replicas"] = 3
    with pytest.raises(ConflictError):
        store.update(second)
    assert store.get(LISTENER_ID)["spec"]["replicas"] == 2


def test_update_without_version():
    """An update that carries no version is a conflict"""
    store = DryRunObjectStore([make_deployment_config()])
    with pytest.raises(ConflictError):
        store.update(make_deployment_config(replicas=9))


def test_returns_copies():
    """Changing a returned object never changes the stored one"""
    store = DryRunObjectStore()
    created = store.create(make_deployment_config(replicas=1))
    created["spec"]["replicas"] = 100
    fetched = store.get(LISTENER_ID)
    fetched["spec"]["replicas"] = 200
    assert store.get(LISTENER_ID)["spec"]["replicas"] == 1


def test_concurrent_updates_one_wins():
    """Of many writers holding the same read, exactly one succeeds"""
    store = DryRunObjectStore([make_deployment_config()])
    reads = [store.get(LISTENER_ID) for _ in range(8)]
    results = []
    results_lock = threading.Lock()

    def write(obj, replicas):
        obj["spec"]["replicas"] = replicas
        try:
            store.update(obj)
            outcome = "ok"
        except ConflictError:
            outcome = "conflict"
        with results_lock:
            results.append(outcome)

    threads = [
        threading.Thread(target=write, args=(obj, idx)) for idx, obj in enumerate(reads)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert results.count("ok") == 1
    assert results.count("conflict") == 7

"""
Tests for the OpenshiftObjectStore against a mocked DynamicClient
"""

# Standard
from unittest import mock

# Third Party
from kubernetes.client.exceptions import ApiException
from openshift.dynamic.exceptions import (
    ConflictError,
    DynamicApiError,
    NotFoundError,
    ResourceNotFoundError,
)
import pytest
import urllib3

# Local
from apimanager_operator import exceptions
from apimanager_operator.managed_object import ResourceIdentity
from apimanager_operator.store import OpenshiftObjectStore
from apimanager_operator.store.openshift_store import FIELD_MANAGER
from apimanager_operator.test_helpers.helpers import (
    TEST_NAMESPACE,
    make_deployment_config,
)

LISTENER_ID = ResourceIdentity(
    kind="DeploymentConfig",
    name="backend-listener",
    namespace=TEST_NAMESPACE,
    api_version="apps.openshift.io/v1",
)

## Helpers #####################################################################


def api_error(error_class, status, reason="Failed"):
    return error_class(ApiException(status=status, reason=reason))


def make_store():
    """Make a store whose client hands out a single mock resource handle"""
    client = mock.MagicMock()
    handle = mock.MagicMock()
    client.resources.get.return_value = handle
    return OpenshiftObjectStore(client=client), client, handle


def versioned(definition, version="10"):
    definition["metadata"]["resourceVersion"] = version
    return definition


## Interface ###################################################################


def test_get():
    """A get looks the handle up by kind and returns a plain dict"""
    store, client, handle = make_store()
    handle.get.return_value.to_dict.return_value = {"kind": "DeploymentConfig"}

    assert store.get(LISTENER_ID) == {"kind": "DeploymentConfig"}
    client.resources.get.assert_called_with(
        kind="DeploymentConfig", api_version="apps.openshift.io/v1"
    )
    handle.get.assert_called_once_with(
        name="backend-listener", namespace=TEST_NAMESPACE
    )


def test_create():
    store, _, handle = make_store()
    definition = make_deployment_config()
    handle.create.return_value.to_dict.return_value = definition

    assert store.create(definition) == definition
    kwargs = handle.create.call_args.kwargs
    assert kwargs["namespace"] == TEST_NAMESPACE
    assert kwargs["field_manager"] == FIELD_MANAGER
    assert kwargs["body"] == definition
    assert kwargs["body"] is not definition


def test_update_replaces_with_version():
    """An update is a full replacement carrying the read version"""
    store, _, handle = make_store()
    definition = versioned(make_deployment_config())
    definition["metadata"]["managedFields"] = [{"manager": "someone"}]
    handle.replace.return_value.to_dict.return_value = definition

    store.update(definition)
    kwargs = handle.replace.call_args.kwargs
    assert kwargs["name"] == "backend-listener"
    assert kwargs["body"]["metadata"]["resourceVersion"] == "10"
    assert "managedFields" not in kwargs["body"]["metadata"]
    assert "managedFields" in definition["metadata"]


def test_update_without_version():
    """An update that could overwrite a concurrent write is refused"""
    store, _, handle = make_store()
    with pytest.raises(exceptions.StoreError):
        store.update(make_deployment_config())
    handle.replace.assert_not_called()


## Error translation ###########################################################


def test_get_not_found():
    store, _, handle = make_store()
    handle.get.side_effect = api_error(NotFoundError, 404, "Not Found")
    with pytest.raises(exceptions.NotFoundError):
        store.get(LISTENER_ID)


def test_create_conflict_is_already_exists():
    store, _, handle = make_store()
    handle.create.side_effect = api_error(ConflictError, 409, "Conflict")
    with pytest.raises(exceptions.AlreadyExistsError):
        store.create(make_deployment_config())


def test_update_conflict():
    store, _, handle = make_store()
    handle.replace.side_effect = api_error(ConflictError, 409, "Conflict")
    with pytest.raises(exceptions.ConflictError):
        store.update(versioned(make_deployment_config()))


@pytest.mark.parametrize("status", [408, 429, 500, 503])
def test_transient_status(status):
    store, _, handle = make_store()
    handle.get.side_effect = api_error(DynamicApiError, status)
    with pytest.raises(exceptions.TransientStoreError):
        store.get(LISTENER_ID)


@pytest.mark.parametrize("status", [400, 403, 422])
def test_permanent_status(status):
    store, _, handle = make_store()
    handle.replace.side_effect = api_error(DynamicApiError, status)
    with pytest.raises(exceptions.StoreError):
        store.update(versioned(make_deployment_config()))


def test_network_error():
    store, _, handle = make_store()
    handle.get.side_effect = urllib3.exceptions.ProtocolError("connection reset")
    with pytest.raises(exceptions.TransientStoreError):
        store.get(LISTENER_ID)


## Resource handles ############################################################


def test_handle_short_name_fallback():
    """An unknown kind is retried as a short name"""
    store, client, handle = make_store()
    client.resources.get.side_effect = [ResourceNotFoundError("nope"), handle]
    handle.get.return_value.to_dict.return_value = {}

    store.get(ResourceIdentity(kind="dc", name="x", namespace=TEST_NAMESPACE))
    assert client.resources.get.call_args.kwargs["short_names"] == ["dc"]


def test_handle_unknown_kind():
    store, client, _ = make_store()
    client.resources.get.side_effect = ResourceNotFoundError("nope")
    with pytest.raises(exceptions.StoreError):
        store.get(LISTENER_ID)


def test_handle_discovery_network_error():
    store, client, _ = make_store()
    client.resources.get.side_effect = urllib3.exceptions.ProtocolError("reset")
    with pytest.raises(exceptions.TransientStoreError):
        store.get(LISTENER_ID)


def test_lazy_client():
    """The client is only set up on first use"""
    with mock.patch.object(
        OpenshiftObjectStore, "_setup_client", return_value=mock.MagicMock()
    ) as setup_mock:
        store = OpenshiftObjectStore()
        setup_mock.assert_not_called()
        assert store.client is store.client
        setup_mock.assert_called_once()

"""
Tests for ResourceIdentity
"""

# Third Party
import pytest

# Local
from apimanager_operator.managed_object import ResourceIdentity
from apimanager_operator.test_helpers.helpers import make_deployment_config


def test_from_definition():
    identity = ResourceIdentity.from_definition(make_deployment_config())
    assert identity.kind == "DeploymentConfig"
    assert identity.name == "backend-listener"
    assert identity.namespace == "test"
    assert identity.api_version == "apps.openshift.io/v1"
    assert str(identity) == "apps.openshift.io/v1/DeploymentConfig/test/backend-listener"


def test_api_version_not_part_of_key():
    """Identities match on (kind, namespace, name) only"""
    first = ResourceIdentity("Secret", "foo", "test", api_version="v1")
    second = ResourceIdentity("Secret", "foo", "test")
    assert first == second
    assert len({first, second}) == 1
    assert first != ResourceIdentity("Secret", "foo", "other")


@pytest.mark.parametrize(
    "definition",
    [
        {"metadata": {"name": "foo"}},
        {"kind": "Secret", "metadata": {}},
        {"kind": "Secret"},
    ],
)
def test_from_definition_incomplete(definition):
    with pytest.raises(AssertionError):
        ResourceIdentity.from_definition(definition)

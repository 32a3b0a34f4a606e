"""
This module holds common helper functions for making testing easy
"""

# Standard
from contextlib import contextmanager
from typing import Optional
from unittest import mock
import base64
import copy
import inspect
import os

# First Party
import aconfig
import alog

# Local
from apimanager_operator import constants
from apimanager_operator.config import library_config as config_detail_dict
from apimanager_operator.managed_object import ResourceIdentity
from apimanager_operator.store import DryRunObjectStore
from apimanager_operator.utils import merge_configs

log = alog.use_channel("TEST")


def configure_logging():
    alog.configure(
        os.environ.get("LOG_LEVEL", "off"),
        os.environ.get("LOG_FILTERS", ""),
        formatter="json"
        if os.environ.get("LOG_JSON", "").lower() == "true"
        else "pretty",
        thread_id=os.environ.get("LOG_THREAD_ID", "").lower() == "true",
    )


configure_logging()

TEST_INSTANCE_NAME = "test-apimanager"
TEST_INSTANCE_UID = "12345678-1234-1234-1234-123456789012"
TEST_NAMESPACE = "test"
TEST_WILDCARD_DOMAIN = "test.3scale.net"


def setup_apimanager(
    name=TEST_INSTANCE_NAME,
    namespace=TEST_NAMESPACE,
    annotations=None,
    spec_overrides=None,
    uid=TEST_INSTANCE_UID,
    **kwargs,
):
    """Build an APIManager manifest with the minimal valid spec plus any
    overrides
    """
    cr_dict = kwargs or {}
    cr_dict.setdefault("kind", constants.APIMANAGER_KIND)
    cr_dict.setdefault("apiVersion", constants.APIMANAGER_API_VERSION)
    metadata = cr_dict.setdefault("metadata", {})
    metadata.setdefault("name", name)
    metadata.setdefault("namespace", namespace)
    if uid is not None:
        metadata.setdefault("uid", uid)
    if annotations is not None:
        metadata.setdefault("annotations", {}).update(annotations)
    spec = cr_dict.setdefault("spec", {})
    spec.setdefault("wildcardDomain", TEST_WILDCARD_DOMAIN)
    merge_configs(spec, copy.deepcopy(spec_overrides or {}))
    return aconfig.Config(cr_dict, override_env_vars=False)


def make_secret(name, data, namespace=TEST_NAMESPACE):
    """Make a Secret manifest with the given plain text data"""
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {"name": name, "namespace": namespace},
        "data": {
            key: base64.b64encode(val.encode("utf-8")).decode("utf-8")
            for key, val in data.items()
        },
    }


def make_redis_secret(
    storage_url="redis://backend-redis:6379/0",
    queues_url="redis://backend-redis:6379/1",
    namespace=TEST_NAMESPACE,
):
    """Make the backend-redis secret. The default urls point at the same
    server, so async mode is off.
    """
    return make_secret(
        constants.BACKEND_REDIS_SECRET_NAME,
        {"REDIS_STORAGE_URL": storage_url, "REDIS_QUEUES_URL": queues_url},
        namespace=namespace,
    )


def make_deployment_config(
    name="backend-listener",
    namespace=TEST_NAMESPACE,
    replicas=1,
    containers=None,
    **spec_overrides,
):
    """Make a bare DeploymentConfig with a pod template"""
    spec = {
        "replicas": replicas,
        "template": {
            "metadata": {"labels": {"deploymentConfig": name}},
            "spec": {
                "containers": containers
                if containers is not None
                else [{"name": name, "image": "some/image:1"}]
            },
        },
    }
    merge_configs(spec, spec_overrides)
    return {
        "apiVersion": constants.DEPLOYMENT_CONFIG_API_VERSION,
        "kind": "DeploymentConfig",
        "metadata": {"name": name, "namespace": namespace},
        "spec": spec,
    }


def identity_of(kind, name, namespace=TEST_NAMESPACE):
    return ResourceIdentity(kind=kind, name=name, namespace=namespace)


@contextmanager
def library_config(**config_overrides):
    """This context manager sets library config values temporarily and reverts
    them on completion
    """
    # Override the configs and hang onto the old values
    old_vals = {}
    for key, val in config_overrides.items():
        if key in config_detail_dict:
            old_vals[key] = config_detail_dict[key]
        config_detail_dict[key] = val

    # Yield to the context
    try:
        yield
    finally:
        # Revert to the old values
        for key in config_overrides:
            if key in old_vals:
                config_detail_dict[key] = old_vals[key]
            else:
                del config_detail_dict[key]


def get_failable_method(fail_flag, method, failure_return=None):
    log.debug4(
        "Setting up failable mock of [%s] with fail flag: %s", str(method), fail_flag
    )

    def failable_method(*args, **kwargs):
        log.debug4(
            "Running failable mock of [%s] with fail flag: %s", str(method), fail_flag
        )
        if isinstance(fail_flag, Exception) or (
            inspect.isclass(fail_flag) and issubclass(fail_flag, Exception)
        ):
            log.debug4("Raising in failable mock")
            raise fail_flag
        if callable(fail_flag):
            log.debug4("Calling callable fail flag")
            res = fail_flag()
            if res is not None:
                return res
        elif fail_flag == "assert":
            log.debug4("Asserting in failable mock")
            raise AssertionError(f"You told me to fail {method}!")
        elif fail_flag:
            log.debug4("Returning %s", failure_return)
            return failure_return
        log.debug4("Passing through (%s, **%s)", args, kwargs)
        res = method(*args, **kwargs)
        log.debug4("Passthrough res: %s", res)
        return res

    return failable_method


class FailOnce:
    """Helper callable that will fail once on the N'th call"""

    def __init__(self, fail_val, fail_number=1):
        self.call_count = 0
        self.fail_number = fail_number
        self.fail_val = fail_val

    def __call__(self, *_, **__):
        self.call_count += 1
        if self.call_count == self.fail_number:
            log.debug("Failing on call %d with %s", self.call_count, self.fail_val)
            if isinstance(self.fail_val, type) and issubclass(self.fail_val, Exception):
                raise self.fail_val("Raising!")
            return self.fail_val
        log.debug("Not failing on call %d", self.call_count)
        return None


class MockObjectStore(DryRunObjectStore):
    """The MockObjectStore wraps a standard DryRunObjectStore and adds
    configuration options to simulate failures in each of its operations. The
    wrapped operations are mocks, so tests can inspect their calls.

    A fail flag may be an exception (class or instance) to raise, a callable
    such as FailOnce, or "assert". The *_raise shorthands set "assert".
    """

    def __init__(
        self,
        get_fail=False,
        get_raise=False,
        create_fail=False,
        create_raise=False,
        update_fail=False,
        update_raise=False,
        auto_enable=True,
        resources: Optional[list] = None,
    ):
        # Add apiVersion to resources that are missing it
        resources = copy.deepcopy(resources or [])
        for resource in resources:
            resource.setdefault("apiVersion", "v1")
        super().__init__(resources)

        self.get_fail = "assert" if get_raise else get_fail
        self.create_fail = "assert" if create_raise else create_fail
        self.update_fail = "assert" if update_raise else update_fail

        # If auto-enabling, turn the mocks on now
        if auto_enable:
            self.enable_mocks()

    #######################
    ## Helpers for Tests ##
    #######################

    def enable_mocks(self):
        """Turn the mocks on"""
        self.get = mock.Mock(
            side_effect=get_failable_method(self.get_fail, super().get)
        )
        self.create = mock.Mock(
            side_effect=get_failable_method(self.create_fail, super().create)
        )
        self.update = mock.Mock(
            side_effect=get_failable_method(self.update_fail, super().update)
        )

    def get_obj(self, kind, name, namespace=TEST_NAMESPACE):
        """Get an object without going through the mocks. Returns None if it
        doesn't exist.
        """
        with self._lock:
            current = self._entries(namespace, kind).get(name)
            return copy.deepcopy(current)

    def has_obj(self, *args, **kwargs):
        return self.get_obj(*args, **kwargs) is not None

"""
Tests for the ReconcileManager
"""

# Standard
from datetime import timedelta
from unittest import mock
import logging

# Third Party
import pytest

# First Party
import aconfig

# Local
from apimanager_operator import constants
from apimanager_operator.components import PassResult, RequeueParams
from apimanager_operator.exceptions import InvalidSpecError
from apimanager_operator.log_format import ApiManagerJsonFormatter
from apimanager_operator.reconcile import ReconcileManager
from apimanager_operator.reconcile_object import ReconcileOutcome
from apimanager_operator.store import DryRunObjectStore, OpenshiftObjectStore
from apimanager_operator.test_helpers.helpers import (
    TEST_INSTANCE_NAME,
    TEST_NAMESPACE,
    MockObjectStore,
    library_config,
    setup_apimanager,
)

## Helpers #####################################################################


class AlogConfigureMock:
    def __init__(self):
        self.kwargs = None

    def __call__(self, **kwargs):
        self.kwargs = kwargs


####################
## parse_manifest ##
####################


@pytest.mark.parametrize(
    ["resource", "raises"],
    [
        [{"apiVersion": "v1", "kind": "APIManager"}, False],
        [aconfig.Config({"apiVersion": "v1", "kind": "APIManager"}), False],
        ["BadValue", True],
    ],
)
def test_parse_manifest(resource, raises):
    """Ensure the ReconcileManager can parse a manifest"""
    if raises:
        with pytest.raises(ValueError):
            ReconcileManager.parse_manifest(resource)
    else:
        manifest = ReconcileManager.parse_manifest(resource)
        assert isinstance(manifest, aconfig.Config)
        assert manifest.kind == "APIManager"


#######################
## configure_logging ##
#######################


def test_configure_logging_no_annotations():
    """Make sure that the default logging configuration is applied"""
    alog_mock = AlogConfigureMock()
    with mock.patch("alog.configure", alog_mock):
        ReconcileManager.configure_logging(aconfig.Config({}), "id")

    assert alog_mock.kwargs.get("default_level") == "info"
    assert alog_mock.kwargs.get("filters") == ""
    assert alog_mock.kwargs.get("formatter") == "pretty"


def test_configure_logging_with_annotations():
    """Make sure the log annotations on the APIManager win over the config"""
    alog_mock = AlogConfigureMock()
    cr = setup_apimanager(
        annotations={
            constants.LOG_DEFAULT_LEVEL_NAME: "debug3",
            constants.LOG_FILTERS_NAME: "RCOBJ:debug4",
            constants.LOG_JSON_NAME: "True",
        }
    )
    with mock.patch("alog.configure", alog_mock):
        ReconcileManager.configure_logging(cr, "some-id")

    assert alog_mock.kwargs.get("default_level") == "debug3"
    assert alog_mock.kwargs.get("filters") == "RCOBJ:debug4"
    formatter = alog_mock.kwargs.get("formatter")
    assert isinstance(formatter, ApiManagerJsonFormatter)
    assert formatter.reconciliation_id == "some-id"


def test_json_formatter_fields():
    """The json formatter adds the APIManager identity and the pass id"""
    formatter = ApiManagerJsonFormatter(setup_apimanager(), "pass-id")
    record = logging.LogRecord("RCOBJ", logging.INFO, __file__, 1, "hi", None, None)
    formatter.format(record)
    assert record.reconciliationId == "pass-id"
    assert record.kind == constants.APIMANAGER_KIND
    assert record.namespace == TEST_NAMESPACE
    assert record.resourceName == TEST_INSTANCE_NAME


#################
## generate_id ##
#################


def test_generate_id_uniq():
    """Make sure that two reconciliation IDs don't match"""
    first = ReconcileManager.generate_id()
    assert len(first) == 22
    assert first != ReconcileManager.generate_id()


#######################
## validate_manifest ##
#######################


@pytest.mark.parametrize(
    "cr",
    [
        setup_apimanager(kind="Widget"),
        setup_apimanager(namespace=""),
        aconfig.Config(
            {"kind": "APIManager", "metadata": {"name": "x", "namespace": "y"}}
        ),
    ],
)
def test_validate_manifest_invalid(cr):
    with pytest.raises(InvalidSpecError):
        ReconcileManager.validate_manifest(cr)


def test_validate_manifest_valid():
    ReconcileManager.validate_manifest(setup_apimanager())


#################
## setup_store ##
#################


@pytest.mark.parametrize(
    ["dry_run", "expected"],
    [(True, DryRunObjectStore), (False, OpenshiftObjectStore)],
)
def test_setup_store(dry_run, expected):
    with library_config(dry_run=dry_run):
        assert isinstance(ReconcileManager().setup_store(), expected)


def test_setup_store_override():
    """A store given at construction is always used"""
    store = MockObjectStore()
    with library_config(dry_run=False):
        assert ReconcileManager(store=store).setup_store() is store


###############
## reconcile ##
###############


def test_reconcile():
    """A full pass creates the backend and carries the pass id"""
    store = MockObjectStore()
    result = ReconcileManager(store=store).reconcile(setup_apimanager())
    assert result.succeeded
    assert len(result.reconciliation_id) == 22
    assert result.outcomes[0][2] == ReconcileOutcome.CREATED
    assert store.has_obj("DeploymentConfig", "backend-cron")


def test_reconcile_invalid_manifest():
    with pytest.raises(InvalidSpecError):
        ReconcileManager(store=MockObjectStore()).reconcile(
            setup_apimanager(kind="Widget")
        )


####################
## safe_reconcile ##
####################


def test_safe_reconcile():
    """Errors raised by a pass end up in a requeued result"""
    rm = ReconcileManager(store=MockObjectStore())
    rm.reconcile = mock.Mock()

    good_result = PassResult()
    rm.reconcile.return_value = good_result
    assert rm.safe_reconcile(setup_apimanager()) is good_result

    rm.reconcile.side_effect = RuntimeError("boom")
    result = rm.safe_reconcile(setup_apimanager())
    assert not result.succeeded
    assert isinstance(result.error, RuntimeError)
    assert result.requeue
    assert result.requeue_params.requeue_after == timedelta(seconds=60)


def test_safe_reconcile_unexpected_store_error():
    """A non-operator error from the store is caught too"""
    rm = ReconcileManager(store=MockObjectStore(get_fail=KeyError("bad")))
    result = rm.safe_reconcile(setup_apimanager())
    assert isinstance(result.error, KeyError)
    assert result.requeue


def test_safe_reconcile_invalid_manifest():
    rm = ReconcileManager(store=MockObjectStore())
    result = rm.safe_reconcile(setup_apimanager(kind="Widget"))
    assert isinstance(result.error, InvalidSpecError)
    assert result.requeue


#################
## Data models ##
#################


def test_requeue_params_default():
    """RequeueParams reads the delay from the config"""
    assert RequeueParams().requeue_after == timedelta(seconds=60)
    with library_config(requeue_after_seconds=1):
        assert RequeueParams().requeue_after == timedelta(seconds=1)


def test_pass_result_defaults():
    result = PassResult()
    assert result.succeeded
    assert not result.changed
    assert not result.requeue

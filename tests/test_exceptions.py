"""
Test the custom exceptions and assert functions
"""

# Third Party
import pytest

# Local
from apimanager_operator import exceptions


def test_assert_spec_pass():
    """Make sure that no exception is thrown by assert_spec when it passes"""
    exceptions.assert_spec(True)


def test_assert_spec_fail():
    """Make sure the right exception is thrown by assert_spec when it fails"""
    exception_msg = "error message"
    with pytest.raises(exceptions.InvalidSpecError, match=exception_msg):
        exceptions.assert_spec(False, exception_msg)


def test_assert_store_pass():
    """Make sure that no exception is thrown by assert_store when it passes"""
    exceptions.assert_store(True)


def test_assert_store_fail():
    """Make sure the right exception is thrown by assert_store when it fails"""
    exception_msg = "error message"
    with pytest.raises(exceptions.StoreError, match=exception_msg):
        exceptions.assert_store(False, exception_msg)


@pytest.mark.parametrize(
    "exception_class",
    [
        exceptions.NotFoundError,
        exceptions.AlreadyExistsError,
        exceptions.ConflictError,
        exceptions.TransientStoreError,
        exceptions.ReconcileCancelledError,
    ],
)
def test_expected_errors_are_not_fatal(exception_class):
    """Make sure errors expected to resolve on a later pass are non-fatal"""
    err = exception_class("boom")
    assert isinstance(err, exceptions.OperatorExpectedError)
    assert isinstance(err, exceptions.OperatorError)
    assert not err.is_fatal_error


@pytest.mark.parametrize(
    "exception_class",
    [exceptions.InvalidSpecError, exceptions.StoreError],
)
def test_fatal_errors_are_fatal(exception_class):
    """Make sure spec and store failures are fatal for the pass"""
    err = exception_class("boom")
    assert isinstance(err, exceptions.OperatorFatalError)
    assert err.is_fatal_error


def test_exception_message():
    """Make sure the message is carried through to str()"""
    assert str(exceptions.ConflictError("stale version")) == "stale version"

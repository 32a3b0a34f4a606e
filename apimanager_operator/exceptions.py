"""
This module implements custom exceptions
"""

## Base Error ##################################################################


class OperatorError(Exception):
    """Base class for all apimanager_operator exceptions"""

    def __init__(self, message: str, is_fatal_error: bool):
        """Construct with a flag indicating whether this is a fatal error. This
        will be a static property of all children.
        """
        super().__init__(message)
        self._is_fatal_error = is_fatal_error

    @property
    def is_fatal_error(self):
        """Property indicating whether or not this error should be treated as
        unrecoverable for the current pass
        """
        return self._is_fatal_error


## Fatal Errors ################################################################


class OperatorFatalError(OperatorError):
    """An OperatorFatalError is one that indicates an unexpected, and likely
    unrecoverable, failure during a reconciliation pass.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=True)


class InvalidSpecError(OperatorFatalError):
    """Exception caused when a desired object cannot be built from the
    APIManager's spec
    """


class StoreError(OperatorFatalError):
    """Exception caused when an object store operation fails in a way that is
    not expected to resolve by itself (forbidden, invalid, unknown kind)
    """


## Expected Errors #############################################################


class OperatorExpectedError(OperatorError):
    """An OperatorExpectedError is one that indicates an expected failure
    condition that should terminate the current pass, but is expected to resolve
    in a subsequent pass.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=False)


class NotFoundError(OperatorExpectedError):
    """The requested object does not exist in the store"""


class AlreadyExistsError(OperatorExpectedError):
    """A create raced with another writer that created the same object"""


class ConflictError(OperatorExpectedError):
    """An update carried a stale resourceVersion because the object was changed
    concurrently
    """


class TransientStoreError(OperatorExpectedError):
    """A network, timeout, or server-side failure talking to the store"""


class ReconcileCancelledError(OperatorExpectedError):
    """The pass was cancelled by the caller before the next store call"""


## Assertions ##################################################################


def assert_spec(condition: bool, message: str = ""):
    """Replacement for assert() which will throw an InvalidSpecError. This
    should be used when building desired objects which requires that certain
    conditions be true in the APIManager spec.
    """
    if not condition:
        raise InvalidSpecError(message)


def assert_store(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a StoreError. This should be
    used when an operation against the object store must succeed to continue.
    """
    if not condition:
        raise StoreError(message)

"""
This module implements custom exceptions
"""

## Base Error ##################################################################


class EchoOperatorError(Exception):
    """Base class for all echo_operator exceptions"""

    def __init__(self, message: str, is_fatal_error: bool):
        """Construct with a flag indicating whether this is a fatal error. This
        will be a static property of all children.
        """
        super().__init__(message)
        self._is_fatal_error = is_fatal_error

    @property
    def is_fatal_error(self):
        """Property indicating whether or not this error should stop the
        resource from being requeued until a new notification arrives
        """
        return self._is_fatal_error


## Fatal Errors ################################################################


class EchoOperatorFatalError(EchoOperatorError):
    """An EchoOperatorFatalError is one that cannot be fixed by retrying the
    same snapshot of the resource.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=True)


class InvalidSpecError(EchoOperatorFatalError):
    """Exception raised when the user-declared spec of a resource is malformed
    or missing a required field. This is terminal for the current attempt; the
    next edit of the spec produces a new notification.
    """


class ConfigError(EchoOperatorFatalError):
    """Exception caused during usage of library or command line configuration"""


## Transient Errors ############################################################


class TransientIOError(EchoOperatorError):
    """A TransientIOError indicates that a call against the cluster failed in a
    way that is expected to resolve when the dispatcher retries.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=False)


class ClusterError(TransientIOError):
    """Exception raised when reading or writing a resource in the cluster fails"""


class ConflictError(TransientIOError):
    """Exception raised when a status write is rejected because the snapshot's
    resourceVersion is out of date
    """


## Assertions ##################################################################


def assert_spec(condition: bool, message: str = ""):
    """Replacement for assert() which will throw an InvalidSpecError. This
    should be used when parsing the user-declared spec of a resource.
    """
    if not condition:
        raise InvalidSpecError(message)


def assert_config(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ConfigError. This should be
    used when validating library config or command line arguments.
    """
    if not condition:
        raise ConfigError(message)


def assert_cluster(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ClusterError. This should
    be used when an operation in the cluster (such as fetching a dependent
    resource) must succeed.
    """
    if not condition:
        raise ClusterError(message)

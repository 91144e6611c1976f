"""
This module implements custom exceptions
"""

## Base Error ##################################################################


class Declar8Error(Exception):
    """Base class for all declar8 exceptions"""

    def __init__(self, message: str, is_fatal_error: bool):
        """Construct with a flag indicating whether this is a fatal error. This
        will be a static property of all children.
        """
        super().__init__(message)
        self._is_fatal_error = is_fatal_error

    @property
    def is_fatal_error(self):
        """Property indicating whether or not this error should signal a fatal
        state in the reconciliation
        """
        return self._is_fatal_error


## Fatal Errors ################################################################


class Declar8FatalError(Declar8Error):
    """A Declar8FatalError is one that indicates an unexpected, and likely
    unrecoverable, failure during a reconciliation.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=True)


class ConfigError(Declar8FatalError):
    """Exception caused during usage of user-provided configuration such as the
    watches file or a malformed rendered resource
    """


class ClusterError(Declar8FatalError):
    """Exception caused when a cluster operation fails in an unexpected way"""


class RenderError(Declar8FatalError):
    """Exception caused when a chart or role target fails to render"""

    def __init__(self, message: str = "", details=None):
        self.details = details
        super().__init__(message)


class ToolInstallError(Declar8FatalError):
    """Exception caused when bootstrapping a required tool fails"""

    def __init__(self, message: str = "", tool_name: str = ""):
        self.tool_name = tool_name
        super().__init__(message)


## Expected Errors #############################################################


class Declar8ExpectedError(Declar8Error):
    """A Declar8ExpectedError is one that indicates an expected failure
    condition that should cause a reconciliation to terminate, but is expected
    to resolve in a subsequent reconciliation.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=False)


class PreconditionError(Declar8ExpectedError):
    """Exception caused when an expected precondition is not met"""


## Assertions ##################################################################


def assert_precondition(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a PreconditionError. This
    should be used when a reconciliation requires that a precondition is met
    before continuing.
    """
    if not condition:
        raise PreconditionError(message)


def assert_config(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ConfigError. This should be
    used when validating the watches file or the resources a target renders.
    """
    if not condition:
        raise ConfigError(message)


def assert_cluster(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ClusterError. This should
    be used when an operation in the cluster (such as deploying a rendered
    resource) must succeed.
    """
    if not condition:
        raise ClusterError(message)

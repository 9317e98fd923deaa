"""Exception taxonomy shared by the analyzer, runner and daemon."""


class AutoscalerError(Exception):
    """Base class for all autoscaler errors."""


class InvalidConfigError(AutoscalerError):
    def __init__(self, message="invalid daemon configuration"):
        super().__init__(message)


class AnalyzerError(AutoscalerError):
    """An analyzer operation failed (listing, describing or fetching metrics)."""


class ScalingError(AutoscalerError):
    """Applying a scaling decision to an instance failed."""


class OperationCancelled(AutoscalerError):
    """Polling a remote operation was interrupted by shutdown."""


class DaemonStateError(AutoscalerError):
    pass


class HTTPServerError(AutoscalerError):
    pass


class DaemonError(AutoscalerError):
    """Wraps an error with the daemon operation and phase it happened in."""

    def __init__(self, op, err, phase=""):
        self.op = op
        self.err = err
        self.phase = phase
        super().__init__(str(self))
        self.__cause__ = err

    def __str__(self):
        if self.phase:
            return f"daemon {self.op} during {self.phase}: {self.err}"
        return f"daemon {self.op}: {self.err}"


def wrap_error(op, err):
    if err is None:
        return None
    return DaemonError(op, err)


def is_recoverable(err):
    # Analyzer failures are retried on the next cycle
    if not isinstance(err, DaemonError):
        return False
    inner = err.err
    while isinstance(inner, DaemonError):
        inner = inner.err
    return isinstance(inner, AnalyzerError)

"""Exceptions raised by the Unit operator."""


class UnitOperatorError(Exception):
    """Base class for all operator errors."""


class ConfigError(UnitOperatorError):
    """Invalid operator configuration."""


class BuildError(UnitOperatorError):
    """A desired manifest could not be built from the Unit spec."""


class StoreError(UnitOperatorError):
    """A resource-store call failed; the reconcile should be retried."""

    def __init__(self, message, status=None):
        super().__init__(message)
        self.status = status


class ConflictError(StoreError):
    """An update was rejected because the resource version was stale."""

    def __init__(self, message):
        super().__init__(message, status=409)


class HookError(UnitOperatorError):
    """The pre-delete hook failed; the finalizer must stay in place."""


class ReconcileError(UnitOperatorError):
    """One or more owned resources failed during a reconcile pass."""

    def __init__(self, failures):
        self.failures = list(failures)
        details = "; ".join(f"{kind}: {error}" for kind, error in self.failures)
        super().__init__(f"{len(self.failures)} owned resource(s) failed: {details}")

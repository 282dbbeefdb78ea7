"""Run orchestration errors."""


class RunError(Exception):
    """Base error surfaced to callers of the run coordinator."""

    kind = "RunError"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {"kind": self.kind, "message": self.message}


class InvalidScope(RunError):
    kind = "InvalidScope"
    status_code = 400


class ModelNotFound(RunError):
    kind = "ModelNotFound"
    status_code = 404


class RunNotFound(RunError):
    kind = "RunNotFound"
    status_code = 404


class RunConflict(RunError):
    """Supplied run_id is already bound to different run parameters."""

    kind = "RunConflict"
    status_code = 409


class RunBusy(RunError):
    """Another caller is currently dispatching the run."""

    kind = "RunBusy"
    status_code = 409


class RunNotRunning(RunError):
    """Cancellation was requested for a run that is not running."""

    kind = "RunNotRunning"
    status_code = 400


class PersistenceFailure(RunError):
    kind = "PersistenceFailure"
    status_code = 503


class ItemDispatchFailure(Exception):
    """Per-item failure; recorded on the run item, never surfaced."""


class ComparatorFailure(ItemDispatchFailure):
    pass


class ItemTimeout(ItemDispatchFailure):
    pass

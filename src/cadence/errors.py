"""Exception hierarchy for the scheduled task engine.

Store errors and execution errors are both treated as a failed attempt by the
worker's failure handling; the split exists so operators (and tests) can tell
a misconfigured deployment from a side effect that actually failed.
"""


class CadenceError(Exception):
    """Base class for all engine errors."""


class StoreError(CadenceError):
    """The task store was unreachable or a write failed."""


class TaskNotFoundError(CadenceError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


class TaskValidationError(CadenceError):
    """A task definition is incomplete or inconsistent."""


class ExecutionError(CadenceError):
    """An action failed while executing."""


class ConfigurationError(ExecutionError):
    """The engine is missing something it needs to run an action."""


class MissingDependencyError(ConfigurationError):
    def __init__(self, dependency: str) -> None:
        super().__init__(f"{dependency} not configured")
        self.dependency = dependency


class UnknownActionError(ExecutionError):
    def __init__(self, action_type: str) -> None:
        super().__init__(f"Unknown action type: {action_type}")
        self.action_type = action_type


class ActionFailedError(ExecutionError):
    """A collaborator raised while performing an action's side effect."""


class WebhookError(ActionFailedError):
    def __init__(self, status_code: int, body: object) -> None:
        super().__init__(f"Webhook failed with status {status_code}: {body}")
        self.status_code = status_code
        self.body = body


class ActionTimeoutError(ExecutionError):
    def __init__(self, action_type: str, timeout: float) -> None:
        super().__init__(f"Action {action_type} timed out after {timeout}s")
        self.action_type = action_type
        self.timeout = timeout

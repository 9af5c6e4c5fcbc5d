"""Task actions: a closed, discriminated union of everything a task can do.

Actions are stored as JSON on the task row and parsed back into these frozen
pydantic models. ``ChainAction`` is the only recursive variant; its ``tasks``
list holds further actions of the same union.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _Action(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class AIPromptAction(_Action):
    type: Literal["ai-prompt"] = "ai-prompt"
    prompt: str
    model: str | None = None


class SendEmailAction(_Action):
    type: Literal["send-email"] = "send-email"
    to: str
    subject: str
    body: str


class WebhookAction(_Action):
    type: Literal["webhook"] = "webhook"
    url: str
    method: str = "POST"
    headers: dict[str, str] | None = None
    body: Any = None


class RunCodeAction(_Action):
    type: Literal["run-code"] = "run-code"
    language: Literal["python", "javascript"]
    code: str


class GenerateReportAction(_Action):
    type: Literal["generate-report"] = "generate-report"
    config: Any = None


class ChainAction(_Action):
    type: Literal["chain"] = "chain"
    tasks: list["TaskAction"] = Field(default_factory=list)


class WebScrapeAction(_Action):
    type: Literal["web-scrape"] = "web-scrape"
    url: str
    selector: str | None = None


class FileOperationAction(_Action):
    type: Literal["file-operation"] = "file-operation"
    operation: str
    path: str


class GoogleWorkspaceAction(_Action):
    type: Literal["google-workspace"] = "google-workspace"
    service: str
    action: str
    params: Any = None


TaskAction = Annotated[
    Union[
        AIPromptAction,
        SendEmailAction,
        WebhookAction,
        RunCodeAction,
        GenerateReportAction,
        ChainAction,
        WebScrapeAction,
        FileOperationAction,
        GoogleWorkspaceAction,
    ],
    Field(discriminator="type"),
]

ChainAction.model_rebuild()

_adapter: TypeAdapter[TaskAction] = TypeAdapter(TaskAction)


def parse_action(data: dict[str, Any]) -> TaskAction:
    """Validate a stored or client-supplied action dict.

    Raises:
        pydantic.ValidationError: if the dict is not a known action shape
    """
    return _adapter.validate_python(data)


def dump_action(action: TaskAction) -> dict[str, Any]:
    """Serialise an action to the JSON shape stored on the task row."""
    return action.model_dump(exclude_none=True)

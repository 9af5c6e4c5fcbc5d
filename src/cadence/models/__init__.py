from .actions import (
    AIPromptAction,
    ChainAction,
    FileOperationAction,
    GenerateReportAction,
    GoogleWorkspaceAction,
    RunCodeAction,
    SendEmailAction,
    TaskAction,
    WebhookAction,
    WebScrapeAction,
    dump_action,
    parse_action,
)
from .scheduled_task import RetryPolicy, ScheduledTask, TaskExecution

__all__ = [
    "AIPromptAction",
    "ChainAction",
    "FileOperationAction",
    "GenerateReportAction",
    "GoogleWorkspaceAction",
    "RunCodeAction",
    "SendEmailAction",
    "TaskAction",
    "WebhookAction",
    "WebScrapeAction",
    "dump_action",
    "parse_action",
    "RetryPolicy",
    "ScheduledTask",
    "TaskExecution",
]

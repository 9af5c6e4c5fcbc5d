"""Action executor: runs one TaskAction and accumulates its execution log.

Collaborators are injected once through ``ActionDependencies``. A handler
whose collaborator is missing raises ``MissingDependencyError``; anything a
collaborator raises that is not already an ``ExecutionError`` is wrapped in
``ActionFailedError`` with the cause chained. Every handler writes a
started line and a finished or failed line to the log.
"""

import asyncio
import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

import httpx

from cadence.errors import (
    ActionFailedError,
    ActionTimeoutError,
    ExecutionError,
    MissingDependencyError,
    UnknownActionError,
    WebhookError,
)
from cadence.models.actions import (
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
)

logger = logging.getLogger(__name__)

OUTPUT_LOG_LIMIT = 500
DEFAULT_WEBHOOK_TIMEOUT = 30.0

REPORT_PROMPT = """Generate a comprehensive report based on this configuration:

{config}

Please create a detailed, well-structured report with the following sections:
1. Executive Summary
2. Key Findings
3. Detailed Analysis
4. Recommendations
5. Conclusion

Format the report in Markdown."""


class ExecutionLog:
    """Append-only collector of human readable progress lines."""

    def __init__(self, lines: list[str] | None = None) -> None:
        self._lines: list[str] = list(lines or [])

    def append(self, line: str) -> None:
        self._lines.append(line)

    @property
    def lines(self) -> list[str]:
        return list(self._lines)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._lines))

    def __len__(self) -> int:
        return len(self._lines)

    def __contains__(self, line: object) -> bool:
        return line in self._lines


@dataclass
class Completion:
    """LLM completion. ``text`` is None when the first block is not text."""

    text: str | None
    model: str
    usage: dict[str, Any] = field(default_factory=dict)


@dataclass
class SandboxResult:
    exit_code: int
    stdout: str | None = None
    stderr: str | None = None


@dataclass
class ScrapeResult:
    items: list[Any] | None = None
    content: str | None = None


class CompletionClient(Protocol):
    async def complete(self, prompt: str, model: str, max_tokens: int) -> Completion: ...


class EmailSender(Protocol):
    async def send(self, to: str, subject: str, body: str) -> None: ...


class CodeSandbox(Protocol):
    async def execute(self, language: str, code: str) -> SandboxResult: ...


class WebScraper(Protocol):
    async def scrape(self, url: str, selector: str | None = None) -> ScrapeResult: ...


class WorkspaceClient(Protocol):
    async def execute(self, service: str, action: str, params: Any) -> Any: ...


@dataclass
class ActionDependencies:
    """Optional collaborators, resolved once when the executor is built."""

    completion: CompletionClient | None = None
    email_sender: EmailSender | None = None
    code_sandbox: CodeSandbox | None = None
    web_scraper: WebScraper | None = None
    workspace: WorkspaceClient | None = None


@contextmanager
def _failure_logged(log: ExecutionLog, label: str) -> Iterator[None]:
    try:
        yield
    except ExecutionError as e:
        log.append(f"{label} failed: {e}")
        raise
    except Exception as e:
        log.append(f"{label} failed: {e}")
        raise ActionFailedError(str(e)) from e


def _truncate(text: str) -> str:
    return text[:OUTPUT_LOG_LIMIT]


class ActionExecutor:
    """Dispatches a TaskAction to its handler."""

    def __init__(
        self,
        deps: ActionDependencies | None = None,
        default_model: str = "claude-sonnet-4-5",
        max_tokens: int = 4096,
        report_max_tokens: int = 8192,
        timeout: float = 300,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._deps = deps or ActionDependencies()
        self._default_model = default_model
        self._max_tokens = max_tokens
        self._report_max_tokens = report_max_tokens
        self._timeout = timeout
        self._http_client = http_client

    async def execute_with_timeout(
        self,
        action: TaskAction,
        log: ExecutionLog,
        timeout: float | None = None,
    ) -> Any:
        """Run ``action`` bounded by ``timeout`` seconds (0 disables the bound).

        Raises:
            ActionTimeoutError: if the action did not finish in time
        """
        timeout = self._timeout if timeout is None else timeout
        if not timeout:
            return await self.execute(action, log)

        try:
            async with asyncio.timeout(timeout):
                return await self.execute(action, log)
        except TimeoutError:
            log.append(f"Action {action.type} timed out after {timeout}s")
            raise ActionTimeoutError(action.type, timeout) from None

    async def execute(self, action: TaskAction, log: ExecutionLog) -> Any:
        match action:
            case AIPromptAction():
                return await self._ai_prompt(action, log)
            case SendEmailAction():
                return await self._send_email(action, log)
            case WebhookAction():
                return await self._webhook(action, log)
            case RunCodeAction():
                return await self._run_code(action, log)
            case GenerateReportAction():
                return await self._generate_report(action, log)
            case ChainAction():
                return await self._chain(action, log)
            case WebScrapeAction():
                return await self._web_scrape(action, log)
            case FileOperationAction():
                return await self._file_operation(action, log)
            case GoogleWorkspaceAction():
                return await self._google_workspace(action, log)
            case _:
                raise UnknownActionError(getattr(action, "type", type(action).__name__))

    async def _ai_prompt(self, action: AIPromptAction, log: ExecutionLog) -> dict[str, Any]:
        log.append("Executing AI prompt...")
        with _failure_logged(log, "AI prompt"):
            if self._deps.completion is None:
                raise MissingDependencyError("LLM completion client")

            model = action.model or self._default_model
            completion = await self._deps.completion.complete(
                action.prompt, model, self._max_tokens
            )
            response = completion.text if completion.text is not None else "Non-text response received"
            log.append(f"AI response received ({len(response)} chars)")
            return {"response": response, "model": model, "usage": completion.usage}

    async def _send_email(self, action: SendEmailAction, log: ExecutionLog) -> dict[str, Any]:
        log.append(f"Sending email to {action.to}...")
        with _failure_logged(log, "Email send"):
            if self._deps.email_sender is None:
                raise MissingDependencyError("Email sender")

            await self._deps.email_sender.send(action.to, action.subject, action.body)
            log.append("Email sent successfully")
            return {"sent": True, "to": action.to, "subject": action.subject}

    async def _webhook(self, action: WebhookAction, log: ExecutionLog) -> dict[str, Any]:
        log.append(f"Calling webhook: {action.method} {action.url}...")
        with _failure_logged(log, "Webhook"):
            headers = {"Content-Type": "application/json", **(action.headers or {})}
            request_kwargs: dict[str, Any] = {"headers": headers}
            if action.body is not None:
                request_kwargs["content"] = json.dumps(action.body)

            if self._http_client is not None:
                response = await self._http_client.request(
                    action.method, action.url, **request_kwargs
                )
            else:
                async with httpx.AsyncClient(timeout=DEFAULT_WEBHOOK_TIMEOUT) as client:
                    response = await client.request(action.method, action.url, **request_kwargs)

            try:
                data = response.json()
            except ValueError:
                data = {}

            log.append(f"Webhook responded with status {response.status_code}")
            if not response.is_success:
                raise WebhookError(response.status_code, json.dumps(data))

            return {"status": response.status_code, "data": data}

    async def _run_code(self, action: RunCodeAction, log: ExecutionLog) -> dict[str, Any]:
        log.append(f"Running {action.language} code...")
        with _failure_logged(log, "Code execution"):
            if self._deps.code_sandbox is None:
                raise MissingDependencyError("Code sandbox")

            result = await self._deps.code_sandbox.execute(action.language, action.code)
            log.append(f"Code executed with exit code {result.exit_code}")
            if result.stdout:
                log.append(f"STDOUT: {_truncate(result.stdout)}")
            if result.stderr:
                log.append(f"STDERR: {_truncate(result.stderr)}")

            return {
                "stdout": result.stdout,
                "stderr": result.stderr,
                "exit_code": result.exit_code,
            }

    async def _generate_report(
        self, action: GenerateReportAction, log: ExecutionLog
    ) -> dict[str, Any]:
        log.append("Generating report...")
        with _failure_logged(log, "Report generation"):
            if self._deps.completion is None:
                raise MissingDependencyError("LLM completion client")

            prompt = REPORT_PROMPT.format(
                config=json.dumps(action.config, indent=2, default=str)
            )
            completion = await self._deps.completion.complete(
                prompt, self._default_model, self._report_max_tokens
            )
            report = completion.text if completion.text is not None else "Failed to generate report"
            log.append(f"Report generated ({len(report)} chars)")
            return {
                "report": report,
                "generated_at": datetime.now(timezone.utc).isoformat(),
                "config": action.config,
            }

    async def _chain(self, action: ChainAction, log: ExecutionLog) -> dict[str, Any]:
        total = len(action.tasks)
        log.append(f"Executing task chain ({total} tasks)...")
        results: list[dict[str, Any]] = []

        try:
            for step, sub_action in enumerate(action.tasks, start=1):
                log.append(f"Chain step {step}/{total}: {sub_action.type}")
                result = await self.execute(sub_action, log)
                results.append({"step": step, "type": sub_action.type, "result": result})
        except ExecutionError as e:
            log.append(f"Task chain failed: {e}")
            raise

        log.append("Task chain completed successfully")
        return {"chain_length": total, "results": results}

    async def _web_scrape(self, action: WebScrapeAction, log: ExecutionLog) -> dict[str, Any]:
        log.append(f"Scraping {action.url}...")
        with _failure_logged(log, "Web scraping"):
            if self._deps.web_scraper is None:
                raise MissingDependencyError("Web scraper")

            result = await self._deps.web_scraper.scrape(action.url, action.selector)
            log.append(f"Scraped {len(result.items or [])} items")

            output: dict[str, Any] = {}
            if result.items is not None:
                output["items"] = result.items
            if result.content is not None:
                output["content"] = result.content
            return output

    async def _file_operation(
        self, action: FileOperationAction, log: ExecutionLog
    ) -> dict[str, Any]:
        log.append(f"File operation: {action.operation} on {action.path}...")
        log.append("File operation completed")
        return {"operation": action.operation, "path": action.path, "success": True}

    async def _google_workspace(self, action: GoogleWorkspaceAction, log: ExecutionLog) -> Any:
        log.append(f"Google Workspace: {action.service}.{action.action}...")
        with _failure_logged(log, "Google Workspace action"):
            if self._deps.workspace is None:
                raise MissingDependencyError("Google Workspace client")

            result = await self._deps.workspace.execute(
                action.service, action.action, action.params
            )
            log.append("Google Workspace action completed")
            return result

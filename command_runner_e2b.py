"""
Sandbox Command Runner - E2B Command Execution for Backup and Restore
=====================================================================

Thin, logged wrapper around an E2B sandbox's command interface used by the
repository synchronizer and the restore orchestrator.

Features:
- Command execution with per-command millisecond budgets
- Non-zero exits returned as results instead of exceptions
- Ordered fallback lists ("try A, else B, else C") with per-attempt logging
- Supervised dev server handle with start / health check / stop lifecycle
- Secret redaction in every logged command and error message
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, List, Optional, Sequence

from e2b import CommandExitException, TimeoutException

from errors import CommandTimeoutError, ToolingError


# =============================================================================
# TYPE DEFINITIONS AND ENUMS
# =============================================================================


class ProcessStatus(Enum):
    """Process execution status"""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    KILLED = "killed"


@dataclass
class CommandResult:
    """Result of a command execution"""

    command: str
    exit_code: int
    stdout: str
    stderr: str
    execution_time: float
    status: ProcessStatus = ProcessStatus.COMPLETED
    timestamp: datetime = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc)

        self.status = (
            ProcessStatus.COMPLETED if self.exit_code == 0 else ProcessStatus.FAILED
        )

    @property
    def success(self) -> bool:
        """Whether command executed successfully"""
        return self.exit_code == 0

    @property
    def failed(self) -> bool:
        return not self.success

    def failure_reason(self) -> str:
        detail = (self.stderr or self.stdout or "").strip()
        return f"exit code {self.exit_code}" + (f": {detail[:300]}" if detail else "")

    def get_summary(self) -> str:
        """One log line: outcome, truncated command, exit code, duration"""
        mark = "✓" if self.success else "✗"
        preview = self.command if len(self.command) <= 60 else f"{self.command[:57]}..."
        return f"[{mark}] {preview} | exit={self.exit_code} | {self.execution_time:.2f}s"


@dataclass
class CommandAttempt:
    """One entry of an ordered fallback list"""

    label: str
    command: str
    timeout_ms: Optional[int] = None


@dataclass
class AttemptResult:
    label: str
    succeeded: bool
    exit_code: Optional[int] = None
    reason: Optional[str] = None


@dataclass
class AttemptOutcome:
    """What happened when a fallback list was run"""

    results: List[AttemptResult] = field(default_factory=list)
    winner: Optional[CommandAttempt] = None
    last_result: Optional[CommandResult] = None

    @property
    def succeeded(self) -> bool:
        return self.winner is not None

    @property
    def last_error(self) -> Optional[str]:
        failures = [r.reason for r in self.results if not r.succeeded and r.reason]
        return failures[-1] if failures else None


@dataclass
class ServiceInfo:
    """Information about a running service"""

    pid: int
    command: str
    port: int
    started_at: datetime = None
    status: ProcessStatus = ProcessStatus.RUNNING

    def __post_init__(self):
        if self.started_at is None:
            self.started_at = datetime.now(timezone.utc)

    def get_info(self) -> str:
        return f"Service PID {self.pid} on port {self.port} ({self.status.value}): {self.command}"


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def setup_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """Create a structured logger for command operations"""
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(level)
        logger.propagate = False

    return logger


def validate_command(command: str) -> str:
    """
    Validate command for security and safety.

    Args:
        command: Command string to validate

    Returns:
        Validated command string

    Raises:
        ValueError: If command is invalid or dangerous
    """
    if not command or not isinstance(command, str):
        raise ValueError("Command must be a non-empty string")

    command = command.strip()
    if not command:
        raise ValueError("Command cannot be empty")

    dangerous_patterns = [
        "rm -rf / ",
        "rm -rf /*",
        "mkfs",
        "> /dev/sda",
    ]

    command_lower = command.lower() + " "
    for pattern in dangerous_patterns:
        if pattern in command_lower:
            raise ValueError(
                f"Extremely dangerous command pattern detected: '{pattern.strip()}'. "
                f"This operation is blocked for safety."
            )

    return command


def redact(text: str, secrets: Iterable[str]) -> str:
    """Replace every secret occurrence in text with ***"""
    if not text:
        return text
    for secret in secrets:
        if secret:
            text = text.replace(secret, "***")
    return text


# =============================================================================
# COMMAND RUNNER
# =============================================================================


class SandboxCommandRunner:
    def __init__(
        self,
        sandbox: Any,
        default_timeout_ms: int = 60_000,
        cwd: Optional[str] = None,
        secrets: Sequence[str] = (),
    ):
        """
        Wrap an E2B sandbox for sequential command orchestration.

        Args:
            sandbox: Connected e2b AsyncSandbox (or anything with the same
                commands/files interface)
            default_timeout_ms: Budget applied when a command gives none
            cwd: Working directory for every command
            secrets: Strings that must never appear in logs or errors
        """
        self.sandbox = sandbox
        self.default_timeout_ms = default_timeout_ms
        self.cwd = cwd
        self.secrets = [s for s in secrets if s]
        self.logger = setup_logger(f"{__name__}.SandboxCommandRunner")

    @property
    def sandbox_id(self) -> Optional[str]:
        return getattr(self.sandbox, "sandbox_id", None)

    def _redact(self, text: str) -> str:
        return redact(text, self.secrets)

    async def run(self, command: str, timeout_ms: Optional[int] = None) -> CommandResult:
        """
        Run a shell command and wait for it to complete.

        A non-zero exit code is reported in the returned result. Only an
        exceeded budget raises.

        Raises:
            ValueError: If command is invalid or dangerous
            CommandTimeoutError: If command exceeds its budget
        """
        validated_command = validate_command(command)
        timeout_ms = timeout_ms or self.default_timeout_ms
        safe_command = self._redact(validated_command)

        self.logger.info(f"Executing command: {safe_command[:200]} (timeout={timeout_ms}ms)")
        start_time = datetime.now()

        try:
            result = await self.sandbox.commands.run(
                validated_command,
                cwd=self.cwd,
                timeout=timeout_ms / 1000,
            )
        except CommandExitException as e:
            # e2b raises on non-zero exit; the exception carries the result
            result = e
        except TimeoutException as e:
            self.logger.error(f"Command timed out after {timeout_ms}ms: {safe_command[:200]}")
            raise CommandTimeoutError(
                f"Command timed out after {timeout_ms}ms: {safe_command}",
                metadata={"timeout_ms": timeout_ms},
            ) from e

        execution_time = (datetime.now() - start_time).total_seconds()
        cmd_result = CommandResult(
            command=safe_command,
            exit_code=result.exit_code,
            stdout=self._redact(result.stdout or ""),
            stderr=self._redact(result.stderr or ""),
            execution_time=execution_time,
        )

        if cmd_result.success:
            self.logger.info(f"Command completed: {cmd_result.get_summary()}")
        else:
            self.logger.warning(
                f"Command failed: {cmd_result.get_summary()} - {cmd_result.failure_reason()}"
            )
        return cmd_result

    async def run_checked(
        self,
        command: str,
        timeout_ms: Optional[int] = None,
        description: Optional[str] = None,
    ) -> CommandResult:
        """Run a command and raise ToolingError if it exits non-zero"""
        result = await self.run(command, timeout_ms=timeout_ms)
        if result.failed:
            what = description or result.command
            raise ToolingError(
                f"{what} failed: {result.failure_reason()}",
                metadata={"command": result.command, "exit_code": result.exit_code},
            )
        return result

    async def run_fallbacks(self, attempts: Sequence[CommandAttempt]) -> AttemptOutcome:
        """
        Try each attempt in order until one exits 0.

        Every failed attempt is logged with its reason and recorded in the
        outcome. Timeouts count as a failed attempt and move on to the next.
        """
        outcome = AttemptOutcome()

        for attempt in attempts:
            try:
                result = await self.run(attempt.command, timeout_ms=attempt.timeout_ms)
            except CommandTimeoutError as e:
                outcome.results.append(
                    AttemptResult(label=attempt.label, succeeded=False, reason=e.message)
                )
                self.logger.warning(f"Attempt '{attempt.label}' timed out, trying next")
                continue

            outcome.last_result = result
            if result.success:
                outcome.results.append(
                    AttemptResult(label=attempt.label, succeeded=True, exit_code=0)
                )
                outcome.winner = attempt
                self.logger.info(f"Attempt '{attempt.label}' succeeded")
                return outcome

            outcome.results.append(
                AttemptResult(
                    label=attempt.label,
                    succeeded=False,
                    exit_code=result.exit_code,
                    reason=result.failure_reason(),
                )
            )
            self.logger.warning(
                f"Attempt '{attempt.label}' failed ({result.failure_reason()}), trying next"
            )

        self.logger.error(f"All {len(attempts)} attempts failed")
        return outcome

    async def write_file(self, path: str, content: str) -> None:
        """Write UTF-8 text into the sandbox filesystem"""
        if not isinstance(content, str):
            raise ValueError(f"Content must be a string. Got {type(content).__name__}.")
        if self.cwd and not path.startswith("/"):
            path = f"{self.cwd.rstrip('/')}/{path}"
        await self.sandbox.files.write(path, content)
        self.logger.info(f"Wrote file: {path} ({len(content.encode('utf-8'))} bytes)")

    async def start_background(self, command: str) -> Any:
        """Start a command without waiting for it. Returns the e2b command handle."""
        validated_command = validate_command(command)
        self.logger.info(f"Starting background command: {self._redact(validated_command)}")
        return await self.sandbox.commands.run(
            validated_command,
            cwd=self.cwd,
            background=True,
        )


# =============================================================================
# DEV SERVER SUPERVISION
# =============================================================================


class DevServer:
    """
    Supervised development server inside a sandbox.

    Replaces fire-and-forget ``nohup npm run dev &`` with an explicit
    start / health_check / stop lifecycle around the background process.
    """

    def __init__(self, runner: SandboxCommandRunner, command: str = "npm run dev", port: int = 3000):
        self.runner = runner
        self.command = command
        self.port = port
        self._handle: Any = None
        self._service: Optional[ServiceInfo] = None
        self.logger = setup_logger(f"{__name__}.DevServer")

    @property
    def running(self) -> bool:
        return self._service is not None and self._service.status == ProcessStatus.RUNNING

    @property
    def pid(self) -> Optional[int]:
        return self._service.pid if self._service else None

    async def start(self) -> ServiceInfo:
        if self.running:
            return self._service

        self._handle = await self.runner.start_background(self.command)
        self._service = ServiceInfo(pid=self._handle.pid, command=self.command, port=self.port)
        self.logger.info(f"Dev server started - {self._service.get_info()}")
        return self._service

    async def wait_until_started(self, delay_seconds: float) -> None:
        await asyncio.sleep(delay_seconds)

    async def health_check(self, timeout_ms: int = 15_000) -> bool:
        """Return True when the server answers on its local port"""
        result = await self.runner.run(
            f"curl -sf -o /dev/null http://localhost:{self.port}",
            timeout_ms=timeout_ms,
        )
        if result.success:
            self.logger.info(f"Dev server answering on port {self.port}")
        else:
            self.logger.warning(f"Dev server not answering on port {self.port} yet")
        return result.success

    async def stop(self) -> bool:
        if not self._handle:
            return False

        killed = await self._handle.kill()
        self._service.status = ProcessStatus.KILLED
        self.logger.info(f"Dev server stopped (pid {self._service.pid}, killed={killed})")
        return bool(killed)

    def info(self) -> Optional[ServiceInfo]:
        return self._service


# =============================================================================
# GIT HELPERS
# =============================================================================


async def ensure_git(runner: SandboxCommandRunner, install_timeout_ms: int = 300_000) -> None:
    """Install git in the sandbox unless it is already available"""
    check = await runner.run("git --version")
    if check.success:
        runner.logger.info(f"Git available: {check.stdout.strip()}")
        return

    runner.logger.info("Git not installed, installing with apt-get")
    await runner.run_checked(
        "sudo apt-get update && sudo apt-get install -y git",
        timeout_ms=install_timeout_ms,
        description="Git installation",
    )

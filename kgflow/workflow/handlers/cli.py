"""
CLI step handler.

Commands run through a shell via ``ProcessLauncher``. stdout and stderr are
captured; a command still running at its timeout is killed. A non-zero exit
status fails the step, with the captured output attached as partial data.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any

from kgflow.errors import StepError, StepErrorKind

from ..models import Step, StepType
from .base import HandlerEnv, StepHandler

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    stdout: str
    stderr: str
    exit_code: int


class ProcessLauncher:
    """Spawns shell commands; replaceable in tests."""

    async def run(
        self,
        command: str,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """
        Raises:
            asyncio.TimeoutError: The process was killed at ``timeout``
        """
        process = await asyncio.create_subprocess_shell(
            command,
            cwd=cwd,
            env={**os.environ, **env} if env else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            process.kill()
            await process.wait()
            raise
        return CommandResult(
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            exit_code=process.returncode if process.returncode is not None else -1,
        )


class CliHandler(StepHandler):
    type = StepType.CLI
    error_kind = StepErrorKind.CLI

    async def handle(self, step: Step, inputs: dict[str, Any], env: HandlerEnv) -> dict[str, Any]:
        config = step.config
        command = env.renderer.interpolate(str(config["command"]), inputs)
        cwd = config.get("cwd")
        cwd = env.fs.resolve(env.renderer.interpolate(str(cwd), inputs)) if cwd else None
        variables = {str(k): str(v) for k, v in config.get("env", {}).items()}
        timeout = env.timeout_for(step)
        launcher = env.launcher or ProcessLauncher()

        logger.debug(f"[cli] {step.id}: {command}")
        try:
            result = await launcher.run(command, cwd=cwd, env=variables, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise StepError(
                StepErrorKind.TIMEOUT, f"Command timed out after {timeout}s: {command}", step_id=step.id
            ) from exc
        except OSError as exc:
            raise self.fail(step, f"Cannot run {command}: {exc}") from exc

        data = {
            "command": command,
            "cwd": cwd,
            "stdout": result.stdout,
            "stderr": result.stderr,
            "exitCode": result.exit_code,
            "success": result.exit_code == 0,
        }
        if result.exit_code != 0:
            raise self.fail(step, f"Command exited with status {result.exit_code}: {command}", data)
        return data


__all__ = ["CliHandler", "CommandResult", "ProcessLauncher"]

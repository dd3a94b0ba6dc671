"""Command-line tool execution and prerequisite checks."""

from __future__ import annotations

import json
import shutil
import subprocess
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

import structlog

from envkit.errors import MissingPrerequisite, ProviderError

logger = structlog.get_logger()


def check_prerequisites(
    tools: Iterable[str], which: Callable[[str], str | None] = shutil.which
) -> None:
    """Raise MissingPrerequisite naming every tool not found on PATH."""
    missing = [tool for tool in tools if which(tool) is None]
    if missing:
        raise MissingPrerequisite(missing)
    logger.debug("prerequisites.ok", tools=list(tools))


class ToolRunner:
    """Runs eksctl/kubectl/helm/docker/aws and captures their output.

    A nonzero exit raises ``ProviderError`` carrying stderr unless
    ``check=False`` is passed, in which case the caller classifies the
    result itself.
    """

    def __init__(
        self, *, timeout: float | None = 3600, cwd: Path | None = None
    ) -> None:
        self._timeout = timeout
        self._cwd = cwd

    def run(
        self,
        *args: str,
        input: str | None = None,
        check: bool = True,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[str]:
        command = list(args)
        logger.debug("tool.run", command=" ".join(command))
        try:
            proc = subprocess.run(
                command,
                capture_output=True,
                text=True,
                input=input,
                timeout=timeout or self._timeout,
                cwd=self._cwd,
            )
        except FileNotFoundError as exc:
            raise MissingPrerequisite([command[0]]) from exc
        except subprocess.TimeoutExpired as exc:
            raise ProviderError(
                command[0], " ".join(command[1:3]), f"timed out after {exc.timeout}s"
            ) from exc
        if check and proc.returncode != 0:
            output = (proc.stderr or proc.stdout).strip()
            detail = output or f"exit code {proc.returncode}"
            raise ProviderError(command[0], " ".join(command[1:3]), detail)
        return proc

    def json(self, *args: str) -> Any:
        """Run a command that prints JSON and return the parsed output."""
        proc = self.run(*args)
        try:
            return json.loads(proc.stdout)
        except json.JSONDecodeError as exc:
            raise ProviderError(
                args[0], " ".join(args[1:3]), "invalid JSON output"
            ) from exc

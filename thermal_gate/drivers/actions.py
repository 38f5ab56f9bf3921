from __future__ import annotations
import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

from ..domain.models import ActionResult

logger = logging.getLogger(__name__)


class ShellAction:
    """A queued job given as a shell command line."""

    def __init__(self, command: str, timeout: Optional[float] = None) -> None:
        self.command = command
        self._timeout = timeout

    async def invoke(self) -> ActionResult:
        proc = await asyncio.create_subprocess_shell(self.command)
        try:
            await asyncio.wait_for(proc.wait(), timeout=self._timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return ActionResult(ok=False, exit_code=proc.returncode, detail=f"timed out after {self._timeout}s")

        code = proc.returncode
        return ActionResult(ok=code == 0, exit_code=code, detail="" if code == 0 else f"exit code {code}")


class CallableAction:
    """Wraps a Python callable (sync or async). Falsy return or an exception means failure."""

    def __init__(self, fn: Callable[[], Any]) -> None:
        self._fn = fn

    async def invoke(self) -> ActionResult:
        result = self._fn()
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, ActionResult):
            return result
        if result is None or result is True:
            return ActionResult(ok=True, exit_code=0)
        return ActionResult(ok=bool(result), exit_code=0 if result else 1)


def shell_action_factory(timeout: Optional[float] = None) -> Callable[[str], ShellAction]:
    def factory(descriptor: str) -> ShellAction:
        return ShellAction(descriptor, timeout=timeout)
    return factory


default_action_factory = shell_action_factory()

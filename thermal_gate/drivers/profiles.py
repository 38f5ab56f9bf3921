from __future__ import annotations
import asyncio
import logging
from typing import Dict, Optional

from ..core.errors import ProfileApplyFailure
from ..domain.models import PowerState

logger = logging.getLogger(__name__)


class SimulatedPowerProfile:
    profile_id = "profile_sim"

    def __init__(self) -> None:
        self._state: Optional[PowerState] = None
        self.applied: list[PowerState] = []

    @property
    def state(self) -> Optional[PowerState]:
        return self._state

    async def apply(self, state: PowerState) -> bool:
        if state is self._state:
            logger.info("PROFILE already %s, nothing to do", state.value)
            return True
        self._state = state
        self.applied.append(state)
        logger.info("PROFILE apply=%s", state.value)
        return True


class CommandPowerProfile:
    """Applies a power profile by running one shell command per state (e.g. pmset)."""

    profile_id = "profile_command"

    def __init__(self, commands: Dict[PowerState, str], timeout: float = 15.0) -> None:
        self._commands = dict(commands)
        self._timeout = timeout
        self._last_applied: Optional[PowerState] = None

    async def apply(self, state: PowerState) -> bool:
        if state is self._last_applied:
            logger.info("Profile %s already applied, skipping", state.value)
            return True

        command = self._commands.get(state)
        if not command:
            raise ProfileApplyFailure(f"No command configured for {state.value}")

        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            try:
                _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
            except asyncio.TimeoutError:
                proc.kill()
                await proc.wait()
                raise ProfileApplyFailure(f"{command!r} timed out after {self._timeout}s") from None
        except OSError as e:
            raise ProfileApplyFailure(f"{command!r} could not start: {e}") from e

        if proc.returncode != 0:
            raise ProfileApplyFailure(
                f"{command!r} exited {proc.returncode}: {stderr.decode(errors='replace').strip()}"
            )

        self._last_applied = state
        logger.info("Profile set to %s via %r", state.value, command)
        return True

from __future__ import annotations

import asyncio
import os
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Protocol

import structlog

from healthgate.config.schema import UnitSpec
from healthgate.exec.timeout import terminate_process
from healthgate.util.errors import LaunchError
from healthgate.util.time import now_iso

log = structlog.get_logger(__name__)


@dataclass(slots=True)
class UnitHandle:
    """Resource owned by the supervisor of a launched unit."""

    unit: str
    process: asyncio.subprocess.Process | None = None
    started_at: str = field(default_factory=now_iso)

    @property
    def pid(self) -> int | None:
        return None if self.process is None else self.process.pid

    @property
    def returncode(self) -> int | None:
        return None if self.process is None else self.process.returncode

    def alive(self) -> bool:
        return self.process is None or self.process.returncode is None


class Launcher(Protocol):
    async def start(self, unit: UnitSpec) -> UnitHandle: ...

    async def stop(self, handle: UnitHandle) -> None: ...


def _resolve_unit_cwd(unit_cwd: str | None, default_cwd: Path) -> Path:
    if unit_cwd is None:
        return default_cwd
    cwd = Path(unit_cwd)
    if cwd.is_absolute():
        return cwd
    return default_cwd / cwd


class ProcessLauncher:
    """Runs each unit command as a child process.

    Units without a command are external and get a handle with no process.
    Output is appended to ``<log_dir>/<unit>.out.log`` and ``.err.log``.
    """

    def __init__(
        self,
        *,
        workdir: Path | None = None,
        log_dir: Path | None = None,
        stop_grace_sec: float = 5.0,
    ) -> None:
        self.workdir = (workdir or Path.cwd()).resolve()
        self.log_dir = log_dir
        self.stop_grace_sec = stop_grace_sec

    def _open_log(self, stack: ExitStack, unit: str, stream: str) -> IO[bytes] | int:
        if self.log_dir is None:
            return asyncio.subprocess.DEVNULL
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            return stack.enter_context((self.log_dir / f"{unit}.{stream}.log").open("ab"))
        except OSError as exc:
            raise LaunchError(f"cannot open {stream} log for '{unit}': {exc}") from exc

    async def start(self, unit: UnitSpec) -> UnitHandle:
        if unit.command is None:
            log.debug("external_unit", unit=unit.name)
            return UnitHandle(unit.name)

        merged_env = os.environ.copy()
        merged_env.update(dict(unit.env))
        cwd = _resolve_unit_cwd(unit.cwd, self.workdir)
        with ExitStack() as stack:
            stdout = self._open_log(stack, unit.name, "out")
            stderr = self._open_log(stack, unit.name, "err")
            try:
                proc = await asyncio.create_subprocess_exec(
                    *unit.command,
                    cwd=str(cwd),
                    env=merged_env,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=stdout,
                    stderr=stderr,
                )
            except (OSError, ValueError) as exc:
                raise LaunchError(f"failed to start '{unit.name}': {exc}") from exc
        log.info("unit_launched", unit=unit.name, pid=proc.pid)
        return UnitHandle(unit.name, proc)

    async def stop(self, handle: UnitHandle) -> None:
        if handle.process is None:
            return
        code = await terminate_process(handle.process, grace_sec=self.stop_grace_sec)
        log.info("unit_process_stopped", unit=handle.unit, pid=handle.pid, exit_code=code)

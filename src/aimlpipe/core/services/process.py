from __future__ import annotations

import asyncio
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional, Sequence, Union

from aimlpipe.exception import StageTimeoutError, ToolInvocationError

PathLike = Union[str, Path]


@dataclass
class CommandResult:
    command: List[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def _merge_env(env: Optional[Mapping[str, str]]) -> dict[str, str]:
    process_env = os.environ.copy()
    if env:
        process_env.update(env)
    return process_env


class ProcessRunner:
    """
    Запуск внешних инструментов (git не здесь, он через GitPython).

    run()            — дождаться завершения процесса, собрать stdout/stderr;
    spawn_detached() — запустить и не ждать (локальный старт сервиса).
    """

    async def run(
        self,
        command: Sequence[str],
        *,
        cwd: Optional[PathLike] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        input: Optional[str] = None,
        check: bool = True,
    ) -> CommandResult:
        """
        :raises StageTimeoutError:   процесс не уложился в timeout (процесс убивается);
        :raises ToolInvocationError: ненулевой код при check=True или бинарник не найден.
        """
        command = [str(part) for part in command]
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(cwd) if cwd else None,
                env=_merge_env(env),
                stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise ToolInvocationError(command, 127, "", str(e))

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(input.encode() if input is not None else None),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            if proc.returncode is None:
                proc.kill()
            await proc.wait()
            raise StageTimeoutError(command, timeout or 0)
        except asyncio.CancelledError:
            # стадию отменили (таймаут стадии или abort), процесс не оставляем
            if proc.returncode is None:
                proc.kill()
            await proc.wait()
            raise

        result = CommandResult(
            command=command,
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )
        if check and not result.ok:
            raise ToolInvocationError(command, result.returncode, result.stdout, result.stderr)
        return result

    async def spawn_detached(
        self,
        command: Sequence[str],
        *,
        cwd: Optional[PathLike] = None,
        env: Optional[Mapping[str, str]] = None,
        log_file: Optional[PathLike] = None,
    ) -> int:
        """Стартует процесс в отдельной сессии и возвращает его pid."""
        command = [str(part) for part in command]
        output = open(log_file, "ab") if log_file else subprocess.DEVNULL
        try:
            proc = subprocess.Popen(
                command,
                cwd=str(cwd) if cwd else None,
                env=_merge_env(env),
                stdin=subprocess.DEVNULL,
                stdout=output,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        except FileNotFoundError as e:
            raise ToolInvocationError(command, 127, "", str(e))
        finally:
            if log_file:
                output.close()
        return proc.pid

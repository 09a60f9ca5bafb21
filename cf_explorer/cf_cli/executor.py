"""
CommandExecutor: Subprocess management for cf CLI execution.

Handles spawning, environment injection and output capture. Two variants:
a blocking one that is safe inside the environment lock, and a coroutine one
that streams output lines to optional callbacks.
"""

import asyncio
import logging
import os
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

# Maximum output capture size (10MB)
MAX_OUTPUT_SIZE = 10 * 1024 * 1024

LineCallback = Callable[[str], None]


@dataclass(frozen=True)
class ProcessOutput:
    """Raw output of a finished process."""

    stdout: str
    stderr: str
    return_code: int


@dataclass(frozen=True)
class CommandResult:
    """Result of a cf command as seen by callers of the gateway."""

    succeeded: bool
    explanation: Optional[str]
    stdout: str
    stderr: str
    exit_code: int


class CommandExecutor:
    """
    Executes an executable as a subprocess.

    Provides:
    - Environment variable injection on top of the current environment
    - stdout/stderr capture, line by line for the coroutine variant
    - Missing executable / working directory reporting as exit code 127
    """

    def _build_env(self, env_vars: Optional[Dict[str, str]]) -> Dict[str, str]:
        env = os.environ.copy()
        if env_vars:
            env.update(env_vars)
        return env

    def _not_found(self, command: List[str], cwd: Optional[str]) -> ProcessOutput:
        # Could be command not found OR cwd not found
        if cwd and not Path(cwd).exists():
            logger.error(f"Working directory not found: {cwd}")
            return ProcessOutput("", f"Working directory not found: {cwd}", 127)
        logger.error(f"Command not found: {command[0]}")
        return ProcessOutput("", f"Command not found: {command[0]}", 127)

    def run(
        self,
        command: List[str],
        env_vars: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
        stdout_callback: Optional[LineCallback] = None,
        stderr_callback: Optional[LineCallback] = None,
    ) -> ProcessOutput:
        """
        Run a command and block until it exits.

        stderr is drained on a helper thread so neither pipe can fill up
        while the other is being read.

        Args:
            command: Executable and arguments
            env_vars: Variables added to the inherited environment
            cwd: Working directory (optional)
            stdout_callback: Called with every stdout line (optional)
            stderr_callback: Called with every stderr line (optional)

        Returns:
            ProcessOutput with captured stdout, stderr and return code
        """
        logger.debug(f"Executing (blocking): {command[0]} {command[1] if len(command) > 1 else ''}")

        try:
            process = subprocess.Popen(
                command,
                env=self._build_env(env_vars),
                cwd=cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError:
            return self._not_found(command, cwd)
        except OSError as e:
            logger.error(f"Execution error: {e}")
            return ProcessOutput("", str(e), -1)

        stderr_lines: List[str] = []
        stderr_reader = threading.Thread(
            target=lambda: stderr_lines.extend(_pump(process.stderr, stderr_callback)),
            daemon=True,
        )
        stderr_reader.start()
        stdout_lines = _pump(process.stdout, stdout_callback)
        stderr_reader.join()
        return_code = process.wait()

        return ProcessOutput(
            stdout="".join(stdout_lines)[:MAX_OUTPUT_SIZE],
            stderr="".join(stderr_lines)[:MAX_OUTPUT_SIZE],
            return_code=return_code,
        )

    async def run_async(
        self,
        command: List[str],
        env_vars: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
        stdout_callback: Optional[LineCallback] = None,
        stderr_callback: Optional[LineCallback] = None,
    ) -> ProcessOutput:
        """
        Run a command without blocking the event loop.

        Each output line is passed to the matching callback as it arrives.
        The process is not killed if the awaiting caller goes away.

        Args:
            command: Executable and arguments
            env_vars: Variables added to the inherited environment
            cwd: Working directory (optional)
            stdout_callback: Called with every stdout line (optional)
            stderr_callback: Called with every stderr line (optional)

        Returns:
            ProcessOutput with captured stdout, stderr and return code
        """
        logger.debug(f"Executing: {command[0]} {command[1] if len(command) > 1 else ''}")

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                env=self._build_env(env_vars),
                cwd=cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            return self._not_found(command, cwd)
        except OSError as e:
            logger.error(f"Execution error: {e}")
            return ProcessOutput("", str(e), -1)

        stdout_lines, stderr_lines = await asyncio.gather(
            self._read_lines(process.stdout, stdout_callback),
            self._read_lines(process.stderr, stderr_callback),
        )
        return_code = await process.wait()

        return ProcessOutput(
            stdout="".join(stdout_lines)[:MAX_OUTPUT_SIZE],
            stderr="".join(stderr_lines)[:MAX_OUTPUT_SIZE],
            return_code=return_code,
        )

    async def _read_lines(
        self,
        stream: Optional[asyncio.StreamReader],
        callback: Optional[LineCallback],
    ) -> List[str]:
        """Read a stream to EOF, keeping at most MAX_OUTPUT_SIZE characters."""
        lines: List[str] = []
        size = 0

        if stream is None:
            return lines

        while True:
            raw = await stream.readline()
            if not raw:
                break

            line = raw.decode("utf-8", errors="replace")
            if callback is not None:
                try:
                    callback(line.rstrip("\r\n"))
                except Exception as e:
                    logger.warning(f"Output callback raised: {e}")

            if size < MAX_OUTPUT_SIZE:
                lines.append(line)
                size += len(line)

        return lines


def _pump(stream: Optional[IO[bytes]], callback: Optional[LineCallback]) -> List[str]:
    """Blocking counterpart of CommandExecutor._read_lines."""
    lines: List[str] = []
    size = 0

    if stream is None:
        return lines

    with stream:
        for raw in iter(stream.readline, b""):
            line = raw.decode("utf-8", errors="replace")
            if callback is not None:
                try:
                    callback(line.rstrip("\r\n"))
                except Exception as e:
                    logger.warning(f"Output callback raised: {e}")

            if size < MAX_OUTPUT_SIZE:
                lines.append(line)
                size += len(line)

    return lines

"""Async subprocess utilities.

Runs the jira CLI without blocking the event loop.

Example:
    >>> stdout, stderr, code = await run_command("jira", "issue", "view", "PROJ-1", "--raw", check=False)
    >>> if code == 0:
    ...     print(stdout)
"""

import asyncio
import os
import re
import subprocess
from collections.abc import Mapping
from pathlib import Path

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")

EXTRA_PATH_ENTRIES = ("/usr/local/bin", "/opt/homebrew/bin", "/usr/bin", "/bin")


def strip_ansi(text: str) -> str:
    """Remove terminal color codes from CLI output."""
    return _ANSI_ESCAPE.sub("", text)


def command_env(extra: Mapping[str, str] | None = None) -> dict[str, str]:
    """Environment for CLI subprocesses.

    Prepends the usual install locations to PATH, since launchers often
    start with a minimal PATH, and merges ``extra`` on top.
    """
    env = dict(os.environ)
    env["PATH"] = os.pathsep.join([*EXTRA_PATH_ENTRIES, env.get("PATH", "")])
    env.update(extra or {})
    return env


async def run_command(
    *args: str,
    cwd: Path | str | None = None,
    check: bool = True,
    timeout: float | None = None,
    env: Mapping[str, str] | None = None,
) -> tuple[str, str, int]:
    """Run a command asynchronously without shell interpolation.

    Args:
        *args: Command and arguments as separate strings.
        cwd: Working directory for command execution.
        check: If True, raise CalledProcessError on a non-zero exit code.
        timeout: Maximum seconds to wait; the process is killed if exceeded.
        env: Environment for the subprocess, defaults to the parent's.

    Returns:
        Tuple of (stdout, stderr, return_code), decoded as UTF-8 with
        replacement for invalid bytes.

    Raises:
        subprocess.CalledProcessError: If check=True and the command fails.
        asyncio.TimeoutError: If timeout is exceeded.
        FileNotFoundError: If the executable is not found.
    """
    process = await asyncio.create_subprocess_exec(
        *args,
        cwd=cwd,
        env=dict(env) if env is not None else None,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            process.communicate(),
            timeout=timeout,
        )
    except TimeoutError:
        process.kill()
        await process.wait()
        raise

    stdout = (stdout_bytes or b"").decode("utf-8", errors="replace")
    stderr = (stderr_bytes or b"").decode("utf-8", errors="replace")

    if check and process.returncode != 0:
        raise subprocess.CalledProcessError(
            process.returncode,
            args,
            stdout,
            stderr,
        )

    return stdout, stderr, process.returncode or 0

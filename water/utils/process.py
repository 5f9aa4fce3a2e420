"""Async subprocess helper."""

import asyncio
from typing import List, Tuple


async def run_command(cmd: List[str]) -> Tuple[int, str, str]:
    """Run a command without blocking the event loop.

    Cancelling the awaiting task kills the child process.
    """
    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await process.communicate()
    except asyncio.CancelledError:
        if process.returncode is None:
            process.kill()
            await process.wait()
        raise
    return process.returncode, stdout.decode(errors="replace"), stderr.decode(errors="replace")

"""Child-process supervision for subprocess script runtimes."""

import os
import shutil
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from ..core.logging import get_logger

logger = get_logger(__name__)

READER_JOIN_TIMEOUT = 1.0
KILL_WAIT_TIMEOUT = 5.0

LineCallback = Callable[[str, str], None]


@dataclass
class ProcessResult:
    """Outcome of a supervised child process."""
    returncode: Optional[int]
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    cancelled: bool = False
    duration_ms: int = 0
    stdout_lines: List[str] = field(default_factory=list)
    stderr_lines: List[str] = field(default_factory=list)


class _StreamReader(threading.Thread):
    """Drains one pipe line by line so the child never blocks on a full buffer."""

    def __init__(self, stream, name: str, on_line: Optional[LineCallback]):
        super().__init__(name=f"script-{name}-reader", daemon=True)
        self._stream = stream
        self._stream_name = name
        self._on_line = on_line
        self.lines: List[str] = []

    def run(self):
        try:
            for raw in iter(self._stream.readline, b""):
                line = raw.decode("utf-8", errors="replace")
                self.lines.append(line)
                if self._on_line is not None:
                    try:
                        self._on_line(self._stream_name, line.rstrip("\r\n"))
                    except Exception as e:
                        logger.debug(f"Line callback failed on {self._stream_name}: {e}")
        except (OSError, ValueError):
            # Pipe closed underneath us after a kill
            pass
        finally:
            try:
                self._stream.close()
            except OSError:
                pass


def kill_process(process: subprocess.Popen) -> None:
    """Force-kill a child and its process group, then reap it."""
    if process.poll() is not None:
        return
    try:
        if os.name == "posix":
            os.killpg(process.pid, signal.SIGKILL)
        else:
            process.kill()
    except (ProcessLookupError, PermissionError, OSError):
        process.kill()
    try:
        process.wait(timeout=KILL_WAIT_TIMEOUT)
    except subprocess.TimeoutExpired:
        logger.error(f"Process {process.pid} did not exit after kill")


def run_process(
    command: Sequence[str],
    timeout_ms: int,
    cwd: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
    context=None,
    on_line: Optional[LineCallback] = None,
) -> ProcessResult:
    """Run ``command`` with both pipes drained on reader threads.

    The child is killed when ``timeout_ms`` elapses or when the run's context
    is cancelled while it is running.
    """
    started = time.monotonic()
    process = subprocess.Popen(
        list(command),
        cwd=cwd,
        env=env,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        start_new_session=(os.name == "posix"),
    )
    if context is not None:
        context.register_process(process)

    stdout_reader = _StreamReader(process.stdout, "stdout", on_line)
    stderr_reader = _StreamReader(process.stderr, "stderr", on_line)
    stdout_reader.start()
    stderr_reader.start()

    timed_out = False
    try:
        process.wait(timeout=max(timeout_ms, 1) / 1000.0)
    except subprocess.TimeoutExpired:
        timed_out = True
        logger.warning(f"Process {process.pid} exceeded {timeout_ms}ms, killing it")
        kill_process(process)
    finally:
        if process.poll() is None:
            kill_process(process)
        if context is not None:
            context.unregister_process(process)
        stdout_reader.join(READER_JOIN_TIMEOUT)
        stderr_reader.join(READER_JOIN_TIMEOUT)

    cancelled = bool(context is not None and context.is_cancelled() and not timed_out
                     and process.returncode != 0)
    return ProcessResult(
        returncode=process.returncode,
        stdout="".join(stdout_reader.lines),
        stderr="".join(stderr_reader.lines),
        timed_out=timed_out,
        cancelled=cancelled,
        duration_ms=int((time.monotonic() - started) * 1000),
        stdout_lines=list(stdout_reader.lines),
        stderr_lines=list(stderr_reader.lines),
    )


def remove_temp_dir(path: str) -> None:
    """Delete a per-invocation temp directory, retrying once for slow file handle release."""
    for attempt in range(2):
        try:
            shutil.rmtree(path)
            return
        except FileNotFoundError:
            return
        except OSError as e:
            if attempt == 1:
                logger.error(f"Failed to remove script temp directory {path}: {e}")
            else:
                time.sleep(0.1)

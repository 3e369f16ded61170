"""A long-lived child process spoken to line by line over its standard streams."""

from __future__ import annotations

import os
import signal
import subprocess
import sys
import threading
from collections.abc import Callable, Iterable, Sequence
from types import TracebackType
from typing import IO

from crateval.exceptions import EvalError, SubprocessTerminated

RUNTIME_ENV_VAR = "CRATEVAL_IS_RUNTIME"

_MACOS_SIGKILL_MESSAGE = (
    "Subprocess terminated with signal 9. This is known to happen when the "
    "toolchain is installed via a Homebrew shell under emulation. Try installing "
    "the toolchain without using Homebrew and see if that helps."
)


def user_args_from_argv(argv: Iterable[str]) -> list[str]:
    """Arguments that follow the first ``--`` in ``argv``."""
    args = list(argv)
    try:
        separator = args.index("--")
    except ValueError:
        return []
    return args[separator + 1 :]


def _describe_status(returncode: int) -> str:
    if returncode < 0:
        number = -returncode
        try:
            return f"signal: {number} ({signal.Signals(number).name})"
        except ValueError:
            return f"signal: {number}"
    if os.name == "nt":
        return f"exit code: {returncode:#x}" if returncode > 0xFFFF else f"exit code: {returncode}"
    return f"exit status: {returncode}"


class ProcessHandle:
    """A handle to the current child process that stays valid across restarts."""

    def __init__(self, process: subprocess.Popen[str]) -> None:
        self._process = process
        self._lock = threading.Lock()

    def _current(self) -> subprocess.Popen[str]:
        with self._lock:
            return self._process

    @property
    def pid(self) -> int:
        return self._current().pid

    def kill(self) -> None:
        """Kill the current process if it is still running."""
        process = self._current()
        if process.poll() is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass

    def wait(self) -> int:
        return self._current().wait()

    def poll(self) -> int | None:
        return self._current().poll()

    def _replace(self, process: subprocess.Popen[str]) -> None:
        with self._lock:
            old, self._process = self._process, process
        old.wait()


def _forward_stderr(
    stream: IO[str], sink: Callable[[str], object], lock: threading.Lock
) -> None:
    with lock:
        for line in stream:
            try:
                sink(line[:-1] if line.endswith("\n") else line)
            except Exception:
                # The receiver no longer wants output; keep draining the pipe.
                pass


class ChildProcess:
    """A child process fed commands on stdin that replies on stdout.

    Each stderr line is passed, without its newline, to ``stderr_sink``.
    """

    def __init__(
        self,
        command: Sequence[str],
        stderr_sink: Callable[[str], object],
        user_args: Iterable[str] | None = None,
    ) -> None:
        if RUNTIME_ENV_VAR in os.environ:
            raise EvalError(
                "Refusing to start a child process from within a runtime child process"
            )
        if user_args is None:
            user_args = user_args_from_argv(sys.argv)
        self._setup([*command, *user_args], stderr_sink, threading.Lock(), None)

    @classmethod
    def _spawn(
        cls,
        argv: list[str],
        stderr_sink: Callable[[str], object],
        stderr_lock: threading.Lock,
        handle: ProcessHandle,
    ) -> ChildProcess:
        child = cls.__new__(cls)
        child._setup(argv, stderr_sink, stderr_lock, handle)
        return child

    def _setup(
        self,
        argv: list[str],
        stderr_sink: Callable[[str], object],
        stderr_lock: threading.Lock,
        handle: ProcessHandle | None,
    ) -> None:
        env = {**os.environ, RUNTIME_ENV_VAR: "1", "RUST_BACKTRACE": "1"}
        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=env,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except OSError as err:
            raise EvalError(f"Failed to run {argv!r}: {err}") from err

        if handle is None:
            handle = ProcessHandle(process)
        else:
            handle._replace(process)

        assert process.stdin is not None
        assert process.stdout is not None
        assert process.stderr is not None
        self._argv = argv
        self._stderr_sink = stderr_sink
        self._stderr_lock = stderr_lock
        self._handle = handle
        self._stdin = process.stdin
        self._stdout = process.stdout
        self._disowned = False
        self._closed = False
        self._stderr_thread = threading.Thread(
            target=_forward_stderr,
            args=(process.stderr, stderr_sink, stderr_lock),
            daemon=True,
        )
        self._stderr_thread.start()

    def process_handle(self) -> ProcessHandle:
        """Handle to the subprocess; it keeps working after :meth:`restart`."""
        return self._handle

    def restart(self) -> ChildProcess:
        """Kill the process if still running and start a fresh one with the same handle."""
        if self._handle.poll() is None:
            self._handle.kill()
            self._handle.wait()
        self._disowned = True
        for stream in (self._stdin, self._stdout):
            try:
                stream.close()
            except OSError:
                pass
        return ChildProcess._spawn(
            self._argv, self._stderr_sink, self._stderr_lock, self._handle
        )

    def send(self, command: str) -> None:
        """Write ``command`` followed by a newline to the process."""
        try:
            self._stdin.write(command + "\n")
            self._stdin.flush()
        except (OSError, ValueError) as err:
            raise self._termination_error() from err

    def recv_line(self) -> str:
        """Next line of stdout, without its newline."""
        try:
            line = self._stdout.readline()
        except ValueError:
            line = ""
        if not line:
            raise self._termination_error()
        return line[:-1] if line.endswith("\n") else line

    def _termination_error(self) -> SubprocessTerminated:
        # Let all stderr output reach the sink before reporting.
        self._stderr_thread.join()
        content = ""
        try:
            for line in self._stdout:
                content += line if line.endswith("\n") else line + "\n"
        except (OSError, ValueError):
            pass
        try:
            returncode = self._handle.wait()
        except OSError as err:
            return SubprocessTerminated(f"Subprocess didn't start: {err}")
        if sys.platform == "darwin" and returncode == -9:
            return SubprocessTerminated(_MACOS_SIGKILL_MESSAGE)
        return SubprocessTerminated(
            f"{content}Subprocess terminated with status: {_describe_status(returncode)}"
        )

    def close(self) -> None:
        """Close stdin, which tells the process to stop, then wait for it."""
        if self._closed:
            return
        self._closed = True
        try:
            self._stdin.close()
        except OSError:
            pass
        if not self._disowned:
            self._handle.wait()
        try:
            self._stdout.close()
        except OSError:
            pass

    def __enter__(self) -> ChildProcess:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
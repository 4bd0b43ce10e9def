from __future__ import annotations
import errno
import os
import shutil
import subprocess
import threading
import time
from typing import Callable, Dict, List, Optional

from .errors import ResourceExhaustedError, SpawnError
from .logging_setup import get_logger

logger = get_logger(__name__)

_EXHAUSTED = {errno.EAGAIN, errno.ENOMEM, errno.EMFILE, errno.ENFILE}


def resolve_executable(path: str) -> str:
    """Return an absolute, executable path or raise :class:`SpawnError`."""
    if not path:
        raise SpawnError("no executable configured")
    found = path if os.sep in path else shutil.which(path)
    if not found or not os.path.exists(found):
        raise SpawnError(f"Executable not found: {path}")
    if os.path.isdir(found) or not os.access(found, os.X_OK):
        raise SpawnError(f"Executable is not runnable: {found}")
    return os.path.abspath(found)


class ChildProcess:
    """One running program with merged stdout/stderr and a writable stdin.

    On POSIX with ``use_pty`` the child gets a pseudo-terminal so it line
    buffers and behaves like it would in a shell; otherwise plain pipes.
    Each output line is handed to ``on_line`` from a reader thread.
    """

    def __init__(
        self,
        args: List[str],
        on_line: Callable[[str], None],
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        use_pty: bool = True,
        sudo_password: Optional[str] = None,
    ) -> None:
        self.args = list(args)
        self.on_line = on_line
        self.cwd = cwd
        self.env = env or {}
        self.use_pty = use_pty and os.name == "posix"
        self.elevated = sudo_password is not None
        self._sudo_password = sudo_password
        self.process: Optional[subprocess.Popen] = None
        self._master_fd: Optional[int] = None
        self._reader: Optional[threading.Thread] = None
        self._write_lock = threading.Lock()

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    def start(self) -> None:
        if self.process and self.process.poll() is None:
            return
        exe = resolve_executable(self.args[0])
        cmd = [exe] + self.args[1:]
        if self.elevated:
            # sudo reads the password from stdin and prints no prompt
            cmd = ["sudo", "--stdin", "--prompt=", "--"] + cmd
        env = os.environ.copy()
        for k, v in self.env.items():
            env[str(k)] = str(v)
        cwd = self.cwd or os.path.dirname(exe)
        try:
            if self.use_pty:
                self._spawn_pty(cmd, cwd, env)
            else:
                self._spawn_pipes(cmd, cwd, env)
        except (FileNotFoundError, PermissionError) as e:
            raise SpawnError(f"{cmd[0]}: {e}") from e
        except OSError as e:
            if e.errno in _EXHAUSTED:
                raise ResourceExhaustedError(f"{cmd[0]}: {e}") from e
            raise SpawnError(f"{cmd[0]}: {e}") from e
        if self.elevated:
            self.write_line(self._sudo_password or "")
            self._sudo_password = None
        logger.info(f"spawned pid={self.pid} pty={self.use_pty} cmd={self.args[0]}")

    def _spawn_pty(self, cmd: List[str], cwd: str, env: Dict[str, str]) -> None:
        master, slave = os.openpty()
        try:
            self.process = subprocess.Popen(
                cmd,
                stdin=slave,
                stdout=slave,
                stderr=slave,
                cwd=cwd,
                env=env,
                close_fds=True,
                start_new_session=True,
            )
        except OSError:
            os.close(master)
            raise
        finally:
            os.close(slave)
        self._master_fd = master
        self._reader = threading.Thread(target=self._pump_pty, name=f"pty-{self.pid}", daemon=True)
        self._reader.start()

    def _spawn_pipes(self, cmd: List[str], cwd: str, env: Dict[str, str]) -> None:
        self.process = subprocess.Popen(
            cmd,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            cwd=cwd,
            env=env,
            text=True,
            bufsize=1,
            errors="replace",
        )
        self._reader = threading.Thread(target=self._pump_pipe, name=f"pipe-{self.pid}", daemon=True)
        self._reader.start()

    def _pump_pipe(self) -> None:
        stream = self.process.stdout
        try:
            for line in iter(stream.readline, ""):
                self.on_line(line)
        finally:
            stream.close()

    def _pump_pty(self) -> None:
        partial = b""
        while True:
            try:
                chunk = os.read(self._master_fd, 4096)
            except OSError:
                # EIO once the child closed its side
                break
            if not chunk:
                break
            partial += chunk
            *lines, partial = partial.split(b"\n")
            for raw in lines:
                self.on_line(raw.decode("utf-8", errors="replace"))
        if partial:
            self.on_line(partial.decode("utf-8", errors="replace"))

    def write_line(self, line: str) -> None:
        with self._write_lock:
            if self._master_fd is not None:
                os.write(self._master_fd, (line + "\n").encode("utf-8"))
            elif self.process and self.process.stdin:
                self.process.stdin.write(line + "\n")
                self.process.stdin.flush()

    def poll(self) -> Optional[int]:
        if not self.process:
            return None
        return self.process.poll()

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        if not self.process:
            return None
        try:
            return self.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None

    def terminate(self, grace: float = 3.0, sudo_password: Optional[str] = None) -> Optional[int]:
        """Stop the child, escalating to SIGKILL after ``grace`` seconds."""
        if not self.process:
            return None
        if self.process.poll() is None:
            if self.elevated:
                self._sudo_kill(sudo_password)
            else:
                self.process.terminate()
                deadline = time.monotonic() + grace
                while self.process.poll() is None and time.monotonic() < deadline:
                    time.sleep(0.1)
                if self.process.poll() is None:
                    self.process.kill()
        code = self.wait(timeout=grace)
        self.close()
        return code

    def _sudo_kill(self, password: Optional[str]) -> None:
        # a root-owned child cannot be signalled by us directly
        result = subprocess.run(
            ["sudo", "--stdin", "--prompt=", "kill", "-9", str(self.pid)],
            input=(password or "") + "\n",
            text=True,
            capture_output=True,
            timeout=10,
        )
        if result.returncode != 0:
            logger.error(f"sudo kill of pid={self.pid} failed: {result.stderr.strip()}")

    def close(self) -> None:
        if self._reader is not None:
            self._reader.join(timeout=2.0)
        if self._master_fd is not None:
            try:
                os.close(self._master_fd)
            except OSError:
                logger.debug(f"pty of pid={self.pid} already closed")
            self._master_fd = None
        if self.process and self.process.stdin:
            try:
                self.process.stdin.close()
            except OSError:
                logger.debug(f"stdin of pid={self.pid} already closed")

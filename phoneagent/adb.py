# =========================
# FILE: phoneagent/adb.py
# =========================
"""
Privileged command channel.

AdbClient talks to the adb binary (with auto-reconnect on connection loss).
RootShell wraps every device command in `su -c` and reports the result as a
CommandResult instead of raising, so a failing command is just data.
"""

import shlex
import shutil
import subprocess
import time
from dataclasses import dataclass
from typing import List, Optional

CONNECTION_ERRORS = ["device offline", "error: closed", "no devices", "device not found"]


class AdbError(RuntimeError):
    """adb missing, or the device is gone after reconnect attempts."""


@dataclass
class CommandResult:
    success: bool
    output: str
    error: str
    exit_code: int


class AdbClient:
    def __init__(self, serial: Optional[str] = None, timeout: Optional[float] = None) -> None:
        self.adb = self._resolve_adb()
        self.serial = serial
        self.timeout = timeout
        self.reconnect_attempts = 0
        self.max_reconnect_attempts = 2

    def _resolve_adb(self) -> str:
        p = shutil.which("adb")
        if p:
            return p
        for candidate in ["./adb", "./adb.exe"]:
            try:
                subprocess.run([candidate, "version"], capture_output=True, text=True)
                return candidate
            except OSError:
                pass
        raise AdbError(
            "adb not found. Add platform-tools to PATH or run from the platform-tools folder."
        )

    def _base(self) -> List[str]:
        if self.serial:
            return [self.adb, "-s", self.serial]
        return [self.adb]

    def _exec(self, args: List[str], binary: bool = False) -> subprocess.CompletedProcess:
        if binary:
            return subprocess.run(self._base() + args, capture_output=True, timeout=self.timeout)
        # Android output may contain emoji / CJK
        return subprocess.run(
            self._base() + args,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=self.timeout,
        )

    def _is_connection_error(self, stderr) -> bool:
        if isinstance(stderr, bytes):
            stderr = stderr.decode("utf-8", errors="replace")
        low = (stderr or "").lower()
        return any(err in low for err in CONNECTION_ERRORS)

    def call(self, args: List[str], binary: bool = False) -> subprocess.CompletedProcess:
        """
        Run adb and return the completed process without judging the exit code.
        A lost connection triggers one reconnect + retry.
        """
        p = self._exec(args, binary)
        if p.returncode != 0 and self._is_connection_error(p.stderr):
            print(f"⚠️  Connection lost: {str(p.stderr).strip()}")
            if self.reconnect_attempts < self.max_reconnect_attempts and self._try_reconnect():
                print("✅ Reconnected! Retrying command...")
                self.reconnect_attempts = 0
                p = self._exec(args, binary)
        return p

    def run(self, args: List[str]) -> str:
        p = self.call(args)
        if p.returncode != 0:
            stderr = p.stderr.strip() if p.stderr else ""
            if self._is_connection_error(stderr):
                raise AdbError(
                    f"❌ Device connection lost.\n"
                    f"   Error: {stderr}\n"
                    f"   Fix: Check USB cable or run 'adb devices' manually"
                )
            raise AdbError(stderr or f"Failed: {self._base() + args}")
        return p.stdout.strip()

    def _try_reconnect(self) -> bool:
        """Attempt to reconnect to device"""
        try:
            self.reconnect_attempts += 1
            print(f"🔄 Reconnect attempt {self.reconnect_attempts}/{self.max_reconnect_attempts}...")

            subprocess.run([self.adb, "kill-server"], capture_output=True, timeout=3)
            time.sleep(0.5)
            subprocess.run([self.adb, "start-server"], capture_output=True, timeout=5)
            time.sleep(1.5)

            return self.check_connection()
        except (OSError, subprocess.SubprocessError) as e:
            print(f"⚠️  Reconnect failed: {e}")
            return False

    def ensure_device(self) -> List[str]:
        out = self.run(["devices"])
        lines = [l.strip() for l in out.splitlines() if l.strip()]
        devs = [l for l in lines[1:] if "\tdevice" in l]
        if not devs:
            raise AdbError("No ADB device connected (adb devices shows none).")
        return devs

    def check_connection(self) -> bool:
        """Check if device is still connected"""
        try:
            result = subprocess.run(
                [self.adb, "devices"],
                capture_output=True,
                text=True,
                timeout=3,
            )
            return "\tdevice" in result.stdout
        except (OSError, subprocess.SubprocessError):
            return False


class RootShell:
    """
    CommandChannel over adb.

    execute() never raises for a failing command. OS-level failures
    (timeout, adb vanished) come back as exit_code -1.
    """

    def __init__(self, adb: AdbClient, use_root: bool = True) -> None:
        self.adb = adb
        self.use_root = use_root

    def _shell_args(self, command: str) -> List[str]:
        if self.use_root:
            return ["shell", "su", "-c", shlex.quote(command)]
        return ["shell", command]

    def execute(self, command: str) -> CommandResult:
        try:
            p = self.adb.call(self._shell_args(command))
        except (OSError, subprocess.SubprocessError) as e:
            return CommandResult(success=False, output="", error=str(e), exit_code=-1)
        return CommandResult(
            success=p.returncode == 0,
            output=(p.stdout or "").strip(),
            error=(p.stderr or "").strip(),
            exit_code=p.returncode,
        )

    def execute_silent(self, command: str) -> bool:
        """Fire-and-forget: only the exit status matters."""
        return self.execute(command).success

    def execute_binary(self, command: str) -> Optional[bytes]:
        """Raw stdout (exec-out keeps binary data intact, e.g. screencap)."""
        if self.use_root:
            args = ["exec-out", "su", "-c", shlex.quote(command)]
        else:
            args = ["exec-out", command]
        try:
            p = self.adb.call(args, binary=True)
        except (OSError, subprocess.SubprocessError) as e:
            print(f"⚠️ {command} failed: {e}")
            return None
        if p.returncode != 0 or not p.stdout:
            return None
        return p.stdout

    def check_root_access(self) -> bool:
        try:
            p = self.adb.call(["shell", "su", "-c", "id"])
        except (OSError, subprocess.SubprocessError):
            return False
        return p.returncode == 0 and "uid=0" in (p.stdout or "")

"""
adb transport for framewatch
----------------------------
Thin wrapper around the ``adb`` executable. Every call shells out through
``run_adb_command`` and returns raw text; dump parsing lives in ``gfx_parser``.
"""

import logging
import subprocess
from typing import List, Optional

from colorama import Fore

logger = logging.getLogger(__name__)

ADB = "adb"
DEFAULT_TIMEOUT = 10  # seconds


class FramewatchError(Exception):
    """Base class for errors that end a monitoring session."""


class TransportError(FramewatchError):
    """An adb command could not be run or reported a failure."""


class AdbNotFoundError(TransportError):
    pass


class NoDeviceError(TransportError):
    pass


# -------------------- Utility Functions --------------------
def parse_process_ids(raw: str, package: str) -> List[str]:
    """PIDs of ``package`` and its ``package:name`` subprocesses in ``ps`` output."""
    pids = []
    for line in raw.splitlines():
        parts = line.split()
        # toolbox and toybox ps both print USER PID ... NAME
        if len(parts) < 2 or not parts[1].isdigit() or parts[1] in pids:
            continue
        name = parts[-1]
        if name == package or name.startswith(package + ":"):
            pids.append(parts[1])
    return pids


def run_adb_command(cmd: List[str], timeout: float = DEFAULT_TIMEOUT) -> str:
    """Run an adb command and return its output as a string.

    A timeout is not fatal: it is logged and an empty string is returned,
    which the parsers treat as "no new samples".
    """
    try:
        result = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, timeout=timeout, text=True)
    except FileNotFoundError:
        raise AdbNotFoundError("adb not found. Please install Android Platform Tools and add adb to your PATH.")
    except subprocess.TimeoutExpired:
        logger.warning("adb command timed out after %ss: %s", timeout, " ".join(cmd))
        return ''
    if result.returncode != 0:
        raise TransportError(f"ADB error: {' '.join(cmd)}\n{result.stderr.strip()}")
    return result.stdout


class AdbTransport:
    """Device-facing operations used by the poll session."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, adb: str = ADB):
        self.timeout = timeout
        self.adb = adb

    def shell(self, device_id: str, *args: str) -> str:
        return run_adb_command([self.adb, "-s", device_id, "shell", *args], self.timeout)

    def list_devices(self) -> List[str]:
        output = run_adb_command([self.adb, "devices"], self.timeout)
        lines = output.strip().splitlines()
        return [line.split('\t')[0] for line in lines[1:] if line.endswith('\tdevice')]

    def is_installed(self, device_id: str, package: str) -> bool:
        output = self.shell(device_id, "pm", "list", "packages", package)
        return any(line.strip() == f"package:{package}" for line in output.splitlines())

    def fetch_platform_version(self, device_id: str) -> int:
        output = self.shell(device_id, "getprop", "ro.build.version.sdk").strip()
        try:
            return int(output)
        except ValueError:
            raise TransportError(f"Unexpected platform version reported by {device_id}: {output!r}")

    def fetch_process_ids(self, device_id: str, package: str) -> List[str]:
        # Older toolbox ps lists everything, newer toybox ps needs -A.
        output = self.shell(device_id, "ps && ps -A")
        return parse_process_ids(output, package)

    def fetch_process_presence(self, device_id: str, package: str) -> bool:
        return bool(self.fetch_process_ids(device_id, package))

    def fetch_diagnostic_text(self, device_id: str, package: str) -> str:
        return self.shell(device_id, "dumpsys", "gfxinfo", package, "framestats", "reset")

    def fetch_memory_text(self, device_id: str, package: str) -> str:
        return self.shell(device_id, "dumpsys", "meminfo", package)

    def fetch_cpu_text(self, device_id: str, pids: List[str]) -> str:
        # Without a tty top cuts lines at 80 columns, so select rows by PID, not by name.
        return self.shell(device_id, "top", "-n", "1", "-p", ",".join(pids))


# -------------------- Device Detection --------------------
def select_device(transport: AdbTransport, requested: Optional[str] = None) -> str:
    """Pick the device to monitor. Raises NoDeviceError when none is usable."""
    devices = transport.list_devices()
    if not devices:
        raise NoDeviceError("No devices/emulator detected. Please connect and authorize your device.")
    if requested:
        if requested not in devices:
            raise NoDeviceError(f"Device {requested} is not attached (attached: {', '.join(devices)})")
        return requested
    if len(devices) > 1:
        logger.warning("Multiple devices detected. Using the first: %s", devices[0])
        print(f"{Fore.YELLOW}Warning: Multiple devices detected ({', '.join(devices)}). Using the first: {devices[0]}{Fore.RESET}")
        print(f"{Fore.YELLOW}Pass --device to pick another one.{Fore.RESET}")
    return devices[0]

"""Shared fixtures: a scripted adb transport and sample dumpsys output."""

from collections import deque
from typing import Iterable, List

import pytest

from adb_transport import TransportError

FRAMESTATS_HEADER = "Flags,IntendedVsync,Vsync,OldestInputEvent,NewestInputEvent,HandleInputStart,AnimationStart,PerformTraversalsStart,DrawStart,SyncQueued,SyncStart,IssueDrawCommandsStart,SwapBuffers,FrameCompleted,"


def framestats_row(duration_ms: float, flags: str = "0", start: int = 27965466202353) -> str:
    completed = start + int(round(duration_ms * 1_000_000))
    # Intermediate timestamps do not matter for the render time.
    middle = ",".join(str(start + i) for i in range(1, 12))
    return f"{flags},{start},{middle},{completed},"


def framestats_dump(durations_ms: Iterable[float], package: str = "com.example.app") -> str:
    rows = "\n".join(framestats_row(d, start=27965466202353 + i * 16_666_666) for i, d in enumerate(durations_ms))
    return (
        f"Applications Graphics Acceleration Info:\n"
        f"Uptime: 1084416 Realtime: 1084416\n\n"
        f"** Graphics info for pid 4321 [{package}] **\n\n"
        f"Stats since: 1075470567263ns\n"
        f"Total frames rendered: 42\n"
        f"Janky frames: 3 (7.14%)\n\n"
        f"---PROFILEDATA---\n"
        f"{FRAMESTATS_HEADER}\n"
        f"{rows}\n"
        f"---PROFILEDATA---\n\n"
        f"View hierarchy:\n\n"
        f"  {package}/{package}.MainActivity/android.view.ViewRootImpl@2c4d5f1\n"
        f"  24 views, 21.41 kB of display lists\n"
    )


PROFILE_DATA_API20 = (
    "Applications Graphics Acceleration Info:\n"
    "Uptime: 1084416 Realtime: 1084416\n\n"
    "** Graphics info for pid 4321 [com.example.app] **\n\n"
    "Caches:\n"
    "Current memory usage / total memory usage (bytes):\n"
    "  TextureCache          1234 / 25165824\n\n"
    "Profile data in ms:\n\n"
    "\tcom.example.app/com.example.app.MainActivity/android.view.ViewRootImpl@4281b1a0 (visibility=0)\n"
    "\tDraw\tPrepare\tProcess\tExecute\n"
    "\t0.50\t0.10\t2.40\t1.00\n"
    "\t1.25\t0.25\t10.00\t8.50\n"
    "\tbogus\t0.10\t0.20\t0.30\n"
    "\n"
    "View hierarchy:\n\n"
    "  com.example.app/com.example.app.MainActivity/android.view.ViewRootImpl@4281b1a0\n"
    "  24 views, 21.41 kB of display lists\n"
)

PROFILE_DATA_API18 = (
    "Profile data in ms:\n\n"
    "\tcom.example.app/com.example.app.MainActivity/android.view.ViewRootImpl@41e8e8e8\n"
    "\tDraw\tProcess\tExecute\n"
    "\t3.00\t4.00\t1.00\n"
    "\t12.00\t6.50\t0.50\n"
    "\n"
    "View hierarchy:\n"
)

MEMINFO_DUMP = (
    "Applications Memory Usage (in Kilobytes):\n"
    "Uptime: 1084416 Realtime: 1084416\n\n"
    "** MEMINFO in pid 4321 [com.example.app] **\n"
    "                   Pss  Private  Private  SwapPss     Heap     Heap     Heap\n"
    "                 Total    Dirty    Clean    Dirty     Size    Alloc     Free\n"
    "  Native Heap    20480    20400        0        0    32768    25000     7768\n"
    "        TOTAL   102400    80000     9000        0    45000    35000    10000\n\n"
    " App Summary\n"
    "           TOTAL PSS:   102400       TOTAL RSS:   180000      TOTAL SWAP PSS:        0\n"
)

TOP_DUMP = (
    "Tasks: 520 total,   1 running, 519 sleeping,   0 stopped,   0 zombie\n"
    "  Mem:  3768300K total,  3600000K used,   168300K free,    12345K buffers\n"
    "800%cpu  30%user   0%nice  20%sys 750%idle   0%iow   0%irq   0%sirq   0%host\n"
    "\x1b[7m  PID USER         PR  NI VIRT  RES  SHR S[%CPU] %MEM     TIME+ ARGS            \x1b[0m\n"
    " 4321 u0_a123      10 -10  14G 210M 120M S 35.0   5.6   1:02.33 com.example.app\n"
    " 4400 u0_a123      20   0  13G  90M  60M S  5.0   2.1   0:03.10 com.example.app:remote\n"
    " 1203 system       18  -2  17G 252M  80M S 20.0   6.8 615:01.29 system_server\n"
)

# Without a tty, toybox top cuts every row at 80 columns.
TOP_DUMP_TRUNCATED = (
    "\x1b[7m  PID USER         PR  NI VIRT  RES  SHR S[%CPU] %MEM     TIME+ ARGS            \x1b[0m\n"
    " 5120 u0_a77       10 -10  15G 310M 150M S 62.5   8.1   4:12.07 com.google.androi\n"
    " 5188 u0_a77       20   0  13G  70M  40M S  3.5   1.9   0:10.55 com.google.androi\n"
)

PS_DUMP = (
    "USER           PID  PPID     VSZ    RSS WCHAN            ADDR S NAME\n"
    "root             1     0 10943184  4512 0                   0 S init\n"
    "u0_a123       4321   612 14520012 215040 0                  0 S com.example.app\n"
    "u0_a123       4400   612 13901220  92160 0                  0 S com.example.app:remote\n"
    "u0_a124       4502   612 13998120  88012 0                  0 S com.example.apple\n"
    "system        1203   612 17210004 258048 0                  0 S system_server\n"
)


class FakeTransport:
    """Scripted stand-in for AdbTransport.

    Queued responses are consumed one per call; once a queue is empty the
    fallback value is returned.
    """

    def __init__(self, devices=("emulator-5554",), installed=("com.example.app",), platform_version=29,
                 presence=(True,), diagnostics=(), memory=(), cpu=(), pids=("4321", "4400")):
        self.devices = list(devices)
        self.installed = set(installed)
        self.platform_version = platform_version
        self.presence = deque(presence)
        self.diagnostics = deque(diagnostics)
        self.memory = deque(memory)
        self.cpu = deque(cpu)
        self.pids = list(pids)
        self.cpu_pids: List[List[str]] = []
        self.calls: List[str] = []
        self.fail_with = None

    def list_devices(self):
        return list(self.devices)

    def is_installed(self, device_id, package):
        return package in self.installed

    def fetch_platform_version(self, device_id):
        return self.platform_version

    def fetch_process_presence(self, device_id, package):
        self.calls.append("presence")
        if len(self.presence) > 1:
            return self.presence.popleft()
        return self.presence[0] if self.presence else False

    def fetch_diagnostic_text(self, device_id, package):
        self.calls.append("gfxinfo")
        if self.fail_with is not None:
            raise self.fail_with
        return self.diagnostics.popleft() if self.diagnostics else ""

    def fetch_memory_text(self, device_id, package):
        self.calls.append("meminfo")
        return self.memory.popleft() if self.memory else ""

    def fetch_process_ids(self, device_id, package):
        self.calls.append("ps")
        return list(self.pids)

    def fetch_cpu_text(self, device_id, pids):
        self.calls.append("top")
        self.cpu_pids.append(list(pids))
        return self.cpu.popleft() if self.cpu else ""


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def transport_error():
    return TransportError("ADB error: adb -s emulator-5554 shell dumpsys gfxinfo\nerror: device offline")

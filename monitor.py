#!/usr/bin/env python3
"""
framewatch - live frame timing monitor for Android apps
-------------------------------------------------------
- Picks a connected device (adb devices) and reads its API level
- Waits for the target app to start
- Polls ``dumpsys gfxinfo <package> framestats reset`` every 200ms
  (plus ``dumpsys meminfo`` and ``top`` unless --no-resources)
- Shows a live chart of the last 120 frames, janky frame count,
  min/max/avg render time and the render time distribution
- Optionally serves the same data as a web dashboard (--web)
"""

import argparse
import logging
import sys
import threading
from typing import Iterable, List, Optional, Sequence

from colorama import Back, Cursor, Fore, Style, init
from colorama.ansi import clear_screen

import dashboard
from adb_transport import AdbTransport, FramewatchError, select_device
from frame_metrics import DEFAULT_CAPACITY, JANKY_THRESHOLD_MS
from gfx_parser import select_format
from poll_session import POLL_INTERVAL, PollSession, SessionConfig, SessionSnapshot

logger = logging.getLogger(__name__)

CHART_HEIGHT = 10
CHART_REFERENCES = ((0, Fore.GREEN), (16.66, Fore.YELLOW), (33.33, Fore.RED))
BAR_WIDTH = 40
LOG_FORMAT = "[%(levelname)s] %(name)s: %(message)s"


# -------------------- Formatting --------------------
def precise(value: Optional[float]) -> str:
    if value is None:
        return '--'
    return f"{value:.2f}"


def format_elapsed(seconds: float) -> str:
    millis = int(round(seconds * 1000))
    hours, millis = divmod(millis, 3_600_000)
    minutes, millis = divmod(millis, 60_000)
    secs, millis = divmod(millis, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{millis:03d}"


def title(text: str, back: str) -> str:
    return f"{back}{Fore.BLACK} {text} {Style.RESET_ALL}"


def plot(values: Sequence[float], height: int = CHART_HEIGHT, references=CHART_REFERENCES) -> List[str]:
    """Render a series (oldest first) as rows of an ASCII chart."""
    if not values:
        return []
    bounds = [*values, *(ref for ref, _ in references)]
    lo, hi = min(bounds), max(bounds)
    span = (hi - lo) or 1.0

    def row_of(value):
        return int(round((value - lo) / span * height))

    ref_rows = {row_of(ref): color for ref, color in references}
    label_width = len(f"{hi:.2f}")
    lines = []
    for row in range(height, -1, -1):
        label = lo + span * row / height
        cells = []
        for value in values:
            if row_of(value) == row:
                cells.append(f"{Fore.MAGENTA}*")
            elif row in ref_rows:
                cells.append(f"{ref_rows[row]}-")
            else:
                cells.append(' ')
        lines.append(f"{label:>{label_width}.2f} ┤{''.join(cells)}{Fore.RESET}")
    return lines


def bars(histogram, width: int = BAR_WIDTH) -> List[str]:
    """Horizontal bar chart of a label -> count mapping, in mapping order."""
    if not histogram:
        return []
    peak = max(histogram.values()) or 1
    label_width = max(len(label) for label in histogram)
    lines = []
    for label, count in histogram.items():
        bar = '█' * int(round(count * width / peak))
        lines.append(f"{label:>{label_width}} | {bar} {count}")
    return lines


def _resource_line(name: str, unit: str, dataset) -> str:
    if dataset is None or dataset.nb_of_entries == 0:
        return f" {name}: no data"
    return (f" {name}: {precise(dataset.entries[0])}{unit}"
            f" (Max: {precise(dataset.max)}{unit} Min: {precise(dataset.min)}{unit}"
            f" Avg: {precise(dataset.average)}{unit})")


def render_snapshot(snapshot: SessionSnapshot) -> str:
    frames = snapshot.frames
    lines = [
        f"Running for {format_elapsed(snapshot.elapsed_seconds)}",
        '',
        title(f"LIVE FRAME TIMINGS ( last {len(frames.entries)} frames - ms)", Back.MAGENTA),
        '',
        *plot(list(reversed(frames.entries))),
        ' ',
        title("STATS", Back.CYAN),
        ' ',
        f"{Fore.CYAN}Frames rendered: {frames.nb_of_entries}",
        f"Janky frames: {frames.janky_frames} ({precise(frames.janky_percent)}%)",
        "Render time:",
        f" Max: {precise(frames.max)}ms",
        f" Min: {precise(frames.min)}ms",
        f" Avg: {precise(frames.average)}ms{Fore.RESET}",
        ' ',
        title("FRAME TIMINGS DISTRIBUTION", Back.BLUE),
        ' ',
        *(f"{Fore.BLUE}{line}{Fore.RESET}" for line in bars(frames.histogram)),
        ' ',
    ]
    if snapshot.memory is not None or snapshot.cpu is not None:
        lines += [
            title("RESOURCES", Back.GREEN),
            ' ',
            f"{Fore.GREEN}{_resource_line('Memory', 'MB', snapshot.memory)}",
            f"{_resource_line('CPU', '%', snapshot.cpu)}{Fore.RESET}",
            ' ',
        ]
    return "\n".join(lines)


class TerminalRenderer:
    """Redraws the whole dashboard in place on every snapshot."""

    def __init__(self, stream=None):
        self.stream = stream or sys.stdout

    def __call__(self, snapshot: SessionSnapshot) -> None:
        self.stream.write(Cursor.POS(1, 1) + clear_screen() + render_snapshot(snapshot) + "\n")
        self.stream.flush()


# -------------------- Setup --------------------
def configure_logging(log_file: Optional[str] = None, verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    if log_file:
        logging.basicConfig(filename=log_file, level=level, format=LOG_FORMAT)
    else:
        # The dashboard owns the terminal, only problems go to stderr.
        logging.basicConfig(level=logging.WARNING, format=LOG_FORMAT)


def ask_for_package(transport: AdbTransport, device_id: str, input_fn=input) -> str:
    """Prompt until the user names a package installed on the device."""
    while True:
        package = input_fn("Please enter the package name (ex: com.google.android.youtube): ").strip()
        if package and transport.is_installed(device_id, package):
            return package
        print(f"{Fore.RED}Package not detected on {device_id}{Fore.RESET}")


def positive_int(text: str) -> int:
    value = int(text)
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return value


def non_negative_float(text: str) -> float:
    value = float(text)
    if not value >= 0:
        raise argparse.ArgumentTypeError(f"must be zero or more, got {text}")
    return value


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Live frame timing monitor for Android apps (framewatch)")
    parser.add_argument('--device', type=str, help='adb device id (default: first attached device)')
    parser.add_argument('--package', type=str, help='Target app package (e.g. com.google.android.youtube)')
    parser.add_argument('--interval', type=non_negative_float, default=POLL_INTERVAL, help='Seconds between polls')
    parser.add_argument('--capacity', type=positive_int, default=DEFAULT_CAPACITY, help='Frames kept in the live chart')
    parser.add_argument('--janky-threshold', type=float, default=JANKY_THRESHOLD_MS,
                        help='Render time (ms) above which a frame counts as janky')
    parser.add_argument('--no-resources', action='store_true', help='Do not poll memory and CPU usage')
    parser.add_argument('--web', action='store_true', help='Also serve a web dashboard')
    parser.add_argument('--port', type=int, default=dashboard.DEFAULT_PORT, help='Port of the web dashboard')
    parser.add_argument('--log-file', type=str, help='Write logs to this file')
    parser.add_argument('--verbose', action='store_true', help='Debug logging (needs --log-file)')
    return parser.parse_args(argv)


# -------------------- Main --------------------
def run(args: argparse.Namespace, transport: AdbTransport, stop_event: threading.Event,
        renderer=None, input_fn=input) -> None:
    device_id = select_device(transport, args.device)
    platform_version = transport.fetch_platform_version(device_id)
    logger.info("device %s runs API level %s", device_id, platform_version)
    select_format(platform_version)
    if args.package:
        if not transport.is_installed(device_id, args.package):
            raise FramewatchError(f"Package {args.package} not detected on {device_id}")
        package = args.package
    else:
        package = ask_for_package(transport, device_id, input_fn)

    config = SessionConfig(
        device_id=device_id,
        package=package,
        platform_version=platform_version,
        poll_interval=args.interval,
        capacity=args.capacity,
        janky_threshold_ms=args.janky_threshold,
        track_resources=not args.no_resources,
    )
    session = PollSession(transport, config)
    print(f"Waiting for {package} to start...")
    if not session.wait_for_target_process(stop_event):
        return
    print(f"{Fore.GREEN}App started.{Fore.RESET}")
    if args.web:
        dashboard.serve_in_background(session, args.port)
    session.run(renderer or TerminalRenderer(), stop_event)


def main(argv: Optional[Iterable[str]] = None, transport: Optional[AdbTransport] = None) -> int:
    init()
    args = parse_args(argv)
    configure_logging(args.log_file, args.verbose)
    stop_event = threading.Event()
    try:
        run(args, transport or AdbTransport(), stop_event)
    except KeyboardInterrupt:
        stop_event.set()
        print("\nExiting monitor mode.")
        return 0
    except FramewatchError as e:
        logger.error("%s", e)
        print(f"{Fore.RED}{e}{Fore.RESET}")
        return 1
    except Exception:
        logger.exception("poll loop failed")
        print(f"{Fore.LIGHTRED_EX}Oops something bad happened.{Fore.RESET}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

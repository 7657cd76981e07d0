"""Sound an alarm while the internet connection is down.

One background monitor pings each target address. As long as at least one of
them answers, the loop just reports the count; when none do, ``alarm.wav``
is played and the next check happens once it has finished. Ctrl+C stops the
monitors and exits.
"""

import argparse
import signal
import threading
from typing import List, Optional, Sequence

from alarm_player import DEFAULT_ALARM_PATH, AlarmPlayer
from connectivity_monitor import (
    ConnectivityMonitor,
    count_connected,
    start_monitors,
    stop_monitors,
)

# Google Public DNS. Some mobile carriers only route the IPv6 addresses and
# most home connections only the IPv4 ones.
DEFAULT_TARGETS = [
    "8.8.8.8",
    "8.8.4.4",
    "2001:4860:4860::8888",
    "2001:4860:4860::8844",
]
DEFAULT_TIMEOUT = 3.0
IDLE_INTERVAL = 0.014


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--target",
        dest="targets",
        action="append",
        metavar="IP",
        help="address to ping; repeat for several (default: Google Public DNS)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT,
        help=f"seconds to wait for each reply (default: {DEFAULT_TIMEOUT})",
    )
    args = parser.parse_args(argv)
    if not args.targets:
        args.targets = list(DEFAULT_TARGETS)
    return args


def install_interrupt_handler(shutdown: threading.Event) -> None:
    def _request_shutdown(signum, frame) -> None:
        shutdown.set()

    signal.signal(signal.SIGINT, _request_shutdown)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _request_shutdown)


def run_program(
    args: argparse.Namespace,
    shutdown: Optional[threading.Event] = None,
    player: Optional[AlarmPlayer] = None,
) -> None:
    if shutdown is None:
        shutdown = threading.Event()
        install_interrupt_handler(shutdown)
    player = player or AlarmPlayer(DEFAULT_ALARM_PATH)
    player.open()
    try:
        monitors = start_monitors(args.targets, args.timeout)
        print(f"Monitoring {', '.join(args.targets)}. Press Ctrl+C to stop.")
        try:
            watch_connectivity(monitors, player, shutdown)
        finally:
            errors = stop_monitors(monitors)
            print(f"Stopped {len(monitors) - len(errors)}/{len(monitors)} monitors.")
    finally:
        player.close()


def watch_connectivity(
    monitors: List[ConnectivityMonitor], player: AlarmPlayer, shutdown: threading.Event
) -> None:
    while not shutdown.is_set():
        num_connected = count_connected(monitors)
        print(f'num_connected: "{num_connected}"')
        if num_connected >= 1:
            shutdown.wait(IDLE_INTERVAL)
        else:
            # Let the alarm finish before checking again.
            duration = player.play()
            shutdown.wait(duration)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    try:
        run_program(args)
    except Exception as exc:
        print(exc)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

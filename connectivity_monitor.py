import ipaddress
import math
import subprocess
import sys
import threading
from dataclasses import dataclass
from subprocess import CalledProcessError, TimeoutExpired, run
from typing import Callable, Iterable, List, Optional, Protocol, Sequence, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

# Short enough to stay responsive, long enough that a router answering
# instantly (e.g. with an ICMPv6 error for an unsupported protocol) does not
# spin the polling thread at 100% CPU.
POLL_INTERVAL = 0.014
JOIN_GRACE = 1.0


class MonitorError(Exception):
    """Base class for monitor lifecycle failures."""


class MonitorJoinError(MonitorError):
    pass


class MonitorStoppedError(MonitorError):
    pass


@dataclass(frozen=True)
class PollSettings:
    remote_ip: IPAddress
    timeout: float

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")

    @classmethod
    def parse(cls, address: str, timeout: float) -> "PollSettings":
        return cls(ipaddress.ip_address(address), float(timeout))


@dataclass(frozen=True)
class ProbeResult:
    address: str
    reachable: bool
    reason: Optional[str] = None


class PlatformAdapter(Protocol):
    """Builds the ping command line for the running operating system.

    Each system spells "one echo request, wait this long" differently, and
    some of them need a separate binary for IPv6 targets.
    """

    def ping_command(self, address: IPAddress, timeout: float) -> List[str]:
        ...


class LinuxPlatformAdapter:
    """iputils ping: wait time in whole seconds."""

    def ping_command(self, address: IPAddress, timeout: float) -> List[str]:
        family = "-6" if address.version == 6 else "-4"
        wait = str(max(1, math.ceil(timeout)))
        return ["ping", family, "-n", "-c", "1", "-W", wait, str(address)]


class MacPlatformAdapter:
    """macOS and FreeBSD ping: wait time in milliseconds, ping6 for IPv6."""

    def ping_command(self, address: IPAddress, timeout: float) -> List[str]:
        if address.version == 6:
            # ping6 has no per-reply wait flag; the subprocess timeout bounds it.
            return ["ping6", "-n", "-c", "1", str(address)]
        wait_ms = str(max(1, int(timeout * 1000)))
        return ["ping", "-n", "-c", "1", "-W", wait_ms, str(address)]


class WindowsPlatformAdapter:
    def ping_command(self, address: IPAddress, timeout: float) -> List[str]:
        timeout_ms = str(max(1, int(timeout * 1000)))
        family = "-6" if address.version == 6 else "-4"
        return ["ping", family, "-n", "1", "-w", timeout_ms, str(address)]


def default_platform_adapter() -> PlatformAdapter:
    if sys.platform.startswith("win"):
        return WindowsPlatformAdapter()
    if sys.platform == "darwin" or sys.platform.startswith("freebsd"):
        return MacPlatformAdapter()
    return LinuxPlatformAdapter()


def probe_with_reason(
    address: Union[str, IPAddress],
    timeout: float,
    platform: Optional[PlatformAdapter] = None,
) -> ProbeResult:
    """Send a single echo request and report whether a reply arrived.

    The ping subprocess is killed once it outlives ``timeout``, so the call
    returns within the timeout plus process start-up overhead. Every failure
    is reported through the result; nothing is raised.
    """
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return ProbeResult(str(address), False, "invalid address")
    adapter = platform or default_platform_adapter()
    command = adapter.ping_command(ip, timeout)
    try:
        completed = run(
            command,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=timeout,
            check=False,
        )
    except TimeoutExpired:
        return ProbeResult(str(ip), False, "timeout")
    except FileNotFoundError:
        return ProbeResult(str(ip), False, "ping command not found")
    except (CalledProcessError, OSError, ValueError) as exc:
        return ProbeResult(str(ip), False, str(exc))

    if completed.returncode != 0:
        return ProbeResult(str(ip), False, "no reply")
    return ProbeResult(str(ip), True)


def probe(address: Union[str, IPAddress], timeout: float) -> bool:
    """Return True if ``address`` answered one echo request within ``timeout``."""
    return probe_with_reason(address, timeout).reachable


ProbeCallable = Callable[[IPAddress, float], bool]


class ConnectivityMonitor:
    """Polls one remote address on a background thread.

    The latest probe result lives in a ``threading.Event``: the polling
    thread is its only writer and ``is_connected`` reads it without taking a
    lock. Create instances with :meth:`start`; call :meth:`stop` exactly once.
    """

    def __init__(
        self,
        settings: PollSettings,
        probe: ProbeCallable = probe,
        poll_interval: float = POLL_INTERVAL,
        initial_status: bool = False,
    ) -> None:
        self._settings = settings
        self._probe = probe
        self._poll_interval = poll_interval

        self._connected = threading.Event()
        if initial_status:
            self._connected.set()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._failure: Optional[BaseException] = None
        self._stopped = False

    @classmethod
    def start(
        cls,
        settings: PollSettings,
        probe: ProbeCallable = probe,
        poll_interval: float = POLL_INTERVAL,
        initial_status: bool = False,
    ) -> "ConnectivityMonitor":
        monitor = cls(settings, probe, poll_interval, initial_status)
        monitor._thread = threading.Thread(
            target=monitor._run,
            name=f"connectivity-monitor-{settings.remote_ip}",
            daemon=True,
        )
        monitor._thread.start()
        return monitor

    @property
    def settings(self) -> PollSettings:
        return self._settings

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def is_connected(self) -> bool:
        return self._connected.is_set()

    def stop(self) -> None:
        if self._stopped:
            raise MonitorStoppedError(f"monitor for {self._settings.remote_ip} already stopped")
        self._stopped = True
        self._stop_event.set()
        if self._thread is None:
            return
        self._thread.join(self._settings.timeout + self._poll_interval + JOIN_GRACE)
        if self._thread.is_alive():
            raise MonitorJoinError(
                f"could not join monitor thread for {self._settings.remote_ip}: still running"
            )
        if self._failure is not None:
            raise MonitorJoinError(
                f"could not join monitor thread for {self._settings.remote_ip}: {self._failure}"
            ) from self._failure

    def __enter__(self) -> "ConnectivityMonitor":
        if self._stopped:
            raise MonitorStoppedError(f"monitor for {self._settings.remote_ip} already stopped")
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    def __repr__(self) -> str:
        state = "running" if self.running else "stopped"
        return f"<ConnectivityMonitor {self._settings.remote_ip} {state} connected={self.is_connected()}>"

    def _run(self) -> None:
        try:
            self._poll_loop()
        except Exception as exc:
            self._failure = exc
            self._connected.clear()
            print(f"Connectivity monitor for {self._settings.remote_ip} failed: {exc}")

    def _poll_loop(self) -> None:
        settings = self._settings
        while not self._stop_event.is_set():
            if self._stop_event.wait(self._poll_interval):
                break
            if self._probe(settings.remote_ip, settings.timeout):
                self._connected.set()
            else:
                self._connected.clear()


def start_monitors(
    addresses: Iterable[str],
    timeout: float,
    probe: ProbeCallable = probe,
    poll_interval: float = POLL_INTERVAL,
) -> List[ConnectivityMonitor]:
    """Start one monitor per address.

    If any address is invalid or a thread cannot be started, the monitors
    already running are stopped before the error is re-raised.
    """
    monitors: List[ConnectivityMonitor] = []
    try:
        for address in addresses:
            settings = PollSettings.parse(address, timeout)
            monitors.append(ConnectivityMonitor.start(settings, probe, poll_interval))
    except Exception:
        stop_monitors(monitors)
        raise
    return monitors


def count_connected(monitors: Iterable[ConnectivityMonitor]) -> int:
    return sum(1 for monitor in monitors if monitor.is_connected())


def stop_monitors(monitors: Sequence[ConnectivityMonitor]) -> List[Exception]:
    """Stop every monitor, newest first, and return the failures encountered."""
    errors: List[Exception] = []
    for monitor in reversed(monitors):
        try:
            monitor.stop()
        except MonitorError as exc:
            print(exc)
            errors.append(exc)
    return errors

import os
import subprocess
import time

import psutil
from loguru import logger

from lock_in.schema import ForegroundEvent
from lock_in.settings import settings


def kill_processes(process_names: list[str]) -> set[str]:
    """Kills a list of processes by name if they are running."""
    killed_processes = set()
    process_names_set = set(process_names)

    for proc in psutil.process_iter(["name"]):
        try:
            if proc.info["name"] in process_names_set:
                logger.info(f"Killing {proc.info['name']} (PID: {proc.pid})")
                proc.kill()
                killed_processes.add(proc.info["name"])
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue

    return killed_processes


def is_daemon_running(pid: int | None) -> bool:
    if not pid:
        return False
    try:
        proc = psutil.Process(pid)
        return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return False


def _run(cmd: list[str]) -> str | None:
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=2)
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip()


class ForegroundWatcher:
    """
    Reports which application owns the focused X11 window.

    The process name of the window's owner stands in for a package id. The
    lock screen runs inside whatever terminal is available, so it is
    recognised by its window title instead and reported as the app itself.
    """

    def __init__(self):
        self._method: str | None = None

    def _active_window_xdotool(self) -> tuple[int | None, str] | None:
        pid = _run(["xdotool", "getactivewindow", "getwindowpid"])
        if pid is None:
            return None
        title = _run(["xdotool", "getactivewindow", "getwindowname"]) or ""
        return (int(pid) if pid.isdigit() else None), title

    def _active_window_xprop(self) -> tuple[int | None, str] | None:
        root = _run(["xprop", "-root", "_NET_ACTIVE_WINDOW"])
        if root is None or "#" not in root:
            return None
        window_id = root.split("#")[-1].strip().split(",")[0]
        if window_id in ("0x0", ""):
            return None, ""
        props = _run(["xprop", "-id", window_id, "_NET_WM_PID", "_NET_WM_NAME"]) or ""
        pid = None
        title = ""
        for line in props.splitlines():
            if line.startswith("_NET_WM_PID") and "=" in line:
                value = line.split("=", 1)[1].strip()
                pid = int(value) if value.isdigit() else None
            elif line.startswith("_NET_WM_NAME") and "=" in line:
                title = line.split("=", 1)[1].strip().strip('"')
        return pid, title

    def active_window(self) -> tuple[int | None, str] | None:
        """Returns (pid, title) of the focused window, trying each backend once."""
        methods = {
            "xdotool": self._active_window_xdotool,
            "xprop": self._active_window_xprop,
        }
        # Prioritize cached method
        if self._method:
            window = methods[self._method]()
            if window is not None:
                return window
            self._method = None

        for name, method in methods.items():
            window = method()
            if window is not None:
                self._method = name
                return window
        return None

    def current_package(self) -> str | None:
        """The package id of the foreground app, '' for an empty desktop, None if unknown."""
        window = self.active_window()
        if window is None:
            return None
        pid, title = window
        if title == settings.lock_screen_title:
            return settings.app_identities[0]
        if pid is None:
            return ""
        if pid == os.getpid():
            return settings.app_identities[0]
        try:
            return psutil.Process(pid).name()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return None

    def poll(self) -> ForegroundEvent | None:
        package_id = self.current_package()
        if package_id is None:
            return None
        return ForegroundEvent(package_id=package_id, timestamp=time.time())

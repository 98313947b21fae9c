import subprocess
import sys

from loguru import logger

from lock_in.schema import SessionRecord
from lock_in.settings import settings


def send_notification(summary: str, body: str):
    """Sends a desktop notification using notify-send."""
    logger.info(f"Sending notification: {summary} | {body}")
    cmd = ["notify-send", summary, body, "-a", settings.app_name]
    try:
        subprocess.run(cmd, check=False)
    except FileNotFoundError:
        logger.error("notify-send not found. Install libnotify-bin.")
    except OSError as e:
        logger.error(f"Failed to send notification: {e}")


def show_lock_screen(session: SessionRecord, reason: str) -> subprocess.Popen | None:
    """Opens a fullscreen terminal with the focus countdown."""
    logger.info(f"Showing lock screen: {reason}")
    script_cmd = [
        sys.executable,
        "-m",
        "lock_in.utils.center_message",
        "--until",
        str(session.end_time_ms),
        "--token",
        session.ui_token or "",
    ]
    title = settings.lock_screen_title

    # Try common terminals with fullscreen/maximize flags
    terminals = [
        ["kitty", "--start-as=fullscreen", "--title", title] + script_cmd,
        ["gnome-terminal", "--full-screen", f"--title={title}", "--"] + script_cmd,
        ["konsole", "--fullscreen", "-p", f"tabtitle={title}", "-e"] + script_cmd,
        ["xfce4-terminal", "--fullscreen", "--title", title, "-x"] + script_cmd,
        # xterm is basic and might not render Rich colors well, but it's a fallback
        ["xterm", "-fullscreen", "-T", title, "-e"] + script_cmd,
    ]

    for cmd in terminals:
        # Check if the terminal exists first to avoid spamming errors
        if subprocess.run(["which", cmd[0]], capture_output=True).returncode != 0:
            continue
        try:
            logger.debug(f"Launching lock screen via {cmd[0]}")
            return subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError as e:
            logger.debug(f"Failed to launch terminal {cmd[0]}: {e}")

    logger.warning("No suitable terminal emulator found to show lock screen.")
    send_notification("Focus session active", "This app is not allowed right now.")
    return None

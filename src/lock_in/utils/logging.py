import sys

from loguru import logger

from lock_in.settings import settings

# The daemon handles work on several threads (decision loop, timers,
# history writer), so every line names the thread it came from.
LOG_FORMAT_CONSOLE = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{thread.name: <13}</magenta> | "
    "<cyan>{name}</cyan> | "
    "<level>{message}</level>"
)
LOG_FORMAT_FILE = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {process} | {thread.name} | {name} | {message}"
LOG_ROTATION = "10 MB"
LOG_RETENTION = "14 days"
LOG_COMPRESSION = "zip"


def setup_logging(verbose: bool = False, console: bool = True, filename: str = "lock_in.log") -> None:
    """
    Configure loguru sinks for the current process.

    Args:
        verbose (bool): DEBUG instead of INFO (``settings.debug`` does the same).
        console (bool): Also log to stderr. CLI commands turn this off so log
                       lines do not end up between their tables.
        filename (str): Log file inside ``settings.log_dir``. The daemon keeps
                       its own file so rotation never races a CLI call.
    """
    logger.remove()

    is_debug = verbose or settings.debug
    level = "DEBUG" if is_debug else "INFO"

    if console or is_debug:
        logger.add(sys.stderr, level=level, format=LOG_FORMAT_CONSOLE)

    settings.log_dir.mkdir(parents=True, exist_ok=True)
    log_file_path = settings.log_dir / filename
    logger.add(
        log_file_path,
        level=level,
        format=LOG_FORMAT_FILE,
        rotation=LOG_ROTATION,
        retention=LOG_RETENTION,
        compression=LOG_COMPRESSION,
        enqueue=True,
    )

    logger.debug(f"Logging to {log_file_path} at {level}")

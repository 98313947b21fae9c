from datetime import datetime, time

TIME_FORMATS = ["%I%p", "%I:%M%p", "%H:%M", "%H:%M:%S"]


def parse_time_string(time_str: str) -> time:
    """Parses a schedule start like '9am', '8:30pm', '20:00' into a time of day."""
    cleaned = time_str.lower().replace(" ", "")
    for fmt in TIME_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).time()
        except ValueError:
            continue
    raise ValueError(f"Could not parse time: {time_str}")


def format_duration_seconds(seconds: int) -> str:
    """'45m', '2h', '2h 30m'; anything under a minute is '<1m'."""
    if 0 < seconds < 60:
        return "<1m"
    hours, minutes = divmod(seconds // 60, 60)
    if not hours:
        return f"{minutes}m"
    if not minutes:
        return f"{hours}h"
    return f"{hours}h {minutes}m"


def format_clock_ms(epoch_ms: int) -> str:
    """Formats an epoch timestamp in ms as local wall-clock time."""
    return datetime.fromtimestamp(epoch_ms / 1000).strftime("%I:%M%p").lstrip("0")

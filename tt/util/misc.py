import time
from datetime import datetime



# Wall-clock milliseconds since the epoch, which is what everything in state.json is measured in.
def now_ms() -> int:
    return int(time.time() * 1000)


# Local calendar date (YYYY-MM-DD) for an epoch-ms timestamp.
def local_date(epoch_ms):
    return datetime.fromtimestamp(epoch_ms / 1000).astimezone().date().isoformat()


def format_millis(millis):
    """Format elapsed milliseconds as HH:MM:SS. Negative values clamp to zero."""
    seconds = max(0, int(millis) // 1000)
    h, rem = divmod(seconds, 3600)
    m, s = divmod(rem, 60)
    return f"{h:02d}:{m:02d}:{s:02d}"

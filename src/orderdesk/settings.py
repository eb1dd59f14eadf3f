"""Runtime settings for orderdesk, read from the environment."""

import os
from pathlib import Path

# Can be overridden via ORDERDESK_DATA_DIR environment variable
_default_data_dir = Path(__file__).parent.parent.parent / "data"
DATA_DIR = Path(os.environ.get("ORDERDESK_DATA_DIR", _default_data_dir))

# Hours a buyer's transfer proof may wait for review
MIN_VERIFICATION_TIMEOUT_HOURS = 1
MAX_VERIFICATION_TIMEOUT_HOURS = 168
DEFAULT_VERIFICATION_TIMEOUT_HOURS = 24

# Attempts at allocating a unique order number before giving up
ORDER_NUMBER_ATTEMPTS = 5

LOG_LEVEL = os.environ.get("ORDERDESK_LOG_LEVEL", "WARNING").upper()


def clamp_verification_timeout(hours: int) -> int:
    """Clamp a verification timeout to the supported range."""
    return max(MIN_VERIFICATION_TIMEOUT_HOURS, min(MAX_VERIFICATION_TIMEOUT_HOURS, hours))


def _read_verification_timeout() -> int:
    raw = os.environ.get("ORDERDESK_VERIFICATION_TIMEOUT_HOURS")
    if not raw:
        return DEFAULT_VERIFICATION_TIMEOUT_HOURS
    try:
        return clamp_verification_timeout(int(raw))
    except ValueError:
        return DEFAULT_VERIFICATION_TIMEOUT_HOURS


VERIFICATION_TIMEOUT_HOURS = _read_verification_timeout()

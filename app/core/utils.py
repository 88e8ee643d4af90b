import time
from typing import Any

from loguru import logger


def now_ms() -> int:
    """
    Current wall-clock time in epoch milliseconds

    Returns:
        int: Milliseconds since the epoch
    """
    return time.time_ns() // 1_000_000


def to_epoch_ms(value: Any) -> int | None:
    """
    Parse an epoch milliseconds value as sent by Apple.

    verifyReceipt sends them as strings, the App Store Server API as integers.

    Args:
        value: The raw timestamp (str, int, float or None)

    Returns:
        int | None: Milliseconds since the epoch, None when absent or unparsable
    """
    if value is None or value == "":
        return None

    try:
        return int(value)
    except (TypeError, ValueError):
        pass

    try:
        return int(float(value))
    except (TypeError, ValueError):
        logger.warning(f"Ignoring unparsable timestamp: {value!r}")
        return None


def truncate_text(text: str, length: int) -> str:
    """
    Truncate text for diagnostics

    Args:
        text: The text to truncate
        length: Maximum number of characters kept

    Returns:
        str: At most `length` characters of text
    """
    return text[:length]


def mask_identifier(value: str, visible: int = 8) -> str:
    """
    Mask an identifier for logs and debug output, keeping a short prefix

    Args:
        value: The identifier to mask
        visible: Number of leading characters left visible

    Returns:
        str: The masked identifier, or an empty string when value is empty
    """
    if not value:
        return ""

    return f"{value[:visible]}..."

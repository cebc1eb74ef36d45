"""
Thread-safe rate-limited logging utilities.

Polling loops emit the same "still waiting" line every few seconds; this
module keeps such lines visible without flooding the log.
"""
import logging
import threading
from typing import Optional

from cachetools import TTLCache

logger = logging.getLogger(__name__)

# One cache per interval, each entry expiring after that interval
_caches = {}
_cache_lock = threading.RLock()


def _cache_for(interval: int) -> TTLCache:
    cache = _caches.get(interval)
    if cache is None:
        cache = TTLCache(maxsize=100, ttl=interval)
        _caches[interval] = cache
    return cache


def rate_limited_log(
    message: str,
    level: str = "warning",
    interval: int = 60,
    logger_instance: Optional[logging.Logger] = None,
    key: Optional[str] = None,
) -> bool:
    """
    Log a message with rate limiting, in a thread-safe manner.

    Args:
        message: Message to log
        level: Log level (debug, info, warning, error, critical)
        interval: Minimum interval between logs in seconds
        logger_instance: Logger to use (defaults to module logger)
        key: Deduplication key, defaults to the message itself. Pass a
            stable key when the message embeds a changing counter.

    Returns:
        True if the message was logged, False if it was suppressed
    """
    log_instance = logger_instance or logger
    log_method = getattr(log_instance, level.lower(), log_instance.warning)
    cache_key = f"{level}:{key or message}"

    with _cache_lock:
        cache = _cache_for(interval)
        if cache_key in cache:
            return False
        log_method(message)
        cache[cache_key] = True
    return True


def reset() -> None:
    """Forget every suppressed key."""
    with _cache_lock:
        _caches.clear()

import asyncio
import logging
from functools import wraps

logger = logging.getLogger(__name__)


def retry(max_attempts: int = 3, delay: float = 1.0, exceptions=(Exception,)):
    """Retry an async call with linear backoff; the last failure propagates."""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            attempts = max(1, int(max_attempts))
            for attempt in range(attempts):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= attempts - 1:
                        raise
                    logger.warning(
                        "%s failed (attempt %s/%s): %r", func.__qualname__, attempt + 1, attempts, e
                    )
                    await asyncio.sleep(delay * (attempt + 1))
        return wrapper
    return decorator

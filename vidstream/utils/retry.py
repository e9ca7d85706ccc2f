"""
Retry utility with exponential backoff for transient errors.
Used for publication (lock contention) and storage teardown.
"""
import asyncio
import errno
import logging
from typing import Awaitable, Callable, TypeVar

from vidstream.core.exceptions import PublicationConflict, StorageTeardownFailure

logger = logging.getLogger(__name__)

T = TypeVar('T')

# OS errors that usually clear up on their own (busy files, NFS hiccups)
_TRANSIENT_ERRNOS = {errno.EBUSY, errno.EAGAIN, errno.ENOTEMPTY, errno.ETXTBSY, errno.EINTR}


def is_transient_error(error: Exception) -> bool:
    """
    Determine if an error is transient and should be retried.

    Transient errors include:
    - Publication lock contention
    - Incomplete storage teardown
    - Busy / not-empty filesystem errors
    - Timeouts and connection errors
    """
    if isinstance(error, (PublicationConflict, StorageTeardownFailure)):
        return True

    if isinstance(error, (TimeoutError, ConnectionError)):
        return True

    if isinstance(error, OSError) and error.errno in _TRANSIENT_ERRNOS:
        return True

    return False


async def retry_with_backoff(
    func: Callable[..., Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 1.0,
    operation_name: str = "operation",
    *args,
    **kwargs
) -> T:
    """
    Retry an async function with exponential backoff.

    Args:
        func: Async function to retry
        max_retries: Maximum number of retry attempts
        base_delay: Base delay in seconds (exponentially increased)
        operation_name: Name of operation for logging
        *args: Arguments to pass to func
        **kwargs: Keyword arguments to pass to func

    Returns:
        Result from successful function call

    Raises:
        Exception: The last exception if all retries fail or the error is not transient

    Retry delays: base_delay * (2 ** attempt)
    """
    for attempt in range(max_retries + 1):
        try:
            result = await func(*args, **kwargs)

            if attempt > 0:
                logger.info(
                    f"{operation_name} succeeded on attempt {attempt + 1}/{max_retries + 1}"
                )

            return result

        except Exception as e:
            if attempt >= max_retries:
                logger.error(
                    f"{operation_name} failed after {max_retries + 1} attempts: {type(e).__name__}: {e}"
                )
                raise

            if not is_transient_error(e):
                logger.error(
                    f"{operation_name} failed with non-transient error: {type(e).__name__}: {e}"
                )
                raise

            delay = base_delay * (2 ** attempt)

            logger.warning(
                f"{operation_name} attempt {attempt + 1}/{max_retries + 1} failed: "
                f"{type(e).__name__}: {e}. Retrying in {delay}s..."
            )

            await asyncio.sleep(delay)

    raise RuntimeError(f"{operation_name}: retry loop exited without a result")

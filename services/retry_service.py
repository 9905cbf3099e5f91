"""Exponential-backoff retry loop around a single upstream call"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from exceptions import EmptyUpstreamContent, RequestCancelled, UpstreamError
from schemas import EmptyContent, Error, Success, UpstreamResult

logger = logging.getLogger(__name__)

RETRY_ALL = "all"
RETRY_CLASSIFIED = "classified"


class CancellationToken:
    """Request-scoped cancellation signal shared by the backoff wait and the in-flight call"""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Request cancelled.") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def cancel_after(self, seconds: float) -> None:
        """Cancel once the deadline passes; must be called from a running loop"""
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(seconds, self.cancel, f"Request deadline of {seconds:g}s exceeded.")

    def dispose(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def wait(self) -> None:
        await self._event.wait()


async def backoff_sleep(delay: float, token: Optional[CancellationToken] = None) -> bool:
    """Wait for delay seconds; returns False if the token fired first"""
    if token is None:
        await asyncio.sleep(delay)
        return True
    if token.cancelled:
        return False
    try:
        await asyncio.wait_for(token.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return True
    return False


def is_retryable(error: Exception, policy: str) -> bool:
    if policy == RETRY_ALL:
        return True
    if isinstance(error, UpstreamError):
        status = error.status_code
        if status is None or isinstance(error, EmptyUpstreamContent):
            return True
        return status == 429 or status >= 500
    # unexpected failures are treated like transport errors
    return True


class RetryingCaller:
    """Runs an async call up to max_attempts times, sleeping base_delay * 2**i after failure i"""

    def __init__(
        self,
        max_attempts: int = 5,
        base_delay: float = 1.0,
        policy: str = RETRY_ALL,
        sleep: Callable[[float, Optional[CancellationToken]], Awaitable[bool]] = backoff_sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.policy = policy
        self.sleep = sleep

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * (2 ** attempt)

    async def _attempt(self, call: Callable[[], Awaitable[str]], token: Optional[CancellationToken]) -> str:
        if token is None:
            return await call()

        call_task = asyncio.ensure_future(call())
        cancel_task = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait({call_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_task.cancel()
            # the upstream call never outlives its attempt
            if not call_task.done():
                call_task.cancel()
        if call_task in done:
            return call_task.result()
        raise RequestCancelled(token.reason or "Request cancelled.")

    async def call(
        self,
        call: Callable[[], Awaitable[str]],
        token: Optional[CancellationToken] = None,
    ) -> UpstreamResult:
        """Never raises; always returns a terminal UpstreamResult"""
        last_error: Optional[Exception] = None

        for attempt in range(self.max_attempts):
            if token is not None and token.cancelled:
                return Error(message=token.reason or "Request cancelled.")
            try:
                artifact = await self._attempt(call, token)
                if attempt > 0:
                    logger.info(f"Upstream call succeeded on attempt {attempt + 1}")
                return Success(artifact=artifact)
            except RequestCancelled as e:
                logger.warning(f"Upstream call cancelled on attempt {attempt + 1}: {e.message}")
                return Error(message=e.message)
            except Exception as e:
                last_error = e
                logger.warning(f"Attempt {attempt + 1}/{self.max_attempts} failed: {str(e)}")

            if not is_retryable(last_error, self.policy):
                logger.error(f"Not retrying terminal upstream error: {str(last_error)}")
                return self._result_for(last_error, retries_exhausted=False)

            if attempt < self.max_attempts - 1:
                delay = self.delay_for(attempt)
                logger.info(f"Backing off {delay:g}s before attempt {attempt + 2}")
                if not await self.sleep(delay, token):
                    reason = token.reason if token is not None else None
                    return Error(message=reason or "Request cancelled.")

        logger.error(f"All {self.max_attempts} attempts failed: {str(last_error)}")
        return self._result_for(last_error, retries_exhausted=self.max_attempts > 1)

    @staticmethod
    def _result_for(error: Exception, retries_exhausted: bool) -> UpstreamResult:
        message = str(error) or type(error).__name__
        if isinstance(error, EmptyUpstreamContent):
            return EmptyContent(message=message)
        status_code = error.status_code if isinstance(error, UpstreamError) else None
        return Error(message=message, status_code=status_code, retries_exhausted=retries_exhausted)

import asyncio
from unittest import IsolatedAsyncioTestCase, TestCase, mock

from exceptions import EmptyUpstreamContent, UpstreamError, UpstreamRateLimited
from schemas import EmptyContent, Error, Success
from services.retry_service import (
    RETRY_ALL,
    RETRY_CLASSIFIED,
    CancellationToken,
    RetryingCaller,
    backoff_sleep,
    is_retryable,
)


def recorded_delays(sleep: mock.AsyncMock) -> list[float]:
    return [c.args[0] for c in sleep.call_args_list]


class TestRetryingCaller(IsolatedAsyncioTestCase):

    def make_caller(self, **kwargs) -> tuple[RetryingCaller, mock.AsyncMock]:
        sleep = mock.AsyncMock(return_value=True)
        return RetryingCaller(sleep=sleep, **kwargs), sleep

    async def test_success_on_first_attempt_does_not_sleep(self) -> None:
        caller, sleep = self.make_caller()
        call = mock.AsyncMock(return_value="AAAA")

        result = await caller.call(call)

        self.assertEqual(result, Success(artifact="AAAA"))
        self.assertEqual(call.await_count, 1)
        sleep.assert_not_awaited()

    async def test_rate_limited_then_success_doubles_delay(self) -> None:
        for k in range(1, 6):
            with self.subTest(succeeds_on=k):
                caller, sleep = self.make_caller()
                call = mock.AsyncMock(side_effect=[UpstreamRateLimited()] * (k - 1) + ["AAAA"])

                result = await caller.call(call)

                self.assertEqual(result, Success(artifact="AAAA"))
                self.assertEqual(call.await_count, k)
                self.assertEqual(recorded_delays(sleep), [1.0, 2.0, 4.0, 8.0][: k - 1])

    async def test_all_attempts_fail_returns_last_error(self) -> None:
        caller, sleep = self.make_caller()
        errors = [UpstreamError(f"failure {i}", status_code=503) for i in range(5)]
        call = mock.AsyncMock(side_effect=errors)

        result = await caller.call(call)

        self.assertEqual(result, Error(message="failure 4", status_code=503, retries_exhausted=True))
        self.assertEqual(call.await_count, 5)
        # no sleep after the final attempt
        self.assertEqual(recorded_delays(sleep), [1.0, 2.0, 4.0, 8.0])

    async def test_unexpected_exception_is_retried(self) -> None:
        caller, _ = self.make_caller(max_attempts=2)
        call = mock.AsyncMock(side_effect=[RuntimeError("boom"), "ok"])

        result = await caller.call(call)

        self.assertEqual(result, Success(artifact="ok"))

    async def test_empty_content_is_retried_and_reported_as_empty(self) -> None:
        caller, sleep = self.make_caller()
        call = mock.AsyncMock(side_effect=EmptyUpstreamContent("no image", status_code=200))

        result = await caller.call(call)

        self.assertEqual(result, EmptyContent(message="no image"))
        self.assertEqual(call.await_count, 5)
        self.assertEqual(len(sleep.call_args_list), 4)

    async def test_retry_all_policy_retries_client_errors(self) -> None:
        caller, _ = self.make_caller(policy=RETRY_ALL)
        call = mock.AsyncMock(side_effect=UpstreamError("bad request", status_code=400))

        result = await caller.call(call)

        self.assertEqual(call.await_count, 5)
        self.assertTrue(result.retries_exhausted)

    async def test_classified_policy_stops_on_client_error(self) -> None:
        caller, sleep = self.make_caller(policy=RETRY_CLASSIFIED)
        call = mock.AsyncMock(side_effect=UpstreamError("bad request", status_code=400))

        result = await caller.call(call)

        self.assertEqual(result, Error(message="bad request", status_code=400, retries_exhausted=False))
        self.assertEqual(call.await_count, 1)
        sleep.assert_not_awaited()

    async def test_classified_policy_retries_rate_limit_and_server_errors(self) -> None:
        caller, _ = self.make_caller(policy=RETRY_CLASSIFIED)
        call = mock.AsyncMock(side_effect=[
            UpstreamRateLimited(),
            UpstreamError("unavailable", status_code=503),
            UpstreamError("network down"),
            "AAAA",
        ])

        result = await caller.call(call)

        self.assertEqual(result, Success(artifact="AAAA"))
        self.assertEqual(call.await_count, 4)

    async def test_single_attempt_is_not_marked_exhausted(self) -> None:
        caller, sleep = self.make_caller(max_attempts=1)
        call = mock.AsyncMock(side_effect=UpstreamError("forbidden", status_code=403))

        result = await caller.call(call)

        self.assertEqual(result, Error(message="forbidden", status_code=403, retries_exhausted=False))
        sleep.assert_not_awaited()

    async def test_cancelled_backoff_stops_retrying(self) -> None:
        sleep = mock.AsyncMock(return_value=False)
        caller = RetryingCaller(sleep=sleep)
        call = mock.AsyncMock(side_effect=UpstreamRateLimited())
        token = CancellationToken()
        token.cancel("Request deadline of 1s exceeded.")

        result = await caller.call(call, token)

        self.assertIsInstance(result, Error)
        self.assertEqual(call.await_count, 0)
        self.assertIn("deadline", result.message)

    async def test_token_aborts_in_flight_call(self) -> None:
        caller = RetryingCaller(max_attempts=3, base_delay=0.01)
        started = asyncio.Event()

        async def slow_call() -> str:
            started.set()
            await asyncio.sleep(10)
            return "never"

        token = CancellationToken()

        async def cancel_when_started() -> None:
            await started.wait()
            token.cancel("stop")

        result, _ = await asyncio.gather(caller.call(slow_call, token), cancel_when_started())

        self.assertEqual(result, Error(message="stop"))

    async def test_cancelled_request_task_cancels_in_flight_call(self) -> None:
        caller = RetryingCaller()
        started = asyncio.Event()
        call_cancelled = asyncio.Event()

        async def slow_call() -> str:
            started.set()
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                call_cancelled.set()
                raise
            return "never"

        request_task = asyncio.ensure_future(caller.call(slow_call, CancellationToken()))
        await started.wait()
        request_task.cancel()

        with self.assertRaises(asyncio.CancelledError):
            await request_task
        await asyncio.wait_for(call_cancelled.wait(), timeout=5)
        self.assertTrue(call_cancelled.is_set())

    async def test_deadline_cancels_backoff(self) -> None:
        caller = RetryingCaller(max_attempts=5, base_delay=30.0)
        call = mock.AsyncMock(side_effect=UpstreamRateLimited())
        token = CancellationToken()
        token.cancel_after(0.01)
        try:
            result = await asyncio.wait_for(caller.call(call, token), timeout=5)
        finally:
            token.dispose()

        self.assertIsInstance(result, Error)
        self.assertIn("deadline", result.message)
        self.assertEqual(call.await_count, 1)


class TestBackoffSleep(IsolatedAsyncioTestCase):

    async def test_sleep_without_token_completes(self) -> None:
        self.assertTrue(await backoff_sleep(0))

    async def test_sleep_returns_false_when_cancelled(self) -> None:
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)

        self.assertFalse(await asyncio.wait_for(backoff_sleep(30, token), timeout=5))

    async def test_sleep_runs_full_delay_when_not_cancelled(self) -> None:
        self.assertTrue(await backoff_sleep(0.01, CancellationToken()))


class TestRetryHelpers(TestCase):

    def test_delay_doubles_from_base(self) -> None:
        caller = RetryingCaller()
        self.assertEqual([caller.delay_for(i) for i in range(5)], [1.0, 2.0, 4.0, 8.0, 16.0])

    def test_invalid_attempt_count(self) -> None:
        with self.assertRaises(ValueError):
            RetryingCaller(max_attempts=0)

    def test_classification(self) -> None:
        self.assertTrue(is_retryable(UpstreamError("x", status_code=404), RETRY_ALL))
        self.assertFalse(is_retryable(UpstreamError("x", status_code=404), RETRY_CLASSIFIED))
        self.assertTrue(is_retryable(UpstreamError("x", status_code=500), RETRY_CLASSIFIED))
        self.assertTrue(is_retryable(UpstreamRateLimited(), RETRY_CLASSIFIED))
        self.assertTrue(is_retryable(EmptyUpstreamContent("x", status_code=200), RETRY_CLASSIFIED))
        self.assertTrue(is_retryable(RuntimeError("x"), RETRY_CLASSIFIED))

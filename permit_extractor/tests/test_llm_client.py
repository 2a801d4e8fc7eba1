"""Tests for permit_extractor.core.llm_client module.

Tests the resilient invocation layer with mocked API calls:
- Timeout classes and retry policy
- complete(): request shape and cost tracking
- Retry of transient failures, fail-fast on permanent ones
- Credential rotation on rate limiting
- Exception classification
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import litellm
import pytest

from permit_extractor.core.cost_tracker import CostTracker
from permit_extractor.core.errors import (
    CompletionTimeoutError,
    EmptyResponseError,
    InvalidCredentialError,
    InvalidRequestError,
    QuotaExhaustedError,
    RateLimitedError,
    TransportError,
)
from permit_extractor.core.llm_client import (
    CompletionResponse,
    LLMClient,
    RetryPolicy,
    TimeoutClass,
    classify_exception,
    timeout_class_for,
)


# =============================================================================
# Timeout class / retry policy tests
# =============================================================================


class TestTimeoutClass:
    def test_small_document(self):
        assert timeout_class_for(3, 40_000) == TimeoutClass.SMALL

    def test_large_document(self):
        assert timeout_class_for(120, 25 * 1024 * 1024) == TimeoutClass.LARGE

    def test_many_pages_small_file_is_medium(self):
        assert timeout_class_for(80, 1024) == TimeoutClass.MEDIUM

    def test_unknown_size_is_medium(self):
        assert timeout_class_for(None, None) == TimeoutClass.MEDIUM

    def test_missing_dimension_judged_by_known_one(self):
        assert timeout_class_for(5, None) == TimeoutClass.SMALL
        assert timeout_class_for(None, 50 * 1024 * 1024) == TimeoutClass.LARGE

    def test_seconds(self):
        assert TimeoutClass.SMALL.seconds < TimeoutClass.MEDIUM.seconds < TimeoutClass.LARGE.seconds


class TestRetryPolicy:
    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.total_attempts == 3
        assert policy.delay_for(1) == 2.0
        assert policy.delay_for(2) == 4.0

    def test_delay_repeats_last_step(self):
        assert RetryPolicy(total_attempts=5).delay_for(4) == 4.0

    def test_for_document(self):
        assert RetryPolicy.for_document(page_count=2, file_size_bytes=1000).timeout_class == TimeoutClass.SMALL

    def test_needs_at_least_one_attempt(self):
        with pytest.raises(ValueError):
            RetryPolicy(total_attempts=0)


# =============================================================================
# LLMClient tests
# =============================================================================


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def client(pool, sleep):
    return LLMClient(pool, cost_tracker=CostTracker(), sleep=sleep)


class TestComplete:
    """Tests for the happy path."""

    @pytest.mark.asyncio
    async def test_returns_raw_content(self, client, mock_acompletion, completion_response):
        mock_acompletion.return_value = completion_response('{"obligations": [{"title": "x"}]}')
        response = await client.complete("System", "User", agent="conditions")
        assert response.content == '{"obligations": [{"title": "x"}]}'
        assert response.input_tokens == 100
        assert response.output_tokens == 50
        assert response.attempts == 1

    @pytest.mark.asyncio
    async def test_request_shape(self, client, mock_acompletion):
        await client.complete(
            "System prompt", "User prompt",
            policy=RetryPolicy(timeout_class=TimeoutClass.SMALL),
            model="test-model", temperature=0.1, max_tokens=12000,
        )

        mock_acompletion.assert_awaited_once()
        kwargs = mock_acompletion.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["temperature"] == 0.1
        assert kwargs["max_tokens"] == 12000
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["api_key"] == "sk-primary-0001"
        assert kwargs["num_retries"] == 0
        assert kwargs["timeout"] == TimeoutClass.SMALL.seconds
        assert kwargs["messages"] == [
            {"role": "system", "content": "System prompt"},
            {"role": "user", "content": "User prompt"},
        ]

    @pytest.mark.asyncio
    async def test_tracks_costs_per_agent(self, client, mock_acompletion):
        await client.complete("S", "U", agent="tables")
        await client.complete("S", "U", agent="elvs")
        tracker = client.cost_tracker
        assert tracker.call_count == 2
        assert tracker.total_prompt_tokens == 200
        assert set(tracker.by_agent()) == {"tables", "elvs"}

    @pytest.mark.asyncio
    async def test_truncated_response_is_returned(self, client, mock_acompletion, completion_response):
        mock_acompletion.return_value = completion_response('{"obligations": [{"a"', finish_reason="length")
        response = await client.complete("S", "U")
        assert response.truncated
        assert response.content == '{"obligations": [{"a"'


class TestRetry:
    """Transient failures retry with backoff; permanent ones fail fast."""

    @pytest.mark.asyncio
    async def test_transient_failure_then_success(self, client, mock_acompletion, sleep, completion_response):
        mock_acompletion.side_effect = [TransportError("502"), completion_response("{}")]
        response = await client.complete("S", "U")
        assert response.attempts == 2
        sleep.assert_awaited_once_with(2.0)

    @pytest.mark.asyncio
    async def test_gives_up_after_budget(self, client, mock_acompletion, sleep):
        mock_acompletion.side_effect = asyncio.TimeoutError()
        with pytest.raises(CompletionTimeoutError):
            await client.complete("S", "U")
        assert mock_acompletion.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_retries_are_logged(self, client, mock_acompletion, caplog):
        mock_acompletion.side_effect = TransportError("502")
        with pytest.raises(TransportError):
            await client.complete("S", "U", agent="tables")
        assert "[tables] Attempt 1/3 failed" in caplog.text
        assert "[tables] Giving up after 3 attempts" in caplog.text

    @pytest.mark.asyncio
    async def test_empty_response_is_retried(self, client, mock_acompletion, completion_response):
        mock_acompletion.side_effect = [completion_response(""), completion_response('{"ok": true}')]
        response = await client.complete("S", "U")
        assert response.content == '{"ok": true}'

    @pytest.mark.asyncio
    async def test_empty_response_exhausts_to_error(self, client, mock_acompletion, completion_response):
        mock_acompletion.return_value = completion_response("")
        with pytest.raises(EmptyResponseError):
            await client.complete("S", "U")

    @pytest.mark.asyncio
    async def test_invalid_request_not_retried(self, client, mock_acompletion, sleep):
        mock_acompletion.side_effect = InvalidRequestError("context length exceeded")
        with pytest.raises(InvalidRequestError):
            await client.complete("S", "U")
        assert mock_acompletion.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_quota_not_retried(self, client, mock_acompletion):
        mock_acompletion.side_effect = QuotaExhaustedError("insufficient_quota")
        with pytest.raises(QuotaExhaustedError):
            await client.complete("S", "U")
        assert mock_acompletion.await_count == 1

    @pytest.mark.asyncio
    async def test_rejected_key_is_invalidated(self, client, pool, mock_acompletion):
        mock_acompletion.side_effect = InvalidCredentialError("invalid api key")
        with pytest.raises(InvalidCredentialError):
            await client.complete("S", "U")
        assert pool.current().is_valid is False
        assert mock_acompletion.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_calls_not_billed(self, client, mock_acompletion):
        mock_acompletion.side_effect = InvalidRequestError("bad")
        with pytest.raises(InvalidRequestError):
            await client.complete("S", "U")
        assert client.cost_tracker.call_count == 0


class TestRateLimitRotation:
    """A rate-limited key gets exactly one rotation."""

    @pytest.mark.asyncio
    async def test_rotates_to_fallback_and_retries(self, client, pool, mock_acompletion, completion_response):
        mock_acompletion.side_effect = [RateLimitedError("429"), completion_response("{}")]
        response = await client.complete("S", "U")

        keys = [c.kwargs["api_key"] for c in mock_acompletion.call_args_list]
        assert keys == ["sk-primary-0001", "sk-fallback-0002"]
        assert pool.current().secret == "sk-fallback-0002"
        assert response.attempts == 2

    @pytest.mark.asyncio
    async def test_second_rate_limit_raises(self, client, mock_acompletion):
        mock_acompletion.side_effect = RateLimitedError("429")
        with pytest.raises(RateLimitedError):
            await client.complete("S", "U")
        assert mock_acompletion.await_count == 2

    @pytest.mark.asyncio
    async def test_no_fallback_raises_rate_limit(self, probe, mock_acompletion):
        from permit_extractor.core.credentials import CredentialPool

        client = LLMClient(CredentialPool("sk-only", probe=probe), sleep=AsyncMock())
        mock_acompletion.side_effect = RateLimitedError("429")
        with pytest.raises(RateLimitedError):
            await client.complete("S", "U")
        assert mock_acompletion.await_count == 1

    @pytest.mark.asyncio
    async def test_rotation_retry_outside_attempt_budget(self, client, mock_acompletion, completion_response):
        mock_acompletion.side_effect = [
            RateLimitedError("429"),
            TransportError("503"),
            TransportError("503"),
            completion_response("{}"),
        ]
        response = await client.complete("S", "U", policy=RetryPolicy(total_attempts=3))
        assert response.attempts == 4

    @pytest.mark.asyncio
    async def test_rotation_keeps_attempts_already_spent(self, client, mock_acompletion, sleep):
        mock_acompletion.side_effect = [
            TransportError("503"),
            RateLimitedError("429"),
            TransportError("503"),
            TransportError("503"),
        ]
        with pytest.raises(TransportError):
            await client.complete("S", "U", policy=RetryPolicy(total_attempts=3))
        assert mock_acompletion.await_count == 4
        assert [c.args[0] for c in sleep.await_args_list] == [2.0, 4.0]


# =============================================================================
# Exception classification tests
# =============================================================================


class TestClassifyException:
    def test_asyncio_timeout(self):
        assert isinstance(classify_exception(asyncio.TimeoutError()), CompletionTimeoutError)

    def test_connection_error(self):
        assert isinstance(classify_exception(ConnectionError("reset")), TransportError)

    def test_rate_limit_vs_quota(self):
        rate_limited = MagicMock(spec=litellm.RateLimitError)
        rate_limited.__str__.return_value = "Rate limit reached for requests"
        quota = MagicMock(spec=litellm.RateLimitError)
        quota.__str__.return_value = "You exceeded your current quota (insufficient_quota)"

        assert isinstance(classify_exception(rate_limited), RateLimitedError)
        assert isinstance(classify_exception(quota), QuotaExhaustedError)

    def test_completion_errors_pass_through(self):
        error = InvalidRequestError("bad")
        assert classify_exception(error) is error

    def test_programming_errors_unchanged(self):
        error = KeyError("choices")
        assert classify_exception(error) is error


class TestCompletionResponse:
    def test_usage(self):
        response = CompletionResponse(content="{}", input_tokens=10, output_tokens=5)
        assert response.usage == {"input_tokens": 10, "output_tokens": 5}
        assert not response.truncated

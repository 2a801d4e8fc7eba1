"""Resilient invocation layer for the completion service.

Every model call in the pipeline goes through LLMClient.completion, which
owns three concerns the passes should not care about:

- Timeouts sized to the document: a 3-page consent and a 200-page permit
  should not share one deadline (see ``timeout_class_for``).
- Retry with a fixed backoff schedule for transient failures (timeouts,
  network, 5xx, empty answers), driven by tenacity. The attempt budget is
  fixed; nothing here retries forever.
- Credential failover. A rate-limited key gets exactly one rotation to the
  next valid fallback key; a rejected key is invalidated in the pool.

Failures that another attempt cannot fix (invalid key, exhausted quota,
malformed request) are raised immediately. When every attempt fails the last
error is raised: the layer never turns a failure into an empty answer.

litellm exceptions are mapped onto the pipeline's own hierarchy in
``classify_exception`` so callers only deal with ``CompletionError``.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import litellm
from litellm import acompletion
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from permit_extractor.core.config import DEFAULT_MODEL, LLMConfig, RetryConfig, TimeoutConfig
from permit_extractor.core.cost_tracker import CostTracker
from permit_extractor.core.credentials import Credential, CredentialPool
from permit_extractor.core.errors import (
    CompletionError,
    CompletionTimeoutError,
    EmptyResponseError,
    InvalidCredentialError,
    InvalidRequestError,
    NoValidCredentialError,
    QuotaExhaustedError,
    RateLimitedError,
    TransportError,
)

logger = logging.getLogger(__name__)

# Suppress LiteLLM debug noise (done once at module load)
logging.getLogger("litellm").setLevel(logging.ERROR)
logging.getLogger("LiteLLM").setLevel(logging.ERROR)
logging.getLogger("httpx").setLevel(logging.ERROR)


# =============================================================================
# Timeouts and retry policy
# =============================================================================


class TimeoutClass(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"

    @property
    def seconds(self) -> float:
        return {
            TimeoutClass.SMALL: TimeoutConfig.SMALL_SECONDS,
            TimeoutClass.MEDIUM: TimeoutConfig.MEDIUM_SECONDS,
            TimeoutClass.LARGE: TimeoutConfig.LARGE_SECONDS,
        }[self]


def timeout_class_for(page_count: int | None, file_size_bytes: int | None) -> TimeoutClass:
    """Pick the per-attempt timeout class from document size.

    Large needs both many pages and many bytes; small needs both few pages and
    few bytes. Everything in between, and documents whose size is unknown,
    get the medium timeout. A missing dimension is judged by the known one.

    >>> timeout_class_for(3, 40_000)
    <TimeoutClass.SMALL: 'small'>
    >>> timeout_class_for(60, 12 * 1024 * 1024)
    <TimeoutClass.LARGE: 'large'>
    >>> timeout_class_for(None, None)
    <TimeoutClass.MEDIUM: 'medium'>
    """
    if page_count is None and file_size_bytes is None:
        return TimeoutClass.MEDIUM

    pages_large = page_count is None or page_count >= TimeoutConfig.LARGE_MIN_PAGES
    bytes_large = file_size_bytes is None or file_size_bytes >= TimeoutConfig.LARGE_MIN_BYTES
    if pages_large and bytes_large:
        return TimeoutClass.LARGE

    pages_small = page_count is None or page_count <= TimeoutConfig.SMALL_MAX_PAGES
    bytes_small = file_size_bytes is None or file_size_bytes <= TimeoutConfig.SMALL_MAX_BYTES
    if pages_small and bytes_small:
        return TimeoutClass.SMALL

    return TimeoutClass.MEDIUM


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget, backoff schedule and timeout class for one request."""

    total_attempts: int = RetryConfig.TOTAL_ATTEMPTS
    delays: tuple[float, ...] = RetryConfig.DELAYS_SECONDS
    timeout_class: TimeoutClass = TimeoutClass.MEDIUM

    def __post_init__(self):
        if self.total_attempts < 1:
            raise ValueError("total_attempts must be at least 1")

    @classmethod
    def for_document(cls, page_count: int | None = None, file_size_bytes: int | None = None,
                     **kwargs) -> "RetryPolicy":
        return cls(timeout_class=timeout_class_for(page_count, file_size_bytes), **kwargs)

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_class.seconds

    def delay_for(self, attempt: int) -> float:
        """Wait after failed attempt ``attempt`` (1-indexed)."""
        if not self.delays:
            return 0.0
        return self.delays[min(attempt, len(self.delays)) - 1]


@dataclass
class _AttemptTally:
    """Calls made for one request, and how many count against its budget."""

    calls: int = 0
    budgeted: int = 0


def _is_retryable(error: BaseException) -> bool:
    return getattr(error, "retryable", False)


# =============================================================================
# Request / response
# =============================================================================


@dataclass
class CompletionRequest:
    """One completion call: model, messages and sampling parameters."""

    messages: list[dict[str, str]]
    model: str = DEFAULT_MODEL
    temperature: float = LLMConfig.TEMPERATURE
    max_tokens: int = LLMConfig.MAX_TOKENS
    response_format: dict[str, str] = field(default_factory=lambda: dict(LLMConfig.RESPONSE_FORMAT))
    timeout: float | None = None  # Overrides the policy's timeout class

    @classmethod
    def from_prompts(cls, system_prompt: str, user_prompt: str, **kwargs) -> "CompletionRequest":
        return cls(
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            **kwargs,
        )


@dataclass
class CompletionResponse:
    """Raw response from the completion service.

    Attributes:
        content: Raw string content (JSON text, possibly truncated).
        input_tokens: Prompt tokens billed.
        output_tokens: Completion tokens billed.
        finish_reason: "stop", or "length" when the output was truncated.
        model: Model identifier used for the call.
        attempts: Attempts it took, including a rotation retry.
    """

    content: str
    input_tokens: int = 0
    output_tokens: int = 0
    finish_reason: str | None = None
    model: str = ""
    attempts: int = 1

    @property
    def truncated(self) -> bool:
        return self.finish_reason == LLMConfig.TRUNCATED_FINISH_REASON

    @property
    def usage(self) -> dict[str, int]:
        return {"input_tokens": self.input_tokens, "output_tokens": self.output_tokens}


# =============================================================================
# Error classification
# =============================================================================

_QUOTA_MARKERS = ("insufficient_quota", "exceeded your current quota", "billing")


def classify_exception(exc: BaseException) -> BaseException:
    """Map a litellm / asyncio exception onto the CompletionError hierarchy.

    Exceptions that are not service failures (programming errors) are
    returned unchanged so they propagate as-is.
    """
    if isinstance(exc, CompletionError):
        return exc

    message = str(exc) or type(exc).__name__

    if isinstance(exc, (asyncio.TimeoutError, litellm.Timeout)):
        return CompletionTimeoutError(f"Completion timed out: {message}", original=exc)
    if isinstance(exc, litellm.RateLimitError):
        if any(marker in message.lower() for marker in _QUOTA_MARKERS):
            return QuotaExhaustedError(f"Quota exhausted: {message}", original=exc)
        return RateLimitedError(f"Rate limited: {message}", original=exc)
    if isinstance(exc, (litellm.AuthenticationError, litellm.PermissionDeniedError)):
        return InvalidCredentialError(f"Credential rejected: {message}", original=exc)
    if isinstance(exc, (litellm.BadRequestError, litellm.NotFoundError,
                        litellm.UnprocessableEntityError)):
        return InvalidRequestError(f"Invalid request: {message}", original=exc)
    if isinstance(exc, (litellm.APIConnectionError, litellm.ServiceUnavailableError,
                        litellm.InternalServerError, litellm.APIError, ConnectionError)):
        return TransportError(f"Transport error: {message}", original=exc)
    return exc


# =============================================================================
# Client
# =============================================================================


class LLMClient:
    """Client for completion calls with timeout, retry and key failover.

    One client per document: it shares the process-wide CredentialPool and
    records usage into the document's CostTracker.

    Usage:
        client = LLMClient(pool, cost_tracker=tracker)
        request = CompletionRequest.from_prompts(system, user, max_tokens=16000)
        response = await client.completion(
            request,
            RetryPolicy.for_document(page_count=12),
            agent="conditions",
        )
        response.content  # raw JSON text, feed it to recovery.recover()
    """

    def __init__(
        self,
        pool: CredentialPool,
        cost_tracker: CostTracker | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the client.

        Args:
            pool: Shared credential pool.
            cost_tracker: Optional tracker; every successful call is recorded.
            sleep: Backoff sleep, replaceable in tests.
        """
        self.pool = pool
        self.cost_tracker = cost_tracker
        self._sleep = sleep

    async def completion(
        self,
        request: CompletionRequest,
        policy: RetryPolicy | None = None,
        agent: str = "",
    ) -> CompletionResponse:
        """Perform the request with up to ``policy.total_attempts`` tries.

        Raises:
            InvalidCredentialError, QuotaExhaustedError, InvalidRequestError:
                Immediately, without retrying.
            RateLimitedError: If rotating to a fallback key did not help.
            TransportError: After the last attempt failed.
        """
        policy = policy or RetryPolicy()
        timeout = request.timeout or policy.timeout_seconds
        credential = self.pool.current()
        tally = _AttemptTally()

        try:
            response = await self._with_retries(request, credential, timeout, policy, agent, tally)
        except RateLimitedError as e:
            credential = await self._rotate_after_rate_limit(credential, e, agent)
            # The rotation retry sits outside the attempt budget
            tally.budgeted -= 1
            response = await self._with_retries(request, credential, timeout, policy, agent, tally)

        response.attempts = tally.calls
        if self.cost_tracker:
            self.cost_tracker.record(request.model, response.usage, agent=agent)
        if response.truncated:
            logger.warning(
                "[%s] Response truncated at %d output tokens; recovery parser will salvage it",
                agent or "llm", response.output_tokens,
            )
        return response

    async def _with_retries(
        self,
        request: CompletionRequest,
        credential: Credential,
        timeout: float,
        policy: RetryPolicy,
        agent: str,
        tally: _AttemptTally,
    ) -> CompletionResponse:
        """Attempts left in ``policy`` on one credential, backing off on retryable errors."""
        used = tally.budgeted
        label = agent or "llm"

        def log_retry(state: RetryCallState) -> None:
            logger.warning(
                "[%s] Attempt %d/%d failed (%s), retrying in %.1fs",
                label, used + state.attempt_number, policy.total_attempts,
                state.outcome.exception(), state.next_action.sleep,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.total_attempts - used),
            wait=lambda state: policy.delay_for(used + state.attempt_number),
            retry=retry_if_exception(_is_retryable),
            before_sleep=log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    tally.calls += 1
                    tally.budgeted += 1
                    try:
                        response = await self._attempt(request, credential, timeout)
                    except InvalidCredentialError:
                        self.pool.invalidate(credential)
                        raise
        except CompletionError as e:
            if _is_retryable(e):
                logger.error("[%s] Giving up after %d attempts: %s", label, tally.budgeted, e)
            raise
        return response

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        policy: RetryPolicy | None = None,
        agent: str = "",
        **request_kwargs,
    ) -> CompletionResponse:
        """Single-turn convenience wrapper around ``completion``."""
        request = CompletionRequest.from_prompts(system_prompt, user_prompt, **request_kwargs)
        return await self.completion(request, policy, agent=agent)

    async def _rotate_after_rate_limit(
        self, credential: Credential, error: RateLimitedError, agent: str,
    ) -> Credential:
        try:
            new_credential = await self.pool.rotate(expected=credential)
        except NoValidCredentialError as rotation_error:
            logger.error("[%s] Rate limited and no fallback key: %s", agent or "llm", rotation_error)
            raise error from rotation_error
        logger.warning(
            "[%s] Rate limited on %s, retrying with %s",
            agent or "llm", credential.label, new_credential.label,
        )
        return new_credential

    async def _attempt(
        self, request: CompletionRequest, credential: Credential, timeout: float,
    ) -> CompletionResponse:
        """One call to the service. Raises classified CompletionErrors."""
        try:
            raw = await asyncio.wait_for(
                acompletion(
                    model=request.model,
                    messages=request.messages,
                    response_format=request.response_format,
                    temperature=request.temperature,
                    max_tokens=request.max_tokens,
                    timeout=timeout,
                    api_key=credential.secret,
                    num_retries=0,
                ),
                timeout=timeout,
            )
        except Exception as e:
            classified = classify_exception(e)
            if classified is e:
                raise
            raise classified from e

        choice = raw.choices[0]
        content = choice.message.content
        if not content:
            raise EmptyResponseError("Empty response from completion service")

        finish_reason = getattr(choice, "finish_reason", None)
        usage = getattr(raw, "usage", None)
        return CompletionResponse(
            content=content,
            input_tokens=int(getattr(usage, "prompt_tokens", 0) or 0),
            output_tokens=int(getattr(usage, "completion_tokens", 0) or 0),
            finish_reason=finish_reason if isinstance(finish_reason, str) else None,
            model=request.model,
        )

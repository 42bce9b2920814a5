"""LLM adapter using OpenAI chat completions to draft RCA documents."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from services.api.src.safesnap.core import rate_limit
from services.api.src.safesnap.core.errors import AiServiceError, RateLimitExceededError
from services.api.src.safesnap.core.metrics import MetricsSink
from services.api.src.safesnap.core.rate_limit import RateLimiter, per_minute

logger = logging.getLogger(__name__)

FIVE_WHYS_HEADER = "FIVE WHYS"
CORRECTIVE_HEADER = "CORRECTIVE ACTIONS"
PREVENTIVE_HEADER = "PREVENTIVE ACTIONS"
UNFORMATTED_PLACEHOLDER = "Please review and format the AI-generated response"

_SERVICE_KEY = "openai:service"

MOCK_RCA_CONTENT = """\
FIVE WHYS:
1. Why did this incident occur? Worker was not wearing required hard hat while operating near overhead hazards
2. Why was the worker not wearing a hard hat? The hard hat was left at the previous work station and worker forgot to retrieve it
3. Why wasn't this prevented by safety protocols? The site safety checklist was not properly enforced at shift start
4. Why isn't the safety checklist being enforced? Supervisors are not conducting mandatory PPE inspections due to time pressure
5. Why isn't management ensuring adequate time for safety protocols? Production targets are prioritized over safety compliance procedures

CORRECTIVE ACTIONS (Immediate - next 24-48 hours):
- Issue replacement hard hat to worker immediately
- Conduct mandatory PPE inspection for all workers on site
- Supervisor to complete safety incident documentation and reporting
- Review and reinforce hard hat policy with all crew members

PREVENTIVE ACTIONS (Long-term - next 30-90 days):
- Implement mandatory PPE check stations at all work area entrances
- Provide additional hard hat storage locations throughout job site
- Revise shift start procedures to include verified PPE compliance check
- Train supervisors on safety-first culture and proper enforcement techniques
- Review production targets to ensure adequate time for safety protocols"""

MOCK_TOKENS_USED = 450
MOCK_PROCESSING_TIME_MS = 1200


@dataclass(frozen=True)
class LLMResult:
    content: str
    tokens_used: int
    model: str
    success: bool = True
    processing_time_ms: int = 0
    error_message: str | None = None


@dataclass(frozen=True)
class RcaSections:
    five_whys: str
    corrective_actions: str
    preventive_actions: str


def _section(lines: list[str], start: int, end: int) -> str:
    return "\n".join(line.strip() for line in lines[start:end] if line.strip())


def parse_rca_sections(content: str) -> RcaSections:
    """Split LLM output into its three sections by header line.

    Output without all three headers in order is kept whole as the five-whys
    so a manager can still salvage it during review.
    """
    lines = content.split("\n")

    def find(header: str) -> int:
        for i, line in enumerate(lines):
            if header in line.upper():
                return i
        return -1

    whys_idx = find(FIVE_WHYS_HEADER)
    corrective_idx = find(CORRECTIVE_HEADER)
    preventive_idx = find(PREVENTIVE_HEADER)

    if not 0 <= whys_idx < corrective_idx < preventive_idx:
        logger.warning("rca_sections_missing", extra={"content_chars": len(content)})
        return RcaSections(
            five_whys=content.strip(),
            corrective_actions=UNFORMATTED_PLACEHOLDER,
            preventive_actions=UNFORMATTED_PLACEHOLDER,
        )

    return RcaSections(
        five_whys=_section(lines, whys_idx + 1, corrective_idx),
        corrective_actions=_section(lines, corrective_idx + 1, preventive_idx),
        preventive_actions=_section(lines, preventive_idx + 1, len(lines)),
    )


class GenerativeRcaClient:
    """Chat-completion client with service-wide and per-user quotas.

    Quotas are checked in order: service requests, service token budget,
    per-user requests. A budget consumed by an earlier check is not refunded
    when a later one fails.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        metrics: MetricsSink | None = None,
        api_key: str = "",
        model: str = "gpt-3.5-turbo",
        base_url: str = "",
        max_tokens: int = 1200,
        temperature: float = 0.3,
        timeout_s: float = 60.0,
        enabled: bool = True,
        mock_mode: bool = True,
        requests_per_minute: int = 20,
        tokens_per_minute: int = 40000,
        user_requests_per_minute: int = 5,
        client=None,
    ):
        self.rate_limiter = rate_limiter
        self.metrics = metrics
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout_s = timeout_s
        self.enabled = enabled
        self.mock_mode = mock_mode
        self._client = client

        self.request_policy = per_minute("OPENAI_SERVICE_REQUESTS", requests_per_minute)
        self.token_policy = per_minute("OPENAI_SERVICE_TOKENS", tokens_per_minute)
        self.user_policy = per_minute("OPENAI_USER_REQUESTS", user_requests_per_minute)

    # -- Modes ---------------------------------------------------------------

    @property
    def mode(self) -> str:
        if not self.enabled:
            return "DISABLED"
        if self.mock_mode:
            return "MOCK_MODE"
        return "REAL_API"

    def _uses_mock(self) -> bool:
        if self.mode != "REAL_API":
            return True
        if not self.api_key and self._client is None:
            logger.warning("openai_api_key not set, returning mock RCA")
            return True
        return False

    def mock_result(self) -> LLMResult:
        return LLMResult(
            content=MOCK_RCA_CONTENT,
            tokens_used=MOCK_TOKENS_USED,
            model=f"mock-{self.model}",
            processing_time_ms=MOCK_PROCESSING_TIME_MS,
        )

    # -- Quotas --------------------------------------------------------------

    def estimate_tokens(self, prompt: str) -> int:
        """Rough prompt size (4 chars per token) plus the completion budget."""
        return len(prompt) // 4 + self.max_tokens

    def _check_rate_limits(self, prompt: str, user_key: str | None) -> None:
        limiter = self.rate_limiter
        if not limiter.is_allowed(_SERVICE_KEY, self.request_policy):
            raise RateLimitExceededError(
                "Service rate limit exceeded. Please try again later.",
                quota="service_requests",
                retry_after_s=limiter.time_until_refill(_SERVICE_KEY, self.request_policy),
            )
        if not limiter.is_allowed(_SERVICE_KEY, self.token_policy, self.estimate_tokens(prompt)):
            raise RateLimitExceededError(
                "Token rate limit exceeded. Please try again later.",
                quota="service_tokens",
                remaining=limiter.remaining(_SERVICE_KEY, self.token_policy),
                retry_after_s=self.token_policy.refill_period_s,
            )
        user_bucket = rate_limit.user_key(user_key, "openai") if user_key else None
        if user_bucket and not limiter.is_allowed(user_bucket, self.user_policy):
            raise RateLimitExceededError(
                "User rate limit exceeded. Please try again later.",
                quota="user_requests",
                retry_after_s=limiter.time_until_refill(user_bucket, self.user_policy),
            )

    # -- Generation ----------------------------------------------------------

    def _openai(self):
        if self._client is None:
            import openai

            kwargs = {"api_key": self.api_key, "timeout": self.timeout_s, "max_retries": 0}
            if self.base_url:
                kwargs["base_url"] = self.base_url
            self._client = openai.OpenAI(**kwargs)
        return self._client

    def generate(
        self,
        prompt: str,
        context: dict | None = None,
        user_key: str | None = None,
    ) -> LLMResult:
        """Draft an RCA for ``prompt``.

        Raises RateLimitExceededError when a quota is exhausted and
        AiServiceError for any backend failure.
        """
        if self._uses_mock():
            logger.info("openai_mock_rca", extra={"mode": self.mode, **(context or {})})
            return self.mock_result()

        self._check_rate_limits(prompt, user_key)

        import openai
        from services.api.src.safesnap.domains.safety.prompts import RCA_SYSTEM_PROMPT

        started = time.monotonic()
        try:
            response = self._openai().chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": RCA_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                top_p=1.0,
                frequency_penalty=0.0,
                presence_penalty=0.0,
            )
        except openai.RateLimitError as e:
            self._record_error("client_error", e)
            raise RateLimitExceededError("OpenAI rate limit exceeded", quota="openai") from e
        except openai.AuthenticationError as e:
            self._record_error("client_error", e)
            raise AiServiceError("Invalid OpenAI API key") from e
        except openai.BadRequestError as e:
            self._record_error("client_error", e)
            raise AiServiceError(f"Invalid request: {e.body or e.message}") from e
        except openai.APIStatusError as e:
            if e.status_code >= 500:
                self._record_error("server_error", e)
                raise AiServiceError(f"OpenAI service unavailable: {e.message}") from e
            self._record_error("client_error", e)
            raise AiServiceError(f"OpenAI API error: {e.message}") from e
        except Exception as e:
            self._record_error("unexpected_error", e)
            raise AiServiceError(f"RCA generation failed: {e}") from e
        finally:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            if self.metrics:
                self.metrics.record_duration("openai.requests", elapsed_ms)

        if not response.choices:
            self._record_error("unexpected_error", None)
            raise AiServiceError("No choices in OpenAI response")

        content = response.choices[0].message.content or ""
        tokens = response.usage.total_tokens if response.usage else 0

        if self.metrics:
            self.metrics.record_openai_success()
        logger.info(
            "openai_rca_generated",
            extra={"model": self.model, "tokens": tokens, "latency_ms": elapsed_ms},
        )
        return LLMResult(
            content=content,
            tokens_used=tokens,
            model=self.model,
            processing_time_ms=elapsed_ms,
        )

    def _record_error(self, error_type: str, exc: Exception | None) -> None:
        logger.error("openai_request_failed", extra={"type": error_type, "error": str(exc)})
        if self.metrics:
            self.metrics.record_openai_error(error_type)

    # -- Status --------------------------------------------------------------

    def health_check(self) -> bool:
        if self.mode == "REAL_API":
            return bool(self.api_key.strip()) or self._client is not None
        return True

    def service_status(self) -> dict:
        return {
            "enabled": self.enabled,
            "mock_mode": self.mock_mode,
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "api_key_configured": bool(self.api_key.strip()),
            "rate_limits": {
                "requests_per_minute": self.request_policy.capacity,
                "tokens_per_minute": self.token_policy.capacity,
                "user_requests_per_minute": self.user_policy.capacity,
                "request_bucket_available": self.rate_limiter.remaining(
                    _SERVICE_KEY, self.request_policy
                ),
                "token_bucket_available": self.rate_limiter.remaining(
                    _SERVICE_KEY, self.token_policy
                ),
            },
            "status": self.mode,
        }

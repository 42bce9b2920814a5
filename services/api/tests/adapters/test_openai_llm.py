"""Tests for the generative RCA client (OpenAI SDK mocked)."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import openai
import pytest

from services.api.src.safesnap.adapters.openai_llm import (
    MOCK_RCA_CONTENT,
    UNFORMATTED_PLACEHOLDER,
    GenerativeRcaClient,
    parse_rca_sections,
)
from services.api.src.safesnap.core.errors import AiServiceError, RateLimitExceededError


def _completion(content="FIVE WHYS:\n1. a\nCORRECTIVE ACTIONS:\n- b\nPREVENTIVE ACTIONS:\n- c", tokens=321):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(total_tokens=tokens),
    )


def _fake_openai(response=None, error=None):
    client = MagicMock()
    if error is not None:
        client.chat.completions.create.side_effect = error
    else:
        client.chat.completions.create.return_value = response or _completion()
    return client


def _status_error(cls, status, body=None):
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    response = httpx.Response(status, request=request)
    return cls("backend said no", response=response, body=body)


@pytest.fixture
def real_client(rate_limiter, metrics):
    def build(fake, **kwargs):
        return GenerativeRcaClient(
            rate_limiter=rate_limiter,
            metrics=metrics,
            api_key="sk-test",
            mock_mode=False,
            client=fake,
            **kwargs,
        )
    return build


class TestParseSections:
    def test_three_sections(self):
        sections = parse_rca_sections(MOCK_RCA_CONTENT)
        assert sections.five_whys.count("Why") >= 5
        assert sections.corrective_actions.startswith("- Issue replacement hard hat")
        assert sections.preventive_actions.startswith("- Implement mandatory PPE check stations")

    def test_headers_are_case_insensitive(self):
        sections = parse_rca_sections("five whys:\n1. x\ncorrective actions:\n- y\npreventive actions:\n- z")
        assert (sections.five_whys, sections.corrective_actions, sections.preventive_actions) == (
            "1. x", "- y", "- z",
        )

    def test_blank_lines_dropped(self):
        sections = parse_rca_sections("FIVE WHYS:\n\n1. x\n\n\nCORRECTIVE ACTIONS:\n- y\nPREVENTIVE ACTIONS:\n- z\n")
        assert sections.five_whys == "1. x"

    def test_missing_header_keeps_raw_text(self):
        sections = parse_rca_sections("  Something unstructured  ")
        assert sections.five_whys == "Something unstructured"
        assert sections.corrective_actions == UNFORMATTED_PLACEHOLDER
        assert sections.preventive_actions == UNFORMATTED_PLACEHOLDER

    def test_out_of_order_headers_keep_raw_text(self):
        content = "CORRECTIVE ACTIONS:\n- fix it\nFIVE WHYS:\n1. why one\nPREVENTIVE ACTIONS:\n- prevent"
        sections = parse_rca_sections(content)
        assert sections.five_whys == content
        assert sections.corrective_actions == UNFORMATTED_PLACEHOLDER
        assert sections.preventive_actions == UNFORMATTED_PLACEHOLDER


class TestModes:
    def test_mock_mode_returns_canned_rca(self, llm):
        result = llm.generate("prompt")
        assert result.content == MOCK_RCA_CONTENT
        assert result.model == "mock-gpt-3.5-turbo"
        assert result.tokens_used == 450

    def test_disabled_returns_mock(self, rate_limiter):
        client = GenerativeRcaClient(rate_limiter=rate_limiter, enabled=False, mock_mode=False, api_key="k")
        assert client.mode == "DISABLED"
        assert client.generate("prompt").content == MOCK_RCA_CONTENT

    def test_real_mode_without_key_falls_back_to_mock(self, rate_limiter):
        client = GenerativeRcaClient(rate_limiter=rate_limiter, mock_mode=False)
        assert client.mode == "REAL_API"
        assert client.generate("prompt").model.startswith("mock-")
        assert client.health_check() is False

    def test_mock_mode_ignores_quotas(self, rate_limiter):
        client = GenerativeRcaClient(rate_limiter=rate_limiter, requests_per_minute=1)
        client.generate("a")
        client.generate("b")


class TestGenerate:
    def test_success(self, real_client, metrics):
        fake = _fake_openai()
        result = real_client(fake).generate("prompt", user_key="w@example.com")

        assert result.tokens_used == 321
        assert result.model == "gpt-3.5-turbo"
        assert "CORRECTIVE ACTIONS" in result.content
        kwargs = fake.chat.completions.create.call_args.kwargs
        assert kwargs["messages"][0]["role"] == "system"
        assert kwargs["messages"][1] == {"role": "user", "content": "prompt"}
        assert kwargs["max_tokens"] == 1200
        assert kwargs["temperature"] == 0.3
        assert metrics.count("openai.success") == 1
        assert metrics.timer_count("openai.requests") == 1

    def test_no_choices(self, real_client):
        fake = _fake_openai(response=SimpleNamespace(choices=[], usage=None))
        with pytest.raises(AiServiceError, match="No choices"):
            real_client(fake).generate("prompt")

    def test_authentication_error(self, real_client, metrics):
        fake = _fake_openai(error=_status_error(openai.AuthenticationError, 401))
        with pytest.raises(AiServiceError, match="Invalid OpenAI API key"):
            real_client(fake).generate("prompt")
        assert metrics.count("openai.error", type="client_error") == 1

    def test_bad_request(self, real_client, metrics):
        fake = _fake_openai(error=_status_error(openai.BadRequestError, 400, body="max_tokens is too large"))
        with pytest.raises(AiServiceError) as exc_info:
            real_client(fake).generate("prompt")
        assert str(exc_info.value) == "Invalid request: max_tokens is too large"
        assert metrics.count("openai.error", type="client_error") == 1

    def test_bad_request_without_body_uses_message(self, real_client):
        fake = _fake_openai(error=_status_error(openai.BadRequestError, 400))
        with pytest.raises(AiServiceError, match="Invalid request: backend said no"):
            real_client(fake).generate("prompt")

    def test_server_error(self, real_client, metrics):
        fake = _fake_openai(error=_status_error(openai.InternalServerError, 503))
        with pytest.raises(AiServiceError, match="OpenAI service unavailable"):
            real_client(fake).generate("prompt")
        assert metrics.count("openai.error", type="server_error") == 1

    def test_backend_rate_limit(self, real_client):
        fake = _fake_openai(error=_status_error(openai.RateLimitError, 429))
        with pytest.raises(RateLimitExceededError) as exc_info:
            real_client(fake).generate("prompt")
        assert exc_info.value.quota == "openai"

    def test_unexpected_error(self, real_client, metrics):
        fake = _fake_openai(error=ValueError("weird"))
        with pytest.raises(AiServiceError, match="RCA generation failed: weird"):
            real_client(fake).generate("prompt")
        assert metrics.count("openai.error", type="unexpected_error") == 1


class TestQuotas:
    def test_service_request_quota(self, real_client):
        client = real_client(_fake_openai(), requests_per_minute=2)
        client.generate("a")
        client.generate("b")
        with pytest.raises(RateLimitExceededError) as exc_info:
            client.generate("c")
        assert exc_info.value.quota == "service_requests"
        assert exc_info.value.retry_after_s == pytest.approx(60)

    def test_token_budget_quota(self, real_client):
        # Each call costs len(prompt)//4 + max_tokens = 1 + 100 tokens.
        client = real_client(_fake_openai(), max_tokens=100, tokens_per_minute=250)
        client.generate("abcd")
        client.generate("abcd")
        with pytest.raises(RateLimitExceededError) as exc_info:
            client.generate("abcd")
        assert exc_info.value.quota == "service_tokens"
        assert exc_info.value.remaining == 48

    def test_user_quota_is_per_user(self, real_client):
        client = real_client(_fake_openai(), user_requests_per_minute=1)
        client.generate("a", user_key="a@example.com")
        client.generate("b", user_key="b@example.com")
        with pytest.raises(RateLimitExceededError) as exc_info:
            client.generate("c", user_key="a@example.com")
        assert exc_info.value.quota == "user_requests"

    def test_quota_refills(self, real_client, clock):
        client = real_client(_fake_openai(), requests_per_minute=1)
        client.generate("a")
        with pytest.raises(RateLimitExceededError):
            client.generate("b")
        clock.advance(60)
        client.generate("c")

    def test_estimate_tokens(self, rate_limiter):
        client = GenerativeRcaClient(rate_limiter=rate_limiter, max_tokens=1200)
        assert client.estimate_tokens("x" * 400) == 1300


class TestStatus:
    def test_service_status(self, llm):
        status = llm.service_status()
        assert status["status"] == "MOCK_MODE"
        assert status["api_key_configured"] is False
        assert status["rate_limits"]["requests_per_minute"] == 20
        assert status["rate_limits"]["tokens_per_minute"] == 40000
        assert status["rate_limits"]["token_bucket_available"] == 40000

    def test_health_in_mock_mode(self, llm):
        assert llm.health_check() is True

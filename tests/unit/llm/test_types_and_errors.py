"""Unit tests for request/response types and the provider error taxonomy."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

import pytest

from aca_runtime.llm.errors import (
    ContextTooLargeError,
    LLMError,
    NetworkError,
    ProviderSpecificError,
    RateLimitError,
)
from aca_runtime.llm.types import (
    LLMRequest,
    LLMResponse,
    ProviderConfig,
    ProviderType,
    RateLimitConfig,
    TokenUsage,
)


class TestTokenUsage:
    def test_total_must_equal_sum(self) -> None:
        with pytest.raises(ValueError, match="total_tokens"):
            TokenUsage(input_tokens=1, output_tokens=2, total_tokens=4)

    def test_from_counts(self) -> None:
        usage = TokenUsage.from_counts(10, 5, estimated_cost=0.5)
        assert usage.total_tokens == 15
        assert usage.to_dict()["estimated_cost"] == 0.5

    def test_negative_counts_rejected(self) -> None:
        with pytest.raises(ValueError):
            TokenUsage.from_counts(-1, 0)


class TestProviderConfig:
    def test_custom_requires_name(self) -> None:
        with pytest.raises(ValueError, match="custom_name"):
            ProviderConfig(provider_type=ProviderType.CUSTOM)

    def test_custom_name_rejected_for_builtin(self) -> None:
        with pytest.raises(ValueError, match="only valid for custom"):
            ProviderConfig(provider_type=ProviderType.CLAUDE, custom_name="x")

    def test_strings_are_stripped_and_blank_rejected(self) -> None:
        config = ProviderConfig(provider_type="claude", model="  sonnet ")
        assert config.provider_type is ProviderType.CLAUDE
        assert config.model == "sonnet"
        with pytest.raises(ValueError, match="api_key cannot be empty"):
            ProviderConfig(provider_type=ProviderType.CLAUDE, api_key="   ")

    def test_additional_config_helpers_check_types(self) -> None:
        config = ProviderConfig(
            provider_type=ProviderType.CLAUDE,
            additional_config={"flag": "yes", "args": ["a", "b"], "timeout": 3},
        )
        assert config.config_str_list("args") == ("a", "b")
        assert config.config_float("timeout", 1.0) == 3.0
        with pytest.raises(TypeError, match="additional_config.flag must be a boolean"):
            config.config_bool("flag", False)

    def test_rate_limit_capacity_includes_burst(self) -> None:
        limits = RateLimitConfig(
            max_requests_per_minute=5, max_tokens_per_minute=100, burst_allowance=7
        )
        assert limits.token_capacity == 107
        with pytest.raises(TypeError):
            RateLimitConfig(max_requests_per_minute=True)


class TestLLMRequest:
    def test_defaults_assign_unique_ids(self) -> None:
        assert LLMRequest(prompt="a").id != LLMRequest(prompt="a").id

    @pytest.mark.parametrize("temperature", [-0.1, 2.5, float("nan")])
    def test_temperature_range(self, temperature: float) -> None:
        with pytest.raises(ValueError, match="temperature"):
            LLMRequest(prompt="a", temperature=temperature)

    def test_context_must_be_strings(self) -> None:
        with pytest.raises(TypeError, match="context"):
            LLMRequest(prompt="a", context={"k": 1})  # type: ignore[dict-item]

    def test_zero_max_tokens_rejected(self) -> None:
        with pytest.raises(ValueError, match="max_tokens"):
            LLMRequest(prompt="a", max_tokens=0)


def test_response_requires_content() -> None:
    with pytest.raises(ValueError, match="content"):
        LLMResponse(
            request_id=uuid.uuid4(),
            content="  ",
            model_used="m",
            token_usage=TokenUsage.from_counts(0, 0),
            execution_time=0.1,
        )


class TestErrors:
    def test_detail_is_single_line_and_redacted(self) -> None:
        secret = "sk-" + "q" * 30
        error = ProviderSpecificError(f"boom\nkey {secret}\n", provider="claude")

        assert "\n" not in str(error)
        assert secret not in str(error)
        assert str(error).startswith("Provider-specific error: boom key")
        assert error.to_dict()["code"] == "provider_specific"

    def test_rate_limit_carries_reset_time(self) -> None:
        reset = datetime(2026, 10, 18, 12, 1, tzinfo=UTC)
        error = RateLimitError("slow down", provider="codex", reset_time=reset)

        assert error.retryable is True
        assert error.to_dict()["reset_time"] == reset.isoformat()

    def test_context_too_large_reports_both_sizes(self) -> None:
        error = ContextTooLargeError(current=300_000, maximum=200_000, provider="claude")
        assert str(error) == "Context too large: 300000 > 200000"
        assert error.to_dict()["max"] == 200_000

    def test_all_errors_share_base(self) -> None:
        assert issubclass(NetworkError, LLMError)
        assert NetworkError("x").retryable is True

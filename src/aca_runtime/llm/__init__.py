"""
aca-runtime — agent CLI providers and shared provider API

File: src/aca_runtime/llm/__init__.py
Last updated: 2026-10-18

Purpose
- Provider variants (Claude Code CLI, OpenAI Codex CLI), the rate limiter that
  guards them, and the factory that constructs them.

Non-functional requirements
- Must never log secrets or raw API keys.
"""

from aca_runtime.llm.audit import AuditSettings, AuditTrail, audit_paths, interaction_stem
from aca_runtime.llm.base import BaseProvider, ParsedOutput
from aca_runtime.llm.claude_provider import ClaudeMode, ClaudeProvider
from aca_runtime.llm.errors import (
    AuthenticationError,
    ContextTooLargeError,
    InvalidRequestError,
    LLMError,
    ModelUnavailableError,
    NetworkError,
    ProviderSpecificError,
    ProviderUnavailableError,
    RateLimitError,
)
from aca_runtime.llm.factory import ProviderRegistry, create_provider
from aca_runtime.llm.openai_provider import OpenAIProvider
from aca_runtime.llm.prompt import PromptRenderer, RenderedPrompt
from aca_runtime.llm.rate_limiter import RateLimiter
from aca_runtime.llm.types import (
    LLMRequest,
    LLMResponse,
    Permit,
    ProviderCapabilities,
    ProviderConfig,
    ProviderStatus,
    ProviderType,
    RateLimitConfig,
    RateLimitStatus,
    TokenUsage,
    ToolUse,
)

__all__ = [
    "AuditSettings",
    "AuditTrail",
    "AuthenticationError",
    "BaseProvider",
    "ClaudeMode",
    "ClaudeProvider",
    "ContextTooLargeError",
    "InvalidRequestError",
    "LLMError",
    "LLMRequest",
    "LLMResponse",
    "ModelUnavailableError",
    "NetworkError",
    "OpenAIProvider",
    "ParsedOutput",
    "Permit",
    "PromptRenderer",
    "ProviderCapabilities",
    "ProviderConfig",
    "ProviderRegistry",
    "ProviderSpecificError",
    "ProviderStatus",
    "ProviderType",
    "ProviderUnavailableError",
    "RateLimitConfig",
    "RateLimitError",
    "RateLimitStatus",
    "RateLimiter",
    "RenderedPrompt",
    "TokenUsage",
    "ToolUse",
    "audit_paths",
    "create_provider",
    "interaction_stem",
]

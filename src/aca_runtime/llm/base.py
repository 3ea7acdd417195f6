"""
aca-runtime — provider contract and shared request pipeline

File: src/aca_runtime/llm/base.py
Last updated: 2026-10-18

Purpose
- Normalize heterogeneous external agent CLIs behind one request/response/status
  contract.

What should be included in this file
- ``BaseProvider``: permit acquisition, audit files, child spawn, exit mapping,
  usage accounting, and status tracking shared by every variant.
- Variant hooks: argv, child env overrides, stdout parser, pricing, models.

Functional requirements
- Every anomaly surfaces as a typed ``LLMError``; nothing escapes untyped.
- ``response.request_id`` always equals ``request.id``.
- Rate-limit rejections do not count toward ``error_count``.
- Cancellation kills the child and closes audit files before propagating.

Non-functional requirements
- Adding a provider means subclassing, not touching the pipeline.
"""

from __future__ import annotations

import abc
import asyncio
import dataclasses
import math
import os
import re
import shutil
import threading
import time
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar, Final

import structlog

from aca_runtime.constants import (
    CHARS_PER_TOKEN,
    DEFAULT_AUDIT_PREVIEW_CHARS,
    DEFAULT_PROVIDER_TIMEOUT_SECONDS,
    HEALTH_CHECK_TIMEOUT_SECONDS,
    RESPONSE_TIME_WINDOW,
)
from aca_runtime.executor.process import run_process
from aca_runtime.llm.audit import AuditSettings, AuditTrail
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
from aca_runtime.llm.prompt import DEFAULT_MAX_CONTEXT_CHARS, PromptRenderer, RenderedPrompt
from aca_runtime.llm.rate_limiter import RateLimiter
from aca_runtime.llm.types import (
    LLMResponse,
    ProviderCapabilities,
    ProviderStatus,
    TokenUsage,
)

if TYPE_CHECKING:
    from aca_runtime.llm.types import LLMRequest, ProviderConfig, ToolUse

# Numeric codes only count next to an HTTP/status/error word so that
# incidental digit runs (durations, ids, usage counts) never match.
_RATE_LIMIT_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"(?<![a-z])rate[ _-]?limit", re.IGNORECASE),
    re.compile(r"\btoo many requests\b", re.IGNORECASE),
    re.compile(r"\b(?:http|status|error|code)\D{0,3}429\b", re.IGNORECASE),
    re.compile(
        r"\b(?:quota (?:exceeded|exhausted)|exceeded (?:your |the )?(?:current )?quota"
        r"|insufficient_quota)\b",
        re.IGNORECASE,
    ),
)
_AUTH_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"\bunauthori[sz]ed\b", re.IGNORECASE),
    re.compile(r"\b(?:http|status|error|code)\D{0,3}401\b", re.IGNORECASE),
    re.compile(r"\bauthentication(?:_error| (?:failed|error|required))\b", re.IGNORECASE),
    re.compile(r"\bnot logged in\b", re.IGNORECASE),
    re.compile(r"\bplease (?:run )?/?login\b", re.IGNORECASE),
    re.compile(r"\binvalid (?:x-)?api[ _-]?key\b", re.IGNORECASE),
)
_MODEL_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"\bmodel[ _]not[ _]found\b", re.IGNORECASE),
    re.compile(r"\b(?:unsupported|unknown) model\b", re.IGNORECASE),
    re.compile(r"\bmodel\b[^\n]*\bdoes not exist\b", re.IGNORECASE),
)

_SIGNATURES: Final[tuple[tuple[type[LLMError], tuple[re.Pattern[str], ...]], ...]] = (
    (RateLimitError, _RATE_LIMIT_PATTERNS),
    (AuthenticationError, _AUTH_PATTERNS),
    (ModelUnavailableError, _MODEL_PATTERNS),
)

_EWMA_ALPHA: Final[float] = 2.0 / (RESPONSE_TIME_WINDOW + 1)


@dataclass(frozen=True, slots=True)
class ParsedOutput:
    """What a variant's stdout parser extracted from one successful run."""

    content: str
    input_tokens: int | None = None
    output_tokens: int | None = None
    model: str | None = None
    cost: float | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    tool_uses: tuple[ToolUse, ...] = ()


class BaseProvider(abc.ABC):
    """Shared pipeline for CLI-backed providers; variants supply argv and parsing."""

    name: ClassVar[str]
    default_cli: ClassVar[str]
    default_model: ClassVar[str]
    models: ClassVar[tuple[str, ...]]
    max_context_tokens: ClassVar[int]
    supports_streaming: ClassVar[bool] = False
    supports_function_calling: ClassVar[bool] = True
    supports_vision: ClassVar[bool] = False
    input_price_per_token: ClassVar[float] = 0.0
    output_price_per_token: ClassVar[float] = 0.0

    def __init__(
        self,
        config: ProviderConfig,
        workspace_root: Path | str,
        *,
        rate_limiter: RateLimiter | None = None,
        renderer: PromptRenderer | None = None,
        clock: Callable[[], float] = time.perf_counter,
        logger: Any | None = None,
    ) -> None:
        root = Path(workspace_root).expanduser().resolve()
        if not root.is_dir():
            raise ProviderUnavailableError(
                f"workspace root is not a directory: {root}", provider=self.name
            )
        self._config = config
        self._workspace_root = root
        self._clock = clock
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

        try:
            self._timeout_seconds = config.config_float(
                "timeout_seconds", DEFAULT_PROVIDER_TIMEOUT_SECONDS
            )
            max_wait = config.config_float("rate_limit_max_wait_seconds", 0.0)
            max_context_chars = int(
                config.config_float("max_context_chars", DEFAULT_MAX_CONTEXT_CHARS)
            )
            cli_name = config.config_str("cli_path", self.default_cli) or self.default_cli
            self._audit_settings = AuditSettings(
                track_tool_uses=config.config_bool("audit_track_tool_uses", True),
                max_preview_chars=int(
                    config.config_float("audit_max_preview_chars", DEFAULT_AUDIT_PREVIEW_CHARS)
                ),
            )
        except (TypeError, ValueError) as exc:
            raise InvalidRequestError(str(exc), provider=self.name) from exc

        resolved = shutil.which(cli_name)
        if resolved is None:
            raise ProviderUnavailableError(
                f"{cli_name} CLI not found on PATH. Install it or set additional_config.cli_path.",
                provider=self.name,
            )
        self._cli_path = resolved

        self._rate_limiter = rate_limiter or RateLimiter(
            config.rate_limits,
            provider=self.name,
            default_max_wait=max_wait,
            logger=self._logger,
        )
        self._renderer = renderer or PromptRenderer(
            max_context_chars=max_context_chars, logger=self._logger
        )

        self._status_lock = threading.Lock()
        self._error_count = 0
        self._durations: deque[float] = deque(maxlen=RESPONSE_TIME_WINDOW)
        self._is_healthy = True
        self._last_check: datetime | None = None
        self._closed = False

    # -- contract -----------------------------------------------------------------

    def provider_name(self) -> str:
        return self.name

    @property
    def config(self) -> ProviderConfig:
        return self._config

    @property
    def workspace_root(self) -> Path:
        return self._workspace_root

    @property
    def cli_path(self) -> str:
        return self._cli_path

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    def list_models(self) -> list[str]:
        return list(self.models)

    def get_capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supports_streaming=self.supports_streaming,
            supports_function_calling=self.supports_function_calling,
            supports_vision=self.supports_vision,
            max_context_tokens=self.max_context_tokens,
            available_models=self.models,
        )

    def estimate_tokens(self, text: str) -> int:
        """Approximate tokens as one per four characters, rounded up."""
        return math.ceil(len(text) / CHARS_PER_TOKEN)

    def estimate_cost(self, input_tokens: int, output_tokens: int) -> float:
        return (
            input_tokens * self.input_price_per_token
            + output_tokens * self.output_price_per_token
        )

    def get_status(self) -> ProviderStatus:
        with self._status_lock:
            is_healthy = self._is_healthy
            last_check = self._last_check
            error_count = self._error_count
            average = _ewma(self._durations)
        return ProviderStatus(
            is_healthy=is_healthy,
            last_check=last_check,
            error_count=error_count,
            average_response_time=average,
            rate_limit_status=self._rate_limiter.status(),
        )

    async def execute_request(
        self, request: LLMRequest, session_dir: Path | str | None = None
    ) -> LLMResponse:
        """Run ``request`` through the agent CLI and return the normalized response.

        When ``session_dir`` is given, the command line and both child streams are
        written to ``<id>.cmd``/``<id>.stdout``/``<id>.stderr`` inside it.
        """

        log = self._logger.bind(provider=self.name, request_id=str(request.id))
        try:
            response = await self._execute(request, session_dir, log)
        except RateLimitError as exc:
            log.info("llm_request_rate_limited", detail=exc.detail)
            raise
        except LLMError as exc:
            with self._status_lock:
                self._error_count += 1
            log.warning("llm_request_failed", code=exc.code, detail=exc.detail)
            raise

        with self._status_lock:
            self._durations.append(response.execution_time)
        log.info(
            "llm_request_completed",
            model=response.model_used,
            execution_time=round(response.execution_time, 3),
            usage=response.token_usage.to_dict(),
        )
        return response

    async def health_check(self) -> None:
        if self._closed:
            raise ProviderUnavailableError("provider has been shut down", provider=self.name)
        try:
            result = await run_process(
                [self._cli_path, "--version"],
                cwd=self._workspace_root,
                env=self._child_environment(),
                timeout=HEALTH_CHECK_TIMEOUT_SECONDS,
            )
        except OSError as exc:
            self._record_health(False)
            raise ProviderUnavailableError(
                f"failed to run {self._cli_path} --version: {exc}", provider=self.name
            ) from exc

        healthy = not result.timed_out and result.returncode == 0
        self._record_health(healthy)
        if not healthy:
            detail = result.stderr.decode("utf-8", errors="replace").strip()
            raise ProviderUnavailableError(
                f"{self._cli_path} --version failed: {detail or 'no output'}",
                provider=self.name,
            )
        self._logger.debug("llm_health_check_passed", provider=self.name)

    async def shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._logger.info("llm_provider_shutdown", provider=self.name)

    # -- variant hooks ------------------------------------------------------------

    @abc.abstractmethod
    def build_argv(self, model: str) -> list[str]:
        """Return the full argv (CLI path first) for one request."""

    @abc.abstractmethod
    def parse_output(self, stdout: str) -> ParsedOutput:
        """Extract the response content (and usage when reported) from child stdout."""

    def environment_overrides(self) -> dict[str, str]:
        return {}

    def select_model(self, request: LLMRequest) -> str:
        return request.model_preference or self._config.model or self.default_model

    def error_message_from_stdout(self, stdout: str) -> str | None:
        """Return the error message the CLI reported in its structured stdout, if any.

        Only this message is matched against failure signatures; the rest of
        stdout is never scanned.
        """

        return None

    def classify_failure(self, returncode: int, stdout: str, stderr: str) -> LLMError:
        """Map a non-zero exit to the error taxonomy.

        Signatures are matched against stderr first, then against the message
        ``error_message_from_stdout`` extracts. Anything unrecognized is a
        ``ProviderSpecificError`` carrying stderr.
        """

        reported = self.error_message_from_stdout(stdout) if stdout.strip() else None
        detail = stderr.strip() or (reported or "").strip() or f"exited with status {returncode}"
        for source in (stderr, reported or ""):
            if not source:
                continue
            for error_type, patterns in _SIGNATURES:
                if any(pattern.search(source) for pattern in patterns):
                    return error_type(detail, provider=self.name)
        return ProviderSpecificError(detail, provider=self.name)

    # -- pipeline -----------------------------------------------------------------

    async def _execute(
        self, request: LLMRequest, session_dir: Path | str | None, log: Any
    ) -> LLMResponse:
        if self._closed:
            raise ProviderUnavailableError("provider has been shut down", provider=self.name)
        if not request.prompt.strip():
            raise InvalidRequestError("prompt cannot be empty", provider=self.name)

        rendered = self._renderer.render(request)
        prompt_tokens = self.estimate_tokens(rendered.text)
        if prompt_tokens > self.max_context_tokens:
            raise ContextTooLargeError(
                current=prompt_tokens, maximum=self.max_context_tokens, provider=self.name
            )

        estimated = request.estimated_tokens
        if estimated is None:
            estimated = prompt_tokens + (request.max_tokens or 0)
        await self._rate_limiter.acquire_permit(
            dataclasses.replace(request, estimated_tokens=estimated)
        )

        model = self.select_model(request)
        argv = self.build_argv(model)

        audit: AuditTrail | None = None
        if session_dir is not None:
            try:
                audit = AuditTrail(
                    session_dir,
                    request.id,
                    argv,
                    provider=self.name,
                    model=model,
                    settings=self._audit_settings,
                )
            except OSError as exc:
                raise ProviderSpecificError(
                    f"cannot create audit files in {session_dir}: {exc}", provider=self.name
                ) from exc

        log.debug("llm_request_started", model=model, session_dir=str(session_dir or ""))
        try:
            return await self._run_child(
                request, rendered, model, argv, prompt_tokens, session_dir, audit
            )
        except LLMError as exc:
            if audit is not None:
                audit.log_error(exc)
            raise
        except asyncio.CancelledError:
            if audit is not None:
                audit.log_event("Request cancelled; child process killed")
            raise
        finally:
            if audit is not None:
                audit.close()

    async def _run_child(
        self,
        request: LLMRequest,
        rendered: RenderedPrompt,
        model: str,
        argv: list[str],
        prompt_tokens: int,
        session_dir: Path | str | None,
        audit: AuditTrail | None,
    ) -> LLMResponse:
        started = self._clock()
        try:
            result = await run_process(
                argv,
                cwd=self._workspace_root,
                env=self._child_environment(),
                stdin_data=rendered.text.encode("utf-8"),
                timeout=self._timeout_seconds,
                stdout_sink=audit.stdout if audit is not None else None,
                stderr_sink=audit.stderr if audit is not None else None,
            )
        except OSError as exc:
            raise ProviderUnavailableError(
                f"failed to spawn {self._cli_path}: {exc}", provider=self.name
            ) from exc
        finally:
            if audit is not None:
                audit.close_streams()
        execution_time = max(0.0, self._clock() - started)
        if audit is not None:
            audit.log_streams(result.stdout, result.stderr)

        if result.timed_out:
            raise NetworkError(
                f"{self.name} timed out after {self._timeout_seconds:g}s", provider=self.name
            )

        stdout = result.stdout.decode("utf-8", errors="replace")
        stderr = result.stderr.decode("utf-8", errors="replace")
        if result.returncode != 0:
            raise self.classify_failure(
                result.returncode if result.returncode is not None else -1, stdout, stderr
            )

        parsed = self.parse_output(stdout)
        if not parsed.content.strip():
            raise ProviderSpecificError(f"{self.name} returned empty output", provider=self.name)

        input_tokens = parsed.input_tokens if parsed.input_tokens is not None else prompt_tokens
        output_tokens = (
            parsed.output_tokens
            if parsed.output_tokens is not None
            else self.estimate_tokens(parsed.content)
        )
        cost = (
            parsed.cost
            if parsed.cost is not None
            else self.estimate_cost(input_tokens, output_tokens)
        )
        usage = TokenUsage.from_counts(input_tokens, output_tokens, estimated_cost=cost)
        metadata: dict[str, Any] = {
            "provider": self.name,
            "cli_path": self._cli_path,
            "exit_status": result.returncode,
            "usage_reported": parsed.input_tokens is not None,
            "tool_use_count": len(parsed.tool_uses),
        }
        if rendered.truncated_keys:
            metadata["truncated_context_keys"] = list(rendered.truncated_keys)
        if audit is not None:
            metadata["session_dir"] = str(session_dir)
            metadata["audit_log"] = str(audit.log_path)
            tools_path = audit.record_tool_uses(parsed.tool_uses)
            if tools_path is not None:
                metadata["audit_tools"] = str(tools_path)
            audit.log_completion(usage, execution_time)
        metadata.update(parsed.metadata)

        return LLMResponse(
            request_id=request.id,
            content=parsed.content,
            model_used=parsed.model or model,
            token_usage=usage,
            execution_time=execution_time,
            provider_metadata=metadata,
        )
    def _child_environment(self) -> dict[str, str]:
        merged = dict(os.environ)
        merged.update(self.environment_overrides())
        return merged

    def _record_health(self, healthy: bool) -> None:
        with self._status_lock:
            self._is_healthy = healthy
            self._last_check = datetime.now(UTC)
            if not healthy:
                self._error_count += 1


def _ewma(samples: deque[float]) -> float | None:
    if not samples:
        return None
    iterator = iter(samples)
    average = next(iterator)
    for sample in iterator:
        average = _EWMA_ALPHA * sample + (1.0 - _EWMA_ALPHA) * average
    return average


__all__ = [
    "BaseProvider",
    "ParsedOutput",
]

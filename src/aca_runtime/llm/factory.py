"""
aca-runtime — provider factory and shared-handle registry

File: src/aca_runtime/llm/factory.py
Last updated: 2026-10-18

Purpose
- Construct the matching provider variant from a ``ProviderConfig`` and hand
  out shared handles to it.

What should be included in this file
- ``create_provider``: the only place that names concrete provider classes.
- ``ProviderRegistry``: named constructors plus a cache of live handles.

Functional requirements
- ``claude`` and ``openai`` are fully constructed.
- ``anthropic``, ``local`` and ``custom:<name>`` fail closed with
  ``ProviderUnavailableError`` and a deterministic message.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeAlias

import structlog

from aca_runtime.llm.base import BaseProvider
from aca_runtime.llm.claude_provider import ClaudeProvider
from aca_runtime.llm.errors import ProviderUnavailableError
from aca_runtime.llm.openai_provider import OpenAIProvider
from aca_runtime.llm.types import ProviderConfig, ProviderType

ProviderConstructor: TypeAlias = Callable[[ProviderConfig, Path, Any], BaseProvider]


def create_provider(
    config: ProviderConfig,
    workspace_root: Path | str,
    *,
    logger: Any | None = None,
) -> BaseProvider:
    """Return a new provider for ``config`` rooted at ``workspace_root``."""

    provider_type = config.provider_type
    if provider_type is ProviderType.CLAUDE:
        return ClaudeProvider(config, workspace_root, logger=logger)
    if provider_type is ProviderType.OPENAI:
        return OpenAIProvider(config, workspace_root, logger=logger)
    if provider_type is ProviderType.ANTHROPIC:
        raise ProviderUnavailableError(
            "Anthropic provider not yet implemented", provider=provider_type.value
        )
    if provider_type is ProviderType.LOCAL:
        raise ProviderUnavailableError(
            "Local model provider not yet implemented", provider=provider_type.value
        )
    if provider_type is ProviderType.CUSTOM:
        raise ProviderUnavailableError(
            f"Custom provider '{config.custom_name}' not implemented",
            provider=provider_type.value,
        )
    raise ProviderUnavailableError(
        f"unknown provider type: {provider_type!r}", provider="provider"
    )


def _default_constructor(config: ProviderConfig, root: Path, logger: Any) -> BaseProvider:
    return create_provider(config, root, logger=logger)


class ProviderRegistry:
    """Named provider constructors with one shared live handle per name."""

    def __init__(self, *, logger: Any | None = None) -> None:
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._constructors: dict[str, ProviderConstructor] = {}
        self._handles: dict[str, BaseProvider] = {}
        self._lock = asyncio.Lock()

    def register(
        self,
        name: str,
        constructor: ProviderConstructor = _default_constructor,
        *,
        overwrite: bool = False,
    ) -> None:
        normalized = _normalize_name(name)
        if normalized in self._constructors and not overwrite:
            raise ValueError(f"provider already registered: {normalized}")
        self._constructors[normalized] = constructor

    def unregister(self, name: str) -> None:
        normalized = _normalize_name(name)
        self._constructors.pop(normalized, None)

    def is_registered(self, name: str) -> bool:
        return _normalize_name(name) in self._constructors

    def list(self) -> tuple[str, ...]:
        return tuple(sorted(self._constructors))

    def get(self, name: str, config: ProviderConfig, workspace_root: Path | str) -> BaseProvider:
        """Build a fresh provider through the constructor registered as ``name``."""

        normalized = _normalize_name(name)
        constructor = self._constructors.get(normalized)
        if constructor is None:
            raise ProviderUnavailableError("provider is not registered", provider=normalized)
        provider = constructor(config, Path(workspace_root), self._logger)
        if not isinstance(provider, BaseProvider):
            raise TypeError(f"provider constructor returned invalid provider for {normalized}")
        return provider

    async def shared(
        self, name: str, config: ProviderConfig, workspace_root: Path | str
    ) -> BaseProvider:
        """Return the live handle for ``name``, constructing it on first use."""

        normalized = _normalize_name(name)
        async with self._lock:
            handle = self._handles.get(normalized)
            if handle is None:
                handle = self.get(normalized, config, workspace_root)
                self._handles[normalized] = handle
                self._logger.info(
                    "llm_provider_created", name=normalized, provider=handle.provider_name()
                )
            return handle

    async def shutdown(self) -> None:
        """Shut down every live handle; the registry stays usable afterwards."""

        async with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            await handle.shutdown()


def _normalize_name(name: str) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValueError("name must be a non-empty string")
    return name.strip().lower()


__all__ = [
    "ProviderConstructor",
    "ProviderRegistry",
    "create_provider",
]

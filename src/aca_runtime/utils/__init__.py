"""Utility exports for cooperative cancellation."""

from aca_runtime.utils.concurrency import (
    CancellationToken,
    TokenCancelledError,
    run_cancellable,
)

__all__ = [
    "CancellationToken",
    "TokenCancelledError",
    "run_cancellable",
]

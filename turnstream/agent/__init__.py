"""Reply generation and the per-channel execution guard."""

from turnstream.agent.executor import CancelOutcome, ExecutionGuard, ExecutionResult, ReplyRequest
from turnstream.agent.injection import InjectionCancelled, Injector, is_cancellation

__all__ = [
    "CancelOutcome",
    "ExecutionGuard",
    "ExecutionResult",
    "InjectionCancelled",
    "Injector",
    "ReplyRequest",
    "is_cancellation",
]

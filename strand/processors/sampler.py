"""Sampling decisions for traces."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

from strand.processors.rate_limiter import RateLimiter

SAMPLER_TYPE_TAG = "sampler.type"
SAMPLER_PARAM_TAG = "sampler.param"

SAMPLER_TYPE_CONST = "const"
SAMPLER_TYPE_PROBABILISTIC = "probabilistic"
SAMPLER_TYPE_RATE_LIMITING = "ratelimiting"


@dataclass
class SamplingResult:
    sampled: bool
    tags: Dict[str, Any] = field(default_factory=dict)


class Sampler:
    """
    Decides once per trace, at the root span, whether the trace is recorded.

    ``decide`` must not block; descendants inherit the decision.
    """

    def decide(self, trace_id: int, operation_name: str) -> SamplingResult:
        raise NotImplementedError

    def close(self) -> None:
        return None


class ConstSampler(Sampler):
    """Samples all traces or none."""

    def __init__(self, decision: bool) -> None:
        self.decision = bool(decision)
        self._tags = {SAMPLER_TYPE_TAG: SAMPLER_TYPE_CONST, SAMPLER_PARAM_TAG: self.decision}

    def decide(self, trace_id: int, operation_name: str) -> SamplingResult:
        return SamplingResult(sampled=self.decision, tags=dict(self._tags))

    def __repr__(self) -> str:
        return f"ConstSampler(decision={self.decision})"


class ProbabilisticSampler(Sampler):
    """
    Head-based sampler using a fixed probability.

    The decision is a pure function of the trace id (its low 64 bits compared
    against ``rate * 2**64``), so every process sampling the same trace id at
    the same rate agrees.
    """

    def __init__(self, sample_rate: float = 1.0) -> None:
        if not 0.0 <= sample_rate <= 1.0:
            raise ValueError("sample_rate must be between 0.0 and 1.0")
        self.sample_rate = sample_rate
        self._ratio = TraceIdRatioBased(sample_rate)
        self._tags = {SAMPLER_TYPE_TAG: SAMPLER_TYPE_PROBABILISTIC, SAMPLER_PARAM_TAG: sample_rate}

    def decide(self, trace_id: int, operation_name: str) -> SamplingResult:
        result = self._ratio.should_sample(None, trace_id, operation_name)
        return SamplingResult(sampled=result.decision.is_sampled(), tags=dict(self._tags))

    def __repr__(self) -> str:
        return f"ProbabilisticSampler(sample_rate={self.sample_rate})"


class RateLimitingSampler(Sampler):
    """Samples at most ``max_traces_per_second`` new traces, whatever the load."""

    def __init__(self, max_traces_per_second: float) -> None:
        if max_traces_per_second < 0:
            raise ValueError("max_traces_per_second must be >= 0")
        self.max_traces_per_second = max_traces_per_second
        self.rate_limiter = RateLimiter(
            credits_per_second=max_traces_per_second,
            max_balance=max(max_traces_per_second, 1.0),
        )
        self._tags = {SAMPLER_TYPE_TAG: SAMPLER_TYPE_RATE_LIMITING, SAMPLER_PARAM_TAG: max_traces_per_second}

    def decide(self, trace_id: int, operation_name: str) -> SamplingResult:
        if self.max_traces_per_second == 0:
            return SamplingResult(sampled=False, tags=dict(self._tags))
        return SamplingResult(sampled=self.rate_limiter.check_credit(1.0), tags=dict(self._tags))

    def __repr__(self) -> str:
        return f"RateLimitingSampler(max_traces_per_second={self.max_traces_per_second})"


class PerOperationSampler(Sampler):
    """
    Probabilistic sampling with a rate per operation name.

    At most ``max_operations`` operations get their own sampler; the rest
    share the default rate.
    """

    def __init__(
        self,
        default_sample_rate: float,
        per_operation: Optional[Mapping[str, float]] = None,
        max_operations: int = 2000,
    ) -> None:
        self.default_sampler = ProbabilisticSampler(default_sample_rate)
        self.max_operations = max_operations
        self._samplers: Dict[str, ProbabilisticSampler] = {}
        for operation, rate in (per_operation or {}).items():
            if len(self._samplers) >= max_operations:
                break
            self._samplers[operation] = ProbabilisticSampler(rate)

    def decide(self, trace_id: int, operation_name: str) -> SamplingResult:
        sampler = self._samplers.get(operation_name, self.default_sampler)
        return sampler.decide(trace_id, operation_name)

    def __repr__(self) -> str:
        return (
            f"PerOperationSampler(default={self.default_sampler.sample_rate}, "
            f"operations={len(self._samplers)})"
        )

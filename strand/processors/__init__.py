"""Sampling, reporting and supporting utilities."""

from strand.processors.drop_policy import (
    DEFAULT_DROP_POLICY,
    DropNewestPolicy,
    DropOldestPolicy,
    DropPolicy,
)
from strand.processors.rate_limiter import RateLimiter
from strand.processors.remote_sampler import RemoteSampler, parse_sampling_strategy
from strand.processors.reporter import (
    CompositeReporter,
    InMemoryReporter,
    LoggingReporter,
    NullReporter,
    RemoteReporter,
    Reporter,
)
from strand.processors.sampler import (
    ConstSampler,
    PerOperationSampler,
    ProbabilisticSampler,
    RateLimitingSampler,
    Sampler,
    SamplingResult,
)

__all__ = [
    "DropPolicy",
    "DropOldestPolicy",
    "DropNewestPolicy",
    "DEFAULT_DROP_POLICY",
    "RateLimiter",
    "RemoteSampler",
    "parse_sampling_strategy",
    "Reporter",
    "RemoteReporter",
    "LoggingReporter",
    "InMemoryReporter",
    "NullReporter",
    "CompositeReporter",
    "Sampler",
    "SamplingResult",
    "ConstSampler",
    "ProbabilisticSampler",
    "RateLimitingSampler",
    "PerOperationSampler",
]

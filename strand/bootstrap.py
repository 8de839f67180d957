"""Build a fully wired Tracer from configuration."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Union

from strand.config import StrandConfig, load_config, merge_config
from strand.context.propagators import Format
from strand.context.tracecontext import TraceContextPropagator
from strand.errors import ConfigError
from strand.exporter.batch import Process, build_process
from strand.exporter.console_exporter import ConsoleTransport
from strand.exporter.otlp_exporter import OTLPTransport
from strand.exporter.transport import Transport
from strand.exporter.udp_transport import AgentTransport
from strand.metrics import Metrics
from strand.processors.drop_policy import DROP_POLICIES
from strand.processors.remote_sampler import RemoteSampler
from strand.processors.reporter import CompositeReporter, LoggingReporter, RemoteReporter, Reporter
from strand.processors.sampler import ConstSampler, ProbabilisticSampler, RateLimitingSampler, Sampler
from strand.tracer.tracer import Tracer

logger = logging.getLogger(__name__)


def init_tracer(
    config: Union[StrandConfig, Mapping[str, Any], None] = None,
    *,
    reporter: Union[Reporter, Mapping[str, Any], None] = None,
    sampler: Union[Sampler, Mapping[str, Any], None] = None,
    metrics: Optional[Metrics] = None,
    **overrides: Any,
) -> Tracer:
    """
    Create the process's tracer.

    Args:
        config: A StrandConfig, a mapping of settings, or None to read
            ``strand.toml`` and ``STRAND_*`` environment variables
        reporter: A Reporter to use as-is, or a mapping of ``[reporter]``
            settings to build one from
        sampler: A Sampler to use as-is, or a mapping of ``[sampler]``
            settings to build one from
        metrics: Counters shared by tracer, reporter and sampler
        **overrides: Individual settings, e.g. ``service_name="checkout"``

    Raises:
        ConfigError: the configuration is invalid, or ``reporter``/``sampler``
            is neither a component nor a mapping
    """
    if isinstance(sampler, Mapping):
        overrides["sampler"] = dict(sampler)
        sampler = None
    elif sampler is not None and not isinstance(sampler, Sampler):
        raise ConfigError(
            "sampler must be a Sampler or a mapping of sampler settings",
            details={"type": type(sampler).__name__},
        )
    if isinstance(reporter, Mapping):
        overrides["reporter"] = dict(reporter)
        reporter = None
    elif reporter is not None and not isinstance(reporter, Reporter):
        raise ConfigError(
            "reporter must be a Reporter or a mapping of reporter settings",
            details={"type": type(reporter).__name__},
        )

    if isinstance(config, StrandConfig):
        if overrides:
            config = merge_config(config, overrides)
    else:
        merged = dict(config or {})
        merged.update(overrides)
        config = load_config(overrides=merged)

    metrics = metrics or Metrics()
    process = build_process(config.service_name, config.tags)
    if sampler is None:
        sampler = build_sampler(config, metrics)
    if reporter is None:
        reporter = build_reporter(config, process, metrics)
    if config.log_spans:
        reporter = CompositeReporter(reporter, LoggingReporter())

    propagators = {}
    if config.propagation == "w3c":
        propagators[Format.HTTP_HEADERS] = TraceContextPropagator()

    tracer = Tracer(
        config.service_name,
        reporter,
        sampler,
        metrics=metrics,
        propagators=propagators,
        process=process,
    )
    logger.info(
        f"Initialized tracer for service '{config.service_name}' "
        f"with sampler={sampler!r} reporter={type(reporter).__name__}"
    )
    return tracer


def build_sampler(config: StrandConfig, metrics: Optional[Metrics] = None) -> Sampler:
    sampler_config = config.sampler
    if sampler_config.type == "const":
        return ConstSampler(bool(sampler_config.param))
    if sampler_config.type == "rateLimiting":
        return RateLimitingSampler(sampler_config.param)
    if sampler_config.type == "remote":
        return RemoteSampler(
            config.service_name,
            ProbabilisticSampler(sampler_config.param),
            sampling_server_url=sampler_config.sampling_server_url,
            refresh_interval=sampler_config.refresh_interval_ms / 1000.0,
            max_operations=sampler_config.max_operations,
            metrics=metrics,
        )
    return ProbabilisticSampler(sampler_config.param)


def build_transport(config: StrandConfig) -> Transport:
    reporter_config = config.reporter
    if reporter_config.transport == "otlp":
        return OTLPTransport(endpoint=reporter_config.otlp_endpoint)
    if reporter_config.transport == "console":
        return ConsoleTransport()
    return AgentTransport(
        config.agent_host,
        config.agent_port,
        max_packet_size=reporter_config.max_batch_bytes,
    )


def build_reporter(
    config: StrandConfig,
    process: Process,
    metrics: Optional[Metrics] = None,
    transport: Optional[Transport] = None,
) -> RemoteReporter:
    reporter_config = config.reporter
    return RemoteReporter(
        transport or build_transport(config),
        process,
        flush_interval=reporter_config.flush_interval_ms / 1000.0,
        max_queue_size=reporter_config.max_queue_size,
        max_batch_spans=reporter_config.max_batch_spans,
        close_timeout=reporter_config.close_timeout_ms / 1000.0,
        drop_policy=DROP_POLICIES[reporter_config.drop_policy](),
        metrics=metrics,
    )

"""Sampler whose strategy is polled from a sampling endpoint."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional

import requests

from strand import metrics as m
from strand.errors import SamplingError
from strand.metrics import Metrics
from strand.processors.sampler import (
    PerOperationSampler,
    ProbabilisticSampler,
    RateLimitingSampler,
    Sampler,
    SamplingResult,
)

logger = logging.getLogger(__name__)

DEFAULT_SAMPLING_SERVER_URL = "http://localhost:5778/sampling"
DEFAULT_REFRESH_INTERVAL = 60.0
DEFAULT_MAX_OPERATIONS = 2000


class RemoteSampler(Sampler):
    """
    Delegates to a locally held sampler that a daemon thread refreshes from
    ``GET {sampling_server_url}?service={service_name}``.

    Decisions never touch the network. When the endpoint is unreachable or
    returns garbage, the current policy stays in place (initially the
    ``initial_sampler``).
    """

    def __init__(
        self,
        service_name: str,
        initial_sampler: Optional[Sampler] = None,
        *,
        sampling_server_url: str = DEFAULT_SAMPLING_SERVER_URL,
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
        max_operations: int = DEFAULT_MAX_OPERATIONS,
        request_timeout: float = 2.0,
        metrics: Optional[Metrics] = None,
        session: Optional[requests.Session] = None,
        start_polling: bool = True,
    ) -> None:
        self.service_name = service_name
        self.sampling_server_url = sampling_server_url
        self.refresh_interval = refresh_interval
        self.max_operations = max_operations
        self.request_timeout = request_timeout
        self.metrics = metrics or Metrics()
        self._session = session or requests.Session()
        self._sampler: Sampler = initial_sampler or ProbabilisticSampler(0.001)
        self._strategy: Optional[Dict[str, Any]] = None
        self._stop = threading.Event()
        self._worker: Optional[threading.Thread] = None
        if start_polling:
            self._worker = threading.Thread(target=self._poll_loop, name="strand-sampler-poll", daemon=True)
            self._worker.start()

    @property
    def sampler(self) -> Sampler:
        return self._sampler

    def decide(self, trace_id: int, operation_name: str) -> SamplingResult:
        return self._sampler.decide(trace_id, operation_name)

    def update(self) -> bool:
        """
        Fetch the strategy once and install it.

        Returns:
            True if a strategy was fetched and parsed, False otherwise
        """
        try:
            response = self._session.get(
                self.sampling_server_url,
                params={"service": self.service_name},
                timeout=self.request_timeout,
            )
            response.raise_for_status()
            strategy = response.json()
            if strategy != self._strategy:
                self._sampler = parse_sampling_strategy(strategy, self.max_operations)
                self._strategy = strategy
                logger.info(f"Sampling strategy for '{self.service_name}' updated: {self._sampler!r}")
        except (requests.RequestException, ValueError, SamplingError) as exc:
            self.metrics.increment(m.SAMPLER_UPDATE_FAILURES)
            logger.warning(f"Failed to fetch sampling strategy from {self.sampling_server_url}: {exc}")
            return False
        self.metrics.increment(m.SAMPLER_UPDATES)
        return True

    def close(self) -> None:
        self._stop.set()
        if self._worker is not None:
            self._worker.join(timeout=self.request_timeout + 1.0)
        self._session.close()

    # Internal
    def _poll_loop(self) -> None:
        self.update()
        while not self._stop.wait(timeout=self.refresh_interval):
            self.update()


def parse_sampling_strategy(strategy: Any, max_operations: int = DEFAULT_MAX_OPERATIONS) -> Sampler:
    """
    Build a sampler from a strategy document.

    Raises:
        SamplingError: the document is not a known strategy
    """
    if not isinstance(strategy, dict):
        raise SamplingError("sampling strategy must be a JSON object")
    try:
        operation_sampling = strategy.get("operationSampling")
        if operation_sampling:
            per_operation = {
                item["operation"]: float(item["probabilisticSampling"]["samplingRate"])
                for item in operation_sampling.get("perOperationStrategies") or []
            }
            return PerOperationSampler(
                default_sample_rate=float(operation_sampling["defaultSamplingProbability"]),
                per_operation=per_operation,
                max_operations=max_operations,
            )

        strategy_type = str(strategy.get("strategyType", "")).upper()
        if strategy_type == "PROBABILISTIC":
            return ProbabilisticSampler(float(strategy["probabilisticSampling"]["samplingRate"]))
        if strategy_type == "RATE_LIMITING":
            return RateLimitingSampler(float(strategy["rateLimitingSampling"]["maxTracesPerSecond"]))
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise SamplingError("malformed sampling strategy", details={"reason": repr(exc)}) from exc
    raise SamplingError("unknown sampling strategy type", details={"strategyType": strategy.get("strategyType")})

"""Transports delivering span batches to backends."""

from strand.exporter.batch import Batch, Process, build_process
from strand.exporter.console_exporter import ConsoleTransport
from strand.exporter.encoder import BatchEncoder
from strand.exporter.otlp_exporter import OTLPTransport
from strand.exporter.transport import Transport
from strand.exporter.udp_transport import AgentTransport

__all__ = [
    "AgentTransport",
    "Batch",
    "BatchEncoder",
    "ConsoleTransport",
    "OTLPTransport",
    "Process",
    "Transport",
    "build_process",
]

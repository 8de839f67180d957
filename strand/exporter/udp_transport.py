"""Datagram transport to a local tracing agent."""

from __future__ import annotations

import logging
import socket
from typing import Optional, Tuple

from strand.errors import TransportError
from strand.exporter.batch import Batch
from strand.exporter.encoder import BatchEncoder
from strand.exporter.transport import Transport

logger = logging.getLogger(__name__)

DEFAULT_AGENT_HOST = "localhost"
DEFAULT_AGENT_PORT = 6831
# under the 65507-byte IPv4 UDP payload ceiling
DEFAULT_MAX_PACKET_SIZE = 65000


class AgentTransport(Transport):
    """
    Fire-and-forget UDP sender.

    Each batch is chunked into datagrams of at most ``max_packet_size`` bytes.
    A span that cannot be encoded, or is too large for any datagram, is
    dropped on its own; the rest of the batch still goes out.
    """

    def __init__(
        self,
        host: str = DEFAULT_AGENT_HOST,
        port: int = DEFAULT_AGENT_PORT,
        *,
        max_packet_size: int = DEFAULT_MAX_PACKET_SIZE,
        encoder: Optional[BatchEncoder] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.max_packet_size = max_packet_size
        self.encoder = encoder or BatchEncoder()
        self._socket: Optional[socket.socket] = None
        self._address: Optional[Tuple] = None

    def send(self, batch: Batch) -> int:
        if not batch.spans:
            return 0
        messages, rejected = self.encoder.encode(batch, self.max_packet_size)
        if rejected:
            logger.debug(f"{len(rejected)} of {len(batch)} spans left out of the batch")

        sent = 0
        for index, message in enumerate(messages):
            try:
                sock, address = self._connection()
                sock.sendto(message, address)
            except OSError as exc:
                raise TransportError(
                    f"could not send to agent at {self.host}:{self.port}",
                    details={
                        "sent": sent,
                        "dropped": len(batch.spans) - sent,
                        "chunk": f"{index + 1}/{len(messages)}",
                        "reason": exc,
                    },
                ) from exc
            sent += self.encoder.count_spans(message)
        return sent

    def close(self) -> None:
        if self._socket is not None:
            self._socket.close()
            self._socket = None

    def _connection(self) -> Tuple[socket.socket, Tuple]:
        """Resolve the agent address and open the socket on first use."""
        if self._socket is None:
            family, sock_type, proto, _, address = socket.getaddrinfo(
                self.host, self.port, type=socket.SOCK_DGRAM
            )[0]
            self._socket = socket.socket(family, sock_type, proto)
            self._address = address
        return self._socket, self._address

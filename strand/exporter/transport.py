"""Transport interface shared by all exporters."""

from __future__ import annotations

from strand.exporter.batch import Batch


class Transport:
    """
    Sends batches to a backend.

    ``send`` returns the number of spans put on the wire and raises
    ``TransportError`` (with ``details["sent"]``) when delivery fails.
    The reporter never retries.
    """

    def send(self, batch: Batch) -> int:
        raise NotImplementedError

    def close(self) -> None:
        return None

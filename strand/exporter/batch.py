"""Process metadata and span batches handed to transports."""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, TYPE_CHECKING

from strand.version import __version__

if TYPE_CHECKING:
    from strand.tracer.span import Span, TagValue

logger = logging.getLogger(__name__)

VERSION_TAG = "strand.version"
HOSTNAME_TAG = "hostname"
IP_TAG = "ip"


@dataclass(frozen=True)
class Process:
    """Identifies the emitting service in every batch."""

    service_name: str
    tags: Dict[str, "TagValue"] = field(default_factory=dict)


@dataclass
class Batch:
    process: Process
    spans: List["Span"] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.spans)


def build_process(service_name: str, tags: Optional[Mapping[str, Any]] = None) -> Process:
    """
    Build process metadata: client version, host name and address, then
    the configured static tags (which win on key collisions).
    """
    from strand.tracer.span import coerce_tag_value

    process_tags: Dict[str, TagValue] = {VERSION_TAG: __version__}
    hostname = socket.gethostname()
    if hostname:
        process_tags[HOSTNAME_TAG] = hostname
        try:
            process_tags[IP_TAG] = socket.gethostbyname(hostname)
        except OSError:
            logger.debug(f"Could not resolve an address for host '{hostname}'")
    for key, value in (tags or {}).items():
        process_tags[key] = coerce_tag_value(value)
    return Process(service_name=service_name, tags=process_tags)

"""
Log transport interface.

A transport is the viewer's only link to the cluster. It offers the two log
endpoints the viewer needs:

- fetch: bounded request/response query returning one PodLogResult per pod
- open_stream: persistent connection delivering raw text chunks, each
  possibly holding several newline-delimited ``[pod] line`` records

``podlens.kube.KubeTransport`` talks to the Kubernetes API directly; tests
use in-memory transports with the same interface.
"""

from datetime import datetime
from typing import AsyncIterator, List, Optional, Sequence

from .models import PodLogResult


class LogStream:
    """One live log connection. Closed connections never deliver again."""

    def chunks(self) -> AsyncIterator[str]:
        """Iterate inbound text chunks until the server ends the stream."""
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError


class LogTransport:
    """Access to the historical and live log endpoints of one namespace."""

    async def fetch(
        self,
        pods: Sequence[str],
        container: Optional[str] = None,
        tail_lines: Optional[int] = None,
        timestamps: bool = True,
        previous: bool = False,
        since_time: Optional[datetime] = None,
    ) -> List[PodLogResult]:
        raise NotImplementedError

    async def open_stream(
        self,
        pods: Sequence[str],
        container: Optional[str] = None,
        tail_lines: Optional[int] = None,
        timestamps: bool = True,
        since_time: Optional[datetime] = None,
    ) -> LogStream:
        raise NotImplementedError

    async def list_pods(self) -> List[str]:
        """Names of the pods whose logs can be requested."""
        raise NotImplementedError

"""
Historical log fetching.

A historical fetch is a bounded request/response query for logs that have
already been produced: the latest ``tail_lines`` lines, optionally limited to
a time window (``since="5m"``) or taken from the previous container instance
(``previous=True``). The result is a complete snapshot that replaces the
viewer's buffer.

Failures never abort a fetch. A pod whose logs cannot be read contributes a
single ``ERROR: <message>`` entry; a failure of the whole request yields one
error entry in place of the results.
"""

import logging
from typing import List, Optional, Sequence

from .constants import DEFAULT_FETCH_TAIL_LINES, ERROR_POD
from .exceptions import InvalidDurationError
from .log_parsing import new_entry_id, now_iso, parse_log_line, split_lines, strip_control_codes
from .models import LogEntry, PodLogResult
from .transport import LogTransport
from .validation import since_time_from_duration

log = logging.getLogger('podlens')


def error_entry(pod: str, message: str, index: int) -> LogEntry:
    """Synthetic entry reporting a pod whose logs could not be read."""
    ts = now_iso()
    return LogEntry(
        id=new_entry_id(index),
        pod_name=pod,
        timestamp=ts,
        message=f"ERROR: {message}",
        raw_line=f"[{pod}] {ts} ERROR: {message}",
    )


def request_error_entry(message: str) -> LogEntry:
    """Synthetic entry standing in for the buffer when a whole fetch fails."""
    text = f"Error fetching logs: {message or 'Unknown error'}"
    return LogEntry(
        id=new_entry_id(0),
        pod_name=ERROR_POD,
        timestamp=now_iso(),
        message=text,
        raw_line=text,
    )


def results_to_entries(results: Sequence[PodLogResult]) -> List[LogEntry]:
    """
    Convert per-pod fetch results to log entries, pod by pod.

    Lines without a ``[pod]`` tag are attributed to the pod they were
    fetched for.
    """
    entries: List[LogEntry] = []
    index = 0
    for result in results:
        if result.error:
            entries.append(error_entry(result.pod_name, result.error, index))
            index += 1
            continue
        for line in split_lines(result.logs or ""):
            entry = parse_log_line(strip_control_codes(line), index, result.pod_name)
            index += 1
            if entry is not None:
                entries.append(entry)
    return entries


class HistoricalFetcher:
    """
    Fetches past logs for a set of pods through a LogTransport.

    Attributes:
        transport: Transport used for the request
        tail_lines: Maximum lines requested per pod

    Example:
        ```python
        fetcher = HistoricalFetcher(transport)
        entries = await fetcher.fetch(["api-1", "api-2"], since="1h")
        ```
    """

    def __init__(self, transport: LogTransport, tail_lines: int = DEFAULT_FETCH_TAIL_LINES):
        self.transport = transport
        self.tail_lines = tail_lines

    async def fetch(
        self,
        sources: Sequence[str],
        container: Optional[str] = None,
        previous: bool = False,
        since: Optional[str] = None,
    ) -> List[LogEntry]:
        """
        Fetch logs for ``sources`` and return them as one snapshot.

        Args:
            sources: Pod names to fetch
            container: Container name (None for each pod's default)
            previous: Fetch the previous container instance's logs
            since: Duration token ("5m", "1h", "2d"); the lower bound is
                computed from the current time

        Returns:
            List[LogEntry]: Entries grouped by pod in request order, with
                error entries for pods that failed
        """
        if not sources:
            return []

        try:
            since_time = since_time_from_duration(since)
        except InvalidDurationError as e:
            log.warning(f"[fetch] ignoring time filter: {e}")
            since_time = None

        log.info(f"[fetch] pods={len(sources)} container={container} previous={previous} since={since or 'all'}")
        try:
            results = await self.transport.fetch(
                list(sources),
                container=container,
                tail_lines=self.tail_lines,
                timestamps=True,
                previous=previous,
                since_time=since_time,
            )
        except Exception as e:
            log.warning(f"[fetch] request failed: {e.__class__.__name__}: {e}")
            return [request_error_entry(str(e))]

        return results_to_entries(results)

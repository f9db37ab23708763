"""Remote job logs from CloudWatch Logs.

A failed remote job is reported locally with its log as the diagnostic.
Only the test phase is interesting: everything between the build-phase start
marker and the build-phase end marker, minus the lines pytest prints for
sibling parameterizations the worker skipped.

Pagination is bounded by ``GridSettings.max_log_pages`` (default 5 pages of
``log_page_size`` events). A longer log is truncated and the truncation is
logged.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import boto3
from botocore.config import Config

from gridrun.core.logging import get_logger
from gridrun.runtimes._types import JobHandle
from gridrun.runtimes.buildspec import BUILD_PHASE_END, BUILD_PHASE_START

logger = get_logger(__name__)

SKIPPED_MARKERS = (" SKIPPED", " DESELECTED")

# pytest -v status line: "nodeid SKIPPED (reason)   [ 50%]"
_SKIPPED_STATUS_LINE = re.compile(r"^\S+::\S+ (?:SKIPPED|DESELECTED)\b")


@dataclass
class BuildSegmentFilter:
    """Incremental filter keeping the build phase of a log, page by page."""

    start_marker: str = BUILD_PHASE_START
    end_marker: str = BUILD_PHASE_END
    skipped_markers: tuple[str, ...] = SKIPPED_MARKERS
    started: bool = False
    finished: bool = False
    lines: list[str] = field(default_factory=list)

    def feed(self, messages: Iterable[str]) -> None:
        for message in messages:
            if self.end_marker in message:
                self.finished = True
            if self.start_marker in message:
                self.started = True
            if self.started and not self.finished and not self.is_skipped(message):
                self.lines.append(message)

    def is_skipped(self, message: str) -> bool:
        line = message.rstrip()
        return line.endswith(self.skipped_markers) or bool(_SKIPPED_STATUS_LINE.match(line))

    def text(self) -> str:
        return "".join(
            line if line.endswith("\n") else f"{line}\n" for line in self.lines
        )


def extract_build_segment(messages: Iterable[str]) -> str:
    """Filter a complete list of log messages down to the build phase."""
    segment = BuildSegmentFilter()
    segment.feed(messages)
    return segment.text()


class CloudWatchLogSource:
    """Fetches the build phase of a job's CloudWatch log stream."""

    def __init__(
        self,
        *,
        log_group: str,
        max_pages: int = 5,
        page_size: int = 1000,
        region: str | None = None,
        client: Any = None,
    ) -> None:
        self.log_group = log_group
        self.max_pages = max_pages
        self.page_size = page_size
        self._client = client or boto3.client(
            "logs",
            region_name=region,
            config=Config(retries={"mode": "standard"}),
        )

    async def fetch_logs(self, handle: JobHandle) -> str:
        segment = BuildSegmentFilter()
        next_token: str | None = None
        page = 0

        while page < self.max_pages:
            page += 1
            logger.info("logs.fetch_page", page=page, job_id=handle.job_id)
            request: dict[str, Any] = {
                "logGroupName": self.log_group,
                "logStreamName": handle.log_stream,
                "limit": self.page_size,
                "startFromHead": True,
            }
            if next_token is not None:
                request["nextToken"] = next_token
            try:
                response = await asyncio.to_thread(self._client.get_log_events, **request)
            except Exception as exc:
                logger.error("logs.fetch_failed", job_id=handle.job_id, error=str(exc))
                break

            events = response.get("events", [])
            segment.feed(event.get("message", "") for event in events)
            token = response.get("nextForwardToken")
            if not events or segment.finished or token is None or token == next_token:
                break
            next_token = token
        else:
            logger.warning(
                "logs.truncated",
                job_id=handle.job_id,
                max_pages=self.max_pages,
            )

        logger.debug("logs.fetched", job_id=handle.job_id, pages=page, lines=len(segment.lines))
        return segment.text()

    async def close(self) -> None:
        await asyncio.to_thread(self._client.close)

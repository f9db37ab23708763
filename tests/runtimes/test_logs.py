"""Tests for build log filtering and CloudWatchLogSource."""

from unittest.mock import MagicMock

import pytest

from gridrun.runtimes import CloudWatchLogSource, JobHandle, extract_build_segment

BUILD_LOG = [
    "[Container] Entering phase PRE_BUILD\n",
    "Successfully installed app-0.1.0\n",
    "[Container] Entering phase BUILD\n",
    "tests/test_search.py::test_title[bing.com-Bing] SKIPPED\n",
    "tests/test_search.py::test_title[google.com-Google] FAILED\n",
    "E   AssertionError: 'Google' != 'Gooogle'\n",
    "[Container] Phase complete: BUILD State: FAILED\n",
    "[Container] Entering phase POST_BUILD\n",
]


def _handle() -> JobHandle:
    return JobHandle(
        job_id="localhost-tests-abc1234:5d0c8f1e",
        project="localhost-tests-abc1234",
        work_selector="tests/test_search.py::test_title",
        invocation_id="inv",
    )


def _page(messages, token):
    return {"events": [{"message": m} for m in messages], "nextForwardToken": token}


class TestExtractBuildSegment:
    def test_keeps_only_build_phase_without_skipped_siblings(self):
        assert extract_build_segment(BUILD_LOG) == (
            "[Container] Entering phase BUILD\n"
            "tests/test_search.py::test_title[google.com-Google] FAILED\n"
            "E   AssertionError: 'Google' != 'Gooogle'\n"
        )

    def test_skipped_inside_a_message_is_kept(self):
        log = [
            "[Container] Entering phase BUILD\n",
            "tests/test_search.py::test_title[bing.com-Bing] SKIPPED (other invocation)  [ 50%]\n",
            "tests/test_search.py::test_title[google.com-Google] FAILED  [100%]\n",
            "E   AssertionError: banner SKIPPED DESELECTED was shown\n",
        ]
        assert extract_build_segment(log) == (
            "[Container] Entering phase BUILD\n"
            "tests/test_search.py::test_title[google.com-Google] FAILED  [100%]\n"
            "E   AssertionError: banner SKIPPED DESELECTED was shown\n"
        )

    def test_log_without_build_marker_is_empty(self):
        assert extract_build_segment(["[Container] Entering phase INSTALL\n", "pip failed\n"]) == ""

    def test_lines_without_newline_are_terminated(self):
        assert extract_build_segment(["Entering phase BUILD", "ok"]) == "Entering phase BUILD\nok\n"


class TestCloudWatchLogSource:
    @pytest.mark.asyncio
    async def test_reads_pages_until_build_phase_complete(self):
        client = MagicMock()
        client.get_log_events.side_effect = [
            _page(BUILD_LOG[:4], "t1"),
            _page(BUILD_LOG[4:], "t2"),
        ]
        source = CloudWatchLogSource(log_group="/gridrun/tests", client=client)

        text = await source.fetch_logs(_handle())

        assert "FAILED" in text
        assert "SKIPPED" not in text
        assert client.get_log_events.call_count == 2
        first, second = client.get_log_events.call_args_list
        assert first.kwargs["logStreamName"] == "5d0c8f1e"
        assert first.kwargs["logGroupName"] == "/gridrun/tests"
        assert "nextToken" not in first.kwargs
        assert second.kwargs["nextToken"] == "t1"

    @pytest.mark.asyncio
    async def test_page_bound_truncates_long_logs(self):
        client = MagicMock()
        client.get_log_events.side_effect = [
            _page(["Entering phase BUILD\n", "line 1\n"], "t1"),
            _page(["line 2\n"], "t2"),
            _page(["line 3\n"], "t3"),
        ]
        source = CloudWatchLogSource(log_group="/gridrun/tests", max_pages=2, client=client)

        text = await source.fetch_logs(_handle())

        assert client.get_log_events.call_count == 2
        assert text.endswith("line 2\n")
        assert "line 3" not in text

    @pytest.mark.asyncio
    async def test_stops_when_token_repeats(self):
        client = MagicMock()
        client.get_log_events.side_effect = [
            _page(["Entering phase BUILD\n"], "t1"),
            _page(["still running\n"], "t1"),
        ]
        source = CloudWatchLogSource(log_group="/gridrun/tests", client=client)

        text = await source.fetch_logs(_handle())

        assert client.get_log_events.call_count == 2
        assert text == "Entering phase BUILD\nstill running\n"

    @pytest.mark.asyncio
    async def test_client_error_returns_what_was_read(self):
        client = MagicMock()
        client.get_log_events.side_effect = RuntimeError("ResourceNotFoundException")
        source = CloudWatchLogSource(log_group="/gridrun/tests", client=client)

        assert await source.fetch_logs(_handle()) == ""

    @pytest.mark.asyncio
    async def test_close_closes_client(self):
        client = MagicMock()
        source = CloudWatchLogSource(log_group="/gridrun/tests", client=client)
        await source.close()
        client.close.assert_called_once()

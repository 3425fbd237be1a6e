import io
import json
import unittest
from contextlib import redirect_stdout

from agentskan.domain.exceptions import (
    InvalidReferenceException,
    UpstreamException,
    UpstreamNotFoundException,
)
from agentskan.main import (
    EXIT_INVALID_REFERENCE,
    EXIT_NOT_FOUND,
    EXIT_OK,
    EXIT_UPSTREAM_ERROR,
    build_parser,
    run_command,
)


class _RaisingService:
    def __init__(self, error) -> None:
        self.error = error

    async def submit_scan(self, repo_reference):
        raise self.error


class _StatsService:
    async def get_lifetime_scan_count(self):
        return 12


class TestRunCommand(unittest.IsolatedAsyncioTestCase):
    async def test_scan_failures_map_to_exit_codes(self) -> None:
        cases = [
            (InvalidReferenceException("nope"), EXIT_INVALID_REFERENCE),
            (UpstreamNotFoundException("octocat", "ghost"), EXIT_NOT_FOUND),
            (UpstreamException("GitHub API error: 502"), EXIT_UPSTREAM_ERROR),
        ]
        args = build_parser().parse_args(["scan", "https://github.com/octocat/ghost"])
        for error, expected in cases:
            with self.subTest(error=type(error).__name__):
                with self.assertLogs("agentskan.main", level="ERROR"):
                    code = await run_command(args, _RaisingService(error))
                self.assertEqual(code, expected)

    async def test_stats_prints_lifetime_count(self) -> None:
        args = build_parser().parse_args(["stats"])
        buffer = io.StringIO()

        with redirect_stdout(buffer):
            code = await run_command(args, _StatsService())

        self.assertEqual(code, EXIT_OK)
        self.assertEqual(json.loads(buffer.getvalue()), {"totalScans": 12})


class TestParser(unittest.TestCase):
    def test_list_rejects_non_positive_limits(self) -> None:
        with redirect_stdout(io.StringIO()), self.assertRaises(SystemExit):
            build_parser().parse_args(["list", "--limit", "0"])

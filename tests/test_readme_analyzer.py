import json
import unittest
from unittest.mock import AsyncMock, MagicMock

import aiohttp

from agentskan.domain.exceptions import FlagAnalysisUnavailableException
from agentskan.domain.models import Severity
from agentskan.infrastructure.readme_analyzer import (
    EMPTY_README_FLAG,
    MAX_README_CHARS,
    OpenAIReadmeAnalyzer,
)


def _completion(content):
    return {"choices": [{"message": {"content": content}}]}


def _session_returning(status=200, payload=None, error=None):
    resp = AsyncMock()
    resp.status = status
    resp.json = AsyncMock(return_value=payload)
    resp.__aenter__ = AsyncMock(return_value=resp)
    resp.__aexit__ = AsyncMock(return_value=False)

    session = AsyncMock()
    session.post = MagicMock(side_effect=error) if error else MagicMock(return_value=resp)
    return session


class TestOpenAIReadmeAnalyzer(unittest.IsolatedAsyncioTestCase):
    async def test_parses_flags_from_completion(self) -> None:
        content = json.dumps({"flags": [
            {"category": "Financial Focus", "message": "Mostly tokenomics", "severity": "medium"},
            {"category": "Pressure Tactics", "message": "Buy before launch", "severity": "high"},
            {"category": "Broken", "severity": "extreme"},
        ]})
        session = _session_returning(payload=_completion(content))
        analyzer = OpenAIReadmeAnalyzer(api_key="sk-test")

        with self.assertLogs("agentskan.infrastructure.readme_analyzer", level="WARNING"):
            flags = await analyzer.analyze_readme(session, "# Agent\nStake now!")

        self.assertEqual([flag.severity for flag in flags], [Severity.MEDIUM, Severity.HIGH])
        _, kwargs = session.post.call_args
        self.assertEqual(kwargs["json"]["model"], "gpt-4o-mini")
        self.assertEqual(kwargs["json"]["response_format"], {"type": "json_object"})
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer sk-test")

    async def test_truncates_long_readmes(self) -> None:
        session = _session_returning(payload=_completion('{"flags": []}'))
        analyzer = OpenAIReadmeAnalyzer(api_key="sk-test")

        flags = await analyzer.analyze_readme(session, "x" * (MAX_README_CHARS + 500))

        self.assertEqual(flags, [])
        _, kwargs = session.post.call_args
        user_message = kwargs["json"]["messages"][1]["content"]
        self.assertEqual(user_message.count("x"), MAX_README_CHARS)

    async def test_blank_readme_yields_documentation_flag_without_a_request(self) -> None:
        session = _session_returning()
        analyzer = OpenAIReadmeAnalyzer(api_key="sk-test")

        flags = await analyzer.analyze_readme(session, "   \n")

        self.assertEqual(flags, [EMPTY_README_FLAG])
        session.post.assert_not_called()

    async def test_missing_api_key_is_unavailable(self) -> None:
        with self.assertRaises(FlagAnalysisUnavailableException):
            await OpenAIReadmeAnalyzer(api_key=None).analyze_readme(_session_returning(), "# Agent")

    async def test_transport_and_payload_failures_are_unavailable(self) -> None:
        sessions = [
            _session_returning(status=429),
            _session_returning(error=aiohttp.ClientConnectionError("reset")),
            _session_returning(payload=_completion("not json")),
        ]
        for session in sessions:
            with self.subTest(session=session):
                with self.assertRaises(FlagAnalysisUnavailableException):
                    await OpenAIReadmeAnalyzer(api_key="sk-test").analyze_readme(session, "# Agent")

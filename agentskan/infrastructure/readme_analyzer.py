import aiohttp
import asyncio
import json
import logging
from typing import List, Optional

from agentskan.domain.exceptions import FlagAnalysisUnavailableException
from agentskan.domain.models import ContentFlag, Severity
from agentskan.infrastructure.acl import ContentFlagTranslator

logger = logging.getLogger(__name__)

OPENAI_API_BASE = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"
REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=60, connect=10)
MAX_README_CHARS = 15_000
TEMPERATURE = 0.3

SYSTEM_PROMPT = """You are a security analyst specializing in identifying red flags in AI agent project documentation. Analyze README files to identify potential scam indicators, suspicious claims, or concerning patterns.

Your task is to return a JSON object with an array of red flags found. Each flag should have:
- category: One of "Unrealistic Promises", "Missing Technical Details", "Pressure Tactics", "Suspicious Claims", "Financial Focus", "Poor Documentation"
- message: A specific description of the concern
- severity: "low", "medium", or "high"

Focus on identifying:
1. Unrealistic promises (guaranteed returns, impossible capabilities, too-good-to-be-true claims)
2. Missing technical details (vague architecture, no code explanations, buzzword soup)
3. Pressure tactics (urgency, limited time offers, FOMO language)
4. Suspicious claims (fake partnerships, unverifiable credentials, inflated metrics)
5. Token/financial focus over technical substance (emphasis on tokenomics, staking, rewards over actual functionality)
6. Poor documentation (broken links, placeholder text, copied content)

Return ONLY valid JSON in this format:
{
  "flags": [
    { "category": "...", "message": "...", "severity": "..." }
  ]
}

If the README appears legitimate with no red flags, return: { "flags": [] }"""

EMPTY_README_FLAG = ContentFlag(
    category="Documentation",
    message="Repository has no README content",
    severity=Severity.MEDIUM,
)


class OpenAIReadmeAnalyzer:
    """
    Classifies README text into content flags using the OpenAI chat completions API.
    Any failure is reported as FlagAnalysisUnavailableException so the caller can degrade.
    """

    def __init__(self, api_key: Optional[str], model: str = DEFAULT_MODEL, api_url: str = OPENAI_API_BASE):
        self.api_key = api_key
        self.model = model
        self.api_url = api_url.rstrip("/")

    def _build_payload(self, readme_content: str) -> dict:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": f"Analyze this README for red flags:\n\n{readme_content[:MAX_README_CHARS]}",
                },
            ],
            "temperature": TEMPERATURE,
            "response_format": {"type": "json_object"},
        }

    async def analyze_readme(
        self,
        session: aiohttp.ClientSession,
        readme_content: Optional[str],
    ) -> List[ContentFlag]:
        """
        Returns the red flags found in a README.

        Raises:
            FlagAnalysisUnavailableException: If no API key is configured or the
                completion cannot be obtained or parsed.
        """
        if not readme_content or not readme_content.strip():
            return [EMPTY_README_FLAG]

        if not self.api_key:
            raise FlagAnalysisUnavailableException("OPENAI_API_KEY environment variable is not set")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with session.post(
                f"{self.api_url}/chat/completions",
                json=self._build_payload(readme_content),
                headers=headers,
                timeout=REQUEST_TIMEOUT,
            ) as response:
                if response.status != 200:
                    raise FlagAnalysisUnavailableException(f"OpenAI API error: {response.status}")
                data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise FlagAnalysisUnavailableException(f"OpenAI request failed: {e}") from e

        return self._parse_flags(data)

    @staticmethod
    def _parse_flags(data) -> List[ContentFlag]:
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None
        if not content:
            logger.warning("OpenAI returned an empty completion; treating as no flags.")
            return []

        try:
            result = json.loads(content)
        except json.JSONDecodeError as e:
            raise FlagAnalysisUnavailableException(f"OpenAI returned invalid JSON: {e}") from e

        raw_flags = result.get("flags") if isinstance(result, dict) else None
        if not isinstance(raw_flags, list):
            return []

        flags = [ContentFlagTranslator.to_domain(raw) for raw in raw_flags]
        dropped = sum(1 for flag in flags if flag is None)
        if dropped:
            logger.warning(f"Dropped {dropped} malformed flag(s) from README analysis.")
        return [flag for flag in flags if flag is not None]

import logging
from typing import List

import aiohttp

from agentskan.application.ports import FlagAnalyzer, MetadataProvider
from agentskan.application.scan_ledger import ScanLedger
from agentskan.domain.exceptions import FlagAnalysisUnavailableException
from agentskan.domain.models import (
    ContentFlag,
    PersistenceStatus,
    RepoMetadata,
    RepoSummary,
    ScanDraft,
    ScanOutcome,
    ScanPage,
    ScanResult,
    Severity,
)
from agentskan.domain.references import parse_repo_reference
from agentskan.domain.scoring import classify, compute_score

logger = logging.getLogger(__name__)

# Limit concurrent connections opened by a single scan
CONNECTOR_LIMIT = 10

MISSING_README_FLAG = ContentFlag(
    category="Poor Documentation",
    message="Repository has no README file",
    severity=Severity.MEDIUM,
)


class ScanService:
    """
    Orchestrates a single repository scan:
    parse the reference, fetch metadata, analyse the README, score, persist.

    Only an invalid reference and metadata failures reach the caller. README
    analysis and persistence are best-effort and degrade silently, so a score
    is still returned during partial backend outages.
    """

    def __init__(
            self,
            metadata_provider: MetadataProvider,
            flag_analyzer: FlagAnalyzer,
            ledger: ScanLedger,
    ):
        self.metadata_provider = metadata_provider
        self.flag_analyzer = flag_analyzer
        self.ledger = ledger

    async def submit_scan(self, repo_reference: str) -> ScanOutcome:
        """
        Scans a GitHub repository and records the result on the leaderboard.

        Raises:
            InvalidReferenceException: If the URL does not name a GitHub repository.
            UpstreamNotFoundException: If GitHub does not know the repository.
            UpstreamException: For any other metadata fetch failure.
        """
        reference = parse_repo_reference(repo_reference)
        logger.info(f"Scanning {reference.owner}/{reference.repo}.")

        async with aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(limit=CONNECTOR_LIMIT),
        ) as session:
            metadata = await self.metadata_provider.fetch_repo_metadata(
                session, reference.owner, reference.repo
            )
            flags = await self._collect_flags(session, metadata)

        scored = compute_score(metadata, flags)
        risk_level = classify(scored.score)
        logger.info(
            f"{reference.owner}/{reference.repo} scored {scored.score} "
            f"({risk_level.value} risk, {len(flags)} flag(s))."
        )

        draft = ScanDraft(
            repo_url=repo_reference,
            repo_name=metadata.name,
            owner=metadata.owner,
            score=scored.score,
            risk_level=risk_level,
            stars=metadata.stars,
            forks=metadata.forks,
            age_in_days=metadata.age_in_days,
            contributors=metadata.contributors_count,
            flags_count=len(flags),
        )
        receipt = await self.ledger.append(draft)

        result = ScanResult(
            score=scored.score,
            risk_level=risk_level,
            flags=flags,
            repo=RepoSummary.from_metadata(metadata),
        )
        return ScanOutcome(
            result=result,
            persistence=PersistenceStatus.SCORED if receipt is not None else PersistenceStatus.SCORED_NOT_PERSISTED,
            receipt=receipt,
        )

    async def _collect_flags(
        self, session: aiohttp.ClientSession, metadata: RepoMetadata
    ) -> List[ContentFlag]:
        flags: List[ContentFlag] = []

        if metadata.readme_content:
            try:
                flags = list(await self.flag_analyzer.analyze_readme(session, metadata.readme_content))
            except FlagAnalysisUnavailableException as e:
                logger.error(f"README analysis failed: {e}. Continuing without content flags.")
                flags = []
            except Exception as e:
                logger.error(f"README analyzer raised unexpectedly: {e}. Continuing without content flags.")
                flags = []

        if not metadata.has_readme:
            flags = [MISSING_README_FLAG]

        return flags

    async def list_scans(self, offset: int = 0, limit: int = 20) -> ScanPage:
        return await self.ledger.list(offset=offset, limit=limit)

    async def get_lifetime_scan_count(self) -> int:
        return await self.ledger.lifetime_count()

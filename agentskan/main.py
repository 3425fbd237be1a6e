import argparse
import asyncio
import json
import sys
import logging

from agentskan.config import Settings, build_ledger_store
from agentskan.application.scan_ledger import ScanLedger
from agentskan.application.scan_service import ScanService
from agentskan.domain.exceptions import (
    InvalidReferenceException,
    PersistenceUnavailableException,
    UpstreamException,
    UpstreamNotFoundException,
)
from agentskan.infrastructure.database import PostgresLedgerStore
from agentskan.infrastructure.github_client import GitHubRestClient
from agentskan.infrastructure.readme_analyzer import OpenAIReadmeAnalyzer
from agentskan.infrastructure.redis_store import RedisLedgerStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_UPSTREAM_ERROR = 1
EXIT_INVALID_REFERENCE = 2
EXIT_NOT_FOUND = 3


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )


def _non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError("must be non-negative")
    return number


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError("must be at least 1")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentskan",
        description="Heuristic risk scoring for AI agent GitHub repositories.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    scan_parser = subparsers.add_parser("scan", help="Scan a GitHub repository URL.")
    scan_parser.add_argument("repo_url")

    list_parser = subparsers.add_parser("list", help="Show the scan leaderboard, most recent first.")
    list_parser.add_argument("--offset", type=_non_negative_int, default=0)
    list_parser.add_argument("--limit", type=_positive_int, default=20)

    subparsers.add_parser("stats", help="Show the lifetime scan count.")
    return parser


def build_service(settings: Settings) -> ScanService:
    store = build_ledger_store(settings)
    return ScanService(
        metadata_provider=GitHubRestClient(token=settings.github_token),
        flag_analyzer=OpenAIReadmeAnalyzer(api_key=settings.openai_api_key, model=settings.openai_model),
        ledger=ScanLedger(store, capacity=settings.ledger_capacity),
    )


async def run_command(args: argparse.Namespace, service: ScanService) -> int:
    if args.command == "scan":
        try:
            outcome = await service.submit_scan(args.repo_url)
        except InvalidReferenceException as e:
            logger.error(str(e))
            return EXIT_INVALID_REFERENCE
        except UpstreamNotFoundException as e:
            logger.error(f"{e}: {e.owner}/{e.repo}")
            return EXIT_NOT_FOUND
        except UpstreamException as e:
            logger.error(f"Failed to fetch repository: {e}")
            return EXIT_UPSTREAM_ERROR

        if not outcome.persisted:
            logger.info("Scan result was not recorded on the leaderboard.")
        print(outcome.result.model_dump_json(indent=2))
        return EXIT_OK

    if args.command == "list":
        page = await service.list_scans(offset=args.offset, limit=args.limit)
        print(page.model_dump_json(indent=2))
        return EXIT_OK

    if args.command == "stats":
        total_scans = await service.get_lifetime_scan_count()
        print(json.dumps({"totalScans": total_scans}))
        return EXIT_OK

    raise ValueError(f"Unknown command: {args.command}")


async def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    settings = Settings.from_env()
    configure_logging(settings.log_level)

    service = build_service(settings)
    store = service.ledger.store

    try:
        if isinstance(store, PostgresLedgerStore):
            try:
                await store.create_schema()
            except PersistenceUnavailableException as e:
                logger.error(f"Could not prepare the scan ledger schema: {e}")
        return await run_command(args, service)
    finally:
        if isinstance(store, RedisLedgerStore):
            await store.close()
        elif isinstance(store, PostgresLedgerStore):
            await store.dispose()


def run() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("Interrupted by user. Exiting gracefully.")
        sys.exit(130)


if __name__ == "__main__":
    run()

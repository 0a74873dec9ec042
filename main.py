#!/usr/bin/env python3
"""TripWeaver orchestration CLI.

Runs one traveller request through a locally wired orchestration core and
prints the JSON response.

Environment Variables (all optional):
    - OLLAMA_BASE_URL / OLLAMA_MODEL: local generation backend
    - OPENAI_API_KEY / OPENAI_MODEL / OPENAI_BASE_URL: hosted generation backend
    - DATABASE_URL: PostgreSQL for learned weights (in-memory otherwise)
    - INTENT_*, PROVIDER_*, WORKFLOW_*, LEARNING_*, ENABLE_*: tuning

Without any backend configured every answer comes from the degraded
fallback responder.

Example Usage:
    $ python main.py "Plan a 5-day trip to Lisbon under \\$1000"
    $ python main.py --user-id alice --session home_city=London "Weekend in Paris"
    $ python main.py --health
"""
import argparse
import asyncio
import json
import logging
import os
import sys

from dotenv import load_dotenv

load_dotenv()

from src.tripweaver import InboundRequest, Settings, StoreBundle, create_orchestration_core
from src.tripweaver.adapters import PostgresLearningStateStore
from src.tripweaver.exceptions import ConfigurationError

logger = logging.getLogger("tripweaver.cli")


async def setup_database():
    """Create a database pool when DATABASE_URL is set.

    Returns:
        asyncpg.Pool or None if no database is configured
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        return None

    import asyncpg

    pool = await asyncpg.create_pool(database_url, min_size=1, max_size=5, command_timeout=30)
    logger.info("Connected to PostgreSQL")
    return pool


def parse_session(pairs: list[str]) -> dict[str, str]:
    attributes = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"Expected key=value, got '{pair}'")
        attributes[key.strip()] = value.strip()
    return attributes


async def run(args: argparse.Namespace) -> int:
    try:
        settings = Settings()
    except ConfigurationError as e:
        print(f"[Main] Configuration error: {e}", file=sys.stderr)
        return 2

    pool = await setup_database()
    stores = StoreBundle()
    if pool is not None:
        learning_store = PostgresLearningStateStore(pool)
        await learning_store.ensure_schema()
        stores.learning = learning_store

    core = create_orchestration_core(settings, stores=stores)
    await core.start()
    try:
        if args.health:
            output = core.health_check().model_dump(by_alias=True, mode="json")
        elif args.metrics:
            output = core.get_metrics()
        else:
            request = InboundRequest(
                userId=args.user_id,
                utterance=" ".join(args.utterance),
                conversationHistory=[{"role": "user", "content": turn} for turn in args.history],
                sessionAttributes=args.session,
            )
            response = await core.process(request)
            output = response.to_wire()
        print(json.dumps(output, indent=2, default=str))
    finally:
        await core.stop(timeout=10)
        if pool is not None:
            await pool.close()
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Run a travel request through the TripWeaver orchestration core",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("utterance", nargs="*", help="Request text")
    parser.add_argument("--user-id", default="cli-user", help="User id (default: cli-user)")
    parser.add_argument(
        "--session",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Session attribute (repeatable), e.g. home_city=London",
    )
    parser.add_argument(
        "--history",
        action="append",
        default=[],
        metavar="TEXT",
        help="Earlier user turn (repeatable, oldest first)",
    )

    admin_group = parser.add_argument_group("Administration")
    admin_group.add_argument("--health", action="store_true", help="Print component health")
    admin_group.add_argument("--metrics", action="store_true", help="Print metrics")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    args = parser.parse_args()
    if not args.utterance and not (args.health or args.metrics):
        parser.error("an utterance is required unless --health or --metrics is given")
    try:
        args.session = parse_session(args.session)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()

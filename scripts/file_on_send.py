"""Entry point that files a just-sent Outlook draft into SingleCase."""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
import sys

from dotenv import load_dotenv

# Ensure project root is on sys.path when running as a script
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from casefiler.auth import StoredTokenProvider, WorkspaceResolver
from casefiler.config import Settings
from casefiler.documents import DocumentRepository
from casefiler.graph_host import GraphMailHost
from casefiler.identity import resolve_candidate_keys
from casefiler.intents import IntentRepository
from casefiler.models import FilingIntent
from casefiler.orchestrator import SendOrchestrator
from casefiler.recipient_history import RecipientHistory
from casefiler.storage import build_store

load_dotenv()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="File an outgoing Outlook message into SingleCase.")
    parser.add_argument("--message-id", required=True, help="Graph id of the message being sent")
    parser.add_argument("--case-id", help="Record a filing intent for this case before running")
    parser.add_argument(
        "--no-auto",
        action="store_true",
        help="With --case-id, record the intent with auto-file disabled",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show candidate keys and the resolved intent without uploading",
    )
    return parser


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def log_completion(allow_event: bool, error_message: str | None = None) -> None:
    logging.info("Send completed: allowEvent=%s error=%s", allow_event, error_message or "-")


async def run(args: argparse.Namespace, settings: Settings) -> int:
    store = build_store(settings.kv_store_db, settings.roaming_settings_file)
    host = await GraphMailHost(settings, args.message_id).load()
    intents = IntentRepository(store)

    if args.case_id:
        keys = await resolve_candidate_keys(host, settings.timeout_item_keys)
        item_key = keys[0] if keys else "last_compose"
        await intents.save(
            item_key,
            FilingIntent(
                case_id=args.case_id,
                auto_file_on_send=not args.no_auto,
                resolved_under_key=item_key,
            ),
        )
        logging.info("Recorded intent for case %s under %s", args.case_id, item_key)

    if args.dry_run:
        keys = await resolve_candidate_keys(host, settings.timeout_item_keys)
        intent = await intents.resolve(keys)
        logging.info("[DRY-RUN] Candidate keys: %s", keys)
        logging.info("[DRY-RUN] Intent: %s", intent)
        return 0

    tokens = StoredTokenProvider(store, settings.session_ttl_seconds)
    workspace = WorkspaceResolver(store, settings)
    orchestrator = SendOrchestrator(
        store=store,
        tokens=tokens,
        workspace=workspace,
        documents=DocumentRepository(tokens, workspace, http_timeout=settings.http_timeout),
        timeouts=settings.stage_timeouts,
        notification_prefix=settings.notification_prefix,
        recipient_history=RecipientHistory(settings.kv_store_db),
    )
    outcome = await orchestrator.handle(host, log_completion)

    logging.info(
        "Run complete: state=%s case=%s document=%s skipped=%s",
        outcome.state.value,
        outcome.case_id or "-",
        outcome.document_id or "-",
        outcome.skipped_reason or "-",
    )
    return 1 if outcome.error else 0


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    settings = Settings()
    configure_logging(settings.log_level)
    raise SystemExit(asyncio.run(run(args, settings)))


if __name__ == "__main__":
    main()

"""Entry point for ``python -m expensechat``.

Runs one expense conversation in the terminal against the configured
database::

    python -m expensechat --workspace <uuid> --user <uuid>

Type ``/cancel`` to discard the conversation, or an empty line / EOF to quit.
"""

import argparse
import asyncio
import logging

from expensechat import configure_logging
from expensechat.agent.orchestrator import SessionOrchestrator
from expensechat.db.session import async_session_factory, engine
from expensechat.ledger.repository import SqlAlchemyExpenseStore, SqlAlchemyTaxonomyProvider

logger = logging.getLogger(__name__)


async def run_console(workspace_id: str, user_id: str) -> None:
    """Read utterances from stdin and print the replies."""
    orchestrator = SessionOrchestrator(
        SqlAlchemyExpenseStore(async_session_factory, workspace_id, user_id),
        taxonomy_provider=SqlAlchemyTaxonomyProvider(async_session_factory),
    )
    ctx = await orchestrator.start_for_workspace(workspace_id)
    print(ctx.transcript[-1].text)

    try:
        while True:
            try:
                text = await asyncio.to_thread(input, "> ")
            except EOFError:
                break
            if not text.strip():
                break
            if text.strip() == "/cancel":
                orchestrator.cancel(ctx)
                print("Conversation cancelled.")
                break
            result = await orchestrator.submit(ctx, text)
            for reply in result.replies:
                print(reply)
    finally:
        await engine.dispose()
        logger.info("Console session %s closed", ctx.session_id)


def main() -> None:
    parser = argparse.ArgumentParser(prog="expensechat", description=__doc__.splitlines()[0])
    parser.add_argument("--workspace", required=True, help="Workspace UUID")
    parser.add_argument("--user", required=True, help="User UUID")
    args = parser.parse_args()

    configure_logging()
    asyncio.run(run_console(args.workspace, args.user))


if __name__ == "__main__":
    main()

"""Knowledge sync runner entry point.

Embeds every PDF in KNOWLEDGE_DOCUMENTS_DIR into the vector index as general
knowledge and moves processed files to KNOWLEDGE_PROCESSED_DIR.

Usage:
    python -m services.knowledge_sync.knowledge_sync
    python -m services.knowledge_sync.knowledge_sync --cleanup-file "trial balance-1.xlsx"
"""

import argparse
import asyncio
import sys

from shared.clients.llm.LLMClientManager import LLMClientManager
from shared.clients.rag.RAGClientManager import RAGClientManager
from services.knowledge_sync.KnowledgeSyncService import KnowledgeSyncService
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync knowledge base PDFs into the vector index")
    parser.add_argument(
        "--cleanup-file",
        metavar="FILE_NAME",
        default=None,
        help="Delete all vectors taken from FILE_NAME instead of syncing",
    )
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
    """Run the knowledge sync (or a file cleanup). Returns the process exit code."""
    args = parse_args(argv)
    logger = setup_logging("knowledge_sync")
    config = HelperConfig(logger=logger)
    llm_client = LLMClientManager(helper_config=config).get_client()
    rag_client = RAGClientManager(helper_config=config).get_client()

    try:
        # both clients are required, there is no point in syncing without either
        for client in (llm_client, rag_client):
            await client.boot()
            response = await client.do_healthcheck()
            if not response.is_success:
                logger.error(
                    "%s client %s is not reachable (status %d). Aborting.",
                    client.get_client_type().upper(), client.get_engine_name(), response.status_code,
                )
                return 1

        sync_service = KnowledgeSyncService(helper_config=config, llm_client=llm_client, rag_client=rag_client)
        if args.cleanup_file:
            await sync_service.do_cleanup_file(args.cleanup_file)
            return 0

        await sync_service.do_ensure_collection()
        summary = await sync_service.do_full_sync()
        return 1 if summary.errors else 0
    finally:
        await llm_client.close()
        await rag_client.close()


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()

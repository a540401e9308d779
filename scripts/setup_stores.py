"""
Bootstrap all four stores:

- PostgreSQL: tables, constraints, indexes
- Neo4j: uniqueness constraints on User.user_id and Dataset.dataset_id
- CouchDB: the blob database
- Redis: connectivity check only (keys are created lazily)

Safe to run repeatedly.
"""
import argparse
import asyncio
import logging
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / '.env'
load_dotenv(env_path)

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
)

from datec.config.database import (  # noqa: E402
    create_blob_store,
    create_ephemeral_store,
    create_graph_store,
    create_metadata_store,
)

logger = logging.getLogger("setup_stores")


async def setup_stores(skip_graph: bool = False):
    metadata = await create_metadata_store()
    try:
        await metadata.ensure_schema()
    finally:
        await metadata.close()

    if not skip_graph:
        graph = await create_graph_store()
        try:
            await graph.ensure_constraints()
        finally:
            await graph.close()

    blobs = await create_blob_store()
    try:
        created = await blobs.ensure_database()
        logger.info(f"CouchDB database {'created' if created else 'already present'}")
    finally:
        await blobs.close()

    ephemeral = await create_ephemeral_store()
    await ephemeral.close()

    logger.info("✅ All stores ready")


def main():
    parser = argparse.ArgumentParser(description='Create datec schemas and databases')
    parser.add_argument('--skip-graph', action='store_true',
                        help='Do not create Neo4j constraints')
    args = parser.parse_args()
    asyncio.run(setup_stores(skip_graph=args.skip_graph))


if __name__ == '__main__':
    main()

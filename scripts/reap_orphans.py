"""
Remove graph nodes, counters and blobs whose dataset no longer exists, and
reset vote counters from the durable vote table.

Usage:
    python scripts/reap_orphans.py --dry-run
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

from datec.app import Datec  # noqa: E402


async def reap(dry_run: bool):
    async with Datec() as app:
        report = await app.reaper.run(dry_run=dry_run)
        print(f"📊 {report.summary()}")
        for dataset_id in report.graph_nodes:
            print(f"   graph node  {dataset_id}")
        for dataset_id in report.counter_datasets:
            print(f"   counters    {dataset_id}")
        for document_id in report.blobs:
            print(f"   blob        {document_id}")


def main():
    parser = argparse.ArgumentParser(description='Reap orphaned derived state')
    parser.add_argument('--dry-run', action='store_true',
                        help='Report what would be removed without deleting')
    args = parser.parse_args()
    asyncio.run(reap(args.dry_run))


if __name__ == '__main__':
    main()

"""
Out-of-band cleanup of derived state

Create, clone and delete sagas can leave graph nodes, counters and blobs
behind when they abort midway. None of it is reachable without a metadata
record, so it is collected here rather than compensated inline.
"""
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List

from datec.utils.datetime_utils import parse_iso, utc_now
from datec.utils.id_generator import dataset_id_from_document
from .blob_store import BlobStore
from .counter_service import CounterService
from .graph_store import GraphStore
from .vote_service import VoteService

logger = logging.getLogger(__name__)


@dataclass
class ReapReport:
    graph_nodes: List[str] = field(default_factory=list)
    counter_datasets: List[str] = field(default_factory=list)
    blobs: List[str] = field(default_factory=list)
    reconciled: int = 0
    dry_run: bool = False

    def summary(self) -> str:
        verb = "would remove" if self.dry_run else "removed"
        return (
            f"{verb} {len(self.graph_nodes)} graph nodes, "
            f"{len(self.counter_datasets)} counter sets, {len(self.blobs)} blobs; "
            f"reconciled {self.reconciled} vote counters"
        )


class OrphanReaper:
    """
    Deletes derived state whose dataset has no metadata record.

    Blobs younger than `blob_grace` are left alone: a create in flight
    uploads its blobs before it inserts the metadata record.
    """

    def __init__(
        self,
        metadata,
        graph: GraphStore,
        counters: CounterService,
        blobs: BlobStore,
        votes: VoteService,
        blob_grace: timedelta = timedelta(hours=1),
    ):
        self.metadata = metadata
        self.graph = graph
        self.counters = counters
        self.blobs = blobs
        self.votes = votes
        self.blob_grace = blob_grace

    async def run(self, dry_run: bool = False) -> ReapReport:
        report = ReapReport(dry_run=dry_run)
        await self._reap_graph_nodes(report)
        await self._reap_counters(report)
        await self._reap_blobs(report)
        logger.info(f"Orphan reaper {report.summary()}")
        return report

    async def _reap_graph_nodes(self, report: ReapReport):
        node_ids = await self.graph.dataset_ids()
        existing = await self.metadata.datasets.existing_ids(node_ids)
        for dataset_id in sorted(set(node_ids) - existing):
            if not report.dry_run:
                await self.graph.delete_dataset(dataset_id)
            report.graph_nodes.append(dataset_id)

    async def _reap_counters(self, report: ReapReport):
        counted = await self.counters.datasets_with_counters()
        existing = await self.metadata.datasets.existing_ids(counted)
        for dataset_id in sorted(counted - existing):
            if not report.dry_run:
                await self.counters.delete_dataset(dataset_id)
            report.counter_datasets.append(dataset_id)

        for dataset_id in sorted(existing):
            if not report.dry_run:
                await self.votes.reconcile(dataset_id)
            report.reconciled += 1

    async def _reap_blobs(self, report: ReapReport):
        cutoff = utc_now() - self.blob_grace
        candidates = {}
        async for doc in self.blobs.iter_documents():
            dataset_id = doc.get('dataset_id') or dataset_id_from_document(doc['_id'])
            if not dataset_id:
                continue
            uploaded_at = parse_iso(doc.get('uploaded_at'))
            if uploaded_at is not None and uploaded_at > cutoff:
                continue
            candidates.setdefault(dataset_id, []).append(doc['_id'])

        existing = await self.metadata.datasets.existing_ids(candidates)
        for dataset_id, document_ids in sorted(candidates.items()):
            if dataset_id in existing:
                continue
            for document_id in document_ids:
                if not report.dry_run:
                    await self.blobs.delete(document_id)
                report.blobs.append(document_id)

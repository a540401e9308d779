"""
Dataset lifecycle coordinator

Every dataset-affecting operation goes through this service; callers never
talk to a store adapter directly. Multi-store operations are sagas (see
saga.py) whose step tables live in `self.sagas`:

    create             validate -> mint_id -> upload_blobs -> insert_metadata
                       -> create_graph_node* -> init_counters*
    clone              validate -> mint_id -> copy_blobs -> insert_metadata
                       -> create_graph_node* -> init_counters*
    update             validate -> add_files -> store_header
                       -> delete_removed_blobs -> write_metadata
                       -> refresh_graph_node*
    delete             authorize -> delete_blobs -> delete_metadata
                       -> delete_graph_node -> delete_counters
    review             apply_review -> notify_owner*
    toggle_visibility  set_visibility -> notify_followers*
    track_download     record_edge* -> increment_counter*

    (* best-effort, dispatched in the background)

PostgreSQL is authoritative: a dataset exists iff its metadata record does.
Blobs, graph nodes and counters left behind by an aborted saga are garbage
that OrphanReaper collects.
"""
import logging
from dataclasses import replace
from typing import BinaryIO, Iterable, List, Optional, Sequence

from datec.config.settings import Settings, get_settings
from datec.errors import (
    ConflictError,
    DatecError,
    ForbiddenError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
)
from datec.models.api.identity import Identity
from datec.models.api.notification import (
    DatasetApprovedNotification,
    DatasetRejectedNotification,
    NewDatasetNotification,
)
from datec.models.api.upload import UploadedFile
from datec.models.domain.dataset import (
    Dataset,
    DatasetStatus,
    DownloadStats,
    FileReference,
    ReviewAction,
    VideoReference,
)
from datec.utils.datetime_utils import utc_now
from datec.utils.id_generator import (
    MAX_DATASET_SEQUENCE,
    file_document_id,
    file_document_index,
    header_document_id,
    normalize_dataset_name,
)
from .access import can_read, require_admin, require_owner, require_owner_or_admin
from .archive import ArchiveSummary, DatasetArchiveWriter
from .background import BackgroundTasks
from .blob_store import BLOB_ID_CONSTRAINT, BlobContent, BlobStore
from .counter_service import DOWNLOAD_COUNT, CounterService, counter_key
from .graph_store import GraphStore
from .notification_service import NotificationFanout
from .saga import Saga, SagaContext, SagaStep, StepPolicy
from .sequence_generator import SequenceGenerator

logger = logging.getLogger(__name__)

BEST_EFFORT = StepPolicy.BEST_EFFORT


def normalize_tags(tags: Optional[Iterable[str]]) -> List[str]:
    """Trimmed, non-empty, de-duplicated, in input order"""
    seen = []
    for tag in tags or []:
        tag = tag.strip()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


class DatasetService:
    """Coordinates dataset state across PostgreSQL, CouchDB, Neo4j and Redis"""

    def __init__(
        self,
        metadata,
        blobs: BlobStore,
        graph: GraphStore,
        counters: CounterService,
        notifications: NotificationFanout,
        sequences: SequenceGenerator,
        background: BackgroundTasks,
        settings: Optional[Settings] = None,
    ):
        self.metadata = metadata
        self.blobs = blobs
        self.graph = graph
        self.counters = counters
        self.notifications = notifications
        self.sequences = sequences
        self.background = background
        self.settings = settings or get_settings()

        uncommitted = "blobs keyed by a dataset id with no metadata record"
        self.sagas = {
            'create': Saga('dataset.create', [
                SagaStep('validate', self._validate_create),
                SagaStep('mint_id', self._mint_id),
                SagaStep('upload_blobs', self._upload_blobs, residue=uncommitted),
                SagaStep('insert_metadata', self._insert_dataset),
                SagaStep('create_graph_node', self._create_graph_node, BEST_EFFORT),
                SagaStep('init_counters', self._init_counters, BEST_EFFORT),
            ], background),
            'clone': Saga('dataset.clone', [
                SagaStep('validate', self._validate_clone),
                SagaStep('mint_id', self._mint_id),
                SagaStep('copy_blobs', self._copy_blobs, residue=uncommitted),
                SagaStep('insert_metadata', self._insert_dataset),
                SagaStep('create_graph_node', self._create_graph_node, BEST_EFFORT),
                SagaStep('init_counters', self._init_counters, BEST_EFFORT),
            ], background),
            'update': Saga('dataset.update', [
                SagaStep('validate', self._validate_update),
                SagaStep('add_files', self._add_files,
                         residue="new blobs not yet referenced by metadata"),
                SagaStep('store_header', self._store_header,
                         residue="header photo replaced ahead of the metadata write"),
                SagaStep('delete_removed_blobs', self._delete_removed_blobs,
                         residue="metadata still lists the removed blobs"),
                SagaStep('write_metadata', self._write_update),
                SagaStep('refresh_graph_node', self._refresh_graph_node, BEST_EFFORT),
            ], background),
            'delete': Saga('dataset.delete', [
                SagaStep('authorize', self._authorize_delete),
                SagaStep('delete_blobs', self._delete_blobs,
                         residue="metadata references deleted blobs"),
                SagaStep('delete_metadata', self._delete_metadata,
                         residue="graph node and counters without a dataset record"),
                SagaStep('delete_graph_node', self._delete_graph_node,
                         residue="counters without a dataset record"),
                SagaStep('delete_counters', self._delete_counters),
            ], background),
            'review': Saga('dataset.review', [
                SagaStep('apply_review', self._apply_review),
                SagaStep('notify_owner', self._notify_owner, BEST_EFFORT),
            ], background),
            'toggle_visibility': Saga('dataset.toggle_visibility', [
                SagaStep('set_visibility', self._set_visibility),
                SagaStep('notify_followers', self._notify_followers, BEST_EFFORT),
            ], background),
            'track_download': Saga('dataset.track_download', [
                SagaStep('record_edge', self._record_download_edge, BEST_EFFORT),
                SagaStep('increment_counter', self._increment_downloads, BEST_EFFORT),
            ], background),
        }

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _get(self, dataset_id: str) -> Dataset:
        dataset = await self.metadata.datasets.get_by_id(dataset_id)
        if dataset is None:
            raise NotFoundError("Dataset not found")
        return dataset

    async def _get_readable(self, dataset_id: str, requester: Optional[Identity]) -> Dataset:
        dataset = await self._get(dataset_id)
        if not can_read(dataset, requester):
            raise ForbiddenError("This dataset is not publicly available")
        return dataset

    def _check_file_count(self, count: int):
        if count < 1:
            raise InvalidInputError("A dataset needs at least one file")
        if count > self.settings.max_dataset_files:
            raise InvalidInputError(f"A dataset can hold at most {self.settings.max_dataset_files} files")

    async def _put_blob(self, document_id: str, content: bytes, filename: str, mime_type: str,
                        metadata: dict, overwrite: bool = False) -> FileReference:
        uploaded_at = utc_now()
        await self.blobs.put(
            document_id,
            content,
            filename,
            mime_type,
            metadata={**metadata, 'uploaded_at': uploaded_at.isoformat()},
            overwrite=overwrite,
        )
        return FileReference(
            document_id=document_id,
            filename=filename,
            mime_type=mime_type,
            size=len(content),
            uploaded_at=uploaded_at,
        )

    async def _upload_file(self, dataset_id: str, owner_user_id: str, index: int,
                           upload: UploadedFile) -> FileReference:
        return await self._put_blob(
            file_document_id(dataset_id, index),
            upload.content,
            upload.filename,
            upload.mime_type,
            {
                'type': 'dataset_file',
                'owner_user_id': owner_user_id,
                'dataset_id': dataset_id,
                'file_index': index,
            },
        )

    async def _upload_header(self, dataset_id: str, owner_user_id: str, upload: UploadedFile,
                             overwrite: bool = False) -> FileReference:
        return await self._put_blob(
            header_document_id(dataset_id),
            upload.content,
            upload.filename,
            upload.mime_type,
            {
                'type': 'header_photo',
                'owner_user_id': owner_user_id,
                'dataset_id': dataset_id,
            },
            overwrite=overwrite,
        )

    async def _delete_blob_quietly(self, document_id: str) -> bool:
        """Delete a blob; failures are logged and reported as False"""
        try:
            await self.blobs.delete(document_id)
            return True
        except DatecError as e:
            logger.warning(f"⚠️ Could not delete blob {document_id}: {e}")
            return False

    async def _with_live_counts(self, dataset: Dataset) -> Dataset:
        """Overlay the Redis download/vote counters on the stored record"""
        try:
            downloads, votes = await self.counters.dataset_counts(dataset.dataset_id)
        except DatecError as e:
            logger.warning(f"Counters unavailable for {dataset.dataset_id}: {e}")
            return dataset
        return replace(dataset, download_count=downloads, vote_count=votes)

    async def _run_minting(self, saga: Saga, context: SagaContext) -> SagaContext:
        """
        Run a saga that mints a dataset id, retrying on id collisions.

        A metadata primary-key collision is a race with a concurrent create and
        counts against `dataset_id_attempts`. A blob document collision means
        the sequence is held by blobs (often left by an aborted create); it is
        skipped without using an attempt, since those blobs are never
        overwritten.
        """
        attempts = max(self.settings.dataset_id_attempts, 1)
        attempt = 1
        while True:
            try:
                return await saga.run(context, timeout=self.settings.saga_timeout_seconds)
            except ConflictError as e:
                if not e.retryable or 'sequence' not in context:
                    raise
                held_by_blobs = e.constraint == BLOB_ID_CONSTRAINT
                if held_by_blobs:
                    if context['sequence'] >= MAX_DATASET_SEQUENCE:
                        raise
                elif attempt >= attempts:
                    raise
                else:
                    attempt += 1
                logger.warning(
                    f"Dataset id {context['dataset_id']} collided ({e.message}), "
                    f"retrying with the next sequence ({attempt}/{attempts})"
                )
                context['min_sequence'] = context.pop('sequence') + 1

    # =========================================================================
    # CREATE / CLONE
    # =========================================================================

    async def create(
        self,
        owner: Identity,
        dataset_name: str,
        files: Sequence[UploadedFile],
        description: str = "",
        tags: Optional[Iterable[str]] = None,
        header_photo: Optional[UploadedFile] = None,
        video_url: Optional[str] = None,
    ) -> Dataset:
        """
        Create a pending, private dataset.

        Raises:
            InvalidInputError: no files, too many files or empty name
            ConflictError: owner already has a dataset with this name
            UpstreamStoreError: blob upload or metadata insert failed
        """
        context = {
            'owner': owner,
            'dataset_name': normalize_dataset_name(dataset_name or ""),
            'description': (description or "").strip(),
            'tags': normalize_tags(tags),
            'files': list(files),
            'header_photo': header_photo,
            'video': VideoReference.from_url(video_url) if video_url and video_url.strip() else None,
            'parent_dataset_id': None,
        }
        context = await self._run_minting(self.sagas['create'], context)
        return context['dataset']

    async def _validate_create(self, ctx: SagaContext):
        if not ctx['dataset_name']:
            raise InvalidInputError("Dataset name is required")
        self._check_file_count(len(ctx['files']))
        if await self.metadata.datasets.name_taken(ctx['owner'].user_id, ctx['dataset_name']):
            raise ConflictError("You already have a dataset with this name")

    async def _mint_id(self, ctx: SagaContext):
        dataset_id = await self.sequences.next_dataset_id(
            ctx['owner'].username,
            min_sequence=ctx.get('min_sequence', 1),
        )
        ctx['dataset_id'] = dataset_id
        ctx['sequence'] = int(dataset_id.rsplit('_', 1)[1])

    async def _upload_blobs(self, ctx: SagaContext):
        dataset_id = ctx['dataset_id']
        owner_user_id = ctx['owner'].user_id

        refs = []
        for index, upload in enumerate(ctx['files'], start=1):
            refs.append(await self._upload_file(dataset_id, owner_user_id, index, upload))
        ctx['file_refs'] = refs

        header = ctx.get('header_photo')
        ctx['header_ref'] = (
            await self._upload_header(dataset_id, owner_user_id, header) if header else None
        )

    async def _insert_dataset(self, ctx: SagaContext):
        owner = ctx['owner']
        dataset = Dataset(
            dataset_id=ctx['dataset_id'],
            owner_user_id=owner.user_id,
            owner_username=owner.username,
            dataset_name=ctx['dataset_name'],
            description=ctx['description'],
            tags=list(ctx['tags']),
            status=DatasetStatus.PENDING,
            is_public=False,
            files=ctx['file_refs'],
            header_photo=ctx['header_ref'],
            video=ctx['video'],
            parent_dataset_id=ctx['parent_dataset_id'],
            created_at=utc_now(),
        )
        ctx['dataset'] = await self.metadata.datasets.insert(dataset)

    async def _create_graph_node(self, ctx: SagaContext):
        dataset = ctx['dataset']
        await self.graph.upsert_dataset(dataset.dataset_id, dataset.dataset_name, dataset.owner_user_id)

    async def _init_counters(self, ctx: SagaContext):
        await self.counters.init_dataset(ctx['dataset'].dataset_id)

    async def clone(self, dataset_id: str, requester: Identity, new_name: str) -> Dataset:
        """
        Copy an approved dataset (and its blobs) into a new pending dataset
        owned by `requester`, with parent_dataset_id pointing at the source.
        """
        context = {
            'source_id': dataset_id,
            'owner': requester,
            'dataset_name': normalize_dataset_name(new_name or ""),
        }
        context = await self._run_minting(self.sagas['clone'], context)
        clone = context['dataset']
        logger.info(f"Cloned {dataset_id} into {clone.dataset_id} for {requester.username}")
        return clone

    async def _validate_clone(self, ctx: SagaContext):
        source = await self._get(ctx['source_id'])
        requester = ctx['owner']
        name = ctx['dataset_name']

        if not name:
            raise InvalidInputError("New dataset name is required")
        if source.status is not DatasetStatus.APPROVED:
            raise InvalidStateError("Only approved datasets can be cloned")
        if not source.is_owned_by(requester.user_id) and not source.is_public:
            raise ForbiddenError("Can only clone public datasets from other users")
        if await self.metadata.datasets.name_taken(requester.user_id, name):
            if source.is_owned_by(requester.user_id) and source.dataset_name == name:
                raise InvalidInputError("New dataset name must be different from the original")
            raise ConflictError("You already have a dataset with this name")

        ctx.update({
            'source': source,
            'description': source.description,
            'tags': list(source.tags),
            'video': replace(source.video) if source.video else None,
            'parent_dataset_id': source.dataset_id,
        })

    async def _copy_blobs(self, ctx: SagaContext):
        source: Dataset = ctx['source']
        dataset_id = ctx['dataset_id']
        owner_user_id = ctx['owner'].user_id

        refs = []
        for index, ref in enumerate(source.files, start=1):
            blob = await self.blobs.get(ref.document_id)
            refs.append(await self._put_blob(
                file_document_id(dataset_id, index),
                blob.content,
                ref.filename,
                ref.mime_type,
                {
                    'type': 'dataset_file',
                    'owner_user_id': owner_user_id,
                    'dataset_id': dataset_id,
                    'file_index': index,
                    'cloned_from': ref.document_id,
                    'source_dataset_id': source.dataset_id,
                },
            ))
        ctx['file_refs'] = refs

        ctx['header_ref'] = None
        if source.header_photo:
            try:
                blob = await self.blobs.get(source.header_photo.document_id)
                ctx['header_ref'] = await self._put_blob(
                    header_document_id(dataset_id),
                    blob.content,
                    source.header_photo.filename,
                    source.header_photo.mime_type,
                    {
                        'type': 'header_photo',
                        'owner_user_id': owner_user_id,
                        'dataset_id': dataset_id,
                        'cloned_from': source.header_photo.document_id,
                        'source_dataset_id': source.dataset_id,
                    },
                )
            except DatecError as e:
                # the clone stays usable without a header photo
                logger.warning(f"⚠️ Header photo of {source.dataset_id} not cloned: {e}")

    # =========================================================================
    # STATUS / VISIBILITY
    # =========================================================================

    async def request_approval(self, dataset_id: str, requester: Identity) -> Dataset:
        """Resubmit a rejected dataset for review"""
        dataset = await self._get(dataset_id)
        require_owner(dataset, requester, "request approval for")
        if dataset.status is not DatasetStatus.REJECTED:
            raise InvalidStateError(f"Dataset is already {dataset.status.value}")

        updated = await self.metadata.datasets.transition_status(
            dataset_id, DatasetStatus.REJECTED, DatasetStatus.PENDING
        )
        if updated is None:
            raise InvalidStateError("Dataset status changed, reload and retry")
        return updated

    async def review(self, dataset_id: str, admin: Identity, action,
                     comment: Optional[str] = None) -> Dataset:
        """
        Approve or reject a pending dataset and notify its owner.

        Followers are not notified here; they hear about the dataset when the
        owner makes it public.
        """
        require_admin(admin)
        try:
            action = ReviewAction(action)
        except ValueError:
            raise InvalidInputError(f"Unknown review action: {action}") from None

        context = await self.sagas['review'].run({
            'dataset_id': dataset_id,
            'admin': admin,
            'action': action,
            'comment': comment.strip() if comment and comment.strip() else None,
        }, timeout=self.settings.saga_timeout_seconds)
        return context['dataset']

    async def _apply_review(self, ctx: SagaContext):
        dataset = await self._get(ctx['dataset_id'])
        if dataset.status is not DatasetStatus.PENDING:
            raise InvalidStateError(
                f"Only pending datasets can be reviewed (status: {dataset.status.value})"
            )

        action: ReviewAction = ctx['action']
        updated = await self.metadata.datasets.transition_status(
            dataset.dataset_id,
            DatasetStatus.PENDING,
            action.resulting_status,
            reviewed_by=ctx['admin'].username,
            review_comment=ctx['comment'],
        )
        if updated is None:
            raise InvalidStateError("Dataset is no longer pending review")
        ctx['dataset'] = updated
        logger.info(f"Dataset {dataset.dataset_id} {updated.status.value} by {ctx['admin'].username}")

    async def _notify_owner(self, ctx: SagaContext):
        dataset: Dataset = ctx['dataset']
        if ctx['action'] is ReviewAction.APPROVE:
            notification_type = DatasetApprovedNotification
        else:
            notification_type = DatasetRejectedNotification
        await self.notifications.send(dataset.owner_user_id, notification_type(
            dataset_id=dataset.dataset_id,
            dataset_name=dataset.dataset_name,
            reviewed_by=ctx['admin'].username,
            review_comment=ctx['comment'],
        ))

    async def toggle_visibility(self, dataset_id: str, owner: Identity, is_public: bool) -> Dataset:
        """
        Make a dataset public or private.

        Going public requires approval; every private -> public transition
        announces the dataset to the owner's followers in the background.
        """
        context = await self.sagas['toggle_visibility'].run({
            'dataset_id': dataset_id,
            'owner': owner,
            'is_public': bool(is_public),
        }, timeout=self.settings.saga_timeout_seconds)
        return context['dataset']

    async def _set_visibility(self, ctx: SagaContext):
        dataset = await self._get(ctx['dataset_id'])
        require_owner(dataset, ctx['owner'], "change visibility of")

        is_public = ctx['is_public']
        ctx['published'] = False
        if is_public and dataset.status is not DatasetStatus.APPROVED:
            raise InvalidStateError("Only approved datasets can be made public")
        if dataset.is_public == is_public:
            ctx['dataset'] = dataset
            return

        updated = await self.metadata.datasets.set_visibility(dataset.dataset_id, is_public)
        if updated is None:
            raise InvalidStateError("Dataset changed while updating visibility, reload and retry")
        ctx['dataset'] = updated
        ctx['published'] = is_public

    async def _notify_followers(self, ctx: SagaContext):
        if not ctx.get('published'):
            return
        dataset: Dataset = ctx['dataset']
        follower_ids = await self.graph.follower_ids(dataset.owner_user_id)
        if not follower_ids:
            return
        delivered = await self.notifications.broadcast(follower_ids, NewDatasetNotification(
            dataset_id=dataset.dataset_id,
            dataset_name=dataset.dataset_name,
            owner_username=dataset.owner_username,
        ))
        logger.info(f"Announced {dataset.dataset_id} to {delivered}/{len(follower_ids)} followers")

    # =========================================================================
    # UPDATE
    # =========================================================================

    async def update(
        self,
        dataset_id: str,
        owner: Identity,
        dataset_name: Optional[str] = None,
        description: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        video_url: Optional[str] = None,
        add_files: Sequence[UploadedFile] = (),
        remove_file_ids: Sequence[str] = (),
        header_photo: Optional[UploadedFile] = None,
        remove_header: bool = False,
    ) -> Dataset:
        """
        Owner edit. None leaves a field unchanged; an empty video_url clears
        the video. All field changes land in one metadata update.
        """
        context = await self.sagas['update'].run({
            'dataset_id': dataset_id,
            'owner': owner,
            'dataset_name': dataset_name,
            'description': description,
            'tags': tags,
            'video_url': video_url,
            'add_files': list(add_files),
            'remove_file_ids': list(dict.fromkeys(remove_file_ids)),
            'header_photo': header_photo,
            'remove_header': remove_header,
        }, timeout=self.settings.saga_timeout_seconds)
        return context['updated']

    async def _validate_update(self, ctx: SagaContext):
        dataset = await self._get(ctx['dataset_id'])
        owner = ctx['owner']
        require_owner(dataset, owner, "update")

        fields = {}
        if ctx['dataset_name'] is not None:
            name = normalize_dataset_name(ctx['dataset_name'])
            if not name:
                raise InvalidInputError("Dataset name is required")
            if name != dataset.dataset_name:
                if await self.metadata.datasets.name_taken(owner.user_id, name, dataset.dataset_id):
                    raise ConflictError("You already have a dataset with this name")
                fields['dataset_name'] = name
        if ctx['description'] is not None:
            fields['description'] = ctx['description'].strip()
        if ctx['tags'] is not None:
            fields['tags'] = normalize_tags(ctx['tags'])
        if ctx['video_url'] is not None:
            video_url = ctx['video_url'].strip()
            fields['tutorial_video_ref'] = VideoReference.from_url(video_url).to_dict() if video_url else None

        known = {ref.document_id for ref in dataset.files}
        for document_id in ctx['remove_file_ids']:
            if document_id not in known:
                raise NotFoundError(f"File {document_id} is not part of this dataset")
        remaining = len(dataset.files) - len(ctx['remove_file_ids'])
        self._check_file_count(remaining + len(ctx['add_files']))

        if ctx['header_photo'] is not None and ctx['remove_header']:
            raise InvalidInputError("Cannot replace and remove the header photo at once")

        ctx['dataset'] = dataset
        ctx['fields'] = fields
        ctx['file_refs'] = list(dataset.files)

    async def _add_files(self, ctx: SagaContext):
        uploads = ctx['add_files']
        if not uploads:
            return
        dataset: Dataset = ctx['dataset']

        # never reuse an index, even one whose blob is being removed
        next_index = max(
            (file_document_index(ref.document_id) or 0 for ref in dataset.files),
            default=0,
        ) + 1

        refs = list(ctx['file_refs'])
        for offset, upload in enumerate(uploads):
            refs.append(await self._upload_file(
                dataset.dataset_id, dataset.owner_user_id, next_index + offset, upload
            ))
        ctx['file_refs'] = refs
        ctx['fields']['file_references'] = [ref.to_dict() for ref in refs]

    async def _store_header(self, ctx: SagaContext):
        upload = ctx['header_photo']
        if upload is None:
            if ctx['remove_header'] and ctx['dataset'].header_photo:
                ctx['fields']['header_photo_ref'] = None
            return
        dataset: Dataset = ctx['dataset']
        # the header document id is fixed per dataset, so the new photo
        # replaces the old one in place
        ref = await self._upload_header(dataset.dataset_id, dataset.owner_user_id, upload, overwrite=True)
        ctx['fields']['header_photo_ref'] = ref.to_dict()

    async def _delete_removed_blobs(self, ctx: SagaContext):
        dataset: Dataset = ctx['dataset']
        removals = ctx['remove_file_ids']
        if ctx['remove_header'] and dataset.header_photo:
            await self._delete_blob_quietly(dataset.header_photo.document_id)
        if not removals:
            return
        for document_id in removals:
            # a failed delete still drops the reference; an orphaned blob
            # is preferred over a reference to a blob that should be gone
            await self._delete_blob_quietly(document_id)
        ctx['file_refs'] = [ref for ref in ctx['file_refs'] if ref.document_id not in removals]
        ctx['fields']['file_references'] = [ref.to_dict() for ref in ctx['file_refs']]

    async def _write_update(self, ctx: SagaContext):
        fields = ctx['fields']
        if not fields:
            ctx['updated'] = ctx['dataset']
            return
        updated = await self.metadata.datasets.update_fields(ctx['dataset_id'], fields)
        if updated is None:
            raise NotFoundError("Dataset was deleted during the update")
        ctx['updated'] = updated
        logger.info(f"Updated dataset {ctx['dataset_id']}: {', '.join(sorted(fields))}")

    async def _refresh_graph_node(self, ctx: SagaContext):
        if 'dataset_name' not in ctx['fields']:
            return
        dataset: Dataset = ctx['updated']
        await self.graph.upsert_dataset(dataset.dataset_id, dataset.dataset_name, dataset.owner_user_id)

    # =========================================================================
    # DELETE
    # =========================================================================

    async def delete(self, dataset_id: str, requester: Identity) -> None:
        """
        Delete a dataset everywhere: blobs, metadata (with votes and
        comments), graph node, counters - in that order.
        """
        context = await self.sagas['delete'].run({
            'dataset_id': dataset_id,
            'requester': requester,
        }, timeout=self.settings.saga_timeout_seconds)
        failed = context.get('blob_failures') or []
        logger.info(
            f"Deleted dataset {dataset_id} by {requester.username}"
            + (f" ({len(failed)} blobs left behind)" if failed else "")
        )

    async def _authorize_delete(self, ctx: SagaContext):
        dataset = await self._get(ctx['dataset_id'])
        require_owner_or_admin(dataset, ctx['requester'], "delete")
        ctx['dataset'] = dataset

    async def _delete_blobs(self, ctx: SagaContext):
        failed = []
        for document_id in ctx['dataset'].blob_document_ids():
            if not await self._delete_blob_quietly(document_id):
                failed.append(document_id)
        ctx['blob_failures'] = failed

    async def _delete_metadata(self, ctx: SagaContext):
        if not await self.metadata.datasets.delete_cascade(ctx['dataset_id']):
            raise NotFoundError("Dataset not found")

    async def _delete_graph_node(self, ctx: SagaContext):
        await self.graph.delete_dataset(ctx['dataset_id'])

    async def _delete_counters(self, ctx: SagaContext):
        await self.counters.delete_dataset(ctx['dataset_id'])

    # =========================================================================
    # DOWNLOADS
    # =========================================================================

    async def download_file(self, dataset_id: str, document_id: str,
                            requester: Optional[Identity] = None) -> BlobContent:
        """Single-file retrieval; never tracked"""
        dataset = await self._get_readable(dataset_id, requester)
        if dataset.find_blob(document_id) is None:
            raise NotFoundError("File not found in this dataset")
        return await self.blobs.get(document_id)

    async def download_archive(self, dataset_id: str, sink: BinaryIO,
                               requester: Optional[Identity] = None) -> ArchiveSummary:
        """
        Stream every data file of the dataset into `sink` as a zip archive.

        Tracking (DOWNLOADED edge + download counter) is dispatched in the
        background once the archive is opened, and only for non-owners.
        Files that cannot be fetched are skipped.
        """
        dataset = await self._get_readable(dataset_id, requester)

        with DatasetArchiveWriter(sink, dataset.dataset_id) as archive:
            if requester is None or not dataset.is_owned_by(requester.user_id):
                await self.sagas['track_download'].run({'dataset': dataset, 'requester': requester})

            for ref in dataset.files:
                try:
                    blob = await self.blobs.get(ref.document_id)
                except DatecError as e:
                    archive.skip(ref.filename, e.message)
                    continue
                archive.add(ref.filename, blob.content)

        return archive.summary

    async def _record_download_edge(self, ctx: SagaContext):
        requester: Optional[Identity] = ctx['requester']
        if requester is None:
            return
        await self.graph.record_download(requester.user_id, ctx['dataset'].dataset_id, requester.username)

    async def _increment_downloads(self, ctx: SagaContext):
        await self.counters.increment(counter_key(DOWNLOAD_COUNT, ctx['dataset'].dataset_id))

    async def download_stats(self, dataset_id: str, requester: Identity) -> DownloadStats:
        dataset = await self._get(dataset_id)
        require_owner_or_admin(dataset, requester, "view download statistics of")
        total = await self.counters.get(counter_key(DOWNLOAD_COUNT, dataset_id))
        history = await self.graph.download_history(dataset_id, self.settings.download_history_limit)
        unique = await self.graph.unique_downloaders(dataset_id)
        return DownloadStats(
            dataset_id=dataset_id,
            total_downloads=total,
            unique_downloaders=unique,
            recent_downloads=history,
        )

    # =========================================================================
    # READS
    # =========================================================================

    async def get(self, dataset_id: str, requester: Optional[Identity] = None) -> Dataset:
        dataset = await self._get_readable(dataset_id, requester)
        return await self._with_live_counts(dataset)

    async def search(self, query: str, limit: Optional[int] = None) -> List[Dataset]:
        return await self.metadata.datasets.search(query or "", limit or self.settings.search_limit)

    async def list_for_user(self, username: str, requester: Optional[Identity] = None) -> List[Dataset]:
        """All of a user's datasets for the owner and admins, listed ones otherwise"""
        user = await self.metadata.users.get_by_username(username)
        if user is None:
            raise NotFoundError("User not found")
        full_view = requester is not None and (requester.is_admin or requester.user_id == user.user_id)
        return await self.metadata.datasets.list_by_owner(user.user_id, listed_only=not full_view)

    async def list_pending(self, admin: Identity) -> List[Dataset]:
        """Review queue, oldest first"""
        require_admin(admin)
        return await self.metadata.datasets.list_by_status(DatasetStatus.PENDING)

    async def list_clones(self, dataset_id: str, requester: Optional[Identity] = None) -> List[Dataset]:
        await self._get_readable(dataset_id, requester)
        clones = await self.metadata.datasets.list_clones(dataset_id)
        return [clone for clone in clones if can_read(clone, requester)]

"""
User service - registration, profiles and the follow graph

Users live in PostgreSQL; Neo4j mirrors them as (:User) nodes for FOLLOWS
and DOWNLOADED edges. The graph node is best-effort: relationship writes
MERGE their endpoints, so a missing node is recreated on first use.
"""
import logging
from datetime import date
from typing import Dict, List, Optional

from datec.errors import ConflictError, DatecError, ForbiddenError, InvalidInputError, NotFoundError
from datec.models.api.identity import Identity
from datec.models.api.notification import NewFollowerNotification
from datec.models.api.upload import UploadedFile
from datec.models.domain.dataset import FileReference
from datec.models.domain.user import User
from datec.utils.datetime_utils import utc_now
from datec.utils.id_generator import avatar_document_id, generate_user_id
from .access import require_admin
from .background import BackgroundTasks
from .blob_store import BlobStore
from .graph_store import GraphStore
from .notification_service import NotificationFanout
from .saga import Saga, SagaContext, SagaStep, StepPolicy

logger = logging.getLogger(__name__)


class UserService:

    def __init__(
        self,
        metadata,
        blobs: BlobStore,
        graph: GraphStore,
        notifications: NotificationFanout,
        background: BackgroundTasks,
        search_limit: int = 20,
    ):
        self.metadata = metadata
        self.blobs = blobs
        self.graph = graph
        self.notifications = notifications
        self.background = background
        self.search_limit = search_limit

        self.sagas = {
            'register': Saga('user.register', [
                SagaStep('validate', self._validate_registration),
                SagaStep('upload_avatar', self._upload_registration_avatar,
                         residue="avatar blob for an unregistered user"),
                SagaStep('insert_user', self._insert_user),
                SagaStep('create_graph_node', self._create_graph_node, StepPolicy.BEST_EFFORT),
            ], background),
            'follow': Saga('user.follow', [
                SagaStep('create_edge', self._create_follow_edge),
                SagaStep('notify_followed', self._notify_followed, StepPolicy.BEST_EFFORT),
            ], background),
        }

    async def _get(self, username: str) -> User:
        user = await self.metadata.users.get_by_username(username)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def _put_avatar(self, user_id: str, upload: UploadedFile) -> FileReference:
        document_id = avatar_document_id(user_id)
        uploaded_at = utc_now()
        await self.blobs.put(
            document_id,
            upload.content,
            upload.filename,
            upload.mime_type,
            metadata={
                'type': 'avatar',
                'owner_user_id': user_id,
                'uploaded_at': uploaded_at.isoformat(),
            },
            overwrite=True,
        )
        return FileReference(
            document_id=document_id,
            filename=upload.filename,
            mime_type=upload.mime_type,
            size=upload.size,
            uploaded_at=uploaded_at,
        )

    # =========================================================================
    # REGISTRATION / PROFILE
    # =========================================================================

    async def register(
        self,
        username: str,
        email: str,
        full_name: str,
        password_hash: str,
        birth_date: Optional[date] = None,
        avatar: Optional[UploadedFile] = None,
    ) -> User:
        """
        Register a user under the id derived from username + email.

        `password_hash` is produced by the perimeter auth layer.
        """
        username = (username or "").strip()
        email = (email or "").strip().lower()
        if not username or not email:
            raise InvalidInputError("Username and email are required")

        context = await self.sagas['register'].run({
            'user_id': generate_user_id(username, email),
            'username': username,
            'email': email,
            'full_name': (full_name or "").strip(),
            'password_hash': password_hash,
            'birth_date': birth_date,
            'avatar': avatar,
        })
        return context['user']

    async def _validate_registration(self, ctx: SagaContext):
        users = self.metadata.users
        if await users.get_by_id(ctx['user_id']) is not None:
            raise ConflictError("User is already registered")
        if await users.get_by_username(ctx['username']) is not None:
            raise ConflictError("Username is already taken")
        if await users.get_by_email(ctx['email']) is not None:
            raise ConflictError("Email is already registered")

    async def _upload_registration_avatar(self, ctx: SagaContext):
        upload = ctx['avatar']
        ctx['avatar_ref'] = await self._put_avatar(ctx['user_id'], upload) if upload else None

    async def _insert_user(self, ctx: SagaContext):
        now = utc_now()
        ctx['user'] = await self.metadata.users.create(User(
            user_id=ctx['user_id'],
            username=ctx['username'],
            email=ctx['email'],
            full_name=ctx['full_name'],
            password_hash=ctx['password_hash'],
            birth_date=ctx['birth_date'],
            avatar=ctx['avatar_ref'],
            created_at=now,
            updated_at=now,
        ))

    async def _create_graph_node(self, ctx: SagaContext):
        user: User = ctx['user']
        await self.graph.upsert_user(user.user_id, user.username)

    async def get(self, username: str) -> User:
        return await self._get(username)

    async def search(self, query: str) -> List[User]:
        """Users whose username or full name contains `query` (case-insensitive)"""
        query = (query or "").strip()
        if not query:
            raise InvalidInputError("Search query is required")
        return await self.metadata.users.search(query, self.search_limit)

    async def list_all(self, admin: Identity) -> List[User]:
        """Admin-only directory of every user, newest first"""
        require_admin(admin)
        return await self.metadata.users.list_all()

    async def update_profile(
        self,
        requester: Identity,
        username: str,
        full_name: Optional[str] = None,
        email: Optional[str] = None,
        birth_date: Optional[date] = None,
        avatar: Optional[UploadedFile] = None,
    ) -> User:
        user = await self._get(username)
        if user.user_id != requester.user_id:
            raise ForbiddenError("You can only edit your own profile")

        fields: Dict = {}
        if full_name is not None:
            fields['full_name'] = full_name.strip()
        if email is not None:
            email = email.strip().lower()
            if email != user.email:
                other = await self.metadata.users.get_by_email(email)
                if other is not None and other.user_id != user.user_id:
                    raise ConflictError("Email is already registered")
                fields['email'] = email
        if birth_date is not None:
            fields['birth_date'] = birth_date
        if avatar is not None:
            if user.avatar:
                try:
                    await self.blobs.delete(user.avatar.document_id)
                except DatecError as e:
                    logger.warning(f"⚠️ Could not delete old avatar of {user.username}: {e}")
            fields['avatar_ref'] = (await self._put_avatar(user.user_id, avatar)).to_dict()

        updated = await self.metadata.users.update(user.user_id, fields)
        if updated is None:
            raise NotFoundError("User not found")
        return updated

    async def toggle_admin(self, admin: Identity, username: str) -> User:
        """Promote or demote a user; admins cannot demote themselves"""
        require_admin(admin)
        user = await self._get(username)
        if user.user_id == admin.user_id and user.is_admin:
            raise ForbiddenError("You cannot remove your own admin role")

        updated = await self.metadata.users.update(user.user_id, {'is_admin': not user.is_admin})
        if updated is None:
            raise NotFoundError("User not found")
        logger.info(f"{admin.username} set is_admin={updated.is_admin} for {updated.username}")
        return updated

    # =========================================================================
    # FOLLOWS
    # =========================================================================

    async def follow(self, requester: Identity, username: str) -> None:
        target = await self._get(username)
        if target.user_id == requester.user_id:
            raise InvalidInputError("You cannot follow yourself")
        if await self.graph.is_following(requester.user_id, target.user_id):
            raise ConflictError(f"You are already following {target.username}")

        await self.sagas['follow'].run({'follower': requester, 'target': target})

    async def _create_follow_edge(self, ctx: SagaContext):
        follower: Identity = ctx['follower']
        target: User = ctx['target']
        await self.graph.follow(follower.user_id, follower.username, target.user_id, target.username)

    async def _notify_followed(self, ctx: SagaContext):
        follower: Identity = ctx['follower']
        await self.notifications.send(ctx['target'].user_id, NewFollowerNotification(
            follower_user_id=follower.user_id,
            follower_username=follower.username,
        ))

    async def unfollow(self, requester: Identity, username: str) -> None:
        target = await self._get(username)
        if not await self.graph.unfollow(requester.user_id, target.user_id):
            raise NotFoundError(f"You are not following {target.username}")

    async def followers(self, username: str) -> List[Dict]:
        user = await self._get(username)
        return await self.graph.followers(user.user_id)

    async def following(self, username: str) -> List[Dict]:
        user = await self._get(username)
        return await self.graph.following(user.user_id)

"""
Store adapters and domain services
"""
from .background import BackgroundTasks
from .blob_store import BlobContent, BlobStore
from .comment_service import CommentService
from .counter_service import CounterService
from .dataset_service import DatasetService
from .ephemeral_store import EphemeralStore
from .graph_store import GraphStore
from .maintenance import OrphanReaper
from .message_service import MessageService
from .notification_service import NotificationFanout
from .saga import Saga, SagaStep, StepPolicy
from .sequence_generator import SequenceGenerator
from .user_service import UserService
from .vote_service import VoteService

__all__ = [
    'BackgroundTasks',
    'BlobContent',
    'BlobStore',
    'CommentService',
    'CounterService',
    'DatasetService',
    'EphemeralStore',
    'GraphStore',
    'MessageService',
    'NotificationFanout',
    'OrphanReaper',
    'Saga',
    'SagaStep',
    'SequenceGenerator',
    'StepPolicy',
    'UserService',
    'VoteService',
]

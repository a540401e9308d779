"""
Notification payloads

Notifications are a closed tagged union discriminated on `type`. Unknown
kinds are rejected when the payload is built or parsed, not when it is
delivered.
"""
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from datec.errors import InvalidInputError
from datec.utils.datetime_utils import utc_now


class NotificationKind(str, Enum):
    NEW_FOLLOWER = "new_follower"
    NEW_DATASET = "new_dataset"
    DATASET_APPROVED = "dataset_approved"
    DATASET_REJECTED = "dataset_rejected"


class _NotificationBase(BaseModel):
    created_at: datetime = Field(default_factory=utc_now)
    read: bool = False

    model_config = {"extra": "forbid"}

    @property
    def kind(self) -> NotificationKind:
        return NotificationKind(self.type)


class NewFollowerNotification(_NotificationBase):
    type: Literal["new_follower"] = "new_follower"
    follower_user_id: str
    follower_username: str


class NewDatasetNotification(_NotificationBase):
    """A followed user published a dataset"""
    type: Literal["new_dataset"] = "new_dataset"
    dataset_id: str
    dataset_name: str
    owner_username: str


class DatasetApprovedNotification(_NotificationBase):
    type: Literal["dataset_approved"] = "dataset_approved"
    dataset_id: str
    dataset_name: str
    reviewed_by: str
    review_comment: Optional[str] = None


class DatasetRejectedNotification(_NotificationBase):
    type: Literal["dataset_rejected"] = "dataset_rejected"
    dataset_id: str
    dataset_name: str
    reviewed_by: str
    review_comment: Optional[str] = None


Notification = Annotated[
    Union[
        NewFollowerNotification,
        NewDatasetNotification,
        DatasetApprovedNotification,
        DatasetRejectedNotification,
    ],
    Field(discriminator="type"),
]

NOTIFICATION_TYPES = (
    NewFollowerNotification,
    NewDatasetNotification,
    DatasetApprovedNotification,
    DatasetRejectedNotification,
)

_notification_adapter = TypeAdapter(Notification)


def parse_notification(data: Any) -> Notification:
    """
    Build a notification from a dict, JSON string or existing model.

    Raises:
        InvalidInputError: unknown kind or malformed payload
    """
    if isinstance(data, NOTIFICATION_TYPES):
        return data
    try:
        if isinstance(data, (str, bytes)):
            return _notification_adapter.validate_json(data)
        return _notification_adapter.validate_python(data)
    except ValidationError as e:
        raise InvalidInputError(f"Invalid notification: {e.errors()[0]['msg']}") from e

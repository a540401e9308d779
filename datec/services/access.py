"""
Access rules shared by the dataset, comment and vote services
"""
from typing import Optional

from datec.errors import ForbiddenError
from datec.models.api.identity import Identity
from datec.models.domain.dataset import Dataset


def can_read(dataset: Dataset, identity: Optional[Identity]) -> bool:
    """Approved public datasets are open; everything else is owner/admin only"""
    if dataset.is_listed:
        return True
    if identity is None:
        return False
    return identity.is_admin or dataset.is_owned_by(identity.user_id)


def require_owner(dataset: Dataset, identity: Identity, action: str):
    if not dataset.is_owned_by(identity.user_id):
        raise ForbiddenError(f"Only the owner can {action} this dataset")


def require_owner_or_admin(dataset: Dataset, identity: Identity, action: str):
    if not (identity.is_admin or dataset.is_owned_by(identity.user_id)):
        raise ForbiddenError(f"Only the owner or an admin can {action} this dataset")


def require_admin(identity: Identity):
    if not identity.is_admin:
        raise ForbiddenError("Admin access required")

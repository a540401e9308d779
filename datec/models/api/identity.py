"""
Pydantic model for the per-request identity
"""
from pydantic import BaseModel


class Identity(BaseModel):
    """
    Already-authenticated caller, supplied by the perimeter auth layer.

    Operations that allow anonymous access take Optional[Identity].
    """
    user_id: str
    username: str
    is_admin: bool = False

    model_config = {
        "from_attributes": True,
        "frozen": True,
    }

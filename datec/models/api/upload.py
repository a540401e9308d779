"""
Pydantic model for decoded file payloads
"""
from pydantic import BaseModel, Field, model_validator


class UploadedFile(BaseModel):
    """
    File already extracted from a multipart body.

    The upload layer enforces per-field size ceilings (avatar 2MB, header
    photo 5MB, dataset file 1GB) before the core sees the payload.
    """
    content: bytes
    filename: str = Field(min_length=1)
    mime_type: str = "application/octet-stream"
    size: int = -1

    @model_validator(mode='after')
    def fill_size(self):
        if self.size < 0:
            self.size = len(self.content)
        return self

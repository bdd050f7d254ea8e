from pydantic import Field

from app.schemas.common import CamelModel


class UploadRequestIn(CamelModel):
    file_name: str = Field(min_length=1, max_length=255)
    content_type: str = Field(min_length=1, max_length=100)


class UploadTargetOut(CamelModel):
    upload_url: str
    file_key: str
    expires_in: int


class UploadStoredOut(CamelModel):
    file_key: str

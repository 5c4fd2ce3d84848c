"""Object storage result models."""

from datetime import datetime

from pydantic import BaseModel


class UploadResult(BaseModel):
    object_key: str
    bucket: str
    namespace: str
    size: int
    duration_seconds: float
    etag: str = ""


class DownloadResult(BaseModel):
    object_key: str
    local_path: str
    size: int
    duration_seconds: float
    last_modified: datetime | None = None


class ObjectInfo(BaseModel):
    """One entry of a bucket listing."""

    key: str
    size: int = 0
    last_modified: datetime | None = None
    etag: str = ""

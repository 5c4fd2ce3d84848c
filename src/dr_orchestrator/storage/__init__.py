"""Remote object storage for backup artifacts.

Usage:
    from dr_orchestrator.storage import ObjectStoreGateway, object_key_for
"""

from dr_orchestrator.storage.gateway import ObjectStoreGateway, object_key_for
from dr_orchestrator.storage.models import DownloadResult, ObjectInfo, UploadResult

__all__ = [
    "ObjectStoreGateway",
    "object_key_for",
    "UploadResult",
    "DownloadResult",
    "ObjectInfo",
]

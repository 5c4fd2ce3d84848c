"""Streaming ``.tar.gz`` archive codec.

Usage:
    from dr_orchestrator.archive import build_archive, extract_single_file
"""

from dr_orchestrator.archive.codec import (
    ArchiveStats,
    archive_single_file,
    build_archive,
    compression_ratio,
    extract_single_file,
    is_excluded,
)

__all__ = [
    "ArchiveStats",
    "archive_single_file",
    "build_archive",
    "compression_ratio",
    "extract_single_file",
    "is_excluded",
]

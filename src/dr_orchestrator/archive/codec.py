"""Streaming gzip-compressed tar archives for backup artifacts.

Builds a ``.tar.gz`` container from a set of files and directories (or a
single database dump) and extracts the single embedded file back out for
restore.  Both directions stream through ``tarfile``'s pipe modes
(``w|gz`` / ``r|gz``) so peak memory is bounded by the copy buffer, not
by the archive size.

Usage:
    from dr_orchestrator.archive.codec import build_archive, extract_single_file

    with open("files.tar.gz", "wb") as out:
        stats = build_archive(["/etc/app", "/var/lib/app"], ["*.log", "tmp"], out)

    with open("files.tar.gz", "rb") as src:
        path = extract_single_file(src, "/tmp/restore")
"""

import logging
import os
import shutil
import tarfile
import zlib
from fnmatch import fnmatchcase
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Iterable, Iterator

from pydantic import BaseModel

from dr_orchestrator.errors import ArchiveError, ArtifactIOError, FormatError

logger = logging.getLogger(__name__)

COPY_BUFSIZE = 1024 * 1024


class ArchiveStats(BaseModel):
    """Counts collected while writing an archive."""

    file_count: int = 0
    total_uncompressed_bytes: int = 0


# ============================================================================
# Exclude rules
# ============================================================================


def is_excluded(path: str | os.PathLike, exclude_rules: Iterable[str]) -> bool:
    """Check whether a path matches any exclude rule.

    A rule is a glob pattern tested against both the full path and the
    base name.  A rule of the form ``<dir>/*`` (or ``<dir>/**``) also
    matches the directory ``<dir>`` itself, so the directory entry is
    pruned together with its contents.

    Args:
        path: Candidate file or directory path.
        exclude_rules: Glob patterns.  Empty patterns are ignored.

    Returns:
        ``True`` if the path should be skipped.

    Example:
        >>> is_excluded("data/app.log", ["*.log"])
        True
        >>> is_excluded("data/tmp", ["tmp/*"])
        True
    """
    full = os.fspath(path).replace(os.sep, "/").rstrip("/") or "/"
    base = PurePosixPath(full).name
    for rule in exclude_rules:
        if not rule:
            continue
        if fnmatchcase(full, rule) or fnmatchcase(base, rule):
            return True
        # "tmp/*" also covers the "tmp" directory entry
        for suffix in ("/**", "/*"):
            if rule.endswith(suffix):
                parent_rule = rule[: -len(suffix)]
                if parent_rule and (
                    fnmatchcase(full, parent_rule) or fnmatchcase(base, parent_rule)
                ):
                    return True
                break
    return False


def _walk(source: str, exclude_rules: list[str]) -> Iterator[str]:
    """Yield ``source`` and everything below it in lexical order.

    Excluded directories are not descended into.  Directory symlinks are
    yielded as entries but never followed.
    """
    if is_excluded(source, exclude_rules):
        logger.debug(f"Excluded: {source}")
        return
    yield source

    if os.path.islink(source) or not os.path.isdir(source):
        return

    with os.scandir(source) as it:
        children = sorted(it, key=lambda e: e.name)

    for child in children:
        child_path = os.path.join(source, child.name)
        if child.is_dir(follow_symlinks=False):
            yield from _walk(child_path, exclude_rules)
        elif is_excluded(child_path, exclude_rules):
            logger.debug(f"Excluded: {child_path}")
        else:
            yield child_path


# ============================================================================
# Writing
# ============================================================================


def _add_entry(tar: tarfile.TarFile, path: str, arcname: str, stats: ArchiveStats) -> None:
    """Append one filesystem entry to an open tar stream."""
    info = tar.gettarinfo(path, arcname=arcname)
    if info is None:
        # sockets and other unsupported file types
        logger.debug(f"Skipping unsupported file type: {path}")
        return

    if info.isreg():
        with open(path, "rb") as f:
            tar.addfile(info, f)
        stats.file_count += 1
        stats.total_uncompressed_bytes += info.size
    else:
        tar.addfile(info)


def build_archive(
    sources: Iterable[str | os.PathLike],
    exclude_rules: Iterable[str],
    destination: BinaryIO,
) -> ArchiveStats:
    """Write a gzip-compressed tar of ``sources`` to ``destination``.

    Every source is checked for existence before the first byte is
    written.  Sources are then walked recursively in lexical order;
    entries matching an exclude rule are skipped (directories with their
    whole subtree).  File contents are streamed, never buffered whole.

    Args:
        sources: Files and directories to archive.  Member names are the
            paths as given, with any leading ``/`` stripped.
        exclude_rules: Glob patterns, see ``is_excluded``.
        destination: Writable binary stream.  Not closed by this function.

    Returns:
        ``ArchiveStats`` with the number of regular files written and
        their total uncompressed size.

    Raises:
        ArtifactIOError: If a source does not exist, or any read or write
            fails.  The destination then holds a partial archive that the
            caller must discard.

    Example:
        with open("site.tar.gz", "wb") as out:
            stats = build_archive(["./site"], ["*.log"], out)
        print(stats.file_count, stats.total_uncompressed_bytes)
    """
    source_list = [os.fspath(s) for s in sources]
    rules = [r for r in exclude_rules if r]

    for source in source_list:
        if not os.path.lexists(source):
            raise ArtifactIOError(f"Source does not exist: {source}")

    stats = ArchiveStats()
    try:
        with tarfile.open(fileobj=destination, mode="w|gz", bufsize=COPY_BUFSIZE) as tar:
            for source in source_list:
                for path in _walk(source, rules):
                    _add_entry(tar, path, path, stats)
    except OSError as e:
        raise ArtifactIOError(f"Failed to write archive: {e}") from e

    logger.debug(
        f"Archived {stats.file_count} files "
        f"({stats.total_uncompressed_bytes} bytes uncompressed)"
    )
    return stats


def archive_single_file(source_path: str | os.PathLike, destination: BinaryIO) -> ArchiveStats:
    """Write a one-member ``.tar.gz`` holding ``source_path``.

    The member is named after the file's base name, which is what
    ``extract_single_file`` restores it as.

    Args:
        source_path: Regular file to archive (typically a SQL dump).
        destination: Writable binary stream.

    Returns:
        ``ArchiveStats`` with ``file_count == 1``.

    Raises:
        ArtifactIOError: If the file is missing or any read or write fails.
    """
    path = os.fspath(source_path)
    if not os.path.isfile(path):
        raise ArtifactIOError(f"Source does not exist: {path}")

    stats = ArchiveStats()
    try:
        with tarfile.open(fileobj=destination, mode="w|gz", bufsize=COPY_BUFSIZE) as tar:
            _add_entry(tar, path, os.path.basename(path), stats)
    except OSError as e:
        raise ArtifactIOError(f"Failed to write archive: {e}") from e
    return stats


# ============================================================================
# Reading
# ============================================================================


def extract_single_file(source: BinaryIO, destination_dir: str | os.PathLike) -> Path:
    """Extract the regular file(s) of a ``.tar.gz`` stream into a directory.

    Members are read in stream order.  Only regular files are written,
    each under its base name, so no member can escape ``destination_dir``.
    Directories, symlinks, and other member types are ignored.

    Args:
        source: Readable stream positioned at the start of a ``.tar.gz``.
        destination_dir: Directory to write into (created if missing).

    Returns:
        Path of the last regular file extracted.

    Raises:
        ArchiveError: If the stream holds no regular file.
        FormatError: If the gzip or tar framing is invalid.
        ArtifactIOError: If writing the extracted file fails.
    """
    dest = Path(destination_dir)
    dest.mkdir(parents=True, exist_ok=True)

    extracted: Path | None = None
    try:
        with tarfile.open(fileobj=source, mode="r|gz", bufsize=COPY_BUFSIZE) as tar:
            for member in tar:
                if not member.isreg():
                    continue
                name = PurePosixPath(member.name).name
                if not name:
                    continue
                member_stream = tar.extractfile(member)
                if member_stream is None:
                    continue
                target = dest / name
                try:
                    with open(target, "wb") as out:
                        shutil.copyfileobj(member_stream, out, COPY_BUFSIZE)
                except OSError as e:
                    raise ArtifactIOError(f"Failed to write {target}: {e}") from e
                logger.debug(f"Extracted {member.name} -> {target}")
                extracted = target
    except (tarfile.TarError, EOFError, zlib.error) as e:
        raise FormatError(f"Invalid archive: {e}") from e

    if extracted is None:
        raise ArchiveError("Archive contains no regular file to restore")
    return extracted


def compression_ratio(original_size: int, compressed_size: int) -> float:
    """Return ``1 - compressed/original``, or ``0.0`` for empty input.

    Example:
        >>> compression_ratio(1000, 250)
        0.75
        >>> compression_ratio(0, 20)
        0.0
    """
    if original_size <= 0:
        return 0.0
    return 1.0 - compressed_size / original_size

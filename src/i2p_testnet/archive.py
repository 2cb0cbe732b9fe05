"""Tar codec for payloads moved through the docker copy primitive."""

from __future__ import annotations

import io
import logging
import posixpath
import tarfile
import time
from collections.abc import Iterable
from typing import BinaryIO, Union

from i2p_testnet.errors import ArchiveCorrupt, ArchiveIOError
from i2p_testnet.models import ArchiveEntry, PathStat

FILE_MODE = 0o600
DIRECTORY_MODE = 0o755

EntryLike = Union[ArchiveEntry, tuple]

logger = logging.getLogger(__name__)


def _normalize_member_name(name: str) -> str | None:
    """Return the relative posix path for a member, or None when it escapes the root."""
    if name.startswith("/"):
        return None
    normalized = posixpath.normpath(name)
    if normalized in {"", "."}:
        return ""
    if normalized == ".." or normalized.startswith("../"):
        return None
    return normalized


def _coerce_entry(item: EntryLike) -> ArchiveEntry:
    if isinstance(item, ArchiveEntry):
        return item
    if len(item) == 2:
        path, data = item
        return ArchiveEntry(str(path), bytes(data), False)
    if len(item) == 3:
        path, data, is_dir = item
        return ArchiveEntry(str(path), bytes(data), bool(is_dir))
    raise ValueError(f"archive entries are (path, bytes[, is_dir]) tuples, got {item!r}")


def encode(entries: Iterable[EntryLike], mtime: float | None = None) -> bytes:
    """Pack entries into an uncompressed tar stream, preserving their order."""
    timestamp = int(time.time() if mtime is None else mtime)
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w", format=tarfile.PAX_FORMAT) as archive:
        for item in entries:
            entry = _coerce_entry(item)
            name = _normalize_member_name(entry.path)
            if not name:
                raise ValueError(f"archive paths must be relative and stay under the root: {entry.path!r}")
            info = tarfile.TarInfo(name=name)
            info.mtime = timestamp
            if entry.is_dir:
                info.type = tarfile.DIRTYPE
                info.mode = DIRECTORY_MODE
                archive.addfile(info)
                continue
            info.mode = FILE_MODE
            info.size = len(entry.data)
            archive.addfile(info, io.BytesIO(entry.data))
    return buffer.getvalue()


def _open_stream(stream: bytes | BinaryIO) -> tarfile.TarFile:
    fileobj = io.BytesIO(stream) if isinstance(stream, (bytes, bytearray, memoryview)) else stream
    try:
        return tarfile.open(fileobj=fileobj, mode="r|*")
    except tarfile.TarError as exc:
        raise ArchiveCorrupt(f"stream is not a readable archive: {exc}") from exc
    except OSError as exc:
        raise ArchiveIOError(f"failed reading archive stream: {exc}") from exc


def decode(stream: bytes | BinaryIO) -> list[ArchiveEntry]:
    """Unpack a tar stream into entries in archive order.

    Links, devices and fifos are skipped. Any member whose name is absolute
    or climbs out of the root makes the whole stream ``ArchiveCorrupt``.
    """
    entries: list[ArchiveEntry] = []
    archive = _open_stream(stream)
    try:
        for member in archive:
            name = _normalize_member_name(member.name)
            if name is None:
                raise ArchiveCorrupt(f"archive member escapes the destination root: {member.name!r}")
            if not name:
                continue
            if member.isdir():
                entries.append(ArchiveEntry(name, b"", True))
                continue
            if not member.isfile():
                logger.debug("Skipping non-regular archive member %s (type=%r)", name, member.type)
                continue
            handle = archive.extractfile(member)
            data = handle.read() if handle is not None else b""
            if len(data) != member.size:
                raise ArchiveCorrupt(f"archive member {name} is truncated")
            entries.append(ArchiveEntry(name, data, False))
    except tarfile.TarError as exc:
        raise ArchiveCorrupt(f"archive stream is damaged: {exc}") from exc
    except (EOFError, OSError) as exc:
        raise ArchiveIOError(f"archive stream ended early: {exc}") from exc
    finally:
        archive.close()
    return entries


def rebase(entries: Iterable[ArchiveEntry]) -> list[ArchiveEntry]:
    """Drop the leading path component of every entry.

    ``docker cp`` names the members of a copied directory under that
    directory's basename; rebasing lets the subtree land in a root with a
    different name. The entry naming the root itself disappears.
    """
    rebased: list[ArchiveEntry] = []
    for entry in entries:
        _, _, remainder = entry.path.partition("/")
        if not remainder:
            continue
        rebased.append(ArchiveEntry(remainder, entry.data, entry.is_dir))
    return rebased


def peek_stat(stream: bytes) -> PathStat:
    """Describe the first member of an archive produced by a copy-out."""
    archive = _open_stream(stream)
    try:
        member = archive.next()
    except tarfile.TarError as exc:
        raise ArchiveCorrupt(f"archive stream is damaged: {exc}") from exc
    finally:
        archive.close()
    if member is None:
        raise ArchiveCorrupt("archive stream has no members")
    return PathStat(
        name=posixpath.basename(member.name.rstrip("/")) or member.name,
        size=int(member.size),
        mode=int(member.mode),
        is_dir=member.isdir(),
    )

"""RouterInfo extraction: read a node's identity record and content-address it."""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import struct

from i2p_testnet.archive import decode
from i2p_testnet.errors import (
    ArchiveCorrupt,
    ArchiveIOError,
    RecordMalformed,
    RecordUnavailable,
    SandboxCommandError,
    SandboxPathNotFound,
    TransferFailed,
)
from i2p_testnet.models import IdentityRecord, RouterAddress
from i2p_testnet.sandbox.docker import SandboxControl

PUBLIC_KEY_LENGTH = 256
SIGNING_KEY_LENGTH = 128
HASH_LENGTH = 32
DATE_LENGTH = 8

CERT_NULL = 0
CERT_KEY = 5

SIG_DSA_SHA1 = 0
SIG_EDDSA_SHA512_ED25519 = 7

# Signature length by signing key type.
SIGNATURE_LENGTHS = {
    0: 40,
    1: 64,
    2: 96,
    3: 132,
    4: 256,
    5: 384,
    6: 512,
    7: 64,
    8: 64,
    11: 64,
}

I2P_ALTCHARS = b"-~"

logger = logging.getLogger(__name__)


def encode_hash(identity_hash: bytes) -> str:
    """I2P base64: the standard alphabet with ``-`` and ``~`` for ``+`` and ``/``."""
    return base64.b64encode(identity_hash, altchars=I2P_ALTCHARS).decode("ascii")


def decode_hash(encoded_hash: str) -> bytes:
    try:
        return base64.b64decode(encoded_hash.encode("ascii"), altchars=I2P_ALTCHARS, validate=True)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise ValueError(f"not an I2P base64 value: {encoded_hash!r}") from exc


class _Cursor:
    def __init__(self, raw: bytes) -> None:
        self.raw = raw
        self.offset = 0

    def take(self, count: int, what: str) -> bytes:
        end = self.offset + count
        if count < 0 or end > len(self.raw):
            raise RecordMalformed(
                f"router info truncated reading {what}: need {count} bytes at offset "
                f"{self.offset}, have {len(self.raw) - self.offset}"
            )
        chunk = self.raw[self.offset:end]
        self.offset = end
        return chunk

    def integer(self, width: int, what: str) -> int:
        return int.from_bytes(self.take(width, what), "big")

    def string(self, what: str) -> str:
        length = self.integer(1, f"{what} length")
        return self.take(length, what).decode("utf-8", errors="replace")


def _parse_mapping(payload: bytes, what: str) -> dict[str, str]:
    cursor = _Cursor(payload)
    mapping: dict[str, str] = {}
    while cursor.offset < len(payload):
        key = cursor.string(f"{what} key")
        if cursor.take(1, f"{what} separator") != b"=":
            raise RecordMalformed(f"{what} entry {key!r} is missing '='")
        value = cursor.string(f"{what} value")
        if cursor.take(1, f"{what} terminator") != b";":
            raise RecordMalformed(f"{what} entry {key!r} is missing ';'")
        mapping[key] = value
    return mapping


def _read_mapping(cursor: _Cursor, what: str) -> dict[str, str]:
    size = cursor.integer(2, f"{what} size")
    return _parse_mapping(cursor.take(size, what), what)


def _signature_type(cert_type: int, cert_payload: bytes) -> int:
    if cert_type != CERT_KEY:
        return SIG_DSA_SHA1
    if len(cert_payload) < 4:
        raise RecordMalformed("key certificate payload is shorter than 4 bytes")
    (sig_type,) = struct.unpack(">H", cert_payload[:2])
    return sig_type


def parse_router_info(raw: bytes) -> IdentityRecord:
    """Parse serialized RouterInfo bytes into an ``IdentityRecord``.

    The identity hash is SHA-256 over the RouterIdentity (keys plus
    certificate). The remainder of the structure is walked to reject
    truncated or corrupt records before anything is published.
    """
    cursor = _Cursor(bytes(raw))
    cursor.take(PUBLIC_KEY_LENGTH + SIGNING_KEY_LENGTH, "router identity keys")
    cert_type = cursor.integer(1, "certificate type")
    cert_length = cursor.integer(2, "certificate length")
    cert_payload = cursor.take(cert_length, "certificate payload")
    identity_end = cursor.offset
    sig_type = _signature_type(cert_type, cert_payload)
    if sig_type not in SIGNATURE_LENGTHS:
        raise RecordMalformed(f"unknown signing key type {sig_type}")

    published = cursor.integer(DATE_LENGTH, "published date")
    addresses: list[RouterAddress] = []
    for index in range(cursor.integer(1, "address count")):
        cost = cursor.integer(1, f"address {index} cost")
        expiration = cursor.integer(DATE_LENGTH, f"address {index} expiration")
        transport_style = cursor.string(f"address {index} transport style")
        options = _read_mapping(cursor, f"address {index} options")
        addresses.append(
            RouterAddress(
                cost=cost,
                expiration=expiration,
                transport_style=transport_style,
                options=options,
            )
        )
    peer_count = cursor.integer(1, "peer count")
    cursor.take(peer_count * HASH_LENGTH, "peer hashes")
    options = _read_mapping(cursor, "router options")
    cursor.take(SIGNATURE_LENGTHS[sig_type], "signature")

    identity_hash = hashlib.sha256(cursor.raw[:identity_end]).digest()
    return IdentityRecord(
        raw_bytes=cursor.raw,
        identity_hash=identity_hash,
        encoded_hash=encode_hash(identity_hash),
        published=published,
        signature_type=sig_type,
        addresses=tuple(addresses),
        options=options,
    )


class IdentityRecordReader:
    """Reads a node's own RouterInfo out of its container."""

    def __init__(self, control: SandboxControl, timeout: float | None = None) -> None:
        self._control = control
        self._timeout = timeout

    def read_raw(self, node: str, record_path: str, timeout: float | None = None) -> bytes:
        try:
            archive, stat = self._control.copy_from(
                node,
                record_path,
                timeout=self._timeout if timeout is None else timeout,
            )
        except SandboxPathNotFound as exc:
            raise RecordUnavailable(f"{record_path} does not exist in {node}") from exc
        except (SandboxCommandError, ArchiveCorrupt, ArchiveIOError) as exc:
            raise TransferFailed(f"copying {record_path} out of {node} failed: {exc}") from exc
        if not stat.is_regular:
            raise RecordUnavailable(f"{record_path} in {node} is not a regular file")
        try:
            entries = [entry for entry in decode(archive) if not entry.is_dir]
        except (ArchiveCorrupt, ArchiveIOError) as exc:
            raise TransferFailed(f"archive copied from {node}:{record_path} is unreadable: {exc}") from exc
        if len(entries) != 1:
            raise RecordUnavailable(
                f"{record_path} in {node} did not copy out as a single file ({len(entries)} entries)"
            )
        return entries[0].data

    def extract(self, node: str, record_path: str, timeout: float | None = None) -> IdentityRecord:
        raw = self.read_raw(node, record_path, timeout=timeout)
        record = parse_router_info(raw)
        logger.debug(
            "Extracted router info from %s: filename=%s size=%d caps=%s",
            node,
            record.filename,
            len(record.raw_bytes),
            record.caps,
        )
        return record

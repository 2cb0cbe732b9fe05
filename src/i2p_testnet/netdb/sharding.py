"""Shard keys for the shared netDb directory tree."""

from __future__ import annotations

import re
from dataclasses import dataclass

from i2p_testnet.errors import InvalidHash

ENCODED_HASH_LENGTH = 44
_ENCODED_HASH_PATTERN = re.compile(r"^[A-Za-z0-9\-~]{43}=$")


def validate_encoded_hash(encoded_hash: str) -> str:
    if not isinstance(encoded_hash, str) or len(encoded_hash) != ENCODED_HASH_LENGTH:
        raise InvalidHash(
            f"encoded identity hash must be {ENCODED_HASH_LENGTH} characters: {encoded_hash!r}"
        )
    if not _ENCODED_HASH_PATTERN.match(encoded_hash):
        raise InvalidHash(f"encoded identity hash is not I2P base64: {encoded_hash!r}")
    return encoded_hash


@dataclass(frozen=True)
class ShardingScheme:
    """Maps an encoded identity hash to a bucket directory name.

    ``prefix`` is a constant prepended to the first ``width`` characters of
    the hash. The i2p layout is ``r`` plus one character (``rA``, ``r~``),
    which is where i2pd and the Java router look for peer records.
    """

    name: str
    prefix: str
    width: int

    def shard_for(self, encoded_hash: str) -> str:
        validate_encoded_hash(encoded_hash)
        return f"{self.prefix}{encoded_hash[: self.width]}"


I2P_SCHEME = ShardingScheme(name="i2p", prefix="r", width=1)
RAW_PREFIX_SCHEME = ShardingScheme(name="raw", prefix="", width=2)

SCHEMES = {scheme.name: scheme for scheme in (I2P_SCHEME, RAW_PREFIX_SCHEME)}


def scheme_by_name(name: str) -> ShardingScheme:
    try:
        return SCHEMES[name.strip().lower()]
    except KeyError:
        known = ", ".join(sorted(SCHEMES))
        raise ValueError(f"Unknown shard scheme {name!r} (expected one of: {known})") from None

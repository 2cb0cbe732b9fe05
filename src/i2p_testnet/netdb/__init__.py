"""RouterInfo parsing and shard layout of the shared netDb."""

from i2p_testnet.netdb.routerinfo import IdentityRecordReader, encode_hash, parse_router_info
from i2p_testnet.netdb.sharding import (
    I2P_SCHEME,
    RAW_PREFIX_SCHEME,
    ShardingScheme,
    scheme_by_name,
    validate_encoded_hash,
)

__all__ = [
    "IdentityRecordReader",
    "encode_hash",
    "parse_router_info",
    "I2P_SCHEME",
    "RAW_PREFIX_SCHEME",
    "ShardingScheme",
    "scheme_by_name",
    "validate_encoded_hash",
]

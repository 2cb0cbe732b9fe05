"""NetDb synchronization for local multi-node I2P docker testnets."""

__version__ = "0.1.0"

"""Sandbox control primitive backed by the docker command line."""

from i2p_testnet.sandbox.docker import DockerCli, SandboxControl

__all__ = ["DockerCli", "SandboxControl"]

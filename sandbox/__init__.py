"""Sandbox — infrastructure layer for execution environments.

Usage:
    from sandbox import RuntimeContext, SandboxConfig, create_runtime

    context = RuntimeContext(create_runtime(SandboxConfig(provider="local")))
    await context.boot()
"""

from __future__ import annotations

from sandbox.base import MountTree, SandboxFileSystem, SandboxRuntime, SpawnedProcess
from sandbox.config import DockerConfig, SandboxConfig, resolve_sandbox_provider
from sandbox.context import RuntimeContext


def create_runtime(config: SandboxConfig) -> SandboxRuntime | None:
    """Factory: create a SandboxRuntime from config. None when provider is 'none'."""
    provider = config.provider

    if provider == "none":
        return None

    if provider == "local":
        from sandbox.local import LocalRuntime

        return LocalRuntime(root=config.root)

    if provider == "docker":
        from sandbox.docker import DockerRuntime

        return DockerRuntime(config=config.docker, root=config.root)

    raise ValueError(f"Unknown sandbox provider: {provider}")


__all__ = [
    "DockerConfig",
    "MountTree",
    "RuntimeContext",
    "SandboxConfig",
    "SandboxFileSystem",
    "SandboxRuntime",
    "SpawnedProcess",
    "create_runtime",
    "resolve_sandbox_provider",
]

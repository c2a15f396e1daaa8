"""Sandbox runtime configuration.

Priority: explicit config > CODEPAD_SANDBOX env > "local" (default)
"""

from __future__ import annotations

import os
from typing import Literal

from pydantic import BaseModel, Field

SandboxProviderName = Literal["local", "docker", "none"]


class DockerConfig(BaseModel):
    image: str = "node:20-slim"
    mount_path: str = "/workspace"
    command_timeout_sec: float = 20.0


class SandboxConfig(BaseModel):
    provider: SandboxProviderName = "local"
    # Host directory backing the sandbox filesystem; a temp dir when unset.
    root: str | None = None
    interpreter: str = "node"
    interpreter_args: list[str] = Field(default_factory=list)
    docker: DockerConfig = Field(default_factory=DockerConfig)


def resolve_sandbox_provider(cli_arg: str | None = None) -> str:
    if cli_arg:
        return cli_arg
    return os.getenv("CODEPAD_SANDBOX", "local")

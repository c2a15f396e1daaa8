"""Workspace configuration.

Priority: env overrides (CODEPAD_DB_PATH, CODEPAD_SANDBOX) > config file > defaults.
The config file is ~/.codepad/config.json unless CODEPAD_CONFIG points elsewhere.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from pydantic import BaseModel, Field

from sandbox.config import SandboxConfig
from workspace.local_import import DEFAULT_SKIPPED_NAMES
from workspace.mirror import DEFAULT_IGNORED_NAMES

logger = logging.getLogger(__name__)

CODEPAD_HOME = Path.home() / ".codepad"
DEFAULT_CONFIG_PATH = CODEPAD_HOME / "config.json"


class WorkspaceConfig(BaseModel):
    db_path: str = str(CODEPAD_HOME / "workspace.db")
    # Run the store on a dedicated worker thread behind the request channel.
    use_worker: bool = False
    # Seconds; None waits forever.
    request_timeout: float | None = 30.0
    enforce_unique_names: bool = False
    # Never mirrored into the sandbox; the sandbox owns these paths.
    ignored_names: list[str] = Field(default_factory=lambda: list(DEFAULT_IGNORED_NAMES))
    # Recorded but not descended into by import_directory.
    import_skipped_names: list[str] = Field(default_factory=lambda: list(DEFAULT_SKIPPED_NAMES))
    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)

    @classmethod
    def load(cls, path: str | Path | None = None) -> WorkspaceConfig:
        path = Path(path or os.getenv("CODEPAD_CONFIG") or DEFAULT_CONFIG_PATH).expanduser()
        data: dict = {}
        if path.exists():
            data = json.loads(path.read_text())
            logger.debug("Loaded workspace config from %s", path)

        config = cls(**data)
        db_path = os.getenv("CODEPAD_DB_PATH")
        if db_path:
            config.db_path = db_path
        provider = os.getenv("CODEPAD_SANDBOX")
        if provider:
            config.sandbox = SandboxConfig.model_validate({**config.sandbox.model_dump(), "provider": provider})
        return config

    def save(self, path: str | Path | None = None) -> Path:
        path = Path(path or DEFAULT_CONFIG_PATH).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.model_dump(), indent=2))
        return path

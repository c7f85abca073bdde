from __future__ import annotations

import re
import shutil
from pathlib import Path
from typing import Any, Callable
from uuid import uuid4

import pytest

from copytrader.config.settings import Settings

TARGET = "0xtarget"
OURS = "0xours"


def _safe_node_name(name: str) -> str:
    name = re.sub(r"[^A-Za-z0-9._-]+", "_", name).strip("._")
    return name or "test"


@pytest.fixture
def workspace_tmp_path(request: pytest.FixtureRequest) -> Path:
    """Temp dir rooted in the workspace (not system temp)."""
    root = Path.cwd() / ".pytest_tmp_workspace" / _safe_node_name(request.node.name) / uuid4().hex
    root.mkdir(parents=True, exist_ok=True)
    try:
        yield root
    finally:
        shutil.rmtree(root, ignore_errors=True)


@pytest.fixture
def make_settings(monkeypatch: pytest.MonkeyPatch) -> Callable[..., Settings]:
    """Build Settings without reading the developer's environment or .env."""
    for name in ("COPY_TRADING_TARGET_WALLET", "MAIN_WALLET_ADDRESS", "ARENA_API_KEY", "TESTNET"):
        monkeypatch.delenv(name, raising=False)

    def factory(copy: dict[str, Any] | None = None, **overrides: Any) -> Settings:
        data: dict[str, Any] = {
            "target_wallet": TARGET,
            "our_address": OURS,
            "arena_api_key": "test-key",
            "copy": {"dry_run": False, **(copy or {})},
        }
        data.update(overrides)
        return Settings(**data, _env_file=None)

    return factory

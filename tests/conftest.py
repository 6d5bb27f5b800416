"""Shared pytest configuration and path setup for test modules."""

import dataclasses
import sys
from pathlib import Path

import pytest

# Ensure repo root and src/ are on sys.path for all tests
_ROOT = Path(__file__).resolve().parents[1]
_SRC = _ROOT / "src"
for p in (str(_ROOT), str(_SRC)):
    if p not in sys.path:
        sys.path.insert(0, p)


@pytest.fixture(autouse=True)
def _restore_runtime_config():
    # 全局 RuntimeConfig 是进程内单例；每个测试结束后恢复其字段，避免测试之间相互影响
    from dphist.core.utils.config import get_config

    cfg = get_config()
    snapshot = {f.name: getattr(cfg, f.name) for f in dataclasses.fields(cfg)}
    snapshot["extra"] = dict(cfg.extra)
    yield
    for name, value in snapshot.items():
        setattr(cfg, name, value)

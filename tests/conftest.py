from __future__ import annotations

from pathlib import Path

import pytest

from tests.crawler_fakes import FakeSession, _configure_temp_paths


@pytest.fixture(autouse=True)
def _isolated_data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep every test's logs, checkpoint and store under ``tmp_path``."""

    FakeSession.opened = []
    FakeSession.closed = []
    return _configure_temp_paths(tmp_path, monkeypatch)

from __future__ import annotations

import pytest

from searchgate.app.runtime.store import reset_runtime_store


@pytest.fixture(autouse=True)
def reset_runtime_state() -> None:
    reset_runtime_store()

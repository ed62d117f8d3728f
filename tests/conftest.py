# pylint: disable=missing-module-docstring,missing-function-docstring

import json
from typing import Any

import pytest

from observability import logger


@pytest.fixture
def events(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    """Every JSONL event emitted during the test, decoded."""
    captured: list[dict[str, Any]] = []

    def fake_print(line: str) -> None:
        captured.append(json.loads(line))

    monkeypatch.setattr(logger, "_print", fake_print)
    monkeypatch.setattr(logger, "_enabled", True)
    return captured

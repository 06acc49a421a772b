from collections.abc import Callable
from pathlib import Path

import pytest

from backedup import LogLevel


class RecordingSink:
    def __init__(self) -> None:
        self.records: list[tuple[LogLevel, str]] = []

    def write(self, level: LogLevel, message: str) -> None:
        self.records.append((level, message))

    def messages(self, level: LogLevel) -> list[str]:
        return [message for record_level, message in self.records if record_level == level]


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def make_files(tmp_path: Path) -> Callable[[list[str]], list[Path]]:
    def _make_files(names: list[str]) -> list[Path]:
        files = []
        for name in names:
            file = tmp_path / name
            file.write_text(name)
            files.append(file)
        return files

    return _make_files

"""Tests for reading the TOML config file and building the configuration."""

from pathlib import Path

import pytest

from backedup import (
    ConfigError,
    ConfigNamespace,
    Granularity,
    NoSlotError,
    RegexExtractor,
    build_config,
    create_parser,
    read_config_file,
)

CONFIG_TEXT = r"""
pattern = ["*.log"]
regex = '(?P<year>\d{2})(?P<month>\d{2})(?P<day>\d{2})'

[slots]
yearly = 20
monthly = 12
daily = 30
hourly = 24
minutely = 60
"""


def _write_config(tmp_path: Path, text: str = CONFIG_TEXT) -> Path:
    config_file = tmp_path / "backedup.toml"
    config_file.write_text(text)
    return config_file


def _parse(*argv: str) -> ConfigNamespace:
    ns, _ = create_parser().parse_known_args(list(argv))
    return ConfigNamespace(**vars(ns))


def test_read_config(tmp_path) -> None:
    data = read_config_file(_write_config(tmp_path))
    assert data["pattern"] == ["*.log"]
    assert data["regex"] == r"(?P<year>\d{2})(?P<month>\d{2})(?P<day>\d{2})"
    assert data["slots"] == {"yearly": 20, "monthly": 12, "daily": 30, "hourly": 24, "minutely": 60}


def test_read_config_single_pattern_string(tmp_path) -> None:
    data = read_config_file(_write_config(tmp_path, 'pattern = "*.gz"\n[slots]\ndaily = 1\n'))
    assert data["pattern"] == ["*.gz"]


@pytest.mark.parametrize(
    "text, message",
    [
        ("colour = 'red'\n", "Unknown key"),
        ("[slots]\nweekly = 2\n", "Unknown slot 'weekly'"),
        ("[slots]\ndaily = -2\n", "Invalid value for slot 'daily'"),
        ("[slots]\ndaily = 'many'\n", "Invalid value for slot 'daily'"),
        ("[slots]\ndaily = true\n", "Invalid value for slot 'daily'"),
        ("slots = 3\n", "'slots' must be a table"),
        ("pattern = [1, 2]\n", "'pattern' must be a string or a list of strings"),
        ("execute = 'yes'\n", "'execute' must be of type bool"),
        ("path = 7\n", "'path' must be of type str"),
        ("[slots\n", "Problem parsing config file"),
    ],
)
def test_read_config_invalid(tmp_path, text: str, message: str) -> None:
    with pytest.raises(ConfigError, match=message):
        read_config_file(_write_config(tmp_path, text))


def test_read_config_missing_file(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        read_config_file(tmp_path / "missing.toml")


def test_build_config_from_file(tmp_path) -> None:
    config_file = _write_config(tmp_path)
    config = build_config(_parse(str(tmp_path), "-c", str(config_file)))
    assert config.policy.retain_count(Granularity.YEAR) == 20
    assert config.policy.retain_count(Granularity.MINUTE) == 60
    assert config.policy.retain_count(Granularity.SECOND) == 0
    assert config.include == ("*.log",)
    assert config.extractor.extract("150101.log") is not None
    assert config.path == tmp_path
    assert config.execute is False


def test_build_config_command_line_wins(tmp_path) -> None:
    """Values given on the command line override the config file, the rest comes from the file."""
    config_file = _write_config(tmp_path)
    args = _parse(str(tmp_path), "-c", str(config_file), "-d", "5", "-y", "0", "-p", "*.gz", "--regex", r"(?P<year>\d{4})(?P<month>\d{2})(?P<day>\d{2})")
    config = build_config(args)
    assert config.policy.retain_count(Granularity.DAY) == 5
    assert config.policy.retain_count(Granularity.YEAR) == 0
    assert config.policy.retain_count(Granularity.MONTH) == 12
    assert config.include == ("*.gz",)
    assert config.extractor is args.extractor
    assert config.extractor.extract("150101") is None


def test_build_config_path_and_execute_from_file(tmp_path) -> None:
    config_file = _write_config(tmp_path, f"path = '{tmp_path.as_posix()}'\nexecute = true\n[slots]\nmonthly = 3\n")
    config = build_config(_parse("-c", str(config_file)))
    assert config.path == tmp_path
    assert config.execute is True
    assert isinstance(config.extractor, RegexExtractor)
    assert config.include == ()


def test_build_config_without_slots() -> None:
    with pytest.raises(NoSlotError, match="At least one slot must be configured"):
        build_config(_parse(".", "-d", "0"))


def test_build_config_without_path(tmp_path) -> None:
    config_file = _write_config(tmp_path, "[slots]\ndaily = 3\n")
    with pytest.raises(ConfigError, match="No directory given"):
        build_config(_parse("-c", str(config_file)))


def test_build_config_invalid_regex_from_file(tmp_path) -> None:
    config_file = _write_config(tmp_path, "regex = '(?P<year>\\d{4})'\n[slots]\ndaily = 3\n")
    with pytest.raises(ConfigError, match='missing capture group for "month"'):
        build_config(_parse(str(tmp_path), "-c", str(config_file)))


def test_example_config_is_valid() -> None:
    """The example config shipped with the project should load."""
    data = read_config_file(Path(__file__).parent.parent / "backedup.example.toml")
    assert data["slots"] == {"yearly": 20, "monthly": 12, "daily": 30, "hourly": 24, "minutely": 0, "secondly": 0}
    assert data["pattern"] == ["*.sql.gz"]
    assert "regex" not in data

#
# backedup
#
# A small command line tool for rotating backup files by the timestamp encoded in their names.
#
# Licensed under the MIT License. See LICENSE file in the project root for license information.
#

import argparse
import logging
import os
import re
import sys
import tomllib
import traceback
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from fnmatch import fnmatch
from logging.handlers import SYSLOG_UDP_PORT, SysLogHandler
from pathlib import Path
from types import SimpleNamespace
from typing import Any, NamedTuple, NoReturn, Optional, Protocol, TextIO, Union, no_type_check


VERSION: str = "1.0.0"

REQUIRED_GROUPS: tuple[str, ...] = ("year", "month", "day")
OPTIONAL_GROUPS: tuple[str, ...] = ("hour", "minute", "second")

DEFAULT_PATTERN: str = r"""(?P<year>\d{4}) \D?
(?P<month>\d{2}) \D?
(?P<day>\d{2}) \D?
(
   # Optional components.
   (?P<hour>\d{2}) \D?
   (?P<minute>\d{2}) \D?
   (?P<second>\d{2})?
)?"""

SKIP_PATTERN_MISMATCH: str = "pattern-mismatch"
SKIP_NO_MATCH: str = "no match"
SKIP_INVALID_NAME: str = "invalid name"

CONFIG_FILE_KEYS: frozenset[str] = frozenset({"path", "execute", "pattern", "regex", "slots"})

LOG_TARGETS: tuple[str, ...] = ("syslog", "terminal", "both")

SlotKey = tuple[int, ...]


class ConfigError(ValueError):
    pass


class NoSlotError(ConfigError):
    def __init__(self) -> None:
        super().__init__("At least one slot must be configured")


class InvalidPatternError(ConfigError):
    pass


class MissingCaptureGroupError(ConfigError):
    def __init__(self, name: str) -> None:
        super().__init__(f'Regex missing capture group for "{name}" -- example: (?P<{name}>\\d{{2}})')
        self.name = name


class IntegrityCheckFailedError(Exception):
    pass


class ConfigNamespace(SimpleNamespace):
    pass


class Granularity(IntEnum):
    YEAR = 0
    MONTH = 1
    DAY = 2
    HOUR = 3
    MINUTE = 4
    SECOND = 5

    @property
    def key_length(self) -> int:
        return self.value + 1

    @property
    def label(self) -> str:
        return ("Years", "Months", "Days", "Hours", "Minutes", "Seconds")[self.value]

    @property
    def option_name(self) -> str:
        return ("yearly", "monthly", "daily", "hourly", "minutely", "secondly")[self.value]


class ExtractedTimestamp(NamedTuple):
    year: int
    month: int
    day: int
    hour: int = 0
    minute: int = 0
    second: int = 0

    def slot_key(self, granularity: Granularity) -> SlotKey:
        return tuple(self[: granularity.key_length])

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d} {self.hour:02d}:{self.minute:02d}:{self.second:02d}"


def format_slot_key(key: SlotKey) -> str:
    return "-".join(f"{value:02d}" for value in key)


@dataclass(frozen=True)
class RetentionPolicy:
    counts: Mapping[Granularity, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for granularity, count in self.counts.items():
            if count < 0:
                raise ConfigError(f"Invalid retain count for '{Granularity(granularity).option_name}': {count} (must be >= 0)")

    @classmethod
    def from_options(cls, **counts: int) -> "RetentionPolicy":
        unknown = sorted(set(counts) - {g.option_name for g in Granularity})
        if unknown:
            raise ConfigError(f"Unknown slot(s): {', '.join(unknown)}")
        return cls({g: counts.get(g.option_name) or 0 for g in Granularity})

    def retain_count(self, granularity: Granularity) -> int:
        return self.counts.get(granularity, 0)

    def configured(self) -> list[Granularity]:
        return [g for g in Granularity if self.retain_count(g) > 0]


class Extractor(Protocol):
    def extract(self, filename: str) -> Optional[ExtractedTimestamp]: ...


def _to_int(value: Optional[str]) -> Optional[int]:
    if value is None or not value.isdigit():  # int() would also take signs, blanks and underscores
        return None
    try:
        return int(value)
    except ValueError:
        return None


def extract_timestamp(filename: str, pattern: "re.Pattern[str]") -> Optional[ExtractedTimestamp]:
    match = pattern.search(filename)
    if match is None:
        return None
    groups = match.groupdict()
    year, month, day = (_to_int(groups.get(name)) for name in REQUIRED_GROUPS)
    if year is None or month is None or day is None:
        return None
    hour, minute, second = (_to_int(groups.get(name)) or 0 for name in OPTIONAL_GROUPS)
    return ExtractedTimestamp(year, month, day, hour, minute, second)


def compile_pattern(pattern: Optional[str] = None) -> "re.Pattern[str]":
    if pattern is None:
        compiled = re.compile(DEFAULT_PATTERN, re.VERBOSE)
    else:
        try:
            compiled = re.compile(pattern)
        except re.error as e:
            raise InvalidPatternError(f"Invalid regular expression '{pattern}': {e}") from e
    for name in REQUIRED_GROUPS:
        if name not in compiled.groupindex:
            raise MissingCaptureGroupError(name)
    return compiled


class RegexExtractor:
    """Timestamp extractor backed by a regular expression.

    The expression must declare the named groups ``year``, ``month`` and ``day``; ``hour``, ``minute``
    and ``second`` are optional and default to 0. Without a pattern the default one is used, which
    accepts names like ``db-2023-01-31_0800.sql`` or ``20230131235959.tar``.
    """

    pattern: "re.Pattern[str]"

    def __init__(self, pattern: Optional[str] = None) -> None:
        self.pattern = compile_pattern(pattern)

    def extract(self, filename: str) -> Optional[ExtractedTimestamp]:
        return extract_timestamp(filename, self.pattern)

    def __repr__(self) -> str:
        return f"RegexExtractor({self.pattern.pattern!r})"


def accepts(filename: str, patterns: Optional[Sequence[str]]) -> bool:
    return not patterns or any(fnmatch(filename, pattern) for pattern in patterns)


@dataclass(frozen=True)
class CandidateFile:
    path: Path
    timestamp: Optional[ExtractedTimestamp] = None
    accepted: bool = True

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def display_name(self) -> str:
        return os.fsencode(self.name).decode("utf-8", errors="backslashreplace")

    @property
    def valid_name(self) -> bool:
        try:
            self.name.encode("utf-8")
        except UnicodeEncodeError:  # undecodable bytes from the file system
            return False
        return True

    def skip_reason(self) -> Optional[str]:
        if not self.accepted:
            return SKIP_PATTERN_MISMATCH
        if not self.valid_name:
            return SKIP_INVALID_NAME
        if self.timestamp is None:
            return SKIP_NO_MATCH
        return None


class Verdict(Enum):
    KEPT = "kept"
    REMOVED = "removed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class Decision:
    verdict: Verdict
    reason: Optional[str] = None
    periods: tuple[Granularity, ...] = ()  # granularities voting to keep, coarsest first


@dataclass(frozen=True)
class PlanEntry:
    file: CandidateFile
    decision: Decision


class LogLevel(IntEnum):
    ERROR = 0
    WARN = 1
    INFO = 2
    DEBUG = 3

    @classmethod
    def from_name_or_number(cls, prefix: str) -> "LogLevel":
        try:
            return next(m for m in cls if m.name.startswith(prefix.upper()))
        except StopIteration:
            try:
                return cls(int(prefix))
            except ValueError:
                raise ValueError("Invalid log level: " + prefix)

    def to_logging_level(self) -> int:
        return (logging.ERROR, logging.WARNING, logging.INFO, logging.DEBUG)[self.value]


class LogSink(Protocol):
    def write(self, level: LogLevel, message: str) -> None: ...


class TerminalSink:
    _stream: Optional[TextIO]

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self._stream = stream

    def write(self, level: LogLevel, message: str) -> None:
        print(f"[{level.name}] {message}", file=self._stream or sys.stderr)


def default_syslog_address() -> Union[str, tuple[str, int]]:
    for socket_path in ("/dev/log", "/var/run/syslog"):
        if Path(socket_path).exists():
            return socket_path
    return ("localhost", SYSLOG_UDP_PORT)


class SyslogSink:
    _logger: logging.Logger

    def __init__(self, ident: str = "backedup", handler: Optional[logging.Handler] = None) -> None:
        if handler is None:
            syslog_handler = SysLogHandler(address=default_syslog_address(), facility=SysLogHandler.LOG_USER)
            syslog_handler.ident = f"{ident}: "
            handler = syslog_handler
        handler.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
        self._logger = logging.getLogger(f"{ident}.syslog")
        self._logger.propagate = False
        self._logger.setLevel(logging.DEBUG)
        for old_handler in list(self._logger.handlers):  # one handler per process
            self._logger.removeHandler(old_handler)
            old_handler.close()
        self._logger.addHandler(handler)

    def write(self, level: LogLevel, message: str) -> None:
        self._logger.log(level.to_logging_level(), message)


class MultiSink:
    _sinks: list[LogSink]

    def __init__(self, sinks: Iterable[LogSink]) -> None:
        self._sinks = list(sinks)

    def write(self, level: LogLevel, message: str) -> None:
        for sink in self._sinks:
            sink.write(level, message)


def create_sink(target: str) -> LogSink:
    if target == "terminal":
        return TerminalSink()
    if target == "syslog":
        return SyslogSink()
    if target == "both":
        return MultiSink([TerminalSink(), SyslogSink()])
    raise ValueError(f"Invalid log target: {target}")


class Logger:
    level: LogLevel
    sink: LogSink

    def __init__(self, level: LogLevel = LogLevel.INFO, sink: Optional[LogSink] = None) -> None:
        self.level = level
        self.sink = sink if sink is not None else TerminalSink()

    def has_log_level(self, level: LogLevel) -> bool:
        return level <= self.level

    def verbose(self, level: LogLevel, message: str) -> None:
        if self.has_log_level(level):
            self.sink.write(level, message)


@dataclass(frozen=True)
class Config:
    policy: RetentionPolicy
    extractor: Extractor = field(default_factory=RegexExtractor)
    include: tuple[str, ...] = ()
    path: Optional[Path] = None
    execute: bool = False


def bucket(files: Iterable[CandidateFile], granularity: Granularity) -> dict[SlotKey, list[CandidateFile]]:
    slots: dict[SlotKey, list[CandidateFile]] = defaultdict(list)
    for file in files:
        if file.timestamp is None:
            raise ValueError(f"File without timestamp cannot be put into a slot: {file.name}")
        slots[file.timestamp.slot_key(granularity)].append(file)
    return dict(slots)


def select_keep(slots: Mapping[SlotKey, Iterable[CandidateFile]], retain_count: int) -> set[CandidateFile]:
    if retain_count < 0:
        raise ValueError(f"Invalid retain count: {retain_count}")
    keep: set[CandidateFile] = set()
    for key in sorted(slots, reverse=True)[:retain_count]:  # newest slot first; a slot counts once, whatever its size
        keep.update(slots[key])
    return keep


@dataclass
class RetentionResult:
    keep: set[CandidateFile]
    remove: set[CandidateFile]
    votes: dict[CandidateFile, list[Granularity]]


class RetentionLogic:
    _candidates: list[CandidateFile]
    _keep: set[CandidateFile]
    _votes: dict[CandidateFile, list[Granularity]]
    _policy: RetentionPolicy
    _logger: Logger

    def __init__(self, candidates: Iterable[CandidateFile], policy: RetentionPolicy, logger: Logger) -> None:
        self._candidates = list(candidates)
        self._keep = set()
        self._votes = defaultdict(list)
        self._policy = policy
        self._logger = logger

    def _create_slots(self, granularity: Granularity) -> dict[SlotKey, list[CandidateFile]]:
        slots = bucket(self._candidates, granularity)
        if self._logger.has_log_level(LogLevel.DEBUG):
            for key in sorted(slots, reverse=True):
                self._logger.verbose(LogLevel.DEBUG, f"Slot {granularity.label}: {format_slot_key(key)} - {', '.join(file.name for file in slots[key])}")
        return slots

    def _process_slots(self, granularity: Granularity, slots: dict[SlotKey, list[CandidateFile]]) -> None:
        retain_count = self._policy.retain_count(granularity)
        selected = select_keep(slots, retain_count)
        self._logger.verbose(LogLevel.DEBUG, f"Keeping {len(selected)} file(s) from {min(retain_count, len(slots))}/{retain_count} slot(s) for {granularity.label}")
        for file in selected:
            self._votes[file].append(granularity)
        self._keep.update(selected)

    def process_retention_logic(self) -> RetentionResult:
        # Granularities are independent; the union of their votes is kept
        for granularity in Granularity:
            if self._policy.retain_count(granularity) > 0:
                self._process_slots(granularity, self._create_slots(granularity))
        if not self._policy.configured():
            self._logger.verbose(LogLevel.DEBUG, "No slot configured, every timestamped file is removed")

        remove = {file for file in self._candidates if file not in self._keep}

        if not len(self._candidates) == len(self._keep) + len(remove):
            raise IntegrityCheckFailedError(f"File count mismatch: some files are neither kept nor removed (all: {len(self._candidates)}, keep: {len(self._keep)}, remove: {len(remove)})!!")

        return RetentionResult(set(self._keep), remove, dict(self._votes))


@dataclass
class Plan:
    entries: list[PlanEntry]
    directory: Optional[Path] = None

    def select(self, verdict: Verdict) -> list[PlanEntry]:
        return [entry for entry in self.entries if entry.decision.verdict is verdict]

    @property
    def kept(self) -> list[CandidateFile]:
        return [entry.file for entry in self.select(Verdict.KEPT)]

    @property
    def removed(self) -> list[CandidateFile]:
        return [entry.file for entry in self.select(Verdict.REMOVED)]

    @property
    def skipped(self) -> list[CandidateFile]:
        return [entry.file for entry in self.select(Verdict.SKIPPED)]

    @property
    def decisions(self) -> dict[str, Decision]:
        return {entry.file.name: entry.decision for entry in self.entries}

    def render(self) -> str:
        kept, removed, skipped = self.select(Verdict.KEPT), self.select(Verdict.REMOVED), self.select(Verdict.SKIPPED)
        width = max((len(entry.file.display_name) for entry in self.entries), default=0)
        lines = [f"Plan for {self.directory}:" if self.directory is not None else "Plan:", ""]
        if not kept and not removed:
            lines.append("  Do nothing: no valid timestamps")
        else:
            lines.append(f"  Keep {len(kept)} file(s) matching period(s)")
            for entry in kept:
                periods = ",".join(g.label for g in entry.decision.periods)
                lines.append(f"    {entry.file.display_name:<{width}}  {entry.file.timestamp}  -> ({periods})")
            lines.append(f"  Remove {len(removed)} file(s) not matching periods")
            for entry in removed:
                lines.append(f"    {entry.file.display_name:<{width}}  {entry.file.timestamp}")
        if skipped:
            lines.append(f"  Skip {len(skipped)} file(s)")
            for entry in skipped:
                lines.append(f"    {entry.file.display_name:<{width}}  ({entry.decision.reason})")
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.render()


def build_plan(
    files: Sequence[CandidateFile],
    kept: set[CandidateFile],
    skipped: Mapping[CandidateFile, str],
    votes: Optional[Mapping[CandidateFile, Sequence[Granularity]]] = None,
    directory: Optional[Path] = None,
) -> Plan:
    if len({file.path for file in files}) != len(files):
        raise IntegrityCheckFailedError("File listing contains duplicates!!")

    timestamped: list[PlanEntry] = []
    skipped_entries: list[PlanEntry] = []
    for file in files:
        if file in skipped:
            skipped_entries.append(PlanEntry(file, Decision(Verdict.SKIPPED, reason=skipped[file])))
        elif file.timestamp is None:
            raise IntegrityCheckFailedError(f"File '{file.name}' is neither skipped nor timestamped!!")
        elif file in kept:
            timestamped.append(PlanEntry(file, Decision(Verdict.KEPT, periods=tuple((votes or {}).get(file, ())))))
        else:
            timestamped.append(PlanEntry(file, Decision(Verdict.REMOVED)))

    # Newest first (stable for equal timestamps), skipped files last in listing order
    timestamped.sort(key=lambda entry: entry.file.timestamp, reverse=True)
    return Plan(timestamped + skipped_entries, directory)


def make_plan(paths: Iterable[Path], config: Config, logger: Logger) -> Plan:
    candidates: list[CandidateFile] = []
    skipped: dict[CandidateFile, str] = {}
    for path in paths:
        file = CandidateFile(path, accepted=accepts(path.name, config.include))
        if file.accepted and file.valid_name:
            file = CandidateFile(path, config.extractor.extract(path.name))
        candidates.append(file)
        reason = file.skip_reason()
        if reason is not None:
            skipped[file] = reason
            logger.verbose(LogLevel.DEBUG, f"Skipping '{file.display_name}': {reason}")
        else:
            logger.verbose(LogLevel.DEBUG, f"Timestamp of '{file.display_name}': {file.timestamp}")

    result = RetentionLogic((file for file in candidates if file not in skipped), config.policy, logger).process_retention_logic()
    return build_plan(candidates, result.keep, skipped, result.votes, config.path)


def read_filelist(path: Union[str, Path]) -> list[Path]:
    base: Path = Path(path)
    if not base.exists():
        raise FileNotFoundError(f"Path not found: {base}")
    if not base.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {base}")
    return sorted((file for file in base.iterdir() if file.is_file()), key=lambda file: file.name)


@dataclass
class ExecutionResult:
    removed: list[Path] = field(default_factory=list)
    failed: list[tuple[Path, OSError]] = field(default_factory=list)


def run_deletion(file: CandidateFile, logger: Logger) -> Optional[OSError]:
    try:
        file.path.unlink()
    except OSError as e:  # Catch deletion error, log it, and continue
        logger.verbose(LogLevel.ERROR, f"failed to remove file {file.path}: {e}")
        return e
    logger.verbose(LogLevel.INFO, f"removed file {file.path}")
    return None


def execute_plan(plan: Plan, execute: bool, logger: Logger) -> ExecutionResult:
    result = ExecutionResult()
    if not execute:
        logger.verbose(LogLevel.DEBUG, f"Dry run, {len(plan.removed)} file(s) left in place")
        return result
    to_remove = plan.removed
    if not to_remove:
        logger.verbose(LogLevel.INFO, "No file to remove")
        return result
    logger.verbose(LogLevel.INFO, f"Executing plan to remove {len(to_remove)} and keep {len(plan.kept)} files")
    for file in to_remove:
        error = run_deletion(file, logger)
        if error is None:
            result.removed.append(file.path)
        else:
            result.failed.append((file.path, error))
    return result


def read_config_file(file: Union[str, Path]) -> dict[str, Any]:
    with open(file, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Problem parsing config file '{file}': {e}") from e

    unknown = sorted(set(data) - CONFIG_FILE_KEYS)
    if unknown:
        raise ConfigError(f"Unknown key(s) in config file '{file}': {', '.join(unknown)}")

    slots = data.get("slots", {})
    if not isinstance(slots, dict):
        raise ConfigError(f"'slots' must be a table in config file '{file}'")
    slot_names = {g.option_name for g in Granularity}
    for name, value in slots.items():
        if name not in slot_names:
            raise ConfigError(f"Unknown slot '{name}' in config file '{file}' (use {', '.join(g.option_name for g in Granularity)})")
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ConfigError(f"Invalid value for slot '{name}' in config file '{file}': must be an integer >= 0")

    # A single glob is accepted as well as a list of globs
    pattern = data.get("pattern", [])
    if isinstance(pattern, str):
        pattern = [pattern]
    if not isinstance(pattern, list) or not all(isinstance(p, str) for p in pattern):
        raise ConfigError(f"'pattern' must be a string or a list of strings in config file '{file}'")
    data["pattern"] = pattern

    for key, expected in (("regex", str), ("path", str), ("execute", bool)):
        if key in data and not isinstance(data[key], expected):
            raise ConfigError(f"'{key}' must be of type {expected.__name__} in config file '{file}'")
    return data


def build_config(args: ConfigNamespace) -> Config:
    file_values = read_config_file(args.config) if getattr(args, "config", None) else {}
    file_slots = file_values.get("slots", {})

    # Explicit command line values win over the config file
    counts = {}
    for granularity in Granularity:
        cli_value = getattr(args, granularity.option_name, None)
        counts[granularity] = cli_value if cli_value is not None else file_slots.get(granularity.option_name, 0)
    policy = RetentionPolicy(counts)
    if not policy.configured():
        raise NoSlotError()

    extractor: Extractor
    if getattr(args, "regex", None) is not None:
        extractor = getattr(args, "extractor", None) or RegexExtractor(args.regex)
    else:
        extractor = RegexExtractor(file_values.get("regex"))

    include = tuple(args.pattern) if getattr(args, "pattern", None) else tuple(file_values.get("pattern", ()))

    path = args.path if getattr(args, "path", None) is not None else file_values.get("path")
    if path is None:
        raise ConfigError("No directory given: pass a path or set 'path' in the config file")

    execute = bool(getattr(args, "execute", False) or file_values.get("execute", False))
    return Config(policy, extractor, include, Path(path), execute)


class ModernHelpFormatter(argparse.HelpFormatter):
    @no_type_check
    def __init__(self, *a, **kw) -> None:  # noqa: ANN002, ANN003
        super().__init__(*a, max_help_position=30, width=160, **kw)

    @no_type_check
    def start_section(self, heading) -> None:  # noqa: ANN001
        super().start_section(heading.capitalize())


class ModernStrictArgumentParser(argparse.ArgumentParser):
    @no_type_check
    def __init__(self, *a, **kw) -> None:  # noqa: ANN002, ANN003
        super().__init__(*a, **kw)
        self._errors: list[str] = []

    def add_error(self, msg: str) -> None:
        if msg not in self._errors:
            self._errors.append(msg)

    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        print("\nError(s):", file=sys.stderr)
        for line in message.split("\n"):
            print(f"  • {line}", file=sys.stderr)
        print("\nHint: Try '--help' for more information.", file=sys.stderr)
        sys.exit(2)

    # Argument type helpers
    def non_negative_int_argument(self, value: str) -> int:
        try:
            int_value = int(value)
            if int_value < 0:
                raise ValueError
        except ValueError:
            raise argparse.ArgumentTypeError(f"Invalid value '{value}': must be an integer >= 0")
        return int_value

    def verbose_argument(self, value: str) -> LogLevel:
        try:
            return LogLevel.from_name_or_number(value)
        except ValueError:
            raise argparse.ArgumentTypeError(f"Invalid verbose value '{value}' (use ERROR, WARN, INFO, DEBUG or 0, 1, 2, 3)")

    # Internal helper methods
    def _suggest(self, argument: str) -> list[str]:
        opts = [o for a in self._actions for o in a.option_strings if o.startswith("--")]
        cand = [o for o in opts if abs(len(o) - len(argument)) <= 2 and sum(a != b for a, b in zip(o, argument)) <= 2]
        return cand[:1]

    @no_type_check
    def _collect_raw_args(self, args):  # noqa: ANN202, ANN001
        if args is not None:
            return list(args)
        return sys.argv[1:]

    @no_type_check
    def _detect_duplicate_flags(self, raw_args) -> None:  # noqa: ANN001
        alias = {opt: action.option_strings[0] for action in self._actions for opt in action.option_strings}
        repeatable = {action.option_strings[0] for action in self._actions if isinstance(action, argparse._AppendAction)}
        seen = set()

        for tok in raw_args:
            if not tok.startswith("-") or tok == "-":
                continue

            # -d3, -d=3 and --daily=3 all name the same option
            opt = tok.split("=", 1)[0]
            if len(opt) > 2 and not opt.startswith("--"):
                opt = opt[:2]

            key = alias.get(opt, opt)
            if key in seen and key not in repeatable:
                self.add_error(f"Duplicate flag: {key}")
            seen.add(key)

    def _create_extractor(self, regex: str) -> Optional[RegexExtractor]:
        try:
            return RegexExtractor(regex)
        except ConfigError as e:
            self.add_error(str(e))
            return None

    @no_type_check
    def _validate_arguments(self, ns) -> None:  # noqa: ANN001
        if ns.verbose is None:
            ns.verbose = LogLevel.INFO

        # regex validation (and compilation)
        ns.extractor = self._create_extractor(ns.regex) if ns.regex is not None else None

        if ns.path is None and ns.config is None:
            self.add_error("No directory given (pass a path or a config file with 'path')")

    # Main hook
    @no_type_check
    def parse_known_args(self, args=None, namespace=None) -> tuple[argparse.Namespace, list[str]]:  # noqa: ANN001
        self._errors = []
        raw_args = self._collect_raw_args(args)
        self._detect_duplicate_flags(raw_args)

        ns, unknown = super().parse_known_args(raw_args, namespace or argparse.Namespace())

        if unknown:
            sug = self._suggest(unknown[0])
            if sug:
                self.add_error(f"Unknown option: {unknown[0]} (did you mean {sug[0]}?)")
            else:
                self.add_error(f"Unknown option: {unknown[0]}")

        self._validate_arguments(ns)

        if self._errors:
            self.error("\n".join(self._errors))

        return ns, unknown


def create_parser() -> ModernStrictArgumentParser:
    parser: ModernStrictArgumentParser = ModernStrictArgumentParser(
        description=f"backedup {VERSION}\n\nRotate backup files by the timestamp in their names, keeping the newest N slots per period",
        usage=("backedup [path] [options]\n\nExample:\n  backedup /var/backups -y 20 -m 12 -d 30 -p '*.tar.gz'"),
        epilog="Nothing is removed unless --execute is given (or 'execute = true' is set in the config file).",
        formatter_class=ModernHelpFormatter,
        add_help=False,
    )

    g_main = parser.add_argument_group("Main arguments")
    g_slots = parser.add_argument_group("Slot arguments")
    g_match = parser.add_argument_group("Matching arguments")
    g_behavior = parser.add_argument_group("Behavior arguments")
    g_common = parser.add_argument_group("Common arguments")

    g_main.add_argument("path", nargs="?", default=None, help="Directory holding the backups (recursion is not supported)")
    g_main.add_argument("--config", "-c", type=str, default=None, metavar="file", help="TOML config file (command line values take precedence)")

    # slot arguments (no defaults, so that the config file can fill them in)
    g_slots.add_argument("--yearly", "-y", type=parser.non_negative_int_argument, metavar="N", help="Keep files of the newest N years")
    g_slots.add_argument("--monthly", "-m", type=parser.non_negative_int_argument, metavar="N", help="Keep files of the newest N months")
    g_slots.add_argument("--daily", "-d", type=parser.non_negative_int_argument, metavar="N", help="Keep files of the newest N days")
    g_slots.add_argument("--hourly", "-h", type=parser.non_negative_int_argument, metavar="N", help="Keep files of the newest N hours")
    g_slots.add_argument("--minutely", "-M", type=parser.non_negative_int_argument, metavar="N", help="Keep files of the newest N minutes")
    g_slots.add_argument("--secondly", "-s", type=parser.non_negative_int_argument, metavar="N", help="Keep files of the newest N seconds")

    # fmt: off
    g_match.add_argument("--pattern", "-p", action="append", default=None, metavar="glob",
        help="Only consider files matching this glob (quote it to prevent shell expansion, can be given several times)")
    g_match.add_argument("--regex", "-r", type=str, default=None, metavar="regex",
        help=r"Alternate regex for parsing timestamps, naming at least year, month and day (e.g. '(?P<year>\d{2})(?P<month>\d{2})(?P<day>\d{2})')")

    g_behavior.add_argument("--execute", "-x", action="store_true", default=False, help="Execute the plan and remove timestamped files not matching a slot")
    g_behavior.add_argument("--log-target", type=str, choices=LOG_TARGETS, default="syslog", metavar="target",
        help="Where removals are logged: syslog, terminal, both (default: syslog)")
    g_behavior.add_argument("--verbose", "-V", "-v", type=parser.verbose_argument, default=None, nargs="?", const=LogLevel.INFO, metavar="lev",
        help="Verbosity level: 0 = error, 1 = warn, 2 = info, 3 = debug (default: 'info'; use numbers or names)")
    # fmt: on

    g_common.add_argument("--version", "-R", action="version", version=f"%(prog)s {VERSION}")
    g_common.add_argument("--help", "-H", action="help", help="Show this help message and exit")
    g_common.add_argument("--stacktrace", action="store_true", help=argparse.SUPPRESS)

    return parser


def parse_arguments() -> ConfigNamespace:
    parser = create_parser()
    args = parser.parse_args()
    return ConfigNamespace(**vars(args))


def handle_exception(exception: Exception, exit_code: int, stacktrace: bool, prefix: str = "") -> NoReturn:
    if stacktrace:
        traceback.print_exc()
    print(f"[{prefix or LogLevel.ERROR.name}] {exception}", file=sys.stderr)
    sys.exit(exit_code)


def main() -> None:
    args: Optional[ConfigNamespace] = None

    try:
        args = parse_arguments()
        config = build_config(args)
        logger = Logger(args.verbose, create_sink(args.log_target))

        logger.verbose(LogLevel.DEBUG, f"Parsed arguments: {args}")
        logger.verbose(LogLevel.DEBUG, f"Configuration: {config}")

        files = read_filelist(config.path)
        plan = make_plan(files, config, logger)
        print(plan.render())

        if config.execute:
            result = execute_plan(plan, True, logger)
            print(f"\nRemoved {len(result.removed)} file(s)" + (f", failed to remove {len(result.failed)} file(s)" if result.failed else ""))
        else:
            print(f"\nDry run: nothing removed (use --execute to remove {len(plan.removed)} file(s))")

    except OSError as e:
        handle_exception(e, 1, args.stacktrace if args is not None else True)
    except ValueError as e:
        handle_exception(e, 2, args.stacktrace if args is not None else True)
    except IntegrityCheckFailedError as e:
        handle_exception(e, 7, args.stacktrace if args is not None else True)
    except Exception as e:
        handle_exception(e, 9, args.stacktrace if args is not None else True, prefix="UNEXPECTED ERROR")


if __name__ == "__main__":
    main()

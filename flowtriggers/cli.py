"""Command-line trigger: dispatches sub-commands and their flags to handlers."""

from __future__ import annotations

import json
import logging
import math
import os
import sys
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar, Protocol, TextIO

logger = logging.getLogger(__name__)

OV_ARGS = "args"
OV_FLAGS = "flags"
DEFAULT_COMMAND = "default"
LOG_LEVEL_ENV = "FLOGO_LOG_LEVEL"

_LOG_LEVELS = {
    "TRACE": logging.DEBUG,
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}

_TRUE_WORDS = ("1", "t", "T", "TRUE", "true", "True")
_FALSE_WORDS = ("0", "f", "F", "FALSE", "false", "False")


class _Handler(Protocol):
    name: str
    settings: Mapping[str, Any]

    def handle(self, data: Any) -> Any: ...


class FlagError(ValueError):
    """A command line flag could not be parsed."""


def _parse_bool_word(text: str) -> bool:
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise ValueError(f"invalid boolean {text!r}")


def _to_bool(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return False if value.strip() == "" else _parse_bool_word(value.strip())
    return bool(value)


def _to_string(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"))
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _to_array(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, str):
        parsed = json.loads(value) if value else []
        if isinstance(parsed, list):
            return parsed
    raise TypeError(f"unable to coerce {value!r} to array")


def _to_object(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, str):
        parsed = json.loads(value) if value else {}
        if isinstance(parsed, dict):
            return parsed
    raise TypeError(f"unable to coerce {value!r} to object")


def _quote(text: str) -> str:
    if "`" not in text and all(ch.isprintable() for ch in text):
        return f"`{text}`"
    return json.dumps(text)


@dataclass
class Settings:
    """Trigger settings: single-command mode and the CLI's usage texts."""

    single_cmd: bool = False
    usage: str = ""
    long: str = ""

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> Settings:
        return cls(
            single_cmd=_to_bool(values.get("singleCmd")),
            usage=_to_string(values.get("usage")),
            long=_to_string(values.get("long")),
        )


@dataclass
class HandlerSettings:
    """Per-command settings: flag descriptions and usage texts."""

    flags: list[Any] = field(default_factory=list)
    usage: str = ""
    short: str = ""
    long: str = ""

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> HandlerSettings:
        return cls(
            flags=_to_array(values.get("flags")),
            usage=_to_string(values.get("usage")),
            short=_to_string(values.get("short")),
            long=_to_string(values.get("long")),
        )


@dataclass
class Output:
    """The arguments and flags passed to a command's handler."""

    args: list[Any] = field(default_factory=list)
    flags: dict[str, Any] = field(default_factory=dict)

    def to_map(self) -> dict[str, Any]:
        return {OV_ARGS: self.args, OV_FLAGS: self.flags}

    @classmethod
    def from_map(cls, values: Mapping[str, Any]) -> Output:
        return cls(args=_to_array(values.get(OV_ARGS)), flags=_to_object(values.get(OV_FLAGS)))


@dataclass
class Reply:
    """The data a command outputs."""

    data: Any = None

    def to_map(self) -> dict[str, Any]:
        return {"data": self.data}

    @classmethod
    def from_map(cls, values: Mapping[str, Any]) -> Reply:
        return cls(data=values.get("data"))


@dataclass(frozen=True)
class _Flag:
    name: str
    default: bool | str
    usage: str
    is_bool: bool

    @property
    def value_name(self) -> str:
        start = self.usage.find("`")
        if start >= 0:
            end = self.usage.find("`", start + 1)
            if end >= 0:
                return self.usage[start + 1 : end]
        return "" if self.is_bool else "string"


def _parse_flag_desc(desc: Any) -> _Flag:
    parts = str(desc).split("||")
    if len(parts) < 3:
        raise ValueError(
            f"invalid flag description {desc!r}, expected 'name || default || usage'"
        )
    name, value, usage = (part.strip() for part in parts[:3])
    if value.lower() in ("true", "false"):
        return _Flag(name, value.lower() == "true", usage, True)
    return _Flag(name, value, usage, False)


@dataclass
class _Command:
    handler: _Handler
    settings: HandlerSettings
    flags: dict[str, _Flag]

    def parse(self, argv: Sequence[str]) -> tuple[dict[str, Any], list[str]]:
        """Parse flags the way a standard flag set does; return values and remaining args."""
        values: dict[str, Any] = {name: flag.default for name, flag in self.flags.items()}
        args = list(argv)
        while args:
            arg = args[0]
            if len(arg) < 2 or not arg.startswith("-"):
                break
            minuses = 1
            if arg[1] == "-":
                minuses = 2
                if len(arg) == 2:
                    args.pop(0)
                    break
            name = arg[minuses:]
            if not name or name[0] in "-=":
                raise FlagError(f"bad flag syntax: {arg}")
            args.pop(0)
            name, has_value, value = name.partition("=")
            flag = self.flags.get(name)
            if flag is None:
                if name in ("help", "h"):
                    raise FlagError("flag: help requested")
                raise FlagError(f"flag provided but not defined: -{name}")
            if flag.is_bool:
                if has_value:
                    try:
                        values[name] = _parse_bool_word(value)
                    except ValueError:
                        raise FlagError(
                            f"invalid boolean value {json.dumps(value)} for -{name}: parse error"
                        ) from None
                else:
                    values[name] = True
            else:
                if not has_value:
                    if not args:
                        raise FlagError(f"flag needs an argument: -{name}")
                    value = args.pop(0)
                values[name] = value
        return values, args


class Trigger:
    """Runs one handler per sub-command of a command-line program."""

    current: ClassVar[Trigger | None] = None

    def __init__(self, config: Mapping[str, Any]) -> None:
        self.config = config
        self.id = _to_string(config.get("id"))
        self.app_version = _to_string(config.get("appVersion"))
        self.settings = Settings()
        self.commands: dict[str, _Command] = {}
        self.running = False
        Trigger.current = self

    def initialize(self, handlers: Iterable[_Handler]) -> None:
        handlers = list(handlers)
        if not handlers:
            raise ValueError(f"no commands found for cli trigger '{self.id}'")

        self.settings = Settings.from_dict(self.config.get("settings") or {})

        unnamed = False
        for handler in handlers:
            name = getattr(handler, "name", "") or ""
            if not name:
                if unnamed:
                    raise ValueError("at most one handler can be unamed in the cli trigger")
                unnamed = True
                name = DEFAULT_COMMAND
            if name in self.commands:
                raise ValueError("cannot have duplicate handler names in the cli trigger")

            settings = HandlerSettings.from_dict(handler.settings)
            flags: dict[str, _Flag] = {}
            for desc in settings.flags:
                flag = _parse_flag_desc(desc)
                if flag.name in flags:
                    raise ValueError(f"{name} flag redefined: {flag.name}")
                flags[flag.name] = flag

            logger.debug("Adding command %s", name)
            self.commands[name] = _Command(handler, settings, flags)

    def start(self) -> None:
        """Mark the trigger running; commands run when the program is invoked."""
        self.running = True
        logger.debug("cli trigger '%s' started with %d command(s)", self.id, len(self.commands))

    def stop(self) -> None:
        """Mark the trigger stopped."""
        self.running = False
        logger.debug("cli trigger '%s' stopped", self.id)

    def invoke(self, handler: _Handler, flags: Mapping[str, Any], args: Sequence[str]) -> str:
        """Run a handler with the parsed flags and arguments; return its reply as text."""
        logger.debug("invoking handler '%s'", getattr(handler, "name", ""))
        results = handler.handle({OV_ARGS: list(args), OV_FLAGS: dict(flags)})
        return _to_string(Reply.from_map(results or {}).data)

    def run(self, argv: Sequence[str], cli_name: str) -> str:
        """Dispatch command-line arguments; exits the program for help, version and errors."""
        argv = list(argv)

        if not argv:
            if self.settings.single_cmd:
                command = next(iter(self.commands.values()), None)
                if command is None:
                    sys.stderr.write(
                        "Error: cli improperly configured, needs at least one handler\n"
                    )
                    raise SystemExit(1)
                flags, args = self._flags_and_args(command, cli_name, argv)
                return self.invoke(command.handler, flags, args)
            self._print_main_usage(cli_name, is_err=False)
            raise SystemExit(0)

        cmd_name = argv[0]

        if cmd_name.casefold() == "help":
            if len(argv) == 1:
                self._print_main_usage(cli_name, is_err=False)
                raise SystemExit(0)
            if argv[1] not in self.commands:
                sys.stderr.write(f"Error: unknown command {_quote(cmd_name)}\n")
                self._print_main_usage(cli_name, is_err=True)
                raise SystemExit(1)
            self._print_command_usage(cli_name, argv[1], is_err=False)
            raise SystemExit(0)

        if cmd_name.casefold() == "version":
            sys.stdout.write(f"{cli_name} version {self.app_version}\n")
            raise SystemExit(0)

        command = self.commands.get(cmd_name)
        if command is None:
            sys.stderr.write(f"Error: unknown command {_quote(cmd_name)}\n")
            self._print_main_usage(cli_name, is_err=True)
            raise SystemExit(1)

        flags, args = self._flags_and_args(command, cli_name, argv[1:])
        return self.invoke(command.handler, flags, args)

    def _flags_and_args(
        self, command: _Command, cli_name: str, argv: Sequence[str]
    ) -> tuple[dict[str, Any], list[str]]:
        try:
            return command.parse(argv)
        except FlagError as err:
            sys.stderr.write(f"Error: {err}.\n")
            name = next(n for n, c in self.commands.items() if c is command)
            self._print_command_usage(cli_name, name, is_err=True)
            raise SystemExit(1) from None

    def _print_main_usage(self, cli_name: str, is_err: bool) -> None:
        stream: TextIO = sys.stderr if is_err else sys.stdout
        if not is_err:
            stream.write(self.settings.long + "\n")
        stream.write(render_main_usage(cli_name, self))
        stream.flush()

    def _print_command_usage(self, cli_name: str, command_name: str, is_err: bool) -> None:
        stream: TextIO = sys.stderr if is_err else sys.stdout
        if not is_err:
            stream.write(self.commands[command_name].settings.long + "\n")
        stream.write(render_command_usage(cli_name, self, command_name))
        stream.flush()


def render_main_usage(cli_name: str, trigger: Trigger) -> str:
    """The program's usage text listing every command."""
    commands = [(name, cmd.settings.short) for name, cmd in trigger.commands.items()]
    commands.append(("help", "help on command"))
    commands.append(("version", "prints cli version"))
    lines = "".join(f"\n    {name:<12} {short}" for name, short in commands)
    return f"Usage:\n    {cli_name} {trigger.settings.usage}\n\nCommands:{lines}\n"


def render_command_usage(cli_name: str, trigger: Trigger, command_name: str) -> str:
    """The usage text of one command, listing its flags in name order."""
    command = trigger.commands[command_name]
    handler_name = getattr(command.handler, "name", "") or ""
    lines = "".join(
        f"\n    {'-' + flag.name + ' ' + flag.value_name:<20} {flag.usage}"
        for flag in sorted(command.flags.values(), key=lambda f: f.name)
    )
    return (
        f"Usage:\n    {cli_name} {handler_name} {command.settings.usage}\n\n"
        f"Flags: {lines}\n\n"
    )


def _configure_log_level() -> None:
    level = os.environ.get(LOG_LEVEL_ENV, "")
    if not level:
        logging.getLogger().setLevel(logging.ERROR)
        logger.setLevel(logging.ERROR)
    else:
        logger.setLevel(_LOG_LEVELS.get(level.strip().upper(), logging.INFO))


def invoke(argv: Sequence[str] | None = None) -> str:
    """Run the most recently created CLI trigger against the command line."""
    trigger = Trigger.current
    if trigger is None:
        raise RuntimeError("no cli trigger has been created")
    _configure_log_level()
    if argv is None:
        argv = sys.argv[1:]
    cli_name = Path(sys.argv[0]).name if sys.argv and sys.argv[0] else "cli"
    return trigger.run(argv, cli_name)


def main(argv: Sequence[str] | None = None) -> int:
    """Program entry point: print the command's reply, or the error."""
    try:
        result = invoke(argv)
    except Exception as err:
        sys.stderr.write(f"error: {err}")
        return 1
    sys.stdout.write(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
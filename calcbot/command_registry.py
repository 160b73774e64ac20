from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml

logger = logging.getLogger("calcbot.commands")

DEFAULT_COMMANDS_PATH = str(Path(__file__).resolve().parents[1] / "config" / "commands.yaml")


@dataclass(frozen=True)
class CommandReply:
    """Handler output: the message text plus the evaluation outcome it came from, if any."""

    content: str
    evaluation: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class CommandOption:
    name: str
    type: int
    description: str
    required: bool = False


@dataclass(frozen=True)
class CommandSpec:
    name: str
    description: str
    handler: Callable[..., Any]
    options: List[CommandOption] = field(default_factory=list)
    ephemeral: bool = False

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"name": self.name, "description": self.description}
        if self.options:
            payload["options"] = [
                {
                    "name": option.name,
                    "type": option.type,
                    "description": option.description,
                    "required": option.required,
                }
                for option in self.options
            ]
        return payload


def load_command_definitions(path: Optional[str] = None) -> List[Dict[str, Any]]:
    """Read command metadata from YAML.

    The same file feeds runtime dispatch and command registration, so both
    always agree on names and options.
    """
    commands_path = path or os.getenv("CALC_COMMANDS_PATH", DEFAULT_COMMANDS_PATH)
    if not os.path.exists(commands_path):
        logger.warning("Command definitions missing", extra={"extra": {"path": commands_path}})
        return []
    with open(commands_path, "rb") as handle:
        payload = yaml.safe_load(handle) or {}
    commands = payload.get("commands", []) or []
    return [entry for entry in commands if isinstance(entry, dict) and entry.get("name")]


def _parse_options(raw_options: Any) -> List[CommandOption]:
    options: List[CommandOption] = []
    for raw in raw_options or []:
        if not isinstance(raw, dict) or not raw.get("name"):
            continue
        options.append(
            CommandOption(
                name=str(raw["name"]),
                type=int(raw.get("type", 3)),
                description=str(raw.get("description", "")),
                required=bool(raw.get("required", False)),
            )
        )
    return options


class CommandRegistry:
    """Command registry with bounded, scrubbed output."""

    def __init__(self) -> None:
        self._commands: Dict[str, CommandSpec] = {}
        self._output_max_chars = int(os.getenv("CALC_COMMAND_OUTPUT_MAX_CHARS", "2000"))

    @classmethod
    def from_definitions(
        cls,
        definitions: List[Dict[str, Any]],
        handlers: Dict[str, Callable[..., Any]],
    ) -> "CommandRegistry":
        registry = cls()
        for entry in definitions:
            name = str(entry["name"]).lower()
            handler = handlers.get(name)
            if handler is None:
                logger.warning("No handler for command", extra={"extra": {"command": name}})
                continue
            registry.register(
                CommandSpec(
                    name=name,
                    description=str(entry.get("description", "")),
                    handler=handler,
                    options=_parse_options(entry.get("options")),
                    ephemeral=bool(entry.get("ephemeral", False)),
                )
            )
        return registry

    def register(self, command: CommandSpec) -> None:
        key = command.name.lower()
        if key in self._commands:
            raise ValueError(f"Command already registered: {command.name}")
        self._commands[key] = command

    def list_commands(self) -> List[CommandSpec]:
        return list(self._commands.values())

    def get(self, name: str) -> Optional[CommandSpec]:
        return self._commands.get((name or "").lower())

    def execute(self, name: str, **options: Any) -> Dict[str, Any]:
        command = self.get(name)
        if not command:
            return {"status": "error", "error": f"unknown_command:{name}"}
        missing = [
            option.name
            for option in command.options
            if option.required and options.get(option.name) is None
        ]
        if missing:
            return {
                "status": "error",
                "command": command.name,
                "error": f"missing_option:{','.join(missing)}",
            }
        try:
            result = command.handler(**options)
        except Exception as exc:
            logger.exception("Command handler failed", extra={"extra": {"command": command.name}})
            return {"status": "error", "command": command.name, "error": self._scrub_and_cap(str(exc))[0]}
        evaluation = None
        if isinstance(result, CommandReply):
            result, evaluation = result.content, result.evaluation
        formatted, truncated = self._scrub_and_cap(str(result))
        response: Dict[str, Any] = {"status": "ok", "command": command.name, "result": formatted}
        if truncated:
            response["truncated"] = True
        if evaluation is not None:
            response["evaluation"] = evaluation
        return response

    def _scrub_and_cap(self, text: str) -> tuple[str, bool]:
        scrubbed = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]+", " ", text or "")
        truncated = False
        if self._output_max_chars > 0 and len(scrubbed) > self._output_max_chars:
            scrubbed = scrubbed[: self._output_max_chars].rstrip()
            truncated = True
        return scrubbed, truncated

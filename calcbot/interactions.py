"""Dispatch for chat-platform interaction webhooks."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from calcbot.command_registry import CommandRegistry

logger = logging.getLogger("calcbot.interactions")


class InteractionType:
    PING = 1
    APPLICATION_COMMAND = 2


class InteractionResponseType:
    PONG = 1
    CHANNEL_MESSAGE_WITH_SOURCE = 4


class InteractionResponseFlags:
    EPHEMERAL = 1 << 6


UNKNOWN_TYPE = {"error": "Unknown Type"}

ResultCallback = Callable[["CommandInvocation", Dict[str, Any]], None]


@dataclass(frozen=True)
class CommandInvocation:
    name: str
    options: Dict[str, Any]


def parse_invocation(payload: Dict[str, Any]) -> Optional[CommandInvocation]:
    data = payload.get("data")
    if not isinstance(data, dict) or not data.get("name"):
        return None
    options: Dict[str, Any] = {}
    for option in data.get("options") or []:
        if isinstance(option, dict) and option.get("name"):
            options[str(option["name"])] = option.get("value")
    return CommandInvocation(name=str(data["name"]).lower(), options=options)


def _message(content: str, ephemeral: bool = False) -> Dict[str, Any]:
    data: Dict[str, Any] = {"content": content}
    if ephemeral:
        data["flags"] = InteractionResponseFlags.EPHEMERAL
    return {"type": InteractionResponseType.CHANNEL_MESSAGE_WITH_SOURCE, "data": data}


def handle_interaction(
    payload: Any,
    registry: CommandRegistry,
    on_result: Optional[ResultCallback] = None,
) -> Tuple[Dict[str, Any], int]:
    """Answer one webhook payload; ``on_result`` sees every executed command result."""
    if not isinstance(payload, dict):
        return dict(UNKNOWN_TYPE), 400

    interaction_type = payload.get("type")
    if interaction_type == InteractionType.PING:
        # Webhook handshake from the developer portal.
        return {"type": InteractionResponseType.PONG}, 200

    if interaction_type != InteractionType.APPLICATION_COMMAND:
        logger.warning("Unknown interaction type", extra={"extra": {"type": interaction_type}})
        return dict(UNKNOWN_TYPE), 400

    invocation = parse_invocation(payload)
    command = registry.get(invocation.name) if invocation else None
    if invocation is None or command is None:
        logger.warning(
            "Unknown command",
            extra={"extra": {"command": invocation.name if invocation else None}},
        )
        return dict(UNKNOWN_TYPE), 400

    result = registry.execute(invocation.name, **invocation.options)
    if on_result is not None:
        on_result(invocation, result)
    if result["status"] != "ok":
        return _message(f"Error running /{command.name}: {result['error']}", ephemeral=True), 200
    return _message(result["result"], ephemeral=command.ephemeral), 200

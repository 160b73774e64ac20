from __future__ import annotations

import logging
import os
from typing import Any, Callable, Dict, Optional

from calcbot.command_registry import CommandRegistry, CommandReply, load_command_definitions
from calcbot.tools.math import calculate

logger = logging.getLogger("calcbot.commands")

INVITE_URL_TEMPLATE = "https://discord.com/oauth2/authorize?client_id={application_id}&scope=applications.commands"


def calculate_command(expression: str) -> CommandReply:
    outcome = calculate(expression)
    if outcome["status"] == "ok":
        return CommandReply(f"The result is {outcome['display']}", outcome)
    logger.info("calculate rejected", extra={"extra": {"error": outcome["error"]}})
    return CommandReply(f"Error calculating the expression: {outcome['message']}", outcome)


def invite_command() -> str:
    application_id = os.getenv("CALC_DISCORD_APPLICATION_ID", "").strip()
    if not application_id:
        raise RuntimeError("CALC_DISCORD_APPLICATION_ID is not configured")
    return INVITE_URL_TEMPLATE.format(application_id=application_id)


HANDLERS: Dict[str, Callable[..., Any]] = {
    "calculate": calculate_command,
    "invite": invite_command,
}


def build_default_registry(commands_path: Optional[str] = None) -> CommandRegistry:
    return CommandRegistry.from_definitions(load_command_definitions(commands_path), HANDLERS)

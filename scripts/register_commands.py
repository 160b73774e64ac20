#!/usr/bin/env python3
"""Register slash commands with the Discord API.

Reads the shared command metadata (config/commands.yaml) and overwrites the
application's global command list.

Usage:
  CALC_DISCORD_APPLICATION_ID=... CALC_DISCORD_TOKEN=... ./scripts/register_commands.py
  ./scripts/register_commands.py --dry-run
"""
from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any, Dict, List, Optional

import requests
from dotenv import load_dotenv

from calcbot.commands import build_default_registry

DISCORD_API_BASE = "https://discord.com/api/v10"


def build_command_payloads(path: Optional[str] = None) -> List[Dict[str, Any]]:
    # Only commands with a runtime handler are registered.
    registry = build_default_registry(path)
    return [command.to_payload() for command in registry.list_commands()]


def register_commands(
    application_id: str,
    token: str,
    commands: List[Dict[str, Any]],
    timeout_sec: float = 10.0,
) -> List[Dict[str, Any]]:
    resp = requests.put(
        f"{DISCORD_API_BASE}/applications/{application_id}/commands",
        headers={
            "Content-Type": "application/json",
            "Authorization": f"Bot {token}",
        },
        json=commands,
        timeout=timeout_sec,
    )
    resp.raise_for_status()
    return resp.json()


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Register slash commands with Discord")
    parser.add_argument("--commands", default=None, help="Path to commands YAML")
    parser.add_argument("--dry-run", action="store_true", help="Print the payload without sending it")
    args = parser.parse_args(argv)

    commands = build_command_payloads(args.commands)
    if not commands:
        print(json.dumps({"status": "error", "error": "no_commands"}))
        return 2

    if args.dry_run:
        print(json.dumps({"status": "ok", "commands": commands}, indent=2))
        return 0

    application_id = os.getenv("CALC_DISCORD_APPLICATION_ID", "").strip()
    token = os.getenv("CALC_DISCORD_TOKEN", "").strip()
    if not application_id or not token:
        print(json.dumps({"status": "error", "error": "missing_credentials"}))
        return 2

    try:
        registered = register_commands(application_id, token, commands)
    except requests.RequestException as exc:
        print(json.dumps({"status": "error", "error": "registration_failed", "message": str(exc)}))
        return 1

    print(json.dumps({"status": "ok", "registered": [cmd.get("name") for cmd in registered]}))
    return 0


if __name__ == "__main__":
    sys.exit(main())

from calcbot.commands import build_default_registry
from calcbot.interactions import (
    InteractionResponseFlags,
    InteractionResponseType,
    InteractionType,
    handle_interaction,
    parse_invocation,
)


def _command(name, **options):
    return {
        "type": InteractionType.APPLICATION_COMMAND,
        "data": {
            "name": name,
            "options": [{"name": key, "type": 3, "value": value} for key, value in options.items()],
        },
    }


def test_ping_returns_pong():
    body, status = handle_interaction({"type": InteractionType.PING}, build_default_registry())
    assert status == 200
    assert body == {"type": InteractionResponseType.PONG}


def test_calculate_command_replies_in_channel():
    body, status = handle_interaction(_command("calculate", expression="2+3*4"), build_default_registry())
    assert status == 200
    assert body == {
        "type": InteractionResponseType.CHANNEL_MESSAGE_WITH_SOURCE,
        "data": {"content": "The result is 14"},
    }


def test_calculate_command_error_is_user_visible():
    body, status = handle_interaction(_command("Calculate", expression="(2+3"), build_default_registry())
    assert status == 200
    assert body["data"]["content"].startswith("Error calculating the expression: ")


def test_invite_command_is_ephemeral(monkeypatch):
    monkeypatch.setenv("CALC_DISCORD_APPLICATION_ID", "42")
    body, status = handle_interaction(_command("invite"), build_default_registry())
    assert status == 200
    assert "client_id=42" in body["data"]["content"]
    assert body["data"]["flags"] == InteractionResponseFlags.EPHEMERAL


def test_command_failure_is_reported_ephemerally():
    body, status = handle_interaction(_command("calculate"), build_default_registry())
    assert status == 200
    assert body["data"]["content"] == "Error running /calculate: missing_option:expression"
    assert body["data"]["flags"] == InteractionResponseFlags.EPHEMERAL


def test_unknown_command_and_type():
    registry = build_default_registry()
    assert handle_interaction(_command("awwww"), registry) == ({"error": "Unknown Type"}, 400)
    assert handle_interaction({"type": 99}, registry) == ({"error": "Unknown Type"}, 400)
    assert handle_interaction([], registry) == ({"error": "Unknown Type"}, 400)
    assert handle_interaction({"type": 2}, registry) == ({"error": "Unknown Type"}, 400)


def test_parse_invocation_flattens_options():
    invocation = parse_invocation(_command("CALCULATE", expression="1+1"))
    assert invocation.name == "calculate"
    assert invocation.options == {"expression": "1+1"}
    assert parse_invocation({"type": 2, "data": {}}) is None


def test_result_callback_sees_executed_commands():
    seen = []
    registry = build_default_registry()

    def record(invocation, result):
        seen.append((invocation, result))

    handle_interaction(_command("calculate", expression="7/0"), registry, on_result=record)
    handle_interaction(_command("nope"), registry, on_result=record)
    handle_interaction({"type": InteractionType.PING}, registry, on_result=record)

    assert len(seen) == 1
    invocation, result = seen[0]
    assert invocation.options == {"expression": "7/0"}
    assert result["evaluation"]["display"] == "inf"
    assert result["evaluation"]["result"] is None

from __future__ import annotations

import dataclasses

from areasync._redact import redact_for_log
from areasync.config import MqttStoreConfig


def test_chat_text_is_reduced_to_its_length() -> None:
    redacted = redact_for_log({"username": "Ada", "chat": "meet me at the cave", "ax": 10})

    assert redacted == {"username": "Ada", "chat": "<text:19c>", "ax": 10}


def test_credentials_are_masked() -> None:
    config = MqttStoreConfig(username="observer", password="hunter2")

    redacted = redact_for_log(dataclasses.asdict(config))

    assert redacted["password"] == "<redacted>"
    assert redacted["username"] == "observer"


def test_long_strings_are_truncated_and_nesting_preserved() -> None:
    redacted = redact_for_log({"projectileEvent": {"data": {"note": "x" * 300}}}, max_string=10)

    assert redacted["projectileEvent"]["data"]["note"] == "x" * 10 + "...<truncated>"


def test_unknown_objects_are_represented_by_repr() -> None:
    assert redact_for_log(object()).startswith("<object object")

import pytest

from modgate.errors import ClassifierResponseError
from modgate.moderation.parsing import parse_vision_reply

PLAIN = '{"isSafe": false, "reason": "Weapon visible", "confidence": 0.8, "flags": ["violence"], "detectedObjects": ["knife"], "violence": true}'


def test_plain_json():
    analysis = parse_vision_reply(PLAIN)
    assert analysis.is_safe is False
    assert analysis.reason == "Weapon visible"
    assert analysis.confidence == 0.8
    assert analysis.flags == ["violence"]
    assert analysis.detected_objects == ["knife"]
    assert analysis.violence is True
    assert analysis.adult_content is None


def test_code_fence_is_stripped():
    analysis = parse_vision_reply(f"```json\n{PLAIN}\n```")
    assert analysis.is_safe is False
    assert analysis.flags == ["violence"]


def test_bare_fence_is_stripped():
    analysis = parse_vision_reply('```\n{"isSafe": true}\n```')
    assert analysis.is_safe is True
    assert analysis.confidence is None
    assert analysis.flags == []


def test_json_embedded_in_prose():
    analysis = parse_vision_reply('Sure! Here is my analysis: {"isSafe": true, "confidence": 0.95} Let me know.')
    assert analysis.is_safe is True
    assert analysis.confidence == 0.95


def test_confidence_is_clamped():
    assert parse_vision_reply('{"isSafe": true, "confidence": 1.7}').confidence == 1.0
    assert parse_vision_reply('{"isSafe": true, "confidence": -2}').confidence == 0.0


def test_single_flag_string_becomes_list():
    assert parse_vision_reply('{"isSafe": false, "flags": "hate"}').flags == ["hate"]


@pytest.mark.parametrize("reply", [
    "I cannot analyze this image.",
    '{"reason": "no verdict field"}',
    "[1, 2, 3]",
    "",
    "   ",
    '```json\n{"isSafe": tru\n```',
])
def test_unparseable_replies(reply):
    with pytest.raises(ClassifierResponseError):
        parse_vision_reply(reply)

"""
Tests for JSON recovery from LLM responses.
"""

import json

from utils.json_extractor import recover_json


def test_direct_json():
    """Valid JSON parses as is."""
    assert recover_json('{"results": []}') == {"results": []}


def test_fenced_block():
    """Prose around a ```json fence is ignored."""
    raw = 'Here you go:\n```json\n{"results":[{"id":"0","status":"ok","correctAnswers":[1]}]}\n```'

    parsed = recover_json(raw)

    assert parsed == {"results": [{"id": "0", "status": "ok", "correctAnswers": [1]}]}


def test_prose_before_and_after_object():
    """Text on both sides of the object is sliced away."""
    parsed = recover_json('Voici le résultat {"results": [{"id": "a"}]} bonne révision')

    assert parsed == {"results": [{"id": "a"}]}


def test_top_level_list_is_wrapped():
    """A bare array becomes a results envelope."""
    assert recover_json('[{"id": "a"}]') == {"results": [{"id": "a"}]}


def test_truncated_response_keeps_complete_items():
    """A response cut mid-item keeps the items before the cut."""
    raw = '{"results":[{"id":"a","status":"ok"},{"id":"b","sta'

    parsed = recover_json(raw)

    assert parsed is not None
    assert parsed["results"][0] == {"id": "a", "status": "ok"}


def test_unclosed_brackets_are_balanced():
    """Missing closers are appended."""
    parsed = recover_json('{"results":[{"id":"a","correctAnswers":[0,2]}')

    assert parsed == {"results": [{"id": "a", "correctAnswers": [0, 2]}]}


def test_brackets_inside_strings_are_ignored():
    """Braces in explanations do not confuse balancing."""
    parsed = recover_json('{"results":[{"id":"a","globalExplanation":"voir [réf] {1}"}')

    assert parsed["results"][0]["globalExplanation"] == "voir [réf] {1}"


def test_trailing_commas():
    """Trailing commas before closers are removed."""
    parsed = recover_json('{"results":[{"id":"a","status":"ok",},],}')

    assert parsed == {"results": [{"id": "a", "status": "ok"}]}


def test_garbage_returns_none():
    """Nothing recoverable gives None."""
    assert recover_json("Je ne peux pas répondre à cette demande.") is None
    assert recover_json("") is None
    assert recover_json(None) is None
    assert recover_json("42") is None


def test_recovery_is_idempotent():
    """Recovering an already recovered object changes nothing."""
    samples = [
        'Here you go:\n```json\n{"results":[{"id":"0"}]}\n```',
        '{"results":[{"id":"a","status":"ok"},{"id":"b","sta',
        '{"results":[{"id":"a",},],}',
    ]
    for raw in samples:
        first = recover_json(raw)
        assert recover_json(json.dumps(first)) == first

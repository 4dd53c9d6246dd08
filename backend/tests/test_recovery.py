"""Structured-output recovery tests."""

import json

import pytest

from adventure_mas.errors import RecoveryError
from adventure_mas.recovery import recover_json


def test_valid_json_is_returned_unchanged():
    record = {"title": "Quest", "steps": [1, 2, 3], "nested": {"ok": True}}
    text = json.dumps(record)
    assert recover_json(text) == record
    assert recover_json(json.dumps(recover_json(text))) == record


def test_code_fence_and_prose_are_stripped():
    assert recover_json('```json\n{"a": 1}\n```') == {"a": 1}
    assert recover_json('Sure! Here it is: {"a": 1} Hope that helps.') == {"a": 1}


def test_unterminated_string_is_closed():
    assert recover_json('{"a":1,"b":"hello') == {"a": 1, "b": "hello"}


def test_raw_newlines_inside_strings_are_escaped():
    assert recover_json('{"scene": "line one\nline two"}') == {"scene": "line one\nline two"}


def test_trailing_garbage_braces_are_truncated():
    text = 'Result: {"a": [1, 2]} note: braces } here'
    assert recover_json(text) == {"a": [1, 2]}


def test_truncated_record_is_completed():
    text = '{"narration": "The team wins", "highlights": ["one", "two",'
    assert recover_json(text) == {"narration": "The team wins", "highlights": ["one", "two"]}


def test_nested_truncation():
    assert recover_json('{"context": {"enemy_types": ["fire"') == {"context": {"enemy_types": ["fire"]}}


def test_failure_raises_with_length_and_prefix():
    text = "I cannot produce that record right now."
    with pytest.raises(RecoveryError) as info:
        recover_json(text)
    assert info.value.length == len(text)
    assert info.value.prefix == text[:100]


def test_non_object_json_is_rejected():
    with pytest.raises(RecoveryError):
        recover_json("[1, 2, 3]")

import json

import pytest

from voice_inbox.services.llm.json_repair import remove_trailing_commas, repair_json, strip_code_fence


@pytest.mark.parametrize(
    "broken, expected",
    [
        ('{"a": [1, 2', '{"a": [1, 2]}'),
        ('{"a": "unterm', '{"a": "unterm"}'),
        ('{"a": [partial', '{"a": []}'),
        ('Sure! Here it is: {"a": 1} Hope that helps', '{"a": 1}'),
        ('{"a": {"b": [{"c": "x"', '{"a": {"b": [{"c": "x"}]}}'),
    ],
)
def test_repair_examples(broken, expected):
    assert repair_json(broken) == expected


def test_repair_removes_trailing_commas():
    assert json.loads(repair_json('{"a": [1, 2,], }')) == {"a": [1, 2]}


def test_repair_drops_dangling_key_and_colon():
    assert json.loads(repair_json('{"a": 1, "b": ')) == {"a": 1, "b": None}
    assert json.loads(repair_json('{"a": 1, "b')) == {"a": 1, "b": None}


def test_repair_cuts_truncated_literal():
    assert json.loads(repair_json('{"ok": tru')) == {"ok": None}
    assert json.loads(repair_json('{"n": [1, 2, 3')) == {"n": [1, 2, 3]}


def test_repair_drops_trailing_backslash_inside_string():
    assert json.loads(repair_json('{"path": "C:\\')) == {"path": "C:"}


def test_repair_ignores_braces_inside_strings():
    text = '{"msg": "use {x} and [y]", "n": 1'
    assert json.loads(repair_json(text)) == {"msg": "use {x} and [y]", "n": 1}


def test_repair_without_object_returns_input():
    assert repair_json("no json here") == "no json here"


def test_strip_code_fence():
    assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fence('```\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fence('```json\n{"a": 1') == '{"a": 1'
    assert strip_code_fence('  {"a": 1}  ') == '{"a": 1}'


def test_remove_trailing_commas_keeps_commas_in_strings():
    assert remove_trailing_commas('{"a": "x,}", "b": [1,],}') == '{"a": "x,}", "b": [1]}'

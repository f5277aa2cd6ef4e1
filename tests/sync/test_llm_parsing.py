import pytest
from pydantic import BaseModel

from starboard.services.llm_parsing import (
    LLMResponseParseError,
    parse_json_array,
    parse_json_object,
    salvage_objects,
    strip_code_fences,
)


class Item(BaseModel):
    id: int
    label: str


def test_strip_code_fences_handles_json_fence() -> None:
    assert strip_code_fences('```json\n[{"id": 1}]\n```') == '[{"id": 1}]'
    assert strip_code_fences('  [{"id": 1}]  ') == '[{"id": 1}]'


def test_parse_json_array_ignores_surrounding_prose() -> None:
    raw = 'Here are the results:\n[{"id": 1, "label": "a"}, {"id": 2, "label": "b"}]\nDone.'

    items = parse_json_array(raw, Item)

    assert [item.id for item in items] == [1, 2]


def test_parse_json_array_drops_invalid_items() -> None:
    raw = '[{"id": 1, "label": "a"}, {"id": "nope"}, "junk", {"id": 3, "label": "c"}]'

    items = parse_json_array(raw, Item)

    assert [item.id for item in items] == [1, 3]


def test_parse_json_array_salvages_truncated_output() -> None:
    raw = '```json\n[{"id": 1, "label": "a"}, {"id": 2, "label": "b"}, {"id": 3, "lab'

    items = parse_json_array(raw, Item)

    assert [item.id for item in items] == [1, 2]


def test_parse_json_array_raises_when_nothing_recoverable() -> None:
    with pytest.raises(LLMResponseParseError):
        parse_json_array("I could not process these issues.", Item)
    with pytest.raises(LLMResponseParseError):
        parse_json_array(None, Item)


def test_salvage_objects_skips_broken_fragments() -> None:
    assert salvage_objects('{"id": 1} {bad} {"id": 2}') == [{"id": 1}, {"id": 2}]


def test_parse_json_object_validates_model() -> None:
    assert parse_json_object('Sure!\n{"id": 5, "label": "x"}', Item).id == 5

    with pytest.raises(LLMResponseParseError):
        parse_json_object('{"id": 5}', Item)
    with pytest.raises(LLMResponseParseError):
        parse_json_object('{"id": 5, "label": ', Item)
    with pytest.raises(LLMResponseParseError):
        parse_json_object("no json here", Item)

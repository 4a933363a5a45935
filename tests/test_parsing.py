import pytest

from roadmapper.errors import ResponseParseError
from roadmapper.parsing import first_balanced_object, parse_json_response, strip_code_fence


def test_fenced_json_block_is_unwrapped() -> None:
    text = 'Here you go:\n```json\n{"title": "Rust", "phases": []}\n```\nEnjoy!'

    assert strip_code_fence(text) == '{"title": "Rust", "phases": []}'
    assert parse_json_response(text) == {"title": "Rust", "phases": []}


def test_object_is_extracted_from_surrounding_prose() -> None:
    text = 'Sure! {"goal": "Ship it", "skills": ["a"]} Let me know if you need more.'

    assert parse_json_response(text) == {"goal": "Ship it", "skills": ["a"]}


def test_braces_inside_strings_do_not_end_the_object() -> None:
    text = '{"goal": "use {curly} braces", "note": "escaped \\" quote }"} trailing }'

    assert first_balanced_object(text) == '{"goal": "use {curly} braces", "note": "escaped \\" quote }"}'
    assert parse_json_response(text)["goal"] == "use {curly} braces"


@pytest.mark.parametrize(
    "text",
    [
        "no json here",
        '{"goal": "unterminated"',
        '{"goal": nope}',
        "[1, 2, 3]",
    ],
)
def test_unusable_responses_raise(text: str) -> None:
    with pytest.raises(ResponseParseError):
        parse_json_response(text)

import json

import pytest

from taskscope.services.analyzers.base import ChangedMonitor, UnchangedMonitor
from taskscope.services.analyzers.prompts import (
    build_context_section, build_prompt, parse_analysis, response_schema, strip_code_fences
)
from taskscope.services.errors import EmptyResponseError, ResponseParseError


def changed(name, primary=False):
    return ChangedMonitor(name=name, filepath=f"screenshots/{name}.webp",
                          width=1920, height=1080, is_primary=primary)


def test_context_section_numbers_most_recent_first():
    section = build_context_section(["Coding: tests", "Email: inbox"])
    assert section.startswith("Recent task history (most recent first):")
    assert "  1. Coding: tests" in section
    assert "  2. Email: inbox" in section
    assert build_context_section([]) == ""


def test_single_prompt_without_description():
    prompt = build_prompt([changed("Display 1")], [], [])
    assert prompt.startswith("Analyze this screenshot")
    assert '"is_new_task": true/false}' in prompt
    assert "monitor_summaries" not in prompt


def test_single_prompt_with_description():
    prompt = build_prompt([changed("Display 1")], [], [], session_description="tax return")
    assert prompt.startswith("The user is working on: tax return.")


def test_multi_prompt_lists_monitors_and_summaries():
    prompt = build_prompt(
        [changed("Left", primary=True), changed("Right")],
        [UnchangedMonitor(name="Top", summary="Slack open")],
        ["Coding: tests"],
        session_description="release",
    )
    assert "The user has 3 monitors." in prompt
    assert '- Monitor "Left" (1920x1080, primary): see image 1' in prompt
    assert '- Monitor "Right" (1920x1080): see image 2' in prompt
    assert '- Monitor "Top": Slack open' in prompt
    assert "The user is working on: release." in prompt
    assert '"monitor_summaries": {"Left": "1-sentence description", "Right": "1-sentence description", "Top": "1-sentence description"}}' in prompt


def test_one_changed_plus_unchanged_is_multi():
    prompt = build_prompt([changed("Left")], [UnchangedMonitor("Right", "docs")], [])
    assert "multi-monitor" in prompt


def test_structured_prompt_defers_to_schema():
    prompt = build_prompt([changed("Left")], [], [], structured_output=True)
    assert "schema provided in the format field" in prompt
    assert "task_title" not in prompt


def test_response_schema_requires_summaries_only_for_multi():
    assert "monitor_summaries" not in response_schema(False)["required"]
    assert "monitor_summaries" in response_schema(True)["required"]


@pytest.mark.parametrize("raw", [
    '```json\n{"a": 1}\n```',
    '```\n{"a": 1}\n```',
    '  {"a": 1}  ',
])
def test_strip_code_fences(raw):
    assert json.loads(strip_code_fences(raw)) == {"a": 1}


def test_parse_analysis_normalises_category():
    result = parse_analysis(json.dumps({
        "task_title": "Reviewing PR",
        "task_description": "Reading a diff",
        "category": "Engineering",
        "reasoning": "GitHub open",
        "is_new_task": True,
    }))
    assert result.category == "other"
    assert result.monitor_summaries == {}
    assert result.context_line == "Reviewing PR: Reading a diff"


def test_parse_analysis_errors():
    with pytest.raises(EmptyResponseError):
        parse_analysis("   ")
    with pytest.raises(EmptyResponseError):
        parse_analysis(None)
    with pytest.raises(ResponseParseError):
        parse_analysis("not json")
    with pytest.raises(ResponseParseError):
        parse_analysis('{"task_description": "missing title"}')

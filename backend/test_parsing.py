"""
Tests for turning raw model output into learning paths.
"""

import json

import pytest

from conftest import six_step_json
from parsing import (
    LearningPathParseError,
    extract_json,
    parse_learning_path,
    strip_code_fences,
)
from schemas import clean_skills, progress_summary


def test_strip_code_fences_removes_json_fence():
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('```\n[1, 2]\n```') == "[1, 2]"
    assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'


def test_extract_json_finds_object_inside_chatter():
    text = 'Sure! Here is your path:\n{"path": [{"title": "a {b}"}]}\nGood luck!'
    assert extract_json(text) == {"path": [{"title": "a {b}"}]}


def test_extract_json_rejects_empty_and_garbage():
    with pytest.raises(LearningPathParseError):
        extract_json("")
    with pytest.raises(LearningPathParseError):
        extract_json("I cannot help with that.")
    with pytest.raises(LearningPathParseError):
        extract_json('{"path": [')


def test_parse_learning_path_from_fenced_response():
    steps = parse_learning_path(f"```json\n{six_step_json()}\n```")

    assert [s["step_number"] for s in steps] == [1, 2, 3, 4, 5, 6]
    assert steps[0]["title"] == "Step 1"
    assert steps[0]["resources"] == ["Docs - https://example.com"]
    assert steps[0]["skills"] == ["Python"]


def test_parse_learning_path_accepts_alternate_keys_and_top_level_list():
    items = [{"name": f"Stage {i}", "timeframe": "2 weeks"} for i in range(6)]

    from_list = parse_learning_path(json.dumps(items))
    from_steps = parse_learning_path(json.dumps({"steps": items}))
    from_camel = parse_learning_path(json.dumps({"learningPath": items}))

    assert from_list == from_steps == from_camel
    assert from_list[2]["title"] == "Stage 2"
    assert from_list[2]["duration"] == "2 weeks"


def test_parse_learning_path_truncates_extra_steps():
    items = [{"title": f"Step {i}"} for i in range(1, 10)]
    steps = parse_learning_path(json.dumps({"path": items}))

    assert len(steps) == 6
    assert steps[-1]["title"] == "Step 6"


def test_parse_learning_path_rejects_short_paths():
    items = [{"title": f"Step {i}"} for i in range(1, 5)]
    with pytest.raises(LearningPathParseError, match="Expected 6 steps"):
        parse_learning_path(json.dumps({"path": items}))


def test_parse_learning_path_rejects_untitled_steps():
    items = [{"title": f"Step {i}"} for i in range(1, 6)] + [{"description": "no title"}]
    with pytest.raises(LearningPathParseError, match="Step 6"):
        parse_learning_path(json.dumps(items))


def test_parse_learning_path_tolerates_scalar_resources_and_skills():
    items = [
        {"title": f"Step {i}", "resources": 3, "skills": True}
        for i in range(1, 7)
    ]
    steps = parse_learning_path(json.dumps({"path": items}))

    assert steps[0]["resources"] == ["3"]
    assert steps[0]["skills"] == ["True"]


def test_parse_learning_path_wraps_odd_field_types():
    items = [{"title": f"Step {i}", "duration": {"weeks": 2}} for i in range(1, 7)]
    items[3]["title"] = ["not", "a", "title"]
    steps = parse_learning_path(json.dumps(items))

    assert steps[3]["title"] == "['not', 'a', 'title']"
    assert steps[0]["duration"] == "{'weeks': 2}"


def test_extract_json_skips_bracketed_chatter():
    text = '[Note] Here is the plan: {"path": [1, 2]} [end]'
    assert extract_json(text) == {"path": [1, 2]}


def test_clean_skills_splits_and_dedupes():
    assert clean_skills("Python, SQL,, python , Docker") == ["Python", "SQL", "Docker"]
    assert clean_skills([" React ", "", "react", "Node.js"]) == ["React", "Node.js"]
    assert clean_skills(None) == []


def test_progress_summary_rounds_percentage():
    assert progress_summary([{}] * 6, [0, 2]) == {
        "total_steps": 6,
        "completed_count": 2,
        "progress_percentage": 33,
    }
    assert progress_summary([], [])["progress_percentage"] == 0

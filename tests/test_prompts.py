"""Tests for prompt template formatting safety."""

import json

from ragqa.prompts.templates import (
    ACCURACY_TASK,
    ANSWER_SYSTEM,
    CITATION_TASK,
    HALLUCINATION_TASK,
    JUDGE_FOCUS,
    JUDGE_TASK,
    NO_ANSWER_TASK,
    RETRIEVAL_TASK,
    TRANSLATE_TASK,
)
from ragqa.schemas.categories import Category

PASSAGE = {"content": "Employees get 25 days.", "filename": "handbook.pdf", "page": 3}


def test_grounded_tasks_format_does_not_raise_keyerror():
    for task in (RETRIEVAL_TASK, ACCURACY_TASK, CITATION_TASK):
        text = task.format(language_name="Dutch", **PASSAGE)
        assert "Employees get 25 days." in text
        assert '"key_facts"' in text
        assert "in Dutch" in text


def test_citation_task_names_document_in_expected_answer():
    text = CITATION_TASK.format(language_name="English", **PASSAGE)
    assert "expected_answer must name the document handbook.pdf" in text


def test_hallucination_task_lists_used_topics():
    text = HALLUCINATION_TASK.format(
        content="Office hours.", avoid="office pets, parking", language_name="English"
    )
    assert "office pets, parking" in text
    assert '{"question": "the question"' in text


def test_no_answer_and_translate_tasks_format():
    no_answer = NO_ANSWER_TASK.format(count=4, language_name="German")
    assert no_answer.startswith("Write 4 questions about PERSONAL")
    translate = TRANSLATE_TASK.format(
        language_name="French", question="How many days?", expected_answer="25."
    )
    assert '"question": "the question in French"' in translate


def test_answer_system_prompt_carries_context():
    text = ANSWER_SYSTEM.format(language_name="Dutch", context="[handbook.pdf, p. 3]\n25 days")
    assert "Answer in Dutch." in text
    assert "[handbook.pdf, p. 3]" in text


def test_every_category_has_judge_focus():
    assert set(JUDGE_FOCUS) == {c.value for c in Category}


def test_judge_task_format_embeds_category_fields():
    focus, fields = JUDGE_FOCUS["citation"]
    text = JUDGE_TASK.format(
        question="Where is leave described?",
        expected_answer="handbook.pdf",
        actual_answer="See the handbook.",
        citations=json.dumps(["handbook.pdf"]),
        category_label="Citations",
        extra_context=focus,
        category_fields=fields,
    )
    assert '"document_correct": true/false' in text
    assert "HARD CAPS" in text
    assert "Wrong document or source cited: score at most 50" in text

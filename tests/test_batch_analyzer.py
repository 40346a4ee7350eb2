"""
Tests for the batch analyzer.
"""

import asyncio
import json

import pytest

from ai.batch_analyzer import BatchAnalyzer, coerce_result
from config.constants import MISSING_FROM_RESPONSE
from config.prompts import build_system_prompt
from core.exceptions import APIServerError, ConfigurationError
from core.models import AnalyzableItem, ItemKind, ResultStatus


def test_results_follow_input_order(settings, fake_transport, make_items, answer):
    """Results are matched by id even when the model reorders them."""
    def reversed_answer(payload, system_prompt):
        data = json.loads(answer(payload))
        data["results"].reverse()
        return json.dumps(data)

    items = make_items(3)
    analyzer = BatchAnalyzer(fake_transport(reversed_answer), settings)

    results = asyncio.run(analyzer.analyze(items, "prompt"))

    assert [r.id for r in results] == [item.id for item in items]
    assert all(r.is_ok for r in results)


def test_missing_item_is_reported(settings, fake_transport, make_items, answer):
    """An item absent from the response gets an explicit error."""
    def drop_last(payload, system_prompt):
        data = json.loads(answer(payload))
        data["results"].pop()
        return json.dumps(data)

    items = make_items(3)
    results = asyncio.run(BatchAnalyzer(fake_transport(drop_last), settings).analyze(items, "prompt"))

    assert [r.status for r in results] == [ResultStatus.OK, ResultStatus.OK, ResultStatus.ERROR]
    assert results[2].error == MISSING_FROM_RESPONSE


def test_salvage_when_batch_is_unreadable(settings, fake_transport, make_items, answer):
    """Garbage for batches but valid JSON per item still yields every result."""
    def respond(payload, system_prompt):
        if len(payload["items"]) > 1:
            return "Désolé, je ne peux pas formater cette réponse."
        return answer(payload)

    transport = fake_transport(respond)
    items = make_items(4)
    results = asyncio.run(BatchAnalyzer(transport, settings).analyze(items, "prompt"))

    assert len(results) == 4
    assert all(r.is_ok for r in results)
    assert len(transport.calls) == 5


def test_salvage_accepts_bare_result_object(settings, fake_transport, make_items):
    """A single-item reply without the results envelope is accepted."""
    def respond(payload, system_prompt):
        if len(payload["items"]) > 1:
            return "{}"
        return json.dumps({"status": "ok", "correctAnswers": [1]})

    results = asyncio.run(BatchAnalyzer(fake_transport(respond), settings).analyze(make_items(2), "prompt"))

    assert [r.correct_answers for r in results] == [[1], [1]]


def test_salvage_failure_becomes_error_result(settings, fake_transport, make_items, answer):
    """A failing salvage call degrades to an error for that item only."""
    def respond(payload, system_prompt):
        if len(payload["items"]) > 1:
            return "not json"
        if payload["items"][0]["id"] == "QCM#3":
            raise APIServerError("Azure OpenAI server error 503", status_code=503)
        return answer(payload)

    results = asyncio.run(BatchAnalyzer(fake_transport(respond), settings).analyze(make_items(3), "prompt"))

    assert [r.is_ok for r in results] == [True, False, True]
    assert results[1].error.startswith("Échec de l'analyse individuelle")


def test_salvage_propagates_configuration_error(settings, fake_transport, make_items):
    """Fatal configuration errors are never swallowed."""
    def respond(payload, system_prompt):
        if len(payload["items"]) > 1:
            return "not json"
        raise ConfigurationError("Azure OpenAI unauthorized (401)")

    with pytest.raises(ConfigurationError):
        asyncio.run(BatchAnalyzer(fake_transport(respond), settings).analyze(make_items(2), "prompt"))


def test_coerce_result_indices():
    """correctAnswers entries are coerced to non-negative ints."""
    result = coerce_result({"id": "x", "correctAnswers": ["1", 2.0, -1, "x", True, 2.5, None]}, "x")

    assert result.correct_answers == [1, 2]
    assert result.is_ok


def test_coerce_result_error_without_detail():
    """An error status always carries a message."""
    result = coerce_result({"status": "error"}, "x")

    assert result.status == ResultStatus.ERROR
    assert result.error


def test_coerce_result_qroc_fields():
    """QROC explanation and expected answer are read."""
    result = coerce_result({"status": "ok", "explanation": " Insuline ", "expectedAnswer": "insuline"}, "x")

    assert result.global_explanation == "Insuline"
    assert result.suggested_answer == "insuline"
    assert result.error is None


def test_coerce_result_repaired_text():
    """Repaired question and option wording is carried; absent fields stay None."""
    result = coerce_result(
        {"status": "ok", "fixedQuestionText": " Énoncé ", "fixedOptions": ["a", None, " c "]}, "x"
    )

    assert result.fixed_question_text == "Énoncé"
    assert result.fixed_options == ["a", "", "c"]
    bare = coerce_result({"status": "ok", "fixedOptions": []}, "x")
    assert bare.fixed_question_text is None
    assert bare.fixed_options is None


def test_mcq_prompts_ask_for_repaired_text():
    """Main and retry MCQ prompts request fixedQuestionText and fixedOptions."""
    for prompt in (build_system_prompt(ItemKind.MCQ), build_system_prompt(ItemKind.MCQ, retry=True)):
        assert "fixedQuestionText" in prompt
        assert "fixedOptions" in prompt
    assert "fixedOptions" not in build_system_prompt(ItemKind.QROC)


def test_payload_caps_and_fields(make_settings):
    """Payload fields are capped and case text is only sent when present."""
    settings = make_settings(question_char_cap=10, option_char_cap=3)
    analyzer = BatchAnalyzer(transport=None, settings=settings)
    item = AnalyzableItem(
        id="QCM#2", question_text="x" * 50, options=["abcdef", "gh"], provided_answer_raw="A, C"
    )

    payload = json.loads(analyzer.build_payload([item]))

    assert payload["task"] == "analyze_mcq_batch"
    sent = payload["items"][0]
    assert sent["questionText"] == "x" * 10
    assert sent["options"] == ["abc", "gh"]
    assert sent["providedAnswerRaw"] == "A, C"
    assert "caseText" not in sent


def test_qroc_payload(settings):
    """QROC items use their own task and fields."""
    item = AnalyzableItem(
        id="QROC#2", kind=ItemKind.QROC, question_text="Citez l'hormone", provided_answer_raw="insuline"
    )

    payload = json.loads(BatchAnalyzer(None, settings).build_payload([item]))

    assert payload["task"] == "qroc_explanations"
    assert payload["items"][0]["answerText"] == "insuline"

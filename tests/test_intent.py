from datetime import date, timedelta
from unittest.mock import Mock, patch

import httpx
import pytest

from inspector_api.schemas.workflow import WorkflowContext
from inspector_api.services.intent_service import (
    Intent,
    classify_intent,
    match_command,
    normalize_for_matching,
    parse_llm_output,
)
from inspector_api.services.llm import LLMResponse


class TestIntentEnum:
    def test_all_intents_defined(self):
        expected = {
            "view_jobs",
            "view_checklist",
            "start_inspection",
            "update_item",
            "add_comment",
            "complete_item",
            "skip_item",
            "issue_found",
            "add_media",
            "complete_inspection",
            "cancel",
            "help",
            "greeting",
            "unknown",
        }
        assert {i.value for i in Intent} == expected


class TestNormalize:
    def test_casefold_and_trim(self):
        assert normalize_for_matching("  Start   Inspection!! ") == "start inspection"

    def test_keeps_leading_hash(self):
        assert normalize_for_matching("#3") == "#3"

    def test_empty(self):
        assert normalize_for_matching("") == ""


class TestMatchCommand:
    @pytest.mark.parametrize(
        "text,intent,params",
        [
            ("start inspection #42", "start_inspection", {"work_order_id": 42}),
            ("Start job 7", "start_inspection", {"work_order_id": 7}),
            ("start inspection", "start_inspection", {}),
            ("Complete inspection", "complete_inspection", {}),
            ("finish job #12", "complete_inspection", {"work_order_id": 12}),
            ("3", "update_item", {"item_number": 3}),
            ("item 4", "update_item", {"item_number": 4}),
            ("#2", "update_item", {"item_number": 2}),
            ("Done", "complete_item", {}),
            ("n/a", "skip_item", {}),
            ("skip", "skip_item", {}),
            ("cancel", "cancel", {}),
            ("help", "help", {}),
            ("checklist", "view_checklist", {}),
            ("hello", "greeting", {}),
        ],
    )
    def test_commands(self, text, intent, params):
        result = match_command(text)
        assert result.intent == intent
        assert result.params == params

    def test_issue_keeps_original_casing(self):
        result = match_command("Issue: Leaking pipe under SINK")
        assert result.intent == "issue_found"
        assert result.params == {"text": "Leaking pipe under SINK"}

    def test_comment_text(self):
        result = match_command("comment: gutters clear")
        assert result.intent == "add_comment"
        assert result.params == {"text": "gutters clear"}

    def test_jobs_tomorrow(self):
        result = match_command("jobs tomorrow")
        assert result.intent == "view_jobs"
        assert result.params == {"date": (date.today() + timedelta(days=1)).isoformat()}

    def test_jobs_with_iso_date(self):
        assert match_command("show jobs 2026-03-01").params == {"date": "2026-03-01"}

    def test_free_text_needs_llm(self):
        assert match_command("the weather is nice") is None


class TestParseLLMOutput:
    def test_alias_is_mapped(self):
        result = parse_llm_output('{"intent": "select_item", "params": {"item_number": 2}, "confidence": 0.8}')
        assert result.intent == "update_item"
        assert result.params == {"item_number": 2}
        assert result.confidence == 0.8

    def test_non_json_is_unknown(self):
        result = parse_llm_output("I think they want jobs")
        assert result.intent == "unknown"
        assert result.confidence == 0.0

    def test_unrecognized_intent_is_unknown(self):
        assert parse_llm_output('{"intent": "fly", "confidence": 0.9}').intent == "unknown"

    def test_confidence_is_clamped(self):
        assert parse_llm_output('{"intent": "help", "confidence": 7}').confidence == 1.0

    def test_camel_case_direct_reply(self):
        result = parse_llm_output('{"intent": "unknown", "confidence": 0.4, "directReply": "Could you rephrase?"}')
        assert result.direct_reply == "Could you rephrase?"


class TestClassifyIntent:
    def test_command_skips_llm(self):
        with patch("inspector_api.services.intent_service.get_llm_provider") as get_provider:
            result = classify_intent("done", WorkflowContext(), "inspector")
        assert result.intent == "complete_item"
        get_provider.assert_not_called()

    def test_llm_result(self):
        llm = Mock()
        llm.generate.return_value = LLMResponse(
            content='{"intent": "view_checklist", "params": {}, "confidence": 0.75}', model="gpt-4o-mini"
        )
        with patch("inspector_api.services.intent_service.get_llm_provider", return_value=llm):
            result = classify_intent("what have I got left to do here", WorkflowContext(), "inspector")

        assert result.intent == "view_checklist"
        assert result.confidence == 0.75
        assert llm.generate.call_args.kwargs["json_mode"] is True

    def test_timeout_is_unknown(self):
        llm = Mock()
        llm.generate.side_effect = httpx.TimeoutException("slow")
        with patch("inspector_api.services.intent_service.get_llm_provider", return_value=llm):
            result = classify_intent("what should I do first", WorkflowContext(), "inspector")
        assert result.intent == "unknown"
        assert result.confidence == 0.0

    def test_llm_error_is_unknown(self):
        llm = Mock()
        llm.generate.side_effect = RuntimeError("boom")
        with patch("inspector_api.services.intent_service.get_llm_provider", return_value=llm):
            assert classify_intent("what should I do first", WorkflowContext(), "inspector").intent == "unknown"

    def test_no_llm_configured(self):
        with patch("inspector_api.services.intent_service.get_llm_provider", return_value=None):
            assert classify_intent("what should I do first", WorkflowContext(), "inspector").intent == "unknown"


class TestOpenAIProvider:
    def test_json_mode_payload(self):
        from inspector_api.services.llm import OpenAIProvider

        provider = OpenAIProvider(api_key="sk-test", api_url="https://llm.test/v1")
        with patch("inspector_api.services.llm.openai_provider.httpx.Client") as client_cls:
            client = client_cls.return_value.__enter__.return_value
            client.post.return_value = Mock(
                status_code=200,
                json=Mock(return_value={"model": "gpt-4o-mini", "choices": [{"message": {"content": "{}"}}]}),
            )
            response = provider.generate([{"role": "user", "content": "hi"}], json_mode=True)

        args, kwargs = client.post.call_args
        assert args[0] == "https://llm.test/v1/chat/completions"
        assert kwargs["json"]["response_format"] == {"type": "json_object"}
        assert response.content == "{}"

    def test_error_status_raises(self):
        from inspector_api.services.llm import LLMError, OpenAIProvider

        provider = OpenAIProvider(api_key="sk-test")
        with patch("inspector_api.services.llm.openai_provider.httpx.Client") as client_cls:
            client_cls.return_value.__enter__.return_value.post.return_value = Mock(status_code=429, text="slow down")
            with pytest.raises(LLMError):
                provider.generate([{"role": "user", "content": "hi"}])

import json
import re
import time
from datetime import date, timedelta
from enum import Enum
from typing import Optional

import httpx
from pydantic import ValidationError

from inspector_api.config import settings
from inspector_api.logging_config import get_logger
from inspector_api.schemas.workflow import IntentResult, WorkflowContext
from inspector_api.services.llm import LLMProvider, OpenAIProvider

logger = get_logger("intent_service")

_llm_provider: Optional[LLMProvider] = None


class Intent(str, Enum):
    VIEW_JOBS = "view_jobs"  # list today's (or a given date's) jobs
    VIEW_CHECKLIST = "view_checklist"  # show items of the open job
    START_INSPECTION = "start_inspection"
    UPDATE_ITEM = "update_item"  # select checklist item by number
    ADD_COMMENT = "add_comment"
    COMPLETE_ITEM = "complete_item"
    SKIP_ITEM = "skip_item"
    ISSUE_FOUND = "issue_found"
    ADD_MEDIA = "add_media"
    COMPLETE_INSPECTION = "complete_inspection"
    CANCEL = "cancel"
    HELP = "help"
    GREETING = "greeting"
    UNKNOWN = "unknown"


KNOWN_INTENTS = {intent.value for intent in Intent}

# Classifier aliases seen in LLM output
INTENT_ALIASES = {
    "get_today_jobs": Intent.VIEW_JOBS,
    "get_help": Intent.HELP,
    "select_item": Intent.UPDATE_ITEM,
}

CLASSIFY_PROMPT = """You classify WhatsApp messages from property inspectors.
Respond with JSON only:
{{"intent": "<intent>", "params": {{}}, "confidence": 0.0-1.0, "direct_reply": null}}

Intents and params:
- view_jobs: see scheduled jobs. params: {{"date": "YYYY-MM-DD"}} if a date is given
- view_checklist: see the checklist of the open job
- start_inspection: start a job. params: {{"work_order_id": <int>}}
- update_item: select a checklist item. params: {{"item_number": <int>}}
- add_comment: note on the selected item. params: {{"text": "<comment>"}}
- complete_item: mark the selected item done
- skip_item: mark the selected item not applicable
- issue_found: report a problem on the selected item. params: {{"text": "<description>"}}
- complete_inspection: finish the open job
- cancel: stop the current job
- help: instructions
- greeting: hello
- unknown: anything else

Only include params actually present in the message. Do not invent ids.
{context}
Role: {role}"""

CANCEL_PATTERN = re.compile(r"^(cancel|stop|exit|quit|abort)( inspection| job)?$")
HELP_PATTERN = re.compile(r"^(help|menu|commands|\?|what can you do)$")
GREETING_PATTERN = re.compile(r"^(hi|hello|hey|good (morning|afternoon|evening))\b")
START_PATTERN = re.compile(
    r"\bstart(?:ing)?\s+(?:the\s+)?(?:inspection|job|work order)\b(?:\s*(?:#|no\.?|number)?\s*(\d+))?"
)
COMPLETE_INSPECTION_PATTERN = re.compile(
    r"\b(?:complete|finish|close|submit)\s+(?:the\s+)?(?:inspection|job|work order)\b(?:\s*#?\s*(\d+))?"
)
VIEW_JOBS_PATTERN = re.compile(r"\b(jobs?|schedule|work orders|inspections)\b")
VIEW_CHECKLIST_PATTERN = re.compile(r"\b(checklist|status|progress|items|remaining)\b")
SELECT_ITEM_PATTERN = re.compile(r"^(?:select\s+|open\s+|go to\s+)?(?:item\s*)?#?\s*(\d{1,3})$")
COMPLETE_ITEM_PATTERN = re.compile(
    r"^(complete|completed|done|ok|okay|pass|passed|good|mark (as )?(complete|done))$"
)
SKIP_ITEM_PATTERN = re.compile(r"^(skip|skipped|n/?a|not applicable)$")
ISSUE_PATTERN = re.compile(
    r"^(issue|problem|defect|damage|fail|failed)\b\s*[:\-]?\s*(.*)$", re.DOTALL | re.IGNORECASE
)
COMMENT_PATTERN = re.compile(r"^(comment|note)\s*[:\-]?\s*(.+)$", re.DOTALL | re.IGNORECASE)
ISO_DATE_PATTERN = re.compile(r"\b(\d{4}-\d{2}-\d{2})\b")


def normalize_for_matching(text: str) -> str:
    """Normalize text for matching short phrases (casefold + trim punctuation)."""
    if not text:
        return ""

    normalized = text.strip().casefold()
    normalized = re.sub(r"\s+", " ", normalized)
    normalized = re.sub(r"^[^\w?#]+|[^\w?]+$", "", normalized)
    return normalized


def _extract_date(normalized: str, today: Optional[date] = None) -> Optional[str]:
    today = today or date.today()
    if "tomorrow" in normalized:
        return (today + timedelta(days=1)).isoformat()
    if "yesterday" in normalized:
        return (today - timedelta(days=1)).isoformat()
    match = ISO_DATE_PATTERN.search(normalized)
    if match:
        return match.group(1)
    return None


def match_command(text: str) -> Optional[IntentResult]:
    """Deterministic command grammar; None when the message needs the LLM."""
    normalized = normalize_for_matching(text)
    if not normalized:
        return None

    if CANCEL_PATTERN.match(normalized):
        return IntentResult(intent=Intent.CANCEL.value, confidence=1.0)
    if HELP_PATTERN.match(normalized):
        return IntentResult(intent=Intent.HELP.value, confidence=1.0)

    match = START_PATTERN.search(normalized)
    if match:
        params = {"work_order_id": int(match.group(1))} if match.group(1) else {}
        return IntentResult(intent=Intent.START_INSPECTION.value, params=params, confidence=1.0)

    match = COMPLETE_INSPECTION_PATTERN.search(normalized)
    if match:
        params = {"work_order_id": int(match.group(1))} if match.group(1) else {}
        return IntentResult(intent=Intent.COMPLETE_INSPECTION.value, params=params, confidence=1.0)

    match = SELECT_ITEM_PATTERN.match(normalized)
    if match:
        return IntentResult(
            intent=Intent.UPDATE_ITEM.value, params={"item_number": int(match.group(1))}, confidence=1.0
        )

    if COMPLETE_ITEM_PATTERN.match(normalized):
        return IntentResult(intent=Intent.COMPLETE_ITEM.value, confidence=1.0)
    if SKIP_ITEM_PATTERN.match(normalized):
        return IntentResult(intent=Intent.SKIP_ITEM.value, confidence=1.0)

    # keep the user's original casing for free-text params
    stripped = text.strip()
    match = ISSUE_PATTERN.match(stripped)
    if match:
        detail = match.group(2).strip()
        return IntentResult(intent=Intent.ISSUE_FOUND.value, params={"text": detail or stripped}, confidence=1.0)
    match = COMMENT_PATTERN.match(stripped)
    if match:
        return IntentResult(
            intent=Intent.ADD_COMMENT.value, params={"text": match.group(2).strip()}, confidence=1.0
        )

    if VIEW_JOBS_PATTERN.search(normalized):
        params = {}
        job_date = _extract_date(normalized)
        if job_date:
            params["date"] = job_date
        return IntentResult(intent=Intent.VIEW_JOBS.value, params=params, confidence=0.9)
    if VIEW_CHECKLIST_PATTERN.search(normalized):
        return IntentResult(intent=Intent.VIEW_CHECKLIST.value, confidence=0.9)
    if GREETING_PATTERN.match(normalized):
        return IntentResult(intent=Intent.GREETING.value, confidence=1.0)

    return None


def get_llm_provider() -> Optional[LLMProvider]:
    """Get or create LLM provider instance; None when no API key is configured."""
    global _llm_provider
    if _llm_provider is None and settings.openai_api_key:
        _llm_provider = OpenAIProvider(
            api_key=settings.openai_api_key,
            default_model=settings.openai_model,
            api_url=settings.openai_api_url,
        )
    return _llm_provider


def _describe_context(context: WorkflowContext) -> str:
    lines = []
    if context.current_work_order_id:
        lines.append(f"The inspector is working on work order #{context.current_work_order_id}.")
    if context.current_checklist_item_id:
        lines.append("A checklist item is currently selected.")
    return "\n".join(lines)


def parse_llm_output(content: str) -> IntentResult:
    """Parse classifier JSON; malformed output degrades to unknown."""
    try:
        data = json.loads(content)
    except (TypeError, ValueError):
        logger.warning("Intent LLM returned non-JSON output", extra={"context": {"preview": (content or "")[:200]}})
        return unknown_intent()

    if not isinstance(data, dict):
        return unknown_intent()

    raw_intent = str(data.get("intent") or "unknown").strip().lower()
    if raw_intent in INTENT_ALIASES:
        raw_intent = INTENT_ALIASES[raw_intent].value
    if raw_intent not in KNOWN_INTENTS:
        raw_intent = Intent.UNKNOWN.value

    try:
        return IntentResult(
            intent=raw_intent,
            params=data.get("params") if isinstance(data.get("params"), dict) else {},
            confidence=min(max(float(data.get("confidence") or 0.0), 0.0), 1.0),
            direct_reply=data.get("direct_reply") or data.get("directReply") or None,
            context_deltas=data.get("context_deltas") or data.get("contextDeltas") or {},
        )
    except (TypeError, ValueError, ValidationError) as e:
        logger.warning(f"Intent LLM output rejected: {e}")
        return unknown_intent()


def unknown_intent() -> IntentResult:
    return IntentResult(intent=Intent.UNKNOWN.value, confidence=0.0)


def classify_intent(text: str, context: WorkflowContext, role: str) -> IntentResult:
    """Classify an inspector message. Never raises."""
    try:
        command = match_command(text)
        if command:
            return command

        llm = get_llm_provider()
        if llm is None:
            return unknown_intent()

        prompt = CLASSIFY_PROMPT.format(context=_describe_context(context), role=role)
        messages = [{"role": "system", "content": prompt}, {"role": "user", "content": text}]

        llm_start = time.monotonic()
        try:
            response = llm.generate(
                messages,
                temperature=0.2,
                max_tokens=300,
                timeout_seconds=settings.intent_timeout_seconds,
                json_mode=True,
            )
        except httpx.TimeoutException as exc:
            logger.warning(f"Intent LLM timeout after {settings.intent_timeout_seconds}s: {exc}")
            return unknown_intent()

        logger.info(
            "Timing",
            extra={
                "context": {
                    "stage": "intent_llm_ms",
                    "elapsed_ms": round((time.monotonic() - llm_start) * 1000, 2),
                    "model_name": response.model,
                    "total_tokens": response.total_tokens,
                }
            },
        )
        return parse_llm_output(response.content)

    except Exception as e:
        logger.error(f"Intent classification error: {e}")
        return unknown_intent()

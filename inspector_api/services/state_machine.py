from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional, Union

from sqlalchemy.orm import Session

from inspector_api.config import settings
from inspector_api.logging_config import get_logger
from inspector_api.models import ChecklistInstanceItem, Conversation, Media, User
from inspector_api.schemas.workflow import IntentResult, WorkflowContext, WorkflowResult
from inspector_api.services import checklist_service, media_service, work_order_service
from inspector_api.services.intent_service import Intent

logger = get_logger("state_machine")


class WorkflowState(str, Enum):
    IDLE = "idle"  # no job open
    JOB_OPEN = "job_open"  # job open, no item selected
    ITEM_SELECTED = "item_selected"


ANY_STATE = frozenset(WorkflowState)
JOB_STATES = frozenset({WorkflowState.JOB_OPEN, WorkflowState.ITEM_SELECTED})
ITEM_STATES = frozenset({WorkflowState.ITEM_SELECTED})

# Intents answered regardless of classifier confidence
UNGATED_INTENTS = {Intent.HELP, Intent.GREETING, Intent.UNKNOWN}

MSG_HELP = (
    "Commands:\n"
    "- 'jobs' (or 'jobs tomorrow') to see your schedule\n"
    "- 'start inspection #<id>' to open a job\n"
    "- an item number to select a checklist item\n"
    "- 'done', 'skip', 'issue: <details>' or 'comment: <text>' for the selected item\n"
    "- send a photo to attach it to the selected item\n"
    "- 'checklist' to see progress\n"
    "- 'complete inspection' when every item is done\n"
    "- 'cancel' to stop"
)
MSG_GREETING = "Hi{name}! Send 'jobs' to see today's inspections or 'help' for all commands."
MSG_CLARIFY = "Sorry, I didn't get that. Send 'help' to see what I can do."
MSG_FEATURE_UNAVAILABLE = "This feature is only available to inspectors."
MSG_NO_ACTIVE_JOB = "No inspection is open. Send 'jobs' to see your schedule, then 'start inspection #<id>'."
MSG_SELECT_ITEM_FIRST = "Select a checklist item first by replying with its number. Send 'checklist' to see them."
MSG_MEDIA_NO_JOB = "I saved your file, but no inspection is open so it isn't attached to anything. Start an inspection, select an item and send it again."
MSG_MEDIA_SELECT_ITEM = "I saved your file. Reply with a checklist item number and I'll attach it to that item."
MSG_WHICH_JOB = "Which job? Reply 'start inspection #<id>'. Send 'jobs' to see your schedule."
MSG_WHICH_ITEM = "Which item? Reply with its number from the checklist."
MSG_WHAT_COMMENT = "What should the comment say? Reply 'comment: <text>'."
MSG_BAD_DATE = "I couldn't read that date. Use YYYY-MM-DD, e.g. 'jobs {today}'."
MSG_NO_JOBS = "You have no jobs scheduled for {day}."
MSG_NOT_ASSIGNED = "Work order #{work_order_id} isn't assigned to you."
MSG_JOB_ALREADY_COMPLETED = "Inspection #{work_order_id} is already complete."
MSG_JOB_CANCELLED = "Work order #{work_order_id} was cancelled."
MSG_JOB_NOT_OPEN = "Inspection #{work_order_id} isn't open. Send 'start inspection #{work_order_id}' first."
MSG_ITEM_OUT_OF_RANGE = "There is no item {number}. Choose a number from 1 to {total}."
MSG_MEDIA_MISSING = "I couldn't find that file. Please send it again."
MSG_MEDIA_FOREIGN = "That file belongs to an earlier conversation. Please send it again."
MSG_PENDING_ITEMS = "Can't complete inspection #{work_order_id} yet. These items are still pending:\n{items}"
MSG_INSPECTION_COMPLETED = "Inspection #{work_order_id} is complete. The report is being generated and the customer will be notified."
MSG_CANCELLED = "Stopped working on inspection #{work_order_id}. Progress is saved; start it again any time."
MSG_NOTHING_TO_CANCEL = "Nothing to cancel."

ViolationReply = Union[str, dict]


@dataclass(frozen=True)
class Transition:
    """Where an intent may fire and what to say when it may not."""

    allowed: frozenset
    violation_reply: Optional[ViolationReply] = None  # str, or {WorkflowState: str}
    required_params: tuple = ()
    clarification: str = MSG_CLARIFY

    def reply_for(self, state: WorkflowState) -> str:
        if isinstance(self.violation_reply, dict):
            return self.violation_reply.get(state, MSG_CLARIFY)
        return self.violation_reply or MSG_CLARIFY


TRANSITIONS: dict[Intent, Transition] = {
    Intent.VIEW_JOBS: Transition(ANY_STATE),
    Intent.VIEW_CHECKLIST: Transition(JOB_STATES, MSG_NO_ACTIVE_JOB),
    Intent.START_INSPECTION: Transition(ANY_STATE, required_params=("work_order_id",), clarification=MSG_WHICH_JOB),
    Intent.UPDATE_ITEM: Transition(
        JOB_STATES, MSG_NO_ACTIVE_JOB, required_params=("item_number",), clarification=MSG_WHICH_ITEM
    ),
    Intent.ADD_COMMENT: Transition(
        ITEM_STATES, MSG_SELECT_ITEM_FIRST, required_params=("text",), clarification=MSG_WHAT_COMMENT
    ),
    Intent.COMPLETE_ITEM: Transition(ITEM_STATES, MSG_SELECT_ITEM_FIRST),
    Intent.SKIP_ITEM: Transition(ITEM_STATES, MSG_SELECT_ITEM_FIRST),
    Intent.ISSUE_FOUND: Transition(ITEM_STATES, MSG_SELECT_ITEM_FIRST),
    Intent.ADD_MEDIA: Transition(
        ITEM_STATES,
        {WorkflowState.IDLE: MSG_MEDIA_NO_JOB, WorkflowState.JOB_OPEN: MSG_MEDIA_SELECT_ITEM},
        required_params=("media_id",),
        clarification=MSG_MEDIA_MISSING,
    ),
    # an explicit work order id is accepted in any state so completed orders get a no-op reply
    Intent.COMPLETE_INSPECTION: Transition(ANY_STATE),
    Intent.CANCEL: Transition(ANY_STATE),
    Intent.HELP: Transition(ANY_STATE),
    Intent.GREETING: Transition(ANY_STATE),
    Intent.UNKNOWN: Transition(ANY_STATE),
}


def derive_state(context: WorkflowContext) -> WorkflowState:
    if not context.current_work_order_id:
        return WorkflowState.IDLE
    if not context.current_checklist_item_id:
        return WorkflowState.JOB_OPEN
    return WorkflowState.ITEM_SELECTED


def to_intent(value: str) -> Intent:
    try:
        return Intent(value)
    except ValueError:
        return Intent.UNKNOWN


def _has_param(params: dict, key: str) -> bool:
    value = params.get(key)
    if isinstance(value, str):
        return bool(value.strip())
    return value is not None


def _int_param(params: dict, key: str) -> Optional[int]:
    value = params.get(key)
    if isinstance(value, bool) or value is None:
        return None
    try:
        return int(str(value).strip().lstrip("#"))
    except (TypeError, ValueError):
        return None


def check_transition(state: WorkflowState, intent: Intent, intent_result: IntentResult) -> Optional[str]:
    """Reply for a rejected transition; None when it may proceed. Pure."""
    if intent not in UNGATED_INTENTS and intent_result.confidence < settings.intent_confidence_threshold:
        return MSG_CLARIFY

    transition = TRANSITIONS[intent]
    if state not in transition.allowed:
        return transition.reply_for(state)

    for key in transition.required_params:
        if not _has_param(intent_result.params, key):
            return transition.clarification
    for key in ("work_order_id", "item_number", "media_id"):
        if key in transition.required_params and _int_param(intent_result.params, key) is None:
            return transition.clarification
    return None


class WorkflowEngine:
    """Applies one intent to a user's workflow context.

    Runs inside the caller's transaction with the user lock held. Data
    mutations are flushed, never committed here.
    """

    def __init__(self, db: Session, user: User, conversation: Conversation):
        self.db = db
        self.user = user
        self.conversation = conversation

    def reconcile(self, context: WorkflowContext) -> WorkflowContext:
        """Drop context references that no longer hold."""
        if context.current_work_order_id:
            work_order = work_order_service.get_assigned_work_order(
                self.db, context.current_work_order_id, self.user.id
            )
            if not work_order or work_order.status != "in_progress":
                logger.warning(
                    "Clearing stale work order from context",
                    extra={
                        "context": {
                            "conversation_id": self.conversation.id,
                            "work_order_id": context.current_work_order_id,
                        }
                    },
                )
                return context.cleared()

        if context.current_checklist_item_id:
            item = self._current_item(context)
            if item is None:
                logger.warning(
                    "Clearing checklist item outside the current job",
                    extra={
                        "context": {
                            "conversation_id": self.conversation.id,
                            "item_id": context.current_checklist_item_id,
                        }
                    },
                )
                return context.model_copy(update={"current_checklist_item_id": None})

        return context

    def apply(self, context: WorkflowContext, intent_result: IntentResult) -> tuple[WorkflowContext, WorkflowResult]:
        context = self.reconcile(context)
        intent = to_intent(intent_result.intent)
        state = derive_state(context)

        if intent_result.context_deltas:
            logger.info(
                "Ignoring classifier context deltas",
                extra={"context": {"keys": sorted(intent_result.context_deltas)}},
            )

        rejection = check_transition(state, intent, intent_result)
        if rejection:
            logger.info(
                "Transition rejected",
                extra={
                    "context": {
                        "intent": intent.value,
                        "state": state.value,
                        "confidence": intent_result.confidence,
                    }
                },
            )
            return context, self._reply(rejection)

        handler = getattr(self, f"_handle_{intent.value}")
        new_context, result = handler(context, intent_result)
        logger.info(
            "Transition applied",
            extra={
                "context": {
                    "intent": intent.value,
                    "from_state": state.value,
                    "to_state": derive_state(new_context).value,
                    "triggers": [trigger.name for trigger in result.triggers],
                }
            },
        )
        return new_context, result

    # helpers

    def _reply(self, text: str) -> WorkflowResult:
        return WorkflowResult().reply(self.user.phone, text)

    def _current_item(self, context: WorkflowContext) -> Optional[ChecklistInstanceItem]:
        if not context.current_work_order_id or not context.current_checklist_item_id:
            return None
        instance = checklist_service.get_instance(self.db, context.current_work_order_id)
        if not instance:
            return None
        return checklist_service.get_instance_item(self.db, instance.id, context.current_checklist_item_id)

    def _remaining_text(self, instance_id: int) -> str:
        done, total = checklist_service.checklist_progress(self.db, instance_id)
        if done >= total:
            return "All items are done. Send 'complete inspection' to finish."
        return f"{total - done} of {total} items left."

    def _item_status_update(
        self, context: WorkflowContext, status: str, comment: Optional[str] = None
    ) -> tuple[WorkflowContext, WorkflowResult]:
        item = self._current_item(context)
        checklist_service.set_item_status(self.db, item, status, comment=comment)
        number = checklist_service.item_number(self.db, item)
        label = checklist_service.STATUS_LABELS[status]
        text = f"Item {number} ({item.name}) marked {label}. {self._remaining_text(item.checklist_instance_id)}"
        return context, self._reply(text)

    # handlers, one per intent

    def _handle_view_jobs(self, context: WorkflowContext, intent_result: IntentResult):
        if self.user.role != "inspector":
            return context, self._reply(MSG_FEATURE_UNAVAILABLE)

        raw_date = intent_result.params.get("date")
        day = date.today()
        if raw_date:
            try:
                day = date.fromisoformat(str(raw_date).strip())
            except ValueError:
                return context, self._reply(MSG_BAD_DATE.format(today=date.today().isoformat()))

        jobs = work_order_service.list_jobs(self.db, self.user.id, day)
        if not jobs:
            return context, self._reply(MSG_NO_JOBS.format(day=day.isoformat()))

        lines = [f"Your jobs for {day.isoformat()}:"]
        lines.extend(work_order_service.format_job_line(job) for job in jobs)
        lines.append("Reply 'start inspection #<id>' to begin.")
        return context, self._reply("\n".join(lines))

    def _handle_view_checklist(self, context: WorkflowContext, intent_result: IntentResult):
        instance = checklist_service.get_instance(self.db, context.current_work_order_id)
        if not instance:
            return context, self._reply(MSG_NO_ACTIVE_JOB)
        done, total = checklist_service.checklist_progress(self.db, instance.id)
        text = (
            f"Inspection #{context.current_work_order_id} ({done}/{total} done):\n"
            f"{checklist_service.format_checklist(self.db, instance.id)}"
        )
        return context, self._reply(text)

    def _handle_start_inspection(self, context: WorkflowContext, intent_result: IntentResult):
        work_order_id = _int_param(intent_result.params, "work_order_id")
        work_order = work_order_service.get_assigned_work_order(self.db, work_order_id, self.user.id)
        if not work_order:
            return context, self._reply(MSG_NOT_ASSIGNED.format(work_order_id=work_order_id))
        if work_order.status == "completed":
            return context, self._reply(MSG_JOB_ALREADY_COMPLETED.format(work_order_id=work_order.id))
        if work_order.status == "cancelled":
            return context, self._reply(MSG_JOB_CANCELLED.format(work_order_id=work_order.id))

        instance, created = checklist_service.ensure_instance(self.db, work_order)
        if work_order.status == "scheduled":
            work_order.status = "in_progress"
            work_order.started_at = datetime.now(timezone.utc)
            self.db.flush()

        if context.current_work_order_id and context.current_work_order_id != work_order.id:
            logger.info(f"Switching from work order {context.current_work_order_id} to {work_order.id}")

        new_context = context.model_copy(
            update={"current_work_order_id": work_order.id, "current_checklist_item_id": None}
        )
        verb = "Started" if created else "Resuming"
        text = (
            f"{verb} inspection #{work_order.id} at {work_order_service.describe_location(work_order)}.\n"
            f"{checklist_service.format_checklist(self.db, instance.id)}\n"
            "Reply with an item number to select it."
        )
        return new_context, self._reply(text)

    def _handle_update_item(self, context: WorkflowContext, intent_result: IntentResult):
        instance = checklist_service.get_instance(self.db, context.current_work_order_id)
        if not instance:
            return context, self._reply(MSG_NO_ACTIVE_JOB)

        number = _int_param(intent_result.params, "item_number")
        item = checklist_service.resolve_item_number(self.db, instance.id, number)
        if not item:
            total = len(checklist_service.ordered_items(self.db, instance.id))
            return context, self._reply(MSG_ITEM_OUT_OF_RANGE.format(number=number, total=total))

        bound = media_service.bind_pending_media(self.db, self.conversation, context.current_work_order_id, item)
        new_context = context.model_copy(update={"current_checklist_item_id": item.id})

        status = checklist_service.STATUS_LABELS.get(item.status, item.status)
        text = (
            f"Selected item {number}: {item.name} ({status}). "
            "Send photos, 'comment: <text>', 'done', 'skip' or 'issue: <details>'."
        )
        if bound:
            text += f" Attached {bound} file(s) you sent earlier."
        return new_context, self._reply(text)

    def _handle_add_comment(self, context: WorkflowContext, intent_result: IntentResult):
        item = self._current_item(context)
        checklist_service.append_comment(item, str(intent_result.params["text"]))
        self.db.flush()
        number = checklist_service.item_number(self.db, item)
        return context, self._reply(f"Comment added to item {number} ({item.name}).")

    def _handle_complete_item(self, context: WorkflowContext, intent_result: IntentResult):
        return self._item_status_update(context, checklist_service.ITEM_COMPLETED)

    def _handle_skip_item(self, context: WorkflowContext, intent_result: IntentResult):
        return self._item_status_update(context, checklist_service.ITEM_SKIPPED)

    def _handle_issue_found(self, context: WorkflowContext, intent_result: IntentResult):
        detail = str(intent_result.params.get("text") or "").strip()
        item = self._current_item(context)
        new_context, result = self._item_status_update(context, checklist_service.ITEM_ISSUE_FOUND, comment=detail)
        admin_text = f"Issue reported on work order #{context.current_work_order_id}, item '{item.name}'"
        if detail:
            admin_text += f": {detail}"
        result.trigger("notify_admin", context.current_work_order_id, admin_text)
        return new_context, result

    def _handle_add_media(self, context: WorkflowContext, intent_result: IntentResult):
        media = self.db.get(Media, _int_param(intent_result.params, "media_id"))
        if not media:
            return context, self._reply(MSG_MEDIA_MISSING)

        item = self._current_item(context)
        bound = media_service.bind_media(self.db, self.conversation, media, item)
        if not bound.ok:
            logger.warning(f"Media bind rejected: {bound.error}", extra={"context": {"media_id": media.id}})
            return context, self._reply(MSG_MEDIA_FOREIGN)

        caption = str(intent_result.params.get("caption") or "").strip()
        if caption:
            checklist_service.append_comment(item, caption)
            self.db.flush()

        number = checklist_service.item_number(self.db, item)
        kind = "Photo" if media.media_type == "image" else media.media_type.capitalize()
        return context, self._reply(f"{kind} attached to item {number} ({item.name}).")

    def _handle_complete_inspection(self, context: WorkflowContext, intent_result: IntentResult):
        work_order_id = _int_param(intent_result.params, "work_order_id") or context.current_work_order_id
        if not work_order_id:
            # the conversation closes on completion, so point at the last finished job
            recent = work_order_service.last_completed_work_order(self.db, self.user.id)
            if recent:
                return context, self._reply(MSG_JOB_ALREADY_COMPLETED.format(work_order_id=recent.id))
            return context, self._reply(MSG_NO_ACTIVE_JOB)

        work_order = work_order_service.get_assigned_work_order(self.db, work_order_id, self.user.id)
        if not work_order:
            return context, self._reply(MSG_NOT_ASSIGNED.format(work_order_id=work_order_id))
        if work_order.status == "completed":
            return context, self._reply(MSG_JOB_ALREADY_COMPLETED.format(work_order_id=work_order.id))

        instance = checklist_service.get_instance(self.db, work_order.id)
        if work_order.id != context.current_work_order_id or not instance:
            return context, self._reply(MSG_JOB_NOT_OPEN.format(work_order_id=work_order.id))

        completion = checklist_service.complete_instance(self.db, instance)
        if completion.failed_with("pending_items"):
            items = "\n".join(f"{number}. {item.name}" for number, item in completion.value or [])
            return context, self._reply(MSG_PENDING_ITEMS.format(work_order_id=work_order.id, items=items))

        _, newly_completed = completion.value
        result = self._reply(MSG_INSPECTION_COMPLETED.format(work_order_id=work_order.id))
        if newly_completed:
            result.trigger("generate_report", work_order.id)
            result.trigger("notify_customer", work_order.id)
        result.deactivate = True
        return context.cleared(), result

    def _handle_cancel(self, context: WorkflowContext, intent_result: IntentResult):
        if context.current_work_order_id:
            result = self._reply(MSG_CANCELLED.format(work_order_id=context.current_work_order_id))
        else:
            result = self._reply(MSG_NOTHING_TO_CANCEL)
        result.deactivate = True
        return context.cleared(), result

    def _handle_help(self, context: WorkflowContext, intent_result: IntentResult):
        return context, self._reply(intent_result.direct_reply or MSG_HELP)

    def _handle_greeting(self, context: WorkflowContext, intent_result: IntentResult):
        name = f" {self.user.name}" if self.user.name else ""
        return context, self._reply(intent_result.direct_reply or MSG_GREETING.format(name=name))

    def _handle_unknown(self, context: WorkflowContext, intent_result: IntentResult):
        return context, self._reply(intent_result.direct_reply or MSG_CLARIFY)


def apply_intent(
    db: Session,
    user: User,
    conversation: Conversation,
    context: WorkflowContext,
    intent_result: IntentResult,
) -> tuple[WorkflowContext, WorkflowResult]:
    """Functional entry point: (context, intent) -> (new context, result)."""
    return WorkflowEngine(db, user, conversation).apply(context, intent_result)

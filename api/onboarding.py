from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from events import utc_ts

JsonDict = Dict[str, Any]

PLANNER = "planner"
EXECUTOR = "executor"

PLANNER_STEPS: List[JsonDict] = [
    {
        "id": "welcome",
        "title": "Welcome & Chat with Emma",
        "description": "Get to know Emma and start your planning journey",
    },
    {
        "id": "will",
        "title": "Your Will",
        "description": "Upload an existing will or create one together",
    },
    {
        "id": "executors",
        "title": "Choose Executors",
        "description": "Pick the people who will handle your affairs",
    },
    {
        "id": "personal-notes",
        "title": "Personal Notes",
        "description": "Leave personal messages for your executors",
    },
    {
        "id": "assets",
        "title": "Document Assets",
        "description": "List financial, physical, digital and business assets",
    },
    {
        "id": "documents",
        "title": "Organize Documents",
        "description": "Record where important documents live and who to contact",
    },
]

EXECUTOR_STEPS: List[JsonDict] = [
    {
        "id": "notification",
        "title": "Death Notification",
        "description": "Report the passing and begin the process",
    },
    {
        "id": "verification",
        "title": "Document Verification",
        "description": "Upload the death certificate",
    },
    {
        "id": "will",
        "title": "Will Review",
        "description": "Review the will and final wishes",
    },
    {
        "id": "assets",
        "title": "Asset Review",
        "description": "Review the assets that were left behind",
    },
    {
        "id": "documents",
        "title": "Document Access",
        "description": "Access important documents",
    },
    {
        "id": "contacts",
        "title": "Contact Outreach",
        "description": "Notify the relevant organizations",
    },
]

STEPS: Dict[str, List[JsonDict]] = {PLANNER: PLANNER_STEPS, EXECUTOR: EXECUTOR_STEPS}

# Shown to a returning executor for each finished step.
EXECUTOR_STEP_LABELS: Dict[str, str] = {
    "notification": "Reported the passing",
    "verification": "Uploaded death certificate",
    "will": "Reviewed the will",
    "assets": "Reviewed assets",
    "documents": "Accessed important documents",
    "contacts": "Notified relevant organizations",
}

PLANNER_COMPLETION_MESSAGE = (
    "You've completed your estate plan! Your will, executors, personal notes, assets and "
    "documents are all saved. You can come back and update anything at any time."
)

EXECUTOR_COMPLETION_SUMMARY = (
    "You've completed the executor onboarding process. You've verified the death, uploaded "
    "the death certificate, reviewed the will and assets, and contacted the necessary organizations."
)

DEFAULT_RESUME_SUMMARY = (
    "In your last session, you began the process of managing {planner}'s estate. "
    "You can continue at your own pace."
)

MAX_PRIORITY_TASKS = 3


@dataclass(eq=False)
class StepError(Exception):
    code: str
    message: str
    http_status: int = 409


def steps_for(flow: str) -> List[JsonDict]:
    try:
        return STEPS[flow]
    except KeyError:
        raise ValueError(f"unknown onboarding flow: {flow}")


def step_index(flow: str, step_id: str) -> Optional[int]:
    """0-based position of a step id, or None."""
    for i, step in enumerate(steps_for(flow)):
        if step["id"] == step_id:
            return i
    return None


def _current(session: JsonDict) -> int:
    try:
        return max(1, int(session.get("current_step") or 1))
    except (TypeError, ValueError):
        return 1


def current_step_id(flow: str, session: JsonDict) -> Optional[str]:
    steps = steps_for(flow)
    pos = _current(session)
    if pos > len(steps):
        return None
    return steps[pos - 1]["id"]


def is_finished(flow: str, session: JsonDict) -> bool:
    return _current(session) > len(steps_for(flow))


def priority_tasks(flow: str, current_step: int) -> List[str]:
    """Titles of the next few steps starting at `current_step` (1-based)."""
    steps = steps_for(flow)
    start = max(0, current_step - 1)
    return [s["title"] for s in steps[start:start + MAX_PRIORITY_TASKS]]


def new_planner_state() -> JsonDict:
    return {
        "current_step": 1,
        "conversation_history": [],
        "completed_steps": {},
        "preferences": {},
    }


def new_executor_state(death_state: JsonDict, now_iso: Optional[str] = None) -> JsonDict:
    """Starting row for an executor session.

    A reported or verified death skips notification; verification is always
    walked through.
    """
    ts = now_iso or utc_ts()
    completed: JsonDict = {}
    completed_tasks: List[str] = []
    current_step = 1
    verified = bool(death_state.get("verified"))

    if verified or death_state.get("reported"):
        completed["notification"] = {"completed": True, "completedAt": ts}
        completed_tasks.append("notification")
        current_step = 2

    return {
        "trigger_type": "death_notification",
        "current_step": current_step,
        "conversation_history": [],
        "completed_steps": completed,
        "completed_tasks": completed_tasks,
        "next_priority_tasks": priority_tasks(EXECUTOR, current_step),
        "death_verified": verified,
        "death_certificate_uploaded": False,
        "session_count": 1,
    }


def complete_step(
    flow: str,
    session: JsonDict,
    step_id: str,
    data: Optional[JsonDict] = None,
    now_iso: Optional[str] = None,
) -> Tuple[JsonDict, str]:
    """Return (patch, outcome) for completing `step_id`.

    outcome is one of "advanced", "finished", "already_completed".
    An empty patch means nothing to persist.
    """
    steps = steps_for(flow)
    idx = step_index(flow, step_id)
    if idx is None:
        raise StepError("not_found", f"Unknown step: {step_id}", http_status=404)

    pos = _current(session)
    if idx + 1 < pos:
        return {}, "already_completed"
    if idx + 1 > pos:
        current = current_step_id(flow, session)
        raise StepError(
            "step_out_of_order",
            f"Step {step_id} cannot be completed before {current}",
        )

    completed_steps = dict(session.get("completed_steps") or {})
    record = dict(data or {})
    record["completedAt"] = now_iso or utc_ts()
    completed_steps[step_id] = record

    next_pos = pos + 1
    patch: JsonDict = {
        "completed_steps": completed_steps,
        "current_step": next_pos,
    }

    if flow == EXECUTOR:
        tasks = list(session.get("completed_tasks") or [])
        if step_id not in tasks:
            tasks.append(step_id)
        patch["completed_tasks"] = tasks
        patch["next_priority_tasks"] = priority_tasks(EXECUTOR, next_pos)

    if next_pos > len(steps):
        if flow == PLANNER:
            patch["completed_at"] = record["completedAt"]
        else:
            patch["last_session_summary"] = EXECUTOR_COMPLETION_SUMMARY
        return patch, "finished"
    return patch, "advanced"


def step_back(flow: str, session: JsonDict) -> JsonDict:
    pos = _current(session)
    if pos <= 1:
        return {}
    patch: JsonDict = {"current_step": pos - 1}
    if flow == PLANNER and pos > len(steps_for(flow)):
        patch["completed_at"] = None
    if flow == EXECUTOR:
        patch["next_priority_tasks"] = priority_tasks(EXECUTOR, pos - 1)
    return patch


def step_views(flow: str, session: JsonDict) -> List[JsonDict]:
    pos = _current(session)
    views = []
    for i, step in enumerate(steps_for(flow)):
        if i + 1 < pos:
            status = "completed"
        elif i + 1 == pos:
            status = "current"
        else:
            status = "upcoming"
        views.append({**step, "position": i + 1, "status": status})
    return views


def progress(flow: str, session: JsonDict) -> JsonDict:
    total = len(steps_for(flow))
    done = min(total, _current(session) - 1)
    return {
        "completed_count": done,
        "total": total,
        "percent": round(done * 100 / total) if total else 0,
    }


def session_view(flow: str, session: JsonDict) -> JsonDict:
    """Client payload for an onboarding session row."""
    out = dict(session)
    out["steps"] = step_views(flow, session)
    out["current_step_id"] = current_step_id(flow, session)
    out["progress"] = progress(flow, session)
    out["completed"] = is_finished(flow, session)
    return out


def resume_view(session: JsonDict, planner_name: str) -> JsonDict:
    completed_steps = session.get("completed_steps") or {}
    labels = [
        EXECUTOR_STEP_LABELS[step["id"]]
        for step in EXECUTOR_STEPS
        if step["id"] in completed_steps
    ]
    step_id = current_step_id(EXECUTOR, session)
    next_title = None
    if step_id:
        next_title = EXECUTOR_STEPS[step_index(EXECUTOR, step_id) or 0]["title"]
    summary = (session.get("last_session_summary") or "").strip()
    return {
        "planner_name": planner_name,
        "summary": summary or DEFAULT_RESUME_SUMMARY.format(planner=planner_name),
        "completed_labels": labels,
        "next_step_title": next_title,
    }

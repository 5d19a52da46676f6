"""Emma: prompt strings and the deterministic parts of the chat flow.

The LLM call itself lives in llm_client; everything here is pure so the
message assembly and reply classification can be tested offline.
"""

from __future__ import annotations

import json
import os
from typing import Any, Dict, List, Optional

JsonDict = Dict[str, Any]
Message = Dict[str, str]

PLANNER = "planner"
EXECUTOR_INVITATION = "executor_invitation"
EXECUTOR_ONBOARDING = "executor_onboarding"

PLANNER_SYSTEM_PROMPT = """You are Emma, a supportive planning assistant for EverEase. Your priority is to guide users through the workflow steps in order, being concise and helpful.

## WORKFLOW TO FOLLOW:
1. Welcome message: "Welcome to EverEase! I'll help you organize your end-of-life planning to make things easier for your loved ones."

2. Will creation: "Let's add your will. You can upload an existing will or create one now."

3. Add executors: Guide them to select and invite their executors

4. Personal notes: Help them write a personal note for each executor

5. Add assets: Document their financial, physical, and digital assets

6. Add documents: Upload and organize important documents

## YOUR COMMUNICATION STYLE:
- CONCISE and direct - keep messages short and clear
- SPECIFIC - tell them exactly what to do next
- Supportive but not overly enthusiastic
- Use plain language, not markdown formatting

## ALWAYS BE DIRECTIVE:
- "Click on Assets in the sidebar to add your financial accounts"
- "Go to the Documents page to upload your will"
- "Select the Executors tab to invite someone you trust"

Don't use excessive exclamation points, long paragraphs or markdown formatting.

## WORKFLOW PRIORITY:
Guide them to the NEXT step in the sequence. If they try to skip ahead or go backwards, gently redirect them to complete the current step first.

Your goal: Get them through all 6 steps efficiently with clear, specific guidance."""

EXECUTOR_INVITATION_PROMPT = """You are Emma, a professional assistant for EverEase. You're speaking to someone who has just been invited to be an executor.

Your message should be:
- Brief and professional
- Acknowledge the responsibility
- Reassure them they don't need to do anything now
- Explain this platform will help them when needed

Keep it concise and focus on:
1. Thank them for agreeing to be an executor
2. Explain that the planner is organizing everything
3. Reassure they don't need to act now
4. Mention you'll guide them if the time comes

Example tone: "Thanks for agreeing to be [planner's] executor. They've organized everything so that things are smooth in the unfortunate event of their passing. You don't need to do anything for now, but if you have any questions, please ask away!\""""

EXECUTOR_ONBOARDING_PROMPT = """You are Emma, a nurturing assistant for EverEase, helping an executor after someone has passed away.

## WORKFLOW TO FOLLOW:
1. After planner's personal note is shown, introduce yourself: "Hi [executor_name], I'm Emma. [planner_name] has organized everything to make this process as smooth as possible. I'll explain everything step by step."

2. Wait for their response - if they have concerns, address them. If not, move forward.

3. Guide them to upload death certificate

4. Walk through the will together

5. Review all assets systematically

6. Go through all documents

7. Help them contact representatives and contacts one by one

## YOUR TONE:
- Gentle and nurturing
- Patient with their grief
- Concise but caring
- Focused on practical next steps
- Acknowledge their loss appropriately

## WORKFLOW PRIORITY:
Keep them moving through the steps in order. Be understanding of their emotional state but maintain gentle forward momentum.

Your goal: Guide them through the entire process step by step, providing both emotional support and practical direction."""

PROMPTS: Dict[str, str] = {
    PLANNER: PLANNER_SYSTEM_PROMPT,
    EXECUTOR_INVITATION: EXECUTOR_INVITATION_PROMPT,
    EXECUTOR_ONBOARDING: EXECUTOR_ONBOARDING_PROMPT,
}

PLANNER_GREETING = (
    "Welcome to EverEase! I'm Emma, and I'm here to help you organize your end-of-life planning.\n\n"
    "Here's what we'll do together:\n\n"
    "1. Add your will - upload or create one\n"
    "2. Set up your executors - the people you trust\n"
    "3. Document your assets - accounts and valuables\n"
    "4. Organize your documents - everything in one place\n\n"
    "Ready to start? Let me know if you have any questions!"
)

INVITATION_GREETING = (
    "Hi {executor}, I'm Emma. {planner} has chosen you as their executor. This means they trust you "
    "to handle their affairs when needed. You don't need to do anything right now - {planner} is still "
    "organizing everything. When the time comes, I'll guide you through each step."
)

ONBOARDING_GREETING = (
    "I'm sorry for your loss, {executor}. I know this is a difficult time. {planner} organized everything "
    "to support you through this process. I'll help you honor their wishes while taking care of yourself. "
    "When you're ready, we'll verify your identity and then access the important documents you'll need."
)

FALLBACKS: Dict[str, str] = {
    PLANNER: "I had a little hiccup there. What were we talking about?",
    EXECUTOR_INVITATION: (
        "I apologize for the difficulty. It seems we're having a technical issue. Please take your time, "
        "and when you're ready, we can try again. Remember, there's no rush to complete this process."
    ),
    EXECUTOR_ONBOARDING: (
        "I apologize for the difficulty. It seems we're having a technical issue. Please take your time, "
        "and when you're ready, we can try again. Remember, there's no rush to complete this process."
    ),
}

CELEBRATING_MARKERS: Dict[str, List[str]] = {
    PLANNER: ["🎉", "BOOM", "CRUSHING", "FIRE"],
    EXECUTOR_INVITATION: ["🎉", "✅"],
    EXECUTOR_ONBOARDING: ["🎉", "✅"],
}

ENCOURAGING_MARKERS: Dict[str, List[str]] = {
    PLANNER: ["You got this", "I believe in you", "💪"],
    EXECUTOR_INVITATION: ["I understand", "take your time"],
    EXECUTOR_ONBOARDING: ["I understand", "take your time"],
}

NEXT_STEP_PHRASES: Dict[str, List[str]] = {
    PLANNER: ["ready for the next step", "move on to", "let's tackle", "next up"],
    EXECUTOR_INVITATION: ["ready for the next step", "move on to", "let's proceed"],
    EXECUTOR_ONBOARDING: ["ready for the next step", "move on to", "let's proceed"],
}

# Drafting helpers: extra system instruction, user prompt, fallback text.
DRAFT_TASKS: Dict[str, JsonDict] = {
    "will_analysis": {
        "instruction": "You are analyzing a will document. Be thorough but encouraging.",
        "prompt": (
            "I've uploaded a will document. Please analyze it and provide:\n"
            "1. A summary of the key provisions\n"
            "2. Any potential gaps or missing elements\n"
            "3. Suggestions for improvement\n"
            "4. Whether it appears to be legally complete\n\n"
            "Please be encouraging and focus on what's working well while gently suggesting improvements."
        ),
        "fallback": (
            "I had trouble analyzing that document, but no worries! The important thing is you have a will. "
            "We can always review and improve it later. You're already ahead of most people! 🎉"
        ),
    },
    "will_template": {
        "instruction": (
            "You are helping create a will template. Provide a comprehensive but simple template with clear "
            "placeholders for customization. Include encouraging notes about each section."
        ),
        "prompt": (
            "Help me create a basic will template. I need something simple but comprehensive that covers:\n"
            "- Asset distribution\n"
            "- Guardian designation (if applicable)\n"
            "- Executor appointment\n"
            "- Basic legal language\n\n"
            "Please provide a template I can customize with my specific information."
        ),
        "fallback": "Let's start with a basic template! I'll help you build this step by step...",
    },
    "personal_note": {
        "instruction": (
            "You are helping write a heartfelt personal note to an executor. Be warm, personal, and "
            "emotionally supportive while maintaining a positive tone."
        ),
        "prompt": (
            "I want to write a heartfelt personal note to my executor, {executor_name}. "
            "This person will be responsible for carrying out my final wishes. "
            "I want to express my gratitude for their willingness to take on this role, "
            "reassure them that I've tried to organize everything to make their job easier, "
            "and let them know how much I trust and appreciate them.\n\n"
            "Please draft a personal, warm message that I can customize further."
        ),
        "fallback": "",
    },
    "executor_advice": {
        "instruction": (
            "You are providing advice about executor selection. Be encouraging and provide practical "
            "guidance about what makes a good executor."
        ),
        "prompt": (
            "I'm choosing my executors. Here's who I'm considering:\n\n{executors}\n\n"
            "Can you give me some encouraging advice about my choices and any suggestions for what makes "
            "a good executor? I want to make sure I'm making good decisions for my family."
        ),
        "fallback": (
            "You're doing great thinking carefully about your executor choices! The most important thing is "
            "choosing someone you trust completely. They should be organized, responsible, and willing to "
            "take on this important role. You've got this! 💪"
        ),
    },
}


def history_limit() -> int:
    raw = (os.environ.get("CHAT_HISTORY_LIMIT") or "40").strip()
    try:
        return max(1, int(raw))
    except ValueError:
        return 40


def greeting(persona: str, executor_name: str = "", planner_name: str = "") -> str:
    if persona == PLANNER:
        return PLANNER_GREETING
    template = INVITATION_GREETING if persona == EXECUTOR_INVITATION else ONBOARDING_GREETING
    return template.format(executor=executor_name or "there", planner=planner_name or "Your loved one")


def system_prompt(persona: str, context: Optional[JsonDict] = None, step: Optional[str] = None) -> str:
    prompt = PROMPTS[persona]
    if context:
        prompt += "\n\nCurrent context: " + json.dumps(context, indent=2, ensure_ascii=False, default=str)
    if step:
        prompt += f"\n\nCurrent step: {step}"
    return prompt


def build_messages(
    persona: str,
    history: List[JsonDict],
    user_text: str,
    context: Optional[JsonDict] = None,
    step: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[Message]:
    """System prompt, the tail of the history, then the new user message."""
    cleaned: List[Message] = []
    for item in history or []:
        if not isinstance(item, dict):
            continue
        role = item.get("role")
        content = item.get("content")
        if role not in {"user", "assistant"} or not isinstance(content, str) or not content:
            continue
        cleaned.append({"role": role, "content": content})
    n = limit if limit is not None else history_limit()
    messages: List[Message] = [{"role": "system", "content": system_prompt(persona, context, step)}]
    messages.extend(cleaned[-n:])
    messages.append({"role": "user", "content": user_text})
    return messages


def draft_messages(task: str, **params: Any) -> List[Message]:
    spec = DRAFT_TASKS[task]
    return [
        {"role": "system", "content": PLANNER_SYSTEM_PROMPT + "\n\n" + spec["instruction"]},
        {"role": "user", "content": spec["prompt"].format(**params)},
    ]


def draft_fallback(task: str, **params: Any) -> str:
    fallback = DRAFT_TASKS[task]["fallback"]
    if task == "personal_note" and not fallback:
        name = params.get("executor_name") or "my executor"
        return (
            f"Dear {name},\n\nThank you for agreeing to take on this role. I've tried to organize "
            "everything to make it as easy as possible for you. I trust you completely and I'm grateful "
            "for your help."
        )
    return fallback


def describe_executors(executors: List[JsonDict]) -> str:
    lines = []
    for e in executors:
        kind = "Primary" if e.get("is_primary") else "Backup"
        name = e.get("name") or "Not named"
        relationship = e.get("relationship") or "Relationship not specified"
        lines.append(f"{kind} Executor: {name} ({relationship})")
    return "\n".join(lines) or "No executors added yet"


def detect_mood(persona: str, reply: str) -> str:
    text = reply or ""
    if any(m in text for m in CELEBRATING_MARKERS[persona]):
        return "celebrating"
    if any(m in text for m in ENCOURAGING_MARKERS[persona]):
        return "encouraging"
    return "default"


def suggests_next_step(persona: str, reply: str) -> bool:
    lower = (reply or "").lower()
    return any(p in lower for p in NEXT_STEP_PHRASES[persona])


def chat_turn(user_text: str, reply: str, mood: str, ts: str) -> List[JsonDict]:
    """History entries appended after one exchange."""
    return [
        {"role": "user", "content": user_text, "ts": ts},
        {"role": "assistant", "content": reply, "mood": mood, "ts": ts},
    ]

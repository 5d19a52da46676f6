"""Unit tests for Emma's prompt assembly and reply classification."""

from __future__ import annotations

import os
import sys
import unittest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", "api")))

import assistant  # noqa: E402
from assistant import EXECUTOR_INVITATION, EXECUTOR_ONBOARDING, PLANNER  # noqa: E402


class PromptTests(unittest.TestCase):
    def test_system_prompt_appends_context_and_step(self):
        prompt = assistant.system_prompt(PLANNER, {"planner_name": "Ann"}, "will")
        self.assertTrue(prompt.startswith(assistant.PLANNER_SYSTEM_PROMPT))
        self.assertIn("\n\nCurrent context: {", prompt)
        self.assertIn('"planner_name": "Ann"', prompt)
        self.assertTrue(prompt.endswith("\n\nCurrent step: will"))

    def test_system_prompt_without_extras_is_persona_prompt(self):
        self.assertEqual(assistant.system_prompt(EXECUTOR_ONBOARDING), assistant.EXECUTOR_ONBOARDING_PROMPT)

    def test_build_messages_keeps_history_tail_and_drops_junk(self):
        history = [
            {"role": "assistant", "content": "hello"},
            {"role": "system", "content": "ignored"},
            {"role": "user", "content": ""},
            {"role": "user", "content": "one"},
            {"role": "assistant", "content": "two"},
            "not a dict",
        ]
        messages = assistant.build_messages(PLANNER, history, "three", limit=2)
        self.assertEqual(messages[0]["role"], "system")
        self.assertEqual([m["content"] for m in messages[1:]], ["one", "two", "three"])
        self.assertEqual(messages[-1]["role"], "user")

    def test_history_limit_env(self):
        old = os.environ.get("CHAT_HISTORY_LIMIT")
        try:
            os.environ["CHAT_HISTORY_LIMIT"] = "5"
            self.assertEqual(assistant.history_limit(), 5)
            os.environ["CHAT_HISTORY_LIMIT"] = "nope"
            self.assertEqual(assistant.history_limit(), 40)
        finally:
            if old is None:
                os.environ.pop("CHAT_HISTORY_LIMIT", None)
            else:
                os.environ["CHAT_HISTORY_LIMIT"] = old

    def test_greetings_name_both_people(self):
        self.assertEqual(assistant.greeting(PLANNER), assistant.PLANNER_GREETING)
        invite = assistant.greeting(EXECUTOR_INVITATION, "Sam", "Ann")
        self.assertTrue(invite.startswith("Hi Sam, I'm Emma. Ann has chosen you"))
        condolence = assistant.greeting(EXECUTOR_ONBOARDING, "Sam", "Ann")
        self.assertTrue(condolence.startswith("I'm sorry for your loss, Sam."))

    def test_draft_messages_fill_params(self):
        messages = assistant.draft_messages("personal_note", executor_name="Sam")
        self.assertIn("You are helping write a heartfelt personal note", messages[0]["content"])
        self.assertIn("my executor, Sam.", messages[1]["content"])
        self.assertIn("Dear Sam,", assistant.draft_fallback("personal_note", executor_name="Sam"))

    def test_describe_executors(self):
        text = assistant.describe_executors(
            [
                {"name": "Sam", "relationship": "brother", "is_primary": True},
                {"name": "Jo", "is_primary": False},
            ]
        )
        self.assertEqual(
            text,
            "Primary Executor: Sam (brother)\nBackup Executor: Jo (Relationship not specified)",
        )
        self.assertEqual(assistant.describe_executors([]), "No executors added yet")


class ReplyClassificationTests(unittest.TestCase):
    def test_planner_moods(self):
        self.assertEqual(assistant.detect_mood(PLANNER, "BOOM, will done!"), "celebrating")
        self.assertEqual(assistant.detect_mood(PLANNER, "You got this."), "encouraging")
        self.assertEqual(assistant.detect_mood(PLANNER, "Okay."), "default")

    def test_executor_moods(self):
        self.assertEqual(assistant.detect_mood(EXECUTOR_ONBOARDING, "Uploaded ✅"), "celebrating")
        self.assertEqual(assistant.detect_mood(EXECUTOR_ONBOARDING, "Please take your time."), "encouraging")

    def test_next_step_hint(self):
        self.assertTrue(assistant.suggests_next_step(PLANNER, "Next up: your executors."))
        self.assertFalse(assistant.suggests_next_step(PLANNER, "Let's proceed."))
        self.assertTrue(assistant.suggests_next_step(EXECUTOR_ONBOARDING, "Let's proceed with the will."))

    def test_chat_turn_shapes_history(self):
        turn = assistant.chat_turn("hi", "hello", "default", "T")
        self.assertEqual(turn[0], {"role": "user", "content": "hi", "ts": "T"})
        self.assertEqual(turn[1]["mood"], "default")


if __name__ == "__main__":
    unittest.main()

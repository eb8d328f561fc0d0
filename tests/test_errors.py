import unittest

from studious.core.errors import (
    AlreadyMember, ConversationLoadError, DeletionNotPermitted, StudiousError, get_error_message,
)
from studious.core.notifications import Notifier


class ErrorMessageTests(unittest.TestCase):
    def test_domain_errors_keep_their_message(self) -> None:
        self.assertEqual(get_error_message(AlreadyMember()), "Already a member")
        self.assertEqual(get_error_message(DeletionNotPermitted("custom")), "custom")

    def test_backend_errors_are_made_friendly(self) -> None:
        cases = {
            "Invalid login credentials": "Invalid email or password. Please try again.",
            "TypeError: Failed to fetch": "Network error. Please check your connection and try again.",
            "PostgREST error PGRST116": "A database error occurred. Please try again later.",
            "Storage quota exceeded": "File upload failed. Please try again.",
            "new row violates row-level security policy": "You do not have permission to perform this action.",
            "Email rate limit exceeded": "Too many attempts. Please wait a moment and try again.",
        }
        for raw, friendly in cases.items():
            with self.subTest(raw=raw):
                self.assertEqual(get_error_message(RuntimeError(raw)), friendly)

    def test_fallbacks(self) -> None:
        self.assertEqual(get_error_message(None), "An unexpected error occurred")
        self.assertEqual(get_error_message(RuntimeError("boom")), StudiousError.default_message)

    def test_status_codes(self) -> None:
        self.assertEqual(ConversationLoadError("G1").status_code, 502)
        self.assertEqual(DeletionNotPermitted().status_code, 403)
        self.assertEqual(AlreadyMember().status_code, 409)


class NotifierTests(unittest.TestCase):
    def test_listeners_and_bounded_history(self) -> None:
        notifier = Notifier(max_history=2)
        seen = []
        remove = notifier.add_listener(seen.append)
        notifier.info("one")
        notifier.error("two", conversation_id="G1")
        remove()
        notifier.success("three")

        self.assertEqual([n.message for n in seen], ["one", "two"])
        self.assertEqual([n.kind for n in notifier.history], ["error", "success"])
        self.assertEqual(notifier.history[0].to_dict()["conversation_id"], "G1")

    def test_failing_listener_does_not_break_others(self) -> None:
        notifier = Notifier()
        seen = []
        notifier.add_listener(lambda n: 1 / 0)
        notifier.add_listener(seen.append)
        notifier.warning("careful")
        self.assertEqual(len(seen), 1)


if __name__ == "__main__":
    unittest.main()

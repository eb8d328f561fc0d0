"""
Domain errors raised by the chat engine and the group/resource services.

Every error carries the HTTP status the API layer answers with and a
message that is safe to show to the user.
"""
from typing import Optional


class StudiousError(Exception):
    status_code: int = 500
    default_message: str = "Something went wrong. Please try again."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ConversationLoadError(StudiousError):
    status_code = 502
    default_message = "Failed to load conversation"

    def __init__(self, conversation_id: str, message: Optional[str] = None):
        self.conversation_id = conversation_id
        super().__init__(message)


class StaleLoadError(StudiousError):
    status_code = 409
    default_message = "Conversation is no longer open"

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__()


class SubscriptionError(StudiousError):
    status_code = 503
    default_message = "Live updates are unavailable. Re-open the conversation to reconnect."

    def __init__(self, conversation_id: str, message: Optional[str] = None):
        self.conversation_id = conversation_id
        super().__init__(message)


class DeletionNotPermitted(StudiousError):
    status_code = 403
    default_message = "You can only delete your own messages for everyone"


class MessageNotFound(StudiousError):
    status_code = 404
    default_message = "Message not found"


class GroupNotFound(StudiousError):
    status_code = 404
    default_message = "Group not found"


class MemberNotFound(StudiousError):
    status_code = 404
    default_message = "Member not found"


class ResourceNotFound(StudiousError):
    status_code = 404
    default_message = "Resource not found"


class ProfileNotFound(StudiousError):
    status_code = 404
    default_message = "Profile not found"


class InvalidInviteCode(StudiousError):
    status_code = 404
    default_message = "Invalid invite code"


class AlreadyMember(StudiousError):
    status_code = 409
    default_message = "Already a member"


class NotGroupMember(StudiousError):
    status_code = 403
    default_message = "You must be a member of this group"


class NotGroupAdmin(StudiousError):
    status_code = 403
    default_message = "You must be a group admin to perform this action"


class BackendError(StudiousError):
    """Wraps a failed Supabase call; message is already user-friendly."""
    status_code = 502


class AssistantNotConfigured(StudiousError):
    status_code = 503
    default_message = "AI assistant is not configured. Set GEMINI_API_KEY to enable it."


class AssistantUnavailable(StudiousError):
    status_code = 502
    default_message = "Failed to get AI response. Please try again later."


class DocumentFetchError(StudiousError):
    status_code = 502
    default_message = "Failed to process PDF file"


_FRIENDLY_MESSAGES = (
    (("invalid login credentials", "invalid email or password"), "Invalid email or password. Please try again."),
    (("email not confirmed",), "Please check your email and confirm your account before logging in."),
    (("user already registered",), "This email is already registered. Please log in instead."),
    (("network", "fetch", "timed out", "connection"), "Network error. Please check your connection and try again."),
    (("database", "sql", "postgrest"), "A database error occurred. Please try again later."),
    (("storage",), "File upload failed. Please try again."),
    (("rate limit",), "Too many attempts. Please wait a moment and try again."),
    (("permission", "unauthorized", "row-level security"), "You do not have permission to perform this action."),
)


def get_error_message(error: Optional[BaseException]) -> str:
    """Convert a raw backend error into a message fit for the user."""
    if error is None:
        return "An unexpected error occurred"
    if isinstance(error, StudiousError):
        return error.message
    text = (getattr(error, "message", None) or str(error)).lower()
    for needles, friendly in _FRIENDLY_MESSAGES:
        if any(needle in text for needle in needles):
            return friendly
    return StudiousError.default_message

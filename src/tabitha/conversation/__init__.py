"""Conversation Manager: short-term state and user-visible text."""

from tabitha.conversation.followup import (
    FollowUp,
    looks_like_follow_up,
    parse_follow_up,
    understand_follow_up,
)
from tabitha.conversation.history import ConversationHistory, Message
from tabitha.conversation.manager import ConversationManager
from tabitha.conversation.responses import (
    ResponseGenerator,
    disambiguation_prompt,
    error_template,
    success_template,
)
from tabitha.conversation.slots import DisambiguationSlot, SlotCandidate, SlotStore

__all__ = [
    "ConversationHistory",
    "ConversationManager",
    "DisambiguationSlot",
    "FollowUp",
    "Message",
    "ResponseGenerator",
    "SlotCandidate",
    "SlotStore",
    "disambiguation_prompt",
    "error_template",
    "looks_like_follow_up",
    "parse_follow_up",
    "success_template",
    "understand_follow_up",
]

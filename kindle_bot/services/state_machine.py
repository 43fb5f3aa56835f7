from datetime import datetime
from enum import Enum
from typing import Optional

from kindle_bot.schemas.user import UserProfile


class ConversationState(str, Enum):
    NEW = "new"
    AWAITING_EMAIL = "awaiting_email"
    READY = "ready"
    AWAITING_SELECTION = "awaiting_selection"


VALID_TRANSITIONS = {
    ConversationState.NEW: [ConversationState.AWAITING_EMAIL, ConversationState.READY],
    ConversationState.AWAITING_EMAIL: [ConversationState.READY],
    ConversationState.READY: [ConversationState.AWAITING_SELECTION],
    ConversationState.AWAITING_SELECTION: [ConversationState.READY, ConversationState.AWAITING_SELECTION],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_state: ConversationState, to_state: ConversationState):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def derive_state(profile: Optional[UserProfile], now: Optional[datetime] = None) -> ConversationState:
    """Compute the conversation state from the stored profile; never persisted."""
    if profile is None:
        return ConversationState.NEW
    if profile.has_live_search_context(now):
        return ConversationState.AWAITING_SELECTION
    if profile.has_kindle_email:
        return ConversationState.READY
    return ConversationState.AWAITING_EMAIL


def can_transition(from_state: ConversationState, to_state: ConversationState) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_state, [])
    return to_state in allowed


def transition(from_state: ConversationState, to_state: ConversationState) -> ConversationState:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def capture_email(current_state: ConversationState) -> ConversationState:
    """First Kindle email saved."""
    return transition(current_state, ConversationState.READY)


def present_results(current_state: ConversationState) -> ConversationState:
    """A search produced candidates."""
    return transition(current_state, ConversationState.AWAITING_SELECTION)


def resolve_selection(current_state: ConversationState) -> ConversationState:
    """Book delivered or search cancelled."""
    return transition(current_state, ConversationState.READY)

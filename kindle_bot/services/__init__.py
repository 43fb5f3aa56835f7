from kindle_bot.services.result import Result
from kindle_bot.services.state_machine import (
    ConversationState,
    InvalidTransitionError,
    can_transition,
    capture_email,
    derive_state,
    present_results,
    resolve_selection,
    transition,
)
from kindle_bot.services.user_service import UserManager, validate_kindle_email
from kindle_bot.services.user_store import MemoryUserStore, SqlUserStore, UserStore

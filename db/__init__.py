from .db import (
    Base,
    Message,
    Reminder,
    UserPreference,
    configure,
    get_engine,
    get_session,
    create_all,
    ping,
    to_utc,
    dispose_engine,
    get_user_preferences,
    set_user_engine,
    set_user_model,
    insert_reminder,
    get_reminder,
    list_pending_reminders,
    fetch_pending_reminders,
    fetch_due_reminders,
    claim_reminder,
    delete_reminder,
    save_message,
    fetch_chat_history,
    clear_chat_history,
)  # noqa: F401

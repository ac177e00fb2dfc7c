class ReminderEngineError(Exception):
    """Base class for reminder engine errors."""


class TransportError(ReminderEngineError):
    """Transient push transport failure (network, quota, server error)."""


class InvalidTokenError(TransportError):
    """The push token is permanently invalid (app uninstalled, token rotated)."""

    def __init__(self, message: str = "push token is no longer valid", token: str | None = None):
        super().__init__(message)
        self.token = token


class InvalidCoupleError(ReminderEngineError):
    """Couple record is missing or does not have exactly two members."""


class ReminderNotFoundError(ReminderEngineError):
    def __init__(self, reminder_id: str):
        super().__init__(f"Reminder not found: {reminder_id}")
        self.reminder_id = reminder_id

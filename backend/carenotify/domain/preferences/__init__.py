from carenotify.domain.preferences.models import (
    CategoryPreference,
    PriorityFloor,
    QuietHours,
    RecipientContact,
    UserPreferences,
)

__all__ = [
    "CategoryPreference",
    "PriorityFloor",
    "QuietHours",
    "RecipientContact",
    "UserPreferences",
]

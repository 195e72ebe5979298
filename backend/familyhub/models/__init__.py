from .calendar_event import CalendarEvent
from .device_token import DeviceToken
from .f1_standings import F1ChampionshipState
from .household import (
    Chore,
    Contact,
    FamilyMember,
    Routine,
    RoutineMember,
    RoutineStep,
    ShoppingListChange,
    Task,
    TaskCategory,
    TaskReminder,
)
from .notification_log import NotificationLogEntry, NotificationStatus
from .notification_preferences import NotificationPreferences, NotificationPreferencesDB
from .oauth_integration import OAuthIntegration, OAuthProvider
from .reminder_claim import ReminderClaim

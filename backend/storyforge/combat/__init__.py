"""Combat encounter engine package."""

from .errors import NotFoundError
from .models import (
    CombatCondition,
    CombatEncounter,
    CombatLogEntry,
    CombatLoot,
    CombatParticipant,
    CombatSettings,
    CombatState,
    EncounterStatus,
    LogActionType,
    ParticipantType,
)
from .notifier import EventNotifier
from .store import EncounterStore

__all__ = [
    "EncounterStore",
    "EventNotifier",
    "NotFoundError",
    "CombatCondition",
    "CombatEncounter",
    "CombatLogEntry",
    "CombatLoot",
    "CombatParticipant",
    "CombatSettings",
    "CombatState",
    "EncounterStatus",
    "LogActionType",
    "ParticipantType",
]

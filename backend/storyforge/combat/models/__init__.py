"""Data models for the combat encounter engine."""

from .participant import (
    PERMANENT,
    TURN_FLAG_RESET,
    CombatAction,
    CombatCondition,
    CombatParticipant,
    ParticipantResource,
    ParticipantType,
    new_id,
)
from .encounter import (
    CombatEncounter,
    CombatLogEntry,
    CombatLoot,
    EncounterStatus,
    LogActionType,
    Visibility,
)
from .state import CombatSettings, CombatState

__all__ = [
    "PERMANENT",
    "TURN_FLAG_RESET",
    "CombatAction",
    "CombatCondition",
    "CombatParticipant",
    "ParticipantResource",
    "ParticipantType",
    "new_id",
    "CombatEncounter",
    "CombatLogEntry",
    "CombatLoot",
    "EncounterStatus",
    "LogActionType",
    "Visibility",
    "CombatSettings",
    "CombatState",
]

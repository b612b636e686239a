"""Combat store state and global settings."""
from __future__ import annotations

from types import MappingProxyType
from typing import Any, Dict, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from .encounter import CombatEncounter


class CombatSettings(BaseModel):
    """全局战斗设置（纯配置，引擎不据此改变规则）"""

    model_config = ConfigDict(frozen=True, extra="forbid")

    initiative_type: Literal["individual", "group"] = "individual"
    turn_timer: Optional[int] = Field(default=None, ge=0)  # 秒
    auto_end_turn: bool = False
    show_dice_rolls: bool = True
    confirm_actions: bool = True
    track_resources: bool = True
    track_conditions: bool = True
    use_grid: bool = True
    use_real_time_tracking: bool = False
    allow_player_rolls: bool = True
    narrator_controls_npcs: bool = True


class CombatState(BaseModel):
    """推送给订阅者的完整快照

    encounters 是只读映射：订阅者拿到的快照与存储共享同一个对象，
    写入会抛出 TypeError。
    """

    model_config = ConfigDict(frozen=True)

    encounters: Dict[str, CombatEncounter] = Field(default_factory=dict, validate_default=True)
    active_encounter_id: Optional[str] = None
    settings: CombatSettings = Field(default_factory=CombatSettings)

    @field_validator("encounters", mode="after")
    @classmethod
    def _read_only(cls, value: Dict[str, CombatEncounter]) -> Mapping[str, CombatEncounter]:
        return MappingProxyType(value)

    @field_serializer("encounters", mode="wrap")
    def _dump_encounters(self, value: Mapping[str, CombatEncounter], handler: Any) -> Any:
        return handler(dict(value))

    @property
    def active_encounter(self) -> Optional[CombatEncounter]:
        if self.active_encounter_id is None:
            return None
        return self.encounters.get(self.active_encounter_id)

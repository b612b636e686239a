"""
战斗参与者数据模型
"""
from __future__ import annotations

import uuid
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

PERMANENT = "permanent"

# 回合开始时重置的行动经济标记
TURN_FLAG_RESET: Dict[str, bool] = {
    "has_acted": False,
    "has_moved_this_turn": False,
    "has_used_bonus_action": False,
    "has_used_reaction": False,
}


def new_id(prefix: str) -> str:
    """生成带前缀的短 ID（如 "enc_1a2b3c4d5e6f"）"""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class ParticipantType(str, Enum):
    """参与者类型"""

    PLAYER = "player"
    NPC = "npc"
    ENEMY = "enemy"


class CombatCondition(BaseModel):
    """状态效果实例

    duration 为持续轮数或 "permanent"；applied_at 为施加时的轮次。
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("cond"))
    name: str = Field(..., min_length=1)
    description: str = ""
    duration: Union[Annotated[int, Field(ge=0)], Literal["permanent"]] = PERMANENT
    effect: str = ""
    icon: Optional[str] = None
    applied_at: int = 0

    @property
    def is_permanent(self) -> bool:
        return self.duration == PERMANENT


class ParticipantResource(BaseModel):
    """可消耗资源（法术位、气、弹药等）"""

    model_config = ConfigDict(frozen=True)

    name: str
    current: int = Field(default=0, ge=0)
    max: int = Field(default=0, ge=0)


class CombatAction(BaseModel):
    """参与者可执行的行动（仅作描述，引擎不结算）"""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("act"))
    name: str
    description: str = ""
    action_type: Literal["action", "bonus", "reaction", "movement", "special"] = "action"
    attack_bonus: Optional[int] = None
    damage_formula: Optional[str] = None
    damage_type: Optional[str] = None
    range: Optional[str] = None
    cooldown: Optional[int] = None
    tags: Tuple[str, ...] = ()


class CombatParticipant(BaseModel):
    """
    战斗参与者

    - current_hp 缺省等于 max_hp，并始终被钳制在 [0, max_hp]
    - 五个回合标记只由回合引擎维护
    """

    model_config = ConfigDict(frozen=True)

    # ===== 基础信息 =====
    id: str = Field(default_factory=lambda: new_id("pc"))
    name: str = Field(..., min_length=1)
    type: ParticipantType = ParticipantType.NPC

    # ===== 先攻 / 属性 =====
    initiative: int = 0
    stats: Dict[str, int] = Field(default_factory=dict)

    # ===== 生命值 =====
    current_hp: int = 0
    max_hp: int = Field(default=0, ge=0)
    armor_class: Optional[int] = None

    # ===== 状态 =====
    conditions: Tuple[CombatCondition, ...] = ()
    actions: Tuple[CombatAction, ...] = ()
    resources: Dict[str, ParticipantResource] = Field(default_factory=dict)
    portrait: Optional[str] = None
    notes: Optional[str] = None

    # ===== 行动经济 =====
    is_active: bool = False
    has_acted: bool = False
    has_moved_this_turn: bool = False
    has_used_bonus_action: bool = False
    has_used_reaction: bool = False

    @model_validator(mode="before")
    @classmethod
    def _clamp_hp(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        max_hp = data.get("max_hp", 0)
        current_hp = data.get("current_hp")
        if current_hp is None:
            data["current_hp"] = max_hp
        elif isinstance(current_hp, int) and isinstance(max_hp, int):
            data["current_hp"] = max(0, min(current_hp, max_hp))
        return data

    # ===== 便捷方法 =====

    @property
    def dexterity_bonus(self) -> int:
        """先攻使用的敏捷加值（优先 dexterity_mod，其次 dexterity）"""
        return self.stats.get("dexterity_mod", self.stats.get("dexterity", 0))

    def get_condition(self, condition_id: str) -> Optional[CombatCondition]:
        for condition in self.conditions:
            if condition.id == condition_id:
                return condition
        return None

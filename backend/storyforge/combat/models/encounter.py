"""
战斗遭遇数据模型

遭遇、战斗日志与战利品。所有模型均为不可变值，修改通过 model_copy 生成新对象。
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .participant import CombatParticipant, new_id

Visibility = Literal["all", "players", "dm"]


class EncounterStatus(str, Enum):
    """遭遇状态"""

    PREPARING = "preparing"  # 准备中（未开始）
    ACTIVE = "active"  # 进行中
    PAUSED = "paused"  # 暂停
    COMPLETED = "completed"  # 已结束


class LogActionType(str, Enum):
    """日志条目类型"""

    ATTACK = "attack"
    DAMAGE = "damage"
    HEAL = "heal"
    CONDITION = "condition"
    MOVEMENT = "movement"
    SPECIAL = "special"
    SYSTEM = "system"


class CombatLogEntry(BaseModel):
    """战斗日志条目（只追加，不可修改）"""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("log"))
    round: int
    turn: int
    timestamp: datetime = Field(default_factory=datetime.now)
    action_type: LogActionType
    actor_id: Optional[str] = None
    target_ids: Tuple[str, ...] = ()
    description: str
    details: Optional[Dict[str, Any]] = None
    visibility: Visibility = "all"


class CombatLoot(BaseModel):
    """战利品"""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("loot"))
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    quantity: int = Field(default=1, ge=1)
    value: Optional[int] = None
    type: Literal[
        "weapon", "armor", "potion", "scroll", "wand", "ring", "currency", "gem", "misc"
    ] = "misc"
    rarity: Optional[
        Literal["common", "uncommon", "rare", "very rare", "legendary", "artifact"]
    ] = None
    properties: Dict[str, Any] = Field(default_factory=dict)
    claimed: bool = False
    claimed_by: Optional[str] = None


class CombatEncounter(BaseModel):
    """
    战斗遭遇

    initiative_order 中的插入顺序即行动顺序；current_turn 是它的下标，
    开战前为 -1。
    """

    model_config = ConfigDict(frozen=True)

    # ===== 基础信息 =====
    id: str = Field(default_factory=lambda: new_id("enc"))
    name: str
    description: Optional[str] = None

    # ===== 参与者与行动顺序 =====
    participants: Tuple[CombatParticipant, ...] = ()
    initiative_order: Tuple[str, ...] = ()
    current_round: int = 0
    current_turn: int = -1
    status: EncounterStatus = EncounterStatus.PREPARING

    # ===== 日志 =====
    log: Tuple[CombatLogEntry, ...] = ()
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    # ===== 附加信息 =====
    difficulty: Optional[Literal["easy", "medium", "hard", "deadly", "custom"]] = None
    xp_awarded: Optional[int] = None
    loot: Tuple[CombatLoot, ...] = ()
    notes: Optional[str] = None
    visibility: Visibility = "all"

    # ===== 便捷方法 =====

    def participant_index(self, participant_id: str) -> int:
        """参与者在 participants 中的下标，不存在返回 -1"""
        for index, participant in enumerate(self.participants):
            if participant.id == participant_id:
                return index
        return -1

    def get_participant(self, participant_id: str) -> Optional[CombatParticipant]:
        index = self.participant_index(participant_id)
        return self.participants[index] if index >= 0 else None

    def get_current_actor(self) -> Optional[CombatParticipant]:
        """获取当前回合的行动者"""
        if not 0 <= self.current_turn < len(self.initiative_order):
            return None
        return self.get_participant(self.initiative_order[self.current_turn])

    def get_loot(self, loot_id: str) -> Optional[CombatLoot]:
        for item in self.loot:
            if item.id == loot_id:
                return item
        return None

    def with_participant(self, participant: CombatParticipant) -> "CombatEncounter":
        """返回替换了同 ID 参与者的新遭遇"""
        participants = tuple(
            participant if existing.id == participant.id else existing
            for existing in self.participants
        )
        return self.model_copy(update={"participants": participants})

    def with_log(self, entry: CombatLogEntry) -> "CombatEncounter":
        """返回追加了一条日志的新遭遇"""
        return self.model_copy(update={"log": self.log + (entry,)})

    def make_log_entry(
        self,
        action_type: LogActionType,
        description: str,
        *,
        round: Optional[int] = None,
        turn: Optional[int] = None,
        actor_id: Optional[str] = None,
        target_ids: Tuple[str, ...] = (),
        details: Optional[Dict[str, Any]] = None,
        visibility: Visibility = "all",
    ) -> CombatLogEntry:
        """按当前轮次/回合构造日志条目（round/turn 可覆盖）"""
        return CombatLogEntry(
            round=self.current_round if round is None else round,
            turn=self.current_turn if turn is None else turn,
            action_type=action_type,
            actor_id=actor_id,
            target_ids=tuple(target_ids),
            description=description,
            details=details,
            visibility=visibility,
        )

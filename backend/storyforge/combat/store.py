"""
遭遇存储

持有 {encounters, settings, active_encounter_id}，是战斗状态唯一的写入方。
每次变更都生成新的遭遇对象并替换到新的映射中（写时复制），然后同步
通知所有订阅者；已交给订阅者的快照永远不会再被修改。
"""
import logging
import random
from datetime import datetime
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Union

from pydantic import BaseModel

from ..config import EngineConfig
from ..config import config as default_config
from . import turn_engine
from .dice import DiceRoller
from .errors import NotFoundError
from .models import (
    TURN_FLAG_RESET,
    CombatCondition,
    CombatEncounter,
    CombatLoot,
    CombatParticipant,
    CombatSettings,
    CombatState,
    LogActionType,
    Visibility,
    new_id,
)
from .notifier import EventNotifier, Listener

logger = logging.getLogger(__name__)

Payload = Union[Mapping[str, Any], BaseModel]

# update_encounter 允许修改的字段（回合状态只能通过回合操作修改）
ENCOUNTER_METADATA_FIELDS = frozenset(
    {"name", "description", "difficulty", "xp_awarded", "notes", "visibility"}
)


def _payload_dict(payload: Payload, *drop: str) -> Dict[str, Any]:
    data = payload.model_dump() if isinstance(payload, BaseModel) else dict(payload)
    for key in drop:
        data.pop(key, None)
    return data


class EncounterStore:
    """
    战斗遭遇存储

    职责：
    - 遭遇与参与者的增删改
    - 调用回合引擎执行开战、推进回合、结束战斗
    - 伤害、治疗、状态、战利品与日志
    - 变更完成后推送状态快照

    Usage::

        store = EncounterStore()
        unsubscribe = store.subscribe(render)
        encounter_id = store.create_encounter("Goblin ambush")
        store.add_participant(encounter_id, {"name": "Aria", "max_hp": 12})
        store.start_combat(encounter_id)
    """

    def __init__(
        self,
        initial_state: Optional[CombatState] = None,
        rng: Optional[random.Random] = None,
        config: Optional[EngineConfig] = None,
    ) -> None:
        self.config = config or default_config
        if rng is None and self.config.random_seed is not None:
            rng = random.Random(self.config.random_seed)
        self.dice = DiceRoller(rng)
        self.notifier = EventNotifier()
        self._state = initial_state or CombatState()

    # ============================================
    # 读取 / 订阅
    # ============================================

    def get_state(self) -> CombatState:
        """获取当前完整状态快照"""
        return self._state

    def get_encounter(self, encounter_id: str) -> CombatEncounter:
        return self._require_encounter(encounter_id)

    def get_active_encounter(self) -> Optional[CombatEncounter]:
        """获取当前聚焦的遭遇（未设置时返回 None）"""
        return self._state.active_encounter

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """订阅状态变更，返回取消订阅函数（推送的快照只读，encounters 不可写入）"""
        return self.notifier.subscribe(listener)

    def to_serializable(self) -> Dict[str, Any]:
        """导出 JSON 兼容的状态快照（持久化由宿主应用负责）"""
        return self._state.model_dump(mode="json")

    @classmethod
    def from_serializable(cls, data: Mapping[str, Any], **kwargs: Any) -> "EncounterStore":
        """从快照恢复。"""
        return cls(initial_state=CombatState.model_validate(data), **kwargs)

    # ============================================
    # 内部工具
    # ============================================

    def _require_encounter(self, encounter_id: str) -> CombatEncounter:
        encounter = self._state.encounters.get(encounter_id)
        if encounter is None:
            raise NotFoundError("encounter", encounter_id)
        return encounter

    def _require_participant(
        self, encounter: CombatEncounter, participant_id: str
    ) -> CombatParticipant:
        participant = encounter.get_participant(participant_id)
        if participant is None:
            raise NotFoundError("participant", participant_id, f"encounter {encounter.id}")
        return participant

    def _set_state(self, **updates: Any) -> None:
        if "encounters" in updates:
            updates["encounters"] = MappingProxyType(updates["encounters"])
        self._state = self._state.model_copy(update=updates)
        self.notifier.publish(self._state)

    def _commit(self, encounter: CombatEncounter, **updates: Any) -> None:
        encounters = dict(self._state.encounters)
        encounters[encounter.id] = encounter
        self._set_state(encounters=encounters, **updates)

    def _log(
        self,
        encounter: CombatEncounter,
        action_type: LogActionType,
        description: str,
        **fields: Any,
    ) -> CombatEncounter:
        fields.setdefault("visibility", self.config.default_visibility)
        return encounter.with_log(encounter.make_log_entry(action_type, description, **fields))

    # ============================================
    # 遭遇
    # ============================================

    def create_encounter(self, name: str, description: Optional[str] = None) -> str:
        """创建处于 preparing 状态的空遭遇，返回 ID"""
        encounter = CombatEncounter(
            id=new_id("enc"),
            name=name,
            description=description,
            visibility=self.config.default_visibility,
        )
        logger.info("encounter created: %s (%s)", encounter.id, name)
        self._commit(encounter)
        return encounter.id

    def set_active_encounter(self, encounter_id: str) -> None:
        """设置界面聚焦的遭遇（不影响回合状态）"""
        self._require_encounter(encounter_id)
        self._set_state(active_encounter_id=encounter_id)

    def delete_encounter(self, encounter_id: str) -> None:
        self._require_encounter(encounter_id)
        encounters = {k: v for k, v in self._state.encounters.items() if k != encounter_id}
        active_id = self._state.active_encounter_id
        logger.info("encounter deleted: %s", encounter_id)
        self._set_state(
            encounters=encounters,
            active_encounter_id=None if active_id == encounter_id else active_id,
        )

    def update_encounter(self, encounter_id: str, updates: Mapping[str, Any]) -> None:
        """修改遭遇的描述性字段（名称、难度、经验等）"""
        encounter = self._require_encounter(encounter_id)
        protected = set(updates) - ENCOUNTER_METADATA_FIELDS
        if protected:
            raise ValueError(f"Encounter fields cannot be updated directly: {sorted(protected)}")
        merged = CombatEncounter.model_validate({**encounter.model_dump(), **updates})
        self._commit(merged)

    # ============================================
    # 参与者
    # ============================================

    def add_participant(self, encounter_id: str, participant: Payload) -> str:
        """
        加入参与者

        不会插入 initiative_order；顺序在 start_combat / roll_initiative 时生成。
        """
        encounter = self._require_encounter(encounter_id)
        data = _payload_dict(participant, "id")
        data.update(TURN_FLAG_RESET)
        data["is_active"] = False
        created = CombatParticipant.model_validate({**data, "id": new_id("pc")})
        logger.debug("participant %s joined %s", created.name, encounter_id)
        self._commit(
            encounter.model_copy(update={"participants": encounter.participants + (created,)})
        )
        return created.id

    def remove_participant(self, encounter_id: str, participant_id: str) -> None:
        """
        移除参与者

        同时从 initiative_order 中删除，current_turn 始终保持为有效下标：
        - 移除的参与者在当前行动者之前：current_turn 减 1，行动者不变
        - 移除的是当前行动者：下标不动，行动权交给顺延到该位置的下一位；
          若它是最后一位，下标收缩到新的末尾，由调用方 next_turn 进入下一轮
        - 顺序被清空：current_turn 回到 -1
        """
        encounter = self._require_encounter(encounter_id)
        removed = self._require_participant(encounter, participant_id)

        order = encounter.initiative_order
        remaining = tuple(pid for pid in order if pid != participant_id)
        participants = tuple(p for p in encounter.participants if p.id != participant_id)
        changes: Dict[str, Any] = {"initiative_order": remaining}

        if participant_id in order and encounter.current_turn >= 0:
            removed_index = order.index(participant_id)
            current = encounter.current_turn
            if not remaining:
                current = -1
            else:
                if removed_index < current:
                    current -= 1
                current = min(current, len(remaining) - 1)
            changes["current_turn"] = current

            if removed.is_active and current >= 0:
                incoming_id = remaining[current]
                # 顺延的下一位开始新回合；收缩到末尾时只接回行动权
                update = {"is_active": True}
                if removed_index < len(order) - 1:
                    update.update(TURN_FLAG_RESET)
                participants = tuple(
                    p.model_copy(update=update) if p.id == incoming_id else p
                    for p in participants
                )
                logger.debug("turn handed to %s after removing %s", incoming_id, participant_id)

        changes["participants"] = participants
        self._commit(encounter.model_copy(update=changes))

    def update_participant(
        self, encounter_id: str, participant_id: str, updates: Mapping[str, Any]
    ) -> None:
        """合并字段更新（重新校验，ID 不可修改）"""
        encounter = self._require_encounter(encounter_id)
        participant = self._require_participant(encounter, participant_id)
        merged = CombatParticipant.model_validate(
            {**participant.model_dump(), **updates, "id": participant.id}
        )
        self._commit(encounter.with_participant(merged))

    # ============================================
    # 回合流程
    # ============================================

    def start_combat(self, encounter_id: str) -> None:
        encounter = self._require_encounter(encounter_id)
        started = turn_engine.start_combat(
            encounter, now=datetime.now(), visibility=self.config.default_visibility
        )
        if started is None:
            return
        logger.info(
            "combat started: %s order=%s", encounter_id, ", ".join(started.initiative_order)
        )
        self._commit(started, active_encounter_id=encounter_id)

    def end_combat(self, encounter_id: str) -> None:
        encounter = self._require_encounter(encounter_id)
        ended = turn_engine.end_combat(
            encounter, now=datetime.now(), visibility=self.config.default_visibility
        )
        if ended is None:
            return
        logger.info("combat ended: %s after %d rounds", encounter_id, ended.current_round)
        self._commit(ended)

    def pause_combat(self, encounter_id: str) -> None:
        encounter = self._require_encounter(encounter_id)
        paused = turn_engine.pause_combat(encounter, visibility=self.config.default_visibility)
        if paused is not None:
            self._commit(paused)

    def resume_combat(self, encounter_id: str) -> None:
        encounter = self._require_encounter(encounter_id)
        resumed = turn_engine.resume_combat(encounter, visibility=self.config.default_visibility)
        if resumed is not None:
            self._commit(resumed)

    def next_turn(self, encounter_id: str) -> None:
        encounter = self._require_encounter(encounter_id)
        advanced = turn_engine.next_turn(encounter, visibility=self.config.default_visibility)
        if advanced is None:
            return
        logger.debug(
            "turn advanced: %s round=%d turn=%d",
            encounter_id,
            advanced.current_round,
            advanced.current_turn,
        )
        self._commit(advanced)

    def previous_turn(self, encounter_id: str) -> None:
        encounter = self._require_encounter(encounter_id)
        rewound = turn_engine.previous_turn(encounter, visibility=self.config.default_visibility)
        if rewound is not None:
            self._commit(rewound)

    def roll_initiative(self, encounter_id: str) -> None:
        encounter = self._require_encounter(encounter_id)
        rolled = turn_engine.roll_initiative(
            encounter,
            self.dice,
            die_size=self.config.initiative_die,
            visibility=self.config.default_visibility,
        )
        if rolled is not None:
            self._commit(rolled)

    def set_initiative(self, encounter_id: str, participant_id: str, value: int) -> None:
        encounter = self._require_encounter(encounter_id)
        self._require_participant(encounter, participant_id)
        self._commit(
            turn_engine.set_initiative(
                encounter, participant_id, value, visibility=self.config.default_visibility
            )
        )

    # ============================================
    # 伤害 / 治疗
    # ============================================

    def deal_damage(
        self,
        encounter_id: str,
        participant_id: str,
        amount: int,
        damage_type: str,
        source: Optional[str] = None,
    ) -> None:
        """
        造成伤害

        HP 不低于 0。不会自动附加倒地状态，是否附加由调用方通过 add_condition 决定。
        source 是物品/装备系统的不透明 ID，引擎不解析。
        """
        encounter = self._require_encounter(encounter_id)
        participant = self._require_participant(encounter, participant_id)
        new_hp = max(0, min(participant.max_hp, participant.current_hp - amount))

        updated = encounter.with_participant(participant.model_copy(update={"current_hp": new_hp}))
        from_source = f" from {source}" if source else ""
        updated = self._log(
            updated,
            LogActionType.DAMAGE,
            f"{participant.name} took {amount} {damage_type} damage{from_source}",
            actor_id=source,
            target_ids=(participant_id,),
            details={
                "damage": amount,
                "damage_type": damage_type,
                "source": source,
                "new_hp": new_hp,
            },
        )
        self._commit(updated)

    def heal_damage(
        self,
        encounter_id: str,
        participant_id: str,
        amount: int,
        source: Optional[str] = None,
    ) -> None:
        """治疗（HP 不超过 max_hp）"""
        encounter = self._require_encounter(encounter_id)
        participant = self._require_participant(encounter, participant_id)
        new_hp = max(0, min(participant.max_hp, participant.current_hp + amount))

        updated = encounter.with_participant(participant.model_copy(update={"current_hp": new_hp}))
        from_source = f" from {source}" if source else ""
        updated = self._log(
            updated,
            LogActionType.HEAL,
            f"{participant.name} healed {amount} hit points{from_source}",
            actor_id=source,
            target_ids=(participant_id,),
            details={"healing": amount, "source": source, "new_hp": new_hp},
        )
        self._commit(updated)

    # ============================================
    # 状态效果
    # ============================================

    def add_condition(self, encounter_id: str, participant_id: str, condition: Payload) -> str:
        """附加状态，applied_at 记为当前轮次，返回状态 ID"""
        encounter = self._require_encounter(encounter_id)
        participant = self._require_participant(encounter, participant_id)
        data = _payload_dict(condition, "id", "applied_at")
        created = CombatCondition.model_validate(
            {**data, "id": new_id("cond"), "applied_at": encounter.current_round}
        )

        updated = encounter.with_participant(
            participant.model_copy(update={"conditions": participant.conditions + (created,)})
        )
        updated = self._log(
            updated,
            LogActionType.CONDITION,
            f"{participant.name} gained condition: {created.name}",
            actor_id=participant_id,
            details={"condition": created.model_dump(mode="json")},
        )
        self._commit(updated)
        return created.id

    def remove_condition(self, encounter_id: str, participant_id: str, condition_id: str) -> None:
        encounter = self._require_encounter(encounter_id)
        participant = self._require_participant(encounter, participant_id)
        condition = participant.get_condition(condition_id)
        if condition is None:
            raise NotFoundError("condition", condition_id, f"participant {participant_id}")

        remaining = tuple(c for c in participant.conditions if c.id != condition_id)
        updated = encounter.with_participant(participant.model_copy(update={"conditions": remaining}))
        updated = self._log(
            updated,
            LogActionType.CONDITION,
            f"{participant.name} lost condition: {condition.name}",
            actor_id=participant_id,
        )
        self._commit(updated)

    # ============================================
    # 日志 / 战利品
    # ============================================

    def add_log_entry(
        self,
        encounter_id: str,
        action_type: Union[LogActionType, str],
        description: str,
        actor_id: Optional[str] = None,
        target_ids: Iterable[str] = (),
        details: Optional[Dict[str, Any]] = None,
        visibility: Optional[Visibility] = None,
    ) -> str:
        """追加自定义日志（攻击、移动等由主持人叙述的动作），返回条目 ID"""
        encounter = self._require_encounter(encounter_id)
        entry = encounter.make_log_entry(
            LogActionType(action_type),
            description,
            actor_id=actor_id,
            target_ids=tuple(target_ids),
            details=details,
            visibility=visibility or self.config.default_visibility,
        )
        self._commit(encounter.with_log(entry))
        return entry.id

    def add_loot(self, encounter_id: str, loot: Payload) -> str:
        encounter = self._require_encounter(encounter_id)
        data = _payload_dict(loot, "id", "claimed", "claimed_by")
        created = CombatLoot.model_validate({**data, "id": new_id("loot")})
        updated = encounter.model_copy(update={"loot": encounter.loot + (created,)})
        updated = self._log(
            updated,
            LogActionType.SPECIAL,
            f"Loot added: {created.name}",
            details={"loot_id": created.id, "quantity": created.quantity},
        )
        self._commit(updated)
        return created.id

    def claim_loot(self, encounter_id: str, loot_id: str, participant_id: str) -> None:
        """领取战利品（已被领取时无操作）"""
        encounter = self._require_encounter(encounter_id)
        item = encounter.get_loot(loot_id)
        if item is None:
            raise NotFoundError("loot", loot_id, f"encounter {encounter_id}")
        participant = self._require_participant(encounter, participant_id)
        if item.claimed:
            logger.debug("loot %s already claimed by %s", loot_id, item.claimed_by)
            return

        claimed = item.model_copy(update={"claimed": True, "claimed_by": participant_id})
        loot = tuple(claimed if existing.id == loot_id else existing for existing in encounter.loot)
        updated = self._log(
            encounter.model_copy(update={"loot": loot}),
            LogActionType.SPECIAL,
            f"{participant.name} claimed {item.name}",
            actor_id=participant_id,
            details={"loot_id": loot_id},
        )
        self._commit(updated)

    # ============================================
    # 设置
    # ============================================

    def update_settings(
        self, updates: Optional[Mapping[str, Any]] = None, **fields: Any
    ) -> None:
        """合并全局战斗设置（只做类型校验）"""
        merged = {**self._state.settings.model_dump(), **(updates or {}), **fields}
        self._set_state(settings=CombatSettings.model_validate(merged))

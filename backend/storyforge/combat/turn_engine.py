"""
回合引擎

战斗状态机：preparing → active → completed，active ⇄ paused。
所有函数都是纯函数：接收遭遇，返回新的遭遇；返回 None 表示该调用在当前
状态下是无操作（不修改状态、不写日志）。
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Tuple

from .conditions import expire_conditions
from .dice import DiceRoller
from .models import (
    TURN_FLAG_RESET,
    CombatEncounter,
    CombatParticipant,
    EncounterStatus,
    LogActionType,
    Visibility,
)

logger = logging.getLogger(__name__)


def initiative_key(participant: CombatParticipant) -> Tuple[int, int]:
    """先攻排序键：先攻值，同值比较敏捷加值"""
    return participant.initiative, participant.dexterity_bonus


def fallback_order(participants: Iterable[CombatParticipant]) -> Tuple[str, ...]:
    """按先攻值降序排序（稳定排序，同值保持加入顺序，不比较敏捷）"""
    ranked = sorted(participants, key=lambda p: p.initiative, reverse=True)
    return tuple(p.id for p in ranked)


def _reconcile_order(encounter: CombatEncounter) -> Tuple[str, ...]:
    if not encounter.initiative_order:
        return fallback_order(encounter.participants)
    present = {p.id for p in encounter.participants}
    kept = tuple(pid for pid in encounter.initiative_order if pid in present)
    missing = [p for p in encounter.participants if p.id not in kept]
    return kept + fallback_order(missing)


def start_combat(
    encounter: CombatEncounter,
    now: Optional[datetime] = None,
    visibility: Visibility = "all",
) -> Optional[CombatEncounter]:
    """
    开始战斗

    流程：
    1. 已在进行中或没有参与者时不做任何事
    2. 行动顺序为空时按先攻值降序生成；已有顺序时保留，补上后加入的参与者
    3. 第 1 轮第 0 个回合，顺序中的第一位成为行动者，所有回合标记重置
    """
    if encounter.status == EncounterStatus.ACTIVE:
        logger.debug("start_combat ignored: %s already active", encounter.id)
        return None
    if not encounter.participants:
        logger.debug("start_combat ignored: %s has no participants", encounter.id)
        return None

    order = _reconcile_order(encounter)
    first_id = order[0]
    participants = tuple(
        p.model_copy(update={**TURN_FLAG_RESET, "is_active": p.id == first_id})
        for p in encounter.participants
    )
    started = encounter.model_copy(
        update={
            "status": EncounterStatus.ACTIVE,
            "current_round": 1,
            "current_turn": 0,
            "initiative_order": order,
            "participants": participants,
            "start_time": now or datetime.now(),
        }
    )
    return started.with_log(
        started.make_log_entry(
            LogActionType.SYSTEM,
            "Combat started",
            details={"initiative_order": list(order)},
            visibility=visibility,
        )
    )


def end_combat(
    encounter: CombatEncounter,
    now: Optional[datetime] = None,
    visibility: Visibility = "all",
) -> Optional[CombatEncounter]:
    """结束战斗（仅 active / paused 状态有效）"""
    if encounter.status not in (EncounterStatus.ACTIVE, EncounterStatus.PAUSED):
        logger.debug("end_combat ignored: %s is %s", encounter.id, encounter.status.value)
        return None

    participants = tuple(
        p.model_copy(update={"is_active": False}) if p.is_active else p
        for p in encounter.participants
    )
    ended = encounter.model_copy(
        update={
            "status": EncounterStatus.COMPLETED,
            "end_time": now or datetime.now(),
            "participants": participants,
        }
    )
    return ended.with_log(
        ended.make_log_entry(LogActionType.SYSTEM, "Combat ended", visibility=visibility)
    )


def pause_combat(
    encounter: CombatEncounter, visibility: Visibility = "all"
) -> Optional[CombatEncounter]:
    """暂停战斗，回合标记保持不变"""
    if encounter.status != EncounterStatus.ACTIVE:
        return None
    paused = encounter.model_copy(update={"status": EncounterStatus.PAUSED})
    return paused.with_log(
        paused.make_log_entry(LogActionType.SYSTEM, "Combat paused", visibility=visibility)
    )


def resume_combat(
    encounter: CombatEncounter, visibility: Visibility = "all"
) -> Optional[CombatEncounter]:
    """从暂停恢复，轮次与回合保持暂停前的值"""
    if encounter.status != EncounterStatus.PAUSED:
        return None
    resumed = encounter.model_copy(update={"status": EncounterStatus.ACTIVE})
    return resumed.with_log(
        resumed.make_log_entry(LogActionType.SYSTEM, "Combat resumed", visibility=visibility)
    )


def _hand_over(
    participants: Iterable[CombatParticipant],
    outgoing_id: Optional[str],
    incoming_id: str,
    outgoing_update: Dict[str, bool],
    incoming_update: Dict[str, bool],
) -> Tuple[CombatParticipant, ...]:
    # 只有 incoming 保持 is_active，保证同一时间恰好一个行动者
    updated = []
    for p in participants:
        if p.id == incoming_id:
            updated.append(p.model_copy(update={**incoming_update, "is_active": True}))
        elif p.id == outgoing_id:
            updated.append(p.model_copy(update={**outgoing_update, "is_active": False}))
        elif p.is_active:
            updated.append(p.model_copy(update={"is_active": False}))
        else:
            updated.append(p)
    return tuple(updated)


def _name_of(encounter: CombatEncounter, participant_id: str) -> str:
    participant = encounter.get_participant(participant_id)
    return participant.name if participant else "Unknown"


def next_turn(
    encounter: CombatEncounter, visibility: Visibility = "all"
) -> Optional[CombatEncounter]:
    """
    推进到下一个回合

    到达行动顺序末尾时回到 0 并进入下一轮。标记更新之后，用新的轮次
    对所有参与者执行状态过期。
    """
    if encounter.status != EncounterStatus.ACTIVE or not encounter.initiative_order:
        logger.debug("next_turn ignored: %s is %s", encounter.id, encounter.status.value)
        return None

    order = encounter.initiative_order
    next_index = encounter.current_turn + 1
    next_round = encounter.current_round
    if next_index >= len(order):
        next_index = 0
        next_round += 1

    outgoing_id = order[encounter.current_turn] if 0 <= encounter.current_turn < len(order) else None
    incoming_id = order[next_index]

    participants = _hand_over(
        encounter.participants,
        outgoing_id,
        incoming_id,
        outgoing_update={"has_acted": True},
        incoming_update=dict(TURN_FLAG_RESET),
    )
    participants = expire_conditions(participants, next_round)

    advanced = encounter.model_copy(
        update={
            "current_round": next_round,
            "current_turn": next_index,
            "participants": participants,
        }
    )
    if next_round > encounter.current_round:
        description = f"Round {next_round} started"
    else:
        description = f"Turn moved to {_name_of(advanced, incoming_id)}"
    return advanced.with_log(
        advanced.make_log_entry(
            LogActionType.SYSTEM,
            description,
            actor_id=incoming_id,
            visibility=visibility,
        )
    )


def previous_turn(
    encounter: CombatEncounter, visibility: Visibility = "all"
) -> Optional[CombatEncounter]:
    """回退一个回合（第 1 轮第 0 回合时无操作，不处理状态过期）"""
    if encounter.status != EncounterStatus.ACTIVE or not encounter.initiative_order:
        return None

    order = encounter.initiative_order
    prev_index = min(encounter.current_turn, len(order)) - 1
    prev_round = encounter.current_round
    if prev_index < 0:
        if encounter.current_round <= 1:
            return None
        prev_index = len(order) - 1
        prev_round -= 1

    outgoing_id = order[encounter.current_turn] if 0 <= encounter.current_turn < len(order) else None
    incoming_id = order[prev_index]

    participants = _hand_over(
        encounter.participants,
        outgoing_id,
        incoming_id,
        outgoing_update={},
        incoming_update={"has_acted": False},
    )
    rewound = encounter.model_copy(
        update={
            "current_round": prev_round,
            "current_turn": prev_index,
            "participants": participants,
        }
    )
    return rewound.with_log(
        rewound.make_log_entry(
            LogActionType.SYSTEM,
            f"Turn moved back to {_name_of(rewound, incoming_id)}",
            actor_id=incoming_id,
            visibility=visibility,
        )
    )


def roll_initiative(
    encounter: CombatEncounter,
    dice: DiceRoller,
    die_size: int = 20,
    visibility: Visibility = "all",
) -> Optional[CombatEncounter]:
    """
    为所有参与者骰先攻

    每人投掷 "1d{die_size}±敏捷加值"；先攻降序，同值按敏捷加值降序。
    日志 details 记录每人的骰子记号、骰值与总值。
    不改变 status / current_round / current_turn。
    """
    if not encounter.participants:
        return None

    rolls: Dict[str, Dict[str, Any]] = {}
    participants = []
    for p in encounter.participants:
        notation = f"1d{die_size}{p.dexterity_bonus:+d}"
        total, (roll,) = dice.roll(notation)
        rolls[p.id] = {
            "notation": notation,
            "roll": roll,
            "bonus": p.dexterity_bonus,
            "total": total,
        }
        participants.append(p.model_copy(update={"initiative": total}))

    ranked = sorted(participants, key=initiative_key, reverse=True)
    order = tuple(p.id for p in ranked)
    rolled = encounter.model_copy(
        update={"participants": tuple(participants), "initiative_order": order}
    )
    return rolled.with_log(
        rolled.make_log_entry(
            LogActionType.SYSTEM,
            "Initiative rolled",
            details={"rolls": rolls, "initiative_order": list(order)},
            visibility=visibility,
        )
    )


def set_initiative(
    encounter: CombatEncounter,
    participant_id: str,
    value: int,
    visibility: Visibility = "all",
) -> CombatEncounter:
    """
    手动设置单个参与者的先攻值

    已有行动顺序时按与 roll_initiative 相同的键（先攻值、敏捷加值）重新稳定排序；
    战斗进行中 current_turn 跟随当前行动者。
    调用方负责确认参与者存在。
    """
    participant = encounter.get_participant(participant_id)
    updated = encounter.with_participant(participant.model_copy(update={"initiative": value}))

    order = updated.initiative_order
    if order:
        current = updated.get_current_actor()
        current_id = current.id if current else None
        keys = {p.id: initiative_key(p) for p in updated.participants}
        order = tuple(sorted(order, key=lambda pid: keys.get(pid, (0, 0)), reverse=True))
        changes = {"initiative_order": order}
        if current_id is not None and updated.status == EncounterStatus.ACTIVE:
            changes["current_turn"] = order.index(current_id)
        updated = updated.model_copy(update=changes)

    return updated.with_log(
        updated.make_log_entry(
            LogActionType.SYSTEM,
            f"{participant.name} initiative set to {value}",
            actor_id=participant_id,
            visibility=visibility,
        )
    )

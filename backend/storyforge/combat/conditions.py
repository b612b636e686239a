"""Condition expiry applied on every turn advance."""
import logging
from typing import Iterable, Tuple

from .models import CombatCondition, CombatParticipant

logger = logging.getLogger(__name__)


def is_condition_retained(condition: CombatCondition, round_number: int) -> bool:
    """
    判断状态在给定轮次是否仍然保留

    保留条件为 applied_at + duration >= round_number。
    第 1 轮施加、持续 1 轮的状态在第 2 轮仍然存在，到第 3 轮才移除。
    """
    if condition.is_permanent:
        return True
    return condition.applied_at + condition.duration >= round_number


def expire_conditions(
    participants: Iterable[CombatParticipant], round_number: int
) -> Tuple[CombatParticipant, ...]:
    """对所有参与者移除已过期的状态，未变化的参与者原样返回"""
    updated = []
    for participant in participants:
        kept = tuple(c for c in participant.conditions if is_condition_retained(c, round_number))
        if len(kept) == len(participant.conditions):
            updated.append(participant)
            continue
        expired = [c.name for c in participant.conditions if c not in kept]
        logger.debug(
            "conditions expired on %s at round %d: %s",
            participant.name,
            round_number,
            ", ".join(expired),
        )
        updated.append(participant.model_copy(update={"conditions": kept}))
    return tuple(updated)

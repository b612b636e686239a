"""战斗日志的叙述视图（只读，供 AI 叙述者作为上下文）。"""
from typing import Dict, List, Optional

from ..config import config
from .models import CombatEncounter, CombatLogEntry

# 各受众可见的日志级别
_AUDIENCE_SCOPES: Dict[str, frozenset] = {
    "all": frozenset({"all"}),
    "players": frozenset({"all", "players"}),
    "dm": frozenset({"all", "players", "dm"}),
}


def visible_entries(
    encounter: CombatEncounter,
    audience: str = "all",
    since_round: Optional[int] = None,
) -> List[CombatLogEntry]:
    """按 visibility 过滤日志。

    "all" 条目对所有人可见，"players" 条目对玩家和主持人可见，
    "dm" 条目仅主持人可见。
    """
    scope = _AUDIENCE_SCOPES.get(audience)
    if scope is None:
        raise ValueError(f"Unknown audience: {audience}")
    result = [entry for entry in encounter.log if entry.visibility in scope]
    if since_round is not None:
        result = [entry for entry in result if entry.round >= since_round]
    return result


def summarize_encounter(
    encounter: CombatEncounter,
    audience: str = "all",
    log_window: Optional[int] = None,
    max_length: int = 2000,
) -> str:
    """生成遭遇摘要文本（名称、轮次、当前行动者、各参与者 HP、最近日志）。"""
    window = config.narration_log_window if log_window is None else log_window
    lines = [f"Encounter: {encounter.name} [{encounter.status.value}]"]
    if encounter.current_round > 0:
        actor = encounter.get_current_actor()
        actor_label = actor.name if actor else "none"
        lines.append(f"Round {encounter.current_round}, acting: {actor_label}")

    for participant in encounter.participants:
        conditions = ", ".join(c.name for c in participant.conditions)
        suffix = f" ({conditions})" if conditions else ""
        lines.append(
            f"- {participant.name}: {participant.current_hp}/{participant.max_hp} HP{suffix}"
        )

    entries = visible_entries(encounter, audience)
    recent = entries[-window:] if window else []
    for entry in recent:
        lines.append(f"[{entry.action_type.value}] R{entry.round}: {entry.description}")

    summary = "\n".join(lines)
    if len(summary) > max_length:
        summary = summary[:max_length] + "\n..."
    return summary

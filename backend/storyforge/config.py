"""
配置管理模块
"""
import os
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

# 加载环境变量
load_dotenv()


def _optional_int(name: str) -> Optional[int]:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else None


class EngineConfig(BaseModel):
    """战斗引擎配置"""

    # 随机种子（为空时使用系统随机源）
    random_seed: Optional[int] = _optional_int("COMBAT_RANDOM_SEED")

    # 先攻骰面数
    initiative_die: int = Field(default=int(os.getenv("COMBAT_INITIATIVE_DIE", "20")), ge=2)

    # 新日志条目的默认可见性
    default_visibility: Literal["all", "players", "dm"] = os.getenv(
        "COMBAT_DEFAULT_VISIBILITY", "all"
    )

    # 叙述上下文中保留的最近日志条数
    narration_log_window: int = Field(
        default=int(os.getenv("COMBAT_NARRATION_LOG_WINDOW", "10")), ge=0
    )

    model_config = ConfigDict(validate_default=True)


# 全局配置实例
config = EngineConfig()

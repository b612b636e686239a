"""
骰子系统

实现标准 DND 骰子记号解析和投掷
"""
import random
import re
from typing import List, Optional, Tuple

_NOTATION = re.compile(r"(\d+)d(\d+)([+-]\d+)?")


class DiceRoller:
    """骰子投掷器

    持有独立的随机源，测试中可传入带种子的 ``random.Random`` 以获得可复现结果。
    """

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self.rng = rng or random.Random()

    def roll(self, dice_notation: str) -> Tuple[int, List[int]]:
        """
        投掷骰子

        Args:
            dice_notation: 骰子记号（如 "1d20", "2d6", "3d8+2"）

        Returns:
            Tuple[int, List[int]]: (总值, 各骰子结果列表)
        """
        match = _NOTATION.fullmatch(dice_notation.lower().replace(" ", ""))
        if not match:
            raise ValueError(f"Invalid dice notation: {dice_notation}")

        num_dice = int(match.group(1))
        die_size = int(match.group(2))
        modifier = int(match.group(3)) if match.group(3) else 0
        if num_dice < 1 or die_size < 1:
            raise ValueError(f"Invalid dice notation: {dice_notation}")

        rolls = [self.roll_single(die_size) for _ in range(num_dice)]
        return sum(rolls) + modifier, rolls

    def roll_single(self, die_size: int) -> int:
        """投掷单个骰子（1 到 die_size）"""
        return self.rng.randint(1, die_size)

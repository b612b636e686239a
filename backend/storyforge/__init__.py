"""Storyforge 战斗遭遇引擎。"""

__version__ = "0.1.0"

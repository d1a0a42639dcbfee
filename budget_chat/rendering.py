"""Terminal rendering of token usage."""

import math
from typing import Dict

from rich.text import Text

from .budget import UsageLevel, UsageSnapshot
from .theme import DIM, ERROR, INFO, SUCCESS, WARN

__all__ = ["LEVEL_STYLES", "LEVEL_ICONS", "format_token_usage", "level_message",
           "percent", "render_usage"]

LEVEL_STYLES: Dict[UsageLevel, str] = {
    UsageLevel.SAFE: SUCCESS,
    UsageLevel.INFO: INFO,
    UsageLevel.WARNING: WARN,
    UsageLevel.DANGER: ERROR,
}

LEVEL_ICONS: Dict[UsageLevel, str] = {
    UsageLevel.SAFE: "✓",
    UsageLevel.INFO: "ℹ",
    UsageLevel.WARNING: "⚠",
    UsageLevel.DANGER: "✕",
}

_LEVEL_MESSAGES = {
    UsageLevel.SAFE: "Token usage is within safe limits",
    UsageLevel.INFO: "Approaching token limit - consider shorter messages",
    UsageLevel.WARNING: "High token usage - conversation may be optimized soon",
    UsageLevel.DANGER: "Very high token usage - older messages will be summarized",
}

BAR_WIDTH = 30


def percent(usage: UsageSnapshot) -> int:
    """Whole percentage, halves rounded up."""
    if math.isinf(usage.percentage):
        return 100
    return math.floor(usage.percentage * 100 + 0.5)


def format_token_usage(usage: UsageSnapshot) -> str:
    return f"{usage.estimated:,} / {usage.limit:,} tokens ({percent(usage)}%)"


def level_message(level: UsageLevel) -> str:
    return _LEVEL_MESSAGES.get(level, "Token usage unknown")


def render_usage(usage: UsageSnapshot, compact: bool = False) -> Text:
    """Usage indicator: icon + percentage, or a full bar with details."""
    style = LEVEL_STYLES[usage.level]
    icon = LEVEL_ICONS[usage.level]
    pct = percent(usage)

    if compact:
        return Text.assemble((f"{icon} ", style), (f"{pct}%", f"bold {style}"))

    filled = min(BAR_WIDTH, round(BAR_WIDTH * min(pct, 100) / 100))
    text = Text()
    text.append(f"{icon} Token Usage ", style=f"bold {style}")
    text.append("█" * filled, style=style)
    text.append("░" * (BAR_WIDTH - filled), style=DIM)
    text.append(f" {pct}%\n", style=style)
    text.append(format_token_usage(usage), style=DIM)
    text.append(f"  ·  {usage.remaining:,} remaining\n", style=DIM)
    text.append(level_message(usage.level), style=style)
    return text

from __future__ import annotations

from typing import Any


SPREAD_COSTS: dict[str, int] = {
    "SINGLE": 1,
    "TWO_CARD": 2,
    "THREE_CARD": 3,
    "FIVE_CARD": 5,
    "LOVE": 5,
    "CAREER": 5,
    "HORSESHOE": 7,
    "CELTIC_CROSS": 10,
}

ADVANCED_STYLE_COST = 1
EXTENDED_QUESTION_COST = 1
FOLLOW_UP_COST = 1


def normalize_spread_type(spread_type: str) -> str:
    return str(spread_type or "").strip().upper().replace("-", "_")


def spread_cost(spread_type: str) -> int:
    return int(SPREAD_COSTS.get(normalize_spread_type(spread_type), SPREAD_COSTS["SINGLE"]))


def calculate_reading_cost(
    *,
    spread_type: str,
    has_advanced_style: bool = False,
    has_extended_question: bool = False,
) -> dict[str, Any]:
    base = spread_cost(spread_type)
    style = ADVANCED_STYLE_COST if has_advanced_style else 0
    extended = EXTENDED_QUESTION_COST if has_extended_question else 0
    return {
        "base_cost": base,
        "style_cost": style,
        "extended_cost": extended,
        "total_cost": base + style + extended,
    }

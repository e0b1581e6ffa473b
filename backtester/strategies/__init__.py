from .presets import (
    PRESET_STRATEGIES,
    create_blank_strategy,
    get_preset_strategy,
    list_presets,
)

# Ranked comparison runs iterate the library in this order
PRESET_IDS = [s.id for s in PRESET_STRATEGIES]

__all__ = [
    "PRESET_STRATEGIES",
    "PRESET_IDS",
    "create_blank_strategy",
    "get_preset_strategy",
    "list_presets",
]

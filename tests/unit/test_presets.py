"""
Unit tests for the preset strategy library.
"""

import pytest

from backtester.core.models import IndicatorKind, Operator, StopLossType, Strategy
from backtester.strategies import (
    PRESET_IDS,
    PRESET_STRATEGIES,
    create_blank_strategy,
    get_preset_strategy,
    list_presets,
)


class TestPresetLibrary:
    def test_eight_unique_presets(self):
        assert len(PRESET_STRATEGIES) == 8
        assert len(set(PRESET_IDS)) == 8
        assert all(pid.startswith("preset-") for pid in PRESET_IDS)

    def test_every_preset_has_entry_and_exit_rules(self):
        for preset in PRESET_STRATEGIES:
            assert preset.entry_rules, preset.id
            assert preset.exit_rules, preset.id

    def test_golden_cross_definition(self):
        preset = get_preset_strategy("preset-golden-cross")
        entry = preset.entry_rules[0]
        assert entry.indicator == IndicatorKind.SMA
        assert entry.operator == Operator.CROSSES_ABOVE
        assert entry.params == {"period": 50}
        assert entry.compare_to == IndicatorKind.SMA
        assert entry.compare_params == {"period": 200}
        assert preset.risk_management.stop_loss_type == StopLossType.TRAILING
        assert preset.risk_management.stop_loss_value == 8
        assert preset.position_value == 60


class TestLookup:
    def test_by_id_and_by_name(self):
        by_id = get_preset_strategy("preset-macd-momentum")
        by_name = get_preset_strategy("macd momentum")
        assert by_id == by_name

    def test_returns_deep_copy(self):
        copy = get_preset_strategy("preset-rsi-mean-reversion")
        copy.entry_rules.append(copy.exit_rules[0])

        fresh = get_preset_strategy("preset-rsi-mean-reversion")
        assert len(fresh.entry_rules) == 1
        assert copy is not PRESET_STRATEGIES[0]

    def test_unknown_preset(self):
        with pytest.raises(KeyError):
            get_preset_strategy("preset-does-not-exist")

    def test_list_presets_preserves_order(self):
        assert [s.id for s in list_presets()] == PRESET_IDS


class TestBlankStrategy:
    def test_defaults(self):
        blank = create_blank_strategy()
        assert isinstance(blank, Strategy)
        assert blank.name == "Custom Strategy"
        assert blank.entry_rules == []
        assert blank.exit_rules == []
        assert blank.risk_management.stop_loss_type == StopLossType.FIXED_PCT
        assert blank.risk_management.stop_loss_value == 5
        assert blank.position_value == 50
        assert blank.id.startswith("custom-")

    def test_ids_are_unique(self):
        assert create_blank_strategy().id != create_blank_strategy().id

    def test_accepts_camel_case_payload(self):
        strategy = Strategy.model_validate(
            {
                "name": "Payload",
                "entryRules": [
                    {"indicator": "rsi", "operator": "below", "value": 30, "params": {"period": 14}}
                ],
                "riskManagement": {"stopLossType": "fixed_pct", "stopLossValue": 4},
                "positionSizing": "fixed_amount",
                "positionValue": 25000,
            }
        )
        assert strategy.entry_rules[0].indicator == IndicatorKind.RSI
        assert strategy.risk_management.stop_loss_value == 4
        assert strategy.position_value == 25000

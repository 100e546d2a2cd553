from decimal import Decimal

import pytest

from rewards.config import RewardConfigHelper
from rewards.errors import ConfigurationError
from rewards.tiers import Band, classify_tier, classify_level, next_level_threshold


BANDS = [
    Band(2, "Silver", Decimal("20"), Decimal("100"), Decimal("0.003")),
    Band(1, "Bronze", Decimal("10"), Decimal("20"), Decimal("0.0025")),
]


@pytest.mark.parametrize("value,expected", [
    ("50.0", "Silver"),
    ("10", "Bronze"),
    ("19.999999", "Bronze"),
    ("20", "Silver"),
])
def test_classify_tier_half_open_bands(value, expected):
    assert classify_tier(Decimal(value), BANDS).name == expected


@pytest.mark.parametrize("value", ["5.0", "100", "1000000"])
def test_values_outside_every_band_are_excluded(value):
    assert classify_tier(Decimal(value), BANDS) is None


def test_classify_tier_empty_configuration():
    assert classify_tier(Decimal("50"), []) is None


def test_level_staircase():
    thresholds = {1: Decimal("100"), 2: Decimal("500")}
    assert classify_level(Decimal("0"), thresholds) == 0
    assert classify_level(Decimal("250"), thresholds) == 1
    assert classify_level(Decimal("500"), thresholds) == 2
    assert classify_level(Decimal("99999"), thresholds) == 2


def test_next_level_threshold():
    thresholds = {1: Decimal("100"), 2: Decimal("500")}
    assert next_level_threshold(0, thresholds) == (1, Decimal("100"))
    assert next_level_threshold(1, thresholds) == (2, Decimal("500"))
    assert next_level_threshold(2, thresholds) == (None, None)


def test_seeded_tiers_are_contiguous(app):
    ok, problems = RewardConfigHelper.validate_configuration()
    assert ok, problems
    bands = RewardConfigHelper.active_tiers()
    assert [b.name for b in bands][:2] == ["Bronze", "Silver"]


def test_overlapping_tier_is_rejected(app):
    with pytest.raises(ConfigurationError):
        RewardConfigHelper.add_tier("Overlap", "15", "30", "0.001")


def test_inverted_tier_range_is_rejected(app):
    with pytest.raises(ConfigurationError):
        RewardConfigHelper.add_tier("Broken", "60000", "50000", "0.001")


def test_tier_above_existing_bands(app):
    tier = RewardConfigHelper.add_tier("Whale", "50000", "1000000", "0.007")
    assert tier.id is not None
    assert RewardConfigHelper.active_tiers()[-1].name == "Whale"


def test_inactive_tier_is_not_used(app):
    bronze = next(t for t in RewardConfigHelper.list_tiers() if t.name == "Bronze")
    RewardConfigHelper.update_tier(bronze.id, is_active=False)
    assert "Bronze" not in [b.name for b in RewardConfigHelper.active_tiers()]


def test_commission_rate_bounds(app):
    with pytest.raises(ConfigurationError):
        RewardConfigHelper.set_commission_rate(7, "0.01")
    with pytest.raises(ConfigurationError):
        RewardConfigHelper.set_commission_rate(1, "1.5")


def test_unlock_thresholds_must_not_decrease(app):
    with pytest.raises(ConfigurationError):
        RewardConfigHelper.upsert_level(2, unlock_volume_normal="10")

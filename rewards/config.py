# rewards/config.py
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from flask import current_app

from extensions import db
from models import ProfitTier, CommunityLevel, ReferralCommissionRate, RewardSettings
from rewards.errors import ConfigurationError, UnsupportedAsset
from rewards.tiers import Band
from utils import to_decimal, decimal_str


SETTINGS_ID = 1
MAX_COMMUNITY_LEVEL = 6
MAX_COMMISSION_LEVEL = 6

DEFAULT_INTERVAL_SECONDS = 28800  # 8 hours
DEFAULT_MIN_WITHDRAWAL = Decimal("0.1")

DEFAULT_TIERS = [
    ("Bronze", Decimal("10"), Decimal("20"), Decimal("0.0025")),
    ("Silver", Decimal("20"), Decimal("100"), Decimal("0.003")),
    ("Gold", Decimal("100"), Decimal("500"), Decimal("0.0035")),
    ("Platinum", Decimal("500"), Decimal("2000"), Decimal("0.004")),
    ("Diamond", Decimal("2000"), Decimal("10000"), Decimal("0.005")),
    ("Elite", Decimal("10000"), Decimal("50000"), Decimal("0.006")),
]

DEFAULT_COMMISSION_RATES = {
    1: Decimal("0.10"),   # 10%
    2: Decimal("0.05"),   # 5%
    3: Decimal("0.03"),   # 3%
    4: Decimal("0.02"),   # 2%
    5: Decimal("0.01"),   # 1%
    6: Decimal("0.005"),  # 0.5%
}

# level: (reward_pool, daily_rate, unlock_volume_normal, unlock_volume_influencer)
DEFAULT_COMMUNITY_LEVELS = {
    1: (Decimal("50"), Decimal("0.01"), Decimal("1000"), Decimal("500")),
    2: (Decimal("200"), Decimal("0.01"), Decimal("5000"), Decimal("2500")),
    3: (Decimal("800"), Decimal("0.01"), Decimal("20000"), Decimal("10000")),
    4: (Decimal("2000"), Decimal("0.01"), Decimal("50000"), Decimal("25000")),
    5: (Decimal("5000"), Decimal("0.01"), Decimal("100000"), Decimal("50000")),
    6: (Decimal("15000"), Decimal("0.01"), Decimal("300000"), Decimal("150000")),
}


class RewardConfigHelper:
    """
    Admin-mutable engine configuration: settings singleton, profit tiers,
    community levels and per-depth commission rates.
    Mutators flush but never commit; callers own the transaction.
    """

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    @staticmethod
    def get_settings() -> RewardSettings:
        settings = db.session.get(RewardSettings, SETTINGS_ID)
        if settings is None:
            settings = RewardSettings(
                id=SETTINGS_ID,
                interval_seconds=DEFAULT_INTERVAL_SECONDS,
                min_withdrawal_usdc=DEFAULT_MIN_WITHDRAWAL,
                min_withdrawal_pol=DEFAULT_MIN_WITHDRAWAL,
            )
            db.session.add(settings)
            db.session.flush()
        return settings

    @staticmethod
    def update_settings(interval_seconds=None, min_withdrawal_usdc=None, min_withdrawal_pol=None) -> RewardSettings:
        settings = RewardConfigHelper.get_settings()

        if interval_seconds is not None:
            interval = int(interval_seconds)
            if interval < 0:
                raise ConfigurationError("interval_seconds must be >= 0", interval_seconds=interval)
            settings.interval_seconds = interval

        for field, value in (("min_withdrawal_usdc", min_withdrawal_usdc), ("min_withdrawal_pol", min_withdrawal_pol)):
            if value is None:
                continue
            amount = to_decimal(value, field)
            if amount <= 0:
                raise ConfigurationError(f"{field} must be positive", **{field: amount})
            setattr(settings, field, amount)

        db.session.flush()
        current_app.logger.info(f"Reward settings updated: {settings.to_dict()}")
        return settings

    @staticmethod
    def min_withdrawal(asset: str) -> Decimal:
        settings = RewardConfigHelper.get_settings()
        minimums = {
            "USDC": settings.min_withdrawal_usdc,
            "POL": settings.min_withdrawal_pol,
        }
        if asset not in minimums:
            raise UnsupportedAsset(f"Unsupported asset {asset}", asset=asset)
        return to_decimal(minimums[asset])

    # ------------------------------------------------------------------
    # Profit tiers
    # ------------------------------------------------------------------
    @staticmethod
    def active_tiers() -> List[Band]:
        tiers = (
            ProfitTier.query.filter_by(is_active=True)
            .order_by(ProfitTier.min_amount.asc(), ProfitTier.id.asc())
            .all()
        )
        return [
            Band(t.id, t.name, to_decimal(t.min_amount), to_decimal(t.max_amount), to_decimal(t.rate))
            for t in tiers
        ]

    @staticmethod
    def list_tiers() -> List[ProfitTier]:
        return ProfitTier.query.order_by(ProfitTier.min_amount.asc(), ProfitTier.id.asc()).all()

    @staticmethod
    def _validate_band(min_amount: Decimal, max_amount: Decimal, rate: Decimal, exclude_id: Optional[int] = None):
        if min_amount < 0 or min_amount >= max_amount:
            raise ConfigurationError("Tier min must be >= 0 and below max", min=min_amount, max=max_amount)
        if rate < 0 or rate >= 1:
            raise ConfigurationError("Tier rate must be in [0, 1)", rate=rate)

        for other in ProfitTier.query.filter_by(is_active=True).all():
            if exclude_id is not None and other.id == exclude_id:
                continue
            other_min, other_max = to_decimal(other.min_amount), to_decimal(other.max_amount)
            if min_amount < other_max and other_min < max_amount:
                raise ConfigurationError(
                    f"Tier overlaps {other.name}",
                    overlaps=other.name, min=min_amount, max=max_amount,
                )

    @staticmethod
    def add_tier(name: str, min_amount, max_amount, rate) -> ProfitTier:
        if not name or not str(name).strip():
            raise ConfigurationError("Tier name is required")
        min_amount = to_decimal(min_amount, "min")
        max_amount = to_decimal(max_amount, "max")
        rate = to_decimal(rate, "rate")
        RewardConfigHelper._validate_band(min_amount, max_amount, rate)

        tier = ProfitTier(name=str(name).strip(), min_amount=min_amount, max_amount=max_amount, rate=rate)
        db.session.add(tier)
        db.session.flush()
        current_app.logger.info(f"Tier added: {tier.name} [{min_amount}, {max_amount}) @ {rate}")
        return tier

    @staticmethod
    def update_tier(tier_id: int, name=None, min_amount=None, max_amount=None, rate=None, is_active=None) -> ProfitTier:
        tier = db.session.get(ProfitTier, tier_id)
        if tier is None:
            raise ConfigurationError("Tier not found", tier_id=tier_id)

        new_min = to_decimal(min_amount, "min") if min_amount is not None else to_decimal(tier.min_amount)
        new_max = to_decimal(max_amount, "max") if max_amount is not None else to_decimal(tier.max_amount)
        new_rate = to_decimal(rate, "rate") if rate is not None else to_decimal(tier.rate)
        active = tier.is_active if is_active is None else bool(is_active)

        if active:
            RewardConfigHelper._validate_band(new_min, new_max, new_rate, exclude_id=tier.id)

        if name:
            tier.name = str(name).strip()
        tier.min_amount, tier.max_amount, tier.rate, tier.is_active = new_min, new_max, new_rate, active
        db.session.flush()
        return tier

    @staticmethod
    def delete_tier(tier_id: int) -> None:
        tier = db.session.get(ProfitTier, tier_id)
        if tier is None:
            raise ConfigurationError("Tier not found", tier_id=tier_id)
        db.session.delete(tier)
        db.session.flush()
        current_app.logger.info(f"Tier deleted: {tier_id}")

    # ------------------------------------------------------------------
    # Commission rates
    # ------------------------------------------------------------------
    @staticmethod
    def commission_rates() -> Dict[int, Decimal]:
        """{depth: rate} for active levels only."""
        rows = ReferralCommissionRate.query.filter_by(is_active=True).all()
        return {row.level: to_decimal(row.rate) for row in rows if to_decimal(row.rate) > 0}

    @staticmethod
    def set_commission_rate(level: int, rate, is_active: bool = True) -> ReferralCommissionRate:
        level = int(level)
        if level < 1 or level > MAX_COMMISSION_LEVEL:
            raise ConfigurationError(f"Commission level must be 1..{MAX_COMMISSION_LEVEL}", level=level)
        rate = to_decimal(rate, "rate")
        if rate < 0 or rate >= 1:
            raise ConfigurationError("Commission rate must be in [0, 1)", rate=rate)

        row = ReferralCommissionRate.query.filter_by(level=level).first()
        if row is None:
            row = ReferralCommissionRate(level=level)
            db.session.add(row)
        row.rate = rate
        row.is_active = bool(is_active)
        db.session.flush()
        return row

    # ------------------------------------------------------------------
    # Community levels
    # ------------------------------------------------------------------
    @staticmethod
    def level_configs() -> Dict[int, CommunityLevel]:
        return {row.level: row for row in CommunityLevel.query.order_by(CommunityLevel.level).all()}

    @staticmethod
    def level_thresholds(influencer: bool = False) -> Dict[int, Decimal]:
        column = "unlock_volume_influencer" if influencer else "unlock_volume_normal"
        return {
            level: to_decimal(getattr(row, column))
            for level, row in RewardConfigHelper.level_configs().items()
        }

    @staticmethod
    def upsert_level(level: int, reward_pool=None, daily_rate=None,
                     unlock_volume_normal=None, unlock_volume_influencer=None) -> CommunityLevel:
        level = int(level)
        if level < 1 or level > MAX_COMMUNITY_LEVEL:
            raise ConfigurationError(f"Community level must be 1..{MAX_COMMUNITY_LEVEL}", level=level)

        row = CommunityLevel.query.filter_by(level=level).first()
        if row is None:
            row = CommunityLevel(level=level)
            db.session.add(row)

        for field, value in (
            ("reward_pool", reward_pool),
            ("daily_rate", daily_rate),
            ("unlock_volume_normal", unlock_volume_normal),
            ("unlock_volume_influencer", unlock_volume_influencer),
        ):
            if value is None:
                continue
            amount = to_decimal(value, field)
            if amount < 0:
                raise ConfigurationError(f"{field} must be >= 0", **{field: amount})
            setattr(row, field, amount)

        if row.daily_rate is not None and to_decimal(row.daily_rate) >= 1:
            raise ConfigurationError("daily_rate must be below 1", daily_rate=row.daily_rate)

        db.session.flush()

        for influencer in (False, True):
            thresholds = sorted(RewardConfigHelper.level_thresholds(influencer).items())
            floors = [floor for _, floor in thresholds]
            if floors != sorted(floors):
                raise ConfigurationError(
                    "Unlock thresholds must not decrease with level",
                    influencer=influencer, level=level,
                )
        return row

    # ------------------------------------------------------------------
    # Seeding and reporting
    # ------------------------------------------------------------------
    @staticmethod
    def seed_defaults() -> Dict[str, int]:
        """Insert default settings, tiers, commission rates and levels where none exist."""
        created = {"tiers": 0, "commission_rates": 0, "levels": 0}
        RewardConfigHelper.get_settings()

        if ProfitTier.query.count() == 0:
            for name, lower, upper, rate in DEFAULT_TIERS:
                db.session.add(ProfitTier(name=name, min_amount=lower, max_amount=upper, rate=rate))
                created["tiers"] += 1

        existing_rates = {row.level for row in ReferralCommissionRate.query.all()}
        for level, rate in DEFAULT_COMMISSION_RATES.items():
            if level not in existing_rates:
                db.session.add(ReferralCommissionRate(level=level, rate=rate))
                created["commission_rates"] += 1

        existing_levels = set(RewardConfigHelper.level_configs())
        for level, (pool, daily_rate, normal, influencer) in DEFAULT_COMMUNITY_LEVELS.items():
            if level not in existing_levels:
                db.session.add(CommunityLevel(
                    level=level,
                    reward_pool=pool,
                    daily_rate=daily_rate,
                    unlock_volume_normal=normal,
                    unlock_volume_influencer=influencer,
                ))
                created["levels"] += 1

        db.session.flush()
        return created

    @staticmethod
    def get_distribution_summary() -> Dict[str, Any]:
        """Summary of commission distribution across all depths"""
        rates = RewardConfigHelper.commission_rates()
        distribution = {}
        total = Decimal("0")
        for level in range(1, MAX_COMMISSION_LEVEL + 1):
            rate = rates.get(level, Decimal("0"))
            distribution[level] = {
                "rate": decimal_str(rate),
                "rate_display": f"{rate * 100:.2f}%",
            }
            total += rate

        return {
            "settings": RewardConfigHelper.get_settings().to_dict(),
            "tiers": [t.to_dict() for t in RewardConfigHelper.list_tiers()],
            "levels": [row.to_dict() for row in RewardConfigHelper.level_configs().values()],
            "commission_distribution": distribution,
            "total_commission_rate": decimal_str(total),
        }

    @staticmethod
    def validate_configuration() -> Tuple[bool, List[str]]:
        """Check tiers and commission rates are mathematically sound"""
        problems = []
        bands = RewardConfigHelper.active_tiers()
        if not bands:
            problems.append("No active profit tiers")

        for previous, band in zip(bands, bands[1:]):
            if band.lower < previous.upper:
                problems.append(f"Tier {band.name} overlaps {previous.name}")
            elif band.lower > previous.upper:
                problems.append(f"Gap between {previous.name} and {band.name}: [{previous.upper}, {band.lower})")

        total = sum(RewardConfigHelper.commission_rates().values(), Decimal("0"))
        if total >= Decimal("1"):
            problems.append(f"Total commission rate too high: {total * 100}%")

        if not RewardConfigHelper.level_configs():
            problems.append("No community levels configured")

        return not problems, problems

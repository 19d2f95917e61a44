# lifecycle_system/config/roles.py
"""
Promotion thresholds.

MANAGER thresholds apply over the trailing eligibility window. The sales
threshold depends on the member's manager range (sub-rank). Values can be
overridden through the MANAGER_THRESHOLDS config key (JSON), e.g.:

    {"salesVolume": {"1": 1000000}, "insuredCount": 25}
"""
from decimal import Decimal
from typing import Dict, Any
import logging

logger = logging.getLogger(__name__)

DEFAULT_SALES_THRESHOLDS: Dict[int, Decimal] = {
    1: Decimal("1200000"),
    2: Decimal("1500000"),
    3: Decimal("2400000"),
}

DEFAULT_MANAGER_THRESHOLDS: Dict[str, Any] = {
    "salesVolume": DEFAULT_SALES_THRESHOLDS,
    "insuredCount": 20,
    "memberReferrals": 8,
    "associateReferrals": 4,
}


def get_manager_thresholds() -> Dict[str, Any]:
    """
    Get MANAGER thresholds with config overrides applied.

    Returns:
        Dict with salesVolume (range → Decimal) and integer count thresholds
    """
    from config import Config

    thresholds = {
        "salesVolume": dict(DEFAULT_SALES_THRESHOLDS),
        "insuredCount": DEFAULT_MANAGER_THRESHOLDS["insuredCount"],
        "memberReferrals": DEFAULT_MANAGER_THRESHOLDS["memberReferrals"],
        "associateReferrals": DEFAULT_MANAGER_THRESHOLDS["associateReferrals"],
    }

    overrides = Config.get(Config.MANAGER_THRESHOLDS)
    if not overrides:
        return thresholds

    for key, value in overrides.items():
        try:
            if key == "salesVolume":
                for rangeKey, amount in value.items():
                    thresholds["salesVolume"][int(rangeKey)] = Decimal(str(amount))
            elif key in thresholds:
                thresholds[key] = int(value)
            else:
                logger.warning(f"Unknown MANAGER_THRESHOLDS key '{key}' ignored")
        except (ValueError, TypeError, AttributeError) as e:
            logger.error(f"Invalid MANAGER_THRESHOLDS value for '{key}': {e}")

    return thresholds


def get_sales_threshold(rangeNumber: int) -> Decimal:
    """Sales threshold for a manager range; unknown ranges fall back to range 1."""
    sales = get_manager_thresholds()["salesVolume"]
    return sales.get(rangeNumber or 1, sales[1])

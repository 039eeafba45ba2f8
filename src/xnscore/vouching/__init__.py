"""Elder vouches, peer endorsements and the voucher cascade."""

from xnscore.vouching.cascade import VoucherCascade
from xnscore.vouching.endorsements import EndorsementLedger
from xnscore.vouching.ledger import ElderTierLookup, VouchLedger
from xnscore.vouching.standing import (
    RECOVERY_CLEAN_DAYS,
    RELIABILITY_THRESHOLDS,
    ReliabilityStatus,
    VoucherStanding,
    reliability_status,
    voucher_standing,
)
from xnscore.vouching.sweeper import VouchSweeper

__all__ = [
    "ElderTierLookup",
    "EndorsementLedger",
    "RECOVERY_CLEAN_DAYS",
    "RELIABILITY_THRESHOLDS",
    "ReliabilityStatus",
    "VouchLedger",
    "VouchSweeper",
    "VoucherCascade",
    "VoucherStanding",
    "reliability_status",
    "voucher_standing",
]

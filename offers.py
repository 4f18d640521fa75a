"""
Promotional offer tiers

Converts a total quantity of an item into the number of paid and free units
for a given offer tier.
"""
import math
from enum import Enum
from typing import NamedTuple


class OfferTier(str, Enum):
    NONE = "NONE"
    BUY_1_GET_1_FREE = "BUY_1_GET_1_FREE"
    BUY_2_GET_3_FREE = "BUY_2_GET_3_FREE"
    BUY_3_GET_5_FREE = "BUY_3_GET_5_FREE"


class Split(NamedTuple):
    paid: int
    free: int


# tier -> (paid units in the first cycle, units in a full cycle)
CYCLES = {
    OfferTier.BUY_2_GET_3_FREE: (2, 5),
    OfferTier.BUY_3_GET_5_FREE: (3, 8),
}

LABELS = {
    OfferTier.NONE: "No offer",
    OfferTier.BUY_1_GET_1_FREE: "Buy 1 get 1 free",
    OfferTier.BUY_2_GET_3_FREE: "Buy 2 get 3 free",
    OfferTier.BUY_3_GET_5_FREE: "Buy 3 get 5 free",
}


def resolve(total_quantity: int, tier) -> Split:
    """
    Split total_quantity into paid and free units.

    Below the first full cycle every unit is paid until the tier's paid count
    is reached, the rest of the cycle is free. Past the first cycle each
    further block of cycle-size units costs one more paid unit.

    Buy 1 get 1 free uses a uniform cycle of two from the start.
    """
    tier = OfferTier(tier)
    if total_quantity <= 0:
        return Split(0, 0)

    if tier is OfferTier.NONE:
        return Split(total_quantity, 0)

    if tier is OfferTier.BUY_1_GET_1_FREE:
        paid = total_quantity // 2 + total_quantity % 2
        return Split(paid, total_quantity - paid)

    first_paid, cycle = CYCLES[tier]
    if total_quantity <= cycle:
        paid = min(total_quantity, first_paid)
    else:
        paid = first_paid + math.ceil((total_quantity - cycle) / cycle)
    return Split(paid, total_quantity - paid)


def describe(tier) -> str:
    return LABELS[OfferTier(tier)]

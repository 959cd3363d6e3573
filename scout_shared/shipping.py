"""UK postage rates for Royal Mail and Evri book parcels."""
from __future__ import annotations

from typing import Callable, Dict, List, Tuple

from .models import ShippingRate

CARRIERS = ("royal-mail-2nd", "royal-mail-1st", "royal-mail-signed", "evri")
TRACKED_VALUE_THRESHOLD = 20.0
SIGNED_SURCHARGE = 2.10

_ROYAL_MAIL_2ND: List[Tuple[float, float]] = [
    (0.1, 0.85), (0.25, 1.55), (0.5, 2.15), (0.75, 2.70), (1.0, 3.35),
    (2.0, 3.85), (5.0, 5.99), (10.0, 9.99),
]
_ROYAL_MAIL_1ST: List[Tuple[float, float]] = [
    (0.1, 1.35), (0.25, 1.95), (0.5, 2.65), (0.75, 3.30), (1.0, 4.45),
    (2.0, 5.25), (5.0, 7.99), (10.0, 12.99),
]
_EVRI: List[Tuple[float, float]] = [
    (1.0, 2.95), (2.0, 3.20), (5.0, 4.50), (10.0, 6.99), (15.0, 9.99),
]


def _band(table: List[Tuple[float, float]], weight_kg: float, heavier: float) -> float:
    for limit, cost in table:
        if weight_kg <= limit:
            return cost
    return heavier


def royal_mail_2nd_class(weight_kg: float) -> ShippingRate:
    return ShippingRate("Royal Mail", "2nd Class", _band(_ROYAL_MAIL_2ND, weight_kg, 15.99), False, "2-3 working days")


def royal_mail_1st_class(weight_kg: float) -> ShippingRate:
    return ShippingRate("Royal Mail", "1st Class", _band(_ROYAL_MAIL_1ST, weight_kg, 19.99), False, "1-2 working days")


def royal_mail_signed(weight_kg: float) -> ShippingRate:
    base = royal_mail_2nd_class(weight_kg)
    return ShippingRate("Royal Mail", "Signed For 2nd Class", round(base.cost + SIGNED_SURCHARGE, 2), True, "2-3 working days")


def evri(weight_kg: float) -> ShippingRate:
    return ShippingRate("Evri", "Standard", _band(_EVRI, weight_kg, 14.99), True, "3-5 working days")


_CALCULATORS: Dict[str, Callable[[float], ShippingRate]] = {
    "royal-mail-2nd": royal_mail_2nd_class,
    "royal-mail-1st": royal_mail_1st_class,
    "royal-mail-signed": royal_mail_signed,
    "evri": evri,
}


def shipping_cost(weight_kg: float, carrier: str = "royal-mail-2nd") -> ShippingRate:
    return _CALCULATORS.get(carrier, royal_mail_2nd_class)(weight_kg)


def all_shipping_options(weight_kg: float) -> List[ShippingRate]:
    """Every carrier's rate for ``weight_kg``, cheapest first."""
    return sorted((shipping_cost(weight_kg, carrier) for carrier in CARRIERS), key=lambda rate: rate.cost)


def cheapest_shipping(weight_kg: float) -> ShippingRate:
    return all_shipping_options(weight_kg)[0]


def recommended_shipping(weight_kg: float, item_value: float) -> ShippingRate:
    """Tracked postage for items over £20, otherwise the cheaper of 2nd Class and Evri."""
    if item_value > TRACKED_VALUE_THRESHOLD:
        tracked_evri = evri(weight_kg)
        signed = royal_mail_signed(weight_kg)
        return tracked_evri if signed.cost - tracked_evri.cost > 1.00 else signed
    second = royal_mail_2nd_class(weight_kg)
    evri_rate = evri(weight_kg)
    return second if second.cost <= evri_rate.cost else evri_rate

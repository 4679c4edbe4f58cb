"""
Batch pricing engine

Pure function: the same inputs always give the same breakdown, so it can be
re-run whenever a batch's fill or style count changes. Arithmetic is done in
Decimal and rounded only when the result is returned.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from models.pricing import PricingRules, PriceBreakdown
from services.errors import ValidationError

CENTS = Decimal("0.01")
TENTHS = Decimal("0.1")


def _d(value) -> Decimal:
    return Decimal(str(value))


def _money(value: Decimal) -> float:
    return float(value.quantize(CENTS, rounding=ROUND_HALF_UP))


def buyer_markup_for_fill(fill_percentage: float, rules: Optional[PricingRules] = None) -> Decimal:
    """Markup tier: emptier batches carry a higher markup, nearly-full batches a lower one"""
    rules = rules or PricingRules()
    if fill_percentage < rules.low_fill_threshold:
        return _d(rules.markup_low_fill)
    if fill_percentage < rules.high_fill_threshold:
        return _d(rules.markup_mid_fill)
    return _d(rules.markup_high_fill)


def calculate_price(
    base_price: float,
    quantity: int,
    style_count_in_batch: int,
    fill_percentage: float,
    rules: Optional[PricingRules] = None,
) -> PriceBreakdown:
    """Factory price, buyer price and savings versus a solo (non-aggregated) order"""
    rules = rules or PricingRules()

    if base_price is None or base_price <= 0:
        raise ValidationError("base_price must be positive")
    if quantity is None or quantity <= 0:
        raise ValidationError("quantity must be positive")
    if style_count_in_batch is None or style_count_in_batch < 1:
        raise ValidationError("style_count_in_batch must be at least 1")
    if fill_percentage is None or fill_percentage < 0:
        raise ValidationError("fill_percentage cannot be negative")

    base = _d(base_price)
    qty = Decimal(quantity)

    complexity_multiplier = Decimal(1) + _d(rules.complexity_step) * (style_count_in_batch - 1)
    factory_price = base * complexity_multiplier
    buyer_markup = buyer_markup_for_fill(fill_percentage, rules)
    buyer_price = factory_price * (Decimal(1) + buyer_markup)
    solo_order_price = base * _d(rules.solo_multiplier)

    savings_per_unit = solo_order_price - buyer_price
    total_savings = savings_per_unit * qty
    savings_percentage = savings_per_unit / solo_order_price * 100
    unit_margin = buyer_price - factory_price
    total_margin = unit_margin * qty

    return PriceBreakdown(
        complexity_multiplier=_money(complexity_multiplier),
        factory_price=_money(factory_price),
        buyer_markup=_money(buyer_markup),
        buyer_price=_money(buyer_price),
        solo_order_price=_money(solo_order_price),
        savings_per_unit=_money(savings_per_unit),
        total_savings=_money(total_savings),
        savings_percentage=float(savings_percentage.quantize(TENTHS, rounding=ROUND_HALF_UP)),
        unit_margin=_money(unit_margin),
        total_margin=_money(total_margin),
    )

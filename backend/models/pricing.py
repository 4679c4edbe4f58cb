from pydantic import BaseModel, Field

import config


class PricingRules(BaseModel):
    """Business constants for batch pricing (tunable through the environment)"""
    complexity_step: float = config.PRICING_COMPLEXITY_STEP
    solo_multiplier: float = config.PRICING_SOLO_MULTIPLIER
    markup_low_fill: float = config.PRICING_MARKUP_LOW_FILL
    markup_mid_fill: float = config.PRICING_MARKUP_MID_FILL
    markup_high_fill: float = config.PRICING_MARKUP_HIGH_FILL
    low_fill_threshold: float = config.PRICING_LOW_FILL_THRESHOLD
    high_fill_threshold: float = config.PRICING_HIGH_FILL_THRESHOLD


class PricingRequest(BaseModel):
    base_price: float = Field(gt=0)
    quantity: int = Field(gt=0)
    style_count_in_batch: int = Field(default=1, ge=1)
    fill_percentage: float = Field(default=0, ge=0)


class PriceBreakdown(BaseModel):
    complexity_multiplier: float
    factory_price: float
    buyer_markup: float
    buyer_price: float
    solo_order_price: float
    savings_per_unit: float
    total_savings: float
    savings_percentage: float
    unit_margin: float
    total_margin: float
    currency: str = config.BASE_CURRENCY

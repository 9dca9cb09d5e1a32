# vendbench/demand.py
import logging
import math
import numpy as np
from typing import Dict, List, Optional

from .backend import Backend
from .config import SimulationConfig
from .models import SimulationState, Slot, ProductParams, SaleResult
from .operations import record_sale

logger = logging.getLogger(__name__)

# Period of week (period % 7), weekends busier
WEEKDAY_MULTIPLIERS = [0.8, 0.9, 0.9, 1.0, 1.1, 1.3, 1.2]

# Month of year, summer busier
MONTH_MULTIPLIERS = [0.7, 0.75, 0.85, 0.95, 1.0, 1.1, 1.15, 1.1, 1.0, 0.9, 0.8, 0.75]


class ParamCache:
    """
    Per-simulation memo of product demand parameters.
    The backend is asked at most once per product name that it answers for.
    """

    def __init__(self):
        self._params: Dict[str, ProductParams] = {}

    def __contains__(self, product_name: str) -> bool:
        return product_name in self._params

    def __len__(self) -> int:
        return len(self._params)

    def peek(self, product_name: str) -> Optional[ProductParams]:
        return self._params.get(product_name)

    async def get(self, product_name: str, backend: Backend) -> ProductParams:
        cached = self._params.get(product_name)
        if cached is not None:
            return cached
        params = await backend.product_params(product_name)
        self._params[product_name] = params
        return params


def weekday_factor(period: int) -> float:
    return WEEKDAY_MULTIPLIERS[period % 7]


def seasonal_factor(period: int) -> float:
    month = min(11, int((period % 365) / 30.4))
    return MONTH_MULTIPLIERS[month]


def variety_factor(distinct_products: int) -> float:
    """Rewards a varied machine up to six products, then penalises fragmentation."""
    if distinct_products <= 2:
        return 0.5
    if distinct_products <= 4:
        return 0.8
    if distinct_products <= 6:
        return 1.0
    return max(0.5, 1.0 - (distinct_products - 6) * 0.1)


def price_impact(price: float, params: ProductParams) -> float:
    price_diff = (price - params.reference_price) / params.reference_price
    return max(0.0, 1.0 - params.elasticity * price_diff)


def is_sellable(slot: Slot) -> bool:
    return slot.product_name is not None and slot.quantity > 0 and slot.price > 0


def calculate_demand(slot: Slot, params: ProductParams, period: int, distinct_products: int,
                     rng: np.random.RandomState, noise_range=(0.9, 1.1)) -> int:
    """
    Units sold from one slot this period, capped by what the slot holds.
    """
    noise = rng.uniform(*noise_range)
    predicted = (params.base_demand
                 * price_impact(slot.price, params)
                 * weekday_factor(period)
                 * seasonal_factor(period)
                 * variety_factor(distinct_products)
                 * noise)
    # Round half up
    actual = int(math.floor(predicted + 0.5))
    return min(max(0, actual), slot.quantity)


def split_revenue(revenue: float, card_share: float):
    card = round(revenue * card_share, 2)
    cash = round(revenue - card, 2)
    return card, cash


async def simulate_demand(state: SimulationState, cache: ParamCache, backend: Backend,
                          rng: np.random.RandomState, config: SimulationConfig) -> List[SaleResult]:
    """
    Sell from every stocked slot once and settle the revenue.
    Card revenue lands in the balance, cash waits in the machine until collected.
    """
    distinct = len({s.product_name for s in state.slots if s.product_name})
    sales = []

    for slot in state.slots:
        if not is_sellable(slot):
            continue
        try:
            params = await cache.get(slot.product_name, backend)
        except Exception as e:
            # No parameters means no customers for this slot this period
            logger.warning("Demand parameters for %s unavailable (%s): %s",
                           slot.product_name, type(e).__name__, e)
            continue

        quantity = calculate_demand(slot, params, state.period, distinct, rng, config.noise_range)
        if quantity == 0:
            continue

        revenue = round(quantity * slot.price, 2)
        card, cash = split_revenue(revenue, config.card_share)
        slot.quantity -= quantity
        record_sale(state, card, cash, f"Sales: {quantity} x {slot.product_name}")
        sale = SaleResult(product_name=slot.product_name, position=slot.position,
                          quantity=quantity, revenue=revenue,
                          card_revenue=card, cash_revenue=cash)
        sales.append(sale)
        logger.debug("Slot %d sold %d x %s for $%.2f", slot.position, quantity,
                     slot.product_name, revenue)

    return sales

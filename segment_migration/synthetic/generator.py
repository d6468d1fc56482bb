from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
import math
import random
from typing import List, Optional, Sequence, Tuple

from segment_migration.errors import ConfigurationError
from segment_migration.foundation.records import Customer, Transaction
from segment_migration.foundation.windows import add_months

DEFAULT_CHANNELS: Tuple[str, ...] = ("organic", "paid_search", "social", "referral")


@dataclass(frozen=True)
class ScenarioConfig:
    """Configuration for the synthetic dataset generator.

    Attributes
    ----------
    channels: Acquisition channels assigned uniformly to customers.
    churn_hazard: Monthly probability that an active customer stops buying.
    base_orders_per_month: Average orders per active customer per month.
    mean_item_price: Average line item price.
    price_variability: Coefficient in (0, 1] controlling price variance.
    max_items_per_order: Upper bound of line items per order (uniform 1..max).
    return_rate: Probability that a line item is returned.
    seed: Optional RNG seed for reproducibility.
    """

    channels: Tuple[str, ...] = field(default=DEFAULT_CHANNELS)
    churn_hazard: float = 0.08
    base_orders_per_month: float = 0.6
    mean_item_price: float = 35.0
    price_variability: float = 0.5
    max_items_per_order: int = 3
    return_rate: float = 0.05
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.channels:
            raise ConfigurationError("channels must not be empty", field="channels")
        if not 0 <= self.churn_hazard <= 1:
            raise ConfigurationError(
                f"churn_hazard must be within [0, 1], got {self.churn_hazard}",
                field="churn_hazard",
            )
        if self.base_orders_per_month < 0:
            raise ConfigurationError(
                "base_orders_per_month must be non-negative",
                field="base_orders_per_month",
            )
        if self.mean_item_price <= 0:
            raise ConfigurationError(
                "mean_item_price must be positive", field="mean_item_price"
            )
        if not 0 < self.price_variability <= 1:
            raise ConfigurationError(
                "price_variability must be within (0, 1]", field="price_variability"
            )
        if self.max_items_per_order < 1:
            raise ConfigurationError(
                "max_items_per_order must be >= 1", field="max_items_per_order"
            )
        if not 0 <= self.return_rate < 1:
            raise ConfigurationError(
                f"return_rate must be within [0, 1), got {self.return_rate}",
                field="return_rate",
            )


@dataclass(frozen=True)
class SyntheticDataset:
    customers: List[Customer]
    transactions: List[Transaction]


def _month_starts(start: date, end: date) -> List[date]:
    cur = date(start.year, start.month, 1)
    out: List[date] = []
    while cur <= end:
        out.append(cur)
        cur = add_months(cur, 1)
    return out


def _poisson(rng: random.Random, lam: float) -> int:
    # Knuth's algorithm
    if lam <= 0:
        return 0
    L = math.exp(-lam)
    k = 0
    p = 1.0
    while p > L:
        k += 1
        p *= rng.random()
    return k - 1


def _sample_price(rng: random.Random, mean: float, variability: float) -> Decimal:
    sigma = variability
    mu = math.log(mean) - 0.5 * sigma * sigma
    price = max(math.exp(rng.normalvariate(mu, sigma)), 0.01)
    return Decimal(str(price)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def generate_customers(
    n: int, channels: Sequence[str], *, rng: random.Random
) -> List[Customer]:
    """Generate ``n`` customers with uniformly drawn acquisition channels."""
    width = len(str(max(n, 1)))
    return [
        Customer(
            customer_id=f"C-{i + 1:0{width}d}",
            acquisition_channel=rng.choice(list(channels)),
        )
        for i in range(n)
    ]


def generate_dataset(
    n_customers: int,
    start: date,
    end: date,
    scenario: Optional[ScenarioConfig] = None,
) -> SyntheticDataset:
    """Generate a reproducible customer base and its line-item history.

    Each customer joins in a uniformly drawn month, buys a Poisson number of
    orders per month until churning, and every order holds one or more line
    items that may be returned.

    Parameters
    ----------
    n_customers:
        Number of customers to generate; 0 yields an empty dataset
    start, end:
        Inclusive date range of generated orders
    scenario:
        Generator settings; defaults to :class:`ScenarioConfig`

    Raises
    ------
    ConfigurationError
        If ``n_customers`` is negative or ``start > end``

    Examples
    --------
    >>> data = generate_dataset(10, date(2023, 1, 1), date(2024, 12, 31),
    ...                         ScenarioConfig(seed=7))
    >>> len(data.customers)
    10
    """
    if n_customers < 0:
        raise ConfigurationError("n_customers must be non-negative", field="n_customers")
    if start > end:
        raise ConfigurationError("start date must be <= end date", field="start")

    scenario = scenario or ScenarioConfig()
    rng = random.Random(scenario.seed)
    customers = generate_customers(n_customers, scenario.channels, rng=rng)
    months = _month_starts(start, end)

    transactions: List[Transaction] = []
    order_seq = 1
    for customer in customers:
        joined = rng.randrange(len(months))
        for month_start in months[joined:]:
            if month_start != months[joined] and rng.random() < scenario.churn_hazard:
                break
            # First month always produces at least one order
            n_orders = _poisson(rng, scenario.base_orders_per_month)
            if month_start == months[joined]:
                n_orders = max(1, n_orders)

            month_first = max(month_start, start)
            month_last = min(add_months(month_start, 1) - timedelta(days=1), end)
            span = (month_last - month_first).days + 1
            for _ in range(n_orders):
                order_date = month_first + timedelta(days=rng.randrange(span))
                order_id = f"O-{order_seq}"
                order_seq += 1
                for _line in range(1 + rng.randrange(scenario.max_items_per_order)):
                    transactions.append(
                        Transaction(
                            customer_id=customer.customer_id,
                            order_id=order_id,
                            order_date=order_date,
                            is_returned=rng.random() < scenario.return_rate,
                            amount_paid=_sample_price(
                                rng, scenario.mean_item_price, scenario.price_variability
                            ),
                        )
                    )

    transactions.sort(key=lambda t: (t.customer_id, t.order_date, t.order_id))
    return SyntheticDataset(customers=customers, transactions=transactions)

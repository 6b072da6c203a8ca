from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from statistics import mean
from typing import Callable, Dict, List, Optional, Sequence, Union

from observer.app.insights.schema import (
    AdjustBudgetData,
    BudgetRecord,
    CancelSubscriptionData,
    CreateSavingsGoalData,
    DetectorRunResult,
    DetectorRunSummary,
    InsightCandidate,
    ReviewTransactionsData,
    SubscriptionRecord,
    TransactionRecord,
)


PRICE_HIKE_RATIO = 1.1
SPIKE_RATIO = 1.3
SPIKE_MIN_TRANSACTIONS = 11
SPIKE_RECENT_COUNT = 7
BUDGET_ALERT_FLOOR_PCT = 90
BUDGET_ALERT_CEILING_PCT = 100
BUDGET_SUGGESTED_HEADROOM = Decimal("1.2")
SMALL_CHARGE_LIMIT = 10.0
SMALL_CHARGE_MIN_COUNT = 11
SMALL_CHARGE_KEYWORD = "coffee"
SMALL_CHARGE_SAVINGS_RATE = 0.7

CENT = Decimal("0.01")


@dataclass(frozen=True)
class DetectorDefinition:
    detector_id: str
    insight_type: str
    source: str
    runner: Callable[[Sequence], List[InsightCandidate]]
    min_records: int = 0


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _as_decimal(value: Union[Decimal, float, int, None]) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    # str() keeps the written digits, not the binary expansion
    return Decimal(str(value))


def _money(value: Union[Decimal, float]) -> str:
    # exact binary value of a float, ties away from zero: 0.125 -> $0.13
    amount = value if isinstance(value, Decimal) else Decimal(value)
    return f"${amount.quantize(CENT, rounding=ROUND_HALF_UP)}"


def detect_subscription_price_hikes(
    subscriptions: Sequence[SubscriptionRecord],
    *,
    ratio: float = PRICE_HIKE_RATIO,
) -> List[InsightCandidate]:
    insights: List[InsightCandidate] = []
    for sub in subscriptions:
        current = float(sub.amount or 0.0)
        last = float(sub.last_charge_amount) if sub.last_charge_amount else current
        if not last > current * ratio:
            continue

        yearly_extra = (last - current) * 12
        insights.append(
            InsightCandidate(
                insight_type="subscription_price_hike",
                severity="urgent",
                title=f"{sub.merchant} Price Increase Detected",
                message=(
                    f"Your {sub.merchant} subscription increased from {_money(current)} to {_money(last)}. "
                    f"This adds {_money(yearly_extra)}/year."
                ),
                resolution=CancelSubscriptionData(id=sub.id, merchant=sub.merchant),
                related_entity_id=sub.id,
                related_entity_type="subscription",
            )
        )
    return insights


def detect_spending_spike(
    transactions: Sequence[TransactionRecord],
    *,
    ratio: float = SPIKE_RATIO,
    min_transactions: int = SPIKE_MIN_TRANSACTIONS,
    recent_count: int = SPIKE_RECENT_COUNT,
) -> List[InsightCandidate]:
    """Compare the newest outflows against the trailing-window average.

    ``transactions`` must be ordered newest first. The recent slice is taken
    from the outflow series, so it covers the latest ``recent_count`` outflows
    rather than a calendar week.
    """
    if len(transactions) < min_transactions:
        return []

    amounts = [abs(float(txn.amount)) for txn in transactions if float(txn.amount) < 0]
    if not amounts:
        return []

    avg = mean(amounts)
    recent_avg = mean(amounts[: min(recent_count, len(amounts))])
    if not recent_avg > avg * ratio:
        return []

    increase_pct = round_half_up(((recent_avg - avg) / avg) * 100)
    return [
        InsightCandidate(
            insight_type="spending_spike",
            severity="warning",
            title="Unusual Spending Spike Detected",
            message=(
                f"Your spending increased by {increase_pct}% this week "
                f"({_money(recent_avg)}/day vs {_money(avg)}/day average). "
                "Consider reviewing recent transactions."
            ),
            resolution=ReviewTransactionsData(category="all", period="7_days"),
        )
    ]


def detect_budget_overruns(
    budgets: Sequence[BudgetRecord],
    *,
    floor_pct: int = BUDGET_ALERT_FLOOR_PCT,
    ceiling_pct: int = BUDGET_ALERT_CEILING_PCT,
) -> List[InsightCandidate]:
    """Flag budgets strictly between the floor and the limit.

    The window is decided on exact decimals (``limit * floor < spent * 100 <
    limit * ceiling``); budgets already at or past the limit are not reported.
    """
    insights: List[InsightCandidate] = []
    for budget in budgets:
        limit = _as_decimal(budget.limit)
        if limit <= 0:
            continue
        spent = _as_decimal(budget.spent)
        if not limit * floor_pct < spent * 100 < limit * ceiling_pct:
            continue
        percentage = int((spent * 100 / limit).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

        insights.append(
            InsightCandidate(
                insight_type="budget_overrun",
                severity="warning",
                title=f"{budget.category} Budget Alert",
                message=(
                    f"You've used {percentage}% of your {budget.category} budget "
                    f"({_money(spent)}/{_money(limit)}). "
                    "Consider adjusting your budget or reducing spending."
                ),
                resolution=AdjustBudgetData(
                    budget_id=budget.id,
                    category=budget.category,
                    current_limit=float(limit),
                    suggested_limit=int(math.ceil(spent * BUDGET_SUGGESTED_HEADROOM)),
                ),
                related_entity_id=budget.id,
                related_entity_type="budget",
            )
        )
    return insights


def detect_coffee_savings(
    transactions: Sequence[TransactionRecord],
    *,
    keyword: str = SMALL_CHARGE_KEYWORD,
    charge_limit: float = SMALL_CHARGE_LIMIT,
    min_count: int = SMALL_CHARGE_MIN_COUNT,
    savings_rate: float = SMALL_CHARGE_SAVINGS_RATE,
) -> List[InsightCandidate]:
    small_charges = [
        txn
        for txn in transactions
        if abs(float(txn.amount)) < charge_limit and keyword in (txn.merchant or "").lower()
    ]
    if len(small_charges) < min_count:
        return []

    total = sum(abs(float(txn.amount)) for txn in small_charges)
    return [
        InsightCandidate(
            insight_type="savings_opportunity",
            severity="info",
            title="Coffee Spending Opportunity",
            message=(
                f"You've spent {_money(total)} on coffee this month ({len(small_charges)} purchases). "
                f"Brewing at home could save {_money(total * savings_rate)}/month."
            ),
            resolution=CreateSavingsGoalData(
                goal_name="Coffee Savings",
                monthly_amount=round_half_up(total * savings_rate),
            ),
        )
    ]


DETECTOR_DEFINITIONS: List[DetectorDefinition] = [
    DetectorDefinition("detect_subscription_price_hikes", "subscription_price_hike", "subscriptions", detect_subscription_price_hikes),
    DetectorDefinition("detect_spending_spike", "spending_spike", "transactions", detect_spending_spike, min_records=SPIKE_MIN_TRANSACTIONS),
    DetectorDefinition("detect_budget_overruns", "budget_overrun", "budgets", detect_budget_overruns),
    DetectorDefinition("detect_coffee_savings", "savings_opportunity", "transactions", detect_coffee_savings),
]


def run_detectors_with_summary(
    inputs: Dict[str, Optional[Sequence]],
    *,
    definitions: Optional[List[DetectorDefinition]] = None,
) -> DetectorRunSummary:
    """Run every detector against its source records.

    A source mapped to ``None`` could not be fetched; detectors reading it are
    reported as skipped and the rest still run.
    """
    all_candidates: List[InsightCandidate] = []
    detector_results: List[DetectorRunResult] = []

    for detector in definitions if definitions is not None else DETECTOR_DEFINITIONS:
        records = inputs.get(detector.source)
        skipped_reason = None
        if records is None:
            skipped_reason = "fetch_failed"
        elif len(records) < detector.min_records:
            skipped_reason = "insufficient_records"

        if skipped_reason:
            detector_results.append(
                DetectorRunResult(
                    detector_id=detector.detector_id,
                    insight_type=detector.insight_type,
                    ran=False,
                    skipped_reason=skipped_reason,
                    fired=False,
                )
            )
            continue

        candidates = detector.runner(records)
        detector_results.append(
            DetectorRunResult(
                detector_id=detector.detector_id,
                insight_type=detector.insight_type,
                ran=True,
                skipped_reason=None,
                fired=bool(candidates),
                count=len(candidates),
            )
        )
        all_candidates.extend(candidates)

    return DetectorRunSummary(candidates=all_candidates, detectors=detector_results)

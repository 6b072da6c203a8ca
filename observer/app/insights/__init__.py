from .detectors import (
    DETECTOR_DEFINITIONS,
    detect_budget_overruns,
    detect_coffee_savings,
    detect_spending_spike,
    detect_subscription_price_hikes,
    run_detectors_with_summary,
)
from .schema import (
    BudgetRecord,
    DetectorRunSummary,
    InsightCandidate,
    SubscriptionRecord,
    TransactionRecord,
)

__all__ = [
    "BudgetRecord",
    "DETECTOR_DEFINITIONS",
    "DetectorRunSummary",
    "InsightCandidate",
    "SubscriptionRecord",
    "TransactionRecord",
    "detect_budget_overruns",
    "detect_coffee_savings",
    "detect_spending_spike",
    "detect_subscription_price_hikes",
    "run_detectors_with_summary",
]

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, ClassVar, Dict, List, Literal, Optional, Union

InsightType = Literal[
    "subscription_price_hike",
    "spending_spike",
    "budget_overrun",
    "savings_opportunity",
]
Severity = Literal["info", "warning", "urgent"]


# -------------------------
# Source records
# -------------------------

@dataclass(frozen=True)
class SubscriptionRecord:
    id: str
    merchant: str
    amount: float
    last_charge_amount: Optional[float] = None


@dataclass(frozen=True)
class TransactionRecord:
    id: str
    amount: float
    merchant: Optional[str]
    transaction_date: date


@dataclass(frozen=True)
class BudgetRecord:
    id: str
    category: str
    limit: Decimal
    spent: Decimal


# -------------------------
# Resolution payloads, keyed by resolution_action
# -------------------------

@dataclass(frozen=True)
class CancelSubscriptionData:
    action: ClassVar[str] = "cancel_subscription"

    id: str
    merchant: str

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ReviewTransactionsData:
    action: ClassVar[str] = "review_transactions"

    category: str = "all"
    period: str = "7_days"

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AdjustBudgetData:
    action: ClassVar[str] = "adjust_budget"

    budget_id: str
    category: str
    current_limit: float
    suggested_limit: int

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CreateSavingsGoalData:
    action: ClassVar[str] = "create_savings_goal"

    goal_name: str
    monthly_amount: int

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


ResolutionData = Union[
    CancelSubscriptionData,
    ReviewTransactionsData,
    AdjustBudgetData,
    CreateSavingsGoalData,
]


# -------------------------
# Detector output
# -------------------------

@dataclass(frozen=True)
class InsightCandidate:
    insight_type: InsightType
    severity: Severity
    title: str
    message: str
    resolution: Optional[ResolutionData] = None
    related_entity_id: Optional[str] = None
    related_entity_type: Optional[str] = None

    @property
    def resolution_action(self) -> Optional[str]:
        return self.resolution.action if self.resolution else None

    @property
    def resolution_data(self) -> Optional[Dict[str, Any]]:
        return self.resolution.as_dict() if self.resolution else None

    def to_row(self) -> Dict[str, Any]:
        """Column values for a proactive_insights row, minus ownership and timestamps."""
        return {
            "insight_type": self.insight_type,
            "severity": self.severity,
            "title": self.title,
            "message": self.message,
            "resolution_action": self.resolution_action,
            "resolution_data": self.resolution_data,
            "related_entity_id": self.related_entity_id,
            "related_entity_type": self.related_entity_type,
        }


@dataclass(frozen=True)
class DetectorRunResult:
    detector_id: str
    insight_type: str
    ran: bool
    skipped_reason: Optional[str]
    fired: bool
    count: int = 0


@dataclass(frozen=True)
class DetectorRunSummary:
    candidates: List[InsightCandidate]
    detectors: List[DetectorRunResult] = field(default_factory=list)

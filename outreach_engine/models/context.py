"""Derived customer context: behavior, risk and recommendations."""

from datetime import datetime
from enum import Enum
from typing import List

from pydantic import BaseModel, Field

from outreach_engine.models.common import ContactMethod, Priority, RiskLevel, utc_now
from outreach_engine.models.customer import ContactAttempt, Customer, PaymentRecord


class CommunicationStyle(str, Enum):
    """Tone the customer responds to."""
    FORMAL = "formal"
    DIRECT = "direct"
    DIPLOMATIC = "diplomatic"
    CASUAL = "casual"


class PatternKind(str, Enum):
    EARLY = "early"
    ONTIME = "ontime"
    LATE = "late"
    PARTIAL = "partial"


class Trend(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


class Tendency(str, Enum):
    """Escalation tendency bands."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SeasonalBehavior(str, Enum):
    BETTER = "better"
    WORSE = "worse"
    SAME = "same"


class CollectionDifficulty(str, Enum):
    EASY = "easy"
    MODERATE = "moderate"
    DIFFICULT = "difficult"
    VERY_DIFFICULT = "very_difficult"


class RecommendationType(str, Enum):
    COMMUNICATION = "communication"
    TIMING = "timing"
    ESCALATION = "escalation"
    STRATEGY = "strategy"


class PaymentPattern(BaseModel):
    pattern: PatternKind
    frequency: float = Field(..., ge=0.0, le=1.0)
    confidence: float = Field(..., ge=0.0, le=1.0)
    trend: Trend = Trend.STABLE


class HourRange(BaseModel):
    start: int = Field(..., ge=0, le=24)
    end: int = Field(..., ge=0, le=24)


class TimePreference(BaseModel):
    """Response rate for a (weekday, 4-hour slot, channel) bucket."""
    day_of_week: str
    hour_range: HourRange
    response_rate: float = Field(..., ge=0.0, le=1.0)
    channel: ContactMethod

    def covers_hour(self, hour: int) -> bool:
        return self.hour_range.start <= hour < self.hour_range.end


class SeasonalTrend(BaseModel):
    period: str
    payment_behavior: SeasonalBehavior
    risk_modifier: float


class BehaviorAnalysis(BaseModel):
    average_payment_delay: int = 0
    payment_patterns: List[PaymentPattern] = Field(default_factory=list)
    response_rate: float = 0.0
    preferred_contact_times: List[TimePreference] = Field(default_factory=list)
    communication_style: CommunicationStyle = CommunicationStyle.FORMAL
    escalation_tendency: Tendency = Tendency.LOW
    seasonal_trends: List[SeasonalTrend] = Field(default_factory=list)

    def pattern(self, kind: PatternKind):
        """Detected pattern of the given kind, or None."""
        for pattern in self.payment_patterns:
            if pattern.pattern == kind:
                return pattern
        return None


class RiskFactor(BaseModel):
    factor: str
    weight: float
    impact: str = "negative"
    value: float = Field(..., ge=0.0, le=100.0)
    description: str


class RiskPrediction(BaseModel):
    next_payment_likelihood: float
    escalation_probability: float
    collection_difficulty: CollectionDifficulty
    estimated_collection_time: int = Field(..., description="Days")


class RiskAssessment(BaseModel):
    current_risk: RiskLevel
    risk_score: int = Field(..., ge=0, le=100)
    factors: List[RiskFactor] = Field(default_factory=list)
    prediction: RiskPrediction
    mitigation: List[str] = Field(default_factory=list)


class Recommendation(BaseModel):
    type: RecommendationType
    priority: Priority
    action: str
    reason: str
    expected_outcome: str
    confidence: float = Field(..., ge=0.0, le=1.0)


class CustomerContext(BaseModel):
    """Full derived view of a customer, rebuilt as a whole."""
    customer: Customer
    payment_history: List[PaymentRecord] = Field(default_factory=list)
    communication_history: List[ContactAttempt] = Field(default_factory=list)
    behavior_analysis: BehaviorAnalysis
    risk_assessment: RiskAssessment
    recommendations: List[Recommendation] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=utc_now)

"""
Risk scoring, short-term prediction and mitigation strategies.

The payment-delay factor is weighted at 30% of the payment-history weight
and added on top of the lateness factor, and the company-profile and
external-factor weights are declared but not scored. Both are kept as-is so
scores stay comparable with historical assessments.
"""
from datetime import datetime
from typing import List, Sequence

from outreach_engine.models.common import RiskLevel
from outreach_engine.models.context import (
    BehaviorAnalysis,
    CollectionDifficulty,
    CommunicationStyle,
    RiskAssessment,
    RiskFactor,
    RiskPrediction,
    Tendency,
)
from outreach_engine.models.customer import Customer, PaymentRecord
from outreach_engine.utils.behavior_analysis import late_payment_rate, round_half_up

RISK_SCORE_WEIGHTS = {
    "payment_history": 0.4,
    "communication_response": 0.2,
    "company_profile": 0.15,
    "account_age": 0.1,
    "escalation_history": 0.1,
    "external_factors": 0.05,
}
PAYMENT_DELAY_SHARE = 0.3

ESCALATION_SCORES = {Tendency.HIGH: 80.0, Tendency.MEDIUM: 40.0, Tendency.LOW: 10.0}
ESCALATION_MULTIPLIERS = {Tendency.HIGH: 0.8, Tendency.MEDIUM: 0.4, Tendency.LOW: 0.1}

HIGH_FACTOR_VALUE = 60

LEVEL_MITIGATIONS = [
    (75, [
        "Consider immediate phone contact and payment plan options",
        "Escalate to senior collections specialist",
        "Document all communications for potential legal action",
    ]),
    (60, [
        "Increase contact frequency and use multiple channels",
        "Offer payment plan or settlement options",
    ]),
    (40, [
        "Send formal notice before escalating",
        "Use preferred communication channel and time",
    ]),
]

FACTOR_MITIGATIONS = {
    "Communication Response": [
        "Try alternative contact methods or times",
        "Consider reaching out to alternative contacts",
    ],
    "Payment History": [
        "Review account for any billing errors or disputes",
        "Offer payment plan to establish payment pattern",
    ],
    "Escalation Tendency": [
        "Use diplomatic communication style",
        "Prepare detailed account documentation",
    ],
}


def risk_level_for(score: float) -> RiskLevel:
    """Band a score; boundaries belong to the higher band."""
    if score >= 75:
        return RiskLevel.CRITICAL
    if score >= 60:
        return RiskLevel.HIGH
    if score >= 40:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def collection_difficulty_for(score: float) -> CollectionDifficulty:
    if score < 30:
        return CollectionDifficulty.EASY
    if score < 50:
        return CollectionDifficulty.MODERATE
    if score < 75:
        return CollectionDifficulty.DIFFICULT
    return CollectionDifficulty.VERY_DIFFICULT


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


class RiskScorer:
    """Combines weighted risk factors into a 0-100 assessment."""

    def __init__(self):
        self.weights = dict(RISK_SCORE_WEIGHTS)

    def factors(
        self,
        customer: Customer,
        payment_history: Sequence[PaymentRecord],
        behavior: BehaviorAnalysis,
        now: datetime,
    ) -> List[RiskFactor]:
        """Risk factors in scoring order."""
        late_rate = late_payment_rate(payment_history)
        account_age_months = (now - customer.created_at).total_seconds() / 86400 / 30
        history_weight = self.weights["payment_history"]

        return [
            RiskFactor(
                factor="Payment History",
                weight=history_weight,
                value=_clamp(late_rate * 100),
                description=f"{round_half_up(late_rate * 100)}% late payment rate",
            ),
            RiskFactor(
                factor="Communication Response",
                weight=self.weights["communication_response"],
                value=_clamp((1 - behavior.response_rate) * 100),
                description=f"{round_half_up(behavior.response_rate * 100)}% response rate",
            ),
            RiskFactor(
                factor="Payment Delays",
                weight=history_weight * PAYMENT_DELAY_SHARE,
                value=_clamp(behavior.average_payment_delay * 2),
                description=f"Average {behavior.average_payment_delay} days late",
            ),
            RiskFactor(
                factor="Escalation Tendency",
                weight=self.weights["escalation_history"],
                value=ESCALATION_SCORES[behavior.escalation_tendency],
                description=f"{behavior.escalation_tendency.value} escalation tendency",
            ),
            RiskFactor(
                factor="Account Age",
                weight=self.weights["account_age"],
                value=_clamp((12 - account_age_months) * 10),
                description=f"{round_half_up(account_age_months)} months old",
            ),
        ]

    def assess(
        self,
        customer: Customer,
        payment_history: Sequence[PaymentRecord],
        behavior: BehaviorAnalysis,
        now: datetime,
    ) -> RiskAssessment:
        """
        Score a customer.

        Args:
            customer: Customer whose account age is scored
            payment_history: Records inside the analysis window
            behavior: Behavioral analysis of the same history
            now: Reference time for account age

        Returns:
            RiskAssessment with the rounded score used for banding and prediction
        """
        factors = self.factors(customer, payment_history, behavior, now)
        raw_score = sum(f.value * f.weight for f in factors)
        score = int(_clamp(round_half_up(raw_score)))

        return RiskAssessment(
            current_risk=risk_level_for(score),
            risk_score=score,
            factors=factors,
            prediction=self.predict(score, behavior),
            mitigation=self.mitigation(score, factors, behavior),
        )

    def predict(self, score: int, behavior: BehaviorAnalysis) -> RiskPrediction:
        base_likelihood = max(0.1, 1 - score / 100)
        likelihood = min(0.95, base_likelihood + behavior.response_rate * 0.2)
        escalation = min(0.9, (score / 100) * ESCALATION_MULTIPLIERS[behavior.escalation_tendency])
        collection_time = round_half_up(behavior.average_payment_delay * (1 + score / 100) + score / 10)

        return RiskPrediction(
            next_payment_likelihood=round_half_up(likelihood * 100) / 100,
            escalation_probability=round_half_up(escalation * 100) / 100,
            collection_difficulty=collection_difficulty_for(score),
            estimated_collection_time=collection_time,
        )

    def mitigation(self, score: int, factors: Sequence[RiskFactor], behavior: BehaviorAnalysis) -> List[str]:
        """Deduplicated strategies: level first, then per factor, then contact hints."""
        strategies: List[str] = []
        for threshold, actions in LEVEL_MITIGATIONS:
            if score >= threshold:
                strategies.extend(actions)
                break

        for factor in factors:
            if factor.value > HIGH_FACTOR_VALUE:
                strategies.extend(FACTOR_MITIGATIONS.get(factor.factor, []))

        if behavior.preferred_contact_times:
            best = behavior.preferred_contact_times[0]
            strategies.append(
                f"Contact during preferred time: {best.day_of_week} "
                f"{best.hour_range.start}:00-{best.hour_range.end}:00 via {best.channel.value}"
            )

        if behavior.communication_style != CommunicationStyle.FORMAL:
            strategies.append(f"Adapt communication style to: {behavior.communication_style.value}")

        return list(dict.fromkeys(strategies))

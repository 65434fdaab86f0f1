"""
Ranked next-step recommendations from behavior and risk.
"""
from typing import List

from outreach_engine.models.common import PRIORITY_RANK, Priority, RiskLevel
from outreach_engine.models.context import (
    BehaviorAnalysis,
    PatternKind,
    Recommendation,
    RecommendationType,
    RiskAssessment,
)
from outreach_engine.utils.behavior_analysis import round_half_up

LATE_PATTERN_FREQUENCY = 0.5


def generate_recommendations(
    behavior: BehaviorAnalysis,
    risk: RiskAssessment,
    current_hour: int,
) -> List[Recommendation]:
    """
    Build recommendations ordered urgent > high > medium > low.

    Args:
        behavior: Behavioral analysis of the customer
        risk: Risk assessment of the customer
        current_hour: Hour of day (0-23) used for the timing check

    Returns:
        Recommendations; equal priorities keep generation order
    """
    recommendations: List[Recommendation] = []
    preferences = behavior.preferred_contact_times

    if preferences:
        best = preferences[0]
        recommendations.append(
            Recommendation(
                type=RecommendationType.COMMUNICATION,
                priority=Priority.HIGH if risk.current_risk == RiskLevel.HIGH else Priority.MEDIUM,
                action=f"Use {best.channel.value} communication on {best.day_of_week}",
                reason=f"Customer has {round_half_up(best.response_rate * 100)}% response rate for this channel/time",
                expected_outcome="Increased response likelihood",
                confidence=best.response_rate,
            )
        )

        if not any(p.covers_hour(current_hour) for p in preferences):
            recommendations.append(
                Recommendation(
                    type=RecommendationType.TIMING,
                    priority=Priority.MEDIUM,
                    action=f"Wait until {best.hour_range.start}:00 to contact",
                    reason="Customer responds better during specific time windows",
                    expected_outcome="Better response rate",
                    confidence=best.response_rate * 0.8,
                )
            )

    if risk.current_risk == RiskLevel.CRITICAL:
        recommendations.append(
            Recommendation(
                type=RecommendationType.ESCALATION,
                priority=Priority.URGENT,
                action="Escalate to senior collections and consider legal options",
                reason=f"Critical risk score: {risk.risk_score}",
                expected_outcome="Formal resolution process",
                confidence=0.7,
            )
        )
    elif risk.current_risk == RiskLevel.HIGH:
        recommendations.append(
            Recommendation(
                type=RecommendationType.STRATEGY,
                priority=Priority.HIGH,
                action="Offer payment plan or settlement discount",
                reason="High risk customer may benefit from flexible payment options",
                expected_outcome="Partial or full payment",
                confidence=0.6,
            )
        )

    late = behavior.pattern(PatternKind.LATE)
    if late is not None and late.frequency > LATE_PATTERN_FREQUENCY:
        recommendations.append(
            Recommendation(
                type=RecommendationType.STRATEGY,
                priority=Priority.MEDIUM,
                action="Set up automated reminders before due date",
                reason="Customer has consistent late payment pattern",
                expected_outcome="Reduced payment delays",
                confidence=late.confidence * 0.7,
            )
        )

    # sorted() is stable, so ties keep the order above
    return sorted(recommendations, key=lambda r: PRIORITY_RANK[r.priority], reverse=True)

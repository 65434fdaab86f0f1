"""
Context-driven prioritization of new outreach tasks.
"""
from typing import Any, Dict, Optional

from outreach_engine.models.common import PRIORITY_RANK, Priority, RiskLevel
from outreach_engine.models.context import CustomerContext
from outreach_engine.models.task import TaskSubmission

RISK_PRIORITY = {
    RiskLevel.CRITICAL: Priority.URGENT,
    RiskLevel.HIGH: Priority.HIGH,
    RiskLevel.MEDIUM: Priority.MEDIUM,
    RiskLevel.LOW: Priority.LOW,
}


def priority_for_risk(level: RiskLevel) -> Priority:
    return RISK_PRIORITY[level]


def context_payload(context: CustomerContext) -> Dict[str, Any]:
    """Summary of the customer context carried on a task for its executor."""
    behavior = context.behavior_analysis
    risk = context.risk_assessment
    best_time = behavior.preferred_contact_times[0] if behavior.preferred_contact_times else None
    top = context.recommendations[0] if context.recommendations else None

    return {
        "risk_score": risk.risk_score,
        "risk_level": risk.current_risk.value,
        "preferred_channel": best_time.channel.value if best_time else None,
        "preferred_time": (
            {
                "day_of_week": best_time.day_of_week,
                "start_hour": best_time.hour_range.start,
                "end_hour": best_time.hour_range.end,
            }
            if best_time
            else None
        ),
        "communication_style": behavior.communication_style.value,
        "top_recommendation": top.action if top else None,
    }


def prioritize_submission(submission: TaskSubmission, context: Optional[CustomerContext]) -> TaskSubmission:
    """
    Apply customer risk to a task submission.

    Risk can raise the submitted priority but never lowers it. The context
    summary is merged under ``customer_context``; caller-supplied context keys
    are kept. Without a context the submission is returned unchanged.
    """
    if context is None:
        return submission

    priority = max(
        submission.priority,
        priority_for_risk(context.risk_assessment.current_risk),
        key=PRIORITY_RANK.__getitem__,
    )
    return submission.model_copy(
        update={
            "priority": priority,
            "context": {**submission.context, "customer_context": context_payload(context)},
        }
    )

"""
Behavioral analysis over a customer's payment and communication history.
"""
import math
from collections import OrderedDict
from typing import Dict, List, Sequence

from outreach_engine.models.context import (
    BehaviorAnalysis,
    CommunicationStyle,
    HourRange,
    PatternKind,
    PaymentPattern,
    SeasonalBehavior,
    SeasonalTrend,
    Tendency,
    TimePreference,
    Trend,
)
from outreach_engine.models.customer import ContactAttempt, PaymentRecord, PaymentStatus

ONTIME_GRACE_DAYS = 3
MIN_RECORDS_FOR_TREND = 6
MIN_ATTEMPTS_PER_TIME_SLOT = 2
MAX_TIME_PREFERENCES = 5
MIN_RECORDS_PER_SEASON = 3
SLOT_HOURS = 4

DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

# Frequency threshold and confidence multiplier per pattern
PATTERN_RULES = OrderedDict([
    (PatternKind.EARLY, (0.3, 2.0)),
    (PatternKind.ONTIME, (0.2, 1.5)),
    (PatternKind.LATE, (0.2, 1.5)),
    (PatternKind.PARTIAL, (0.1, 3.0)),
])

SEASONS = {
    12: "Winter", 1: "Winter", 2: "Winter",
    3: "Spring", 4: "Spring", 5: "Spring",
    6: "Summer", 7: "Summer", 8: "Summer",
    9: "Fall", 10: "Fall", 11: "Fall",
}

FORMAL_MARKERS = ("dear", "sincerely", "regards")
POLITE_MARKERS = ("please", "thank you")
CASUAL_MARKERS = ("yeah", "ok", "sure")
DECISIVE_MARKERS = ("yes", "no", "will pay")
ESCALATION_MARKERS = ("manager", "lawyer", "dispute")


def _matches_pattern(record: PaymentRecord, kind: PatternKind) -> bool:
    """Whether a record counts toward a pattern's frequency."""
    days = record.days_late()
    if kind == PatternKind.EARLY:
        return days is not None and days < 0
    if kind == PatternKind.ONTIME:
        return days is not None and 0 <= days <= ONTIME_GRACE_DAYS
    if kind == PatternKind.LATE:
        if days is None:
            return record.status == PaymentStatus.OVERDUE
        return days > ONTIME_GRACE_DAYS
    return record.status == PaymentStatus.PARTIAL


def _trend_score(record: PaymentRecord, kind: PatternKind) -> int:
    """Per-record score used to compare recent and older halves of the history."""
    days = record.days_late()
    if days is None:
        return 1 if kind == PatternKind.LATE else 0
    if kind == PatternKind.EARLY:
        return 1 if days < 0 else 0
    if kind == PatternKind.ONTIME:
        return 1 if 0 <= days <= ONTIME_GRACE_DAYS else 0
    if kind == PatternKind.LATE:
        return 1 if days > ONTIME_GRACE_DAYS else 0
    return 1 if record.status == PaymentStatus.PARTIAL else 0


class BehaviorAnalyzer:
    """Derives payment habits, responsiveness and tone from history."""

    def __init__(self, min_data_points: int = 3):
        self.min_data_points = min_data_points

    def analyze(
        self,
        payment_history: Sequence[PaymentRecord],
        communication_history: Sequence[ContactAttempt],
    ) -> BehaviorAnalysis:
        return BehaviorAnalysis(
            average_payment_delay=self.average_payment_delay(payment_history),
            payment_patterns=self.payment_patterns(payment_history),
            response_rate=self.response_rate(communication_history),
            preferred_contact_times=self.preferred_contact_times(communication_history),
            communication_style=self.communication_style(communication_history),
            escalation_tendency=self.escalation_tendency(communication_history),
            seasonal_trends=self.seasonal_trends(payment_history),
        )

    def average_payment_delay(self, payment_history: Sequence[PaymentRecord]) -> int:
        """Mean days late over paid records, rounded; early payments count as zero."""
        paid = [r for r in payment_history if r.paid_date is not None and r.status == PaymentStatus.PAID]
        if not paid:
            return 0
        total = sum(max(0.0, r.days_late()) for r in paid)
        return round_half_up(total / len(paid))

    def payment_patterns(self, payment_history: Sequence[PaymentRecord]) -> List[PaymentPattern]:
        if len(payment_history) < self.min_data_points:
            return []

        ordered = sorted(payment_history, key=lambda r: r.due_date, reverse=True)
        patterns = []
        for kind, (threshold, multiplier) in PATTERN_RULES.items():
            frequency = sum(1 for r in ordered if _matches_pattern(r, kind)) / len(ordered)
            if frequency > threshold:
                patterns.append(
                    PaymentPattern(
                        pattern=kind,
                        frequency=frequency,
                        confidence=min(frequency * multiplier, 1.0),
                        trend=self.trend(ordered, kind),
                    )
                )
        return patterns

    def trend(self, ordered_history: Sequence[PaymentRecord], kind: PatternKind) -> Trend:
        """
        Compare the recent half with the older half of a newest-first history.

        The recent half is the first floor(n/2) records.
        """
        if len(ordered_history) < MIN_RECORDS_FOR_TREND:
            return Trend.STABLE

        half = len(ordered_history) // 2
        recent = ordered_history[:half]
        older = ordered_history[half:]
        recent_avg = sum(_trend_score(r, kind) for r in recent) / len(recent)
        older_avg = sum(_trend_score(r, kind) for r in older) / len(older)

        if recent_avg > older_avg * 1.2:
            return Trend.IMPROVING
        if recent_avg < older_avg * 0.8:
            return Trend.DECLINING
        return Trend.STABLE

    def response_rate(self, communication_history: Sequence[ContactAttempt]) -> float:
        if not communication_history:
            return 0.0
        return sum(1 for a in communication_history if a.responded) / len(communication_history)

    def preferred_contact_times(self, communication_history: Sequence[ContactAttempt]) -> List[TimePreference]:
        """Top weekday/4-hour/channel buckets by response rate (at least two attempts each)."""
        buckets: Dict[tuple, List[int]] = OrderedDict()
        for attempt in communication_history:
            start = (attempt.timestamp.hour // SLOT_HOURS) * SLOT_HOURS
            key = (DAY_NAMES[attempt.timestamp.weekday()], start, attempt.channel)
            counts = buckets.setdefault(key, [0, 0])
            counts[0] += 1
            if attempt.responded:
                counts[1] += 1

        preferences = [
            TimePreference(
                day_of_week=day,
                hour_range=HourRange(start=start, end=start + SLOT_HOURS),
                response_rate=responses / attempts,
                channel=channel,
            )
            for (day, start, channel), (attempts, responses) in buckets.items()
            if attempts >= MIN_ATTEMPTS_PER_TIME_SLOT
        ]
        preferences.sort(key=lambda p: p.response_rate, reverse=True)
        return preferences[:MAX_TIME_PREFERENCES]

    def communication_style(self, communication_history: Sequence[ContactAttempt]) -> CommunicationStyle:
        responses = [a.response.lower() for a in communication_history if a.response and len(a.response) > 10]
        if not responses:
            return CommunicationStyle.FORMAL

        formality = 0
        directness = 0
        for text in responses:
            if any(marker in text for marker in FORMAL_MARKERS):
                formality += 2
            if any(marker in text for marker in POLITE_MARKERS):
                formality += 1
            if any(marker in text for marker in CASUAL_MARKERS):
                formality -= 1

            if len(text) < 50:
                directness += 1
            if any(marker in text for marker in DECISIVE_MARKERS):
                directness += 1

        avg_formality = formality / len(responses)
        avg_directness = directness / len(responses)

        if avg_formality >= 1:
            return CommunicationStyle.FORMAL
        if avg_directness >= 1:
            return CommunicationStyle.DIRECT
        if avg_formality >= 0:
            return CommunicationStyle.DIPLOMATIC
        return CommunicationStyle.CASUAL

    def escalation_tendency(self, communication_history: Sequence[ContactAttempt]) -> Tendency:
        if not communication_history:
            return Tendency.LOW

        def escalated(attempt: ContactAttempt) -> bool:
            if attempt.metadata.get("escalated") is True:
                return True
            text = (attempt.response or "").lower()
            return any(marker in text for marker in ESCALATION_MARKERS)

        rate = sum(1 for a in communication_history if escalated(a)) / len(communication_history)
        if rate >= 0.3:
            return Tendency.HIGH
        if rate >= 0.1:
            return Tendency.MEDIUM
        return Tendency.LOW

    def seasonal_trends(self, payment_history: Sequence[PaymentRecord]) -> List[SeasonalTrend]:
        if not payment_history:
            return []

        seasons: Dict[str, List[int]] = OrderedDict()
        for record in payment_history:
            counts = seasons.setdefault(SEASONS[record.due_date.month], [0, 0])
            counts[0] += 1
            if record.is_late:
                counts[1] += 1

        overall = late_payment_rate(payment_history)
        trends = []
        for season, (payments, late) in seasons.items():
            if payments < MIN_RECORDS_PER_SEASON:
                continue
            rate = late / payments
            behavior, modifier = SeasonalBehavior.SAME, 0.0
            if rate < overall * 0.8:
                behavior, modifier = SeasonalBehavior.BETTER, -0.1
            elif rate > overall * 1.2:
                behavior, modifier = SeasonalBehavior.WORSE, 0.1
            trends.append(SeasonalTrend(period=season, payment_behavior=behavior, risk_modifier=modifier))
        return trends


def late_payment_rate(payment_history: Sequence[PaymentRecord]) -> float:
    """Share of records unpaid or paid after the due date."""
    return sum(1 for r in payment_history if r.is_late) / max(len(payment_history), 1)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves toward positive infinity."""
    return math.floor(value + 0.5)

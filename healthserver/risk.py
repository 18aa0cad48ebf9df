from typing import Iterable

from .config import RISK_NORMALIZATION_CEILING
from .models import AlertRecord, RiskScore, Severity

SEVERITY_WEIGHTS = {
    Severity.CRITICAL: 10,
    Severity.HIGH: 7,
    Severity.MEDIUM: 4,
    Severity.LOW: 1,
}


def risk_level(normalized_score) -> Severity:
    if normalized_score >= 80:
        return Severity.CRITICAL
    if normalized_score >= 60:
        return Severity.HIGH
    if normalized_score >= 30:
        return Severity.MEDIUM
    return Severity.LOW


def compute_risk_score(alerts: Iterable[AlertRecord], ceiling=RISK_NORMALIZATION_CEILING) -> RiskScore:
    """
    Sums severity weights over the given open alerts and normalizes the
    total against ``ceiling``, clamped to 100.
    """
    alerts = list(alerts)
    raw_score = sum(SEVERITY_WEIGHTS.get(alert.severity, 0) for alert in alerts)
    normalized = min(100.0, raw_score / ceiling * 100)
    return RiskScore(
        score=round(normalized),
        level=risk_level(normalized),
        alert_count=len(alerts),
        raw_score=raw_score,
    )


def machine_risk_score(store, machine_id, ceiling=RISK_NORMALIZATION_CEILING) -> RiskScore:
    return compute_risk_score(store.list_open_alerts(machine_id), ceiling=ceiling)

import logging
from datetime import datetime, timedelta

from .config import DAYS_BEHIND_THRESHOLD, SLEEP_TIMEOUT_LIMIT_MINUTES
from .database import utcnow
from .errors import PersistenceError
from .models import AlertSummary, AlertType, Severity, SnapshotIn

logger = logging.getLogger(__name__)

CREATED = "created"
EXISTS = "exists"
RESOLVED = "resolved"
CLEAR = "clear"
ERROR = "error"


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _unknown_reason(payload) -> str:
    if payload.get("error"):
        return f" (check failed: {payload.get('message', 'unknown error')})"
    return ""


def with_days_behind(payload, reported_at) -> dict:
    """
    Fills in ``daysBehind`` from a ``lastInstalled`` date (YYYY-MM-DD),
    counted up to the snapshot timestamp. An explicit numeric
    ``daysBehind`` is left as sent.
    """
    last_installed = payload.get("lastInstalled")
    if _is_number(payload.get("daysBehind")) or not isinstance(last_installed, str):
        return payload
    try:
        installed_on = datetime.strptime(last_installed, "%Y-%m-%d").date()
    except ValueError:
        logger.debug("Ignoring unparsable lastInstalled value: %s", last_installed)
        return payload
    return {**payload, "daysBehind": max(0, (reported_at.date() - installed_on).days)}


class AlertEngine:
    """
    Turns an incoming snapshot into alert create/resolve operations.

    Each category rule runs on its own: a store failure inside one rule is
    logged and does not stop the others. A check that reported an error is
    treated as non-compliant.
    """

    def __init__(self, store, days_behind_threshold=DAYS_BEHIND_THRESHOLD,
                 sleep_timeout_limit=SLEEP_TIMEOUT_LIMIT_MINUTES):
        self.store = store
        self.days_behind_threshold = days_behind_threshold
        self.sleep_timeout_limit = sleep_timeout_limit

    def analyze(self, snapshot: SnapshotIn) -> dict:
        """
        Applies every rule to the snapshot and returns the outcome per
        alert type: created, exists, resolved, clear or error.
        """
        rules = [
            (self.check_disk_encryption, snapshot.disk_encryption, [AlertType.DISK_ENCRYPTION]),
            (self.check_os_updates, with_days_behind(snapshot.os_updates or {}, snapshot.timestamp),
             [AlertType.OS_UPDATES]),
            (self.check_antivirus, snapshot.antivirus, [
                AlertType.ANTIVIRUS_MISSING, AlertType.ANTIVIRUS_DISABLED, AlertType.ANTIVIRUS_OUTDATED,
            ]),
            (self.check_sleep_settings, snapshot.sleep_settings, [AlertType.SLEEP_TIMEOUT]),
        ]
        outcomes = {}
        for rule, payload, alert_types in rules:
            results = {}
            try:
                rule(snapshot.machine_id, payload or {}, results)
            except PersistenceError as e:
                logger.error("Alert rule %s failed for machine %s: %s", rule.__name__, snapshot.machine_id, e)
                for alert_type in alert_types:
                    results.setdefault(alert_type.value, ERROR)
            outcomes.update(results)
        return outcomes

    def check_disk_encryption(self, machine_id, payload, results):
        alert_type = AlertType.DISK_ENCRYPTION
        if payload.get("encrypted") is True:
            results[alert_type.value] = self.resolve_alert_by_type(machine_id, alert_type)
            return
        results[alert_type.value] = self.create_alert_if_not_exists(
            machine_id, alert_type, Severity.HIGH,
            "Disk Encryption Disabled",
            f"Machine {machine_id} does not have disk encryption enabled{_unknown_reason(payload)}. "
            "This poses a significant security risk."
        )

    def check_os_updates(self, machine_id, payload, results):
        alert_type = AlertType.OS_UPDATES
        if payload.get("upToDate") is True:
            results[alert_type.value] = self.resolve_alert_by_type(machine_id, alert_type)
            return

        days_behind = payload.get("daysBehind")
        if _is_number(days_behind) and days_behind > self.days_behind_threshold:
            severity = Severity.HIGH
        else:
            severity = Severity.MEDIUM
        if _is_number(days_behind) and days_behind > 0:
            message = f"Machine {machine_id} is {days_behind} days behind on OS updates."
        else:
            message = f"Machine {machine_id} has pending OS updates{_unknown_reason(payload)}."
        results[alert_type.value] = self.create_alert_if_not_exists(
            machine_id, alert_type, severity, "OS Updates Required", message
        )

    def check_antivirus(self, machine_id, payload, results):
        # Ordered: missing, then disabled, then definitions
        if payload.get("installed") is not True:
            results[AlertType.ANTIVIRUS_MISSING.value] = self.create_alert_if_not_exists(
                machine_id, AlertType.ANTIVIRUS_MISSING, Severity.HIGH,
                "Antivirus Not Installed",
                f"Machine {machine_id} does not have antivirus software installed{_unknown_reason(payload)}."
            )
            return

        if payload.get("enabled") is not True:
            results[AlertType.ANTIVIRUS_DISABLED.value] = self.create_alert_if_not_exists(
                machine_id, AlertType.ANTIVIRUS_DISABLED, Severity.MEDIUM,
                "Antivirus Disabled",
                f"Machine {machine_id} has antivirus software installed but it is not enabled."
            )
            results[AlertType.ANTIVIRUS_MISSING.value] = self.resolve_alert_by_type(
                machine_id, AlertType.ANTIVIRUS_MISSING
            )
            return

        results[AlertType.ANTIVIRUS_MISSING.value] = self.resolve_alert_by_type(machine_id, AlertType.ANTIVIRUS_MISSING)
        results[AlertType.ANTIVIRUS_DISABLED.value] = self.resolve_alert_by_type(machine_id, AlertType.ANTIVIRUS_DISABLED)

        if payload.get("definitionsOutdated"):
            results[AlertType.ANTIVIRUS_OUTDATED.value] = self.create_alert_if_not_exists(
                machine_id, AlertType.ANTIVIRUS_OUTDATED, Severity.MEDIUM,
                "Antivirus Definitions Outdated",
                f"Machine {machine_id} has outdated antivirus definitions."
            )
        else:
            results[AlertType.ANTIVIRUS_OUTDATED.value] = self.resolve_alert_by_type(
                machine_id, AlertType.ANTIVIRUS_OUTDATED
            )

    def check_sleep_settings(self, machine_id, payload, results):
        alert_type = AlertType.SLEEP_TIMEOUT
        timeout = payload.get("sleepTimeout")
        if _is_number(timeout) and timeout <= self.sleep_timeout_limit:
            results[alert_type.value] = self.resolve_alert_by_type(machine_id, alert_type)
            return
        shown = timeout if _is_number(timeout) else "unknown"
        results[alert_type.value] = self.create_alert_if_not_exists(
            machine_id, alert_type, Severity.LOW,
            "Sleep Timeout Too Long",
            f"Machine {machine_id} has sleep timeout set to {shown} minutes{_unknown_reason(payload)}. "
            f"Recommended: <={self.sleep_timeout_limit} minutes."
        )

    def create_alert_if_not_exists(self, machine_id, alert_type, severity, title, message) -> str:
        alert = self.store.insert_alert(machine_id, alert_type.value, severity.value, title, message)
        if alert is None:
            return EXISTS
        logger.info("Created %s alert for %s: %s", severity.value, machine_id, title)
        return CREATED

    def resolve_alert_by_type(self, machine_id, alert_type) -> str:
        count = self.store.resolve_open_alerts(machine_id, alert_type.value)
        if count:
            logger.info("Resolved %s alerts for machine %s", alert_type.value, machine_id)
            return RESOLVED
        return CLEAR

    def get_alert_summary(self) -> AlertSummary:
        return self.store.alert_summary(since=utcnow() - timedelta(hours=24))

import logging

import pydantic

from .errors import ValidationError
from .models import SnapshotIn

logger = logging.getLogger(__name__)


def parse_snapshot(data) -> SnapshotIn:
    """
    Validates a submitted snapshot. Raises ValidationError listing every
    problem when the payload is malformed.
    """
    if not isinstance(data, dict):
        raise ValidationError("Snapshot must be a JSON object")
    try:
        return SnapshotIn.model_validate(data)
    except pydantic.ValidationError as e:
        errors = [
            {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
            for error in e.errors()
        ]
        raise ValidationError("Validation failed", errors) from e


def submit_snapshot(store, engine, data) -> dict:
    """
    Accepts one transmitted snapshot: records the machine and the report,
    then runs the alert rules against it.
    """
    snapshot = parse_snapshot(data)
    store.upsert_machine(snapshot)
    report_id = store.insert_report(snapshot)
    outcomes = engine.analyze(snapshot)
    logger.info("Accepted snapshot %s from machine %s", report_id, snapshot.machine_id)
    return {"reportId": report_id, "alerts": outcomes}

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    # Wire format is camelCase, Python attributes are snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AlertType(str, Enum):
    DISK_ENCRYPTION = "disk_encryption"
    OS_UPDATES = "os_updates"
    ANTIVIRUS_MISSING = "antivirus_missing"
    ANTIVIRUS_DISABLED = "antivirus_disabled"
    ANTIVIRUS_OUTDATED = "antivirus_outdated"
    SLEEP_TIMEOUT = "sleep_timeout"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class OsInfo(ApiModel):
    type: Optional[str] = None
    release: Optional[str] = None
    arch: Optional[str] = None
    uptime: Optional[float] = None


class SystemInfo(ApiModel):
    total_memory: Optional[int] = None
    free_memory: Optional[int] = None
    cpus: Optional[int] = None
    load_average: List[float] = []


class SnapshotIn(ApiModel):
    machine_id: str = Field(min_length=1)
    platform: str = Field(min_length=1)
    hostname: str = Field(min_length=1)
    timestamp: datetime
    os_info: OsInfo
    disk_encryption: Dict[str, Any]
    os_updates: Dict[str, Any]
    antivirus: Dict[str, Any]
    sleep_settings: Dict[str, Any]
    system_info: Optional[SystemInfo] = None


class Machine(ApiModel):
    machine_id: str
    hostname: Optional[str] = None
    platform: Optional[str] = None
    os_info: Optional[Dict[str, Any]] = None
    last_seen: Optional[datetime] = None
    is_active: bool = True


class Report(ApiModel):
    id: int
    machine_id: str
    timestamp: datetime
    received_at: datetime
    payload: Dict[str, Any]


class AlertRecord(ApiModel):
    id: int
    machine_id: str
    alert_type: AlertType
    severity: Severity
    title: str
    message: str
    is_resolved: bool = False
    created_at: datetime
    resolved_at: Optional[datetime] = None


class AlertSummary(ApiModel):
    total_alerts: int = 0
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    last_24h: int = 0


class RiskScore(ApiModel):
    score: int
    level: Severity
    alert_count: int
    raw_score: int


class MachineDetail(Machine):
    latest_report: Optional[Report] = None
    recent_alerts: List[AlertRecord] = []

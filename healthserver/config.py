import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./health.db")
API_TOKEN = os.getenv("API_TOKEN")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

ALERT_RETENTION_DAYS = int(os.getenv("ALERT_RETENTION_DAYS", "30"))
# Updates further behind than this raise a high severity alert
DAYS_BEHIND_THRESHOLD = int(os.getenv("DAYS_BEHIND_THRESHOLD", "30"))
SLEEP_TIMEOUT_LIMIT_MINUTES = int(os.getenv("SLEEP_TIMEOUT_LIMIT_MINUTES", "10"))
# Raw risk score that maps to 100
RISK_NORMALIZATION_CEILING = float(os.getenv("RISK_NORMALIZATION_CEILING", "50"))


def database_path(url=DATABASE_URL) -> str:
    return url.replace("sqlite:///", "")

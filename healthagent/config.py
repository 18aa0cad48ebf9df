import os
from dotenv import load_dotenv

load_dotenv()

API_URL = os.getenv("API_URL", "http://localhost:8000")
API_TOKEN = os.getenv("API_TOKEN", "")
POLL_INTERVAL_MINUTES = int(os.getenv("POLL_INTERVAL_MINUTES", "30"))
HEARTBEAT_HOURS = int(os.getenv("HEARTBEAT_HOURS", "24"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

MIN_INTERVAL_MINUTES = 5
MAX_INTERVAL_MINUTES = 1440


def validate_config(api_url=API_URL, api_token=API_TOKEN, interval=POLL_INTERVAL_MINUTES) -> list:
    """
    Returns a list of human readable problems with the agent settings.
    An empty list means the settings are usable.
    """
    errors = []
    if not api_url or not isinstance(api_url, str) or not api_url.startswith(("http://", "https://")):
        errors.append("API URL is required and must be a valid URL")
    # The token is optional
    if api_token is not None and not isinstance(api_token, str):
        errors.append("API token must be a string")
    if interval < MIN_INTERVAL_MINUTES or interval > MAX_INTERVAL_MINUTES:
        errors.append(f"Check interval must be between {MIN_INTERVAL_MINUTES} and {MAX_INTERVAL_MINUTES} minutes")
    return errors

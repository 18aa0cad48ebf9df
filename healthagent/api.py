import logging

import requests

from . import __version__
from .errors import TransmissionError

logger = logging.getLogger(__name__)


class ApiClient:
    """
    Thin wrapper around the server's ingestion API.
    """

    def __init__(self, api_url, api_token, timeout=30):
        self.timeout = timeout
        self.update_config(api_url, api_token)

    def update_config(self, api_url, api_token):
        self.api_url = api_url.rstrip("/")
        self.api_token = api_token
        self.session = requests.Session()
        self.session.headers.update({
            "Content-Type": "application/json",
            "User-Agent": f"healthagent/{__version__}",
        })
        if api_token:
            self.session.headers["Authorization"] = f"Bearer {api_token}"

    def send_system_data(self, snapshot: dict) -> dict:
        """
        Posts a snapshot to the server. Raises TransmissionError on any
        network or HTTP failure.
        """
        try:
            response = self.session.post(f"{self.api_url}/api/machines", json=snapshot, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            detail = "Unknown error"
            try:
                body = e.response.json()
                if isinstance(body, dict):
                    detail = body.get("detail", detail)
            except ValueError:
                pass
            raise TransmissionError(f"Server responded with {e.response.status_code}: {detail}") from e
        except requests.exceptions.RequestException as e:
            raise TransmissionError(f"Unable to connect to server at {self.api_url}: {e}") from e

        logger.info("Snapshot sent to API. Status Code: %s", response.status_code)
        return response.json()

    def test_connection(self) -> dict:
        try:
            response = self.session.get(f"{self.api_url}/health", timeout=self.timeout)
            response.raise_for_status()
            return {"success": True, "data": response.json()}
        except (requests.exceptions.RequestException, ValueError) as e:
            return {"success": False, "error": str(e)}

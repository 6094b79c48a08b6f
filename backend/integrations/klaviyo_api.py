"""
Klaviyo List Subscription Client
Pushes one captured email onto a creator's list. Single attempt, hard timeout.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

BASE_URL = "https://a.klaviyo.com/api"
SUBSCRIBE_PATH = "/profile-subscription-bulk-create-jobs/"
JSON_API = "application/vnd.api+json"


class ListSubscriptionError(Exception):
    """Provider call failed, timed out, or answered non-2xx"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


def build_subscription_payload(email: str, list_id: str, first_name: str = "", last_name: str = "") -> Dict[str, Any]:
    # consented_at must be in the past for a historical import
    consented_at = (datetime.now(timezone.utc) - timedelta(seconds=5)).isoformat().replace("+00:00", "Z")
    attributes: Dict[str, Any] = {"email": email}
    if first_name:
        attributes["first_name"] = first_name
    if last_name:
        attributes["last_name"] = last_name
    attributes["subscriptions"] = {
        "email": {"marketing": {"consent": "SUBSCRIBED", "consented_at": consented_at}},
    }
    return {
        "data": {
            "type": "profile-subscription-bulk-create-job",
            "attributes": {
                "list_id": list_id,
                "profiles": {"data": [{"type": "profile", "attributes": attributes}]},
                "historical_import": True,
            },
        }
    }


class KlaviyoClient:
    def __init__(self, api_key: str, revision: str = "2024-10-15", timeout: float = 7.0, session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.revision = revision
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Klaviyo-API-Key {self.api_key}",
            "accept": JSON_API,
            "content-type": JSON_API,
            "revision": self.revision,
        }

    def subscribe(self, email: str, list_id: str, first_name: str = "", last_name: str = "") -> int:
        """
        Subscribe email to list_id. Returns the provider status code.

        Raises:
            ListSubscriptionError: not configured, timeout, network error or non-2xx
        """
        if not self.configured:
            raise ListSubscriptionError("Klaviyo API key is not set")

        payload = build_subscription_payload(email, list_id, first_name, last_name)
        try:
            res = self.session.post(
                f"{BASE_URL}{SUBSCRIBE_PATH}",
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.Timeout:
            raise ListSubscriptionError(f"Klaviyo timed out after {self.timeout}s")
        except requests.RequestException as e:
            raise ListSubscriptionError(f"Klaviyo request failed: {e}")

        if not 200 <= res.status_code < 300:
            raise ListSubscriptionError(
                f"Klaviyo error ({res.status_code}): {res.text[:240]}",
                status=res.status_code,
            )
        return res.status_code

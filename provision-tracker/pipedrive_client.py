import logging
from typing import Dict, List, Optional

import httpx
import requests

from config import Settings

logger = logging.getLogger(__name__)


def _handle_request_exception(e: requests.exceptions.RequestException, context: str):
    error_message = f"Error during '{context}': {e}"
    if e.response is not None:
        error_message += f" | Status: {e.response.status_code} | Response: {e.response.text}"
    logger.error(error_message)
    return None


def _handle_async_request_exception(e: httpx.HTTPError, context: str):
    error_message = f"Error during async '{context}': {e}"
    response = getattr(e, "response", None)
    if response is not None:
        error_message += f" | Status: {response.status_code} | Response: {response.text}"
    logger.error(error_message)
    return None


class PipedriveClient:
    """Read-only feed of Pipedrive deals. Returns raw deal dicts; see DealRecord.from_pipedrive."""

    def __init__(self, settings: Settings, timeout: float = 30.0):
        if not settings.pipedrive_api_token:
            raise ValueError("PIPEDRIVE_API_TOKEN is not configured")
        self.api_token = settings.pipedrive_api_token
        self.v1_base = f"{settings.pipedrive_api_host.rstrip('/')}/v1"
        self.timeout = timeout

    # --- Synchronous Functions ---

    def get_deal(self, deal_id: int) -> Optional[Dict]:
        url = f"{self.v1_base}/deals/{deal_id}"
        params = {"api_token": self.api_token}
        try:
            response = requests.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json().get("data", None)
        except requests.exceptions.RequestException as e:
            return _handle_request_exception(e, f"get deal {deal_id}")

    # --- Asynchronous Functions ---

    async def get_deals_async(self, status: str = "won", limit: int = 500) -> List[Dict]:
        url = f"{self.v1_base}/deals"
        params = {"api_token": self.api_token, "status": status, "start": 0, "limit": limit}
        all_deals: List[Dict] = []
        try:
            async with httpx.AsyncClient(timeout=self.timeout * 2) as client:
                while True:
                    resp = await client.get(url, params=params)
                    resp.raise_for_status()
                    body = resp.json()
                    data = body.get("data") or []
                    all_deals.extend(data)
                    pagination = (body.get("additional_data") or {}).get("pagination", {})
                    if not data or not pagination.get("more_items_in_collection"):
                        break
                    params["start"] = pagination.get("next_start", params["start"] + len(data))
        except httpx.HTTPError as e:
            _handle_async_request_exception(e, f"get {status} deals")
            return []
        return all_deals

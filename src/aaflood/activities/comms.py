"""
HTTP client for the communication and payout service.

The dispatcher only needs two calls; transport details (SMS, voice, email,
wallet transfers) live behind the service.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from ..errors import DispatchError


class CommsClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
        access_token: Optional[str] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        if access_token:
            self.session.headers.update({"Authorization": f"Bearer {access_token}"})
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, config: Dict[str, Any], access_token: Optional[str] = None) -> "CommsClient":
        comms = config.get("comms", {})
        return cls(comms["base_url"], timeout=float(comms.get("timeout_seconds", 30)), access_token=access_token)

    def send_communication(self, activity_uuid: str, communication: Dict[str, Any]) -> Dict[str, Any]:
        """Queue one communication (group + channel + message) for an activity."""
        return self._post("communications/trigger", {
            "activityId": activity_uuid,
            "communication": communication,
        })

    def disburse(self, phase_uuid: str, river_basin: str, active_year: int) -> Dict[str, Any]:
        """Request the payout attached to an activated phase."""
        return self._post("payouts/disburse", {
            "phaseId": phase_uuid,
            "riverBasin": river_basin,
            "activeYear": active_year,
        })

    def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/{path}"
        try:
            resp = self.session.post(url, json=body, timeout=self.timeout)
            resp.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise DispatchError(f"POST {url} failed: {e}") from e

        try:
            return resp.json() if resp.content else {}
        except ValueError:
            return {}

"""
Common plumbing for source adapters: HTTP session, time-boxing and the
classification of upstream failures.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

from ..config import BasinSettings
from ..db.models import DataSource
from ..errors import FetchError, FetchErrorKind
from .types import FetchWindow, Reading

USER_AGENT = "aaflood-monitor/1.0"


class SourceAdapter:
    """Capability interface: ``fetch(basin, window) -> List[Reading]``."""

    data_source: DataSource

    def __init__(self, config: Optional[Dict[str, Any]] = None, session: Optional[requests.Session] = None) -> None:
        self.config = config or {}
        self.timeout = float(self.config.get("timeout_seconds", 30))
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})
        self.logger = logging.getLogger(__name__)

    def is_configured(self, basin: BasinSettings) -> bool:
        raise NotImplementedError

    def fetch(self, basin: BasinSettings, window: FetchWindow) -> List[Reading]:
        """
        Fetch readings for one basin.

        Raises:
            FetchError: the source was unreachable, timed out or answered in
                an unexpected format.
        """
        raise NotImplementedError

    # -----------------------------
    # HTTP helpers
    # -----------------------------
    def _fail(self, kind: FetchErrorKind, message: str) -> FetchError:
        return FetchError(kind, self.data_source.value, message)

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout)
        try:
            resp = self.session.request(method, url, **kwargs)
            resp.raise_for_status()
        except requests.exceptions.Timeout as e:
            raise self._fail(FetchErrorKind.TIMEOUT, f"{url}: {e}") from e
        except requests.exceptions.RequestException as e:
            # connection errors and non-2xx answers alike
            raise self._fail(FetchErrorKind.UNREACHABLE, f"{url}: {e}") from e
        return resp

    def _get_json(self, url: str, **kwargs) -> Any:
        resp = self._request("GET", url, **kwargs)
        return self._decode(resp, url)

    def _post_json(self, url: str, **kwargs) -> Any:
        resp = self._request("POST", url, **kwargs)
        return self._decode(resp, url)

    def _decode(self, resp: requests.Response, url: str) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise self._fail(FetchErrorKind.UNEXPECTED_FORMAT, f"{url}: response is not JSON") from e

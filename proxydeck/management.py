"""
HTTP client for the running sidecar.

Covers the management API (``/v0/management/...``, authenticated with the
X-Management-Key header) and the ``/v1/models`` ping used for health checks.
All calls are timeout-bounded and target ``http://localhost:<port>``.
"""

from __future__ import annotations

import http.client
import json
import logging
import time
import urllib.error
import urllib.request
from typing import Any
from urllib.parse import urlencode

from .constants import MANAGEMENT_KEY_HEADER, MANAGEMENT_TIMEOUT, SIDECAR_HOST
from .exceptions import ManagementAPIError
from .schemas import AppConfig

logger = logging.getLogger(__name__)


class SidecarClient:
    def __init__(self, port: int, management_key: str, host: str = SIDECAR_HOST):
        self.port = port
        self.management_key = management_key
        self.host = host

    @classmethod
    def from_config(cls, config: AppConfig) -> SidecarClient:
        return cls(config.port, config.management_key)

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def management_url(self, endpoint: str, params: dict[str, str] | None = None) -> str:
        url = f"{self.base_url}/v0/management/{endpoint}"
        if params:
            url += "?" + urlencode(params)
        return url

    def get_management(
        self, endpoint: str, params: dict[str, str] | None = None, timeout: float = MANAGEMENT_TIMEOUT
    ) -> Any:
        """GET a management endpoint and decode its JSON body.

        Raises ManagementAPIError on transport failure or a non-2xx reply and
        ValueError if the body is not JSON.
        """
        url = self.management_url(endpoint, params)
        body = self._get(url, {MANAGEMENT_KEY_HEADER: self.management_key}, timeout)
        return json.loads(body)

    def ping_models(self, api_key: str, timeout: float) -> tuple[int, int]:
        """GET /v1/models with a bearer token.

        Returns (HTTP status, latency in ms). Raises ManagementAPIError only for
        transport failures; non-2xx replies are reported through the status.
        """
        url = f"{self.base_url}/v1/models"
        start = time.monotonic()
        try:
            self._get(url, {"Authorization": f"Bearer {api_key}"}, timeout)
            status = 200
        except ManagementAPIError as e:
            if e.status is None:
                raise
            status = e.status
        return status, int((time.monotonic() - start) * 1000)

    def _get(self, url: str, headers: dict[str, str], timeout: float) -> bytes:
        req = urllib.request.Request(url, headers=headers, method="GET")
        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp:
                return resp.read()
        except urllib.error.HTTPError as e:
            raise ManagementAPIError(f"{url} returned HTTP {e.code}", status=e.code) from e
        except (OSError, http.client.HTTPException) as e:
            logger.debug("GET %s failed: %s", url, e)
            raise ManagementAPIError(f"Could not reach sidecar at {self.base_url}: {e}") from e

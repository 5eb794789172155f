"""
════════════════════════════════════════════════════════════════════════════════════════════════════
GATEWAYS - Outbound HTTP collaborators (historical snapshot reader, summary delivery sink)
════════════════════════════════════════════════════════════════════════════════════════════════════

All outbound HTTP from the workflow goes through these classes.

- SnapshotReader: POST {serial_number, side} → last known flattened field map.
  The endpoint may answer with a single object or a list (first element wins).
  Any failure raises SnapshotLookupError; callers decide whether to fail open.
- DeliverySink: POST of the flattened summary to the pair-class or the
  single-side-class endpoint. Returns a DeliveryResult, never raises for HTTP errors.

Testability: pass a mock `session` instead of letting the gateway create a
requests.Session.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from .errors import SnapshotLookupError

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# SNAPSHOT READER
# ═══════════════════════════════════════════════════════════════════════════════

class SnapshotReader(ABC):
    """Point-in-time view of what downstream systems know about a unit."""

    @abstractmethod
    def read(self, serial_number: str, side: str) -> Dict[str, Any]:
        ...


class HttpSnapshotReader(SnapshotReader):

    def __init__(self, url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()

    def read(self, serial_number: str, side: str) -> Dict[str, Any]:
        if not self.url:
            raise SnapshotLookupError("Snapshot reader has no endpoint configured")

        payload = {"serial_number": serial_number, "side": side}
        try:
            response = self._session.post(self.url, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise SnapshotLookupError(f"Snapshot lookup failed for {serial_number}/{side}: {exc}") from exc

        if not response.ok:
            raise SnapshotLookupError(
                f"Snapshot lookup for {serial_number}/{side} returned HTTP {response.status_code}"
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise SnapshotLookupError(f"Snapshot lookup for {serial_number}/{side} returned invalid JSON") from exc

        if isinstance(data, list):
            data = data[0] if data else {}
        if not isinstance(data, dict):
            raise SnapshotLookupError(f"Unexpected snapshot payload type: {type(data).__name__}")
        return data


# ═══════════════════════════════════════════════════════════════════════════════
# DELIVERY SINK
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class DeliveryResult:
    """Outcome of a summary delivery."""
    ok: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "status_code": self.status_code,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


class DeliverySink(ABC):

    @abstractmethod
    def deliver(self, record: Dict[str, Any], pair_operation: bool) -> DeliveryResult:
        ...


class HttpDeliverySink(DeliverySink):

    def __init__(
        self,
        pair_url: str,
        single_url: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.pair_url = pair_url
        self.single_url = single_url
        self.timeout = timeout
        self._session = session or requests.Session()

    def deliver(self, record: Dict[str, Any], pair_operation: bool) -> DeliveryResult:
        endpoint = self.pair_url if pair_operation else self.single_url
        if not endpoint:
            return DeliveryResult(ok=False, error="No delivery endpoint configured")

        started = time.monotonic()
        try:
            response = self._session.post(endpoint, json=record, timeout=self.timeout)
        except requests.RequestException as exc:
            return DeliveryResult(
                ok=False,
                error=str(exc),
                duration_ms=int((time.monotonic() - started) * 1000),
            )

        duration_ms = int((time.monotonic() - started) * 1000)
        if not response.ok:
            detail = response.text
            try:
                body = response.json()
                if isinstance(body, dict):
                    detail = body.get("error") or body.get("message") or detail
            except ValueError:
                pass
            return DeliveryResult(ok=False, status_code=response.status_code, error=detail, duration_ms=duration_ms)

        return DeliveryResult(ok=True, status_code=response.status_code, duration_ms=duration_ms)

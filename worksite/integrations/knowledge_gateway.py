"""
Knowledge-base sync gateway.

All outbound HTTP calls that push compiled content to the external
knowledge-base service go through this class. Direct `requests` calls in
services or blueprints are FORBIDDEN.

  - API key injected as the X-Api-Key header
  - Retry: max 2 attempts, exponential backoff (1 s → 4 s)
  - Timeout: 30 s (configurable)
  - Circuit breaker: ≥5 failures in 60 s → 30 s pause
  - Structured GatewayResult returned to the caller; never raises

Threading: circuit breaker state is an in-memory dict per gateway instance.
For multi-worker deployments each worker keeps its own breaker.

Testability: pass a mock `session` to KnowledgeGateway() in tests instead of
letting it create a real requests.Session internally.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any

import requests

logger = logging.getLogger(__name__)

# ── Circuit breaker constants ──────────────────────────────────────────────
_CB_FAILURE_THRESHOLD = 5          # failures within window before opening
_CB_WINDOW_SECONDS = 60            # failure counting window (seconds)
_CB_OPEN_DURATION_SECONDS = 30     # how long circuit stays open

# ── Retry constants ────────────────────────────────────────────────────────
_RETRY_MAX = 2
_RETRY_BACKOFF_SECONDS = [1, 4]    # sleep[0] after 1st fail, sleep[1] after 2nd

_DEFAULT_TIMEOUT = 30
_DEFAULT_BASE_URL = "https://api.heygen.com"
_UPDATE_PATH = "/v1/knowledge_base.update"


class GatewayResult:
    """Structured return value from KnowledgeGateway calls.

    Attributes:
        ok:             True if the call succeeded (HTTP 2xx + no exception).
        status_code:    HTTP status code (None if network-level failure).
        data:           Parsed JSON response body (dict or list), else None.
        error:          Human-readable error message or None.
        duration_ms:    Round-trip latency in milliseconds.
        payload_hash:   SHA-256 of the serialised request payload (hex).
    """

    def __init__(
        self,
        ok: bool,
        status_code: int | None,
        data: dict | list | None,
        error: str | None,
        duration_ms: int,
        payload_hash: str | None = None,
    ) -> None:
        self.ok = ok
        self.status_code = status_code
        self.data = data
        self.error = error
        self.duration_ms = duration_ms
        self.payload_hash = payload_hash

    def to_log_dict(self) -> dict:
        return {
            "http_status_code": self.status_code,
            "error_message": self.error,
            "duration_ms": self.duration_ms,
            "payload_hash": self.payload_hash,
            "sync_status": "success" if self.ok else "error",
        }


class KnowledgeGateway:
    """Knowledge-base content sync API gateway.

    Usage:
        gateway = KnowledgeGateway.from_config(current_app.config)
        result = gateway.push_content("kb_123", "…formatted text…")
        if not result.ok:
            ...
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        *,
        base_url: str = _DEFAULT_BASE_URL,
        api_key: str | None = None,
        timeout: int = _DEFAULT_TIMEOUT,
    ) -> None:
        # Inject custom session for testing; create real one lazily otherwise.
        self._session: requests.Session | None = session
        self.base_url = (base_url or _DEFAULT_BASE_URL).rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

        self._cb_state: dict = {"failures": [], "open_until": None}

    @classmethod
    def from_config(cls, config, session: requests.Session | None = None) -> "KnowledgeGateway":
        return cls(
            session,
            base_url=config.get("KNOWLEDGE_SYNC_URL", _DEFAULT_BASE_URL),
            api_key=config.get("KNOWLEDGE_SYNC_API_KEY"),
            timeout=int(config.get("KNOWLEDGE_SYNC_TIMEOUT", _DEFAULT_TIMEOUT)),
        )

    # ── HTTP session ─────────────────────────────────────────────────────────

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    # ── Circuit breaker ───────────────────────────────────────────────────────

    def _circuit_closed(self) -> bool:
        """Return True if the circuit allows calls; False if open (paused)."""
        state = self._cb_state
        now = datetime.now(timezone.utc)

        if state["open_until"] and now < state["open_until"]:
            logger.warning("Knowledge sync circuit open until %s", state["open_until"])
            return False

        window_start = now - timedelta(seconds=_CB_WINDOW_SECONDS)
        state["failures"] = [f for f in state["failures"] if f >= window_start]

        if len(state["failures"]) >= _CB_FAILURE_THRESHOLD:
            state["open_until"] = now + timedelta(seconds=_CB_OPEN_DURATION_SECONDS)
            logger.error(
                "Knowledge sync circuit opened: %d failures in %ds window",
                len(state["failures"]),
                _CB_WINDOW_SECONDS,
            )
            return False

        return True

    def _record_failure(self) -> None:
        self._cb_state["failures"].append(datetime.now(timezone.utc))

    def _record_success(self) -> None:
        self._cb_state["failures"].clear()
        self._cb_state["open_until"] = None

    # ── Core request dispatcher ───────────────────────────────────────────────

    def _compute_payload_hash(self, payload: dict | list | None) -> str | None:
        if payload is None:
            return None
        raw = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
        return hashlib.sha256(raw).hexdigest()

    def request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict | list | None = None,
    ) -> GatewayResult:
        """Execute an authenticated request with retries.

        1. Circuit breaker check; reject immediately if paused.
        2. Execute request; on 2xx → return success result.
        3. On failure (non-2xx or network error) record it for the breaker
           and retry up to _RETRY_MAX times with backoff.

        Returns:
            GatewayResult — always returns (never raises). Callers check .ok.
        """
        if not self.api_key:
            return GatewayResult(
                ok=False, status_code=None, data=None,
                error="Knowledge sync API key is not configured",
                duration_ms=0,
            )

        if not self._circuit_closed():
            return GatewayResult(
                ok=False, status_code=None, data=None,
                error="Circuit breaker is open — knowledge sync calls temporarily suspended",
                duration_ms=0,
            )

        url = f"{self.base_url}{path}"
        headers = {
            "X-Api-Key": self.api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        payload_hash = self._compute_payload_hash(json_body)
        last_error = "Unknown error"
        last_status: int | None = None
        started = time.perf_counter()

        for attempt in range(_RETRY_MAX + 1):  # 0, 1, 2
            try:
                t0 = time.perf_counter()
                resp = self.session.request(
                    method, url, headers=headers, json=json_body, timeout=self.timeout,
                )
                duration_ms = int((time.perf_counter() - t0) * 1000)
                last_status = resp.status_code

                if resp.ok:
                    self._record_success()
                    try:
                        data = resp.json() if resp.content else {}
                    except ValueError:
                        data = {}
                    return GatewayResult(
                        ok=True,
                        status_code=resp.status_code,
                        data=data,
                        error=None,
                        duration_ms=duration_ms,
                        payload_hash=payload_hash,
                    )

                last_error = f"HTTP {resp.status_code}: {resp.text[:500]}"
                self._record_failure()
                logger.warning(
                    "Knowledge sync request failed attempt=%d/%d status=%d url=%s",
                    attempt + 1, _RETRY_MAX + 1, resp.status_code, url,
                )

            except requests.Timeout:
                last_error = f"Request timed out after {self.timeout}s"
                self._record_failure()
                logger.warning(
                    "Knowledge sync request timed out attempt=%d/%d url=%s",
                    attempt + 1, _RETRY_MAX + 1, url,
                )

            except requests.RequestException as exc:
                last_error = str(exc)[:500]
                self._record_failure()
                logger.warning(
                    "Knowledge sync network error attempt=%d/%d url=%s error=%s",
                    attempt + 1, _RETRY_MAX + 1, url, last_error,
                )

            if attempt < _RETRY_MAX:
                sleep_s = _RETRY_BACKOFF_SECONDS[min(attempt, len(_RETRY_BACKOFF_SECONDS) - 1)]
                logger.info("Retrying knowledge sync request in %ss (attempt %d)", sleep_s, attempt + 2)
                time.sleep(sleep_s)

        return GatewayResult(
            ok=False,
            status_code=last_status,
            data=None,
            error=last_error,
            duration_ms=int((time.perf_counter() - started) * 1000),
            payload_hash=payload_hash,
        )

    # ── Operations ────────────────────────────────────────────────────────────

    def push_content(self, external_ref_id: str, content: str) -> GatewayResult:
        """Replace the content of one knowledge base.

        Endpoint: PUT /v1/knowledge_base.update
        Body:     {"knowledge_base_id": str, "content": str}
        """
        if not external_ref_id or not content:
            return GatewayResult(
                ok=False, status_code=None, data=None,
                error="external_ref_id and content are required",
                duration_ms=0,
            )
        logger.info("Pushing knowledge base %s (%d chars)", external_ref_id, len(content))
        return self.request(
            "PUT", _UPDATE_PATH,
            json_body={"knowledge_base_id": external_ref_id, "content": content},
        )

    def is_available(self) -> bool:
        """True when the gateway is configured and its circuit is closed."""
        return bool(self.api_key) and self._circuit_closed()


def get_gateway(app=None) -> KnowledgeGateway:
    """Return the gateway registered on the Flask app (created lazily)."""
    from flask import current_app

    app = app or current_app
    gateway = app.extensions.get("knowledge_gateway")
    if gateway is None:
        gateway = KnowledgeGateway.from_config(app.config)
        app.extensions["knowledge_gateway"] = gateway
    return gateway

from __future__ import annotations

import logging
import random
import time
from typing import Any, Dict, Optional

import requests

log = logging.getLogger("trendrelay.client")


class RelayHTTPError(Exception):
    """Non-retryable HTTP error returned by the relay (401, 400, ...)."""

    def __init__(self, status_code: int, body: Any):
        super().__init__(f"Relay HTTP {status_code}: {body}")
        self.status_code = status_code
        self.body = body


class RelayClient:
    """
    Thin client for the relay protocol, usable from a controller or a bot.

    Transport failures, 429 and 5xx are retried with exponential backoff.
    Other 4xx responses raise RelayHTTPError straight away.
    """

    def __init__(
        self,
        base_url: str,
        bot_key: Optional[str] = None,
        controller_key: Optional[str] = None,
        timeout: float = 15.0,
        max_retries: int = 3,
        user_agent: str = "trendrelay-client",
    ):
        self.base_url = base_url.rstrip("/")
        self.bot_key = bot_key
        self.controller_key = controller_key
        self.timeout = timeout
        self.max_retries = max_retries
        self.user_agent = user_agent

        # sync cursor (server epoch ms of the last successful poll)
        self.last_sync_ms: Optional[int] = None

    # ------------------------------------------------------------------
    # request helper
    # ------------------------------------------------------------------
    def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
    ):
        url = f"{self.base_url}{path}"
        params = {k: v for k, v in (params or {}).items() if v is not None}
        headers = {"User-Agent": self.user_agent}

        last_err: Any = None
        for attempt in range(self.max_retries + 1):
            try:
                r = requests.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers=headers,
                    timeout=self.timeout,
                )
            except (requests.Timeout, requests.ConnectionError) as e:
                last_err = e
                time.sleep(min(0.4 * (2**attempt), 8.0))
                continue

            # Rate limit
            if r.status_code == 429:
                ra = r.headers.get("Retry-After")
                sleep_s = float(ra) if ra else (0.4 * (2**attempt))
                sleep_s += random.uniform(0, 0.2)
                last_err = "HTTP 429"
                time.sleep(min(sleep_s, 10.0))
                continue

            # Server errors
            if r.status_code >= 500:
                last_err = f"HTTP {r.status_code}"
                time.sleep(min(0.4 * (2**attempt), 8.0))
                continue

            if r.status_code >= 400:
                try:
                    body = r.json()
                except ValueError:
                    body = r.text
                raise RelayHTTPError(r.status_code, body)

            return r.json() if r.content else None

        raise RuntimeError(
            f"Relay request failed after retries: {method} {path} ({last_err})"
        )

    # ------------------------------------------------------------------
    # public
    # ------------------------------------------------------------------
    def health(self) -> dict:
        return self._request("GET", "/api/health")

    def stats(self) -> dict:
        return self._request("GET", "/api/stats")

    # ------------------------------------------------------------------
    # controller
    # ------------------------------------------------------------------
    def submit_command(self, action: str, **fields: Any) -> dict:
        body: Dict[str, Any] = {"controllerkey": self.controller_key, "action": action}
        body.update({k: v for k, v in fields.items() if v is not None})
        return self._request("POST", "/api/commands", json=body)

    def set_trend(self, trend: str, account: Optional[dict] = None) -> dict:
        return self.submit_command("trend_change", trend=trend, account=account)

    def start_stop(self, active: bool, account: Optional[dict] = None) -> dict:
        return self.submit_command("start_stop", active=active, account=account)

    def force_close(self, close: bool = True, account: Optional[dict] = None) -> dict:
        return self.submit_command("force_close", forceclose=close, account=account)

    def remote_trade(self, trade_type: str) -> dict:
        return self.submit_command("remote_trade", tradeType=trade_type)

    def breakeven_close(self) -> dict:
        return self.submit_command("breakeven_close")

    def reset(self) -> dict:
        self.last_sync_ms = None
        return self._request(
            "POST", "/api/reset", json={"controllerkey": self.controller_key}
        )

    # ------------------------------------------------------------------
    # bot
    # ------------------------------------------------------------------
    def fetch_sync(self, since: Optional[int] = None) -> dict:
        return self._request(
            "GET", "/api/getcommands", params={"botkey": self.bot_key, "since": since}
        )

    def poll(self) -> dict:
        """fetch_sync from the last cursor, then advance it to serverTime."""
        data = self.fetch_sync(since=self.last_sync_ms)
        server_time = data.get("serverTime") if isinstance(data, dict) else None
        if server_time is not None:
            self.last_sync_ms = int(server_time)
        log.debug(
            "poll: %d new commands, %d remote trades",
            len(data.get("recentCommands", [])),
            len(data.get("remoteTrades", [])),
        )
        return data

    def confirm(
        self,
        command_type: str,
        status: str,
        message: Optional[str] = None,
        trade_id: Optional[str] = None,
    ) -> dict:
        body = {
            "commandType": command_type,
            "status": status,
            "message": message,
            "tradeId": trade_id,
        }
        return self._request(
            "POST", "/api/bot-confirm", params={"botkey": self.bot_key}, json=body
        )

    def verify_bot(self) -> dict:
        return self._request("POST", "/api/verify-bot", json={"botkey": self.bot_key})

    def trend_status(self) -> dict:
        return self._request(
            "GET", "/api/trend-status", params={"botkey": self.bot_key}
        )

"""
Client for the third-party SMS viewing API.

GET {url}?token=...&records=N returns
{"status": "success", "data": [{"dt", "num", "cli", "message"}, ...]}.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List

import requests


class SmsFetchError(Exception):
    """SMS API unreachable or returned an unusable payload."""


@dataclass(frozen=True)
class SmsRecord:
    dt: str
    num: str
    cli: str
    message: str

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "SmsRecord":
        return cls(
            dt=str(payload.get("dt") or ""),
            num=str(payload.get("num") or ""),
            cli=str(payload.get("cli") or ""),
            message=str(payload.get("message") or ""),
        )


class SmsApiClient:
    def __init__(self, url: str, token: str, *, timeout: float = 10) -> None:
        self._url = url
        self._token = token
        self._timeout = timeout

    def fetch_latest(self, records: int) -> List[SmsRecord]:
        """Return the most recent records in the order the API lists them.

        Raises:
            SmsFetchError: network failure, non-200 response, invalid JSON or
                a status other than "success".
        """
        params: Dict[str, Any] = {"token": self._token, "records": records}
        try:
            response = requests.get(self._url, params=params, timeout=self._timeout)
        except requests.exceptions.Timeout as exc:
            raise SmsFetchError(f"SMS API request timed out after {self._timeout}s") from exc
        except requests.exceptions.RequestException as exc:
            raise SmsFetchError(f"SMS API request failed: {exc}") from exc

        if response.status_code != 200:
            raise SmsFetchError(
                f"SMS API returned HTTP {response.status_code}: "
                f"{response.text[:200] if response.text else '(empty)'}"
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise SmsFetchError(f"Failed to parse SMS API response: {exc}") from exc

        if not isinstance(data, dict) or data.get("status") != "success":
            status = data.get("status") if isinstance(data, dict) else None
            raise SmsFetchError(f"SMS API returned status={status!r}")

        raw_records = data.get("data") or []
        if not isinstance(raw_records, list):
            raise SmsFetchError("SMS API returned a non-list data field")

        result: List[SmsRecord] = []
        for entry in raw_records:
            if not isinstance(entry, dict):
                logging.debug("Skipping malformed SMS record: %r", entry)
                continue
            result.append(SmsRecord.from_payload(entry))
        return result

"""
eNom registrar adapter.

Implements the one registrar call the renewal core needs: `Extend`. Requests go
to the reseller interface (test or live host) and come back in eNom's text
format (`key=value` lines, `;` comments). Errors are reported through
`ErrCount` / `ErrN` keys.

eNom has no idempotency keys. The key is logged with every call so a duplicate
extension can be traced during reconciliation.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Dict, Optional

import requests

from services.gateways import ExtensionResult

logger = logging.getLogger(__name__)

LIVE_HOST = "reseller.enom.com"
TEST_HOST = "resellertest.enom.com"

_DATE_RE = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})")


def parse_text_response(text: str) -> Dict[str, str]:
    """Parse eNom's `key=value` response body."""

    result: Dict[str, str] = {}
    for line in text.splitlines():
        if line.startswith(";") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        result[key.strip()] = value.strip()
    return result


def parse_expiration(value: Optional[str]) -> Optional[datetime]:
    """
    Parse eNom expiration dates such as "8/18/2026 11:59:00 PM" into UTC.
    """

    if not value:
        return None
    try:
        return datetime.strptime(value.strip(), "%m/%d/%Y %I:%M:%S %p").replace(tzinfo=timezone.utc)
    except ValueError:
        match = _DATE_RE.search(value)
        if not match:
            return None
        month, day, year = (int(g) for g in match.groups())
        return datetime(year, month, day, tzinfo=timezone.utc)


class EnomRegistrar:
    def __init__(
        self,
        uid: str,
        password: str,
        *,
        live: bool = False,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not uid or not password:
            raise RuntimeError(
                "Missing environment variable: ENOM_UID / ENOM_PW. "
                "Set both to your eNom reseller credentials."
            )
        self._uid = uid
        self._password = password
        self._host = LIVE_HOST if live else TEST_HOST
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.setdefault("User-Agent", "registrar-renewals/1.0")

    @property
    def host(self) -> str:
        return self._host

    def _request(self, command: str, **params: object) -> Dict[str, str]:
        query = {"command": command, "uid": self._uid, "pw": self._password, "ResponseType": "Text"}
        query.update(params)

        response = self._session.get(
            f"https://{self._host}/interface.asp",
            params=query,
            timeout=self._timeout,
        )
        response.raise_for_status()

        data = parse_text_response(response.text)
        err_count = int(data.get("ErrCount") or 0)
        if err_count > 0:
            errors = [data[f"Err{i}"] for i in range(1, err_count + 1) if data.get(f"Err{i}")]
            raise RuntimeError(", ".join(errors) or "Unknown eNom error")
        return data

    def extend(self, domain_ref: str, years: int, idempotency_key: str) -> ExtensionResult:
        sld, _, tld = domain_ref.partition(".")
        if not sld or not tld:
            return ExtensionResult.failure(f"Invalid domain name: {domain_ref!r}")

        logger.info("eNom Extend %s for %s year(s) [renewal %s]", domain_ref, years, idempotency_key)
        try:
            data = self._request("Extend", sld=sld, tld=tld, NumYears=years)
        except requests.RequestException as exc:
            logger.warning("eNom request failed for %s: %s", domain_ref, exc)
            return ExtensionResult.failure(f"eNom request failed: {exc}")
        except RuntimeError as exc:
            logger.warning("eNom renewal error for %s: %s", domain_ref, exc)
            return ExtensionResult.failure(str(exc))

        return ExtensionResult(
            success=True,
            new_expires_at=parse_expiration(data.get("ExpirationDate")),
            confirmation_id=data.get("OrderID"),
        )


__all__ = [
    "EnomRegistrar",
    "parse_expiration",
    "parse_text_response",
]

"""
Runtime configuration for the renewal job and admin API.

Values come from the process environment, with a project-level `.env` file loaded
first (existing environment variables win). Nothing here connects to anything.

Environment variables:
- SUPABASE_URL, SUPABASE_KEY: ledger and entitlement database
- STRIPE_SECRET_KEY, STRIPE_API_VERSION: payment gateway
- ENOM_UID, ENOM_PW, ENOM_ENV (test|live), ENOM_TIMEOUT_SECONDS: registrar
- RENEWAL_LOOKAHEAD_DAYS (30), RENEWAL_WORKERS (4), RENEWAL_LEASE_MINUTES (15)
- RENEWAL_RETRY_ATTEMPTS (3), RENEWAL_RETRY_BASE_DELAY_SECONDS (1.0),
  RENEWAL_RETRY_MAX_DELAY_SECONDS (30.0)
- RENEWAL_DEFAULT_PRICE (15.00), RENEWAL_CURRENCY (USD)
- RENEWAL_REMINDER_DAYS (comma separated, "30,14,7,3,1")
- RENEWAL_DISABLE_AUTO_RENEW_ON_DECLINE (true)
- SMTP_HOST, SMTP_PORT (587), SMTP_USER, SMTP_PASS, SMTP_FROM, SMTP_USE_TLS (true)
- SUPPORT_EMAIL: copied on captured-but-unfulfilled renewals
- LOG_LEVEL (INFO)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv

from repositories.pricing_repository import DEFAULT_RENEWAL_PRICE
from services.eligibility_scanner import DEFAULT_REMINDER_DAYS
from services.retry import RetryPolicy

ENV_PATH = Path(__file__).parent.parent / ".env"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _get(env: Mapping[str, str], name: str) -> Optional[str]:
    value = env.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _require(env: Mapping[str, str], name: str, hint: str) -> str:
    value = _get(env, name)
    if not value:
        raise RuntimeError(f"Missing environment variable: {name}. {hint}")
    return value


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = _get(env, name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise RuntimeError(f"Invalid integer for {name}: {raw!r}") from e


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = _get(env, name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise RuntimeError(f"Invalid number for {name}: {raw!r}") from e


def _bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = _get(env, name)
    if raw is None:
        return default
    lowered = raw.lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise RuntimeError(f"Invalid boolean for {name}: {raw!r}")


def _decimal(env: Mapping[str, str], name: str, default: Decimal) -> Decimal:
    raw = _get(env, name)
    if raw is None:
        return default
    try:
        return Decimal(raw)
    except InvalidOperation as e:
        raise RuntimeError(f"Invalid amount for {name}: {raw!r}") from e


def _int_tuple(env: Mapping[str, str], name: str, default: Tuple[int, ...]) -> Tuple[int, ...]:
    raw = _get(env, name)
    if raw is None:
        return tuple(default)
    try:
        return tuple(int(part) for part in raw.split(",") if part.strip())
    except ValueError as e:
        raise RuntimeError(f"Invalid list for {name}: {raw!r}") from e


@dataclass(frozen=True, slots=True)
class SmtpSettings:
    host: str
    port: int
    sender: str
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = True


@dataclass(frozen=True, slots=True)
class RenewalSettings:
    supabase_url: str
    supabase_key: str

    stripe_secret_key: Optional[str] = None
    stripe_api_version: Optional[str] = None

    enom_uid: Optional[str] = None
    enom_password: Optional[str] = None
    enom_live: bool = False
    enom_timeout_seconds: float = 30.0

    lookahead_days: int = 30
    workers: int = 4
    lease_minutes: int = 15
    retry_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 30.0
    default_price: Decimal = DEFAULT_RENEWAL_PRICE
    currency: str = "USD"
    reminder_days: Tuple[int, ...] = tuple(DEFAULT_REMINDER_DAYS)
    disable_auto_renew_on_decline: bool = True

    smtp: Optional[SmtpSettings] = None
    support_email: Optional[str] = None
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.lookahead_days < 0:
            raise RuntimeError("RENEWAL_LOOKAHEAD_DAYS must not be negative")
        if self.workers < 1:
            raise RuntimeError("RENEWAL_WORKERS must be at least 1")
        if self.lease_minutes < 1:
            raise RuntimeError("RENEWAL_LEASE_MINUTES must be at least 1")

    @property
    def lookahead(self) -> timedelta:
        return timedelta(days=self.lookahead_days)

    @property
    def lease_duration(self) -> timedelta:
        return timedelta(minutes=self.lease_minutes)

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_attempts,
            base_delay_seconds=self.retry_base_delay_seconds,
            max_delay_seconds=self.retry_max_delay_seconds,
        )

    @classmethod
    def from_env(
        cls, env: Optional[Mapping[str, str]] = None, *, dotenv_path: Optional[Path] = ENV_PATH
    ) -> "RenewalSettings":
        """
        Build settings from `env` (defaults to os.environ after loading `.env`).

        Raises RuntimeError naming the variable when a required value is missing or
        a value does not parse.
        """

        if env is None:
            if dotenv_path is not None:
                load_dotenv(dotenv_path=dotenv_path)
            env = os.environ

        smtp: Optional[SmtpSettings] = None
        smtp_host = _get(env, "SMTP_HOST")
        if smtp_host:
            smtp = SmtpSettings(
                host=smtp_host,
                port=_int(env, "SMTP_PORT", 587),
                sender=_get(env, "SMTP_FROM") or _require(env, "SMTP_USER", "Set SMTP_FROM or SMTP_USER."),
                username=_get(env, "SMTP_USER"),
                password=_get(env, "SMTP_PASS"),
                use_tls=_bool(env, "SMTP_USE_TLS", True),
            )

        enom_env = (_get(env, "ENOM_ENV") or "test").lower()
        if enom_env not in ("test", "live"):
            raise RuntimeError(f"Invalid value for ENOM_ENV: {enom_env!r} (expected 'test' or 'live')")

        return cls(
            supabase_url=_require(env, "SUPABASE_URL", "Set SUPABASE_URL to your Supabase project URL."),
            supabase_key=_require(env, "SUPABASE_KEY", "Set SUPABASE_KEY to your Supabase API key."),
            stripe_secret_key=_get(env, "STRIPE_SECRET_KEY"),
            stripe_api_version=_get(env, "STRIPE_API_VERSION"),
            enom_uid=_get(env, "ENOM_UID"),
            enom_password=_get(env, "ENOM_PW"),
            enom_live=enom_env == "live",
            enom_timeout_seconds=_float(env, "ENOM_TIMEOUT_SECONDS", 30.0),
            lookahead_days=_int(env, "RENEWAL_LOOKAHEAD_DAYS", 30),
            workers=_int(env, "RENEWAL_WORKERS", 4),
            lease_minutes=_int(env, "RENEWAL_LEASE_MINUTES", 15),
            retry_attempts=_int(env, "RENEWAL_RETRY_ATTEMPTS", 3),
            retry_base_delay_seconds=_float(env, "RENEWAL_RETRY_BASE_DELAY_SECONDS", 1.0),
            retry_max_delay_seconds=_float(env, "RENEWAL_RETRY_MAX_DELAY_SECONDS", 30.0),
            default_price=_decimal(env, "RENEWAL_DEFAULT_PRICE", DEFAULT_RENEWAL_PRICE),
            currency=(_get(env, "RENEWAL_CURRENCY") or "USD").upper(),
            reminder_days=_int_tuple(env, "RENEWAL_REMINDER_DAYS", tuple(DEFAULT_REMINDER_DAYS)),
            disable_auto_renew_on_decline=_bool(env, "RENEWAL_DISABLE_AUTO_RENEW_ON_DECLINE", True),
            smtp=smtp,
            support_email=_get(env, "SUPPORT_EMAIL"),
            log_level=(_get(env, "LOG_LEVEL") or "INFO").upper(),
        )


__all__ = [
    "ENV_PATH",
    "RenewalSettings",
    "SmtpSettings",
]

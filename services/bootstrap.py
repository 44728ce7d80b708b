"""
Wiring: turn RenewalSettings into a ready-to-run scanner and orchestrator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from repositories.base import EntitlementStore, RenewalLedger
from repositories.client import create_supabase_client
from repositories.entitlement_repository import SupabaseEntitlementRepository
from repositories.pricing_repository import SupabasePricingRepository
from repositories.renewal_ledger_repository import SupabaseRenewalLedger
from services.eligibility_scanner import EligibilityScanner
from services.enom_registrar import EnomRegistrar
from services.gateways import Notifier, PaymentGateway, Registrar
from services.notifications import LoggingNotifier, SmtpNotifier
from services.renewal_orchestrator import RenewalOrchestrator
from services.settings import RenewalSettings
from services.stripe_gateway import StripePaymentGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RenewalComponents:
    ledger: RenewalLedger
    entitlements: EntitlementStore
    notifier: Notifier
    scanner: EligibilityScanner
    orchestrator: Optional[RenewalOrchestrator]


def build_notifier(settings: RenewalSettings) -> Notifier:
    if settings.smtp is None:
        logger.info("SMTP_HOST not set; renewal notifications go to the log only")
        return LoggingNotifier()
    smtp = settings.smtp
    return SmtpNotifier(
        smtp.host,
        smtp.port,
        smtp.sender,
        username=smtp.username,
        password=smtp.password,
        use_tls=smtp.use_tls,
        support_address=settings.support_email,
    )


def build_payment_gateway(settings: RenewalSettings) -> PaymentGateway:
    return StripePaymentGateway(
        settings.stripe_secret_key or "",
        api_version=settings.stripe_api_version,
    )


def build_registrar(settings: RenewalSettings) -> Registrar:
    return EnomRegistrar(
        settings.enom_uid or "",
        settings.enom_password or "",
        live=settings.enom_live,
        timeout=settings.enom_timeout_seconds,
    )


def build_ledger(settings: RenewalSettings) -> RenewalLedger:
    client = create_supabase_client(settings.supabase_url, settings.supabase_key)
    return SupabaseRenewalLedger(client)


def build_components(settings: RenewalSettings, *, dry_run: bool = False) -> RenewalComponents:
    """
    Build every collaborator the renewal job needs and check the ledger is reachable.

    In dry-run mode no payment gateway or registrar is built, so their
    credentials are not required.

    Raises RuntimeError on missing configuration or an unreachable ledger.
    """

    client = create_supabase_client(settings.supabase_url, settings.supabase_key)
    ledger = SupabaseRenewalLedger(client)
    ledger.ping()

    pricing = SupabasePricingRepository(client, settings.default_price)
    entitlements = SupabaseEntitlementRepository(
        client,
        pricing,
        settings.currency,
        enom_mode="live" if settings.enom_live else "test",
    )
    notifier = build_notifier(settings)

    scanner = EligibilityScanner(
        entitlements,
        ledger,
        notifier,
        lookahead=settings.lookahead,
        reminder_days=settings.reminder_days,
    )

    orchestrator: Optional[RenewalOrchestrator] = None
    if not dry_run:
        retry = settings.retry_policy
        orchestrator = RenewalOrchestrator(
            ledger,
            entitlements,
            build_payment_gateway(settings),
            build_registrar(settings),
            notifier,
            payment_retry=retry,
            registrar_retry=retry,
            lease_duration=settings.lease_duration,
            disable_auto_renew_on_decline=settings.disable_auto_renew_on_decline,
        )

    return RenewalComponents(
        ledger=ledger,
        entitlements=entitlements,
        notifier=notifier,
        scanner=scanner,
        orchestrator=orchestrator,
    )


__all__ = [
    "RenewalComponents",
    "build_components",
    "build_ledger",
    "build_notifier",
    "build_payment_gateway",
    "build_registrar",
]

"""
ConnectedAccount model: a coach's Stripe Connect destination and the
billing settings that drive payout decomposition.

Usage:
    account = ConnectedAccount.objects.create(
        user=coach,
        stripe_account_id="acct_1234567890",
        onboarding_status=OnboardingStatus.COMPLETE,
        payouts_enabled=True,
        is_tax_registered=True,
        tax_rate=Decimal("8.1"),
    )

    if account.is_ready_for_payouts:
        rate = account.effective_tax_rate(config.default_tax_rate)
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models

from core.models import BaseModel
from core.model_mixins import MetadataMixin, UUIDPrimaryKeyMixin, VersionedMixin

from payments.state_machines import OnboardingStatus


class ConnectedAccount(UUIDPrimaryKeyMixin, VersionedMixin, MetadataMixin, BaseModel):
    """
    Stripe Connected Account of a payout recipient.

    Lifecycle:
        1. Account created when the coach starts onboarding (NOT_STARTED)
        2. Stripe verifies the details (IN_PROGRESS)
        3. Stripe enables payouts (COMPLETE, payouts_enabled=True)

    Tax settings:
        Tax-registered coaches have VAT withheld from their gross payout
        at ``tax_rate`` percent, or the configured default when unset.

    Note:
        user uses PROTECT so a coach with payout history cannot be deleted
        by accident.
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="connected_account",
        help_text="Coach this connected account belongs to",
    )

    stripe_account_id = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
        help_text="Stripe Account ID (acct_xxx); empty until onboarding starts",
    )

    onboarding_status = models.CharField(
        max_length=20,
        choices=OnboardingStatus.choices,
        default=OnboardingStatus.NOT_STARTED,
        db_index=True,
        help_text="Current Stripe Connect onboarding status",
    )

    payouts_enabled = models.BooleanField(
        default=False,
        help_text="Whether Stripe has enabled payouts for this account",
    )

    charges_enabled = models.BooleanField(
        default=False,
        help_text="Whether Stripe has enabled charges for this account",
    )

    # ==========================================================================
    # Billing Settings
    # ==========================================================================

    is_tax_registered = models.BooleanField(
        default=False,
        help_text="Whether the coach is VAT registered",
    )

    tax_number = models.CharField(
        max_length=50,
        blank=True,
        default="",
        help_text="VAT number shown on invoices",
    )

    tax_rate = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="VAT percentage; empty uses the platform default",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Connected Account"
        verbose_name_plural = "Connected Accounts"

    def __str__(self) -> str:
        return f"ConnectedAccount({self.stripe_account_id}, {self.onboarding_status})"

    @property
    def is_ready_for_payouts(self) -> bool:
        """Onboarding complete, payouts enabled and a destination id present."""
        return bool(
            self.stripe_account_id
            and self.onboarding_status == OnboardingStatus.COMPLETE
            and self.payouts_enabled
        )

    def effective_tax_rate(self, default: Decimal) -> Decimal:
        return self.tax_rate if self.tax_rate is not None else default

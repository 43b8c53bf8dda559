"""Tenant subscription schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

TRIAL_PLAN = "trial"


class SubscriptionState(BaseModel):
    """Subscription columns of a tenant."""

    tenant_id: UUID
    name: str | None = None
    plan: str = TRIAL_PLAN
    status: str = "active"
    expires_at: datetime | None = None
    trial_warning_threshold: int | None = None
    trial_warned_at: datetime | None = None

    @property
    def in_trial(self) -> bool:
        """Whether the tenant is on the trial plan."""
        return self.plan == TRIAL_PLAN

    def is_expired(self, now: datetime) -> bool:
        """Whether the subscription counts as expired at ``now``."""
        if self.status == "expired":
            return True
        return self.in_trial and self.expires_at is not None and self.expires_at < now


class TrialExpirationResult(BaseModel):
    """Outcome of expiring one tenant's trial."""

    success: bool
    handled: bool = False
    actions: list[str] = Field(default_factory=list)
    error: str | None = None


class TrialSweepItem(BaseModel):
    """Per-tenant line of the expiration sweep."""

    tenant_id: str
    success: bool
    error: str | None = None


class TrialSweepResult(BaseModel):
    """Aggregate result of the expiration sweep."""

    success: bool
    processed: int = 0
    expired: int = 0
    errors: int = 0
    results: list[TrialSweepItem] = Field(default_factory=list)


class TrialWarningResult(BaseModel):
    """Aggregate result of the warning sweep."""

    success: bool
    warnings_sent: int = 0
    errors: int = 0

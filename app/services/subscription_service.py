"""Tenant trial lifecycle: onboarding, warnings and expiry."""

import math
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import NotFoundException
from app.core.metrics import AUTOMATION_RUNS
from app.core.redis_client import CacheManager
from app.database import AsyncSessionLocal, SessionFactory
from app.models.tenants import tenants
from app.models.types import utcnow
from app.models.users import users
from app.schemas.notifications import InAppContent, NotificationEnvelope, NotificationRecipient
from app.schemas.subscriptions import (
    TRIAL_PLAN,
    SubscriptionState,
    TrialExpirationResult,
    TrialSweepItem,
    TrialSweepResult,
    TrialWarningResult,
)
from app.services.email_templates import trial_expired_email, trial_warning_email
from app.services.notification_service import NotificationDispatcher
from app.services.settings_service import SettingsService
from app.services.sweeps import run_bounded

logger = structlog.get_logger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


def days_remaining(expires_at: datetime, now: datetime) -> int:
    """Whole days left until expiry, rounded up."""
    return math.ceil((expires_at - now).total_seconds() / SECONDS_PER_DAY)


def _plural_days(days: int) -> str:
    return f"{days} Day{'s' if days != 1 else ''}"


class SubscriptionService:
    """Subscription state of tenants."""

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: NotificationDispatcher | None = None,
        cache: CacheManager | None = None,
    ):
        """Initialize service with a database session and collaborators."""
        self.db = db
        self.dispatcher = dispatcher or NotificationDispatcher(db)
        self.settings_service = SettingsService(db, cache)

    async def start_trial(self, tenant_id: UUID, now: datetime | None = None) -> SubscriptionState:
        """
        Put a newly onboarded tenant on the trial plan.

        Args:
            tenant_id: Tenant ID
            now: Reference time, defaults to the current time

        Returns:
            New subscription state

        Raises:
            NotFoundException: If tenant not found
        """
        now = now or utcnow()
        result = await self.db.execute(
            update(tenants)
            .where(tenants.c.id == tenant_id)
            .values(
                subscription_plan=TRIAL_PLAN,
                subscription_status="active",
                subscription_expires_at=now + timedelta(days=settings.trial_length_days),
                trial_warning_threshold=None,
                trial_warned_at=None,
                updated_at=now,
            )
        )
        if result.rowcount == 0:
            await self.db.rollback()
            raise NotFoundException("Tenant not found")
        await self.db.commit()

        logger.info("trial_started", tenant_id=str(tenant_id))
        state = await self.get_state(tenant_id)
        if state is None:
            raise NotFoundException("Tenant not found")
        return state

    async def get_state(self, tenant_id: UUID) -> SubscriptionState | None:
        """Subscription state of a tenant, or None if it does not exist."""
        result = await self.db.execute(
            select(
                tenants.c.id,
                tenants.c.name,
                tenants.c.subscription_plan,
                tenants.c.subscription_status,
                tenants.c.subscription_expires_at,
                tenants.c.trial_warning_threshold,
                tenants.c.trial_warned_at,
            ).where(tenants.c.id == tenant_id)
        )
        row = result.first()
        if row is None:
            return None
        return SubscriptionState(
            tenant_id=row.id,
            name=row.name,
            plan=row.subscription_plan,
            status=row.subscription_status,
            expires_at=row.subscription_expires_at,
            trial_warning_threshold=row.trial_warning_threshold,
            trial_warned_at=row.trial_warned_at,
        )

    async def handle_trial_expiration(
        self,
        tenant_id: UUID,
        now: datetime | None = None,
        send_notifications: bool = True,
        enforce_limitations: bool = True,
    ) -> TrialExpirationResult:
        """
        Expire a tenant's trial if it has run out.

        Args:
            tenant_id: Tenant ID
            now: Reference time, defaults to the current time
            send_notifications: Notify the tenant's admins
            enforce_limitations: Run the enforcement hook

        Returns:
            Expiration result; never raises
        """
        now = now or utcnow()
        try:
            state = await self.get_state(tenant_id)
            if state is None:
                return TrialExpirationResult(success=False, error="Tenant not found")

            if not state.in_trial or state.expires_at is None or state.expires_at > now:
                return TrialExpirationResult(success=True)

            if not await self.settings_service.is_enabled(tenant_id, "auto_trial_expiration"):
                return TrialExpirationResult(success=True)

            result = await self.db.execute(
                update(tenants)
                .where(
                    tenants.c.id == tenant_id,
                    tenants.c.subscription_plan == TRIAL_PLAN,
                    tenants.c.subscription_status == "active",
                )
                .values(subscription_status="expired", updated_at=now)
            )
            await self.db.commit()
            if result.rowcount == 0:
                # Already expired by another sweep, or upgraded meanwhile
                return TrialExpirationResult(success=True)

            actions = ["Subscription status updated to expired"]
            logger.info("trial_expired", tenant_id=str(tenant_id))

            if send_notifications:
                await self._notify_expired(state)
                actions.append("Expiration notifications sent")

            if enforce_limitations:
                await self.enforce_trial_limitations(tenant_id)
                actions.append("Trial limitations enforced")

            AUTOMATION_RUNS.labels(automation="trial_expiration", outcome="expired").inc()
            return TrialExpirationResult(success=True, handled=True, actions=actions)
        except Exception as e:
            await self.db.rollback()
            logger.error("trial_expiration_failed", tenant_id=str(tenant_id), error=str(e))
            AUTOMATION_RUNS.labels(automation="trial_expiration", outcome="error").inc()
            return TrialExpirationResult(
                success=False,
                error=str(e) or "Failed to handle trial expiration",
            )

    async def enforce_trial_limitations(self, tenant_id: UUID) -> None:
        """
        Hook run after a trial expires.

        Access is restricted by the request layer from the expired status;
        nothing else is changed here.
        """
        logger.info("trial_limitations_enforced", tenant_id=str(tenant_id))

    async def send_trial_warning(self, tenant_id: UUID, now: datetime | None = None) -> bool:
        """
        Warn a tenant's admins that the trial is about to end.

        A warning goes out only once per days-remaining threshold.

        Args:
            tenant_id: Tenant ID
            now: Reference time, defaults to the current time

        Returns:
            True if a warning was sent
        """
        now = now or utcnow()
        state = await self.get_state(tenant_id)
        if state is None or state.expires_at is None:
            return False

        remaining = days_remaining(state.expires_at, now)
        if state.trial_warning_threshold is not None and remaining >= state.trial_warning_threshold:
            logger.debug(
                "trial_warning_already_sent",
                tenant_id=str(tenant_id),
                days_remaining=remaining,
            )
            return False

        # Claim the threshold before sending so parallel sweeps cannot both send
        result = await self.db.execute(
            update(tenants)
            .where(
                tenants.c.id == tenant_id,
                or_(
                    tenants.c.trial_warning_threshold.is_(None),
                    tenants.c.trial_warning_threshold > remaining,
                ),
            )
            .values(trial_warning_threshold=remaining, trial_warned_at=now)
        )
        await self.db.commit()
        if result.rowcount == 0:
            return False

        clinic = await self.settings_service.get_settings(tenant_id)
        subscription_url = f"{settings.app_base_url}/subscription"
        subject, html = trial_warning_email(state.name, clinic.display_name, remaining, subscription_url)

        for admin in await self._active_admins(tenant_id):
            await self.dispatcher.dispatch(
                NotificationEnvelope(
                    recipient=NotificationRecipient(
                        user_id=admin["id"],
                        email=admin["email"],
                        phone=admin["phone"],
                    ),
                    tenant_id=tenant_id,
                    sms_message=(
                        f"Your {clinic.display_name} trial expires in {_plural_days(remaining).lower()}. "
                        f"Subscribe to keep access: {subscription_url}"
                    ),
                    email_subject=subject,
                    email_html=html,
                    in_app=InAppContent(
                        title=f"Trial Expiring in {_plural_days(remaining)}",
                        message=(
                            f"Your trial period expires in {_plural_days(remaining).lower()}. "
                            "Please subscribe to continue."
                        ),
                        notification_type="system",
                        priority="high",
                        action_url=subscription_url,
                    ),
                )
            )

        logger.info("trial_warning_sent", tenant_id=str(tenant_id), days_remaining=remaining)
        return True

    async def _notify_expired(self, state: SubscriptionState) -> None:
        try:
            clinic = await self.settings_service.get_settings(state.tenant_id)
            subscription_url = f"{settings.app_base_url}/subscription"
            subject, html = trial_expired_email(state.name, clinic.display_name, subscription_url)

            for admin in await self._active_admins(state.tenant_id):
                await self.dispatcher.dispatch(
                    NotificationEnvelope(
                        recipient=NotificationRecipient(
                            user_id=admin["id"],
                            email=admin["email"],
                            phone=admin["phone"],
                        ),
                        tenant_id=state.tenant_id,
                        sms_message=(
                            f"Your {clinic.display_name} trial period has expired. Please subscribe "
                            f"to continue using the service. Visit {subscription_url}"
                        ),
                        email_subject=subject,
                        email_html=html,
                        in_app=InAppContent(
                            title="Trial Period Expired",
                            message=(
                                "Your trial period has expired. "
                                "Please subscribe to continue using the service."
                            ),
                            notification_type="system",
                            priority="high",
                            action_url=subscription_url,
                        ),
                    )
                )
        except Exception as e:
            logger.warning("trial_expiration_notification_failed", tenant_id=str(state.tenant_id), error=str(e))

    async def _active_admins(self, tenant_id: UUID) -> list[dict[str, Any]]:
        result = await self.db.execute(
            select(users.c.id, users.c.email, users.c.phone).where(
                users.c.tenant_id == tenant_id,
                users.c.role == "admin",
                users.c.is_active == True,  # noqa: E712
            )
        )
        return [dict(row) for row in result.mappings().all()]


async def _trial_tenants(
    session_factory: SessionFactory,
    *conditions: Any,
) -> list[UUID]:
    async with session_factory() as db:
        result = await db.execute(
            select(tenants.c.id).where(
                and_(
                    tenants.c.subscription_plan == TRIAL_PLAN,
                    tenants.c.subscription_status == "active",
                    *conditions,
                )
            )
        )
        return list(result.scalars())


async def process_expired_trials(
    session_factory: SessionFactory = AsyncSessionLocal,
    now: datetime | None = None,
    cache: CacheManager | None = None,
) -> TrialSweepResult:
    """
    Expire every trial whose end date has passed.

    Args:
        session_factory: Factory for database sessions
        now: Reference time, defaults to the current time
        cache: Optional settings cache

    Returns:
        Aggregated sweep result; never raises
    """
    now = now or utcnow()
    try:
        tenant_ids = await _trial_tenants(
            session_factory, tenants.c.subscription_expires_at <= now
        )

        async def expire_one(session: AsyncSession, tenant_id: UUID) -> tuple[TrialSweepItem, bool]:
            outcome = await SubscriptionService(session, cache=cache).handle_trial_expiration(
                tenant_id, now=now
            )
            item = TrialSweepItem(tenant_id=str(tenant_id), success=outcome.success, error=outcome.error)
            return item, outcome.handled

        def expire_failed(tenant_id: UUID, error: Exception) -> tuple[TrialSweepItem, bool]:
            return TrialSweepItem(tenant_id=str(tenant_id), success=False, error=str(error)), False

        outcomes = await run_bounded(tenant_ids, expire_one, session_factory, expire_failed)

        sweep = TrialSweepResult(
            success=True,
            processed=len(outcomes),
            expired=sum(1 for item, handled in outcomes if item.success and handled),
            errors=sum(1 for item, _ in outcomes if not item.success),
            results=[item for item, _ in outcomes],
        )
        logger.info(
            "trial_expiration_sweep_finished",
            processed=sweep.processed,
            expired=sweep.expired,
            errors=sweep.errors,
        )
        return sweep
    except Exception as e:
        logger.error("trial_expiration_sweep_failed", error=str(e))
        return TrialSweepResult(
            success=False,
            errors=1,
            results=[TrialSweepItem(tenant_id="unknown", success=False, error=str(e))],
        )


async def send_trial_expiration_warnings(
    session_factory: SessionFactory = AsyncSessionLocal,
    now: datetime | None = None,
    cache: CacheManager | None = None,
) -> TrialWarningResult:
    """
    Warn tenants whose trial ends within the warning window.

    Args:
        session_factory: Factory for database sessions
        now: Reference time, defaults to the current time
        cache: Optional settings cache

    Returns:
        Count of tenants warned; never raises
    """
    now = now or utcnow()
    try:
        tenant_ids = await _trial_tenants(
            session_factory,
            tenants.c.subscription_expires_at >= now,
            tenants.c.subscription_expires_at <= now + timedelta(days=settings.trial_warning_days),
        )

        async def warn_one(session: AsyncSession, tenant_id: UUID) -> bool | None:
            try:
                service = SubscriptionService(session, cache=cache)
                return await service.send_trial_warning(tenant_id, now=now)
            except Exception as e:
                await session.rollback()
                logger.error("trial_warning_failed", tenant_id=str(tenant_id), error=str(e))
                return None

        outcomes = await run_bounded(tenant_ids, warn_one, session_factory, lambda tenant_id, error: None)

        sent = sum(1 for outcome in outcomes if outcome)
        errors = sum(1 for outcome in outcomes if outcome is None)
        AUTOMATION_RUNS.labels(automation="trial_warning", outcome="ok").inc()
        logger.info("trial_warning_sweep_finished", warnings_sent=sent, errors=errors)
        return TrialWarningResult(success=True, warnings_sent=sent, errors=errors)
    except Exception as e:
        logger.error("trial_warning_sweep_failed", error=str(e))
        return TrialWarningResult(success=False, errors=1)

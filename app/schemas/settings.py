"""Clinic settings schemas."""

from pydantic import BaseModel, ConfigDict, Field


class AutomationSettings(BaseModel):
    """Per-tenant automation switches. Every automation is on unless disabled."""

    model_config = ConfigDict(extra="allow")

    auto_welcome_messages: bool = True
    auto_recurring_appointments: bool = True
    auto_waitlist_management: bool = True
    auto_periodic_reports: bool = True
    auto_trial_expiration: bool = True


class ClinicSettings(BaseModel):
    """Settings consumed by the automation engine."""

    clinic_name: str | None = None
    automation_settings: AutomationSettings = Field(default_factory=AutomationSettings)

    @property
    def display_name(self) -> str:
        """Clinic name used in outgoing messages."""
        return self.clinic_name or "Clinic"

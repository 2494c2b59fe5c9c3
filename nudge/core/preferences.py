"""
Subscriber preferences — the explicit, validated shape of what a
subscriber asked for.

Every recognised field is listed here with its default.  Unknown keys are
rejected rather than merged, and an update always replaces the whole
object (last write wins).

Persisted / wire shape (camelCase, as the client app sends it):
    {
      "dailyCheckIn":        {"enabled", "time", "timezone", "utcHour", "utcTime", "frequency"},
      "postAttackFollowUp":  {"enabled", "delayHours"},
      "activeAttackCheckIn": {"enabled", "delayHours"}
    }
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from nudge.core.errors import ValidationError

MAX_DELAY_HOURS = 168  # one week

Frequency = Literal["daily", "every-other-day"]


class _PreferenceModel(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class DailyCheckInPreferences(_PreferenceModel):
    """Recurring daily reminder at a fixed hour."""

    enabled: bool = True
    time: str = Field(default="19:00", pattern=r"^\d{1,2}:\d{2}$")  # local wall clock
    timezone: str | None = None
    utc_hour: int | None = Field(default=None, ge=0, le=23, alias="utcHour")
    utc_time: str | None = Field(default=None, alias="utcTime")
    frequency: Frequency = "daily"


class FollowUpPreferences(_PreferenceModel):
    """One-shot follow-up some hours after an event ends."""

    enabled: bool = True
    delay_hours: float = Field(default=2, ge=0, le=MAX_DELAY_HOURS, alias="delayHours")


class ActiveCheckInPreferences(_PreferenceModel):
    """Repeating check-in while an event is still ongoing."""

    enabled: bool = False
    delay_hours: float = Field(default=2, ge=0, le=MAX_DELAY_HOURS, alias="delayHours")


class Preferences(_PreferenceModel):
    daily_check_in: DailyCheckInPreferences = Field(
        default_factory=DailyCheckInPreferences, alias="dailyCheckIn"
    )
    post_attack_follow_up: FollowUpPreferences = Field(
        default_factory=FollowUpPreferences, alias="postAttackFollowUp"
    )
    active_attack_check_in: ActiveCheckInPreferences = Field(
        default_factory=ActiveCheckInPreferences, alias="activeAttackCheckIn"
    )

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | Preferences) -> Preferences:
        """
        Validate a preferences payload.

        Raises ValidationError (ours, not pydantic's) naming the first
        offending field.
        """
        if isinstance(data, Preferences):
            return data.model_copy(deep=True)
        if not isinstance(data, dict):
            raise ValidationError("Preferences must be an object", field="preferences")
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            first = e.errors()[0]
            loc = ".".join(str(p) for p in first.get("loc", ()))
            raise ValidationError(
                f"Invalid preferences: {loc or 'preferences'}: {first.get('msg')}",
                field=loc or "preferences",
                details={"errors": e.errors(include_url=False)},
            ) from e

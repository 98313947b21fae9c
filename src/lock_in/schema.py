from dataclasses import dataclass
from enum import Enum, IntEnum

from pydantic import BaseModel, Field


class RepeatType(str, Enum):
    ONCE = "ONCE"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"


class Weekday(IntEnum):
    """Day of week, numbered like ``datetime.weekday()``."""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @property
    def short(self) -> str:
        return self.name[:3].capitalize()

    @property
    def storage_number(self) -> int:
        """Number used in stored rows: 1=Sunday ... 7=Saturday."""
        return (self.value + 1) % 7 + 1

    @classmethod
    def from_storage_number(cls, number: int) -> "Weekday":
        if not 1 <= number <= 7:
            raise ValueError(f"Invalid stored weekday: {number}")
        return cls((number - 2) % 7)

    @classmethod
    def parse(cls, text: str) -> "Weekday":
        """Parses 'mon', 'Monday', 'MON' and the like."""
        key = text.strip().upper()
        for day in cls:
            if day.name == key or day.name[:3] == key:
                return day
        raise ValueError(f"Could not parse weekday: {text}")


def days_to_csv(days: frozenset[Weekday]) -> str:
    """Serializes a weekday set into the stored comma separated form."""
    return ",".join(str(d.storage_number) for d in sorted(days, key=lambda d: d.storage_number))


def days_from_csv(csv: str | None) -> frozenset[Weekday]:
    """Parses the stored comma separated form, skipping unreadable entries."""
    days = set()
    if not csv:
        return frozenset()
    for part in csv.split(","):
        try:
            days.add(Weekday.from_storage_number(int(part.strip())))
        except ValueError:
            continue
    return frozenset(days)


WORKDAYS = frozenset(
    {Weekday.MONDAY, Weekday.TUESDAY, Weekday.WEDNESDAY, Weekday.THURSDAY, Weekday.FRIDAY}
)
WEEKEND = frozenset({Weekday.SATURDAY, Weekday.SUNDAY})


class Schedule(BaseModel):
    """A recurring or one-shot template for starting a focus session."""

    id: int
    name: str
    start_hour: int = Field(ge=0, le=23)
    start_minute: int = Field(ge=0, le=59)
    focus_duration_minutes: int = Field(gt=0)
    repeat_type: RepeatType = RepeatType.DAILY
    repeat_days: frozenset[Weekday] = frozenset()
    pre_notify_minutes: int = Field(default=0, ge=0)
    enabled: bool = True

    @property
    def start_label(self) -> str:
        return f"{self.start_hour:02d}:{self.start_minute:02d}"

    @property
    def repeat_label(self) -> str:
        if self.repeat_type is RepeatType.WEEKLY:
            if not self.repeat_days:
                return "Weekly (no days)"
            return ", ".join(d.short for d in sorted(self.repeat_days))
        return self.repeat_type.value.capitalize()

    def to_row(self) -> dict:
        """Storage row: the weekday set becomes ``repeat_days_csv``."""
        row = self.model_dump(mode="json", exclude={"repeat_days"})
        row["repeat_days_csv"] = days_to_csv(self.repeat_days)
        return row

    @classmethod
    def from_row(cls, row: dict) -> "Schedule":
        data = dict(row)
        data["repeat_days"] = days_from_csv(data.pop("repeat_days_csv", ""))
        return cls(**data)


class SessionRecord(BaseModel):
    """The single active focus period. Always written as a whole."""

    locked: bool = False
    start_time_ms: int = 0
    end_time_ms: int = 0
    target_duration_ms: int = 0
    uptime_at_start_ms: int = 0
    restarted: bool = False
    source: str | None = None
    ui_token: str | None = None


class OneTimeCode(BaseModel):
    code: str
    generated_at_ms: int
    expires_at_ms: int


class WhitelistRecord(BaseModel):
    apps: set[str] = Field(default_factory=set)
    allow_phone_app: bool = True
    allow_clock_app: bool = True
    allow_calendar_app: bool = True


class UnlockConfig(BaseModel):
    pin: str | None = None
    partner_destination: str | None = None


class PersistedState(BaseModel):
    """Everything the state store holds, in one document."""

    session: SessionRecord = Field(default_factory=SessionRecord)
    otc: OneTimeCode | None = None
    whitelist: WhitelistRecord = Field(default_factory=WhitelistRecord)
    unlock: UnlockConfig = Field(default_factory=UnlockConfig)
    last_allowed_at_ms: int | None = None
    boot_time: float | None = None


class Verdict(str, Enum):
    ALLOW = "allow"
    BLOCK = "block"


class RuleCategory(str, Enum):
    SELF = "self"
    SECURITY_RISK = "security_risk"
    ESSENTIAL_SYSTEM = "essential_system"
    USER_WHITELIST = "user_whitelist"
    DEFAULT_APP = "default_app"
    SUPPORTING_SERVICE = "supporting_service"
    UNLISTED = "unlisted"


@dataclass(frozen=True)
class AuthorizationDecision:
    package_id: str
    verdict: Verdict
    category: RuleCategory

    @property
    def allowed(self) -> bool:
        return self.verdict is Verdict.ALLOW


@dataclass(frozen=True)
class ForegroundEvent:
    package_id: str
    timestamp: float


class WakeupKind(str, Enum):
    FIRE = "fire"
    PRE_NOTIFY = "pre_notify"


@dataclass(frozen=True)
class WakeupPayload:
    schedule_id: int
    name: str
    duration_minutes: int
    kind: WakeupKind = WakeupKind.FIRE
    pre_notify_minutes: int = 0

    @property
    def key(self) -> tuple[int, WakeupKind]:
        return (self.schedule_id, self.kind)

"""
Data models for job records and job creation options.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Union

from jobkeeper.timers import DueSpec, RecurrenceRule

# Discriminator stored on every record owned by the keeper
JOB_TYPE = "jobkeeper"

DEFAULT_DELAY_SECONDS = 60

# camelCase option names accepted for callers porting option dicts
_OPTION_ALIASES = {
    'removeOnComplete': 'remove_on_complete',
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def coerce_due(value: Any, recurring: bool) -> DueSpec:
    """
    Normalize a caller supplied due value.

    One-shot jobs accept a datetime (naive = local time), epoch seconds or
    an ISO-8601 string and always come back as an aware UTC datetime.
    Recurring jobs accept a RecurrenceRule or a dict of rule fields.
    """
    if recurring:
        if isinstance(value, RecurrenceRule):
            return value
        if isinstance(value, dict):
            return RecurrenceRule.from_dict(value)
        raise ValueError(f"Recurring jobs need a recurrence rule, got {value!r}")

    if isinstance(value, RecurrenceRule):
        raise ValueError("A recurrence rule was given for a job that is not recurring")
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError) as e:
            raise ValueError(f"Due timestamp out of range: {value!r}") from e
    if isinstance(value, str):
        return datetime.fromisoformat(value).astimezone(timezone.utc)
    raise ValueError(f"Unsupported due value: {value!r}")


def encode_due(due: DueSpec) -> Union[str, Dict[str, Any]]:
    """Encode a due value for the JSON column."""
    if isinstance(due, RecurrenceRule):
        return due.to_dict()
    return due.isoformat()


def decode_due(raw: Any, recurring: bool) -> DueSpec:
    """Decode a due value read back from the JSON column."""
    if recurring:
        return RecurrenceRule.from_dict(raw)
    return datetime.fromisoformat(raw)


@dataclass
class Job:
    """A durable job record."""
    id: str
    name: str
    due: DueSpec
    recurring: bool = False
    remove_on_complete: bool = True
    created: Optional[datetime] = None
    data: Any = None
    type: str = JOB_TYPE
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'due': encode_due(self.due),
            'recurring': self.recurring,
            'remove_on_complete': self.remove_on_complete,
            'created': self.created.isoformat() if self.created else None,
            'data': self.data,
            'type': self.type,
            'extra': dict(self.extra),
        }


@dataclass
class JobOptions:
    """Options accepted by ``JobKeeper.create_job``."""
    due: Any = None
    remove_on_complete: bool = True
    restart: bool = False
    recurring: bool = False
    data: Any = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_value(cls, value: Any) -> 'JobOptions':
        """
        Build options from None, a dict, or an existing JobOptions.

        Dict keys that are not option fields are kept in ``extra`` and
        stored with the record.
        """
        if value is None:
            return cls()
        if isinstance(value, JobOptions):
            return value
        if not isinstance(value, dict):
            raise TypeError(f"Job options must be a dict or JobOptions, got {type(value).__name__}")

        known = {f.name for f in fields(cls)} - {'extra'}
        kwargs = {}
        extra = dict(value.get('extra') or {})
        for key, item in value.items():
            key = _OPTION_ALIASES.get(key, key)
            if key == 'extra' or key == 'name':
                continue
            if key in known:
                kwargs[key] = item
            else:
                extra[key] = item
        return cls(extra=extra, **kwargs)

    def resolved_due(self, default_delay: int = DEFAULT_DELAY_SECONDS) -> DueSpec:
        """The effective due value, defaulting one-shot jobs to now + delay."""
        if self.due is None and not self.recurring:
            return utcnow() + timedelta(seconds=default_delay)
        return coerce_due(self.due, self.recurring)

"""Status conditions recorded on a ConfigSync.

Conditions follow the Kubernetes convention of a list of typed records that is
unique by `type`. They are held in an ordered mapping keyed by type so that an
upsert does not need to scan the list, while serialization keeps the order in
which the condition types were first added.
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig
from mashumaro.types import SerializableType

__all__ = [
    "DEGRADED",
    "ConditionStatus",
    "Condition",
    "Conditions",
    "format_time",
]

DEGRADED = "Degraded"


class ConditionStatus(StrEnum):
    """Status value of a condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


def format_time(value: datetime) -> str:
    """Format a timestamp in the RFC 3339 form used by Kubernetes."""
    return (
        value.astimezone(timezone.utc)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z")
    )


@dataclass
class Condition(DataClassDictMixin):
    """A typed, timestamped record describing one aspect of a resource."""

    type: str
    """The type of the condition, e.g. Degraded."""

    status: ConditionStatus
    """Whether the condition currently holds."""

    reason: str
    """A stable, machine readable reason code."""

    message: str = ""
    """A human readable description."""

    last_transition_time: str | None = field(
        metadata=field_options(alias="lastTransitionTime"), default=None
    )
    """The last time the status of the condition changed."""

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


class Conditions(SerializableType):
    """Ordered mapping of conditions keyed by condition type."""

    def __init__(self, conditions: Iterable[Condition] = ()) -> None:
        """Initialize Conditions."""
        self._conditions: dict[str, Condition] = {}
        for condition in conditions:
            self._conditions[condition.type] = condition

    def get(self, condition_type: str) -> Condition | None:
        """Return the condition of the given type, if present."""
        return self._conditions.get(condition_type)

    def set(
        self,
        condition_type: str,
        status: ConditionStatus,
        reason: str,
        message: str,
        now: datetime,
    ) -> Condition:
        """Insert or update the condition of the given type.

        An existing condition keeps its position and its lastTransitionTime
        unless the status changes.
        """
        existing = self._conditions.get(condition_type)
        if existing is not None and existing.status == status:
            existing.reason = reason
            existing.message = message
            return existing
        condition = Condition(
            type=condition_type,
            status=status,
            reason=reason,
            message=message,
            last_transition_time=format_time(now),
        )
        self._conditions[condition_type] = condition
        return condition

    def is_true(self, condition_type: str) -> bool:
        """Return True if the condition is present with status True."""
        condition = self._conditions.get(condition_type)
        return condition is not None and condition.status == ConditionStatus.TRUE

    def __iter__(self) -> Iterator[Condition]:
        return iter(self._conditions.values())

    def __len__(self) -> int:
        return len(self._conditions)

    def __contains__(self, condition_type: object) -> bool:
        return condition_type in self._conditions

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Conditions):
            return NotImplemented
        return list(self) == list(other)

    def __repr__(self) -> str:
        return f"Conditions({list(self)!r})"

    def _serialize(self) -> list[dict[str, Any]]:
        return [condition.to_dict() for condition in self]

    @classmethod
    def _deserialize(cls, value: list[dict[str, Any]]) -> "Conditions":
        return cls(Condition.from_dict(item) for item in value)

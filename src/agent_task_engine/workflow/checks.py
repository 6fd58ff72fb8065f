from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict


class CheckKind(str, Enum):
    ALWAYS = "always"
    NON_EMPTY = "non_empty"
    EQUALS = "equals"
    CONTAINS = "contains"
    MATCHES = "matches"


@dataclass(frozen=True, slots=True)
class CheckOutcome:
    """Result of evaluating a node check against a task output.

    `discriminant` is the addressed value rendered as a string; branch nodes use
    it to pick a successor.
    """

    passed: bool
    discriminant: str | None = None


_MISSING = object()


class CheckSpec(BaseModel):
    """A predicate over a task's output.

    `field` is an optional dotted path into a mapping output. Without it the
    whole output is checked.
    """

    kind: CheckKind = CheckKind.ALWAYS
    field: str | None = None
    value: Any = None

    model_config = ConfigDict(frozen=True, extra="forbid")

    def evaluate(self, output: object) -> CheckOutcome:
        subject = _resolve_path(output, self.field)
        discriminant = None if subject is _MISSING or subject is None else as_text(subject)

        if self.kind is CheckKind.ALWAYS:
            passed = True
        elif subject is _MISSING:
            passed = False
        elif self.kind is CheckKind.NON_EMPTY:
            passed = subject not in (None, "", [], {})
        elif self.kind is CheckKind.EQUALS:
            passed = subject == self.value
        elif self.kind is CheckKind.CONTAINS:
            passed = _contains(subject, self.value)
        elif self.kind is CheckKind.MATCHES:
            pattern = str(self.value)
            passed = discriminant is not None and re.search(pattern, discriminant) is not None
        else:  # pragma: no cover - closed enum
            raise AssertionError(f"Unhandled check kind: {self.kind}")

        return CheckOutcome(passed=passed, discriminant=discriminant)


def _resolve_path(output: object, path: str | None) -> object:
    if not path:
        return output
    current: object = output
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return _MISSING
    return current


def _contains(subject: object, needle: object) -> bool:
    if isinstance(subject, str):
        return str(needle) in subject
    if isinstance(subject, (list, tuple, set, dict)):
        return needle in subject
    return False


def as_text(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)

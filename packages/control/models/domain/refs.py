"""
Identifiers for features and plans.

    feature:<name>                  Name
    plan:<name>@<version>           Plan
    feature:<name>@<version>        FeaturePlan (version is usually a plan)

Names and versions match [a-zA-Z0-9:]+. All refs are immutable, hashable,
compare structurally, and validate from / serialize to their string form
inside pydantic models.
"""

import re
from dataclasses import dataclass
from functools import total_ordering
from typing import Any, Iterable, List

from pydantic import GetCoreSchemaHandler
from pydantic_core import core_schema

from common.core.exceptions import ValidationError

_LEGAL_ID = re.compile(r"[a-zA-Z0-9:]+")


class RefParseError(ValidationError, ValueError):
    """A ref string is malformed."""

    def __init__(self, message: str, ref: str):
        super().__init__(f"{message}: {ref!r}")
        self.message = message
        self.ref = ref


def _is_legal_id(s: str) -> bool:
    return bool(s) and _LEGAL_ID.fullmatch(s) is not None


class _StrRef:
    """Mixin wiring parse/str into pydantic validation and serialization."""

    @classmethod
    def parse(cls, s: str):
        raise NotImplementedError

    @classmethod
    def _coerce(cls, value: Any):
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            return cls.parse(value)
        raise RefParseError(f"expected a {cls.__name__} string", repr(value))

    @classmethod
    def __get_pydantic_core_schema__(
        cls, source: Any, handler: GetCoreSchemaHandler
    ) -> core_schema.CoreSchema:
        return core_schema.no_info_plain_validator_function(
            cls._coerce,
            serialization=core_schema.to_string_ser_schema(),
        )


@total_ordering
@dataclass(frozen=True, eq=True)
class Name(_StrRef):
    name: str

    @classmethod
    def parse(cls, s: str) -> "Name":
        prefix, sep, name = s.partition(":")
        if not sep or prefix != "feature":
            raise RefParseError("feature name must start with 'feature:'", s)
        if not _is_legal_id(name):
            raise RefParseError("feature name must match [a-zA-Z0-9:]+", s)
        return cls(name)

    def with_version(self, version: str) -> "FeaturePlan":
        return FeaturePlan(self, version)

    def __str__(self) -> str:
        return f"feature:{self.name}"

    def __lt__(self, other: "Name") -> bool:
        return self.name < other.name


@total_ordering
@dataclass(frozen=True, eq=True)
class Plan(_StrRef):
    name: str = ""
    version: str = ""

    @classmethod
    def parse(cls, s: str) -> "Plan":
        prefix, sep, rest = s.partition(":")
        if not sep or prefix != "plan":
            raise RefParseError("plan must start with 'plan:'", s)
        name, sep, version = rest.rpartition("@")
        if not sep:
            raise RefParseError("plan must have a version", s)
        if not _is_legal_id(name):
            raise RefParseError("plan name must match [a-zA-Z0-9:]+", s)
        if not _is_legal_id(version):
            raise RefParseError("plan version must match [a-zA-Z0-9:]+", s)
        return cls(name, version)

    @property
    def is_zero(self) -> bool:
        return not self.name and not self.version

    def __str__(self) -> str:
        if self.is_zero:
            return ""
        return f"plan:{self.name}@{self.version}"

    def __lt__(self, other: "Plan") -> bool:
        return str(self) < str(other)


@total_ordering
@dataclass(frozen=True, eq=True)
class FeaturePlan(_StrRef):
    name: Name
    version: str

    @classmethod
    def parse(cls, s: str) -> "FeaturePlan":
        name, sep, version = s.partition("@")
        if not sep:
            raise RefParseError("feature must have version", s)
        parsed = Name.parse(name)
        if not _is_legal_id(version):
            # versions may themselves be plans: feature:x@plan:free@0
            try:
                Plan.parse(version)
            except RefParseError:
                raise RefParseError(
                    "feature version must match [a-zA-Z0-9:]+ or be a plan", s
                ) from None
        return cls(parsed, version)

    @property
    def plan(self) -> Plan:
        """The plan this feature belongs to, or the zero Plan."""
        try:
            return Plan.parse(self.version)
        except RefParseError:
            return Plan()

    def in_plan(self, plan: Plan) -> bool:
        return self.plan == plan

    def is_version_of(self, name: Name) -> bool:
        return self.name == name

    def __str__(self) -> str:
        return f"{self.name}@{self.version}"

    def __lt__(self, other: "FeaturePlan") -> bool:
        return str(self) < str(other)


def parse_feature_plans(refs: Iterable[str]) -> List[FeaturePlan]:
    return [FeaturePlan.parse(r) for r in refs]

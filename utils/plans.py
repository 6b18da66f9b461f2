from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from utils.config import Settings

UNLIMITED = "unlimited"


class Plan(str, Enum):
    BASIC = "Basic"
    PRO = "Pro"
    ELITE = "Elite"


PLAN_LIMITS: Mapping[Plan, str] = MappingProxyType(
    {
        Plan.BASIC: "10",
        Plan.PRO: "30",
        Plan.ELITE: UNLIMITED,
    }
)


@dataclass(frozen=True)
class PlanMappingEntry:
    token: str
    plan: Plan
    usage_limit: str


@dataclass(frozen=True)
class PlanMappingTable:
    """Read-only lookup from a Stripe price/product token to a plan.

    A table is only valid when every plan has exactly one token and no token
    is shared between plans; callers decide how to react when it is not.
    """

    entries: Mapping[str, PlanMappingEntry] = field(default_factory=dict)
    missing_plans: Tuple[Plan, ...] = ()
    duplicate_tokens: Tuple[str, ...] = ()

    @classmethod
    def from_tokens(cls, tokens: Mapping[Plan, Optional[str]]) -> "PlanMappingTable":
        entries: Dict[str, PlanMappingEntry] = {}
        duplicates = []
        missing = []
        for plan in Plan:
            token = tokens.get(plan)
            if not token:
                missing.append(plan)
                continue
            if token in entries:
                duplicates.append(token)
                continue
            entries[token] = PlanMappingEntry(token=token, plan=plan, usage_limit=PLAN_LIMITS[plan])

        # A shared token cannot be attributed to either plan.
        for token in duplicates:
            entries.pop(token, None)

        return cls(
            entries=MappingProxyType(entries),
            missing_plans=tuple(missing),
            duplicate_tokens=tuple(sorted(set(duplicates))),
        )

    @property
    def is_complete(self) -> bool:
        return not self.missing_plans

    @property
    def is_valid(self) -> bool:
        return self.is_complete and not self.duplicate_tokens

    def lookup(self, token: Optional[str]) -> Optional[PlanMappingEntry]:
        if not token:
            return None
        return self.entries.get(token)


def plan_tokens(settings: Settings) -> Dict[Plan, Optional[str]]:
    return {
        Plan.BASIC: settings.price_basic,
        Plan.PRO: settings.price_pro,
        Plan.ELITE: settings.price_elite,
    }


def build_plan_mapping(settings: Settings) -> PlanMappingTable:
    return PlanMappingTable.from_tokens(plan_tokens(settings))


def get_plan(plan_key: Optional[str]) -> Plan:
    normalized = (plan_key or "").strip().lower()
    for plan in Plan:
        if plan.value.lower() == normalized:
            return plan
    valid_keys = ", ".join(plan.value.lower() for plan in Plan)
    raise ValueError(f"Unknown plan '{plan_key}'. Valid plans: {valid_keys}")

"""
Pydantic schemas for team attribution rules
"""

import enum
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, validator

UNASSIGNED = "Unassigned"


class RuleKind(str, enum.Enum):
    """Rule tiers, in evaluation order"""
    MANUAL_EXACT = "manual_exact"
    SUBID_PATTERN = "subid_pattern"
    PARTNER_PATTERN = "partner_pattern"
    CAMPAIGN_PATTERN = "campaign_pattern"


PATTERN_TIERS = (RuleKind.SUBID_PATTERN, RuleKind.PARTNER_PATTERN, RuleKind.CAMPAIGN_PATTERN)


class AttributionRule(BaseModel):
    """One compiled rule; priority_rank is its position in the global order."""
    team_id: str
    kind: RuleKind
    pattern: str = Field(..., min_length=1)
    priority_rank: int = Field(..., ge=0)

    class Config:
        frozen = True


def _clean_patterns(v):
    if v is None:
        return []
    if isinstance(v, str):
        v = [v]
    cleaned = [str(p).strip() for p in v]
    return [p for p in cleaned if p]


class TeamRules(BaseModel):
    """
    Team declaration with its pattern lists.

    Declaration order of teams in RuleSetConfig.teams is significant: the
    first team whose pattern matches wins.
    """
    team_id: str = Field(..., min_length=1)
    display_name: Optional[str] = None
    description: str = ""
    target: Decimal = Decimal("0")
    active: bool = True
    subid_patterns: List[str] = Field(default_factory=list)
    partner_patterns: List[str] = Field(default_factory=list)
    campaign_patterns: List[str] = Field(default_factory=list)

    @validator("team_id")
    def reserved_team_id(cls, v):
        v = v.strip()
        if v == UNASSIGNED:
            raise ValueError(f"'{UNASSIGNED}' is reserved for unmatched records")
        return v

    @validator("subid_patterns", "partner_patterns", "campaign_patterns", pre=True)
    def clean_patterns(cls, v):
        return _clean_patterns(v)

    def patterns_for(self, kind: RuleKind) -> List[str]:
        if kind is RuleKind.SUBID_PATTERN:
            return self.subid_patterns
        if kind is RuleKind.PARTNER_PATTERN:
            return self.partner_patterns
        if kind is RuleKind.CAMPAIGN_PATTERN:
            return self.campaign_patterns
        return []


class RuleSetConfig(BaseModel):
    """
    Attribution configuration as loaded from TEAM_RULES_PATH.

    manual_mappings maps an exact SubID (case-sensitive) to a team id.
    """
    teams: List[TeamRules] = Field(default_factory=list)
    manual_mappings: Dict[str, str] = Field(default_factory=dict)

    @validator("teams")
    def unique_team_ids(cls, v):
        seen = set()
        for team in v:
            if team.team_id in seen:
                raise ValueError(f"Duplicate team id: {team.team_id}")
            seen.add(team.team_id)
        return v

    @validator("manual_mappings")
    def manual_targets_declared(cls, v, values):
        declared = {t.team_id for t in values.get("teams", [])}
        unknown = sorted({team for team in v.values() if team not in declared})
        if unknown:
            raise ValueError(f"Manual mappings reference undeclared teams: {unknown}")
        return v

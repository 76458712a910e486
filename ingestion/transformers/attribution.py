"""
Team attribution engine.

Each record is assigned to at most one team. Tiers are evaluated in a fixed
order and the first match wins:

1. Manual exact mapping on SubID (case-sensitive)
2. SubID patterns
3. Partner patterns
4. Campaign patterns

Patterns are case-insensitive substrings. Within a pattern tier, teams are
tried in declaration order and then patterns in declaration order, so the
first declared team whose pattern matches wins even if a later team has a
more specific pattern. Declare narrower patterns first.
"""

import json
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError

from core.exceptions import ConfigError
from ingestion.parsing import FieldMap
from schemas.records import ClassifiedRecord
from schemas.rules import (
    AttributionRule,
    PATTERN_TIERS,
    RuleKind,
    RuleSetConfig,
    TeamRules,
    UNASSIGNED,
)
import logging

logger = logging.getLogger(__name__)


def format_team_name(team_id: str) -> str:
    """Turn a slug such as ``auburn-tigers`` into ``Auburn Tigers``; cased words are kept."""
    words = str(team_id).replace("_", " ").replace("-", " ").split()
    return " ".join(word.capitalize() if word.islower() else word for word in words)


class RuleSet:
    """
    Compiled, immutable rule order.

    ``rules`` holds every manual_exact rule first, then subid, partner and
    campaign pattern rules; ``priority_rank`` is each rule's index.
    """

    def __init__(self, rules: Sequence[AttributionRule], teams: Optional[Iterable[TeamRules]] = None):
        self.rules: Tuple[AttributionRule, ...] = tuple(rules)
        self.teams: Dict[str, TeamRules] = {t.team_id: t for t in (teams or [])}

        self._manual: Dict[str, AttributionRule] = {}
        self._tiers: Dict[RuleKind, List[Tuple[str, AttributionRule]]] = {k: [] for k in PATTERN_TIERS}
        for rule in self.rules:
            if rule.kind is RuleKind.MANUAL_EXACT:
                self._manual.setdefault(rule.pattern, rule)
            else:
                self._tiers[rule.kind].append((rule.pattern.lower(), rule))

    @classmethod
    def compile(cls, config: RuleSetConfig) -> "RuleSet":
        active = [team for team in config.teams if team.active]
        active_ids = {team.team_id for team in active}

        rules: List[AttributionRule] = []

        for subid, team_id in config.manual_mappings.items():
            if team_id not in active_ids:
                logger.warning(f"Skipping manual mapping {subid!r}: team {team_id} is inactive")
                continue
            rules.append(AttributionRule(
                team_id=team_id,
                kind=RuleKind.MANUAL_EXACT,
                pattern=subid,
                priority_rank=len(rules)
            ))

        for kind in PATTERN_TIERS:
            for team in active:
                for pattern in team.patterns_for(kind):
                    rules.append(AttributionRule(
                        team_id=team.team_id,
                        kind=kind,
                        pattern=pattern,
                        priority_rank=len(rules)
                    ))

        skipped = len(config.teams) - len(active)
        logger.info(
            f"Compiled {len(rules)} attribution rules for {len(active)} teams"
            + (f" ({skipped} inactive skipped)" if skipped else "")
        )
        return cls(rules, active)

    @classmethod
    def empty(cls) -> "RuleSet":
        return cls(())

    def __iter__(self) -> Iterator[AttributionRule]:
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    @property
    def team_ids(self) -> List[str]:
        return list(self.teams)

    def match(self, subid: str, partner: str = "", campaign: str = "") -> Optional[AttributionRule]:
        """First matching rule for the given field values, or None."""
        if subid and subid in self._manual:
            return self._manual[subid]

        for kind, value in (
            (RuleKind.SUBID_PATTERN, subid),
            (RuleKind.PARTNER_PATTERN, partner),
            (RuleKind.CAMPAIGN_PATTERN, campaign),
        ):
            if not value:
                continue
            lowered = value.lower()
            for pattern, rule in self._tiers[kind]:
                if pattern in lowered:
                    return rule
        return None


def load_rule_set(path: str) -> RuleSet:
    """
    Load and compile attribution rules from a JSON file.

    Raises:
        ConfigError: File missing, unreadable, or not a valid rule set
    """
    try:
        data = json.loads(Path(path).read_text())
    except (OSError, ValueError) as e:
        raise ConfigError(
            "Failed to read team rules",
            context={"path": path},
            original_exception=e
        )

    try:
        config = RuleSetConfig(**data) if isinstance(data, dict) else RuleSetConfig(teams=data)
    except ValidationError as e:
        raise ConfigError(
            "Invalid team rules",
            context={"path": path, "errors": e.errors()},
            original_exception=e
        )
    return RuleSet.compile(config)


class AttributionEngine:
    """
    Classify records to teams with a compiled RuleSet.

    Field lookup goes through a FieldMap, so SubID may arrive as ``SubID``,
    ``subid`` or ``SubId`` (and similarly for partner and campaign).
    """

    def __init__(self, rule_set: RuleSet, field_map: Optional[FieldMap] = None):
        self.rule_set = rule_set
        self.field_map = field_map or FieldMap()

    def _values(self, headers: Sequence[str], cells: Sequence[Any]) -> Tuple[str, str, str]:
        positions = self.field_map.resolve(headers)
        return (
            FieldMap.value(cells, positions.get("subid")),
            FieldMap.value(cells, positions.get("partner")),
            FieldMap.value(cells, positions.get("campaign")),
        )

    def classify_with_rule(self, record: Mapping[str, Any]) -> Optional[AttributionRule]:
        headers = list(record.keys())
        cells = [record[h] for h in headers]
        return self.rule_set.match(*self._values(headers, cells))

    def classify(self, record: Mapping[str, Any]) -> Optional[str]:
        """Team id for a header→value record, or None for Unassigned."""
        rule = self.classify_with_rule(record)
        return rule.team_id if rule else None

    def classify_rows(
        self,
        headers: Sequence[str],
        rows: Iterable[Sequence[Any]],
        skip_empty: bool = False
    ) -> Iterator[ClassifiedRecord]:
        """
        Classify rows sharing one header, resolving field positions once.

        ``row_index`` is the row's position in ``rows``; with ``skip_empty``
        blank rows yield nothing but still advance the index, so it lines up
        with validation issue indices.
        """
        header_tuple = tuple(str(h) for h in headers)
        positions = self.field_map.resolve(header_tuple)
        subid_at = positions.get("subid")
        partner_at = positions.get("partner")
        campaign_at = positions.get("campaign")

        for row_index, row in enumerate(rows):
            if skip_empty and not any(str(cell).strip() for cell in row if cell is not None):
                continue
            rule = self.rule_set.match(
                FieldMap.value(row, subid_at),
                FieldMap.value(row, partner_at),
                FieldMap.value(row, campaign_at),
            )
            yield ClassifiedRecord(
                row_index=row_index,
                headers=header_tuple,
                cells=tuple("" if cell is None else str(cell) for cell in row),
                team_id=rule.team_id if rule else None,
                matched_rule=rule
            )

    def display_name(self, team_id: Optional[str]) -> str:
        if not team_id or team_id == UNASSIGNED:
            return UNASSIGNED
        team = self.rule_set.teams.get(team_id)
        if team is not None and team.display_name:
            return team.display_name
        return format_team_name(team_id)

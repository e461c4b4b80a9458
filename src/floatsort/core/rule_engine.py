"""Rule engine: match files against rules and resolve destination templates.

The engine is pure: it never touches the filesystem. Matching returns the
selected rule together with any regex captures, which the destination
template of the same rule may reference as ``$1`` or ``${1}``.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from ..models.file_info import FileInfo
from ..models.rules import (
    RECYCLE_SENTINEL,
    CopyToAction,
    CreatedDaysAgoCondition,
    CreatedTimeCondition,
    DaysAgoCondition,
    DeleteAction,
    ExtensionCondition,
    FileKind,
    FileTypeCondition,
    ModifiedDaysAgoCondition,
    ModifiedTimeCondition,
    MoveToAction,
    NameContainsCondition,
    NameRegexCondition,
    RenameAction,
    Rule,
    RuleAction,
    RuleCondition,
    SizeRangeCondition,
    TimeComparison,
    TimeCondition,
    TimeType,
)

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400
# fromisoformat before 3.11 only takes 3 or 6 fractional digits
_FRACTION = re.compile(r"(?<=:\d\d)\.(\d+)")

_CAPTURE_PLACEHOLDER = re.compile(r"\$\{(\d+)\}|\$(\d+)")


@dataclass(frozen=True)
class RuleMatch:
    """The selected rule and the regex captures gathered while matching it."""
    rule: Rule
    regex_captures: Tuple[str, ...] = field(default_factory=tuple)


@lru_cache(maxsize=256)
def _compile(pattern: str) -> Optional[re.Pattern]:
    try:
        return re.compile(pattern)
    except re.error as e:
        logger.warning(f"Invalid regex pattern '{pattern}': {e}")
        return None


def parse_rfc3339(value: str) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp into an aware UTC datetime.

    A trailing ``Z`` is accepted and naive values are taken as UTC. Returns
    None when the value cannot be parsed.
    """
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def age_in_days(timestamp: datetime, now: datetime) -> int:
    """Whole days elapsed between ``timestamp`` and ``now`` (truncated)."""
    return int((now - timestamp).total_seconds() / SECONDS_PER_DAY)


class RuleEngine:
    """Select the rule that applies to a file and resolve its destination."""

    def __init__(self, rules: Iterable[Rule], clock=None):
        """
        Args:
            rules: Rules in configuration order.
            clock: Callable returning the current aware UTC datetime. Time
                conditions and date placeholders read it.
        """
        self._all_rules: List[Rule] = list(rules)
        # sorted() is stable, so equal priorities keep configuration order
        self._rules: List[Rule] = sorted(
            (r for r in self._all_rules if r.enabled), key=lambda r: r.priority
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def rules(self) -> List[Rule]:
        """Enabled rules in evaluation order."""
        return list(self._rules)

    def get_rule(self, rule_id: str) -> Optional[Rule]:
        for rule in self._all_rules:
            if rule.id == rule_id:
                return rule
        return None

    def subset(self, rule_ids: Optional[Sequence[str]]) -> "RuleEngine":
        """Engine restricted to ``rule_ids``; an empty selection keeps all rules."""
        if not rule_ids:
            return self
        wanted = set(rule_ids)
        return RuleEngine([r for r in self._all_rules if r.id in wanted], clock=self._clock)

    def find_matching_rule(self, file_info: FileInfo) -> Optional[RuleMatch]:
        """Find the first enabled rule whose conditions all hold.

        Returns:
            The match with its regex captures, or None if no rule matches.
        """
        now = self._clock()
        for rule in self._rules:
            captures = self._check_conditions(rule.conditions, file_info, now)
            if captures is not None:
                logger.debug(f"File {file_info.name} matched rule: {rule.name}")
                return RuleMatch(rule=rule, regex_captures=tuple(captures))
        return None

    def _check_conditions(
        self, conditions: Sequence[RuleCondition], file_info: FileInfo, now: datetime
    ) -> Optional[List[str]]:
        """Evaluate conditions with short-circuit AND.

        Returns the accumulated captures when every condition holds, else None.
        """
        if not conditions:
            return None

        captures: List[str] = []
        for condition in conditions:
            if isinstance(condition, NameRegexCondition):
                groups = self._match_regex(condition, file_info)
                if groups is None:
                    return None
                captures.extend(groups)
            elif not self.check_condition(condition, file_info, now):
                return None
        return captures

    @staticmethod
    def _match_regex(condition: NameRegexCondition, file_info: FileInfo) -> Optional[List[str]]:
        pattern = _compile(condition.pattern)
        if pattern is None:
            return None
        match = pattern.search(file_info.name)
        if match is None:
            return None
        return [g if g is not None else "" for g in match.groups()]

    def check_condition(
        self, condition: RuleCondition, file_info: FileInfo, now: Optional[datetime] = None
    ) -> bool:
        """Evaluate a single condition against a file."""
        if now is None:
            now = self._clock()

        if isinstance(condition, FileTypeCondition):
            if condition.file_type == FileKind.FILE:
                return not file_info.is_directory
            if condition.file_type == FileKind.FOLDER:
                return file_info.is_directory
            return True

        if isinstance(condition, ExtensionCondition):
            ext = file_info.extension.lower()
            return any(v.lower().lstrip(".") == ext for v in condition.values)

        if isinstance(condition, SizeRangeCondition):
            if condition.min is not None and file_info.size < condition.min:
                return False
            if condition.max is not None and file_info.size > condition.max:
                return False
            return True

        if isinstance(condition, NameContainsCondition):
            return condition.pattern.lower() in file_info.name.lower()

        if isinstance(condition, NameRegexCondition):
            return self._match_regex(condition, file_info) is not None

        if isinstance(condition, (CreatedTimeCondition, ModifiedTimeCondition)):
            timestamp = (
                file_info.created_at if isinstance(condition, CreatedTimeCondition)
                else file_info.modified_at
            )
            return self._check_time(condition, timestamp, now)

        if isinstance(condition, (CreatedDaysAgoCondition, ModifiedDaysAgoCondition)):
            timestamp = (
                file_info.created_at if isinstance(condition, CreatedDaysAgoCondition)
                else file_info.modified_at
            )
            return self._check_days_ago(condition, timestamp, now)

        raise TypeError(f"Unsupported condition: {condition!r}")

    @staticmethod
    def _check_time(condition: TimeCondition, timestamp: Optional[datetime], now: datetime) -> bool:
        if timestamp is None:
            return False

        if condition.time_type == TimeType.RELATIVE:
            if condition.days is None:
                return False
            days = age_in_days(timestamp, now)
            if condition.comparison == TimeComparison.BEFORE:
                return days >= condition.days
            return days < condition.days

        if not condition.datetime:
            return False
        threshold = parse_rfc3339(condition.datetime)
        if threshold is None:
            logger.warning(f"Invalid datetime in time condition: {condition.datetime!r}")
            return False
        if condition.comparison == TimeComparison.BEFORE:
            return timestamp < threshold
        return timestamp > threshold

    @staticmethod
    def _check_days_ago(condition: DaysAgoCondition, timestamp: Optional[datetime], now: datetime) -> bool:
        if timestamp is None:
            return False
        days = age_in_days(timestamp, now)
        if condition.min is not None and days < condition.min:
            return False
        if condition.max is not None and days > condition.max:
            return False
        return True

    def get_destination_path(
        self,
        action: RuleAction,
        file_info: FileInfo,
        base_path: Path,
        regex_captures: Sequence[str] = (),
    ) -> Optional[str]:
        """Resolve an action's template into a concrete path.

        MoveTo/CopyTo resolve to a destination directory, Rename to the new
        full path next to the file. Returns ``RECYCLE_SENTINEL`` for the trash
        destination and None for Delete or an unresolvable rename.
        """
        if isinstance(action, (MoveToAction, CopyToAction)):
            if action.destination.strip() == RECYCLE_SENTINEL:
                return RECYCLE_SENTINEL
            destination = Path(self.expand_template(action.destination, file_info, regex_captures))
            if destination.is_absolute():
                return str(destination)
            return str(Path(base_path) / destination)

        if isinstance(action, RenameAction):
            parent = file_info.path.parent
            if parent == file_info.path:
                return None
            new_name = self.expand_template(action.pattern, file_info, regex_captures)
            if not new_name:
                return None
            return str(parent / new_name)

        if isinstance(action, DeleteAction):
            return None

        raise TypeError(f"Unsupported action: {action!r}")

    def expand_template(
        self, template: str, file_info: FileInfo, regex_captures: Sequence[str] = ()
    ) -> str:
        """Substitute capture, name and date placeholders in ``template``."""

        def capture(match: re.Match) -> str:
            index = int(match.group(1) or match.group(2))
            if 1 <= index <= len(regex_captures):
                return regex_captures[index - 1]
            return ""

        result = _CAPTURE_PLACEHOLDER.sub(capture, template)

        stamp = file_info.modified_at or file_info.created_at or self._clock()
        local = stamp.astimezone() if stamp.tzinfo else stamp
        return (
            result
            .replace("{name}", file_info.stem)
            .replace("{ext}", file_info.extension)
            .replace("{year}", f"{local.year:04d}")
            .replace("{month}", f"{local.month:02d}")
            .replace("{day}", f"{local.day:02d}")
        )

    def validate(self) -> List[str]:
        """Describe problems in the loaded rules.

        Returns:
            List of human-readable problems, empty when none are found.
        """
        errors = []
        seen = set()
        for rule in self._all_rules:
            if rule.id in seen:
                errors.append(f"Duplicate rule id: {rule.id}")
            seen.add(rule.id)

            if not rule.conditions:
                errors.append(f"Rule '{rule.name}' has no conditions and never matches")

            for condition in rule.conditions:
                if isinstance(condition, NameRegexCondition):
                    try:
                        re.compile(condition.pattern)
                    except re.error as e:
                        errors.append(f"Rule '{rule.name}' has invalid regex: {e}")
                if isinstance(condition, TimeCondition) and condition.time_type == TimeType.ABSOLUTE:
                    if not condition.datetime or parse_rfc3339(condition.datetime) is None:
                        errors.append(f"Rule '{rule.name}' has invalid datetime: {condition.datetime!r}")
        return errors

"""Rule model: conditions, actions and conflict strategies.

Conditions and actions are closed sets of frozen dataclasses. Their dict form
carries a ``type`` tag so configuration files stay readable, e.g.::

    {"type": "Extension", "values": ["jpg", "png"]}
    {"type": "MoveTo", "destination": "Pictures/{year}"}
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

RECYCLE_SENTINEL = "{recycle}"


class FileKind(Enum):
    """Entry kinds accepted by a FileType condition."""
    FILE = "file"
    FOLDER = "folder"
    BOTH = "both"


class TimeType(Enum):
    """How a time condition expresses its threshold."""
    RELATIVE = "relative"
    ABSOLUTE = "absolute"


class TimeComparison(Enum):
    BEFORE = "before"
    AFTER = "after"


class ConflictStrategy(Enum):
    """What to do when the destination path already holds a file."""
    SKIP = "skip"
    OVERWRITE = "overwrite"
    RENAME = "rename"


@dataclass(frozen=True)
class FileTypeCondition:
    file_type: FileKind = FileKind.FILE


@dataclass(frozen=True)
class ExtensionCondition:
    values: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SizeRangeCondition:
    min: Optional[int] = None
    max: Optional[int] = None


@dataclass(frozen=True)
class NameContainsCondition:
    pattern: str = ""


@dataclass(frozen=True)
class NameRegexCondition:
    pattern: str = ""


@dataclass(frozen=True)
class TimeCondition:
    """Common shape of CreatedTime and ModifiedTime."""
    time_type: TimeType = TimeType.RELATIVE
    comparison: TimeComparison = TimeComparison.BEFORE
    days: Optional[int] = None
    datetime: Optional[str] = None


@dataclass(frozen=True)
class CreatedTimeCondition(TimeCondition):
    pass


@dataclass(frozen=True)
class ModifiedTimeCondition(TimeCondition):
    pass


@dataclass(frozen=True)
class DaysAgoCondition:
    """Inclusive age range in whole days (legacy configurations)."""
    min: Optional[int] = None
    max: Optional[int] = None


@dataclass(frozen=True)
class CreatedDaysAgoCondition(DaysAgoCondition):
    pass


@dataclass(frozen=True)
class ModifiedDaysAgoCondition(DaysAgoCondition):
    pass


RuleCondition = Union[
    FileTypeCondition,
    ExtensionCondition,
    SizeRangeCondition,
    NameContainsCondition,
    NameRegexCondition,
    CreatedTimeCondition,
    ModifiedTimeCondition,
    CreatedDaysAgoCondition,
    ModifiedDaysAgoCondition,
]


@dataclass(frozen=True)
class MoveToAction:
    destination: str


@dataclass(frozen=True)
class CopyToAction:
    destination: str


@dataclass(frozen=True)
class RenameAction:
    pattern: str


@dataclass(frozen=True)
class DeleteAction:
    pass


RuleAction = Union[MoveToAction, CopyToAction, RenameAction, DeleteAction]


_CONDITION_TYPES = {
    "FileType": FileTypeCondition,
    "Extension": ExtensionCondition,
    "SizeRange": SizeRangeCondition,
    "NameContains": NameContainsCondition,
    "NameRegex": NameRegexCondition,
    "CreatedTime": CreatedTimeCondition,
    "ModifiedTime": ModifiedTimeCondition,
    "CreatedDaysAgo": CreatedDaysAgoCondition,
    "ModifiedDaysAgo": ModifiedDaysAgoCondition,
}
_CONDITION_TAGS = {cls: tag for tag, cls in _CONDITION_TYPES.items()}

_ACTION_TYPES = {
    "MoveTo": MoveToAction,
    "CopyTo": CopyToAction,
    "Rename": RenameAction,
    "Delete": DeleteAction,
}
_ACTION_TAGS = {cls: tag for tag, cls in _ACTION_TYPES.items()}


def condition_from_dict(data: Dict[str, Any]) -> RuleCondition:
    """Build a condition from its tagged dict form.

    Raises:
        ValueError: If the tag is unknown or a field has an invalid value.
    """
    tag = data.get("type")
    if tag not in _CONDITION_TYPES:
        raise ValueError(f"Unknown condition type: {tag!r}")

    if tag == "FileType":
        return FileTypeCondition(FileKind(str(data.get("file_type", "file")).lower()))
    if tag == "Extension":
        return ExtensionCondition(tuple(str(v) for v in data.get("values", [])))
    if tag in ("SizeRange", "CreatedDaysAgo", "ModifiedDaysAgo"):
        return _CONDITION_TYPES[tag](min=data.get("min"), max=data.get("max"))
    if tag in ("NameContains", "NameRegex"):
        return _CONDITION_TYPES[tag](pattern=str(data.get("pattern", "")))

    # CreatedTime / ModifiedTime
    return _CONDITION_TYPES[tag](
        time_type=TimeType(str(data.get("time_type", "relative")).lower()),
        comparison=TimeComparison(str(data.get("comparison", "before")).lower()),
        days=data.get("days"),
        datetime=data.get("datetime"),
    )


def condition_to_dict(condition: RuleCondition) -> Dict[str, Any]:
    """Serialize a condition to its tagged dict form."""
    tag = _CONDITION_TAGS.get(type(condition))
    if tag is None:
        raise TypeError(f"Unsupported condition: {condition!r}")

    if isinstance(condition, FileTypeCondition):
        return {"type": tag, "file_type": condition.file_type.value}
    if isinstance(condition, ExtensionCondition):
        return {"type": tag, "values": list(condition.values)}
    if isinstance(condition, (SizeRangeCondition, DaysAgoCondition)):
        return {"type": tag, "min": condition.min, "max": condition.max}
    if isinstance(condition, (NameContainsCondition, NameRegexCondition)):
        return {"type": tag, "pattern": condition.pattern}
    return {
        "type": tag,
        "time_type": condition.time_type.value,
        "comparison": condition.comparison.value,
        "days": condition.days,
        "datetime": condition.datetime,
    }


def action_from_dict(data: Dict[str, Any]) -> RuleAction:
    """Build an action from its tagged dict form."""
    tag = data.get("type")
    if tag == "MoveTo":
        return MoveToAction(str(data["destination"]))
    if tag == "CopyTo":
        return CopyToAction(str(data["destination"]))
    if tag == "Rename":
        return RenameAction(str(data["pattern"]))
    if tag == "Delete":
        return DeleteAction()
    raise ValueError(f"Unknown action type: {tag!r}")


def action_to_dict(action: RuleAction) -> Dict[str, Any]:
    tag = _ACTION_TAGS.get(type(action))
    if tag is None:
        raise TypeError(f"Unsupported action: {action!r}")
    if isinstance(action, (MoveToAction, CopyToAction)):
        return {"type": tag, "destination": action.destination}
    if isinstance(action, RenameAction):
        return {"type": tag, "pattern": action.pattern}
    return {"type": tag}


@dataclass(frozen=True)
class Rule:
    """An organization rule.

    All conditions must hold (implicit AND). Lower ``priority`` values are
    evaluated first.
    """
    id: str
    name: str
    action: RuleAction
    conditions: Tuple[RuleCondition, ...] = ()
    enabled: bool = True
    priority: int = 0
    conflict_strategy: ConflictStrategy = ConflictStrategy.SKIP
    icon: Optional[str] = None
    icon_svg: Optional[str] = None
    color: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Rule":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", data["id"])),
            action=action_from_dict(data["action"]),
            conditions=tuple(condition_from_dict(c) for c in data.get("conditions", [])),
            enabled=bool(data.get("enabled", True)),
            priority=int(data.get("priority", 0)),
            conflict_strategy=ConflictStrategy(str(data.get("conflict_strategy", "skip")).lower()),
            icon=data.get("icon"),
            icon_svg=data.get("icon_svg"),
            color=data.get("color"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "enabled": self.enabled,
            "logic": "and",
            "conditions": [condition_to_dict(c) for c in self.conditions],
            "action": action_to_dict(self.action),
            "priority": self.priority,
            "conflict_strategy": self.conflict_strategy.value,
        }
        for key in ("icon", "icon_svg", "color"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


def rules_from_list(items: List[Dict[str, Any]]) -> List[Rule]:
    """Parse a list of rule dicts, preserving configuration order."""
    return [Rule.from_dict(item) for item in items]

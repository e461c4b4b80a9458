"""Tests for the rule engine."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from floatsort.core.rule_engine import RuleEngine, age_in_days, parse_rfc3339
from floatsort.models.file_info import FileInfo
from floatsort.models.rules import (
    RECYCLE_SENTINEL,
    CopyToAction,
    CreatedTimeCondition,
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
    SizeRangeCondition,
    TimeComparison,
    TimeType,
)

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)
WATCH = Path("/watch").absolute()


def make_info(name, size=100, modified=None, created=None, is_directory=False):
    path = WATCH / name
    return FileInfo(
        path=path,
        name=name,
        extension=path.suffix[1:] if path.suffix else "",
        size=size,
        created_at=created,
        modified_at=modified,
        is_directory=is_directory,
    )


def make_rule(rule_id, conditions, action=None, priority=0, enabled=True):
    return Rule(
        id=rule_id,
        name=rule_id.title(),
        action=action or MoveToAction("Sorted"),
        conditions=tuple(conditions),
        priority=priority,
        enabled=enabled,
    )


@pytest.fixture
def engine_factory():
    def factory(*rules):
        return RuleEngine(list(rules), clock=lambda: NOW)
    return factory


class TestRuleSelection:
    """Test rule ordering and selection."""

    def test_lowest_priority_wins(self, engine_factory):
        late = make_rule("late", [ExtensionCondition(("txt",))], priority=5)
        early = make_rule("early", [ExtensionCondition(("txt",))], priority=1)
        engine = engine_factory(late, early)

        match = engine.find_matching_rule(make_info("notes.txt"))

        assert match.rule.id == "early"

    def test_equal_priority_keeps_configuration_order(self, engine_factory):
        first = make_rule("first", [ExtensionCondition(("txt",))], priority=3)
        second = make_rule("second", [ExtensionCondition(("txt",))], priority=3)
        engine = engine_factory(first, second)

        assert engine.find_matching_rule(make_info("a.txt")).rule.id == "first"
        assert [r.id for r in engine.rules] == ["first", "second"]

    def test_disabled_rules_are_ignored(self, engine_factory):
        disabled = make_rule("off", [ExtensionCondition(("txt",))], enabled=False)
        engine = engine_factory(disabled)

        assert engine.find_matching_rule(make_info("a.txt")) is None
        assert engine.get_rule("off") is disabled

    def test_rule_without_conditions_never_matches(self, engine_factory):
        engine = engine_factory(make_rule("empty", []))

        assert engine.find_matching_rule(make_info("anything.bin")) is None

    def test_all_conditions_must_hold(self, engine_factory):
        rule = make_rule("both", [ExtensionCondition(("pdf",)), NameContainsCondition("invoice")])
        engine = engine_factory(rule)

        assert engine.find_matching_rule(make_info("Invoice-May.pdf")) is not None
        assert engine.find_matching_rule(make_info("receipt.pdf")) is None
        assert engine.find_matching_rule(make_info("invoice.txt")) is None

    def test_subset_restricts_rules(self, engine_factory):
        a = make_rule("a", [ExtensionCondition(("txt",))], priority=1)
        b = make_rule("b", [ExtensionCondition(("txt",))], priority=2)
        engine = engine_factory(a, b)

        assert engine.subset(["b"]).find_matching_rule(make_info("x.txt")).rule.id == "b"
        assert engine.subset([]) is engine
        assert engine.subset(None) is engine


class TestConditions:
    """Test individual condition kinds."""

    def test_extension_is_case_insensitive_and_ignores_dots(self, engine_factory):
        engine = engine_factory()
        condition = ExtensionCondition((".JPG", "png"))

        assert engine.check_condition(condition, make_info("photo.jpg"))
        assert engine.check_condition(condition, make_info("PHOTO.PNG"))
        assert not engine.check_condition(condition, make_info("photo.gif"))
        assert not engine.check_condition(condition, make_info("README"))

    def test_size_range_is_inclusive(self, engine_factory):
        engine = engine_factory()
        condition = SizeRangeCondition(min=100, max=200)

        assert engine.check_condition(condition, make_info("a.bin", size=100))
        assert engine.check_condition(condition, make_info("a.bin", size=200))
        assert not engine.check_condition(condition, make_info("a.bin", size=99))
        assert not engine.check_condition(condition, make_info("a.bin", size=201))

    def test_size_range_open_ended(self, engine_factory):
        engine = engine_factory()

        assert engine.check_condition(SizeRangeCondition(min=10), make_info("a", size=10 ** 9))
        assert engine.check_condition(SizeRangeCondition(max=10), make_info("a", size=0))

    def test_name_contains_is_case_insensitive(self, engine_factory):
        engine = engine_factory()

        assert engine.check_condition(NameContainsCondition("Screenshot"), make_info("screenshot 1.png"))
        assert not engine.check_condition(NameContainsCondition("scan"), make_info("photo.png"))

    def test_file_type(self, engine_factory):
        engine = engine_factory()
        folder = make_info("Photos", is_directory=True)
        file = make_info("photo.png")

        assert engine.check_condition(FileTypeCondition(FileKind.FILE), file)
        assert not engine.check_condition(FileTypeCondition(FileKind.FILE), folder)
        assert engine.check_condition(FileTypeCondition(FileKind.FOLDER), folder)
        assert engine.check_condition(FileTypeCondition(FileKind.BOTH), folder)
        assert engine.check_condition(FileTypeCondition(FileKind.BOTH), file)

    def test_invalid_regex_does_not_match(self, engine_factory):
        engine = engine_factory(make_rule("bad", [NameRegexCondition("([unclosed")]))

        assert engine.find_matching_rule(make_info("anything.txt")) is None

    def test_unknown_condition_raises_type_error(self, engine_factory):
        with pytest.raises(TypeError):
            engine_factory().check_condition(object(), make_info("a.txt"))


class TestTimeConditions:
    """Test relative, absolute and legacy time conditions."""

    def relative(self, comparison, days, cls=ModifiedTimeCondition):
        return cls(time_type=TimeType.RELATIVE, comparison=comparison, days=days)

    def absolute(self, comparison, value, cls=ModifiedTimeCondition):
        return cls(time_type=TimeType.ABSOLUTE, comparison=comparison, datetime=value)

    def test_relative_before_means_at_least_n_days_old(self, engine_factory):
        engine = engine_factory()
        info = make_info("old.log", modified=NOW - timedelta(days=10))

        assert engine.check_condition(self.relative(TimeComparison.BEFORE, 7), info)
        assert engine.check_condition(self.relative(TimeComparison.BEFORE, 10), info)
        assert not engine.check_condition(self.relative(TimeComparison.BEFORE, 11), info)

    def test_relative_after_means_younger_than_n_days(self, engine_factory):
        engine = engine_factory()
        info = make_info("new.log", modified=NOW - timedelta(days=10, hours=5))

        assert engine.check_condition(self.relative(TimeComparison.AFTER, 11), info)
        assert not engine.check_condition(self.relative(TimeComparison.AFTER, 10), info)

    def test_relative_before_zero_accepts_clock_skew(self, engine_factory):
        engine = engine_factory()
        info = make_info("skewed.log", modified=NOW + timedelta(seconds=5))

        assert engine.check_condition(self.relative(TimeComparison.BEFORE, 0), info)
        assert not engine.check_condition(self.relative(TimeComparison.AFTER, 0), info)

    def test_absolute_fraction_digits(self, engine_factory):
        engine = engine_factory()
        info = make_info("a.log", modified=datetime(2024, 6, 1, 0, 0, 0, 200000, tzinfo=timezone.utc))

        assert engine.check_condition(self.absolute(TimeComparison.AFTER, "2024-06-01T00:00:00.1Z"), info)

    def test_absolute_comparisons_are_strict(self, engine_factory):
        engine = engine_factory()
        info = make_info("a.log", modified=datetime(2024, 6, 1, tzinfo=timezone.utc))

        assert engine.check_condition(self.absolute(TimeComparison.AFTER, "2024-05-31T23:59:59Z"), info)
        assert not engine.check_condition(self.absolute(TimeComparison.AFTER, "2024-06-01T00:00:00Z"), info)
        assert not engine.check_condition(self.absolute(TimeComparison.BEFORE, "2024-06-01T00:00:00Z"), info)
        assert engine.check_condition(self.absolute(TimeComparison.BEFORE, "2024-06-01T00:00:01+00:00"), info)

    def test_absolute_naive_value_is_utc(self, engine_factory):
        engine = engine_factory()
        info = make_info("a.log", modified=datetime(2024, 6, 1, 12, tzinfo=timezone.utc))

        assert engine.check_condition(self.absolute(TimeComparison.AFTER, "2024-06-01T11:00:00"), info)

    def test_unparsable_datetime_is_false(self, engine_factory):
        engine = engine_factory()
        info = make_info("a.log", modified=NOW)

        assert not engine.check_condition(self.absolute(TimeComparison.BEFORE, "yesterday"), info)

    def test_missing_timestamp_is_false(self, engine_factory):
        engine = engine_factory()
        info = make_info("a.log", modified=NOW, created=None)

        assert not engine.check_condition(self.relative(TimeComparison.BEFORE, 0, CreatedTimeCondition), info)

    def test_missing_days_is_false(self, engine_factory):
        engine = engine_factory()
        info = make_info("a.log", modified=NOW - timedelta(days=3))

        assert not engine.check_condition(self.relative(TimeComparison.BEFORE, None), info)

    def test_legacy_days_ago_range(self, engine_factory):
        engine = engine_factory()
        info = make_info("a.log", modified=NOW - timedelta(days=5, hours=3))

        assert engine.check_condition(ModifiedDaysAgoCondition(min=5, max=5), info)
        assert engine.check_condition(ModifiedDaysAgoCondition(min=1), info)
        assert not engine.check_condition(ModifiedDaysAgoCondition(max=4), info)


class TestRegexCaptures:
    """Test regex capture propagation into destinations."""

    def test_captures_fill_destination_template(self, engine_factory):
        rule = make_rule(
            "archive",
            [NameRegexCondition(r"^(\d+)-(.+)\.txt$")],
            action=MoveToAction("Archive/$1/${2}"),
        )
        engine = engine_factory(rule)
        info = make_info("42-report.txt")

        match = engine.find_matching_rule(info)
        destination = engine.get_destination_path(rule.action, info, WATCH, match.regex_captures)

        assert match.regex_captures == ("42", "report")
        assert Path(destination) == WATCH / "Archive" / "42" / "report"

    def test_unmatched_optional_group_is_empty(self, engine_factory):
        rule = make_rule("opt", [NameRegexCondition(r"^(a)?(b)")])
        engine = engine_factory(rule)

        assert engine.find_matching_rule(make_info("b.txt")).regex_captures == ("", "b")

    def test_captures_accumulate_in_condition_order(self, engine_factory):
        rule = make_rule("two", [NameRegexCondition(r"^(\w+)_"), NameRegexCondition(r"_(\d+)\.")])
        engine = engine_factory(rule)

        assert engine.find_matching_rule(make_info("scan_007.pdf")).regex_captures == ("scan", "007")

    def test_out_of_range_capture_is_empty(self, engine_factory):
        engine = engine_factory()
        info = make_info("a.txt")

        assert engine.expand_template("X/$3/${1}", info, ("one",)) == "X//one"


class TestDestinations:
    """Test destination template resolution."""

    def test_relative_destination_joins_base(self, engine_factory):
        engine = engine_factory()
        info = make_info("a.png")

        destination = engine.get_destination_path(MoveToAction("Pictures"), info, WATCH)

        assert Path(destination) == WATCH / "Pictures"

    def test_absolute_destination_is_verbatim(self, engine_factory, tmp_path):
        engine = engine_factory()
        target = tmp_path / "Elsewhere"

        destination = engine.get_destination_path(CopyToAction(str(target)), make_info("a.png"), WATCH)

        assert Path(destination) == target

    def test_recycle_sentinel(self, engine_factory):
        engine = engine_factory()

        assert engine.get_destination_path(MoveToAction("{recycle}"), make_info("a"), WATCH) == RECYCLE_SENTINEL

    def test_delete_has_no_destination(self, engine_factory):
        assert engine_factory().get_destination_path(DeleteAction(), make_info("a"), WATCH) is None

    def test_rename_resolves_next_to_file(self, engine_factory, tmp_path):
        engine = engine_factory()
        info = make_info("report.txt")

        destination = engine.get_destination_path(RenameAction("{name}_done.{ext}"), info, tmp_path)

        assert Path(destination) == WATCH / "report_done.txt"

    def test_date_placeholders_use_local_modified_date(self, engine_factory):
        engine = engine_factory()
        modified = datetime(2023, 3, 5, 12, 0).astimezone()
        info = make_info("a.jpg", modified=modified)

        assert engine.expand_template("{year}/{month}/{day}", info) == "2023/03/05"

    def test_date_placeholders_fall_back_to_clock(self, engine_factory):
        engine = engine_factory()
        info = make_info("a.jpg")
        local = NOW.astimezone()

        assert engine.expand_template("{year}-{month}", info) == f"{local.year:04d}-{local.month:02d}"


class TestValidation:
    """Test rule validation reporting."""

    def test_reports_problems(self, engine_factory):
        engine = engine_factory(
            make_rule("dup", [ExtensionCondition(("a",))]),
            make_rule("dup", [NameRegexCondition("(")]),
            make_rule("empty", []),
            make_rule("when", [ModifiedTimeCondition(time_type=TimeType.ABSOLUTE, datetime="soon")]),
        )

        errors = engine.validate()

        assert any("Duplicate rule id: dup" in e for e in errors)
        assert any("invalid regex" in e for e in errors)
        assert any("no conditions" in e for e in errors)
        assert any("invalid datetime" in e for e in errors)

    def test_valid_rules_have_no_problems(self, engine_factory):
        engine = engine_factory(make_rule("ok", [ExtensionCondition(("txt",))]))

        assert engine.validate() == []


class TestHelpers:
    def test_parse_rfc3339(self):
        assert parse_rfc3339("2024-01-02T03:04:05Z") == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert parse_rfc3339("2024-01-02T05:04:05+02:00") == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert parse_rfc3339("not a date") is None

    def test_age_in_days_truncates(self):
        assert age_in_days(NOW - timedelta(days=2, hours=23), NOW) == 2
        assert age_in_days(NOW - timedelta(hours=1), NOW) == 0
        assert age_in_days(NOW + timedelta(seconds=5), NOW) == 0
        assert age_in_days(NOW + timedelta(days=1, hours=2), NOW) == -1

    def test_parse_rfc3339_fraction_lengths(self):
        expected = datetime(2024, 1, 2, 3, 4, 5, 100000, tzinfo=timezone.utc)

        assert parse_rfc3339("2024-01-02T03:04:05.1Z") == expected
        assert parse_rfc3339("2024-01-02T03:04:05.10000Z") == expected
        assert parse_rfc3339("2024-01-02T03:04:05.100000123Z") == expected
        assert parse_rfc3339("2024-01-02T05:04:05.1+02:00") == expected

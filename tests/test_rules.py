import pytest

from falcorules.rules import (
    FalcoList,
    FalcoMacro,
    FalcoRule,
    Priority,
    format_priority,
    parse_priority,
)


@pytest.mark.parametrize("priority", list(Priority))
@pytest.mark.parametrize("short", [True, False])
def test_format_parse_round_trip(priority, short):
    assert parse_priority(format_priority(priority, short)) == priority


def test_parse_is_case_insensitive():
    assert parse_priority("INFO") == Priority.INFORMATIONAL
    assert parse_priority("warning") == Priority.WARNING
    assert parse_priority("CRITICAL") == Priority.CRITICAL


def test_format_warning():
    assert format_priority(Priority.WARNING) == "Warning"


def test_short_and_long_names_differ_only_for_informational():
    differing = [p for p in Priority if format_priority(p, True) != format_priority(p, False)]
    assert differing == [Priority.INFORMATIONAL]


@pytest.mark.parametrize("text", ["", "loud", "warn ing"])
def test_parse_rejects_unknown(text):
    with pytest.raises(ValueError):
        parse_priority(text)


def test_parsed_priorities_are_ordered_by_severity():
    emergency = parse_priority("EMERGENCY")
    warning = parse_priority("WARNING")
    debug = parse_priority("DEBUG")
    assert emergency < warning < debug


def test_rule_defaults():
    rule = FalcoRule()
    assert rule.priority == Priority.DEBUG
    assert rule.id == 0
    assert rule.tags == set()


def test_list_and_macro_defaults_are_unused():
    assert FalcoList().used is False
    assert FalcoMacro().used is False
    assert FalcoList().items == []


def test_rule_collections_are_not_shared():
    a, b = FalcoRule(), FalcoRule()
    a.tags.add("x")
    assert b.tags == set()
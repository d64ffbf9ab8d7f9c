import pytest

from falcorules.loader_types import Collector, Configuration, LoadResult
from falcorules.reader import Reader, read_rules
from falcorules.rules import Priority, format_priority


def _load(content, name="rules.yaml"):
    cfg = Configuration(content=content, name=name)
    collector = Collector()
    ok = Reader().read(cfg, collector)
    return ok, cfg.result, collector


def test_list_append():
    content = """
- list: shell_binaries
  items: [ash, bash, csh, ksh, sh, tcsh, zsh, dash]

- rule: legit_rule
  desc: legit rule description
  condition: evt.type=open and proc.name in (shell_binaries)
  output: user=%user.name command=%proc.cmdline file=%fd.name
  priority: INFO

- list: shell_binaries
  items: [pwsh]
  override:
    items: append
"""
    ok, result, collector = _load(content, "legit_rules.yaml")
    assert ok, result.errors
    assert collector.lists["shell_binaries"].items == [
        "ash", "bash", "csh", "ksh", "sh", "tcsh", "zsh", "dash", "pwsh"]


def test_condition_append():
    content = """
- macro: interactive
  condition: >
    ((proc.aname=sshd and proc.name != sshd) or
    proc.name=systemd-logind or proc.name=login)

- rule: legit_rule
  desc: legit rule description
  condition: evt.type=open and interactive
  output: user=%user.name command=%proc.cmdline file=%fd.name
  priority: INFO

- macro: interactive
  condition: or proc.name = ssh
  override:
    condition: append
"""
    ok, result, collector = _load(content, "legit_rules.yaml")
    assert ok, result.errors
    cond = " ".join(collector.macros["interactive"].cond.split())
    assert cond == ("((proc.aname=sshd and proc.name != sshd) or "
                    "proc.name=systemd-logind or proc.name=login) or proc.name = ssh")


def test_rule_override_append():
    content = """
- rule: legit_rule
  desc: legit rule description
  condition: evt.type=open
  output: user=%user.name command=%proc.cmdline file=%fd.name
  priority: INFO

- rule: legit_rule
  desc: with append
  condition: and proc.name = cat
  output: proc=%proc.name
  override:
    desc: append
    condition: append
    output: append
"""
    ok, result, collector = _load(content, "legit_rules.yaml")
    assert ok, result.errors
    rule = collector.rules["legit_rule"]
    assert rule.cond == "evt.type=open and proc.name = cat"
    assert rule.output == "user=%user.name command=%proc.cmdline file=%fd.name proc=%proc.name"
    assert rule.desc == "legit rule description with append"


def test_rule_append():
    content = """
- rule: legit_rule
  desc: legit rule description
  condition: evt.type=open
  output: user=%user.name command=%proc.cmdline file=%fd.name
  priority: INFO

- rule: legit_rule
  condition: and proc.name = cat
  append: true
"""
    ok, result, collector = _load(content, "legit_rules.yaml")
    assert ok, result.errors
    assert collector.rules["legit_rule"].cond == "evt.type=open and proc.name = cat"


def test_rule_override_replace():
    content = """
- rule: legit_rule
  desc: legit rule description
  condition: evt.type=open
  output: user=%user.name command=%proc.cmdline file=%fd.name
  priority: INFO

- rule: legit_rule
  desc: a replaced legit description
  condition: evt.type = close
  override:
    desc: replace
    condition: replace
"""
    ok, result, collector = _load(content, "legit_rules.yaml")
    assert ok, result.errors
    rule = collector.rules["legit_rule"]
    assert rule.cond == "evt.type = close"
    assert rule.output == "user=%user.name command=%proc.cmdline file=%fd.name"
    assert rule.desc == "a replaced legit description"


def test_rule_override_append_replace():
    content = """
- rule: legit_rule
  desc: legit rule description
  condition: evt.type = close
  output: user=%user.name command=%proc.cmdline file=%fd.name
  priority: INFO

- rule: legit_rule
  desc: a replaced legit description
  condition: and proc.name = cat
  priority: WARNING
  override:
    desc: replace
    condition: append
    priority: replace
"""
    ok, result, collector = _load(content, "legit_rules.yaml")
    assert ok, result.errors
    rule = collector.rules["legit_rule"]
    assert rule.cond == "evt.type = close and proc.name = cat"
    assert rule.output == "user=%user.name command=%proc.cmdline file=%fd.name"
    assert rule.desc == "a replaced legit description"
    assert rule.priority == Priority.WARNING
    assert format_priority(rule.priority) == "Warning"


def test_rule_incorrect_override_type():
    content = """
- rule: failing_rule
  desc: legit rule description
  condition: evt.type = close
  output: user=%user.name command=%proc.cmdline file=%fd.name
  priority: INFO

- rule: failing_rule
  desc: an appended incorrect field
  condition: and proc.name = cat
  priority: WARNING
  override:
    desc: replace
    condition: append
    priority: append
"""
    ok, result, _ = _load(content)
    assert not ok
    err = result.errors[0]
    assert err.message == "Key 'priority' cannot be appended to, use 'replace' instead"
    assert "priority: append" in err.context.snippet(content)


def test_rule_incorrect_append_override():
    content = """
- rule: failing_rule
  desc: legit rule description
  condition: evt.type = close
  output: user=%user.name command=%proc.cmdline file=%fd.name
  priority: INFO

- rule: failing_rule
  desc: an appended incorrect field
  condition: and proc.name = cat
  append: true
  override:
    desc: replace
    condition: append
"""
    ok, result, _ = _load(content)
    assert not ok
    assert "'override' and 'append: true' cannot be used together" in result.errors[0].message


def test_rule_override_without_rule():
    content = """
- rule: failing_rule
  desc: an appended field
  condition: and proc.name = cat
  override:
    desc: replace
    condition: append
"""
    ok, result, _ = _load(content)
    assert not ok
    assert "no rule by that name already exists" in result.errors[0].message


def test_rule_override_without_field():
    content = """
- rule: failing_rule
  desc: legit rule description
  condition: evt.type = close
  output: user=%user.name command=%proc.cmdline file=%fd.name
  priority: INFO

- rule: failing_rule
  desc: an appended incorrect field
  override:
    desc: replace
    condition: append
"""
    ok, result, _ = _load(content)
    assert not ok
    assert result.errors[0].message == (
        "An append override for 'condition' was specified but 'condition' is not defined")


def test_rule_override_extra_field():
    content = """
- rule: failing_rule
  desc: legit rule description
  condition: evt.type = close
  output: user=%user.name command=%proc.cmdline file=%fd.name
  priority: INFO

- rule: failing_rule
  desc: an appended incorrect field
  condition: and proc.name = cat
  priority: WARNING
  override:
    desc: replace
    condition: append
"""
    ok, result, _ = _load(content)
    assert not ok
    assert "Unexpected key 'priority'" in result.errors[0].message


def test_rule_definition_defaults():
    content = """
- rule: r
  desc: d
  condition: evt.type=open
  output: '  hello  '
  priority: INFO
  tags: [a, b, a]
"""
    ok, result, collector = _load(content)
    assert ok, result.errors
    rule = collector.rules["r"]
    assert rule.output == "hello"
    assert rule.source == "syscall"
    assert rule.priority == Priority.INFORMATIONAL
    assert rule.enabled is True
    assert rule.warn_evttypes is True
    assert rule.skip_if_unknown_filter is False
    assert rule.tags == {"a", "b"}


def test_rule_optional_flags_and_source():
    content = """
- rule: r
  desc: d
  condition: c
  output: o
  priority: ERROR
  source: k8s_audit
  enabled: false
  warn_evttypes: false
  skip-if-unknown-filter: true
"""
    ok, _, collector = _load(content)
    rule = collector.rules["r"]
    assert ok
    assert (rule.source, rule.enabled, rule.warn_evttypes, rule.skip_if_unknown_filter) == (
        "k8s_audit", False, False, True)


def test_enabled_only_item_changes_existing_rule():
    content = """
- rule: r
  desc: d
  condition: c
  output: o
  priority: INFO
- rule: r
  enabled: false
"""
    ok, _, collector = _load(content)
    assert ok
    assert collector.rules["r"].enabled is False


def test_rule_exceptions_are_read():
    content = """
- rule: r
  desc: d
  condition: c
  output: o
  priority: INFO
  exceptions:
    - name: ex1
      fields: [proc.name, fd.name]
      comps: [=, startswith]
      values:
        - [cat, /etc]
"""
    ok, result, collector = _load(content)
    assert ok, result.errors
    ex = collector.rules["r"].exceptions[0]
    assert ex.name == "ex1"
    assert [e.item for e in ex.fields.items] == ["proc.name", "fd.name"]
    assert [e.item for e in ex.comps.items] == ["=", "startswith"]
    assert [e.item for e in ex.values[0].items] == ["cat", "/etc"]


def test_invalid_priority():
    content = """
- rule: r
  desc: d
  condition: c
  output: o
  priority: BOGUS
"""
    ok, result, _ = _load(content)
    assert not ok
    assert result.errors[0].message == "Invalid priority"
    assert result.errors[0].code == LoadResult.ErrorCode.YAML_VALIDATE


def test_missing_required_key():
    content = """
- rule: r
  desc: d
  condition: c
  priority: INFO
"""
    ok, result, _ = _load(content)
    assert not ok
    assert result.errors[0].message == "Item has no mapping for key 'output'"


def test_list_append_flag():
    content = """
- list: l
  items: [a]
- list: l
  items: [b]
  append: true
"""
    ok, _, collector = _load(content)
    assert ok
    assert collector.lists["l"].items == ["a", "b"]


def test_list_redefinition_replaces():
    content = """
- list: l
  items: [a]
- list: l
  items: [b]
"""
    ok, _, collector = _load(content)
    assert ok
    assert collector.lists["l"].items == ["b"]


def test_macro_override_and_append_flag_rejected():
    content = """
- macro: m
  condition: a
- macro: m
  condition: b
  append: true
  override:
    condition: append
"""
    ok, result, _ = _load(content)
    assert not ok
    assert result.errors[0].message == "Keys 'override' and 'append: true' cannot be used together."


def test_required_engine_version_integer():
    ok, _, collector = _load("- required_engine_version: 10\n")
    assert ok
    assert str(collector.required_engine_version.version) == "0.10.0"


def test_required_engine_version_semver():
    ok, _, collector = _load("- required_engine_version: 0.31.0\n")
    assert ok
    assert str(collector.required_engine_version.version) == "0.31.0"


def test_required_engine_version_invalid():
    ok, result, _ = _load("- required_engine_version: abc\n")
    assert not ok
    assert result.errors[0].message.startswith("Unable to parse engine version 'abc'")


def test_required_engine_version_too_new():
    ok, result, _ = _load("- required_engine_version: 0.99.0\n")
    assert not ok
    assert "Rules require engine version 0.99.0" in result.errors[0].message


def test_required_plugin_versions_with_alternatives():
    content = """
- required_plugin_versions:
  - name: k8saudit
    version: 0.1.0
    alternatives:
      - name: k8saudit-other
        version: 0.4.0
  - name: json
    version: 0.3.0
"""
    ok, result, collector = _load(content)
    assert ok, result.errors
    reqs = collector.required_plugin_versions
    assert [(r.name, r.version) for r in reqs[0].alternatives] == [
        ("k8saudit", "0.1.0"), ("k8saudit-other", "0.4.0")]
    assert [(r.name, r.version) for r in reqs[1].alternatives] == [("json", "0.3.0")]


def test_required_plugin_versions_not_sequence():
    ok, result, _ = _load("- required_plugin_versions: k8saudit\n")
    assert not ok
    assert result.errors[0].message == "Value of required_plugin_versions must be a sequence"


def test_unknown_item_is_a_warning():
    ok, result, _ = _load("- foo: bar\n")
    assert ok
    assert result.warnings[0].code == LoadResult.WarningCode.UNKNOWN_ITEM
    assert result.warnings[0].message == "Unknown top level item"


def test_yaml_parse_error():
    ok, result, _ = _load("- rule: [unclosed\n")
    assert not ok
    assert result.errors[0].code == LoadResult.ErrorCode.YAML_PARSE


@pytest.mark.parametrize("content, message", [
    ("rule: x\n", "Rules content is not yaml array of objects"),
    ("hello\n", "Rules content is not yaml"),
    ("- just a string\n",
     "Unexpected element type. Each element should be a yaml associative array."),
])
def test_invalid_document_shapes(content, message):
    ok, result, _ = _load(content)
    assert not ok
    assert result.errors[0].message == message


def test_empty_content_and_null_items():
    ok, result, collector = _load("")
    assert ok and not result.errors
    ok, _, collector = _load("-\n- list: l\n  items: [a]\n")
    assert ok
    assert collector.lists["l"].items == ["a"]


def test_multiple_documents():
    content = "- list: a\n  items: [x]\n---\n- list: b\n  items: [y]\n"
    ok, _, collector = _load(content)
    assert ok
    assert sorted(collector.lists) == ["a", "b"]


def test_read_rules_returns_result():
    collector = Collector()
    result = read_rules("- macro: m\n  condition: evt.type=open\n", "m.yaml", collector)
    assert result.successful()
    assert collector.macros["m"].cond == "evt.type=open"
    failed = read_rules("- macro: m\n", "m.yaml", Collector())
    assert not failed.successful()
    assert failed.errors[0].context.filename == "m.yaml"
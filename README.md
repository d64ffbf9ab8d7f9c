# falcorules

`falcorules` reads and validates YAML rules files for runtime-security detection. It
also provides the runtime pieces that surround such rules: priorities, rulesets of
enabled rules, per-rule match statistics and a thread-safe signal handler.

## Installation

```
pip install falcorules
```

To run the test suite:

```
pip install "falcorules[test]"
pytest
```

## Reading a rules file

A rules file is a YAML sequence of items. Each item is a `list`, `macro`, `rule`,
`required_engine_version` or `required_plugin_versions` entry.
`falcorules.reader.read_rules(content, name, collector)` parses the content and passes
every definition to a `falcorules.loader_types.Collector`. It returns a `LoadResult`.
Problems are recorded in that result and are not raised.

```python
from falcorules.loader_types import Collector
from falcorules.reader import read_rules

content = """
- list: shell_binaries
  items: [ash, bash, sh]

- rule: shell_spawned
  desc: a shell was spawned
  condition: evt.type=execve and proc.name in (shell_binaries)
  output: shell started (command=%proc.cmdline)
  priority: WARNING
"""

collector = Collector()
result = read_rules(content, "my_rules.yaml", collector)
if result.successful():
    print(collector.lists["shell_binaries"].items)   # ['ash', 'bash', 'sh']
    print(collector.rules["shell_spawned"].priority)  # Priority.WARNING
else:
    for error in result.errors:
        print(error.message)
        print(error.context)                 # file, line and column of the offending item
        print(error.context.snippet(content))
```

Reading stops at the first error. Items the reader does not recognise are recorded as
warnings in `result.warnings`. For finer control, use `Reader().read(cfg, collector)` with
a `Configuration(content=..., name=...)`. Its findings go to `cfg.result`.

The `Collector` keeps what was read:

- `lists`, `macros` and `rules` map names to `ListInfo`, `MacroInfo` and `RuleInfo`.
- `required_plugin_versions` is a list of `PluginVersionInfo`. Each one holds a
  requirement and its alternatives.
- `required_engine_version` holds the highest version required. The load fails if a file
  needs a newer engine version than `falcorules.version.ENGINE_VERSION`.

A rule can be changed after it is first defined, in two ways:

- `append: true` adds the entry's condition and exceptions to the earlier rule.
- An `override:` mapping marks each named key `append` or `replace`. `condition`, `output`,
  `desc`, `tags` and `exceptions` can be appended. Those keys, and also `priority`,
  `enabled`, `warn_evttypes` and `skip-if-unknown-filter`, can be replaced.

Lists and macros accept `append: true`, or `override` with `items: append` or
`condition: append`. An entry that has only `rule` and `enabled` sets the enabled status
of an earlier rule.

The reader rejects the following:

- `override` used together with `append: true`;
- an override for a key the entry does not define;
- a key that is defined but has no entry under `override`;
- appending to or replacing a rule, list or macro that does not exist yet.

## Priorities and versions

```python
from falcorules.rules import Priority, parse_priority, format_priority
from falcorules.version import engine_version, implicit_engine_version, parse_version

parse_priority("warning")                  # Priority.WARNING (names are case-insensitive)
format_priority(Priority.INFORMATIONAL)    # "Informational"
format_priority(Priority.INFORMATIONAL, True)  # "Info"
engine_version()                           # Version(major=0, minor=31, patch=0)
implicit_engine_version(17)                # a legacy integer becomes the minor number: 0.17.0
parse_version("0.26.1")                    # raises ValueError for strings that are not semver
```

## Rulesets

`falcorules.sources.FilterRuleset` holds rules and enables or disables them for each
ruleset id, by name (substring or exact match) or by tag. A rule's filter is any callable
that takes an event and returns whether the event matches. Event types named in a string
condition (`evt.type=...`, `evt.type in (...)`) are indexed. Events then go only to rules
that can match their `type`.

```python
from falcorules.rules import FalcoRule
from falcorules.sources import FilterRuleset

ruleset = FilterRuleset()
rule = FalcoRule(name="shell_spawned", tags={"process"})
ruleset.add(rule, lambda evt: evt.get("proc") == "bash", "evt.type=execve")
ruleset.enable("shell", False, 0)
ruleset.on_loading_complete()

ruleset.enabled_count(0)                         # 1
ruleset.enabled_event_types(0)                   # {'execve'}
ruleset.run({"type": "execve", "proc": "bash"})  # the matching FalcoRule
ruleset.run_all({"type": "open", "proc": "bash"})  # []
```

`RulesetFactory` creates new empty rulesets. `FalcoSource` groups a source name with its
ruleset and factories. `FalcoSource.is_field_defined` asks the source's filter factory
whether it knows a field.

## Statistics

```python
from falcorules.rules import FalcoRule, Priority
from falcorules.stats import StatsManager

stats = StatsManager()
rule = FalcoRule(id=0, name="shell_spawned", priority=Priority.WARNING)
stats.on_rule_loaded(rule)   # required before on_event, otherwise ValueError
stats.on_event(rule)
print(stats.format([rule]))
# Events detected: 1
# Rule counts by severity:
#    WARNING: 1
# Triggered rules by rule name:
#    shell_spawned: 1
```

`on_event` is safe to call from many threads at once.

## Signal handling

`falcorules.signals.AtomicSignalHandler` lets many threads react once to a signal that has
been triggered:

```python
from falcorules.signals import AtomicSignalHandler

handler = AtomicSignalHandler()
handler.trigger()
handler.handle(lambda: print("reopening outputs"))   # True: the action ran
handler.handle(lambda: print("never printed"))       # False until the next trigger()
handler.reset()                                      # back to not triggered, not handled
```

Callers that arrive while the action is running wait for it to finish. If the action
raises, it still counts as handled, and the exception propagates.

## What this package does not do

- It does not parse or compile rule conditions into filters.
- It does not expand macros or lists inside conditions.
- It does not format rule outputs.
- It does not capture system events.
- It does not check `required_plugin_versions` against installed plugins; it only records
  them.
- It has no command-line program and no daemon.

Filters for `FilterRuleset` are plain callables that you supply.
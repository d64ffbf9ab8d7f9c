"""Reading of rules files into a collector of lists, macros and rules."""

from __future__ import annotations

from typing import NoReturn

import yaml
from yaml.nodes import MappingNode, Node, ScalarNode, SequenceNode

from .decoding import (
    decode_items,
    decode_overrides,
    decode_tags,
    decode_value,
    read_rule_exceptions,
)
from .loader_types import (
    Collector,
    Configuration,
    Context,
    EngineVersionInfo,
    ItemKind,
    ListInfo,
    LoadResult,
    MacroInfo,
    PluginRequirement,
    PluginVersionInfo,
    RuleInfo,
    RuleLoadError,
    RuleUpdateInfo,
)
from .rules import parse_priority
from .version import implicit_engine_version, parse_version

SYSCALL_SOURCE = "syscall"

_NULL_TAG = "tag:yaml.org,2002:null"

_RULE_APPENDABLE = frozenset({"condition", "output", "desc", "tags", "exceptions"})
_RULE_REPLACEABLE = frozenset({
    "condition", "output", "desc", "priority", "tags", "exceptions",
    "enabled", "warn_evttypes", "skip-if-unknown-filter",
})
# The order in which overridden properties are checked and decoded.
_RULE_OVERRIDE_ORDER = (
    "condition", "exceptions", "output", "desc", "tags",
    "priority", "enabled", "warn_evttypes", "skip-if-unknown-filter",
)

_OVERRIDE_WITH_APPEND = "Keys 'override' and 'append: true' cannot be used together."


def _fail(message: str, ctx: Context) -> NoReturn:
    raise RuleLoadError(LoadResult.ErrorCode.YAML_VALIDATE, message, ctx)


def _is_null(node: Node | None) -> bool:
    return isinstance(node, ScalarNode) and node.tag == _NULL_TAG


def _get(item: Node, key: str) -> Node | None:
    """The value node for ``key`` in a mapping node, or None when absent."""
    if not isinstance(item, MappingNode):
        return None
    for key_node, value_node in item.value:
        if isinstance(key_node, ScalarNode) and key_node.value == key:
            return value_node
    return None


def _has(item: Node, key: str) -> bool:
    return _get(item, key) is not None


def _decode_priority(item: Node, ctx: Context):
    text = decode_value(item, "priority", ctx)
    prictx = Context.for_node(_get(item, "priority"), ItemKind.RULE_PRIORITY, "", ctx)
    try:
        return parse_priority(text)
    except ValueError:
        _fail("Invalid priority", prictx)


class Reader:
    """Reads the contents of a rules file and stores its definitions in a collector."""

    def read(self, cfg: Configuration, collector: Collector) -> bool:
        """Read ``cfg.content``; record findings in ``cfg.result``; return success."""
        ctx = Context.root(cfg.name)
        try:
            docs = list(yaml.compose_all(cfg.content, Loader=yaml.SafeLoader))
        except yaml.MarkedYAMLError as exc:
            mark = exc.problem_mark or exc.context_mark
            cfg.result.add_error(LoadResult.ErrorCode.YAML_PARSE, str(exc),
                                 Context.for_mark(mark, ctx))
            return False
        except Exception as exc:
            cfg.result.add_error(LoadResult.ErrorCode.YAML_PARSE,
                                 str(exc) or "unknown YAML parsing error", ctx)
            return False

        for doc in docs:
            if doc is None or _is_null(doc):
                continue
            try:
                if not isinstance(doc, (MappingNode, SequenceNode)):
                    _fail("Rules content is not yaml", ctx)
                if not isinstance(doc, SequenceNode):
                    _fail("Rules content is not yaml array of objects", ctx)
                for item in doc.value:
                    if not _is_null(item):
                        self._read_item(cfg, collector, item, ctx)
            except RuleLoadError as exc:
                # Stop at the first error, even though later documents could be read.
                cfg.result.add_error(exc.code, exc.message, exc.context)
                return False
            except yaml.MarkedYAMLError as exc:
                cfg.result.add_error(LoadResult.ErrorCode.YAML_VALIDATE, str(exc),
                                     Context.for_mark(exc.problem_mark, ctx))
                return False
            except Exception as exc:
                cfg.result.add_error(LoadResult.ErrorCode.VALIDATE,
                                     str(exc) or "unknown validation error", ctx)
                return False
        return True

    def _read_item(self, cfg: Configuration, collector: Collector,
                   item: Node, parent: Context) -> None:
        tmp = Context.for_node(item, ItemKind.RULES_CONTENT_ITEM, "", parent)
        if not isinstance(item, MappingNode):
            _fail("Unexpected element type. Each element should be a yaml associative array.", tmp)

        if _has(item, "required_engine_version"):
            self._read_engine_version(cfg, collector, item, parent)
        elif _has(item, "required_plugin_versions"):
            self._read_plugin_versions(cfg, collector, item, parent)
        elif _has(item, "list"):
            self._read_list(cfg, collector, item, parent)
        elif _has(item, "macro"):
            self._read_macro(cfg, collector, item, parent)
        elif _has(item, "rule"):
            self._read_rule(cfg, collector, item, parent)
        else:
            cfg.result.add_warning(LoadResult.WarningCode.UNKNOWN_ITEM,
                                   "Unknown top level item", tmp)

    def _read_engine_version(self, cfg, collector, item, parent) -> None:
        ctx = Context.for_node(item, ItemKind.REQUIRED_ENGINE_VERSION, "", parent)
        key = "required_engine_version"
        try:
            # an unsigned integer is the legacy form, holding the minor number
            version = implicit_engine_version(decode_value(item, key, ctx, int))
        except (RuleLoadError, ValueError, TypeError):
            text = decode_value(item, key, ctx, str)
            try:
                version = parse_version(text)
            except ValueError:
                _fail(f"Unable to parse engine version '{text}' as a semver string. "
                      'Expected "x.y.z" semver format.', ctx)
        collector.define(cfg, EngineVersionInfo(ctx=ctx, version=version))

    def _read_plugin_versions(self, cfg, collector, item, parent) -> None:
        req_vers = _get(item, "required_plugin_versions")
        ctx = Context.for_node(req_vers, ItemKind.REQUIRED_PLUGIN_VERSIONS, "", parent)
        if not isinstance(req_vers, SequenceNode):
            _fail("Value of required_plugin_versions must be a sequence", ctx)

        for plugin in req_vers.value:
            tmp = Context.for_node(plugin, ItemKind.REQUIRED_PLUGIN_VERSIONS_ENTRY, "", ctx)
            if not isinstance(plugin, MappingNode):
                _fail("Plugin version must be a mapping", tmp)
            name = decode_value(plugin, "name", tmp)
            pctx = Context.for_node(plugin, ItemKind.REQUIRED_PLUGIN_VERSIONS_ENTRY, name, ctx)
            info = PluginVersionInfo(ctx=pctx)
            info.alternatives.append(
                PluginRequirement(name, decode_value(plugin, "version", pctx)))

            alternatives = _get(plugin, "alternatives")
            if alternatives is not None:
                if not isinstance(alternatives, SequenceNode):
                    _fail("Value of plugin version alternatives must be a sequence", pctx)
                for req in alternatives.value:
                    atmp = Context.for_node(
                        req, ItemKind.REQUIRED_PLUGIN_VERSIONS_ALTERNATIVE, "", pctx)
                    if not isinstance(req, MappingNode):
                        _fail("Plugin version alternative must be a mapping", atmp)
                    alt_name = decode_value(req, "name", atmp)
                    actx = Context.for_node(
                        req, ItemKind.REQUIRED_PLUGIN_VERSIONS_ALTERNATIVE, alt_name, pctx)
                    info.alternatives.append(
                        PluginRequirement(alt_name, decode_value(req, "version", actx)))
            collector.define(cfg, info)

    def _read_list(self, cfg, collector, item, parent) -> None:
        tmp = Context.for_node(item, ItemKind.LIST, "", parent)
        name = decode_value(item, "list", tmp)
        ctx = Context.for_node(item, ItemKind.LIST, name, parent)
        info = ListInfo(ctx=ctx, name=name, items=decode_items(item, ctx))

        append = bool(decode_value(item, "append", ctx, bool, True))
        override_append, override_replace = decode_overrides(item, {"items"}, {"items"}, ctx)
        if append and (override_append or override_replace):
            _fail(_OVERRIDE_WITH_APPEND, ctx)

        # A list only has items, so appending them appends the whole list.
        if append or "items" in override_append:
            collector.append(cfg, info)
        else:
            collector.define(cfg, info)

    def _read_macro(self, cfg, collector, item, parent) -> None:
        tmp = Context.for_node(item, ItemKind.MACRO, "", parent)
        name = decode_value(item, "macro", tmp)
        ctx = Context.for_node(item, ItemKind.MACRO, name, parent)
        info = MacroInfo(ctx=ctx, name=name, cond=decode_value(item, "condition", ctx))
        info.cond_ctx = Context.for_node(_get(item, "condition"),
                                         ItemKind.MACRO_CONDITION, "", ctx)

        append = bool(decode_value(item, "append", ctx, bool, True))
        override_append, override_replace = decode_overrides(
            item, {"condition"}, {"condition"}, ctx)
        if append and (override_append or override_replace):
            _fail(_OVERRIDE_WITH_APPEND, ctx)

        if append or "condition" in override_append:
            collector.append(cfg, info)
        else:
            collector.define(cfg, info)

    def _read_rule(self, cfg, collector, item, parent) -> None:
        tmp = Context.for_node(item, ItemKind.RULE, "", parent)
        name = decode_value(item, "rule", tmp)
        ctx = Context.for_node(item, ItemKind.RULE, name, parent)

        has_append_flag = bool(decode_value(item, "append", ctx, bool, True))
        override_append, override_replace = decode_overrides(
            item, _RULE_APPENDABLE, _RULE_REPLACEABLE, ctx)
        has_overrides = bool(override_append or override_replace)

        if has_append_flag and has_overrides:
            _fail("Keys 'override' and 'append: true' cannot be used together. "
                  "Add an append entry (e.g. 'condition: append') under override instead.", ctx)

        if has_overrides:
            self._read_rule_overrides(cfg, collector, item, ctx, name,
                                      override_append, override_replace)
        elif has_append_flag:
            update = RuleUpdateInfo(ctx=ctx, name=name)
            if _has(item, "condition"):
                update.cond_ctx = Context.for_node(_get(item, "condition"),
                                                   ItemKind.RULE_CONDITION, "", ctx)
                update.cond = decode_value(item, "condition", ctx)
            if _has(item, "exceptions"):
                update.exceptions = read_rule_exceptions(item, ctx, True)
            collector.append(cfg, update)
        else:
            self._read_rule_definition(cfg, collector, item, ctx, name)

    def _read_rule_overrides(self, cfg, collector, item, ctx, name,
                             override_append, override_replace) -> None:
        # the keys that are both overridable and present in the item
        expected = {key for key in _RULE_APPENDABLE | _RULE_REPLACEABLE if _has(item, key)}

        for overrides, operation, apply in (
            (override_append, "append", collector.append),
            (override_replace, "replace", collector.selective_replace),
        ):
            if not overrides:
                continue
            update = RuleUpdateInfo(ctx=ctx, name=name)
            for key in _RULE_OVERRIDE_ORDER:
                if key not in overrides:
                    continue
                if key not in expected:
                    _fail(f"An {operation} override for '{key}' was specified "
                          f"but '{key}' is not defined", ctx)
                expected.discard(key)
                self._decode_update_field(item, key, ctx, update)
            apply(cfg, update)

        for key in sorted(expected):
            keyctx = Context.for_node(_get(item, key), ItemKind.OVERRIDE, key, ctx)
            _fail(f"Unexpected key '{key}': no corresponding entry under 'override' is defined.",
                  keyctx)

    @staticmethod
    def _decode_update_field(item: Node, key: str, ctx: Context, update: RuleUpdateInfo) -> None:
        match key:
            case "condition":
                update.cond = decode_value(item, "condition", ctx)
            case "exceptions":
                update.exceptions = read_rule_exceptions(item, ctx, True)
            case "output":
                update.output = decode_value(item, "output", ctx)
            case "desc":
                update.desc = decode_value(item, "desc", ctx)
            case "tags":
                update.tags = decode_tags(item, ctx)
            case "priority":
                update.priority = _decode_priority(item, ctx)
            case "enabled":
                update.enabled = decode_value(item, "enabled", ctx, bool)
            case "warn_evttypes":
                update.warn_evttypes = decode_value(item, "warn_evttypes", ctx, bool)
            case "skip-if-unknown-filter":
                update.skip_if_unknown_filter = decode_value(
                    item, "skip-if-unknown-filter", ctx, bool)

    def _read_rule_definition(self, cfg, collector, item, ctx, name) -> None:
        info = RuleInfo(ctx=ctx, name=name, enabled=True, warn_evttypes=True,
                        skip_if_unknown_filter=False)

        # Without any of condition/output/desc/priority, the item only
        # changes the enabled status of an earlier rule.
        if not any(_has(item, k) for k in ("condition", "output", "desc", "priority")):
            info.enabled = decode_value(item, "enabled", ctx, bool)
            collector.enable(cfg, info)
            return

        info.cond = decode_value(item, "condition", ctx)
        info.cond_ctx = Context.for_node(_get(item, "condition"),
                                         ItemKind.RULE_CONDITION, "", ctx)
        info.output = decode_value(item, "output", ctx)
        info.output_ctx = Context.for_node(_get(item, "output"),
                                           ItemKind.RULE_OUTPUT, "", ctx)
        info.desc = decode_value(item, "desc", ctx)
        priority_text_present = decode_value(item, "priority", ctx)
        del priority_text_present

        info.output = info.output.strip()
        info.priority = _decode_priority(item, ctx)

        source = decode_value(item, "source", ctx, str, True)
        info.source = SYSCALL_SOURCE if source is None else source
        for key, attr in (("enabled", "enabled"), ("warn_evttypes", "warn_evttypes"),
                          ("skip-if-unknown-filter", "skip_if_unknown_filter")):
            value = decode_value(item, key, ctx, bool, True)
            if value is not None:
                setattr(info, attr, value)
        info.tags = decode_tags(item, ctx)
        info.exceptions = read_rule_exceptions(item, ctx, False)
        collector.define(cfg, info)


def read_rules(content: str, name: str, collector: Collector) -> LoadResult:
    """Read rules ``content`` named ``name`` into ``collector``; return the findings."""
    cfg = Configuration(content=content, name=name)
    Reader().read(cfg, collector)
    return cfg.result
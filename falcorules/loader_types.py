"""Contexts, load results and the definitions collected while reading rules files."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any

from semver import Version

from .rules import Priority
from .version import ENGINE_VERSION, engine_version


class ItemKind(Enum):
    """The kind of YAML item a context location points at."""

    VALUE_FOR = "value for"
    EXCEPTIONS = "exceptions"
    EXCEPTION = "exception"
    EXCEPTION_VALUES = "exception values"
    EXCEPTION_VALUE = "exception value"
    RULES_CONTENT = "rules content"
    RULES_CONTENT_ITEM = "rules content item"
    REQUIRED_ENGINE_VERSION = "required_engine_version"
    REQUIRED_PLUGIN_VERSIONS = "required plugin versions"
    REQUIRED_PLUGIN_VERSIONS_ENTRY = "required plugin versions entry"
    REQUIRED_PLUGIN_VERSIONS_ALTERNATIVE = "required plugin versions alternative"
    LIST = "list"
    LIST_ITEM = "list item"
    MACRO = "macro"
    MACRO_CONDITION = "macro condition"
    RULE = "rule"
    RULE_CONDITION = "rule condition"
    CONDITION_EXPRESSION = "condition expression"
    RULE_OUTPUT = "rule output"
    RULE_OUTPUT_EXPRESSION = "rule output expression"
    RULE_PRIORITY = "rule priority"
    OVERRIDE = "overrides"


@dataclass(frozen=True)
class _Location:
    filename: str
    kind: ItemKind
    item_name: str
    offset: int
    line: int
    column: int


@dataclass(frozen=True)
class Context:
    """A chain of locations leading from a rules file down to one item."""

    locations: tuple[_Location, ...] = ()

    @classmethod
    def root(cls, filename: str) -> Context:
        """The context of a whole rules file."""
        return cls((_Location(filename, ItemKind.RULES_CONTENT, "", 0, 0, 0),))

    @classmethod
    def for_node(cls, node: Any, kind: ItemKind, name: str, parent: Context) -> Context:
        """The context of a YAML node nested within ``parent``."""
        return parent._extend(kind, name, getattr(node, "start_mark", None))

    @classmethod
    def for_mark(cls, mark: Any, parent: Context) -> Context:
        """The context of a position in the content, e.g. of a parse error."""
        return parent._extend(ItemKind.RULES_CONTENT, "", mark)

    def _extend(self, kind: ItemKind, name: str, mark: Any) -> Context:
        loc = _Location(
            self.filename,
            kind,
            name,
            getattr(mark, "index", 0),
            getattr(mark, "line", 0),
            getattr(mark, "column", 0),
        )
        return Context(self.locations + (loc,))

    @property
    def filename(self) -> str:
        return self.locations[0].filename if self.locations else ""

    def snippet(self, content: str) -> str:
        """The content line at the innermost location, with a caret below it."""
        if not content or not self.locations:
            return ""
        offset = min(self.locations[-1].offset, len(content))
        start = content.rfind("\n", 0, offset) + 1
        end = content.find("\n", offset)
        if end < 0:
            end = len(content)
        return f"{content[start:end]}\n{' ' * (offset - start)}^\n"

    def __str__(self) -> str:
        parts = []
        for i, loc in enumerate(self.locations):
            label = loc.kind.value + (f" '{loc.item_name}'" if loc.item_name else "")
            prefix = "In " if i == 0 else "    "
            parts.append(f"{prefix}{label}: ({loc.filename}:{loc.line + 1}:{loc.column + 1})")
        return "\n".join(parts)


class LoadResult:
    """Errors and warnings gathered while loading rules content."""

    class ErrorCode(IntEnum):
        FILE_READ = 0
        YAML_PARSE = 1
        YAML_VALIDATE = 2
        COMPILE_CONDITION = 3
        COMPILE_OUTPUT = 4
        VALIDATE = 5
        EXTENSION = 6

    class WarningCode(IntEnum):
        UNKNOWN_SOURCE = 0
        UNSAFE_NA_CHECK = 1
        NO_EVTTYPE = 2
        UNKNOWN_FILTER = 3
        UNUSED_MACRO = 4
        UNUSED_LIST = 5
        UNKNOWN_ITEM = 6
        DEPRECATED_ITEM = 7
        WARNING_EXTENSION = 8
        APPEND_NO_VALUES = 9
        EXCEPTION_NAME_NOT_UNIQUE = 10
        INVALID_MACRO_NAME = 11
        INVALID_LIST_NAME = 12
        COMPILE_CONDITION = 13

    @dataclass(frozen=True)
    class Finding:
        code: IntEnum
        message: str
        context: Context

    def __init__(self) -> None:
        self.errors: list[LoadResult.Finding] = []
        self.warnings: list[LoadResult.Finding] = []

    def add_error(self, code: LoadResult.ErrorCode, message: str, context: Context) -> None:
        self.errors.append(LoadResult.Finding(code, message, context))

    def add_warning(self, code: LoadResult.WarningCode, message: str, context: Context) -> None:
        self.warnings.append(LoadResult.Finding(code, message, context))

    def successful(self) -> bool:
        """True when no error has been recorded."""
        return not self.errors


class RuleLoadError(Exception):
    """Raised when rules content cannot be loaded."""

    def __init__(self, code: LoadResult.ErrorCode, message: str, context: Context) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.context = context


def _root() -> Context:
    return Context.root("")


@dataclass
class Configuration:
    """One rules file being loaded, and where its findings go."""

    content: str
    name: str
    result: LoadResult = field(default_factory=LoadResult)


@dataclass
class ExceptionEntry:
    """A scalar or a (possibly nested) list within a rule exception."""

    is_list: bool = False
    item: str = ""
    items: list[ExceptionEntry] = field(default_factory=list)

    def is_valid(self) -> bool:
        return bool(self.items) if self.is_list else bool(self.item)


@dataclass
class RuleExceptionInfo:
    ctx: Context = field(default_factory=_root)
    name: str = ""
    fields: ExceptionEntry = field(default_factory=ExceptionEntry)
    comps: ExceptionEntry = field(default_factory=ExceptionEntry)
    values: list[ExceptionEntry] = field(default_factory=list)


@dataclass
class EngineVersionInfo:
    ctx: Context = field(default_factory=_root)
    version: Version = field(default_factory=lambda: Version(0, 0, 0))


@dataclass
class PluginRequirement:
    name: str = ""
    version: str = ""


@dataclass
class PluginVersionInfo:
    ctx: Context = field(default_factory=_root)
    alternatives: list[PluginRequirement] = field(default_factory=list)


@dataclass
class ListInfo:
    ctx: Context = field(default_factory=_root)
    name: str = ""
    items: list[str] = field(default_factory=list)


@dataclass
class MacroInfo:
    ctx: Context = field(default_factory=_root)
    cond_ctx: Context | None = None
    name: str = ""
    cond: str = ""


@dataclass
class RuleInfo:
    ctx: Context = field(default_factory=_root)
    cond_ctx: Context | None = None
    output_ctx: Context | None = None
    name: str = ""
    cond: str = ""
    source: str = ""
    desc: str = ""
    output: str = ""
    tags: set[str] = field(default_factory=set)
    exceptions: list[RuleExceptionInfo] = field(default_factory=list)
    priority: Priority = Priority.DEBUG
    enabled: bool = True
    warn_evttypes: bool = True
    skip_if_unknown_filter: bool = False


@dataclass
class RuleUpdateInfo:
    """Changes to an existing rule; None means the property is left alone."""

    ctx: Context = field(default_factory=_root)
    cond_ctx: Context | None = None
    name: str = ""
    cond: str | None = None
    output: str | None = None
    desc: str | None = None
    tags: set[str] | None = None
    exceptions: list[RuleExceptionInfo] | None = None
    priority: Priority | None = None
    enabled: bool | None = None
    warn_evttypes: bool | None = None
    skip_if_unknown_filter: bool | None = None

    def has_any_value(self) -> bool:
        return any(
            getattr(self, name) is not None
            for name in ("cond", "output", "desc", "tags", "exceptions", "priority",
                         "enabled", "warn_evttypes", "skip_if_unknown_filter")
        )


_REPLACEABLE = ("cond", "output", "desc", "tags", "exceptions", "priority",
                "enabled", "warn_evttypes", "skip_if_unknown_filter")


def _validation_error(message: str, ctx: Context) -> RuleLoadError:
    return RuleLoadError(LoadResult.ErrorCode.VALIDATE, message, ctx)


class Collector:
    """Gathers the definitions read from rules files, in definition order."""

    def __init__(self) -> None:
        self.required_engine_version: EngineVersionInfo | None = None
        self.required_plugin_versions: list[PluginVersionInfo] = []
        self.lists: dict[str, ListInfo] = {}
        self.macros: dict[str, MacroInfo] = {}
        self.rules: dict[str, RuleInfo] = {}

    @staticmethod
    def _existing(table: dict[str, Any], name: str, message: str, ctx: Context) -> Any:
        try:
            return table[name]
        except KeyError:
            raise _validation_error(message, ctx) from None

    def define(self, cfg: Configuration, info: Any) -> None:
        """Record a definition; a list, macro or rule replaces one of the same name."""
        match info:
            case EngineVersionInfo():
                self._define_engine_version(info)
            case PluginVersionInfo():
                self.required_plugin_versions.append(copy.deepcopy(info))
            case ListInfo():
                self.lists[info.name] = copy.deepcopy(info)
            case MacroInfo():
                self.macros[info.name] = copy.deepcopy(info)
            case RuleInfo():
                self.rules[info.name] = copy.deepcopy(info)
            case _:
                raise TypeError(f"cannot define {type(info).__name__}")

    def _define_engine_version(self, info: EngineVersionInfo) -> None:
        current = engine_version()
        required = info.version
        if current.major != required.major or current < required:
            raise _validation_error(
                f"Rules require engine version {required}, but engine version is {ENGINE_VERSION}",
                info.ctx,
            )
        if self.required_engine_version is None or required > self.required_engine_version.version:
            self.required_engine_version = copy.deepcopy(info)

    def append(self, cfg: Configuration, info: Any) -> None:
        """Append to an existing list, macro or rule."""
        match info:
            case ListInfo():
                prev = self._existing(
                    self.lists, info.name,
                    "List has 'append' key or an append override but no list by that name already exists",
                    info.ctx)
                prev.items.extend(info.items)
            case MacroInfo():
                prev = self._existing(
                    self.macros, info.name,
                    "Macro has 'append' key or an append override but no macro by that name already exists",
                    info.ctx)
                prev.cond = f"{prev.cond} {info.cond}"
            case RuleUpdateInfo():
                self._append_rule(info)
            case _:
                raise TypeError(f"cannot append {type(info).__name__}")

    def _append_rule(self, info: RuleUpdateInfo) -> None:
        prev: RuleInfo = self._existing(
            self.rules, info.name,
            "Rule has 'append' key or an append override but no rule by that name already exists",
            info.ctx)
        if info.cond is not None:
            prev.cond = f"{prev.cond} {info.cond}"
        if info.output is not None:
            prev.output = f"{prev.output} {info.output}"
        if info.desc is not None:
            prev.desc = f"{prev.desc} {info.desc}"
        if info.tags is not None:
            prev.tags |= info.tags
        for ex in info.exceptions or ():
            existing = next((e for e in prev.exceptions if e.name == ex.name), None)
            if existing is None:
                if not ex.fields.is_valid():
                    raise _validation_error(
                        "Rule exception must have fields property with a list of fields", ex.ctx)
                if not ex.values:
                    raise _validation_error(
                        "Rule exception must have values property with a list of values", ex.ctx)
                prev.exceptions.append(copy.deepcopy(ex))
            else:
                if ex.fields.is_valid():
                    raise _validation_error(
                        "Can not append exception fields to existing exception, only values", ex.ctx)
                if ex.comps.is_valid():
                    raise _validation_error(
                        "Can not append exception comps to existing exception, only values", ex.ctx)
                existing.values.extend(copy.deepcopy(ex.values))

    def enable(self, cfg: Configuration, info: RuleInfo) -> None:
        """Set the enabled status of an existing rule."""
        if not isinstance(info, RuleInfo):
            raise TypeError(f"cannot enable {type(info).__name__}")
        prev = self._existing(
            self.rules, info.name,
            "Rule has 'enabled' key but no rule by that name already exists", info.ctx)
        prev.enabled = info.enabled

    def selective_replace(self, cfg: Configuration, info: RuleUpdateInfo) -> None:
        """Replace the given properties of an existing rule."""
        if not isinstance(info, RuleUpdateInfo):
            raise TypeError(f"cannot replace with {type(info).__name__}")
        prev = self._existing(
            self.rules, info.name,
            "An replace to a rule was requested but no rule by that name already exists",
            info.ctx)
        for attr in _REPLACEABLE:
            value = getattr(info, attr)
            if value is not None:
                setattr(prev, attr, copy.deepcopy(value))
"""Decoding of the values of rules-file items from composed YAML nodes."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, NoReturn

from yaml.nodes import MappingNode, Node, ScalarNode, SequenceNode

from .loader_types import (
    Context,
    ExceptionEntry,
    ItemKind,
    LoadResult,
    RuleExceptionInfo,
    RuleLoadError,
)

_NULL_TAG = "tag:yaml.org,2002:null"
_TRUE_WORDS = {"y", "yes", "true", "on"}
_FALSE_WORDS = {"n", "no", "false", "off"}
_UINT32_MAX = 0xFFFFFFFF


def _fail(message: str, ctx: Context) -> NoReturn:
    raise RuleLoadError(LoadResult.ErrorCode.YAML_VALIDATE, message, ctx)


def _is_null(node: Node) -> bool:
    return isinstance(node, ScalarNode) and node.tag == _NULL_TAG


def _is_scalar(node: Node) -> bool:
    return isinstance(node, ScalarNode) and not _is_null(node)


def _lookup(item: Node, key: str) -> Node | None:
    """The value node for ``key`` in a mapping node, or None if absent."""
    if not isinstance(item, MappingNode):
        return None
    for key_node, value_node in item.value:
        if isinstance(key_node, ScalarNode) and key_node.value == key:
            return value_node
    return None


def _decode_scalar(text: str, kind: type) -> Any:
    if kind is str:
        return text
    if kind is bool:
        if text not in (text.lower(), text.upper(), text.capitalize()):
            raise ValueError(text)
        word = text.lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
        raise ValueError(text)
    if kind is int:
        if not (text.isascii() and text.isdigit()):
            raise ValueError(text)
        value = int(text)
        if value > _UINT32_MAX:
            raise ValueError(text)
        return value
    raise TypeError(f"unsupported scalar kind: {kind!r}")


def decode_value(item: Node, key: str, ctx: Context, kind: type = str, optional: bool = False) -> Any:
    """Decode the non-empty scalar at ``key`` as ``kind`` (str, int or bool).

    Returns None when the key is absent and ``optional`` is true.
    """
    val = _lookup(item, key)
    if val is None:
        if optional:
            return None
        _fail(f"Item has no mapping for key '{key}'", ctx)
    if _is_null(val):
        _fail(f"Mapping for key '{key}' is empty", ctx)
    valctx = Context.for_node(val, ItemKind.VALUE_FOR, key, ctx)
    if not isinstance(val, ScalarNode):
        _fail("Value is not a scalar value", valctx)
    if val.value == "":
        _fail("Value must be non-empty", valctx)
    try:
        return _decode_scalar(val.value, kind)
    except ValueError:
        _fail("Can't decode YAML scalar value", valctx)


def _decode_seq(item: Node, key: str, ctx: Context, optional: bool) -> list[str] | None:
    val = _lookup(item, key)
    if val is None:
        if optional:
            return None
        _fail(f"Item has no mapping for key '{key}'", ctx)
    valctx = Context.for_node(val, ItemKind.VALUE_FOR, key, ctx)
    if not isinstance(val, SequenceNode):
        _fail("Value is not a sequence", valctx)
    values = []
    for v in val.value:
        ictx = Context.for_node(v, ItemKind.LIST_ITEM, "", valctx)
        if not _is_scalar(v):
            _fail("sequence value is not scalar", ictx)
        values.append(v.value)
    return values


def decode_items(item: Node, ctx: Context) -> list[str]:
    """The required ``items`` sequence of a list, in order."""
    return _decode_seq(item, "items", ctx, optional=False) or []


def decode_tags(item: Node, ctx: Context) -> set[str]:
    """The optional ``tags`` sequence of a rule, as a set."""
    return set(_decode_seq(item, "tags", ctx, optional=True) or ())


def decode_overrides(
    item: Node,
    overridable_append: Iterable[str],
    overridable_replace: Iterable[str],
    ctx: Context,
) -> tuple[set[str], set[str]]:
    """Read the ``override`` mapping; return the keys to append and to replace."""
    appendable = set(overridable_append)
    replaceable = set(overridable_replace)
    out_append: set[str] = set()
    out_replace: set[str] = set()

    val = _lookup(item, "override")
    if val is None or isinstance(val, ScalarNode):
        return out_append, out_replace

    overridectx = Context.for_node(item, ItemKind.OVERRIDE, "", ctx)
    if not isinstance(val, MappingNode):
        _fail("Value of override must be a mapping",
              Context.for_node(val, ItemKind.VALUE_FOR, "override", ctx))

    for key_node, op_node in val.value:
        if not (_is_scalar(key_node) and _is_scalar(op_node)):
            _fail("Override keys and operations must be scalar values",
                  Context.for_node(key_node, ItemKind.OVERRIDE, "", overridectx))
        key = key_node.value
        operation = op_node.value
        is_appendable = key in appendable
        is_replaceable = key in replaceable

        if operation == "append":
            keyctx = Context.for_node(key_node, ItemKind.OVERRIDE, key, overridectx)
            if not is_appendable:
                _fail(f"Key '{key}' cannot be appended to, use 'replace' instead", keyctx)
            out_append.add(key)
        elif operation == "replace":
            keyctx = Context.for_node(key_node, ItemKind.OVERRIDE, key, overridectx)
            if not is_replaceable:
                _fail(f"Key '{key}' cannot be replaced", keyctx)
            out_replace.add(key)
        else:
            opctx = Context.for_node(op_node, ItemKind.VALUE_FOR, key, overridectx)
            allowed = ("append " if is_appendable else "") + ("replace " if is_replaceable else "")
            _fail(
                f"Invalid override operation for key '{key}': '{operation}'. "
                f"Allowed values are: {allowed}",
                opctx,
            )
    return out_append, out_replace


def _decode_exception_entry(
    item: Node, key: str | None, ctx: Context, optional: bool
) -> ExceptionEntry:
    out = ExceptionEntry()
    val = item if key is None else _lookup(item, key)
    if val is None:
        if optional:
            return out
        _fail(f"Item has no mapping for key '{key}'", ctx)

    valctx = Context.for_node(val, ItemKind.VALUE_FOR, key or "", ctx)
    if _is_scalar(val):
        if val.value == "":
            _fail("Value must be non-empty", valctx)
        out.item = val.value
    elif isinstance(val, SequenceNode):
        out.is_list = True
        for v in val.value:
            lctx = Context.for_node(v, ItemKind.EXCEPTION, "", valctx)
            out.items.append(_decode_exception_entry(v, None, lctx, optional=False))
    return out


def read_rule_exceptions(item: Node, ctx: Context, append: bool) -> list[RuleExceptionInfo]:
    """Read a rule's ``exceptions``; fields may be omitted when appending."""
    exs = _lookup(item, "exceptions")
    if exs is None or _is_null(exs):
        return []

    exes_ctx = Context.for_node(exs, ItemKind.EXCEPTIONS, "", ctx)
    if not isinstance(exs, SequenceNode):
        _fail("Rule exceptions must be a sequence", exes_ctx)

    exceptions = []
    for ex in exs.value:
        tmp = Context.for_node(ex, ItemKind.EXCEPTION, "", exes_ctx)
        if not isinstance(ex, MappingNode):
            _fail("Rule exception must be a mapping", tmp)
        name = decode_value(ex, "name", tmp)

        ex_ctx = Context.for_node(ex, ItemKind.EXCEPTION, name, ctx)
        info = RuleExceptionInfo(ctx=ex_ctx, name=name)
        info.fields = _decode_exception_entry(ex, "fields", ex_ctx, optional=append)
        info.comps = _decode_exception_entry(ex, "comps", ex_ctx, optional=True)

        exvals = _lookup(ex, "values")
        if exvals is not None:
            vals_ctx = Context.for_node(exvals, ItemKind.EXCEPTION_VALUES, "", ex_ctx)
            if not isinstance(exvals, SequenceNode):
                _fail("Rule exception values must be a sequence", vals_ctx)
            for val in exvals.value:
                vctx = Context.for_node(val, ItemKind.EXCEPTION_VALUE, "", vals_ctx)
                info.values.append(_decode_exception_entry(val, None, vctx, optional=False))
        exceptions.append(info)
    return exceptions
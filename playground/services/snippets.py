"""Inject request properties into generated code snippets.

A snippet reproduces a playground request in one of four shapes: a JS client
call taking an object, a Python client call taking keyword arguments, a Python
``requests`` payload dict, or a ``curl -d`` JSON body. ``modify_snippet``
finds the argument block, appends the new properties with the block's own
indentation and leaves everything else untouched. Snippets it does not
recognize are returned unchanged.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Callable

DEFAULT_INDENT_STEP = "    "


@dataclass(frozen=True, slots=True)
class SnippetStyle:
    name: str
    marker: re.Pattern[str]
    open_char: str
    close_char: str
    format_property: Callable[[str, Any], str]


def to_snake_case(key: str) -> str:
    return re.sub(r"(?<!^)([A-Z])", r"_\1", key).lower()


def python_literal(value: Any) -> str:
    if value is None:
        return "None"
    if isinstance(value, bool):
        return "True" if value else "False"
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, dict):
        items = ", ".join(f"{json.dumps(str(k))}: {python_literal(v)}" for k, v in value.items())
        return "{" + items + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(python_literal(item) for item in value) + "]"
    return repr(value)


def json_literal(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def _shell_json_literal(value: Any) -> str:
    # The body sits inside single quotes.
    return json_literal(value).replace("'", "'\\''")


SNIPPET_STYLES: tuple[SnippetStyle, ...] = (
    SnippetStyle(
        name="js",
        marker=re.compile(r"client\.(?:chatCompletionStream|chatCompletion|chat\.completions\.create)\s*\(\s*\{"),
        open_char="{",
        close_char="}",
        format_property=lambda key, value: f"{key}: {json_literal(value)}",
    ),
    SnippetStyle(
        name="python",
        marker=re.compile(r"client\.chat\.completions\.create\s*\("),
        open_char="(",
        close_char=")",
        format_property=lambda key, value: f"{to_snake_case(key)}={python_literal(value)}",
    ),
    SnippetStyle(
        name="python-requests",
        marker=re.compile(r"\bquery\s*\(\s*\{"),
        open_char="{",
        close_char="}",
        format_property=lambda key, value: f"{json.dumps(to_snake_case(key))}: {python_literal(value)}",
    ),
    SnippetStyle(
        name="curl",
        marker=re.compile(r"-d\s*'(?:\\n)?\s*\{"),
        open_char="{",
        close_char="}",
        format_property=lambda key, value: f"{json.dumps(to_snake_case(key))}: {_shell_json_literal(value)}",
    ),
)


def detect_style(snippet: str) -> SnippetStyle | None:
    for style in SNIPPET_STYLES:
        if style.name == "curl" and "curl" not in snippet:
            continue
        if style.marker.search(snippet):
            return style
    return None


def modify_snippet(snippet: str, properties: dict[str, Any]) -> str:
    """Return ``snippet`` with ``properties`` appended to its request arguments."""
    if not properties:
        return snippet
    style = detect_style(snippet)
    if style is None:
        return snippet
    return _insert_properties(snippet, properties, style)


def _insert_properties(snippet: str, properties: dict[str, Any], style: SnippetStyle) -> str:
    match = style.marker.search(snippet)
    if match is None:
        return snippet
    open_index = snippet.find(style.open_char, match.end() - 1)
    if open_index == -1:
        return snippet
    close_index = _matching_close(snippet, open_index, style.open_char, style.close_char)
    if close_index is None:
        return snippet

    body = snippet[open_index + 1:close_index]
    indent = _block_indent(snippet, open_index, body)
    added = "".join(f"{indent}{style.format_property(key, value)},\n" for key, value in properties.items())

    existing = body.rstrip()
    if existing and not existing.endswith(","):
        existing += ","
    combined = f"{existing}\n{added}" if existing else f"\n{added}"
    combined = re.sub(r",\s*$", "", combined)

    closing_indent = indent[: -len(DEFAULT_INDENT_STEP)] if len(indent) >= len(DEFAULT_INDENT_STEP) else ""
    return f"{snippet[:open_index + 1]}{combined}\n{closing_indent}{snippet[close_index:]}"


def _matching_close(snippet: str, open_index: int, open_char: str, close_char: str) -> int | None:
    depth = 0
    for index in range(open_index, len(snippet)):
        char = snippet[index]
        if char == open_char:
            depth += 1
        elif char == close_char:
            depth -= 1
            if depth == 0:
                return index
    return None


def _block_indent(snippet: str, open_index: int, body: str) -> str:
    lines = body.split("\n")
    if len(lines) > 1:
        for line in lines:
            found = re.match(r"([ \t]+)\S", line)
            if found:
                return found.group(1)
    line_start = snippet.rfind("\n", 0, open_index) + 1
    leading = re.match(r"[ \t]*", snippet[line_start:open_index])
    return (leading.group(0) if leading else "") + DEFAULT_INDENT_STEP

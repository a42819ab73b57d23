"""Query and render helpers for serialized DOM snapshot trees.

A node is either a text string, a ``[int, int]`` back-reference to an
earlier node (never dereferenced), or ``[tagName, attributes, *children]``.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

INTERNAL_ATTR_PREFIX = "__playwright"
REF_MARKER = "[ref]"
TRUNCATED = "..."

SELF_CLOSING_TAGS = frozenset({"input", "img", "br", "hr", "meta", "link"})
INTERACTIVE_TAGS = frozenset({"button", "input", "select", "textarea", "a"})
SIMPLIFIED_ATTRS = (
    "id",
    "class",
    "name",
    "type",
    "disabled",
    "href",
    "value",
    "placeholder",
    "required",
)
INLINE_TEXT_LIMIT = 50

_TAG_SELECTOR_RE = re.compile(r"^([a-z0-9\-]+)", re.IGNORECASE)

Predicate = Callable[[str, dict[str, Any]], bool]


@dataclass
class DomNode:
    tag: str
    attrs: dict[str, Any]
    text: str
    html: list[Any]
    children: list[Any] = field(default_factory=list)


def is_reference(node: Any) -> bool:
    return (
        isinstance(node, list)
        and len(node) == 2
        and isinstance(node[0], (int, float))
        and not isinstance(node[0], bool)
    )


def is_element(node: Any) -> bool:
    """A list headed by a tag name. The attribute map may be missing."""
    return isinstance(node, list) and len(node) >= 1 and isinstance(node[0], str)


def _split(node: list[Any]) -> tuple[str, dict[str, Any], list[Any]]:
    attrs = node[1] if len(node) > 1 and isinstance(node[1], dict) else {}
    return node[0], attrs, list(node[2:])


def find_all(tree: Any, predicate: Optional[Predicate] = None) -> list[DomNode]:
    """Depth-first pre-order collection of element nodes matching ``predicate``."""
    results: list[DomNode] = []
    stack = [tree]
    while stack:
        node = stack.pop()
        if not isinstance(node, list) or len(node) < 2 or is_reference(node):
            continue
        children = node[2:]
        if isinstance(node[0], str):
            tag, attrs, children = _split(node)
            if predicate is None or predicate(tag, attrs):
                text = next((c for c in children if isinstance(c, str)), "")
                results.append(DomNode(tag=tag, attrs=attrs, text=text, html=node, children=children))
        # reversed so the leftmost child is visited first
        stack.extend(reversed(children))
    return results


def matches_selector(tag: str, attrs: Optional[dict[str, Any]], selector: str) -> bool:
    """Match ``#id``, ``.class`` or a bare tag name. No combinators."""
    attrs = attrs or {}
    if selector.startswith("#"):
        return attrs.get("id") == selector[1:]
    if selector.startswith("."):
        classes = str(attrs.get("class") or "").split()
        return selector[1:] in classes
    match = _TAG_SELECTOR_RE.match(selector)
    if match:
        return tag.lower() == match.group(1).lower()
    return False


def select(tree: Any, selector: str) -> list[DomNode]:
    return find_all(tree, lambda tag, attrs: matches_selector(tag, attrs, selector))


def is_interactive(node: DomNode | str, attrs: Optional[dict[str, Any]] = None) -> bool:
    """Buttons and form controls always; anchors only with an href.

    Accepts a DomNode, or a tag name plus attributes so it can be used
    directly as a ``find_all`` predicate.
    """
    if isinstance(node, DomNode):
        tag, attrs = node.tag, node.attrs
    else:
        tag = node
    tag = tag.lower()
    if tag not in INTERACTIVE_TAGS:
        return False
    if tag == "a":
        return bool((attrs or {}).get("href"))
    return True


def simplify_attributes(attrs: Optional[dict[str, Any]]) -> dict[str, Any]:
    if not attrs:
        return {}
    return {key: attrs[key] for key in SIMPLIFIED_ATTRS if attrs.get(key) is not None}


def _format_attrs(attrs: dict[str, Any]) -> str:
    parts = []
    for key, val in attrs.items():
        if key.startswith(INTERNAL_ATTR_PREFIX):
            continue
        if val == "":
            parts.append(key)
        elif isinstance(val, str):
            parts.append(f'{key}="{val}"')
        else:
            parts.append(f'{key}="{json.dumps(val)}"')
    return " ".join(parts)


def render(tree: Any, depth: int = 0, max_depth: int = 10, simplify: bool = True) -> str:
    """Render a snapshot tree as indented markup.

    Elements at ``max_depth`` are opened and cut off with ``...``
    instead of descending.
    """
    if isinstance(tree, str):
        return tree
    if is_reference(tree):
        return REF_MARKER
    if not is_element(tree):
        return ""

    tag, attrs, children = _split(tree)
    tag = tag.lower()
    indent = "  " * depth

    attr_string = _format_attrs(simplify_attributes(attrs) if simplify else attrs)
    open_tag = f"<{tag} {attr_string}>" if attr_string else f"<{tag}>"
    self_closing = tag in SELF_CLOSING_TAGS

    if depth >= max_depth:
        return f"{indent}{open_tag}" if self_closing else f"{indent}{open_tag}{TRUNCATED}</{tag}>"

    if not children:
        return f"{indent}{open_tag}" if self_closing else f"{indent}{open_tag}</{tag}>"

    if len(children) == 1 and isinstance(children[0], str):
        text = children[0].strip()
        if len(text) < INLINE_TEXT_LIMIT:
            return f"{indent}{open_tag}{text}</{tag}>"

    rendered = [render(child, depth + 1, max_depth, simplify) for child in children]
    body = "\n".join(r for r in rendered if r)
    if not body:
        return f"{indent}{open_tag}</{tag}>"
    return f"{indent}{open_tag}\n{body}\n{indent}</{tag}>"

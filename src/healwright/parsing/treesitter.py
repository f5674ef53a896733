"""Tree-sitter wrapper for reading and validating Playwright spec sources."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, cast

import tree_sitter
import tree_sitter_language_pack as tslp

if TYPE_CHECKING:
    from tree_sitter_language_pack import SupportedLanguage

logger = logging.getLogger(__name__)

EXTENSION_TO_LANGUAGE: dict[str, str] = {
    ".ts": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".tsx": "tsx",
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".jsx": "javascript",
}

SUPPORTED_LANGUAGES = frozenset({"typescript", "tsx", "javascript"})

_STRING_NODES = frozenset({"string", "template_string"})

_parser_cache: dict[str, tree_sitter.Parser] = {}


@dataclass
class TestCallInfo:
    """A ``test('title', ...)`` call located in a spec source."""

    __test__ = False

    title: str
    start_byte: int
    end_byte: int
    start_line: int
    end_line: int
    steps: list[str] = field(default_factory=list)
    """Descriptions of the ``test.step(...)`` calls inside the test body."""

    suite: str = ""
    """Title of the innermost enclosing ``test.describe``."""


def detect_language(file_path: str | Path) -> str | None:
    """Return the tree-sitter language name for *file_path*, if supported."""
    return EXTENSION_TO_LANGUAGE.get(Path(file_path).suffix.lower())


def get_parser(language: str) -> tree_sitter.Parser:
    """Get a (cached) tree-sitter parser for the given language."""
    if language not in SUPPORTED_LANGUAGES:
        raise ValueError(f"Unsupported language: {language}")
    cached = _parser_cache.get(language)
    if cached is not None:
        return cached
    parser = tslp.get_parser(cast("SupportedLanguage", language))
    _parser_cache[language] = parser
    return parser


def parse_code(source: bytes, language: str = "typescript") -> tree_sitter.Tree:
    """Parse source code bytes into a tree-sitter AST."""
    return get_parser(language).parse(source)


def has_parse_errors(root: tree_sitter.Node) -> bool:
    """Check if the AST contains any parse errors."""
    return root.has_error


def collect_error_ranges(root: tree_sitter.Node) -> list[tuple[int, int]]:
    """Collect line ranges of parse error nodes."""
    errors: list[tuple[int, int]] = []
    _walk_errors(root, errors)
    return errors


def _walk_errors(node: tree_sitter.Node, errors: list[tuple[int, int]]) -> None:
    if node.is_error or node.is_missing:
        errors.append((node.start_point.row + 1, node.end_point.row + 1))
    for child in node.children:
        _walk_errors(child, errors)


def validate_typescript(code: str, language: str = "typescript") -> list[str]:
    """Parse *code* and return one message per syntax error (empty when valid)."""
    root = parse_code(code.encode("utf-8"), language).root_node
    if not has_parse_errors(root):
        return []

    lines = code.splitlines()
    errors = [
        f"Syntax error at line {start_line}: {lines[start_line - 1].strip()}"
        for start_line, _ in collect_error_ranges(root)
        if 0 < start_line <= len(lines)
    ]
    return errors or ["Parse errors detected"]


# ── Test call extraction ─────────────────────────────────────────


def find_test_calls(source: bytes, language: str = "typescript") -> list[TestCallInfo]:
    """Locate every ``test(...)`` call in *source*, in source order.

    ``test.only`` is treated like ``test``.  ``test.describe`` titles become
    the suite of the tests they enclose and ``test.step`` descriptions are
    collected per test.
    """
    root = parse_code(source, language).root_node
    found: list[TestCallInfo] = []
    _walk_calls(root, found, suite="", current=None)
    return found


def _walk_calls(
    node: tree_sitter.Node,
    found: list[TestCallInfo],
    *,
    suite: str,
    current: TestCallInfo | None,
) -> None:
    if node.type == "call_expression":
        kind = _test_call_kind(node)
        title = _first_string_argument(node)
        if kind == "test" and title is not None:
            info = TestCallInfo(
                title=title,
                start_byte=node.start_byte,
                end_byte=node.end_byte,
                start_line=node.start_point.row + 1,
                end_line=node.end_point.row + 1,
                suite=suite,
            )
            found.append(info)
            current = info
        elif kind == "describe" and title is not None:
            suite = title
        elif kind == "step" and title is not None and current is not None:
            current.steps.append(title)

    for child in node.children:
        _walk_calls(child, found, suite=suite, current=current)


def _test_call_kind(node: tree_sitter.Node) -> str | None:
    function = node.child_by_field_name("function")
    if function is None:
        return None
    if function.type == "identifier":
        return "test" if _text(function) == "test" else None
    if function.type != "member_expression":
        return None

    obj = function.child_by_field_name("object")
    prop = function.child_by_field_name("property")
    if obj is None or prop is None:
        return None
    prop_name = _text(prop)
    # test.describe.serial(...) and friends
    if obj.type == "member_expression" and _text(obj) == "test.describe":
        return "describe"
    if _text(obj) != "test":
        return None
    if prop_name == "only":
        return "test"
    if prop_name in {"describe", "step"}:
        return prop_name
    return None


def _first_string_argument(node: tree_sitter.Node) -> str | None:
    arguments = node.child_by_field_name("arguments")
    if arguments is None:
        return None
    for child in arguments.named_children:
        if child.type in _STRING_NODES:
            return _text(child)[1:-1]
        return None
    return None


def _text(node: tree_sitter.Node) -> str:
    """Decode node text from bytes."""
    return node.text.decode("utf-8", errors="replace") if node.text else ""

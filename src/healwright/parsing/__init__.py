"""Source parsing for Playwright spec files."""

from healwright.parsing.treesitter import (
    TestCallInfo,
    find_test_calls,
    parse_code,
    validate_typescript,
)

__all__ = [
    "TestCallInfo",
    "find_test_calls",
    "parse_code",
    "validate_typescript",
]

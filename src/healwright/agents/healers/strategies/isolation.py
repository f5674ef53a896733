"""Remediation for cases that depend on state left by other cases."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from healwright.agents.healers.strategies.base import FixStrategy, ProposedFix
from healwright.models.healing import FailureCategory

if TYPE_CHECKING:
    from healwright.agents.healers.strategies.base import CaseSource
    from healwright.models.healing import Classification, FailureEvidence

_TEST_BODY = re.compile(r"async\s*\(\s*\{(?P<fixtures>[^}]*)\}\s*\)\s*=>\s*\{[ \t]*\r?\n")
_INDENT = re.compile(r"^([ \t]*)\S", re.MULTILINE)
_CART_CUE = re.compile(r"\bcart\b", re.IGNORECASE)

# Shopify's Ajax cart API empties the session's cart.
_CART_RESET = "await page.request.post('/cart/clear.js');"
_STORAGE_RESET = (
    "await page.goto('/');",
    "await page.evaluate(() => {",
    "  window.localStorage.clear();",
    "  window.sessionStorage.clear();",
    "});",
)


class IsolationStrategy(FixStrategy):
    """Resets shared storefront state at the top of the case.

    Cart contamination is cleared through the cart API; anything else gets
    web storage wiped.  The storefront session cookie is left alone.
    """

    category = FailureCategory.STATE_ISOLATION

    def propose(
        self,
        source: CaseSource,
        evidence: FailureEvidence,
        classification: Classification,
    ) -> ProposedFix | None:
        body = _TEST_BODY.search(source.text)
        if body is None or not re.search(r"\bpage\b", body.group("fixtures")):
            return None

        if _CART_CUE.search(evidence.error_message):
            statements: tuple[str, ...] = (_CART_RESET,)
            marker = _CART_RESET
            description = "Empty the cart at the start of the case"
        else:
            statements = _STORAGE_RESET
            marker = "window.localStorage.clear();"
            description = "Clear web storage at the start of the case"

        if marker in source.text:
            return None

        rest = source.text[body.end() :]
        indent_match = _INDENT.search(rest)
        indent = indent_match.group(1) if indent_match else "    "
        block = "".join(f"{indent}{line}\n" for line in statements)

        return ProposedFix(source=source.text[: body.end()] + block + rest, description=description)

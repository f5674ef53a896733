"""Remediation for cases that handle store credentials themselves."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from healwright.agents.healers.strategies.base import FixStrategy, ProposedFix
from healwright.models.healing import FailureCategory

if TYPE_CHECKING:
    from healwright.agents.healers.strategies.base import CaseSource
    from healwright.models.healing import Classification, FailureEvidence

_CREDENTIAL_LINES = (
    re.compile(r"""goto\(\s*['"`][^'"`]*/password"""),
    re.compile(r"STORE_PASSWORD"),
    re.compile(r"#Password\b"),
    re.compile(r"""form\[action=['"]?/password"""),
    re.compile(r"\bpasswordPage\.\w+\("),
    re.compile(r"storefront_digest"),
    re.compile(r"\.storageState\(\s*\{\s*path"),
    re.compile(r"(?i)(?:getByLabel|getByPlaceholder)\([^)]*password[^)]*\)\.(?:fill|type)\("),
    re.compile(r"(?i)\.(?:fill|type)\(\s*[^)]*password"),
    re.compile(r"storageState\s*:\s*\{\s*cookies\s*:\s*\[\s*\]"),
)

# A whole single-line statement.
_STATEMENT = re.compile(r"^[ \t]*(?:await\s+)?[^\n]*[;)][ \t]*\r?\n?$")


class AuthStrategy(FixStrategy):
    """Drops in-case password-gate handling.

    The saved storage state already carries the storefront session, so
    statements that visit ``/password``, type the store password, or swap
    the session out are removed.
    """

    category = FailureCategory.ENVIRONMENT_OR_AUTH

    def propose(
        self,
        source: CaseSource,
        evidence: FailureEvidence,
        classification: Classification,
    ) -> ProposedFix | None:
        kept: list[str] = []
        removed = 0
        for line in source.lines:
            if _STATEMENT.match(line) and any(p.search(line) for p in _CREDENTIAL_LINES):
                removed += 1
                continue
            kept.append(line)

        if not removed:
            return None
        return ProposedFix(
            source="".join(kept),
            description=(
                f"Removed {removed} in-case credential statement(s); "
                "the case now relies on the saved storefront session"
            ),
        )

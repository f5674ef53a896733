"""Fix appliers: turn a classified failure into a source change.

``SourceFixApplier`` dispatches to the rule-based strategy for the failure
category, rewrites only the failing ``test(...)`` call, and writes the file
back after the proposal passes the output guard.  ``LLMFixApplier`` adds an
LLM rewrite when no rule applies.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from healwright.agents.healers.strategies import (
    STRATEGIES,
    CaseSource,
    count_disallowed_waits,
    count_exclusion_markers,
)
from healwright.agents.healers.strategies.base import selector_needles
from healwright.agents.healers.strategies.llm import build_rewrite_request, clean_code_blocks
from healwright.llm.engine import LLMError
from healwright.models.healing import FailureCategory, Remediation
from healwright.parsing.treesitter import detect_language, find_test_calls, validate_typescript

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from healwright.agents.healers.strategies import FixStrategy, ProposedFix
    from healwright.llm.engine import LLMEngine
    from healwright.models.healing import Classification, FailureEvidence, TestCase

logger = logging.getLogger(__name__)

_PAGE_OBJECT_GLOBS = ("*.ts", "*.tsx", "*.js")


class FixApplier(ABC):
    """Applies one remediation for one failing case."""

    @abstractmethod
    async def apply(
        self,
        case: TestCase,
        classification: Classification,
        evidence: FailureEvidence,
    ) -> Remediation:
        """Attempt a fix and describe what was done.

        Returns a ``Remediation`` with ``applied=False`` when no change was
        made.  May raise; the caller isolates failures per case.
        """


@dataclass
class _LoadedCase:
    path: Path
    data: bytes
    start: int
    end: int
    start_line: int
    language: str

    @property
    def block(self) -> str:
        return self.data[self.start : self.end].decode("utf-8")

    def with_block(self, block: str) -> str:
        return (self.data[: self.start] + block.encode("utf-8") + self.data[self.end :]).decode(
            "utf-8"
        )


def check_proposal(before: str, after: str, language: str = "typescript") -> str | None:
    """Return why *after* must not replace *before*, or ``None`` if it may."""
    if after == before:
        return "proposal does not change the source"
    if count_disallowed_waits(after) > count_disallowed_waits(before):
        return "proposal adds a fixed-delay or network-idle wait"
    if count_exclusion_markers(after) > count_exclusion_markers(before):
        return "proposal skips or focuses a case instead of fixing it"
    errors_after = validate_typescript(after, language)
    if len(errors_after) > len(validate_typescript(before, language)):
        return f"proposal does not parse: {errors_after[0]}"
    return None


def focus_line(stack_trace: str, path: Path, start_line: int, end_line: int) -> int | None:
    """Line within the case block that *stack_trace* points at, if any."""
    pattern = re.compile(rf"{re.escape(path.name)}:(\d+)(?::\d+)?")
    for match in pattern.finditer(stack_trace):
        line = int(match.group(1))
        if start_line <= line <= end_line:
            return line - start_line + 1
    return None


class SourceFixApplier(FixApplier):
    """Rule-based applier over the TypeScript spec sources.

    Args:
        page_object_dirs: Directories searched for a failing selector when it
            is not written inline in the case (selector mismatches only).
        strategies: Category to strategy mapping; defaults to the built-in set.
    """

    def __init__(
        self,
        *,
        page_object_dirs: Sequence[Path] = (),
        strategies: Mapping[FailureCategory, FixStrategy | None] | None = None,
    ) -> None:
        self._page_object_dirs = list(page_object_dirs)
        self._strategies = STRATEGIES if strategies is None else strategies

    async def apply(
        self,
        case: TestCase,
        classification: Classification,
        evidence: FailureEvidence,
    ) -> Remediation:
        strategy = self._strategies.get(classification.category)
        if strategy is None:
            return _declined(case, classification, "no rule-based fix for this category")

        loaded = self._load_case(case)
        if isinstance(loaded, str):
            return _declined(case, classification, loaded)

        source = CaseSource(
            text=loaded.block,
            focus_line=focus_line(
                evidence.stack_trace,
                loaded.path,
                loaded.start_line,
                loaded.start_line + loaded.block.count("\n"),
            ),
            path=str(loaded.path),
        )
        proposal = strategy.propose(source, evidence, classification)
        if proposal is not None:
            return self._commit(case, classification, loaded, proposal)

        if classification.category == FailureCategory.SELECTOR_MISMATCH:
            remediation = self._fix_page_objects(case, classification, evidence, strategy)
            if remediation is not None:
                return remediation

        return _declined(case, classification, f"{type(strategy).__name__} found nothing to change")

    def _load_case(self, case: TestCase) -> _LoadedCase | str:
        """Locate the case's ``test(...)`` call, or return why it cannot be."""
        if not case.source_path:
            return "case has no source file"
        path = Path(case.source_path)
        try:
            data = path.read_bytes()
        except OSError as exc:
            return f"cannot read {path}: {exc}"

        language = detect_language(path) or "typescript"
        title = case.display_title
        for call in find_test_calls(data, language):
            if call.title == title:
                return _LoadedCase(
                    path=path,
                    data=data,
                    start=call.start_byte,
                    end=call.end_byte,
                    start_line=call.start_line,
                    language=language,
                )
        return f"test {title!r} not found in {path.name}"

    def _commit(
        self,
        case: TestCase,
        classification: Classification,
        loaded: _LoadedCase,
        proposal: ProposedFix,
    ) -> Remediation:
        before = loaded.data.decode("utf-8")
        after = loaded.with_block(proposal.source)
        return self._write(
            case,
            classification,
            loaded.path,
            before,
            after,
            description=proposal.description,
            language=loaded.language,
        )

    def _write(
        self,
        case: TestCase,
        classification: Classification,
        path: Path,
        before: str,
        after: str,
        *,
        description: str,
        language: str,
    ) -> Remediation:
        rejection = check_proposal(before, after, language)
        if rejection is not None:
            logger.warning("Rejected fix for %s: %s", case.id, rejection)
            return _declined(case, classification, f"rejected: {rejection}")

        path.write_text(after, encoding="utf-8")
        logger.info("Applied %s fix to %s: %s", classification.category.value, path, description)
        return Remediation(
            test_case_id=case.id,
            category=classification.category,
            description=f"{description} ({path.name})",
        )

    def _fix_page_objects(
        self,
        case: TestCase,
        classification: Classification,
        evidence: FailureEvidence,
        strategy: FixStrategy,
    ) -> Remediation | None:
        needles = selector_needles(classification.selector)
        if not needles:
            return None

        for directory in self._page_object_dirs:
            files = sorted({p for glob in _PAGE_OBJECT_GLOBS for p in directory.rglob(glob)})
            for path in files:
                try:
                    text = path.read_text(encoding="utf-8")
                except OSError:
                    continue
                if not any(needle in text for needle in needles):
                    continue
                proposal = strategy.propose(
                    CaseSource(text=text, path=str(path)), evidence, classification
                )
                if proposal is None:
                    continue
                language = detect_language(path) or "typescript"
                return self._write(
                    case,
                    classification,
                    path,
                    text,
                    proposal.source,
                    description=proposal.description,
                    language=language,
                )
        return None


class LLMFixApplier(SourceFixApplier):
    """Rule-based applier with an LLM rewrite when no rule applies.

    The model's output goes through the same guard as rule-based proposals.
    """

    def __init__(
        self,
        engine: LLMEngine,
        *,
        page_object_dirs: Sequence[Path] = (),
    ) -> None:
        super().__init__(page_object_dirs=page_object_dirs)
        self._engine = engine

    async def apply(
        self,
        case: TestCase,
        classification: Classification,
        evidence: FailureEvidence,
    ) -> Remediation:
        remediation = await super().apply(case, classification, evidence)
        if remediation.applied:
            return remediation

        loaded = self._load_case(case)
        if isinstance(loaded, str):
            return remediation

        source = CaseSource(text=loaded.block, path=str(loaded.path))
        request = build_rewrite_request(case, source, evidence, classification)
        try:
            response = await self._engine.generate(request)
        except LLMError as exc:
            logger.warning("LLM rewrite failed for %s: %s", case.id, exc)
            return _declined(case, classification, f"{remediation.description}; LLM rewrite failed")

        if response.truncated:
            reason = f"{remediation.description}; LLM output was cut off at the token limit"
            return _declined(case, classification, reason)

        rewritten = clean_code_blocks(response.text)
        if not rewritten:
            reason = f"{remediation.description}; LLM returned nothing"
            return _declined(case, classification, reason)

        before = loaded.data.decode("utf-8")
        after = loaded.with_block(rewritten)
        return self._write(
            case,
            classification,
            loaded.path,
            before,
            after,
            description=f"LLM rewrite ({self._engine.model_name})",
            language=loaded.language,
        )


def _declined(case: TestCase, classification: Classification, reason: str) -> Remediation:
    logger.info("No fix applied to %s: %s", case.id, reason)
    return Remediation(
        test_case_id=case.id,
        category=classification.category,
        description=reason,
        applied=False,
    )

"""Prompt construction for the LLM rewrite fallback."""

from __future__ import annotations

from typing import TYPE_CHECKING

from healwright.llm.engine import GenerationRequest, LLMMessage

if TYPE_CHECKING:
    from healwright.agents.healers.strategies.base import CaseSource
    from healwright.models.healing import Classification, FailureEvidence, TestCase

_SYSTEM_PROMPT = """\
You repair failing Playwright tests for a Shopify storefront.
Rewrite only the test you are given and return only its TypeScript source.

Rules:
- Never use page.waitForTimeout, setTimeout sleeps, or waitForLoadState('networkidle').
- Prefer getByRole, getByLabel and getByText over CSS or XPath selectors.
- Match dynamic text (counts, prices) with a regular expression.
- Use web-first assertions (await expect(locator).toBeVisible()) instead of one-shot reads.
- Do not log in or enter the store password; the saved storage state handles access.
- Reset any state the test needs inside the test itself.
- Never mark the test skip, fixme or only, and never remove or weaken its assertions."""

_CATEGORY_GUIDANCE = {
    "selector_mismatch": "The locator no longer resolves. Switch to a user-facing locator.",
    "timing_race": (
        "A state change was not observed in time. Rely on auto-waiting, then a retrying "
        "assertion, then waitFor on the element state, and only then waitForResponse."
    ),
    "state_isolation": "The test saw state left by another test. Reset it at the start.",
    "assertion_mismatch": "A comparator failed. Fix the expectation only if the page is right.",
    "environment_or_auth": "The test did not reach the storefront. Remove credential handling.",
    "unknown": "The cause is unclear. Make the smallest change that addresses the error.",
}


def build_rewrite_request(
    case: TestCase,
    source: CaseSource,
    evidence: FailureEvidence,
    classification: Classification,
) -> GenerationRequest:
    """Build the request asking the model to rewrite *source*."""
    prompt = (
        f"Test: {case.display_title}\n"
        f"Browser project: {evidence.environment or 'unknown'}\n"
        f"Failure category: {classification.category.value}\n"
        f"Guidance: {_CATEGORY_GUIDANCE[classification.category.value]}\n"
    )
    if classification.selector:
        prompt += f"Offending locator: {classification.selector}\n"
    prompt += f"\nError:\n{evidence.error_message}\n\nSource:\n```ts\n{source.text}```\n"

    return GenerationRequest(
        messages=[
            LLMMessage(role="system", content=_SYSTEM_PROMPT),
            LLMMessage(role="user", content=prompt),
        ],
        case_id=case.id,
    )


def clean_code_blocks(code: str) -> str:
    """Remove a markdown code fence if the model wrapped its output in one."""
    lines = code.strip().splitlines()
    if lines and lines[0].startswith("```"):
        lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
    return "\n".join(lines).strip()

"""Terminal reporter with rich output formatting."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from healwright.adapters.base import CaseStatus

if TYPE_CHECKING:
    from rich.status import Status

    from healwright.adapters.base import RunResult
    from healwright.models.healing import FailingCaseReport, HealingAttempt, HealingSession

console = Console()


_SECONDS_PER_MINUTE = 60.0
_MAX_ERROR_LENGTH = 60


def _format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string."""
    if seconds >= _SECONDS_PER_MINUTE:
        return f"{seconds / _SECONDS_PER_MINUTE:.1f}m"
    return f"{seconds:.1f}s"


def _truncate(text: str, limit: int) -> str:
    first_line = text.strip().splitlines()[0] if text.strip() else ""
    if len(first_line) <= limit:
        return first_line
    return first_line[: limit - 1] + "…"


_STATUS_STYLE = {
    CaseStatus.PASSED: "[green]passed[/green]",
    CaseStatus.FAILED: "[red]failed[/red]",
    CaseStatus.SKIPPED: "[yellow]skipped[/yellow]",
}


class CLIReporter:
    """Rich terminal output reporter for healing sessions."""

    def __init__(self, output: Console | None = None) -> None:
        self.console = output or console

    def print_header(self, title: str) -> None:
        """Print a bold header."""
        self.console.print(f"\n[bold cyan]{title}[/bold cyan]\n")

    def print_success(self, message: str) -> None:
        """Print a success message."""
        self.console.print(f"[green]✓[/green] {message}")

    def print_error(self, message: str) -> None:
        """Print an error message."""
        self.console.print(f"[red]✗[/red] {message}")

    def print_warning(self, message: str) -> None:
        """Print a warning message."""
        self.console.print(f"[yellow]⚠[/yellow] {message}")

    def print_info(self, message: str) -> None:
        """Print an info message."""
        self.console.print(f"[dim]{message}[/dim]")

    def print_session_header(self, case_count: int, projects: tuple[str, ...], budget: int) -> None:
        """Print a styled banner before the first attempt."""
        self.console.print()
        self.console.print(
            Panel(
                f"[bold white]Healing {case_count} case(s)[/bold white]  "
                f"[dim]projects: {', '.join(projects)}  budget: {budget}[/dim]",
                border_style="cyan",
                padding=(0, 2),
            )
        )

    def create_status(self, message: str) -> Status:
        """Create a Rich Status spinner for long-running operations."""
        return self.console.status(message)

    # ── Attempt progress ──────────────────────────────────────────────

    def print_attempt(self, attempt: HealingAttempt, max_attempts: int) -> None:
        """Print a one-line summary of a finished attempt and its fixes."""
        result = attempt.run_result
        dur_str = _format_duration(result.duration_ms / 1000)
        marker = "[green]✓[/green]" if result.success else "[red]✗[/red]"
        retries = ""
        if result.runner_retries:
            retries = f"  [dim]runner retries: {result.runner_retries}[/dim]"
        self.console.print(
            f"{marker} [bold cyan]Attempt {attempt.attempt_number}/{max_attempts}[/bold cyan]  "
            f"[green]{result.passed} passed[/green]  [red]{result.failed} failed[/red]  "
            f"[dim]⏱ {dur_str}[/dim]{retries}"
        )
        for remediation in attempt.remediations:
            icon = "[green]↻[/green]" if remediation.applied else "[yellow]⊘[/yellow]"
            self.console.print(
                f"  {icon} {escape(remediation.test_case_id)} "
                f"[dim]({remediation.category.value})[/dim] {escape(remediation.description)}"
            )

    # ── Results ───────────────────────────────────────────────────────

    def print_run_result(self, result: RunResult) -> None:
        """Print a table of per-case verdicts for a single run."""
        table = Table(title="Test Results", title_style="bold cyan")
        table.add_column("Case", style="bold")
        table.add_column("Status", justify="center")
        table.add_column("Failed in")
        table.add_column("Message")

        for case_id, case in result.cases.items():
            message = case.evidence.error_message if case.evidence else ""
            table.add_row(
                escape(case_id),
                _STATUS_STYLE[case.status],
                ", ".join(case.failed_environments),
                escape(_truncate(message, _MAX_ERROR_LENGTH)),
            )

        self.console.print(table)
        self.console.print(
            f"\n[bold]{result.total}[/bold] cases  [green]{result.passed} passed[/green]  "
            f"[red]{result.failed} failed[/red]  [yellow]{result.skipped} skipped[/yellow]"
        )

    def print_session_summary(self, session: HealingSession) -> None:
        """Print the terminal outcome of a session and any failing-case entries."""
        table = Table(title="Healing Attempts", title_style="bold cyan")
        table.add_column("Attempt", justify="right", style="bold")
        table.add_column("Passed", justify="right")
        table.add_column("Failed", justify="right")
        table.add_column("Fixes applied", justify="right")
        table.add_column("Fixes declined", justify="right")

        for attempt in session.attempts:
            applied = sum(1 for r in attempt.remediations if r.applied)
            table.add_row(
                str(attempt.attempt_number),
                f"[green]{attempt.passed}[/green]",
                f"[red]{attempt.failed}[/red]" if attempt.failed else "0",
                str(applied),
                str(len(attempt.remediations) - applied),
            )
        self.console.print()
        self.console.print(table)

        dur_str = _format_duration(session.duration_ms / 1000)
        if session.all_passed:
            self.print_success(
                f"All cases passed after {session.attempts_run} attempt(s) [dim]({dur_str})[/dim]"
            )
            return

        self.print_error(
            f"Budget exhausted after {session.attempts_run}/{session.max_attempts} attempt(s) "
            f"[dim]({session.termination_cause.value}, {dur_str})[/dim]"
        )
        for entry in session.failing_cases:
            self.print_failing_case(entry)

    def print_failing_case(self, entry: FailingCaseReport) -> None:
        """Print one failing-case entry as a panel."""
        lines = [
            f"[bold]Category:[/bold] {entry.suspected_category.value}",
            f"[bold]Environment:[/bold] {escape(entry.environment or '-')}",
            f"[bold]Remediations applied:[/bold] {entry.remediation_count}",
        ]
        if entry.no_progress:
            lines.append("[yellow]No progress: identical failure in every attempt[/yellow]")
        lines.append("")
        lines.append("[bold]Last error:[/bold]")
        lines.append(escape(entry.last_error_message.strip() or "(no message)"))
        if entry.investigation_suggestions:
            lines.append("")
            lines.append("[bold]Investigate:[/bold]")
            lines.extend(f"  • {escape(s)}" for s in entry.investigation_suggestions)
        if entry.recommended_next_commands:
            lines.append("")
            lines.append("[bold]Next commands:[/bold]")
            lines.extend(f"  [cyan]$ {escape(c)}[/cyan]" for c in entry.recommended_next_commands)

        self.console.print(
            Panel(
                "\n".join(lines),
                title=f"[bold red]{escape(entry.test_case_id)}[/bold red]",
                border_style="red",
                padding=(0, 1),
            )
        )


reporter = CLIReporter()

"""Rich console output for test runs: startup banner, progress and reports."""

from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ragqa.schemas.categories import CATEGORY_INFO, Category
from ragqa.schemas.records import RunProgress, TestQuestion, TestRun

console = Console()

STATUS_COLORS = {
    "pending": "dim",
    "generating": "cyan",
    "running": "cyan",
    "evaluating": "cyan",
    "completed": "green",
    "failed": "red",
}


def score_style(score: float | None) -> str:
    if score is None:
        return "dim"
    if score >= 85:
        return "bold green"
    if score >= 70:
        return "green"
    if score >= 50:
        return "yellow"
    return "bold red"


def print_header(run: TestRun, model: str) -> None:
    """Print the startup banner for a new run."""
    config = run.config
    console.print()
    console.print(
        Panel(
            f"[bold]RAG Chatbot QA Test[/bold]\n\n"
            f"  Tenant: [cyan]{run.tenant_id}[/cyan]\n"
            f"  Run: [cyan]{run.id}[/cyan]\n"
            f"  Questions: [cyan]{run.total_questions}[/cyan]\n"
            f"  Categories: [cyan]{len(config.categories)}[/cyan]\n"
            f"  Languages: [cyan]{', '.join(config.languages)}[/cyan]\n"
            f"  Judge model: [cyan]{model}[/cyan]",
            border_style="bright_blue",
            padding=(1, 2),
        )
    )
    console.print()


def print_progress(progress: RunProgress) -> None:
    color = STATUS_COLORS.get(progress.status.value, "white")
    phase = progress.current_phase.value if progress.current_phase else "-"
    console.print(
        f"  [{color}]{progress.status.value}[/{color}] "
        f"phase={phase} "
        f"{progress.questions_completed}/{progress.total_questions} "
        f"({progress.percent}%)"
    )


def build_category_table(run: TestRun) -> Table:
    table = Table(title="Scores by category", show_lines=False)
    table.add_column("Category")
    table.add_column("Score", justify="right")
    enabled = set(run.config.categories)
    for category in Category:
        if category not in enabled:
            continue
        score = run.scores_by_category.get(category.value)
        text = f"{score:.1f}" if score is not None else "-"
        table.add_row(CATEGORY_INFO[category]["label"], f"[{score_style(score)}]{text}[/]")
    return table


def build_questions_table(questions: list[TestQuestion], limit: int = 20) -> Table:
    """Lowest scoring questions first."""
    table = Table(title="Lowest scoring questions")
    table.add_column("#", justify="right")
    table.add_column("Category")
    table.add_column("Question", overflow="fold")
    table.add_column("Score", justify="right")
    table.add_column("Issues", overflow="fold")
    ranked = sorted(
        (q for q in questions if q.score is not None),
        key=lambda q: (q.score, q.position),
    )
    for q in ranked[:limit]:
        issues = ", ".join(q.evaluation.issues) if q.evaluation else ""
        table.add_row(
            str(q.position + 1),
            q.category.value,
            q.question,
            f"[{score_style(q.score)}]{q.score:.0f}[/]",
            issues,
        )
    return table


def print_report(run: TestRun, questions: list[TestQuestion] | None = None) -> None:
    """Print the full report of a finished (or failed) run."""
    console.print()
    if run.status.value == "failed":
        details = run.error_details or {}
        console.print(
            Panel(
                f"[bold red]Run failed[/bold red] in phase "
                f"[cyan]{details.get('phase', '?')}[/cyan]\n\n{run.error_message or ''}",
                border_style="red",
                padding=(1, 2),
            )
        )

    overall = run.overall_score
    overall_text = f"{overall:.1f}" if overall is not None else "-"
    costs = run.cost_breakdown
    console.print(
        Panel(
            f"  Overall score: [{score_style(overall)}]{overall_text}[/]\n"
            f"  Questions: {run.questions_completed}/{run.total_questions}\n"
            f"  Duration: {run.duration_seconds if run.duration_seconds is not None else '-'}s\n"
            f"  Cost: ${costs.total:.4f} "
            f"(generation ${costs.generation:.4f}, execution ${costs.execution:.4f}, "
            f"evaluation ${costs.evaluation:.4f})",
            title=f"[bold]Test run {run.id}[/bold]",
            border_style=STATUS_COLORS.get(run.status.value, "white"),
            padding=(1, 2),
        )
    )

    if run.scores_by_category:
        console.print(build_category_table(run))

    if run.summary is not None:
        for title, bullets, color in (
            ("Strengths", run.summary.strengths, "green"),
            ("Weaknesses", run.summary.weaknesses, "red"),
            ("Recommendations", run.summary.recommendations, "yellow"),
        ):
            console.print(f"\n  [bold {color}]{title}[/bold {color}]")
            for bullet in bullets:
                console.print(f"   - {bullet}")

    if questions:
        console.print()
        console.print(build_questions_table(questions))
    console.print()


def print_runs(runs: list[TestRun]) -> None:
    table = Table(title="Test runs")
    table.add_column("Run")
    table.add_column("Status")
    table.add_column("Score", justify="right")
    table.add_column("Questions", justify="right")
    table.add_column("Created")
    for run in runs:
        color = STATUS_COLORS.get(run.status.value, "white")
        score = f"{run.overall_score:.1f}" if run.overall_score is not None else "-"
        table.add_row(
            run.id,
            f"[{color}]{run.status.value}[/{color}]",
            score,
            f"{run.questions_completed}/{run.total_questions}",
            run.created_at.isoformat(timespec="seconds") if run.created_at else "-",
        )
    console.print(table)


def print_info(message: str) -> None:
    """Print an informational message."""
    console.print(f"  [dim]{message}[/dim]")


def print_error(message: str) -> None:
    console.print(f"[bold red]{message}[/bold red]")


def print_langsmith_status(enabled: bool) -> None:
    """Print LangSmith tracing status."""
    if enabled:
        console.print("  [green]LangSmith tracing: enabled[/green]")
    else:
        console.print("  [dim]LangSmith tracing: disabled[/dim]")

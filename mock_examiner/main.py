"""
Mock Examiner CLI Application.

Terminal front end for taking a mock exam: extracts a paper, walks through
its questions, grades each answer and prints a summary with a study plan.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.prompt import Prompt
from rich.table import Table

from mock_examiner.config import Settings, get_settings
from mock_examiner.gateway import AIProviderGateway
from mock_examiner.models import ExamSummary, Feedback, Phase, Question, QuestionType
from mock_examiner.paper.validator import AnswerValidationError
from mock_examiner.session.flow import ExamFlow, ExamTimer
from mock_examiner.session.storage import JsonFileStore
from mock_examiner.session.store import ExamSessionStore

app = typer.Typer(
    name="mock-examiner",
    help="Take a mock exam against a question paper and mark scheme",
    add_completion=False,
)

console = Console()

HELP_TEXT = (
    "Type your answer and press Enter to submit.\n"
    "Commands: [cyan]:skip[/cyan]  [cyan]:hint[/cyan]  [cyan]:quote TEXT[/cyan]  "
    "[cyan]:quit[/cyan]\n"
    "Lists: separate items with ';'. Tables: rows with ';', cells with '|'. "
    "Graphs: JSON like {\"points\": [{\"x\": 1, \"y\": 2}]}."
)


def _configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_flow(settings: Settings) -> ExamFlow:
    store = ExamSessionStore(JsonFileStore(settings.storage_directory), settings.session_key)
    return ExamFlow(store, AIProviderGateway(settings))


@app.command()
def take(
    paper: Annotated[Path, typer.Argument(help="Path to the question paper (.pdf, .txt, .md)")],
    scheme: Annotated[
        Optional[Path],
        typer.Option("--scheme", "-s", help="Path to the mark scheme"),
    ] = None,
    insert: Annotated[
        Optional[Path],
        typer.Option("--insert", "-i", help="Path to the insert / source booklet"),
    ] = None,
    paper_id: Annotated[
        Optional[str],
        typer.Option("--paper-id", help="Identifier used to resume this paper later"),
    ] = None,
) -> None:
    """
    Extract a paper and start a new exam.
    """
    settings = get_settings()
    _configure_logging(settings)

    for path in (paper, scheme, insert):
        if path is not None and not path.exists():
            console.print(f"[red]Error:[/red] File not found: {path}")
            raise typer.Exit(1)

    asyncio.run(_take(settings, paper, scheme, insert, paper_id or paper.stem))


async def _take(
    settings: Settings,
    paper: Path,
    scheme: Path | None,
    insert: Path | None,
    paper_id: str,
) -> None:
    flow = _build_flow(settings)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        progress.add_task("Analyzing exam paper... (this may take a moment)", total=None)
        started = await flow.start_parsing(paper, scheme, insert, paper_id=paper_id)

    if not started:
        console.print(f"[red]Parsing Error:[/red] {flow.error}")
        raise typer.Exit(1)

    console.print(f"[green]Loaded {len(flow.store.questions)} questions.[/green]")
    if scheme is not None and not flow.store.mark_scheme:
        console.print("[yellow]⚠ Mark scheme could not be parsed; marking will be less precise.[/yellow]")

    await _run_exam(flow)


@app.command()
def resume(
    paper_id: Annotated[
        Optional[str],
        typer.Option("--paper-id", help="Only resume the session for this paper"),
    ] = None,
) -> None:
    """
    Resume the saved exam session.
    """
    settings = get_settings()
    _configure_logging(settings)
    asyncio.run(_resume(settings, paper_id))


async def _resume(settings: Settings, paper_id: str | None) -> None:
    flow = _build_flow(settings)
    if not flow.resume(paper_id):
        console.print("[yellow]No saved session to resume.[/yellow]")
        raise typer.Exit(1)
    console.print(
        f"[green]Resumed at question {flow.store.current_index + 1} "
        f"of {len(flow.store.questions)}.[/green]"
    )
    await _run_exam(flow)


@app.command()
def summary() -> None:
    """
    Show the summary of the saved exam session.
    """
    settings = get_settings()
    _configure_logging(settings)
    flow = _build_flow(settings)
    if not flow.resume():
        console.print("[yellow]No saved session.[/yellow]")
        raise typer.Exit(1)
    flow.close()
    _display_summary(flow.summary())


@app.command()
def clear() -> None:
    """
    Delete the saved exam session.
    """
    settings = get_settings()
    _configure_logging(settings)
    _build_flow(settings).reset()
    console.print("[green]✓ Saved session cleared[/green]")


@app.command()
def health() -> None:
    """
    Check configuration and provider connectivity.
    """
    settings = get_settings()
    _configure_logging(settings)
    console.print("[bold]Mock Examiner Health Check[/bold]\n")

    console.print("[dim]Checking configuration...[/dim]")
    console.print(f"  Grader: {settings.grader_base_url} ({settings.grader_model})")
    console.print(f"  Grader key: {'set' if settings.has_grader else 'missing (local marking only)'}")
    console.print(f"  Tutor: {settings.tutor_base_url} ({settings.tutor_model})")
    console.print(f"  Tutor key: {'set' if settings.has_tutor else 'missing (cannot extract papers)'}")
    console.print(f"  Session storage: {settings.storage_directory}")

    console.print("\n[dim]Checking API connectivity...[/dim]")
    status = asyncio.run(AIProviderGateway(settings).health_check())
    if not status:
        console.print("[yellow]⚠ No providers configured[/yellow]")
        raise typer.Exit(1)

    for role, reachable in status.items():
        mark = "[green]✓" if reachable else "[red]✗"
        console.print(f"{mark} {role} API {'is' if reachable else 'is not'} reachable[/]")

    if not all(status.values()):
        raise typer.Exit(1)


# ==============================================================================
# Interactive Exam Loop
# ==============================================================================


async def _ask(prompt: str) -> str:
    return await asyncio.to_thread(Prompt.ask, prompt, default="", show_default=False)


def _parse_answer(question: Question, text: str) -> Any:
    """Turn typed input into the raw answer shape for the question type."""
    if question.type == QuestionType.LIST:
        return [item.strip() for item in text.split(";")]
    if question.type == QuestionType.TABLE:
        return [[cell.strip() for cell in row.split("|")] for row in text.split(";")]
    if question.type == QuestionType.GRAPH_DRAWING:
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            console.print("[red]Graph answers must be JSON.[/red]")
            return None
        return data if isinstance(data, dict) else None
    return text


async def _run_exam(flow: ExamFlow) -> None:
    console.print(Panel(HELP_TEXT, title="How to answer"))

    try:
        while flow.store.current_question is not None and flow.phase == Phase.EXAM:
            question = flow.store.current_question
            _display_question(flow, question)

            if question.id in flow.store.feedback:
                _display_feedback(flow.store.feedback[question.id])
                if not await _after_feedback(flow):
                    return
                continue

            command = (await _ask("[bold]Answer[/bold]")).strip()
            if command == ":quit":
                console.print("[dim]Session saved. Use 'mock-examiner resume' to continue.[/dim]")
                return
            if command == ":skip":
                flow.skip()
                continue
            if command == ":hint":
                console.print(Panel(Markdown(await flow.hint()), title="Hint"))
                continue
            if command.startswith(":quote "):
                flow.store.update_quote_draft(question.id, command[len(":quote "):])
                flow.store.insert_quote_into_answer(question.id)
                flow.store.persist(flow.phase)
                console.print("[dim]Quote added to your answer.[/dim]")
                continue

            if command:
                flow.record_answer(_parse_answer(question, command))

            try:
                with console.status("Marking..."):
                    feedback = await flow.submit_answer()
            except AnswerValidationError as e:
                console.print(f"[yellow]{e}[/yellow]")
                continue

            _display_feedback(feedback)
            if not await _after_feedback(flow):
                return
    finally:
        flow.close()

    _display_summary(flow.summary())
    if (await _ask("Generate a study plan? [y/N]")).strip().lower() == "y":
        with console.status("Writing study plan..."):
            plan = await flow.study_plan()
        console.print(Panel(Markdown(plan), title="Study Plan"))


async def _after_feedback(flow: ExamFlow) -> bool:
    """Offer explanation and follow-up; returns False when the user quits."""
    while True:
        command = (await _ask("[dim]Enter to continue, :explain, :ask TEXT, :quit[/dim]")).strip()
        if command == ":quit":
            return False
        if command == ":explain":
            console.print(Panel(Markdown(await flow.explain()), title="Explanation"))
            continue
        if command.startswith(":ask "):
            reply = await flow.follow_up(command[len(":ask "):])
            console.print(Panel(Markdown(reply), title="Tutor"))
            continue
        flow.next()
        return True


def _display_question(flow: ExamFlow, question: Question) -> None:
    index = flow.store.current_index + 1
    header = f"Question {question.id} ({question.marks} marks) · {index}/{len(flow.store.questions)}"
    if question.page_number:
        header += f" · page {question.page_number}"
    header += f" · {ExamTimer.format(flow.timer.elapsed_seconds)}"

    body = question.question
    if question.context and question.context.content:
        body += f"\n\n[dim]{question.context.content}[/dim]"
    if question.options:
        body += "\n\n" + "\n".join(f"  {chr(65 + i)}. {o}" for i, o in enumerate(question.options))
    if question.id in flow.store.skipped:
        header += " · skipped"

    console.print(Panel(body, title=header, subtitle=question.section))


def _display_feedback(feedback: Feedback) -> None:
    ratio = feedback.score / feedback.total_marks if feedback.total_marks else 0
    color = "green" if ratio >= 0.7 else "yellow" if ratio >= 0.5 else "red"
    console.print(
        Panel(
            Markdown(feedback.text),
            title=f"[{color}][bold]{feedback.score} / {feedback.total_marks}[/bold][/{color}]",
            subtitle=feedback.method.value,
        )
    )
    if feedback.rewrite:
        console.print(Panel(Markdown(feedback.rewrite), title="Model Answer"))


def _display_summary(result: ExamSummary) -> None:
    color = "green" if result.percentage >= 70 else "yellow" if result.percentage >= 50 else "red"
    console.print(
        Panel(
            f"[{color}][bold]{result.total_score} / {result.total_possible}[/bold] "
            f"({result.percentage}%) · Grade {result.grade}[/{color}]\n"
            f"Answered {result.answered} of {result.question_count} questions",
            title="Final Score",
        )
    )

    if result.weaknesses:
        table = Table(title="Repeated Weaknesses")
        table.add_column("Weakness", style="cyan")
        table.add_column("Count", justify="right")
        for weakness in result.weaknesses:
            table.add_row(weakness.label, str(weakness.count))
        console.print(table)


if __name__ == "__main__":
    app()

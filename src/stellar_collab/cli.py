"""
Command Line Interface for Stellar Collab.

This module provides CLI commands for validating configuration and for
running the engine's planning, coordination, conflict and negotiation
operations on JSON input files.
"""

import asyncio
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Type, TypeVar

import typer
from pydantic import BaseModel, ValidationError
from rich.console import Console
from rich.table import Table

from stellar_collab import __version__
from stellar_collab.agents.advisor import HttpAdvisor
from stellar_collab.config.settings import get_settings, validate_required_settings
from stellar_collab.core.exceptions import CollaborationEngineError
from stellar_collab.core.logging import get_logger, setup_logging
from stellar_collab.orchestration.conflicts import AgentConflict
from stellar_collab.orchestration.coordination import ComplexTask
from stellar_collab.orchestration.engine import CollaborationEngine
from stellar_collab.orchestration.goals import CollaborationGoal
from stellar_collab.orchestration.negotiation import AgentNegotiation

app = typer.Typer(
    name="stellar-collab",
    help="Multi-agent collaboration and coordination engine CLI",
    add_completion=False,
)
console = Console()

ModelT = TypeVar("ModelT", bound=BaseModel)
ResultT = TypeVar("ResultT")


def _load(path: Path, model: Type[ModelT]) -> ModelT:
    try:
        return model.model_validate_json(path.read_text(encoding="utf-8"))
    except OSError as e:
        console.print(f"❌ Cannot read {path}: {e}", style="red")
        sys.exit(1)
    except ValidationError as e:
        console.print(f"❌ Invalid {model.__name__} in {path}:\n{e}", style="red")
        sys.exit(1)


@asynccontextmanager
async def _engine() -> AsyncIterator[CollaborationEngine]:
    """Engine for one command; the advisor HTTP client is closed on exit."""
    settings = get_settings()
    if settings.advisor_url is None:
        yield CollaborationEngine(settings=settings.engine)
        return

    async with HttpAdvisor(
        str(settings.advisor_url),
        api_key=settings.advisor_api_key,
        timeout_seconds=settings.engine.advisor_timeout_seconds,
    ) as advisor:
        yield CollaborationEngine(settings=settings.engine, advisor=advisor)


def _run(operation: Callable[[CollaborationEngine], Awaitable[ResultT]]) -> ResultT:
    async def run() -> ResultT:
        async with _engine() as engine:
            return await operation(engine)

    try:
        return asyncio.run(run())
    except CollaborationEngineError as e:
        console.print(f"❌ {type(e).__name__}: {e}", style="red")
        sys.exit(1)


@app.command()
def version():
    """Show version information."""
    console.print(f"Stellar Collab v{__version__}")


@app.command()
def validate_config():
    """Validate engine configuration."""
    try:
        settings = get_settings()
        validate_required_settings()

        console.print("✅ Configuration validation successful!", style="green")

        table = Table(title="Configuration Summary")
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="magenta")

        table.add_row("Environment", settings.environment)
        table.add_row("Debug Mode", str(settings.debug))
        table.add_row("Log Level", settings.log_level)
        table.add_row("Advisor", "✅ Configured" if settings.advisor_url else "❌ Not configured (fallback policies)")

        engine = settings.engine
        table.add_row("Max Concurrent Collaborations", str(engine.max_concurrent_collaborations))
        table.add_row("Collaboration Timeout (min)", f"{engine.collaboration_timeout_minutes:g}")
        table.add_row("Conflict Timeout (min)", f"{engine.conflict_resolution_timeout_minutes:g}")
        table.add_row("Negotiation Rounds Limit", str(engine.negotiation_rounds_limit))
        table.add_row("Consensus Threshold", f"{engine.consensus_threshold:.2f}")
        table.add_row("Auto Conflict Resolution", str(engine.auto_conflict_resolution))
        table.add_row("Quality Threshold", f"{engine.collaboration_quality_threshold:.2f}")

        console.print(table)

    except Exception as e:
        console.print(f"❌ Configuration validation failed: {e}", style="red")
        sys.exit(1)


@app.command()
def setup_logging_cmd(
    log_level: str = typer.Option("INFO", help="Log level"),
    environment: str = typer.Option("development", help="Environment"),
    log_file: Optional[Path] = typer.Option(None, help="Log file path"),
):
    """Set up logging configuration."""
    try:
        setup_logging(log_level, environment, log_file)
        logger = get_logger("cli")
        logger.info("Logging setup completed", log_level=log_level, environment=environment)
        console.print("✅ Logging setup successful!", style="green")
    except Exception as e:
        console.print(f"❌ Logging setup failed: {e}", style="red")
        sys.exit(1)


@app.command()
def plan(
    agents: List[str] = typer.Argument(..., help="Participating agent ids"),
    goal: Path = typer.Option(..., "--goal", help="CollaborationGoal JSON file"),
):
    """Create a collaboration plan for AGENTS working on a goal."""
    collaboration_goal = _load(goal, CollaborationGoal)
    result = _run(lambda engine: engine.facilitate_collaboration(agents, collaboration_goal))

    structure = result.collaboration_structure
    console.print(
        f"📋 Plan {result.plan_id}: {structure.topology.value} topology, "
        f"leader {structure.leader_id}, quality {result.quality_score:.2f}",
        style="blue",
    )

    table = Table(title="Participating Agents")
    table.add_column("Agent", style="cyan")
    table.add_column("Role", style="magenta")
    table.add_column("Responsibilities")
    for participant in result.participating_agents:
        table.add_row(
            participant.agent_id,
            participant.role.role_type.value,
            "; ".join(r.description for r in participant.responsibilities),
        )
    console.print(table)

    console.print(f"Protocols: {', '.join(p.name for p in result.communication_protocols)}")
    console.print(f"Mechanisms: {', '.join(result.coordination_mechanisms) or 'none'}")


@app.command()
def coordinate(task: Path = typer.Argument(..., help="ComplexTask JSON file")):
    """Build an execution plan for a complex task."""
    complex_task = _load(task, ComplexTask)
    result = _run(lambda engine: engine.coordinate_complex_tasks(complex_task))

    workflow = result.workflow_orchestration
    console.print(
        f"🧭 Task {result.task_id}: {result.coordination_strategy.value} strategy, "
        f"{result.estimated_total_duration:g} minutes on the critical path",
        style="blue",
    )

    table = Table(title="Execution Sequence")
    table.add_column("#", style="cyan")
    table.add_column("Subtask", style="magenta")
    table.add_column("Agent")
    table.add_column("Sync Point")
    for index, subtask_id in enumerate(workflow.execution_sequence, start=1):
        table.add_row(
            str(index),
            subtask_id,
            result.agent_assignments.by_subtask[subtask_id],
            "✅" if subtask_id in workflow.synchronization_points else "",
        )
    console.print(table)
    console.print(f"Critical path: {' -> '.join(result.critical_path)}")


@app.command()
def resolve(conflict: Path = typer.Argument(..., help="AgentConflict JSON file")):
    """Resolve a reported agent conflict."""
    agent_conflict = _load(conflict, AgentConflict)
    result = _run(lambda engine: engine.resolve_agent_conflicts(agent_conflict))

    table = Table(title=f"Resolution for {result.conflict_id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_row("Strategy", result.resolution_strategy.value)
    table.add_row("Success Probability", f"{result.outcome_assessment.success_probability:.2f}")
    table.add_row("Status", result.status.value)
    table.add_row(
        "Escalation",
        f"⚠️ to {result.escalation_path.to_level.value}" if result.escalation_path else "not required",
    )
    console.print(table)

    for action in result.resolution_actions:
        console.print(f"  {action.step}. {action.description}")


@app.command()
def negotiate(negotiation: Path = typer.Argument(..., help="AgentNegotiation JSON file")):
    """Run a negotiation with interest-based participants."""
    agent_negotiation = _load(negotiation, AgentNegotiation)
    result = _run(lambda engine: engine.facilitate_negotiation(agent_negotiation))

    style = "green" if result.final_agreement else "yellow"
    console.print(
        f"🤝 Negotiation {result.negotiation_id}: {result.outcome_status.value} "
        f"after {result.rounds_completed} round(s)",
        style=style,
    )

    table = Table(title="Satisfaction")
    table.add_column("Agent", style="cyan")
    table.add_column("Score", style="magenta")
    for agent_id, score in result.satisfaction_scores.items():
        table.add_row(agent_id, f"{score:.2f}")
    console.print(table)

    if result.escalation_required:
        console.print("⚠️ Escalation required", style="yellow")


if __name__ == "__main__":
    app()

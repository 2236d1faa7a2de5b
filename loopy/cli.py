"""Click CLI — config loading, backend selection, the conversation loop and maintenance commands."""

import asyncio
import logging
import sys
from collections import defaultdict
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.rule import Rule

from config.config_loader import AppConfig, ConfigurationError, load_config
from loopy.health import analyze_log
from loopy.healthcheck import run_health_checks
from loopy.output import TranscriptLog
from loopy.providers.anthropic import AnthropicProvider
from loopy.providers.base import AIProvider, ProviderError
from loopy.providers.gemini import GeminiProvider
from loopy.providers.openai_provider import OpenAIProvider
from loopy.session import BackendUnavailableError, ConversationLoop, open_session
from loopy.tools import PLAN_FILE

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

PROVIDER_CLASSES: dict[str, type[AIProvider]] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "gemini": GeminiProvider,
}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _load_config_or_exit(settings: str | None) -> AppConfig:
    try:
        return load_config(Path(settings)) if settings else load_config()
    except FileNotFoundError as exc:
        console.print(f"[bold red]Config error:[/bold red] {escape(str(exc))}")
        sys.exit(1)


def _build_provider(config: AppConfig, name: str) -> AIProvider:
    """Instantiate the provider for a configured backend name, keyed by its sdk."""
    if name not in config.models:
        raise ProviderError(name, "not configured in settings.yaml")
    model_cfg = config.models[name]
    if model_cfg.sdk not in PROVIDER_CLASSES:
        raise ProviderError(name, f"unknown sdk '{model_cfg.sdk}'")
    return PROVIDER_CLASSES[model_cfg.sdk](model_cfg)


def _build_all_providers(config: AppConfig) -> dict[str, AIProvider]:
    """Build all available providers. Returns dict keyed by name."""
    providers: dict[str, AIProvider] = {}
    for name in sorted(config.available_providers):
        try:
            providers[name] = _build_provider(config, name)
        except ProviderError as exc:
            logging.warning("Failed to instantiate provider '%s': %s", name, exc)
    return providers


def _print_check_results(results: dict[str, tuple[bool, str]]) -> list[str]:
    failed: list[str] = []
    for name in sorted(results):
        ok, err = results[name]
        if ok:
            console.print(f"  [green]OK  [/green] {name}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] {name}: {escape(short_err)}")
            failed.append(name)
    return failed


@click.group()
@click.option("--settings", default=None, type=click.Path(), help="Path to settings.yaml (default: bundled)")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.pass_context
def main(ctx: click.Context, settings: str | None, verbose: bool) -> None:
    """Loopy -- rotating personas talk their way from brainstorm to a decision.

    \b
    Examples:
      loopy run
      loopy run --backend claude --max-iterations 20
      loopy health
      loopy reset --yes
    """
    # Model output may contain characters the Windows console cannot encode
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)
    ctx.obj = {"settings": settings}


@main.command()
@click.option("--backend", default=None, help="Backend name from settings.yaml (default: from config)")
@click.option("--max-iterations", default=None, type=int, help="Stop after N turns (default: run forever)")
@click.option("--sleep", "sleep_sec", default=None, type=float, help="Seconds between turns (default: from config)")
@click.option("--strict/--no-strict", "strict", default=None, help="Strict filtering of moderator output")
@click.option("--skip-health-check", is_flag=True, default=False,
              help="Skip the backend connectivity check at startup")
@click.pass_context
def run(
    ctx: click.Context,
    backend: str | None,
    max_iterations: int | None,
    sleep_sec: float | None,
    strict: bool | None,
    skip_health_check: bool,
) -> None:
    """Run the conversation loop."""
    config = _load_config_or_exit(ctx.obj["settings"])
    if sleep_sec is not None:
        config.loop.sleep_sec = sleep_sec
    if strict is not None:
        config.personas.strict_moderator = strict
    backend_name = backend or config.backend

    try:
        session = open_session(config)
    except ConfigurationError as exc:
        console.print(f"[bold red]Config error:[/bold red] {escape(str(exc))}")
        sys.exit(1)

    try:
        provider = _build_provider(config, backend_name)
    except ProviderError as exc:
        console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
        sys.exit(1)

    if not skip_health_check:
        console.print("\n[bold]Checking backend...[/bold]")
        results = asyncio.run(run_health_checks({backend_name: provider}))
        if _print_check_results(results):
            console.print("\n[bold red]Error:[/bold red] Backend failed the health check.")
            sys.exit(1)

    console.print(
        f"\n[bold cyan]Loopy[/bold cyan] — {len(session.personas)} personas, "
        f"backend {backend_name} ({provider.model_string()}), stage {session.workflow.stage}"
    )
    console.print(f"Personas: {', '.join(session.persona_ids)}\n")

    log = TranscriptLog(config.paths.log, config.paths.keyword_log, config.log_keywords)
    loop = ConversationLoop(config, provider, session, log)
    try:
        asyncio.run(loop.run(max_iterations=max_iterations))
    except BackendUnavailableError as exc:
        console.print(f"[bold red]Backend unavailable:[/bold red] {escape(str(exc))}")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped.[/dim]")


@main.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Ping every configured backend that has credentials."""
    config = _load_config_or_exit(ctx.obj["settings"])
    providers = _build_all_providers(config)
    if not providers:
        console.print("[bold red]Error:[/bold red] No providers available. Check API keys in .env.")
        sys.exit(1)
    console.print("\n[bold]Checking providers...[/bold]")
    failed = _print_check_results(asyncio.run(run_health_checks(providers)))
    if failed:
        sys.exit(1)


@main.command()
@click.option("--log", "log_path", default=None, type=click.Path(), help="Log to analyze (default: from config)")
@click.pass_context
def health(ctx: click.Context, log_path: str | None) -> None:
    """Report repetition, loops and stagnation in the conversation log."""
    config = _load_config_or_exit(ctx.obj["settings"])
    path = Path(log_path) if log_path else config.paths.log
    if not path.exists():
        console.print(f"[bold red]Error:[/bold red] Log not found: {path}")
        sys.exit(1)

    turn_count, issues = analyze_log(path)
    console.print(f"Total turns: {turn_count}")
    if not issues:
        console.print("[green]No issues detected.[/green]")
        return

    console.print(f"[red]Found {len(issues)} issues:[/red]")
    by_type: dict[str, list] = defaultdict(list)
    for issue in issues:
        by_type[issue.type].append(issue)
    for issue_type, grouped in by_type.items():
        console.print(Rule(f"{issue_type} ({len(grouped)} occurrences)", align="left"))
        for issue in grouped:
            console.print(f"  • {issue.message}")

    if any(i.critical for i in issues):
        console.print("\n[bold yellow]Critical conversation health issues detected.[/bold yellow]")
        sys.exit(1)


@main.command()
@click.option("--yes", is_flag=True, default=False, help="Do not ask for confirmation")
@click.pass_context
def reset(ctx: click.Context, yes: bool) -> None:
    """Delete the conversation, workflow state, logs and shared plan."""
    config = _load_config_or_exit(ctx.obj["settings"])
    targets = [
        config.paths.conversation,
        config.paths.workflow_state,
        config.paths.log,
        config.paths.keyword_log,
        config.paths.context_dir / PLAN_FILE,
    ]
    if not yes and not click.confirm("Delete conversation state and logs?", default=False):
        sys.exit(0)
    for path in targets:
        if path.exists():
            path.unlink()
            console.print(f"[green]Deleted[/green] {path}")
    console.print("Ready for a fresh start.")


if __name__ == "__main__":
    main()

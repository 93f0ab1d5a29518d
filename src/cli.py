#!/usr/bin/env python3
"""
CLI interface for the CareerMatch recommendation engine.

Usage:
    python -m src.cli catalog-load careers.json
    python -m src.cli recommend profile.json --k 5
    python -m src.cli stats
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from src.careermatch import CareerDatabase, InsightClient, InsightError, UserProfile
from src.careermatch.knn import (
    CacheUnavailable,
    DimensionMismatch,
    EmptyCandidatePool,
    RecommendationEngine,
    RecommendOptions,
)

app = typer.Typer(
    name="careermatch",
    help="CareerMatch - career recommendations from assessment profiles",
    add_completion=False,
)
console = Console()

DEFAULT_DB = "data/careers.db"


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with Rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)],
    )


def _load_profile(path: Path) -> UserProfile:
    """Read a UserProfile from a JSON file, exiting with a message on failure."""
    try:
        with open(path, encoding="utf-8") as f:
            return UserProfile.model_validate(json.load(f))
    except FileNotFoundError:
        console.print(f"[red]Error:[/red] Profile not found: {path}")
    except json.JSONDecodeError as e:
        console.print(f"[red]Error:[/red] {path} is not valid JSON: {e}")
    except ValidationError as e:
        console.print(f"[red]Invalid profile:[/red]\n{e}")
    raise typer.Exit(1)


# =========================================================================
# Catalog commands
# =========================================================================


@app.command(name="catalog-load")
def catalog_load(
    input_file: Path = typer.Argument(..., help="JSON file with a list of careers"),
    db_path: str = typer.Option(DEFAULT_DB, "--db", help="Database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """
    Load careers from a JSON file into the catalog.

    Existing careers with the same ID are updated; their stored feature
    vectors are recomputed on the next recommendation.

    Examples:
        careermatch catalog-load data/careers.json
    """
    setup_logging(verbose)

    if not input_file.exists():
        console.print(f"[red]Error:[/red] File not found: {input_file}")
        raise typer.Exit(1)

    db = CareerDatabase(db_path)
    try:
        loaded, skipped = db.import_careers_from_json(input_file)
    except json.JSONDecodeError as e:
        console.print(f"[red]Error:[/red] {input_file} is not valid JSON: {e}")
        raise typer.Exit(1)

    console.print(f"[green]Loaded {loaded:,} careers[/green] into {db_path}")
    if skipped:
        console.print(f"[yellow]Skipped {skipped:,} invalid entries[/yellow]")


@app.command(name="catalog-list")
def catalog_list(
    industry: Optional[str] = typer.Option(None, "--industry", "-i", help="Filter by industry"),
    experience: Optional[str] = typer.Option(
        None, "--experience", "-e", help="Filter by experience level"
    ),
    include_inactive: bool = typer.Option(
        False, "--all", help="Include deactivated careers"
    ),
    db_path: str = typer.Option(DEFAULT_DB, "--db", help="Database path"),
) -> None:
    """
    List careers in the catalog.

    Examples:
        careermatch catalog-list
        careermatch catalog-list --industry Technology
    """
    db = CareerDatabase(db_path)
    careers = db.list_careers(
        industry=industry,
        experience_level=experience,
        include_inactive=include_inactive,
    )

    if not careers:
        console.print("[yellow]No careers found matching filters[/yellow]")
        return

    console.print(f"\n[bold blue]Careers ({len(careers)} shown)[/bold blue]\n")

    table = Table(show_header=True)
    table.add_column("ID", style="dim", max_width=30)
    table.add_column("Title", style="cyan", max_width=35)
    table.add_column("Industry", max_width=20)
    table.add_column("Experience", max_width=12)
    table.add_column("Key Skills", max_width=40)
    table.add_column("Vector", justify="center")

    for career in careers:
        title = career.title if career.is_active else f"[dim]{career.title} (inactive)[/dim]"
        table.add_row(
            career.id[:30],
            title,
            career.industry[:20],
            career.experience_level[:12],
            ", ".join(career.key_skills)[:40],
            "✓" if career.feature_vector else "",
        )

    console.print(table)


@app.command(name="catalog-export")
def catalog_export(
    output: Path = typer.Argument(..., help="Output CSV file path"),
    include_inactive: bool = typer.Option(
        False, "--all", help="Include deactivated careers"
    ),
    db_path: str = typer.Option(DEFAULT_DB, "--db", help="Database path"),
) -> None:
    """
    Export the career catalog to CSV.

    Examples:
        careermatch catalog-export careers.csv
    """
    db = CareerDatabase(db_path)
    count = db.export_careers_to_csv(output, include_inactive=include_inactive)

    if count > 0:
        console.print(f"[green]Exported {count:,} careers to {output}[/green]")
    else:
        console.print("[yellow]No careers to export[/yellow]")


@app.command(name="catalog-deactivate")
def catalog_deactivate(
    career_id: str = typer.Argument(..., help="Career ID"),
    db_path: str = typer.Option(DEFAULT_DB, "--db", help="Database path"),
) -> None:
    """
    Deactivate a career so it is no longer recommended.
    """
    db = CareerDatabase(db_path)
    if db.deactivate_career(career_id):
        console.print(f"[green]Deactivated[/green] {career_id}")
    else:
        console.print(f"[red]Career not found:[/red] {career_id}")
        raise typer.Exit(1)


# =========================================================================
# Recommendations
# =========================================================================


@app.command()
def recommend(
    profile_file: Path = typer.Argument(..., help="JSON file with a user profile"),
    k: int = typer.Option(5, "--k", "-k", help="Number of careers to recommend"),
    no_cache: bool = typer.Option(False, "--no-cache", help="Bypass the result cache"),
    no_save: bool = typer.Option(False, "--no-save", help="Don't record the assessment"),
    debug: bool = typer.Option(False, "--debug", help="Show feature vector and distances"),
    analyze: bool = typer.Option(False, "--analyze", help="Also show a profile analysis"),
    insights: bool = typer.Option(
        False, "--insights", help="Generate AI insights (requires CLAUDE_API_KEY)"
    ),
    model: str = typer.Option("sonnet", "--model", "-m", help="Insights model: opus, sonnet, haiku"),
    cache_backend: str = typer.Option(
        "sqlite", "--cache", help="Cache backend: sqlite, memory or none"
    ),
    db_path: str = typer.Option(DEFAULT_DB, "--db", help="Database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """
    Recommend careers for a user profile.

    Examples:
        careermatch recommend profile.json
        careermatch recommend profile.json --k 10 --debug
        careermatch recommend profile.json --insights --model haiku
    """
    setup_logging(verbose)

    if k < 1:
        console.print("[red]Error:[/red] --k must be at least 1")
        raise typer.Exit(1)

    profile = _load_profile(profile_file)
    options = RecommendOptions(
        k=k,
        use_cache=not no_cache,
        include_debug=debug,
        save_to_database=not no_save,
    )

    with RecommendationEngine.from_database(db_path, cache_backend=cache_backend) as engine:
        try:
            result = engine.recommend(profile, options)
        except EmptyCandidatePool as e:
            console.print(f"[red]Error:[/red] {e}")
            console.print("Run 'careermatch catalog-load' first to populate the catalog.")
            raise typer.Exit(1)
        except DimensionMismatch as e:
            console.print(f"[red]Catalog error:[/red] {e}")
            raise typer.Exit(1)

        analysis = result.analysis
        source = "[green]cache[/green]" if result.cache_hit else "computed"
        console.print(
            f"\n[bold blue]Top {len(result.recommendations)} careers[/bold blue] "
            f"({analysis.total_careers} analysed, {source}, "
            f"{analysis.processing_time_ms:.1f}ms)\n"
        )

        table = Table(show_header=True)
        table.add_column("#", justify="right", style="dim")
        table.add_column("Career", style="cyan", max_width=35)
        table.add_column("Match", justify="right")
        table.add_column("Industry", max_width=20)
        table.add_column("Why", max_width=60)

        for i, rec in enumerate(result.recommendations, 1):
            table.add_row(str(i), rec.title, f"{rec.match}%", rec.industry, rec.reasoning)

        console.print(table)
        console.print(f"\n[bold]Average similarity:[/bold] {analysis.average_similarity}%")
        if analysis.top_skill_matches:
            console.print(f"[bold]Top skills:[/bold] {', '.join(analysis.top_skill_matches)}")
        if analysis.top_personality_matches:
            console.print(
                f"[bold]Top traits:[/bold] {', '.join(analysis.top_personality_matches)}"
            )
        if options.save_to_database:
            console.print(f"[dim]Assessment: {result.assessment_id}[/dim]")

        if result.debug_info:
            info = result.debug_info
            console.print("\n[bold]Debug:[/bold]")
            console.print(f"  Cache key:   {info.cache_key}")
            console.print(f"  Features:    {', '.join(f'{v:.3f}' for v in info.user_features)}")
            console.print(f"  Write-backs: {info.pending_write_backs}")
            for n in info.neighbors:
                console.print(
                    f"  {n.career.id}: distance={n.distance:.4f} similarity={n.similarity:.2f}"
                )

        if analyze:
            _print_profile_analysis(engine, profile)

    if insights:
        _print_insights(profile, result, k, model)


def _print_profile_analysis(engine: RecommendationEngine, profile: UserProfile) -> None:
    analysis = engine.analyze_profile(profile)
    console.print("\n[bold blue]Profile Analysis[/bold blue]\n")
    console.print(
        "[bold]Strongest skills:[/bold] "
        + ", ".join(f"{s.skill} ({s.score:g})" for s in analysis.strongest_skills)
    )
    console.print(
        "[bold]Weakest skills:[/bold] "
        + ", ".join(f"{s.skill} ({s.score:g})" for s in analysis.weakest_skills)
    )
    console.print(
        "[bold]Dominant traits:[/bold] "
        + ", ".join(f"{t.trait} ({t.score:g})" for t in analysis.dominant_traits)
    )
    for suggestion in analysis.recommended_improvements:
        console.print(f"  • {suggestion}")


def _print_insights(profile: UserProfile, result, k: int, model: str) -> None:
    async def run():
        async with InsightClient() as client:
            return await client.generate_insights(profile, result, k=k, model=model)

    try:
        generated = asyncio.run(run())
    except InsightError as e:
        console.print(f"[red]Insights unavailable:[/red] {e}")
        raise typer.Exit(1)

    title = "AI Insights" + (" [yellow](local summary)[/yellow]" if generated.fallback else "")
    console.print(f"\n[bold blue]{title}[/bold blue]\n")
    console.print(generated.interpretation)
    for pattern in generated.patterns:
        console.print(f"  • {pattern}")
    if generated.career_path:
        console.print("\n[bold]Career path:[/bold]")
        for step in generated.career_path:
            timeframe = f" ({step.timeframe})" if step.timeframe else ""
            console.print(f"  {step.role}{timeframe}")
    if generated.skill_gaps:
        console.print("\n[bold]Skill gaps:[/bold]")
        for gap in generated.skill_gaps:
            console.print(f"  {gap.name} [{gap.priority}] {gap.reason}")


# =========================================================================
# Cache and statistics
# =========================================================================


@app.command(name="cache-stats")
def cache_stats(
    db_path: str = typer.Option(DEFAULT_DB, "--db", help="Database path"),
) -> None:
    """
    Show result cache statistics.
    """
    with RecommendationEngine.from_database(db_path) as engine:
        stats = engine.cache.stats()

    console.print("\n[bold blue]Result Cache[/bold blue]\n")
    console.print(f"[bold]Total entries:[/bold] {stats.total_entries:,}")
    console.print(f"[bold]Active:[/bold] {stats.active_entries:,}")
    console.print(f"[bold]Expired:[/bold] {stats.expired_entries:,}")
    console.print(f"[bold]Avg computation:[/bold] {stats.avg_computation_ms:.1f}ms")


@app.command(name="cache-purge")
def cache_purge(
    purge_all: bool = typer.Option(False, "--all", help="Remove every entry, not just expired ones"),
    db_path: str = typer.Option(DEFAULT_DB, "--db", help="Database path"),
) -> None:
    """
    Remove expired entries from the result cache.

    Examples:
        careermatch cache-purge
        careermatch cache-purge --all
    """
    with RecommendationEngine.from_database(db_path) as engine:
        try:
            removed = engine.clear_cache() if purge_all else engine.purge_expired_cache()
        except CacheUnavailable as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

    what = "cache entries" if purge_all else "expired cache entries"
    console.print(f"[green]Removed {removed:,} {what}[/green]")


@app.command()
def stats(
    db_path: str = typer.Option(DEFAULT_DB, "--db", help="Database path"),
) -> None:
    """
    Show catalog and usage statistics.
    """
    with RecommendationEngine.from_database(db_path) as engine:
        raw = engine.get_stats()
        metrics = engine.get_system_metrics()

    catalog = raw.get("catalog", {})
    console.print("\n[bold blue]Catalog Statistics[/bold blue]\n")
    console.print(f"[bold]Total careers:[/bold] {catalog.get('total_careers', 0):,}")
    console.print(f"[bold]Active careers:[/bold] {catalog.get('active_careers', 0):,}")
    console.print(
        f"[bold]Without stored vectors:[/bold] {catalog.get('careers_without_vectors', 0):,}"
    )

    if catalog.get("by_industry"):
        console.print("\n[bold]By Industry:[/bold]")
        for industry, count in catalog["by_industry"].items():
            console.print(f"  {industry or '(none)'}: {count:,}")

    if catalog.get("by_experience_level"):
        console.print("\n[bold]By Experience Level:[/bold]")
        for level, count in catalog["by_experience_level"].items():
            console.print(f"  {level or '(none)'}: {count:,}")

    console.print("\n[bold blue]Usage[/bold blue]\n")
    console.print(f"[bold]Assessments:[/bold] {metrics['total_assessments']:,}")
    console.print(f"[bold]Avg computation:[/bold] {metrics['avg_processing_time_ms']}ms")
    console.print(f"[bold]Cache entries:[/bold] {metrics['cache_entries']:,}")

    if metrics["top_careers"]:
        console.print("\n[bold]Most Recommended:[/bold]")
        for entry in metrics["top_careers"]:
            console.print(f"  {entry['career']}: {entry['recommendations']:,}")


# =========================================================================
# API server
# =========================================================================


@app.command(name="api-serve")
def serve_api(
    host: str = typer.Option("127.0.0.1", "--host", "-H", help="Host to bind to"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to bind to"),
    db_path: str = typer.Option(DEFAULT_DB, "--db", help="Path to SQLite database"),
    cache_backend: str = typer.Option(
        "sqlite", "--cache", help="Cache backend: sqlite, memory or none"
    ),
    cache_ttl_hours: float = typer.Option(24.0, "--cache-ttl", help="Cache lifetime in hours"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload for development"),
    workers: int = typer.Option(
        1, "--workers", "-w", help="Number of worker processes (production)"
    ),
    cors_origins: str = typer.Option(
        "http://localhost:3000,http://localhost:5173",
        "--cors",
        help="Comma-separated CORS origins",
    ),
    api_rate_limit: int = typer.Option(
        100,
        "--rate-limit",
        help="Max requests per minute per IP (0 to disable)",
    ),
) -> None:
    """
    Start the recommendation API server.

    Examples:
        careermatch api-serve                     # Start on localhost:8000
        careermatch api-serve --port 9000         # Custom port
        careermatch api-serve --cache memory      # In-process result cache
        careermatch api-serve --workers 4         # Production mode
    """
    import os
    import uvicorn

    origins = [o.strip() for o in cors_origins.split(",") if o.strip()]

    if not Path(db_path).exists():
        console.print(f"[red]Error:[/red] Database not found: {db_path}")
        console.print("Run 'careermatch catalog-load' first to populate the catalog.")
        raise typer.Exit(1)

    if cache_backend == "memory" and workers > 1:
        console.print(
            "[yellow]Warning:[/yellow] memory cache is per worker; "
            "use --cache sqlite to share results"
        )

    console.print("\n[bold green]Starting CareerMatch API[/bold green]")
    console.print(f"  Database:   {db_path}")
    console.print(f"  Cache:      {cache_backend} ({cache_ttl_hours:g}h TTL)")
    console.print(f"  Endpoint:   http://{host}:{port}")
    console.print(f"  API docs:   http://{host}:{port}/docs")
    console.print(f"  CORS:       {', '.join(origins)}")
    if api_rate_limit > 0:
        console.print(f"  Rate limit: {api_rate_limit} req/min per IP")
    else:
        console.print("  Rate limit: [yellow]disabled[/yellow]")
    if reload:
        console.print("  Mode:       [yellow]Development (auto-reload)[/yellow]")
    else:
        console.print(f"  Mode:       Production ({workers} worker{'s' if workers != 1 else ''})")
    console.print()

    # Pass config via environment so uvicorn workers can pick it up
    os.environ["CAREERMATCH_DB_PATH"] = db_path
    os.environ["CAREERMATCH_CACHE_BACKEND"] = cache_backend
    os.environ["CAREERMATCH_CACHE_TTL_HOURS"] = str(cache_ttl_hours)
    os.environ["CAREERMATCH_CORS_ORIGINS"] = cors_origins
    os.environ["CAREERMATCH_RATE_LIMIT_RPM"] = str(api_rate_limit)

    uvicorn.run(
        "src.api.app:app",
        host=host,
        port=port,
        reload=reload,
        workers=workers if not reload else 1,
        log_level="info",
    )


if __name__ == "__main__":
    app()

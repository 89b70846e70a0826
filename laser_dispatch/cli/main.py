import typer
from rich import print
from rich.markup import escape
from laser_dispatch.config.pipelines import PIPELINES, ConfigurationError, build_pipeline
from laser_dispatch.config.settings import get_settings
from laser_dispatch.db.database import LedgerUnavailableError, get_engine, init_db
from laser_dispatch.services.fetcher import FetchCoordinator
from laser_dispatch.services.ledger import KeyValueStore, Ledger
from laser_dispatch.tools.clock import SystemClock
from laser_dispatch.tools.lock import RunInProgressError
from laser_dispatch.tools.logging_setup import setup_logging
from laser_dispatch.workflows.run_pipeline import run_configured, source_fetcher
from laser_dispatch.workflows.seed_ledger import seed_pipeline
setup_logging()


app = typer.Typer(help="Relay new commits, posts and status updates to Discord webhooks")


def _ledger() -> Ledger:
    return Ledger(KeyValueStore(get_engine(), SystemClock()))


@app.command()
def doctor():
    """Check config + ledger connectivity."""
    s = get_settings()
    print("[bold green]Config loaded[/bold green]")
    print("Ledger:", s.database_url)
    for name in PIPELINES:
        try:
            config = build_pipeline(name, s)
            print(f"{name}: {len(config.sources)} sources, up to {config.max_deliveries_per_run} posts/run")
        except ConfigurationError as e:
            print(f"[yellow]{name}: {e}[/yellow]")
    init_db()
    print("[bold green]Ledger OK[/bold green]")


@app.command()
def run(pipeline: str = typer.Argument("all", help="github | reddit | status | all")):
    """Run one pipeline execution."""
    names = list(PIPELINES) if pipeline == "all" else [pipeline]
    try:
        init_db()
        for name in names:
            if pipeline == "all" and not get_settings().webhooks.get(name):
                print(f"[yellow]{name}: no webhook configured, skipping[/yellow]")
                continue
            summary = run_configured(name)
            print(f"[bold green]{name} complete[/bold green]")
            print(summary.model_dump(mode="json"))
    except (ConfigurationError, LedgerUnavailableError, RunInProgressError) as e:
        print(f"[bold red]Run failed[/bold red]: {e}")
        raise SystemExit(1)


@app.command()
def seed(pipeline: str = typer.Argument(..., help="github | reddit | status")):
    """Mark everything currently listed as delivered, without posting."""
    try:
        init_db()
        config = build_pipeline(pipeline, get_settings())
        result = seed_pipeline(config, _ledger())
        print("[bold green]Seed complete[/bold green]")
        print(result)
    except (ConfigurationError, LedgerUnavailableError) as e:
        print(f"[bold red]Seed failed[/bold red]: {e}")
        raise SystemExit(1)


@app.command()
def purge():
    """Delete expired ledger entries."""
    try:
        init_db()
        removed = _ledger().purge_expired()
        print(f"[bold green]Purged {removed} expired entries[/bold green]")
    except LedgerUnavailableError as e:
        print(f"[bold red]Purge failed[/bold red]: {e}")
        raise SystemExit(1)


@app.command("check-feeds")
def check_feeds(
    pipeline: str = typer.Argument("status", help="github | reddit | status"),
    show: int = typer.Option(3, help="Items to list per source"),
):
    """Fetch and parse every source of a pipeline. Posts nothing, writes nothing."""
    try:
        config = build_pipeline(pipeline, get_settings(), require_webhook=False)
    except ConfigurationError as e:
        print(f"[bold red]Check failed[/bold red]: {e}")
        raise SystemExit(1)

    coordinator = FetchCoordinator(
        source_fetcher(config),
        SystemClock(),
        pacing_seconds=config.fetch_pacing_seconds,
        concurrency=config.fetch_concurrency,
        max_items_per_source=config.max_items_per_source,
    )
    batches = coordinator.fetch_all(config.sources)

    ok = 0
    for batch in batches:
        if not batch.items:
            print(f"[yellow]{escape(batch.source.name)}: no entries[/yellow]")
            continue
        ok += 1
        print(f"[bold green]{escape(batch.source.name)}[/bold green]: {len(batch.items)} entries")
        for item in batch.items[:show]:
            when = item.published_at.isoformat() if item.published_at else "no date"
            print(f"  {escape(item.ledger_key)} | {when} | {escape(item.title[:60])}")

    print(f"{ok} of {len(batches)} sources returned entries")


@app.command()
def serve():
    """Serve the manual trigger endpoint."""
    from laser_dispatch.web.app import create_app

    s = get_settings()
    init_db()
    create_app().run(host=s.trigger_host, port=s.trigger_port)


if __name__ == "__main__":
    app()

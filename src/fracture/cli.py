"""
Command-line interface for Fracture.

Provides commands for replaying recorded signals, inspecting and moving
entity profiles, and database/config management.
"""

import csv
import json
import logging
import sys
import time

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version
from pathlib import Path
from typing import Any

import click

from fracture.config import (
    get_config_path,
    get_default_domain,
    load_config,
    set_default_domain,
)
from fracture.constants import DEFAULT_DATABASE_PATH, DEFAULT_LIST_PROFILES_LIMIT
from fracture.database import models
from fracture.database.repository import ProfileRepository
from fracture.database.session import init_database, session_scope
from fracture.domains import AVAILABLE_DOMAINS, load_domain
from fracture.engine import EngineContext
from fracture.exceptions import FractureError, ProfileCorruptionError
from fracture.logging_config import setup_logging
from fracture.models.events import ObservationResult
from fracture.types import EventKind

logger = logging.getLogger(__name__)

try:
    __version__ = get_version("fracture")
except PackageNotFoundError:
    __version__ = "dev"


def _init_db(db: str | None) -> str:
    db_path = str(Path(db)) if db else DEFAULT_DATABASE_PATH
    init_database(db_path)
    return db_path


def _open_engine(db: str | None, domain: str | None) -> EngineContext:
    """Open an engine backed by the profile database."""
    _init_db(db)
    try:
        config = load_domain(domain)
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    return EngineContext(config, repository=ProfileRepository()).open()


@click.group()
@click.version_option(__version__, prog_name="fracture")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def cli(verbose: bool) -> None:
    """Fracture: streaming early-warning engine"""
    setup_logging(verbose=verbose, console_format="%(levelname)s: %(message)s")


@cli.command()
def domains() -> None:
    """List available domain presets."""
    default = get_default_domain()
    click.echo("\nAvailable Domains:\n")
    for name, config in AVAILABLE_DOMAINS.items():
        marker = " (default)" if name == default else ""
        click.echo(f"{name}{marker}: {config.description}")
        click.echo(f"  Channels: {', '.join(config.channels)}")
        if config.stress_channel:
            click.echo(f"  Stress channel: {config.stress_channel}")
        t = config.thresholds
        click.echo(
            f"  Thresholds: gentle={t.gentle} moderate={t.moderate} "
            f"aggressive={t.aggressive}"
        )
        click.echo()


def _parse_row(
    row: dict[str, str], entity_column: str, timestamp_column: str
) -> tuple[str, dict[str, Any], float]:
    entity_id = row.get(entity_column) or ""
    try:
        timestamp = float(row.get(timestamp_column) or "")
    except ValueError as e:
        raise click.ClickException(
            f"Invalid timestamp {row.get(timestamp_column)!r} for entity {entity_id!r}"
        ) from e

    channels: dict[str, Any] = {}
    for key, raw in row.items():
        if key in (entity_column, timestamp_column) or raw is None or raw == "":
            continue
        try:
            channels[key] = float(raw)
        except ValueError:
            channels[key] = raw
    return entity_id, channels, timestamp


def _echo_events(result: ObservationResult) -> None:
    for event in result.events:
        if event.kind == EventKind.INTERVENTION and event.intervention is not None:
            iv = event.intervention
            click.echo(
                f"{result.timestamp:>12.2f}  {result.entity_id}  "
                f"{iv.tier.value.upper():<10} FI={iv.score.fi:.3f}  "
                f"actions: {', '.join(iv.actions)}"
            )
        elif event.kind == EventKind.CRISIS_CONFIRMED and event.crisis is not None:
            click.echo(
                f"{result.timestamp:>12.2f}  {result.entity_id}  CRISIS     "
                f"peak FI={event.crisis.peak_fi:.3f}"
            )
        elif event.kind == EventKind.CRISIS_CLEARED and event.crisis is not None:
            click.echo(
                f"{result.timestamp:>12.2f}  {result.entity_id}  CLEARED    "
                f"after {event.crisis.duration:.1f}s"
            )


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--domain", "-d", help="Domain preset (default from config)")
@click.option(
    "--entity-column", default="entity_id", show_default=True, help="Entity column"
)
@click.option(
    "--timestamp-column",
    default="timestamp",
    show_default=True,
    help="Timestamp column (seconds)",
)
@click.option("--db", type=click.Path(), help="Database path")
@click.option("--no-store", is_flag=True, help="Don't save learned profiles")
def replay(
    path: str,
    domain: str | None,
    entity_column: str,
    timestamp_column: str,
    db: str | None,
    no_store: bool,
) -> None:
    """Replay a recorded CSV stream through the engine and print events."""
    with open(path, newline="") as f:
        reader = csv.DictReader(f)
        if not reader.fieldnames or entity_column not in reader.fieldnames:
            raise click.ClickException(f"CSV must have an '{entity_column}' column")
        if timestamp_column not in reader.fieldnames:
            raise click.ClickException(f"CSV must have a '{timestamp_column}' column")
        samples = [_parse_row(row, entity_column, timestamp_column) for row in reader]

    if not samples:
        click.echo("No samples in file")
        return

    db_path: str | None = None
    if no_store:
        try:
            engine = EngineContext(load_domain(domain)).open()
        except ValueError as e:
            raise click.ClickException(str(e)) from e
    else:
        db_path = db or DEFAULT_DATABASE_PATH
        engine = _open_engine(db, domain)

    click.echo(f"Replaying {len(samples)} samples ({engine.domain.name} domain)\n")

    observed = 0
    rejected = 0
    warnings = 0
    try:
        for entity_id, channels, timestamp in samples:
            try:
                result = engine.observe(entity_id, channels, timestamp)
            except (FractureError, ValueError) as e:
                rejected += 1
                logger.warning(f"Rejected sample: {e}")
                continue
            observed += 1
            warnings += len(result.warnings)
            _echo_events(result)
        status = engine.get_status()
    finally:
        engine.close()

    click.echo()
    click.echo(f"✓ Observed: {observed} samples")
    if rejected:
        click.echo(f"  Rejected: {rejected}")
    if warnings:
        click.echo(f"  Dropped values: {warnings}")
    click.echo(f"  Entities: {status.active_entities}")
    click.echo(f"  Evaluations: {status.evaluations}")
    click.echo(f"  Intervention rate: {status.intervention_rate:.3f}")
    if db_path:
        click.echo(f"  Profiles saved to {db_path}")


# ----------------------------------------------------------------------
# Profiles
# ----------------------------------------------------------------------


@cli.group()
def profiles() -> None:
    """Entity profile commands."""
    pass


@profiles.command("list")
@click.option(
    "--limit",
    "-n",
    type=int,
    default=DEFAULT_LIST_PROFILES_LIMIT,
    show_default=True,
    help="Maximum profiles to show",
)
@click.option("--db", type=click.Path(), help="Database path")
def profiles_list(limit: int, db: str | None) -> None:
    """List stored profiles."""
    _init_db(db)
    summaries = ProfileRepository().list_entities(limit=limit)
    if not summaries:
        click.echo("No profiles found in database")
        return

    click.echo(f"\n{'Entity':<30} {'Domain':<12} {'Schema':<22} Last observed")
    click.echo("-" * 80)
    for s in summaries:
        last = f"{s.last_observed_at:.1f}" if s.last_observed_at is not None else "-"
        click.echo(f"{s.entity_id:<30} {s.domain:<12} {s.schema_tag:<22} {last}")
    click.echo()


@profiles.command("show")
@click.argument("entity_id")
@click.option("--domain", "-d", help="Domain preset (default from config)")
@click.option("--db", type=click.Path(), help="Database path")
def profiles_show(entity_id: str, domain: str | None, db: str | None) -> None:
    """Show a stored profile."""
    engine = _open_engine(db, domain)
    try:
        snapshot = engine.get_profile(entity_id)
    finally:
        engine.close()

    if snapshot is None:
        click.echo(f"Error: Profile '{entity_id}' not found.", err=True)
        sys.exit(1)

    t = snapshot.thresholds
    p = snapshot.personalized_thresholds
    c = snapshot.counters
    click.echo(f"\nProfile: {snapshot.entity_id} ({snapshot.domain})")
    click.echo(
        f"  Thresholds:    gentle={t.gentle:.3f} moderate={t.moderate:.3f} "
        f"aggressive={t.aggressive:.3f}"
    )
    click.echo(
        f"  Personalized:  gentle={p.gentle:.3f} moderate={p.moderate:.3f} "
        f"aggressive={p.aggressive:.3f}"
    )
    click.echo(
        f"  Outcomes:      {c.true_positives} true / {c.false_positives} false positives"
    )
    click.echo(f"  Interventions: {c.interventions}")
    click.echo(f"  Crises:        {c.crises}")
    click.echo(f"  Patterns:      {snapshot.pattern_count}")
    if snapshot.last_observed_at is not None:
        click.echo(f"  Last observed: {snapshot.last_observed_at:.1f}")
    for name, baseline in sorted(snapshot.baselines.items()):
        click.echo(
            f"  {name}: mean={baseline.mean:.3f} std={baseline.std:.3f} "
            f"n={baseline.count}"
        )
    click.echo()


@profiles.command("export")
@click.argument("entity_id")
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Output file")
@click.option("--db", type=click.Path(), help="Database path")
def profiles_export(entity_id: str, output: str | None, db: str | None) -> None:
    """Export a profile as a versioned JSON document."""
    engine = _open_engine(db, None)
    try:
        document = engine.export_profile(entity_id)
    finally:
        engine.close()

    if document is None:
        click.echo(f"Error: Profile '{entity_id}' not found.", err=True)
        sys.exit(1)

    payload = json.dumps(document, indent=2)
    if output:
        Path(output).write_text(payload + "\n")
        click.echo(f"✓ Exported {entity_id} to {output}")
    else:
        click.echo(payload)


@profiles.command("import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--db", type=click.Path(), help="Database path")
def profiles_import(path: str, db: str | None) -> None:
    """Import a profile export document (older schema versions are migrated)."""
    try:
        document = json.loads(Path(path).read_text())
    except json.JSONDecodeError as e:
        raise click.ClickException(f"Invalid JSON in {path}: {e}") from e
    if not isinstance(document, dict):
        raise click.ClickException(f"Expected a JSON object in {path}")

    engine = _open_engine(db, None)
    try:
        snapshot = engine.import_profile(document)
    except ProfileCorruptionError as e:
        engine.close()
        raise click.ClickException(str(e)) from e
    engine.close()
    click.echo(f"✓ Imported profile: {snapshot.entity_id} ({snapshot.domain})")


@profiles.command("delete")
@click.argument("entity_id")
@click.option("--force", is_flag=True, help="Skip confirmation prompt")
@click.option("--db", type=click.Path(), help="Database path")
def profiles_delete(entity_id: str, force: bool, db: str | None) -> None:
    """Delete a stored profile."""
    _init_db(db)
    if not force:
        click.confirm(f"Delete profile '{entity_id}'?", abort=True)
    if not ProfileRepository().delete(entity_id):
        click.echo(f"Error: Profile '{entity_id}' not found.", err=True)
        sys.exit(1)
    click.echo(f"✓ Deleted profile: {entity_id}")


@profiles.command("evict")
@click.option(
    "--older-than",
    type=float,
    required=True,
    help="Retention window in seconds since the last observation",
)
@click.option(
    "--now",
    type=float,
    default=None,
    help="Reference time on the sample clock (default: current epoch seconds)",
)
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False),
    help="Write an export document per evicted profile",
)
@click.option("--db", type=click.Path(), help="Database path")
def profiles_evict(
    older_than: float, now: float | None, output_dir: str | None, db: str | None
) -> None:
    """Export and delete profiles idle past the retention window."""
    _init_db(db)
    repository = ProfileRepository()
    reference = time.time() if now is None else now
    stale = repository.inactive_entities(reference - older_than)
    if not stale:
        click.echo("No inactive profiles")
        return

    engine = EngineContext(load_domain(None), repository=repository).open()
    try:
        for entity_id in stale:
            engine.get_profile(entity_id)
        evicted = engine.evict_inactive(older_than, reference)
    finally:
        engine.close()

    if output_dir:
        out = Path(output_dir)
        out.mkdir(parents=True, exist_ok=True)
        for entity_id, document in evicted.items():
            (out / f"{entity_id}.json").write_text(json.dumps(document, indent=2))

    for entity_id in evicted:
        repository.delete(entity_id)
    click.echo(f"✓ Evicted {len(evicted)} profile(s)")
    if output_dir:
        click.echo(f"  Exports: {output_dir}")


# ----------------------------------------------------------------------
# Database
# ----------------------------------------------------------------------


@cli.group()
def db() -> None:
    """Database management commands."""
    pass


@db.command()
@click.option("--db", type=click.Path(), help="Database path")
def init(db: str | None) -> None:
    """Initialize database (creates tables if needed)."""
    db_path = _init_db(db)
    click.echo(f"✓ Database initialized at {db_path}")


@db.command()
@click.option("--db", type=click.Path(), help="Database path")
def stats(db: str | None) -> None:
    """Show database statistics."""
    db_path = Path(_init_db(db))

    with session_scope() as session:
        profile_count = session.query(models.EntityProfileRecord).count()
        quarantined_count = session.query(models.QuarantinedProfile).count()
        by_domain = (
            session.query(models.EntityProfileRecord.domain)
            .order_by(models.EntityProfileRecord.domain)
            .all()
        )

    domain_counts: dict[str, int] = {}
    for (name,) in by_domain:
        domain_counts[name] = domain_counts.get(name, 0) + 1

    size_bytes = db_path.stat().st_size if db_path.exists() else 0
    size_mb = size_bytes / (1024 * 1024)

    click.echo("\nDatabase Statistics")
    click.echo(f"{'=' * 50}")
    click.echo(f"Database: {db_path}")
    click.echo(f"Size: {size_mb:.1f} MB")
    click.echo(f"\nProfiles: {profile_count}")
    for name, count in domain_counts.items():
        click.echo(f"  {name}: {count}")
    click.echo(f"Quarantined: {quarantined_count}")
    click.echo(f"{'=' * 50}\n")


# ----------------------------------------------------------------------
# Config and logs
# ----------------------------------------------------------------------


@cli.group()
def config() -> None:
    """Configuration management commands."""
    pass


@config.command("set-default-domain")
@click.argument("name")
def set_default_domain_cmd(name: str) -> None:
    """Set the default domain preset."""
    if name not in AVAILABLE_DOMAINS:
        available = ", ".join(AVAILABLE_DOMAINS)
        click.echo(f"Error: Domain '{name}' not found.", err=True)
        click.echo(f"Available domains: {available}", err=True)
        sys.exit(1)

    set_default_domain(name)
    click.echo(f"✓ Default domain: {name}")
    click.echo(f"  Config: {get_config_path()}")


@config.command("show")
def show_config_cmd() -> None:
    """Show all configuration settings."""
    config_path = get_config_path()
    if not config_path.exists():
        click.echo(f"No config file: {config_path}")
        return

    click.echo(f"Config file: {config_path}\n")
    config_data = load_config()
    if not config_data:
        click.echo("Configuration is empty.")
        return

    click.echo("Settings:")
    for section in ("engine", "logging"):
        if section in config_data:
            click.echo(f"  [{section}]")
            for key, value in config_data[section].items():
                click.echo(f"    {key} = {value!r}")
    for name, overrides in config_data.get("domains", {}).items():
        click.echo(f"  [domains.{name}]")
        for key, value in overrides.items():
            click.echo(f"    {key} = {value!r}")


@cli.group()
def logs() -> None:
    """Log file management commands."""
    pass


@logs.command("path")
def logs_path() -> None:
    """Show log file location."""
    from fracture.logging_config import get_log_path

    click.echo(f"Log file: {get_log_path()}")


def main() -> None:
    """Main CLI entry point."""
    cli()


if __name__ == "__main__":
    main()

"""CLI tools for FormRelay administration."""

import json

import click

from formrelay.core.structured_logging import configure_logging
from formrelay.db.session import SessionLocal


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL for this command")
def cli(log_level: str | None):
    """FormRelay CLI tools."""
    configure_logging(log_level)


@cli.command("init-db")
def init_db():
    """
    Create all tables directly from the models.

    Meant for local development and tests; deployed databases are managed
    with ``alembic upgrade head``.
    """
    import formrelay.db.models  # noqa: F401
    from formrelay.db.base import Base
    from formrelay.db.session import engine

    Base.metadata.create_all(bind=engine)
    click.echo("✅ Tables created")


@cli.command("seed-default-template")
def seed_default_template():
    """Create the default candidate information template if none exists."""
    from formrelay.services import form_template_service

    db = SessionLocal()
    try:
        template = form_template_service.ensure_default_template(db)
        click.echo(f"✅ Default template: {template.name} ({template.id})")
    finally:
        db.close()


@cli.command("reconcile-once")
@click.option("--case-id", default=None, help="Only check forms issued for this case")
def reconcile_once(case_id: str | None):
    """Run a single reconciliation cycle and print its summary."""
    from uuid import UUID

    from formrelay.services.reconciliation_service import get_scheduler

    scheduler = get_scheduler()
    if case_id:
        report = scheduler.reconcile_case(UUID(case_id))
    else:
        report = scheduler.run_cycle()
    if report is None:
        click.echo("❌ A reconciliation cycle is already running")
        raise SystemExit(1)
    click.echo(json.dumps(report.summary(), default=str, indent=2))


@cli.command("run-scheduler")
def run_scheduler():
    """Run the reconciliation scheduler in the foreground until interrupted."""
    from formrelay import worker

    worker.run()


if __name__ == "__main__":
    cli()

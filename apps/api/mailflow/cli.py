"""CLI tools for automation administration."""

import asyncio
import json
import logging
from uuid import UUID

import click

from mailflow.core.results import Result
from mailflow.core.security import Principal, create_session_token
from mailflow.db.session import SessionLocal
from mailflow.services.automation_service import build_automation_service


def _echo_result(result: Result) -> None:
    if not result.ok:
        click.echo(f"❌ {result.error.kind.value}: {result.error.message}")
        raise SystemExit(1)
    data = result.data
    if hasattr(data, "model_dump"):
        data = data.model_dump(mode="json")
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()
@click.option("--verbose", is_flag=True, help="Log at INFO level")
def cli(verbose: bool):
    """Mailflow CLI tools."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )


@cli.command("process-queue")
@click.option("--limit", type=int, default=None, help="Batch size (defaults to QUEUE_BATCH_SIZE)")
@click.option("--dry-run", is_flag=True, help="Only count due items")
def process_queue(limit: int | None, dry_run: bool):
    """
    Run one automation queue pass.

    Example:
        python -m mailflow.cli process-queue --limit 50
    """
    with SessionLocal() as db:
        service = build_automation_service(db)
        result = asyncio.run(
            service.process_queue(Principal.system(), limit=limit, dry_run=dry_run)
        )
    _echo_result(result)


@cli.command("queue-status")
@click.option("--flow-id", default=None, help="Scope to one flow")
def queue_status(flow_id: str | None):
    """Show queue counts per status."""
    with SessionLocal() as db:
        _echo_result(build_automation_service(db).get_queue_status(Principal.system(), flow_id))


@cli.command("cancel-pending")
@click.option("--flow-id", default=None, help="Scope to one flow (default: all flows)")
@click.confirmation_option(prompt="Cancel pending automation emails?")
def cancel_pending(flow_id: str | None):
    """Cancel pending automation emails."""
    with SessionLocal() as db:
        _echo_result(build_automation_service(db).cancel_pending(Principal.system(), flow_id))


@cli.command("retry-failed")
@click.option("--flow-id", default=None, help="Scope to one flow (default: all flows)")
def retry_failed(flow_id: str | None):
    """Reset failed automation emails to pending."""
    with SessionLocal() as db:
        _echo_result(build_automation_service(db).retry_failed(Principal.system(), flow_id))


@cli.command("setup-welcome-flow")
@click.option("--activate", is_flag=True, help="Activate the flow after creating it")
def setup_welcome_flow(activate: bool):
    """Create (or reuse) the Welcome Series flow."""
    with SessionLocal() as db:
        _echo_result(
            build_automation_service(db).setup_welcome_flow(Principal.system(), activate=activate)
        )


@cli.command("create-token")
@click.option("--user-id", required=True, help="User UUID to embed as subject")
@click.option("--role", default="admin", show_default=True)
def create_token(user_id: str, role: str):
    """Mint a session token for API access (ops use)."""
    try:
        uid = UUID(user_id)
    except ValueError:
        click.echo("❌ --user-id must be a UUID")
        raise SystemExit(1)
    click.echo(create_session_token(uid, role))


if __name__ == "__main__":
    cli()

from __future__ import annotations

import asyncio
import json
from pathlib import Path
import sys
from typing import Any

from dotenv import load_dotenv
from loguru import logger
import typer

from splitship.adapters.db.facade import SagaStore
from splitship.adapters.db.models import InvalidTransitionError, SplitStatus
from splitship.core.config import (
    SplitShipConfig,
    load_config_from_env,
    load_packing_config_from_env,
)
from splitship.core.factory import create_runtime
from splitship.jobs.queue import JobQueue
from splitship.orchestrators.payload import OrderPayload
from splitship.packing.parcel_packer import pack

# Load environment variables from .env
load_dotenv()

app = typer.Typer(
    help="Splitship: split-shipment fulfillment worker and operator CLI.",
    no_args_is_help=True,
)


@app.callback()
def main_callback(
    log_level: str = typer.Option("INFO", help="Log level for stderr output"),
) -> None:
    """Configure loguru before any command runs."""
    logger.remove()
    logger.add(
        sys.stderr,
        format="{time:YYYY-MM-DD HH:mm:ss} [{level}] {name}: {message}",
        level=log_level.upper(),
    )


def _load_config() -> SplitShipConfig:
    try:
        return load_config_from_env()
    except ValueError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(1) from None


def _store() -> SagaStore:
    return SagaStore(_load_config().database_url)


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        typer.echo(f"Could not read {path}: {e}", err=True)
        raise typer.Exit(1) from None


@app.command("init-db")
def init_db() -> None:
    """Create all tables in the configured database."""
    store = _store()
    store.create_schema()
    typer.echo(f"Schema ready at {store.url}")


@app.command("enable-shop")
def enable_shop(
    shop: str,
    disable: bool = typer.Option(False, "--disable", help="Turn splitting off"),
) -> None:
    """Switch split shipping on (or off) for a shop."""
    record = _store().set_shop_enabled(shop, not disable)
    state = "enabled" if record.app_enabled else "disabled"
    typer.echo(f"{shop}: split shipping {state}")


@app.command("enqueue")
def enqueue(
    topic: str,
    shop: str,
    payload_path: Path,
    event_id: str | None = typer.Option(
        None, help="Upstream event id used to drop duplicate deliveries"
    ),
) -> None:
    """Queue a webhook body read from a JSON file."""
    payload = _read_json(payload_path)
    if not isinstance(payload, dict):
        typer.echo("Payload must be a JSON object", err=True)
        raise typer.Exit(1)
    queue = JobQueue(_store())
    job_id = queue.enqueue(shop, topic, payload, event_id=event_id)
    if job_id is None:
        typer.echo(f"Duplicate delivery {event_id} dropped")
    else:
        typer.echo(f"Queued job {job_id}")


@app.command("worker")
def worker(
    drain: bool = typer.Option(
        False, "--drain", help="Exit once no job is due instead of polling"
    ),
) -> None:
    """Run the job consumer."""
    config = _load_config()
    try:
        runtime = create_runtime(config)
    except ValueError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(1) from None

    if drain:
        processed = asyncio.run(runtime.consumer.drain())
        typer.echo(f"Processed {processed} jobs")
        return
    try:
        asyncio.run(runtime.consumer.run())
    except KeyboardInterrupt:
        typer.echo("\nShutting down...")


@app.command("pack")
def pack_order(
    order_path: Path,
    cap_cents: int | None = typer.Option(None, help="Per-parcel price cap"),
) -> None:
    """Show how an order body would be packed into parcels."""
    order = OrderPayload.parse(_read_json(order_path))
    packing = load_packing_config_from_env()
    parcels = pack(
        order.packer_lines(),
        cap_cents=cap_cents or packing.cap_cents,
        absorb_budget_cents=packing.absorb_budget_cents,
        absorb_items=packing.absorb_items,
    )
    typer.echo(f"{len(parcels)} parcels")
    for index, parcel in enumerate(parcels, start=1):
        marker = " (anchored)" if parcel.anchored else ""
        typer.echo(f"Parcel {index}: {parcel.total_cents} cents{marker}")
        for item in parcel.items:
            typer.echo(f"  - {item.line_item_id} x{item.quantity}")


@app.command("dead-letters")
def dead_letters() -> None:
    """List dead-lettered jobs."""
    jobs = JobQueue(_store()).list_dead_letters()
    if not jobs:
        typer.echo("No dead-lettered jobs.")
        return
    for job in jobs:
        typer.echo(
            f"{job.job_id}\t{job.topic}\t{job.shop_domain}\t"
            f"attempts={job.attempts}\t{job.last_error}"
        )


@app.command("requeue")
def requeue(job_id: int) -> None:
    """Move a dead-lettered job back onto the queue."""
    if not JobQueue(_store()).requeue(job_id):
        typer.echo(f"Job {job_id} is not dead-lettered", err=True)
        raise typer.Exit(1)
    typer.echo(f"Requeued job {job_id}")


@app.command("reset-request")
def reset_request(request_id: int) -> None:
    """Reset a FAILED split request to PENDING so its order can be replayed."""
    try:
        request = _store().reset_split_request(request_id)
    except (LookupError, InvalidTransitionError) as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1) from None
    typer.echo(f"Split request {request.id} is {request.status.value}")


@app.command("requests")
def list_requests(
    status: str | None = typer.Option(None, help="Filter by status, e.g. FAILED"),
) -> None:
    """List split requests."""
    status_filter = None
    if status is not None:
        try:
            status_filter = SplitStatus(status.upper())
        except ValueError:
            typer.echo(f"Unknown status: {status}", err=True)
            raise typer.Exit(1) from None
    requests = _store().list_split_requests(status_filter)
    if not requests:
        typer.echo("No split requests.")
        return
    for request in requests:
        typer.echo(
            f"{request.id}\t{request.primary_order_id}\t{request.status.value}\t"
            f"parcels={request.calculated_parcels}\t"
            f"payment_order={request.payment_order_id or '-'}\t"
            f"{request.error_log or ''}"
        )


if __name__ == "__main__":
    app()

"""order-view CLI."""

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import typer

from orderview.core.config import settings
from orderview.core.logging import configure_logging

app = typer.Typer(
    name="orderview",
    help="Order read-view service",
    no_args_is_help=True,
)


@app.command("serve")
def serve(
    host: Optional[str] = typer.Option(None, help="Bind address (default: API_HOST)"),
    port: Optional[int] = typer.Option(None, help="Port (default: API_PORT)"),
):
    """Run the HTTP API and the order subscriber."""
    import uvicorn

    uvicorn.run(
        "orderview.main:app",
        host=host or settings.API_HOST,
        port=port or settings.API_PORT,
        log_config=None,
    )


@app.command("init-db")
def init_db():
    """Create the orders table if it does not exist."""
    from orderview.db.base import build_engine, ensure_schema

    async def _run():
        engine = build_engine(settings.DB_URL)
        try:
            await ensure_schema(engine)
        finally:
            await engine.dispose()

    asyncio.run(_run())
    typer.echo("Schema ready")


@app.command("publish")
def publish(
    path: Optional[Path] = typer.Argument(None, help="JSON file to publish (default: stdin)"),
    raw: bool = typer.Option(False, "--raw", help="Publish the bytes as-is, without JSON re-encoding"),
):
    """Publish one order document to the order subject."""
    from orderview.messaging.jetstream import JetStreamSource

    data = path.read_bytes() if path else sys.stdin.buffer.read()
    if not raw:
        try:
            payload = json.loads(data)
        except ValueError as e:
            typer.echo(f"Invalid JSON: {e}", err=True)
            raise typer.Exit(1)
        data = json.dumps(payload, ensure_ascii=False).encode("utf-8")

    async def _run():
        configure_logging(settings)
        source = JetStreamSource.from_settings(settings)
        try:
            await source.publish(data)
        finally:
            await source.close()

    asyncio.run(_run())
    typer.echo(f"Published {len(data)} bytes to {settings.NATS_SUBJECT}")


if __name__ == "__main__":
    app()

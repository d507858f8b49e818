"""Coliving operations CLI tool (colivingctl)."""

import json
from datetime import date
from typing import Optional

import typer

app = typer.Typer(name="colivingctl", help="Coliving operations CLI")
reminders_app = typer.Typer(help="Payment reminder commands")
audit_app = typer.Typer(help="Audit trail commands")
app.add_typer(reminders_app, name="reminders")
app.add_typer(audit_app, name="audit")


@reminders_app.command("run")
def reminders_run(
    on: Optional[str] = typer.Option(None, "--date", help="Process as if today were YYYY-MM-DD"),
    retention_days: Optional[int] = typer.Option(None, help="Reminder log retention window"),
):
    """Run one reminder processing pass against the configured Redis."""
    from coliving.db.kv import kv_store
    from coliving.services.notification_service import ResendEmailDispatcher
    from coliving.services.payment_source import KVPaymentSource
    from coliving.services.reminder_processor import run_scheduled_reminders

    today = date.fromisoformat(on) if on else None
    stats = run_scheduled_reminders(
        kv_store,
        KVPaymentSource(kv_store),
        ResendEmailDispatcher(),
        retention_days=retention_days,
        today=today,
    )
    typer.echo(json.dumps(stats, indent=2))


@reminders_app.command("cleanup")
def reminders_cleanup(
    days: int = typer.Option(90, help="Keep reminder logs newer than this many days"),
):
    """Delete reminder logs older than the retention window."""
    from coliving.db.kv import kv_store
    from coliving.services.reminder_service import reminder_log_service

    removed = reminder_log_service.cleanup_old_reminder_logs(kv_store, days)
    typer.echo(f"✅ Removed {removed} reminder logs")


@reminders_app.command("enqueue")
def reminders_enqueue():
    """Queue a reminder run on the Celery worker."""
    from coliving.tasks.celery_app import process_payment_reminders

    result = process_payment_reminders.delay()
    typer.echo(f"Queued task {result.id}")


@audit_app.command("tail")
def audit_tail(
    user: Optional[str] = typer.Option(None, help="Only entries for this user ID"),
    limit: int = typer.Option(20, help="Number of entries"),
):
    """Print the newest audit entries."""
    from coliving.db.kv import kv_store
    from coliving.models.audit import AuditLogFilter
    from coliving.services.audit_service import audit_service

    result = audit_service.get_audit_logs(kv_store, AuditLogFilter(user_id=user, limit=limit))
    for entry in result["logs"]:
        typer.echo(
            f"  {entry.timestamp.isoformat()} {entry.user_id} {entry.action} "
            f"{entry.resource}:{entry.resource_id}"
        )
    typer.echo(f"({len(result['logs'])} of {result['total']})")


@app.command("health")
def health():
    """Check Redis connectivity."""
    from coliving.db.kv import kv_store

    if kv_store.health_check():
        typer.echo("✅ Redis connected")
    else:
        typer.echo("❌ Redis not available")
        raise typer.Exit(code=1)


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", help="Host"),
    port: int = typer.Option(8000, help="Port"),
    reload: bool = typer.Option(True, help="Auto-reload"),
):
    """Start the FastAPI development server."""
    import uvicorn
    uvicorn.run("coliving.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()

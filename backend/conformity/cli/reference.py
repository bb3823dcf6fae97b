"""CLI utilities for conformity reference data and maintenance."""

# purpose: let administrators seed reference data and trigger the SLA scan by hand
# status: active
# depends_on: backend.conformity.database, backend.conformity.services.reference

from __future__ import annotations

import json

import typer

from ..database import SessionLocal
from ..services import reference
from ..tasks import alert_due_nonconformities

app = typer.Typer(help="Conformity reference data and maintenance commands")


@app.command("seed")
def seed_command() -> None:
    """Create default roles and criticality levels when missing."""

    db = SessionLocal()
    try:
        summary = reference.seed_all(db)
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
    typer.echo(json.dumps(summary))


@app.command("scan-sla")
def scan_sla_command(
    warning_hours: float = typer.Option(2.0, help="Look-ahead window in hours"),
) -> None:
    """Send SLA reminders for open non-conformities now."""

    db = SessionLocal()
    try:
        count = alert_due_nonconformities(db, warning_hours=warning_hours)
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
    typer.echo(json.dumps({"alerted": count}))


if __name__ == "__main__":
    app()

# -*- coding: utf-8 -*-
"""
Credit Expiration Sweep

Reporting-only pass over the ledger. Expiration is evaluated lazily whenever
credits are claimed or counted, so this job never changes a row; it only
summarizes how many unused credits have lapsed, per user, for operators.

Also registers the ``flask credits`` maintenance commands.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

import click
from flask import Flask
from sqlalchemy import func, select

from src.database import db
from src.models.credit import Credit
from src.services.credit_ledger import CreditLedger
from src.services.structured_logging import get_logger
from src.utils.clock import utcnow

logger = get_logger('jobcredits.sweep')


@dataclass
class SweepReport:
    checked_at: datetime
    expired_unused: int = 0
    users_affected: int = 0
    by_user: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'checked_at': self.checked_at.isoformat(),
            'expired_unused': self.expired_unused,
            'users_affected': self.users_affected,
            'by_user': dict(self.by_user),
        }


def run_expiration_sweep(now: Optional[datetime] = None) -> SweepReport:
    """Count unused credits past their expiry, grouped by user."""
    now = now or utcnow()
    rows = db.session.execute(
        select(Credit.user_id, func.count(Credit.id))
        .where(
            Credit.is_used.is_(False),
            Credit.expires_at.isnot(None),
            Credit.expires_at <= now,
        )
        .group_by(Credit.user_id)
    ).all()

    report = SweepReport(checked_at=now)
    for user_id, count in rows:
        report.by_user[user_id] = count
    report.expired_unused = sum(report.by_user.values())
    report.users_affected = len(report.by_user)

    logger.info(
        "Expiration sweep complete",
        expired_unused=report.expired_unused,
        users_affected=report.users_affected,
    )
    return report


def register_commands(app: Flask) -> None:
    """Attach ``flask credits sweep`` and ``flask credits normalize``."""

    @app.cli.group("credits")
    def credits_cli():
        """Credit ledger maintenance."""

    @credits_cli.command("sweep")
    def sweep_command():
        """Report unused credits that have expired."""
        report = run_expiration_sweep()
        click.echo(f"{report.expired_unused} expired unused credits "
                   f"across {report.users_affected} users")
        for user_id, count in sorted(report.by_user.items()):
            click.echo(f"  {user_id}: {count}")

    @credits_cli.command("normalize")
    @click.option("--user-id", default=None, help="Only convert this user's credits.")
    def normalize_command(user_id):
        """Convert unused typed credits to universal credits."""
        result = CreditLedger().normalize_credit_types(user_id=user_id)
        click.echo(f"Converted {result['converted']} credits to universal")

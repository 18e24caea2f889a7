#!/usr/bin/env python3
"""
Operational commands for envelopes: expiry sweep, outbox dispatch and
completion reconciliation.
"""

import asyncio

import click

from signing_engine.api.dependencies.signing import get_signing_service
from signing_engine.core.config import get_settings
from signing_engine.core.logging import configure_logging
from signing_engine.db.session import async_session_factory, engine
from signing_engine.integrations.webhooks import WebhookNotifier
from signing_engine.services.envelope_service import expire_overdue_envelopes
from signing_engine.services.outbox_service import dispatch_pending_events


def _run(coro):
    async def _with_dispose():
        try:
            return await coro
        finally:
            await engine.dispose()

    return asyncio.run(_with_dispose())


@click.group()
def cli():
    """Envelope maintenance CLI tool"""
    configure_logging(get_settings().log_level)


@cli.command()
@click.option('--dry-run', is_flag=True, help='Roll back instead of committing the sweep')
def expire(dry_run: bool):
    """Move overdue envelopes to EXPIRED"""

    async def _expire():
        async with async_session_factory() as session:
            expired = await expire_overdue_envelopes(session)
            if dry_run:
                await session.rollback()
            else:
                await session.commit()
            return expired

    expired = _run(_expire())
    prefix = "Would expire" if dry_run else "Expired"
    click.echo(f"{prefix} {len(expired)} envelope(s)")
    for envelope_id in expired:
        click.echo(f"  {envelope_id}")


@cli.command('dispatch-events')
def dispatch_events():
    """Deliver pending outbox events to the configured webhook"""

    async def _dispatch():
        async with async_session_factory() as session:
            dispatched = await dispatch_pending_events(session, WebhookNotifier.from_settings())
            await session.commit()
            return dispatched

    click.echo(f"Dispatched {_run(_dispatch())} event(s)")


@cli.command()
@click.argument('envelope_id')
def reconcile(envelope_id: str):
    """Re-run order advancement and filing for ENVELOPE_ID"""

    async def _reconcile():
        service = get_signing_service()
        result = await service.reconcile_envelope(envelope_id)
        await service.task_runner.drain()
        return result

    result = _run(_reconcile())
    click.echo(f"Complete: {result.is_envelope_complete}")
    if result.next_recipients:
        click.echo(f"Activated: {', '.join(result.next_recipients)}")
    if result.filing_result is not None:
        click.echo(f"Filing errors: {len(result.filing_result.errors)}")


if __name__ == '__main__':
    cli()

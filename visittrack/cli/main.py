#!/usr/bin/env python3
"""
Visit Tracker Terminal CLI
Command-line interface for visits, hotels, storage upkeep and email.
"""

import json
import logging
import time
from datetime import date
from typing import Dict, Optional

import click

from visittrack.app import build_app
from visittrack.config import config
from visittrack.engine import visits as visit_ops
from visittrack.engine.email_composer import EMAIL_RE
from visittrack.engine.hotels import get_hotel, get_hotels, search_hotels
from visittrack.engine.maintenance import MaintenanceScheduler
from visittrack.logging_config import configure_logging, log_call
from visittrack.models import VisitRecord, VISIT_STATUSES


def _check_date(ctx, param, value: Optional[str]) -> Optional[str]:
    """click callback: accept YYYY-MM-DD or nothing."""
    if value is None:
        return None
    try:
        return date.fromisoformat(value).isoformat()
    except ValueError:
        raise click.BadParameter("use YYYY-MM-DD")


def _check_email(ctx, param, value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    if not EMAIL_RE.match(value):
        raise click.BadParameter(f"invalid email address: {value}")
    return value


def _parse_fields(pairs) -> Dict[str, str]:
    fields = {}
    for pair in pairs:
        key, sep, value = pair.partition('=')
        if not sep or not key.strip():
            raise click.BadParameter(f"expected key=value, got {pair!r}", param_hint="--field")
        fields[key.strip()] = value
    return fields


def _visit_row(v: VisitRecord) -> str:
    tier = 'archived' if v.archived else 'active'
    return (
        f"{(v.id or '')[:30]:<32} {(v.date or ''):<11} {(v.time or ''):<6} "
        f"{(v.hotel_name or v.hotel_id or '')[:28]:<30} {(v.status or ''):<10} {tier}"
    )


def _print_visits(visits, empty_message: str = "No visits found.") -> None:
    if not visits:
        click.echo(empty_message)
        return
    click.echo(f"\nFound {len(visits)} visits:\n")
    click.echo(f"{'ID':<32} {'Date':<11} {'Time':<6} {'Hotel':<30} {'Status':<10} Tier")
    click.echo("-" * 100)
    for v in visits:
        click.echo(_visit_row(v))


@click.group()
@click.option('--verbose', is_flag=True, help='Mirror warnings to stderr')
@click.pass_context
def cli(ctx, verbose):
    """Visit Tracker - Hotel Visit Management"""
    configure_logging(console=verbose)
    if ctx.obj is None:
        ctx.obj = build_app(config)


# =============================================================================
# VISITS COMMANDS
# =============================================================================

@cli.group()
def visits():
    """Schedule and review hotel visits"""
    pass


@visits.command('list')
@click.option('--status', type=click.Choice(VISIT_STATUSES), help='Filter by status')
@click.option('--hotel', 'hotel_id', help='Filter by hotel id')
@click.option('--date', 'visit_date', callback=_check_date, help='Filter by date (YYYY-MM-DD)')
@click.option('--limit', default=100, help='Max results (default: 100)')
@click.pass_obj
@log_call
def visits_list(app, status, hotel_id, visit_date, limit):
    """List visits (both tiers), newest first"""
    if visit_date:
        results = app.store.get_by_date(visit_date)
    elif hotel_id:
        results = app.store.get_by_hotel(hotel_id)
    elif status:
        results = app.store.get_by_status(status)
    else:
        results = app.store.get_all()

    # Index lookups cover one filter; apply the rest here
    if status:
        results = [v for v in results if v.status == status]
    if hotel_id:
        results = [v for v in results if v.hotel_id == hotel_id]

    results.sort(key=lambda v: (v.date or '', v.time or ''), reverse=True)
    _print_visits(results[:limit])


@visits.command('show')
@click.argument('visit_id')
@click.pass_obj
@log_call
def visits_show(app, visit_id):
    """Show full visit details"""
    visit = app.store.get_by_id(visit_id)
    if not visit:
        logging.getLogger("visittrack").warning(f"visits_show | visit_id={visit_id} not found")
        click.echo(f"Visit {visit_id} not found.", err=True)
        return

    click.echo(f"\n{'='*80}")
    click.echo(f"VISIT {visit.id}")
    click.echo(f"{'='*80}")
    click.echo(f"Hotel:       {visit.hotel_name or '(not set)'} [{visit.hotel_id or '-'}]")
    click.echo(f"Date:        {visit.date or '(not set)'} {visit.time or ''}")
    click.echo(f"Duration:    {visit.duration or 'N/A'}")
    click.echo(f"Purpose:     {visit.purpose or '(not set)'}")
    click.echo(f"Status:      {visit.status}")
    click.echo(f"Contact:     {visit.contact_person or '(not set)'}")
    click.echo(f"Email:       {visit.contact_email or '(not set)'}")
    click.echo(f"Outcome:     {visit.visit_outcome or 'N/A'}")
    click.echo(f"Rating:      {visit.visit_rating or 'N/A'}")
    click.echo(f"Tier:        {'archived' if visit.archived else 'active'}")
    click.echo(f"Created:     {visit.created_at}")
    click.echo(f"Updated:     {visit.updated_at}")

    if visit.visit_summary:
        click.echo(f"\nSummary:\n{visit.visit_summary}")
    if visit.notes:
        click.echo(f"\nNotes:\n{visit.notes}")
    click.echo()


@visits.command('schedule')
@click.option('--hotel', 'hotel_id', required=True, help='Hotel id (see: hotels search)')
@click.option('--date', 'visit_date', required=True, callback=_check_date, help='Visit date (YYYY-MM-DD)')
@click.option('--time', 'visit_time', default='09:00', show_default=True, help='Visit time (HH:MM)')
@click.option('--duration', type=int, default=60, show_default=True, help='Minutes')
@click.option('--purpose', default='business_meeting', show_default=True)
@click.option('--contact', 'contact_person', help='Contact person at the hotel')
@click.option('--contact-email', callback=_check_email, help='Contact email')
@click.option('--notes', help='Free-form notes')
@click.pass_obj
@log_call
def visits_schedule(app, hotel_id, visit_date, visit_time, duration, purpose, contact_person, contact_email, notes):
    """Schedule a new visit"""
    logger = logging.getLogger("visittrack")
    if not get_hotel(app.kv, hotel_id):
        logger.warning(f"visits_schedule | hotel_id={hotel_id} not found")
        click.echo(f"Hotel {hotel_id} not found.", err=True)
        return

    visit = VisitRecord(
        date=visit_date,
        time=visit_time,
        duration=duration,
        hotel_id=hotel_id,
        purpose=purpose,
        contact_person=contact_person,
        contact_email=contact_email,
        notes=notes,
    )
    visit_id = visit_ops.schedule_visit(app.store, visit)
    if not visit_id:
        click.echo("Visit could not be saved (storage full?). See the log for details.", err=True)
        return
    click.echo(f"\n✓ Scheduled visit {visit_id}: {visit.hotel_name} on {visit_date} {visit_time}")


@visits.command('status')
@click.argument('visit_id')
@click.argument('status', type=click.Choice(VISIT_STATUSES))
@click.pass_obj
@log_call
def visits_status(app, visit_id, status):
    """Change a visit's status"""
    if visit_ops.update_visit_status(app.store, visit_id, status):
        click.echo(f"✓ Visit {visit_id} is now {status}")
    else:
        logging.getLogger("visittrack").warning(f"visits_status | visit_id={visit_id} not updated")
        click.echo(f"Visit {visit_id} not found or not saved.", err=True)


@visits.command('delete')
@click.argument('visit_id')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@click.pass_obj
@log_call
def visits_delete(app, visit_id, yes):
    """Delete a visit"""
    if not yes and not click.confirm(f"Delete visit {visit_id}?"):
        click.echo("Cancelled.")
        return
    if app.store.delete(visit_id):
        click.echo(f"✓ Deleted visit {visit_id}")
    else:
        logging.getLogger("visittrack").warning(f"visits_delete | visit_id={visit_id} not found")
        click.echo(f"Visit {visit_id} not found.", err=True)


@visits.command('today')
@click.pass_obj
@log_call
def visits_today(app):
    """Visits scheduled for today"""
    _print_visits(visit_ops.get_todays_visits(app.store), "No visits today.")


@visits.command('upcoming')
@click.option('--days', default=30, help='Look-ahead window in days (default: 30)')
@click.pass_obj
@log_call
def visits_upcoming(app, days):
    """Upcoming visits, excluding cancelled ones"""
    _print_visits(visit_ops.get_upcoming_visits(app.store, days=days), f"No visits in the next {days} days.")


@visits.command('stats')
@click.pass_obj
@log_call
def visits_stats(app):
    """Visit counts and completion rate"""
    stats = visit_ops.get_visit_stats(app.store)
    click.echo(f"\n{'='*40}")
    click.echo("VISIT STATISTICS")
    click.echo(f"{'='*40}")
    click.echo(f"Total:                {stats['total']}")
    click.echo(f"Completed:            {stats['completed']}")
    click.echo(f"Scheduled:            {stats['scheduled']}")
    click.echo(f"Cancelled:            {stats['cancelled']}")
    click.echo(f"This month:           {stats['this_month']}")
    click.echo(f"Completed this month: {stats['completed_this_month']}")
    click.echo(f"Success rate:         {stats['success_rate']}%")
    click.echo()


# =============================================================================
# HOTELS COMMANDS
# =============================================================================

@cli.group()
def hotels():
    """Browse the hotel directory"""
    pass


def _print_hotels(results) -> None:
    if not results:
        click.echo("No hotels found.")
        return
    click.echo(f"\nFound {len(results)} hotels:\n")
    click.echo(f"{'ID':<10} {'Name':<40} {'Area':<18} {'Priority':<8}")
    click.echo("-" * 80)
    for h in results:
        click.echo(f"{h.id:<10} {h.name[:38]:<40} {(h.area or '')[:16]:<18} {h.priority:<8}")


@hotels.command('list')
@click.option('--area', help='Filter by area (exact, case-insensitive)')
@click.option('--limit', default=200, help='Max results (default: 200)')
@click.pass_obj
@log_call
def hotels_list(app, area, limit):
    """List hotels"""
    results = get_hotels(app.kv)
    if area:
        results = [h for h in results if (h.area or '').lower() == area.lower()]
    _print_hotels(results[:limit])


@hotels.command('search')
@click.argument('query')
@click.pass_obj
@log_call
def hotels_search(app, query):
    """Search hotels by name, area, address, phone or email"""
    _print_hotels(search_hotels(app.kv, query))


@hotels.command('show')
@click.argument('hotel_id')
@click.pass_obj
@log_call
def hotels_show(app, hotel_id):
    """Show hotel details and its visits"""
    hotel = get_hotel(app.kv, hotel_id)
    if not hotel:
        logging.getLogger("visittrack").warning(f"hotels_show | hotel_id={hotel_id} not found")
        click.echo(f"Hotel {hotel_id} not found.", err=True)
        return

    click.echo(f"\n{'='*80}")
    click.echo(f"HOTEL {hotel.id}: {hotel.name}")
    click.echo(f"{'='*80}")
    click.echo(f"Area:        {hotel.area or '(not set)'}")
    click.echo(f"Address:     {hotel.address or '(not set)'}")
    click.echo(f"Phone:       {hotel.phone or '(not set)'}")
    click.echo(f"Email:       {hotel.email or '(not set)'}")
    click.echo(f"Revenue:     £{hotel.revenue:,.2f}")
    click.echo(f"Bookings:    {hotel.bookings}")
    click.echo(f"Priority:    {hotel.priority}")

    _print_visits(app.store.get_by_hotel(hotel_id), "\nNo visits for this hotel yet.")
    click.echo()


# =============================================================================
# STORAGE COMMANDS
# =============================================================================

@cli.group()
def storage():
    """Tiered storage upkeep, backup and restore"""
    pass


def _print_store_stats(stats) -> None:
    click.echo(f"Active visits:     {stats['active_visits']}")
    click.echo(f"Archived visits:   {stats['archived_visits']}")
    click.echo(f"Total visits:      {stats['total_visits']}")
    click.echo(f"Active size:       {stats['active_size']} bytes")
    click.echo(f"Archived size:     {stats['archived_size']} bytes")
    click.echo(f"Total size:        {stats['total_size']} bytes")
    click.echo(f"Compression ratio: {stats['compression_ratio']:.2f}")


@storage.command('stats')
@click.pass_obj
@log_call
def storage_stats(app):
    """Tier sizes and counts"""
    click.echo()
    _print_store_stats(app.store.stats())
    click.echo(f"Schema version:    {app.store.schema_version()}")
    click.echo()


@storage.command('maintain')
@click.pass_obj
@log_call
def storage_maintain(app):
    """Run one maintenance pass now"""
    result = app.store.perform_maintenance()
    click.echo(f"\n✓ Maintenance done: archived {result['archived']}, pruned {result['pruned']} empty index buckets\n")
    _print_store_stats(result)
    click.echo()


@storage.command('sweep')
@click.pass_obj
@log_call
def storage_sweep(app):
    """Archive every active visit past the age threshold"""
    moved = app.store.archive_stale()
    click.echo(f"✓ Archived {moved} visits older than {app.store.archive_threshold_days} days")


@storage.command('rebuild-indexes')
@click.pass_obj
@log_call
def storage_rebuild_indexes(app):
    """Rebuild date/hotel/status indexes from both tiers"""
    count = app.store.rebuild_indexes()
    click.echo(f"✓ Indexes rebuilt for {count} visits")


@storage.command('export')
@click.argument('output', type=click.File('w', encoding='utf-8'), default='-')
@click.pass_obj
@log_call
def storage_export(app, output):
    """Write a backup bundle (JSON) to OUTPUT (default: stdout)"""
    bundle = app.store.export_data()
    json.dump(bundle, output, indent=2, ensure_ascii=False)
    output.write('\n')
    if output.name != '<stdout>':
        click.echo(
            f"✓ Exported {len(bundle['activeVisits'])} active and "
            f"{len(bundle['archivedVisits'])} archived visits to {output.name}"
        )


@storage.command('import')
@click.argument('source', type=click.File('r', encoding='utf-8'))
@click.option('--yes', is_flag=True, help='Skip confirmation')
@click.pass_obj
@log_call
def storage_import(app, source, yes):
    """Restore a backup bundle, replacing stored visits"""
    logger = logging.getLogger("visittrack")
    try:
        bundle = json.load(source)
    except ValueError as e:
        logger.warning(f"storage_import | {source.name} is not valid JSON: {e}")
        click.echo(f"Error: {source.name} is not valid JSON: {e}", err=True)
        return

    if not yes and not click.confirm("This replaces all stored visits. Continue?"):
        click.echo("Cancelled.")
        return

    if app.store.import_data(bundle):
        click.echo("✓ Import complete")
    else:
        click.echo("Import failed. See the log for details.", err=True)


@storage.command('watch')
@click.option('--initial-delay', type=float, default=None, help='Seconds before the first pass')
@click.option('--interval', type=float, default=None, help='Seconds between passes')
@click.pass_obj
@log_call
def storage_watch(app, initial_delay, interval):
    """Run periodic maintenance in the foreground until Ctrl-C"""
    scheduler = MaintenanceScheduler(
        app.store,
        initial_delay=config.MAINTENANCE_INITIAL_DELAY_SECONDS if initial_delay is None else initial_delay,
        interval=config.MAINTENANCE_INTERVAL_SECONDS if interval is None else interval,
    )
    scheduler.start()
    click.echo(f"Maintenance running (first pass in {scheduler.initial_delay:.0f}s, "
               f"every {scheduler.interval:.0f}s). Ctrl-C to stop.")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.stop()
    click.echo(f"\nStopped after {scheduler.passes} passes ({scheduler.failures} failed).")


# =============================================================================
# EMAIL COMMANDS
# =============================================================================

@cli.group()
def email():
    """Templated business emails"""
    pass


@email.command('templates')
@click.pass_obj
@log_call
def email_templates(app):
    """List available templates"""
    for name, template in app.composer.templates().items():
        click.echo(f"{name:<20} {template['subject']}")


@email.command('preview')
@click.argument('template')
@click.option('--visit', 'visit_id', help='Fill fields from this visit')
@click.option('--field', 'field_pairs', multiple=True, help='Extra field as key=value (repeatable)')
@click.pass_obj
@log_call
def email_preview(app, template, visit_id, field_pairs):
    """Render a template without sending"""
    logger = logging.getLogger("visittrack")
    visit = None
    if visit_id:
        visit = app.store.get_by_id(visit_id)
        if not visit:
            logger.warning(f"email_preview | visit_id={visit_id} not found")
            click.echo(f"Visit {visit_id} not found.", err=True)
            return
    try:
        rendered = app.composer.preview(template, visit, _parse_fields(field_pairs))
    except ValueError as e:
        logger.warning(f"email_preview failed for template {template}: {e}")
        click.echo(f"Error: {e}", err=True)
        return

    click.echo(f"\nSUBJECT: {rendered['subject']}\n")
    click.echo(rendered['body'])
    click.echo()


@email.command('send')
@click.argument('template')
@click.option('--visit', 'visit_id', help='Fill fields (and recipient) from this visit')
@click.option('--to', 'recipient', callback=_check_email, help='Recipient (default: visit contact email)')
@click.option('--field', 'field_pairs', multiple=True, help='Extra field as key=value (repeatable)')
@click.option('--yes', is_flag=True, help='Send without confirmation')
@click.pass_obj
@log_call
def email_send(app, template, visit_id, recipient, field_pairs, yes):
    """Render a template and send it through the relay"""
    logger = logging.getLogger("visittrack")
    visit = None
    if visit_id:
        visit = app.store.get_by_id(visit_id)
        if not visit:
            logger.warning(f"email_send | visit_id={visit_id} not found")
            click.echo(f"Visit {visit_id} not found.", err=True)
            return
    try:
        extra = _parse_fields(field_pairs)
        rendered = app.composer.preview(template, visit, extra)
    except ValueError as e:
        logger.warning(f"email_send failed for template {template}: {e}")
        click.echo(f"Error: {e}", err=True)
        return

    click.echo(f"\nSUBJECT: {rendered['subject']}\n")
    click.echo(rendered['body'])
    click.echo()
    if not yes and not click.confirm("Send this email?"):
        click.echo("Cancelled.")
        return

    result = app.composer.send(template, visit, extra, to=recipient)
    if result.success:
        click.echo(f"✓ Email sent ({result.message_id})")
    else:
        click.echo(f"Email not sent: {result.error}", err=True)


@email.command('history')
@click.option('--limit', default=20, help='Most recent N entries (default: 20)')
@click.pass_obj
@log_call
def email_history(app, limit):
    """Recently sent emails, newest first"""
    entries = list(reversed(app.composer.history()))[:limit]
    if not entries:
        click.echo("No emails sent yet.")
        return
    for e in entries:
        click.echo(f"[{e.timestamp}] {e.status:<6} {e.to:<35} {e.subject}")
        if e.error:
            click.echo(f"    Error: {e.error}")


# =============================================================================
# MAIN
# =============================================================================

if __name__ == '__main__':
    cli()

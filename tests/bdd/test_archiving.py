from pytest_bdd import scenarios, given, when, then, parsers
from visittrack.cli.main import cli
from visittrack.db.kv import save_json
from visittrack.engine.tiered_store import ACTIVE_KEY
from visittrack.models import VisitRecord

scenarios("features/archiving.feature")


@given(parsers.parse('a visit to "{hotel_id}" took place on "{day}"'))
def past_visit(app, context, hotel_id, day):
    context["visit_id"] = app.store.save(VisitRecord(date=day, hotel_id=hotel_id, status='completed'))


@given(parsers.parse('a visit to "{hotel_id}" is scheduled for "{day}"'))
def visit_scheduled(app, context, hotel_id, day):
    context["visit_id"] = app.store.save(VisitRecord(date=day, hotel_id=hotel_id))


@given(parsers.parse('{count:d} active visits dated "{day}" are stored without archiving'))
def stale_active_visits(app, count, day):
    # Written straight to the active tier, as an older install would have left them
    records = [VisitRecord(id=f"visit_stale_{i}", date=day, hotel_id='hotel_001').to_dict() for i in range(count)]
    save_json(app.kv, ACTIVE_KEY, records)
    app.store.rebuild_indexes()


@given("the user exports a backup")
def export_backup(runner, app, context, tmp_path):
    context["backup"] = tmp_path / "backup.json"
    result = runner.invoke(cli, ["storage", "export", str(context["backup"])], obj=app)
    assert result.exit_code == 0


@given("the store is emptied")
def empty_store(app):
    for visit in app.store.get_all():
        app.store.delete(visit.id)
    assert app.store.get_all() == []


@when("the user checks storage statistics")
def storage_stats(runner, app, context):
    context["result"] = runner.invoke(cli, ["storage", "stats"], obj=app)


@when(parsers.parse('the user looks up hotel "{hotel_id}"'))
def show_hotel(runner, app, context, hotel_id):
    context["result"] = runner.invoke(cli, ["hotels", "show", hotel_id], obj=app)


@when("the user sweeps stale visits")
def sweep(runner, app, context):
    context["result"] = runner.invoke(cli, ["storage", "sweep"], obj=app)


@when("the user imports the backup")
def import_backup(runner, app, context):
    context["result"] = runner.invoke(cli, ["storage", "import", str(context["backup"]), "--yes"], obj=app)


@then(parsers.parse('the store holds {active:d} active and {archived:d} archived visits'))
def tier_counts(app, active, archived):
    stats = app.store.stats()
    assert (stats['active_visits'], stats['archived_visits']) == (active, archived)


@then(parsers.parse('the visit to "{hotel_id}" is back'))
def visit_restored(app, context, hotel_id):
    assert [v.id for v in app.store.get_by_hotel(hotel_id)] == [context["visit_id"]]

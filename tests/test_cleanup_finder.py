from datetime import datetime, timedelta

from app.roster.models import AuditEvent, Person, Role
from app.roster.modules.events.models import Event, EventDate, EventParticipation
from app.roster.modules.people.cleanup import CleanupFinder
from app.roster.utils import utcnow


def _person(s, name, *, signed_in=None):
    now = utcnow()
    p = Person(first_name=name, email=f"{name.lower()}@example.net", current_sign_in_at=signed_in, created_at=now, updated_at=now)
    s.add(p)
    s.flush()
    return p


def _role(s, person, group_id, *, deleted_at=None):
    now = utcnow()
    person.roles.append(
        Role(group_id=group_id, type="bottom_group.member", created_at=now - timedelta(days=1000), updated_at=now, deleted_at=deleted_at)
    )
    s.flush()


def _participate(s, person, start_at, finish_at=None):
    event = Event(name=f"Camp {person.first_name}")
    event.dates.append(EventDate(start_at=start_at, finish_at=finish_at))
    event.participations.append(EventParticipation(person_id=person.id))
    s.add(event)
    s.flush()


def _scenario(s, ids):
    now = utcnow()
    long_ago = now - timedelta(days=800)
    recently = now - timedelta(days=30)
    people = {}

    people["never_signed_in"] = _person(s, "Never")
    people["stale"] = _person(s, "Stale", signed_in=long_ago)
    _role(s, people["stale"], ids.north_a, deleted_at=long_ago)

    people["recently_left"] = _person(s, "Left", signed_in=long_ago)
    _role(s, people["recently_left"], ids.north_a, deleted_at=recently)

    people["mixed_roles"] = _person(s, "Mixed", signed_in=long_ago)
    _role(s, people["mixed_roles"], ids.north_a, deleted_at=long_ago)
    _role(s, people["mixed_roles"], ids.north_a1)

    people["active"] = _person(s, "Active")
    _role(s, people["active"], ids.south_a)

    people["recent_sign_in"] = _person(s, "Recent", signed_in=recently)

    people["upcoming_event"] = _person(s, "Upcoming")
    _participate(s, people["upcoming_event"], now + timedelta(days=10))

    people["running_event"] = _person(s, "Running")
    _participate(s, people["running_event"], now - timedelta(days=2), now + timedelta(days=2))

    people["past_event"] = _person(s, "Past")
    _participate(s, people["past_event"], now - timedelta(days=20), now - timedelta(days=18))
    return {k: v.id for k, v in people.items()}


def test_finder_candidates(db, ids):
    with db() as s:
        people = _scenario(s, ids)
    with db() as s:
        found = {p.id for p in CleanupFinder(s, roles_cutoff_months=12, sign_in_cutoff_months=18).run()}
    assert found == {people["never_signed_in"], people["stale"], people["past_event"]}


def test_finder_skips_root_person(db, ids):
    with db() as s:
        people = _scenario(s, ids)
    with db() as s:
        finder = CleanupFinder(s, roles_cutoff_months=12, sign_in_cutoff_months=18, root_person_id=people["never_signed_in"])
        assert people["never_signed_in"] not in {p.id for p in finder.run()}


def test_finder_cutoffs_follow_calendar_months(db):
    with db() as s:
        finder = CleanupFinder(s, roles_cutoff_months=12, sign_in_cutoff_months=18, now=datetime(2024, 2, 29, 12, 0))
        assert finder.last_role_deleted_at == datetime(2023, 2, 28, 12, 0)
        assert finder.current_sign_in_at == datetime(2022, 8, 29, 12, 0)


def test_finder_from_config(app, db):
    app.config["PEOPLE_CLEANUP_ROLES_MONTHS"] = 2
    with db() as s:
        finder = CleanupFinder.from_config(s, app.config, now=datetime(2024, 5, 31))
        assert finder.last_role_deleted_at == datetime(2024, 3, 31)


def test_cleanup_page_lists_candidates(client, ids, db, login):
    with db() as s:
        _scenario(s, ids)
    login()
    r = client.get("/admin/people/cleanup")
    assert r.status_code == 200
    assert b"never@example.net" in r.data
    assert b"active@example.net" not in r.data


def test_cleanup_requires_confirmation(client, ids, db, login):
    with db() as s:
        people = _scenario(s, ids)
    login()
    r = client.post("/admin/people/cleanup", data={"action": "destroy"}, follow_redirects=True)
    assert b"Please confirm the cleanup." in r.data
    with db() as s:
        assert s.get(Person, people["never_signed_in"]) is not None


def test_cleanup_destroys_selected_people(client, ids, db, login):
    with db() as s:
        people = _scenario(s, ids)
    login()
    r = client.post(
        "/admin/people/cleanup",
        data={
            "confirm": "1",
            "action": "destroy",
            # non-candidates are ignored
            "person_ids": [str(people["stale"]), str(people["past_event"]), str(people["active"])],
        },
        follow_redirects=True,
    )
    assert b"2 people deleted." in r.data
    with db() as s:
        assert s.get(Person, people["stale"]) is None
        assert s.get(Person, people["past_event"]) is None
        assert s.get(Person, people["never_signed_in"]) is not None
        assert s.get(Person, people["active"]) is not None
        assert s.query(Role).filter(Role.person_id == people["stale"]).count() == 0
        assert s.query(EventParticipation).filter(EventParticipation.person_id == people["past_event"]).count() == 0
        assert s.query(AuditEvent).filter(AuditEvent.action == "person.cleanup_destroy").count() == 2


def test_cleanup_minimizes_people(client, ids, db, login):
    with db() as s:
        people = _scenario(s, ids)
    login()
    r = client.post(
        "/admin/people/cleanup",
        data={"confirm": "1", "action": "minimize", "person_ids": [str(people["stale"])]},
        follow_redirects=True,
    )
    assert b"1 people minimized." in r.data
    with db() as s:
        stale = s.get(Person, people["stale"])
        assert stale.email is None
        assert stale.minimized_at is not None
        assert stale.first_name == "Stale"
        assert len(stale.roles) == 1

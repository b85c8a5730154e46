from datetime import timedelta

from app.roster.models import FUTURE_ROLE, Group, Person, Role
from app.roster.modules.people.service import person_history
from app.roster.utils import utcnow


def _setup(db, ids):
    now = utcnow()
    with db() as s:
        person = Person(first_name="Hans", last_name="Tester", created_at=now, updated_at=now, primary_group_id=ids.north_a)
        s.add(person)
        roles = [
            Role(group_id=ids.north_a, type="bottom_group.member", created_at=now - timedelta(days=300), updated_at=now),
            Role(group_id=ids.north_a1, type="bottom_group.member", created_at=now - timedelta(days=300),
                 updated_at=now, deleted_at=now - timedelta(days=100)),
            Role(group_id=ids.south_a, type="bottom_group.leader", created_at=now - timedelta(days=10), updated_at=now),
            Role(group_id=ids.north_a1, type="bottom_group.leader", created_at=now - timedelta(days=5), updated_at=now),
            Role(group_id=ids.north_a, type="bottom_group.leader", created_at=now - timedelta(days=200),
                 updated_at=now, deleted_at=now - timedelta(days=20)),
            Role(group_id=ids.south_a, type=FUTURE_ROLE, convert_to="bottom_group.member",
                 convert_on=now.date() + timedelta(days=30), created_at=now, updated_at=now),
            Role(group_id=ids.north_a, type=FUTURE_ROLE, convert_to="bottom_group.leader",
                 convert_on=now.date() + timedelta(days=10), created_at=now, updated_at=now),
        ]
        person.roles.extend(roles)
        s.flush()
        return person.id, [r.id for r in roles]


def test_history_splits_and_orders_roles(db, ids):
    person_id, (r1, r2, r3, r4, r5, f1, f2) = _setup(db, ids)
    with db() as s:
        active, inactive, future = person_history(s, s.get(Person, person_id))
        # layer, then group hierarchy
        assert [r.id for r in active] == [r1, r4, r3]
        # most recently ended first
        assert [r.id for r in inactive] == [r5, r2]
        assert [r.id for r in future] == [f2, f1]


def test_history_orders_upper_layer_roles_first(db, ids):
    person_id, (r1, r2, r3, r4, *_rest) = _setup(db, ids)
    now = utcnow()
    with db() as s:
        # sorts after "Region ..." by name, yet it is the top layer
        s.get(Group, ids.top_layer).name = "World"
        board = Role(person_id=person_id, group_id=ids.top_group, type="top_group.member", created_at=now, updated_at=now)
        s.add(board)
        s.flush()
        board_id = board.id
    with db() as s:
        active, _, _ = person_history(s, s.get(Person, person_id))
        assert [r.id for r in active] == [board_id, r1, r4, r3]


def test_role_deleted_in_the_future_is_still_active(db, ids):
    person_id, (r1, *_rest) = _setup(db, ids)
    with db() as s:
        s.get(Role, r1).deleted_at = utcnow() + timedelta(days=3)
    with db() as s:
        active, inactive, _ = person_history(s, s.get(Person, person_id))
        assert r1 in [r.id for r in active]
        assert r1 not in [r.id for r in inactive]


def test_history_page(client, ids, db, login):
    person_id, _ = _setup(db, ids)
    login()
    r = client.get(f"/groups/{ids.north_a}/people/{person_id}/history")
    assert r.status_code == 200
    body = r.data.decode()
    assert "Active roles" in body and "Future roles" in body and "Ended roles" in body
    assert body.index("North A1") < body.index("South A")


def test_history_page_forbidden_for_unrelated_reader(client, ids, db, login):
    with db() as s:
        now = utcnow()
        person = Person(first_name="Sid", created_at=now, updated_at=now)
        person.roles.append(Role(group_id=ids.south_a, type="bottom_group.member", created_at=now, updated_at=now))
        s.add(person)
        s.flush()
        person_id = person.id
    login("bottom_member@example.com")
    r = client.get(f"/groups/{ids.south_a}/people/{person_id}/history")
    assert r.status_code == 403

"""Role create/update/destroy through the HTTP endpoints."""
from datetime import timedelta

from app.roster.models import FUTURE_ROLE, AuditEvent, Group, Person, Role
from app.roster.utils import utcnow


def _add_role(db, person_id, group_id, type_key, *, days_old=0, updated_days_ago=None, **kwargs):
    now = utcnow()
    with db() as s:
        person = s.get(Person, person_id)
        role = Role(
            type=type_key,
            group_id=group_id,
            created_at=now - timedelta(days=days_old),
            updated_at=now - timedelta(days=updated_days_ago if updated_days_ago is not None else days_old),
            **kwargs,
        )
        person.roles.append(role)
        s.flush()
        return role.id


def _roles_of(db, person_id):
    with db() as s:
        return s.query(Role).filter(Role.person_id == person_id).order_by(Role.id).all()


def _count(db, model):
    with db() as s:
        return s.query(model).count()


# ---------- New ----------
def test_new_requires_login(client, ids):
    r = client.get(f"/groups/{ids.north_a}/roles/new")
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]


def test_new_renders_form(client, ids, login):
    login()
    r = client.get(f"/groups/{ids.north_a}/roles/new")
    assert r.status_code == 200
    assert b"role[new_person][first_name]" in r.data
    # layer-wide writers may pick any group of the layer
    assert b"North A1" in r.data


def test_new_preselects_person_of_deleted_role(client, ids, db, login):
    role_id = _add_role(db, ids.bottom_member, ids.north_a, "bottom_group.member", days_old=30, deleted_at=utcnow() - timedelta(days=1))
    login()
    r = client.get(f"/groups/{ids.north_a}/roles/new?role_id={role_id}")
    assert r.status_code == 200
    assert f'name="role[person_id]" value="{ids.bottom_member}"'.encode() in r.data


def test_new_forbidden_for_reader(client, ids, login):
    login("bottom_member@example.com")
    r = client.get(f"/groups/{ids.north_a}/roles/new")
    assert r.status_code == 403


# ---------- Create ----------
def test_create_role_for_existing_person(client, ids, db, login):
    login()
    r = client.post(
        f"/groups/{ids.north_a}/roles",
        data={
            "role[group_id]": str(ids.north_a),
            "role[type]": "bottom_group.member",
            "role[person_id]": str(ids.bottom_member),
            "role[label]": "Treasurer",
        },
    )
    assert r.status_code == 302
    assert r.headers["Location"].endswith(f"/groups/{ids.north_a}/people")

    roles = _roles_of(db, ids.bottom_member)
    created = [x for x in roles if x.group_id == ids.north_a]
    assert len(created) == 1
    assert created[0].type == "bottom_group.member"
    assert created[0].label == "Treasurer"
    with db() as s:
        # primary group is kept when the person already has one
        assert s.get(Person, ids.bottom_member).primary_group_id == ids.north
        assert s.query(AuditEvent).filter(AuditEvent.action == "role.create").count() == 1


def test_create_role_with_new_person(client, ids, db, login):
    login()
    people_before = _count(db, Person)
    r = client.post(
        f"/groups/{ids.north_a}/roles",
        data={
            "role[type]": "bottom_group.member",
            "role[new_person][first_name]": "Bob",
            "role[new_person][last_name]": "Miller",
            "role[new_person][email]": "Bob@Example.com",
        },
    )
    assert r.status_code == 302
    assert _count(db, Person) == people_before + 1
    with db() as s:
        bob = s.query(Person).filter(Person.email == "bob@example.com").one()
        assert bob.primary_group_id == ids.north_a
        assert [x.type for x in bob.roles] == ["bottom_group.member"]
        assert r.headers["Location"].endswith(f"/groups/{ids.north_a}/people/{bob.id}")


def test_create_in_group_from_params(client, ids, db, login):
    login()
    r = client.post(
        f"/groups/{ids.north_a}/roles",
        data={
            "role[group_id]": str(ids.north_a1),
            "role[type]": "bottom_group.leader",
            "role[person_id]": str(ids.bottom_member),
        },
    )
    assert r.status_code == 302
    assert any(x.group_id == ids.north_a1 and x.type == "bottom_group.leader" for x in _roles_of(db, ids.bottom_member))


def test_create_with_invalid_new_person_writes_nothing(client, ids, db, login):
    login()
    people_before, roles_before = _count(db, Person), _count(db, Role)
    r = client.post(
        f"/groups/{ids.north_a}/roles",
        data={"role[type]": "bottom_group.member", "role[new_person][email]": "not-an-email"},
    )
    assert r.status_code == 422
    assert b"is not a valid email address" in r.data
    assert _count(db, Person) == people_before
    assert _count(db, Role) == roles_before


def test_create_with_taken_email_fails(client, ids, db, login):
    login()
    roles_before = _count(db, Role)
    r = client.post(
        f"/groups/{ids.north_a}/roles",
        data={"role[type]": "bottom_group.member", "role[new_person][email]": "bottom_member@example.com"},
    )
    assert r.status_code == 422
    assert b"is already taken" in r.data
    assert _count(db, Role) == roles_before


def test_create_requires_privacy_policy_acceptance(client, ids, db, login):
    with db() as s:
        s.get(Group, ids.north).privacy_policy_key = "groups/1/privacy_policy/policy.pdf"
    login()
    people_before = _count(db, Person)

    r = client.post(
        f"/groups/{ids.north_a}/roles",
        data={"role[type]": "bottom_group.member", "role[new_person][first_name]": "Bob"},
    )
    assert r.status_code == 422
    assert b"Privacy policy must be accepted" in r.data
    assert _count(db, Person) == people_before

    r = client.post(
        f"/groups/{ids.north_a}/roles",
        data={
            "role[type]": "bottom_group.member",
            "role[new_person][first_name]": "Bob",
            "role[new_person][privacy_policy_accepted]": "1",
        },
    )
    assert r.status_code == 302
    with db() as s:
        bob = s.query(Person).filter(Person.first_name == "Bob").one()
        assert bob.privacy_policy_accepted_at is not None


def test_create_with_future_start_builds_future_role(client, ids, db, login):
    login()
    start = (utcnow() + timedelta(days=10)).date()
    r = client.post(
        f"/groups/{ids.north_a}/roles",
        data={
            "role[type]": "bottom_group.leader",
            "role[person_id]": str(ids.bottom_member),
            "role[created_at]": start.isoformat(),
        },
    )
    assert r.status_code == 302
    future = [x for x in _roles_of(db, ids.bottom_member) if x.group_id == ids.north_a]
    assert len(future) == 1
    assert future[0].type == FUTURE_ROLE
    assert future[0].convert_to == "bottom_group.leader"
    assert future[0].convert_on == start


def test_create_with_past_start_keeps_start_date(client, ids, db, login):
    login()
    r = client.post(
        f"/groups/{ids.north_a}/roles",
        data={
            "role[type]": "bottom_group.member",
            "role[person_id]": str(ids.bottom_member),
            "role[created_at]": "01.02.2020",
        },
    )
    assert r.status_code == 302
    role = [x for x in _roles_of(db, ids.bottom_member) if x.group_id == ids.north_a][0]
    assert role.created_at.date().isoformat() == "2020-02-01"


def test_create_with_unknown_type_is_not_found(client, ids, db, login):
    login()
    roles_before = _count(db, Role)
    r = client.post(
        f"/groups/{ids.north_a}/roles",
        data={"role[type]": "top_group.leader", "role[person_id]": str(ids.bottom_member)},
    )
    assert r.status_code == 404
    assert _count(db, Role) == roles_before


def test_create_without_type_fails(client, ids, login):
    login()
    r = client.post(f"/groups/{ids.north_a}/roles", data={"role[person_id]": str(ids.bottom_member)})
    assert r.status_code == 422
    assert b"Please select a role type" in r.data


def test_create_forbidden_for_reader(client, ids, db, login):
    login("bottom_member@example.com")
    roles_before = _count(db, Role)
    r = client.post(
        f"/groups/{ids.north_a}/roles",
        data={"role[type]": "bottom_group.member", "role[person_id]": str(ids.bottom_member)},
    )
    assert r.status_code == 403
    assert _count(db, Role) == roles_before


def test_create_redirects_to_new_form_with_add_another(client, ids, login):
    login()
    r = client.post(
        f"/groups/{ids.north_a}/roles",
        data={"role[type]": "bottom_group.member", "role[person_id]": str(ids.bottom_member), "add_another": "1"},
    )
    assert r.status_code == 302
    assert r.headers["Location"].endswith(f"/groups/{ids.north_a}/roles/new")


def test_create_redirects_to_return_url(client, ids, login):
    login()
    r = client.post(
        f"/groups/{ids.north_a}/roles",
        data={
            "role[type]": "bottom_group.member",
            "role[person_id]": str(ids.bottom_member),
            "return_url": f"/groups/{ids.north}",
        },
    )
    assert r.status_code == 302
    assert r.headers["Location"].endswith(f"/groups/{ids.north}")


def test_create_xhr_returns_json(client, ids, login):
    login()
    r = client.post(
        f"/groups/{ids.north_a}/roles",
        data={"role[type]": "bottom_group.member", "role[person_id]": str(ids.bottom_member)},
        headers={"X-Requested-With": "XMLHttpRequest"},
    )
    assert r.status_code == 201
    assert r.json["role"]["type"] == "bottom_group.member"


# ---------- Update ----------
def test_update_label(client, ids, db, login):
    role_id = _add_role(db, ids.bottom_member, ids.north_a, "bottom_group.member")
    login()
    r = client.get(f"/groups/{ids.north_a}/roles/{role_id}/edit")
    assert r.status_code == 200

    r = client.post(
        f"/groups/{ids.north_a}/roles/{role_id}/edit",
        data={"role[type]": "bottom_group.member", "role[label]": "Cashier"},
    )
    assert r.status_code == 302
    assert r.headers["Location"].endswith(f"/groups/{ids.north_a}/people/{ids.bottom_member}")
    with db() as s:
        assert s.get(Role, role_id).label == "Cashier"


def test_update_with_invalid_dates_rerenders(client, ids, db, login):
    role_id = _add_role(db, ids.bottom_member, ids.north_a, "bottom_group.member", days_old=10)
    login()
    start = (utcnow() - timedelta(days=10)).date()
    r = client.post(
        f"/groups/{ids.north_a}/roles/{role_id}/edit",
        data={
            "role[type]": "bottom_group.member",
            "role[deleted_at]": (start - timedelta(days=5)).isoformat(),
        },
    )
    assert r.status_code == 422
    assert b"must not be before the start date" in r.data
    with db() as s:
        assert s.get(Role, role_id).deleted_at is None


def test_update_with_past_delete_on_destroys_role(client, ids, db, login):
    role_id = _add_role(db, ids.bottom_member, ids.north_a, "bottom_group.member", days_old=30)
    login()
    r = client.post(
        f"/groups/{ids.north_a}/roles/{role_id}/edit",
        data={
            "role[type]": "bottom_group.member",
            "role[delete_on]": (utcnow() - timedelta(days=1)).date().isoformat(),
        },
        follow_redirects=True,
    )
    assert r.status_code == 200
    assert b"was successfully deleted" in r.data
    with db() as s:
        assert s.get(Role, role_id).deleted_at is not None


# ---------- Change type ----------
def test_change_type_in_same_group(client, ids, db, login):
    role_id = _add_role(db, ids.bottom_member, ids.north_a, "bottom_group.member")
    login()
    r = client.post(
        f"/groups/{ids.north_a}/roles/{role_id}/edit",
        data={"role[group_id]": str(ids.north_a), "role[type]": "bottom_group.leader"},
        follow_redirects=True,
    )
    assert r.status_code == 200
    assert b"was changed to Leader." in r.data
    with db() as s:
        # young roles are deleted, not archived
        assert s.get(Role, role_id) is None
        new = s.query(Role).filter(Role.person_id == ids.bottom_member, Role.group_id == ids.north_a).one()
        assert new.type == "bottom_group.leader"
        assert s.query(AuditEvent).filter(AuditEvent.action == "role.change_type").count() == 1


def test_change_group_keeps_type(client, ids, db, login):
    role_id = _add_role(db, ids.bottom_member, ids.north_a, "bottom_group.member", days_old=30)
    login()
    r = client.post(
        f"/groups/{ids.north_a}/roles/{role_id}/edit",
        data={"role[group_id]": str(ids.north_a1), "role[type]": "bottom_group.member"},
        follow_redirects=True,
    )
    assert r.status_code == 200
    assert b"was changed to Member in North A1." in r.data
    with db() as s:
        old = s.get(Role, role_id)
        # older roles are archived
        assert old.deleted_at is not None
        assert s.query(Role).filter(Role.person_id == ids.bottom_member, Role.group_id == ids.north_a1).count() == 1


def test_change_type_failure_keeps_old_role(client, ids, db, login):
    role_id = _add_role(db, ids.bottom_member, ids.north_a, "bottom_group.member", days_old=30)
    roles_before = _count(db, Role)
    login()
    today = utcnow().date()
    r = client.post(
        f"/groups/{ids.north_a}/roles/{role_id}/edit",
        data={
            "role[type]": "bottom_group.leader",
            "role[created_at]": today.isoformat(),
            "role[delete_on]": (today - timedelta(days=3)).isoformat(),
        },
    )
    assert r.status_code == 422
    assert b"must not be before the start date" in r.data
    # the form shows the rejected type
    assert b'value="bottom_group.leader" selected' in r.data
    assert _count(db, Role) == roles_before
    with db() as s:
        old = s.get(Role, role_id)
        assert old.type == "bottom_group.member"
        assert old.deleted_at is None


def test_change_type_to_unknown_type_is_not_found(client, ids, db, login):
    role_id = _add_role(db, ids.bottom_member, ids.north_a, "bottom_group.member")
    login()
    r = client.post(
        f"/groups/{ids.north_a}/roles/{role_id}/edit",
        data={"role[type]": "top_layer.administrator"},
    )
    assert r.status_code == 404
    with db() as s:
        assert s.get(Role, role_id).type == "bottom_group.member"


# ---------- Destroy ----------
def test_destroy_young_role_deletes_it(client, ids, db, login):
    role_id = _add_role(db, ids.bottom_member, ids.north_a, "bottom_group.member", days_old=2)
    login()
    r = client.post(f"/groups/{ids.north_a}/roles/{role_id}/delete")
    assert r.status_code == 302
    assert r.headers["Location"].endswith(f"/groups/{ids.north_a}/people/{ids.bottom_member}")
    with db() as s:
        assert s.get(Role, role_id) is None


def test_destroy_old_role_archives_it(client, ids, db, login):
    role_id = _add_role(db, ids.bottom_member, ids.north_a, "bottom_group.member", days_old=30)
    login()
    r = client.post(f"/groups/{ids.north_a}/roles/{role_id}/delete")
    assert r.status_code == 302
    with db() as s:
        role = s.get(Role, role_id)
        assert role is not None
        assert role.deleted_at is not None
        assert s.query(AuditEvent).filter(AuditEvent.action == "role.archive").count() == 1


def test_destroy_future_role_deletes_it(client, ids, db, login):
    role_id = _add_role(
        db,
        ids.bottom_member,
        ids.north_a,
        FUTURE_ROLE,
        days_old=60,
        convert_to="bottom_group.member",
        convert_on=(utcnow() + timedelta(days=5)).date(),
    )
    login()
    r = client.post(f"/groups/{ids.north_a}/roles/{role_id}/delete")
    assert r.status_code == 302
    with db() as s:
        assert s.get(Role, role_id) is None


def test_destroy_last_primary_group_role_moves_primary_group(client, ids, db, login):
    # bottom_member: primary group Region North (one role), plus roles in two other groups
    _add_role(db, ids.bottom_member, ids.north_a, "bottom_group.member", days_old=20, updated_days_ago=10)
    _add_role(db, ids.bottom_member, ids.south_a, "bottom_group.member", days_old=20, updated_days_ago=1)
    with db() as s:
        north_role = s.query(Role).filter(Role.person_id == ids.bottom_member, Role.group_id == ids.north).one()
        north_role_id = north_role.id
    login()
    r = client.post(f"/groups/{ids.north}/roles/{north_role_id}/delete", follow_redirects=True)
    assert r.status_code == 200
    assert b"Primary group changed to South A." in r.data
    with db() as s:
        assert s.get(Person, ids.bottom_member).primary_group_id == ids.south_a


def test_destroy_forbidden_for_reader(client, ids, db, login):
    role_id = _add_role(db, ids.north_leader, ids.north_a1, "bottom_group.member")
    login("bottom_member@example.com")
    r = client.post(f"/groups/{ids.north_a1}/roles/{role_id}/delete")
    assert r.status_code == 403
    with db() as s:
        assert s.get(Role, role_id) is not None


def test_group_leader_manages_subgroups_only(client, ids, db, login):
    login("north_leader@example.com")
    r = client.post(
        f"/groups/{ids.north_a1}/roles",
        data={"role[type]": "bottom_group.member", "role[person_id]": str(ids.bottom_member)},
    )
    assert r.status_code == 302
    r = client.post(
        f"/groups/{ids.north}/roles",
        data={"role[type]": "bottom_layer.member", "role[person_id]": str(ids.north_leader)},
    )
    assert r.status_code == 403


# ---------- Fragments ----------
def test_details_renders_role_type(client, ids, login):
    login("bottom_member@example.com")
    r = client.get(f"/groups/{ids.north_a}/roles/details", query_string={"role[type]": "bottom_group.leader"})
    assert r.status_code == 200
    assert b'data-role-type="bottom_group.leader"' in r.data


def test_details_uses_group_from_params(client, ids, login):
    login()
    r = client.get(
        f"/groups/{ids.north_a}/roles/details",
        query_string={"role[group_id]": str(ids.top_group), "role[type]": "top_group.secretary"},
    )
    assert r.status_code == 200
    assert b"Secretary" in r.data


def test_details_with_unknown_type_is_not_found(client, ids, login):
    login()
    r = client.get(f"/groups/{ids.north_a}/roles/details", query_string={"role[type]": "top_group.leader"})
    assert r.status_code == 404


def test_role_types_selects_default_role(client, ids, login):
    login()
    r = client.get(f"/groups/{ids.north_a}/roles/role_types", query_string={"role[group_id]": str(ids.north)})
    assert r.status_code == 200
    assert b'value="bottom_layer.member" selected' in r.data
    assert b"bottom_layer.leader" in r.data
    assert b"bottom_group" not in r.data


def test_fragments_require_login(client, ids):
    r = client.get(f"/groups/{ids.north_a}/roles/role_types", query_string={"role[group_id]": str(ids.north)})
    assert r.status_code == 302


def test_destroy_archived_role_is_not_found(client, ids, db, login):
    archived_at = (utcnow() - timedelta(days=400)).replace(microsecond=0)
    role_id = _add_role(db, ids.bottom_member, ids.north_a, "bottom_group.member", days_old=500, deleted_at=archived_at)
    login()
    r = client.post(f"/groups/{ids.north_a}/roles/{role_id}/delete")
    assert r.status_code == 404
    with db() as s:
        assert s.get(Role, role_id).deleted_at == archived_at


def test_edit_archived_role_is_not_found(client, ids, db, login):
    role_id = _add_role(
        db, ids.bottom_member, ids.north_a, "bottom_group.member", days_old=500, deleted_at=utcnow() - timedelta(days=400)
    )
    before = _count(db, Role)
    login()
    assert client.get(f"/groups/{ids.north_a}/roles/{role_id}/edit").status_code == 404

    r = client.post(f"/groups/{ids.north_a}/roles/{role_id}/edit", data={"role[type]": "bottom_group.leader"})
    assert r.status_code == 404
    assert _count(db, Role) == before
    with db() as s:
        assert s.get(Role, role_id).type == "bottom_group.member"

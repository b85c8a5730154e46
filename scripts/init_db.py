import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.roster.models import Group, Person, Role  # noqa: E402
from app.roster.modules.groups.service import create_group  # noqa: E402
from app.roster.utils import utcnow  # noqa: E402
from scripts._db_utils import database_url as default_database_url, script_session  # noqa: E402

ROOT_GROUP_TYPE = "top_layer"
ROOT_ROLE_TYPE = "top_layer.administrator"


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the top layer group and the root person in an idempotent way.
    Does NOT overwrite an existing root person's password.
    """
    root_email = (os.environ.get("ROOT_EMAIL") or "root@example.org").strip().lower()
    root_password = os.environ.get("ROOT_PASSWORD") or "change-me"
    root_group_name = (os.environ.get("ROOT_GROUP_NAME") or "Federation").strip()

    db_url = (database_url or default_database_url()).strip()

    # Use a direct engine/session so this can run in release without importing app.wsgi.
    with script_session(db_url) as s:
        top = (
            s.query(Group)
            .filter(Group.parent_id.is_(None))
            .filter(Group.type == ROOT_GROUP_TYPE)
            .order_by(Group.id.asc())
            .first()
        )
        if not top:
            top = create_group(s, type_key=ROOT_GROUP_TYPE, name=root_group_name)

        person = s.query(Person).filter(Person.email == root_email).one_or_none()
        if not person:
            now = utcnow()
            person = Person(
                first_name="Root",
                email=root_email,
                password_hash=generate_password_hash(root_password),
                created_at=now,
                updated_at=now,
            )
            s.add(person)
            s.flush()

        has_admin_role = any(r.group_id == top.id and r.type == ROOT_ROLE_TYPE and r.is_active for r in person.roles)
        if not has_admin_role:
            role = Role(type=ROOT_ROLE_TYPE, group=top, created_at=utcnow())
            person.roles.append(role)
        if person.primary_group_id is None:
            person.primary_group = top

    print("Initialized database (seed_only).")
    print(f"Root group: {root_group_name}")
    print(f"Root email: {root_email}")
    print("Root password: (from ROOT_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""Delete (or minimize) stale people.

A person is stale when they hold no role that ended after the roles cutoff,
take part in no upcoming event and have not signed in since the sign-in
cutoff (PEOPLE_CLEANUP_ROLES_MONTHS / PEOPLE_CLEANUP_SIGN_IN_MONTHS).
The root person (ROOT_EMAIL) is never touched.

Usage:
    python scripts/cleanup_people.py             # Interactive mode
    python scripts/cleanup_people.py --dry-run   # Preview only
    python scripts/cleanup_people.py --yes       # Delete without confirmation
    python scripts/cleanup_people.py --minimize  # Wipe contact data instead of deleting
"""

import argparse
import logging
import sys
from pathlib import Path

# Ensure repo root is on sys.path when running as a script
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dotenv import load_dotenv  # noqa: E402

from app.roster.config import load_config  # noqa: E402
from app.roster.modules.people.cleanup import CleanupFinder  # noqa: E402
from app.roster.modules.people.service import destroy_people, minimize_people, root_person  # noqa: E402
from scripts._db_utils import script_session  # noqa: E402

logger = logging.getLogger("cleanup_people")


def main():
    parser = argparse.ArgumentParser(description="Delete or minimize stale people")
    parser.add_argument("--dry-run", action="store_true", help="Preview only, don't change anything")
    parser.add_argument("--yes", "-y", action="store_true", help="Apply without confirmation")
    parser.add_argument("--minimize", action="store_true", help="Wipe contact data instead of deleting")
    args = parser.parse_args()

    load_dotenv()
    config = load_config()
    logging.basicConfig(level=config["LOG_LEVEL"], format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    db_url = config["DATABASE_URL"]

    print(f"Database: {db_url[:50]}...")
    print(f"Roles cutoff: {config['PEOPLE_CLEANUP_ROLES_MONTHS']} months, sign-in cutoff: {config['PEOPLE_CLEANUP_SIGN_IN_MONTHS']} months")
    print()

    with script_session(db_url) as s:
        root = root_person(s, config["ROOT_EMAIL"])
        if not root:
            print(f"WARNING: root person {config['ROOT_EMAIL']} not found")

        finder = CleanupFinder.from_config(s, config, root_person_id=root.id if root else None)
        people = finder.run()

        if not people:
            print("OK: No stale people found.")
            return

        print(f"Found {len(people)} stale people:")
        print("-" * 60)
        for i, p in enumerate(people[:50], 1):  # Show first 50
            print(f"  {i:3}. {str(p)[:50]:<50} (ID: {p.id})")
        if len(people) > 50:
            print(f"  ... and {len(people) - 50} more")
        print("-" * 60)

        if args.dry_run:
            print("\n[DRY RUN] No changes made.")
            return

        verb = "Minimize" if args.minimize else "Delete"
        if not args.yes:
            response = input(f"\n{verb} these {len(people)} people? (yes/no): ")
            if response.lower() != "yes":
                print("Cancelled.")
                return

        if args.minimize:
            count = minimize_people(s, people, actor=root)
        else:
            count = destroy_people(s, people, actor=root)
        logger.info("%sd %d people", verb, count)
        print(f"\nOK: {verb}d {count} people.")


if __name__ == "__main__":
    main()

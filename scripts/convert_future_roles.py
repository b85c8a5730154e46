#!/usr/bin/env python3
"""Daily role maintenance.

- Converts future roles whose start date has come into roles of their target type.
- Ends roles whose delete_on date has passed.

Usage:
    python scripts/convert_future_roles.py
    python scripts/convert_future_roles.py --skip-expire
"""

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dotenv import load_dotenv  # noqa: E402

from app.roster.config import load_config  # noqa: E402
from app.roster.modules.roles.service import convert_future_roles, expire_roles  # noqa: E402
from scripts._db_utils import script_session  # noqa: E402

logger = logging.getLogger("convert_future_roles")


def main():
    parser = argparse.ArgumentParser(description="Convert due future roles and expire ended roles")
    parser.add_argument("--skip-expire", action="store_true", help="Only convert future roles")
    args = parser.parse_args()

    load_dotenv()
    config = load_config()
    logging.basicConfig(level=config["LOG_LEVEL"], format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    with script_session(config["DATABASE_URL"]) as s:
        converted = convert_future_roles(s)
        expired = 0
        if not args.skip_expire:
            expired = expire_roles(s, minimum_days=config["ROLE_MINIMUM_DAYS_TO_ARCHIVE"])

    print(f"OK: converted {len(converted)} future roles, expired {expired} roles.")


if __name__ == "__main__":
    main()

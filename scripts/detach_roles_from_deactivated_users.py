#!/usr/bin/env python3
"""Detach roles from institution users whose deactivation date has arrived.

Meant to run daily shortly after midnight Estonian time (cron or k8s CronJob).

Usage:
  python scripts/detach_roles_from_deactivated_users.py
"""

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.authz.modules.institution_users.service import detach_roles_from_deactivated_users
from scripts._db_utils import script_session


def main() -> None:
    with script_session() as s:
        ids = detach_roles_from_deactivated_users(s)
    print(f"Detached roles from {len(ids)} deactivated institution users.")


if __name__ == "__main__":
    main()

import sys
from pathlib import Path

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.authz.modules.roles.service import ensure_privileges
from scripts._db_utils import script_session


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the privilege catalog in an idempotent way.
    Roles and users are per institution; see scripts/create_institution.py.
    """
    with script_session(database_url) as s:
        keys = [p.key for p in ensure_privileges(s)]

    print("Initialized database (seed_only).")
    print(f"Privileges: {len(keys)}")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""Create an institution with its root role and main user.

Usage:
  python scripts/create_institution.py --name "Tõlkebüroo" --pic 39511267470 --forename Mari --surname Maasikas
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.authz.modules.institutions.service import create_institution_with_main_user
from app.authz.utils import is_valid_personal_identification_code
from scripts._db_utils import script_session


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--name", required=True, help="Institution name")
    parser.add_argument("--short-name", default=None, help="Up to 3 characters")
    parser.add_argument("--email", default=None)
    parser.add_argument("--phone", default=None)
    parser.add_argument("--pic", required=True, help="Personal identification code of the main user")
    parser.add_argument("--forename", required=True)
    parser.add_argument("--surname", required=True)
    args = parser.parse_args()

    if not is_valid_personal_identification_code(args.pic):
        print(f"Invalid personal identification code: {args.pic}")
        sys.exit(2)

    with script_session() as s:
        iu = create_institution_with_main_user(
            s,
            name=args.name,
            short_name=args.short_name,
            email=args.email,
            phone=args.phone,
            personal_identification_code=args.pic,
            forename=args.forename,
            surname=args.surname,
        )
        institution_id, institution_user_id = iu.institution_id, iu.id

    print(f"Institution created: {institution_id}")
    print(f"Main institution user: {institution_user_id}")


if __name__ == "__main__":
    main()

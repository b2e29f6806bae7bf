# scripts/update_user_role.py
"""
Update a user's role.

Usage:
  python -m scripts.update_user_role user@example.com admin
"""

import argparse
import json
import sys

from auth.auth_manager import auth_manager
from auth.models import Role, User, get_db_session


def find_user_id(email: str):
    session = get_db_session()
    try:
        user = session.query(User).filter_by(email=email).first()
        return user.id if user else None
    finally:
        session.close()


def list_role_names():
    session = get_db_session()
    try:
        return [name for (name,) in session.query(Role.name).order_by(Role.name)]
    finally:
        session.close()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Update a user's role")
    parser.add_argument("email", help="Email of the user")
    parser.add_argument("role", help="Name of the role to assign")
    args = parser.parse_args(argv)

    role_names = list_role_names()
    if args.role not in role_names:
        known = ", ".join(role_names) or "none"
        print(f"❌ Unknown role \"{args.role}\" (known roles: {known})", file=sys.stderr)
        return 1

    user_id = find_user_id(args.email)
    if user_id is None:
        print(f"❌ User with email \"{args.email}\" not found", file=sys.stderr)
        return 1

    result = auth_manager.assign_role(user_id, args.role)
    if "error" in result:
        print(f"❌ {result['error']}. Run 'python -m scripts.seed_abilities' first.", file=sys.stderr)
        return 1

    print("✅ User role updated successfully:")
    print(json.dumps({"id": user_id, "email": args.email, "role": args.role}, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())

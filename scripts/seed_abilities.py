# scripts/seed_abilities.py
"""
Seed roles and abilities from YAML.

Usage:
  python -m scripts.seed_abilities                  # create missing roles
  python -m scripts.seed_abilities --replace        # also rewrite existing roles
  python -m scripts.seed_abilities --file my.yaml
"""

import argparse
import sys

from loguru import logger

from auth.models import Base, get_db_session, get_engine, load_role_seeds, seed_roles


def seed(path: str = None, replace: bool = False) -> list:
    """Seed roles, returning the names of the roles created or rewritten"""
    import admin.models  # noqa: F401

    Base.metadata.create_all(get_engine(), checkfirst=True)

    session = get_db_session()
    try:
        changed = seed_roles(session, load_role_seeds(path), replace=replace)
        session.commit()
        return changed
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Seed roles and abilities")
    parser.add_argument("--file", help="YAML seed file (defaults to ROLE_SEED_PATH)")
    parser.add_argument("--replace", action="store_true",
                        help="Rewrite the abilities of roles that already exist")
    args = parser.parse_args(argv)

    try:
        changed = seed(args.file, args.replace)
    except Exception as e:
        logger.error(f"❌ Seeding failed: {type(e).__name__}: {e}")
        return 1

    if changed:
        print(f"✓ Seeded roles: {', '.join(changed)}")
    else:
        print("✓ All roles already exist (use --replace to rewrite them)")
    return 0


if __name__ == "__main__":
    sys.exit(main())

import argparse

from coatcheck.config import settings
from coatcheck.db import SessionLocal, engine
from coatcheck.models import Base
from coatcheck.services.user_service import ensure_local_admin


def init_admin(create_tables: bool = False) -> tuple[str, bool]:
    if create_tables:
        Base.metadata.create_all(engine)
    with SessionLocal() as db:
        user, created = ensure_local_admin(db, settings.local_admin_password)
        db.commit()
        return user.id, created


def main() -> None:
    parser = argparse.ArgumentParser(description='Create or repair the local admin account.')
    parser.add_argument('--create-tables', action='store_true', help='Create any missing database tables first.')
    args = parser.parse_args()

    if not settings.local_admin_password:
        print('Warning: LOCAL_ADMIN_PASSWORD is not set; the admin login will stay disabled until it is.')
    user_id, created = init_admin(create_tables=args.create_tables)
    print(f"Local admin {'created' if created else 'already exists'}: id={user_id}")


if __name__ == '__main__':
    main()

import argparse

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db import SessionLocal, engine, init_db
from app.models import Location, SpotType, StagingSpot, User, UserRole
from app.security.sessions import create_web_session

DEFAULT_LOCATION_NUMBER = 1
DEFAULT_LOCATION_NAME = 'GLENDORA'

# (spot type, codes, codes per grid row)
SPOT_LAYOUT: list[tuple[SpotType, list[str], int]] = [
    (SpotType.WILL_CALL_CONSTRUCTION, ['W1A', 'W1B', 'W1C', 'W2A', 'W2B', 'W2C'], 3),
    (
        SpotType.WILL_CALL_SERVICE,
        ['W3A', 'W3B', 'W3C', 'W3D', 'W3E', 'W3F', 'W4A', 'W4B', 'W4C', 'W4D', 'W4E', 'W4F'],
        6,
    ),
    (
        SpotType.STAGING,
        ['S1A', 'S1B', 'S1C', 'S2A', 'S2B', 'S2C', 'S3A', 'S3B', 'S3C', 'S4A', 'S4B', 'S4C'],
        3,
    ),
    (SpotType.DELIVERY, ['D1A', 'D1B', 'D1C', 'D2A', 'D2B', 'D2C', 'D3A', 'D3B', 'D3C'], 3),
    (SpotType.LONG_TERM, ['LT-1A', 'LT-1B', 'LT-1C', 'LT-2A', 'LT-2B', 'LT-2C'], 3),
]

PENDING_RETURN_SPOTS = [('PR-1', 'Pending Returns 1'), ('PR-2', 'Pending Returns 2')]

DEFAULT_USERS = [
    ('TSTEPPAN', 'Tim Steppan', UserRole.WAREHOUSE),
    ('CAMES', 'Chris Ames', UserRole.ADMIN),
    ('FIELD', 'Field User', UserRole.FIELD),
]


def seed_spot_layout(db: Session, location: Location) -> int:
    existing = set(
        db.execute(select(StagingSpot.code).where(StagingSpot.location_id == location.id)).scalars().all()
    )
    created = 0
    for spot_type, codes, per_row in SPOT_LAYOUT:
        for index, code in enumerate(codes):
            if code in existing:
                continue
            db.add(
                StagingSpot(
                    location_id=location.id,
                    code=code,
                    name=code,
                    spot_type=spot_type,
                    grid_row=index // per_row,
                    grid_col=index % per_row,
                )
            )
            created += 1
    for col, (code, name) in enumerate(PENDING_RETURN_SPOTS):
        if code in existing:
            continue
        db.add(
            StagingSpot(
                location_id=location.id,
                code=code,
                name=name,
                spot_type=SpotType.PENDING_RETURNS,
                grid_row=0,
                grid_col=col,
            )
        )
        created += 1
    db.flush()
    return created


def seed(*, issue_tokens: bool = False) -> dict[str, str]:
    init_db(engine)
    tokens: dict[str, str] = {}
    with SessionLocal() as db:
        location = db.execute(
            select(Location).where(Location.ce_locationnum == DEFAULT_LOCATION_NUMBER)
        ).scalar_one_or_none()
        if not location:
            location = Location(ce_locationnum=DEFAULT_LOCATION_NUMBER, name=DEFAULT_LOCATION_NAME, location_type=1)
            db.add(location)
            db.flush()

        seed_spot_layout(db, location)

        for username, full_name, role in DEFAULT_USERS:
            user = db.execute(select(User).where(User.username == username)).scalar_one_or_none()
            if not user:
                user = User(username=username, full_name=full_name, role=role, active=True)
                db.add(user)
                db.flush()
            if issue_tokens:
                tokens[username] = create_web_session(db, user.id)

        db.commit()
    return tokens


def main() -> None:
    parser = argparse.ArgumentParser(description='Create the default warehouse, its spot layout and users.')
    parser.add_argument(
        '--issue-tokens',
        action='store_true',
        help='Also create a bearer session for each default user (local development only).',
    )
    args = parser.parse_args()

    tokens = seed(issue_tokens=args.issue_tokens)
    print('Seed data inserted/verified.')
    for username, token in tokens.items():
        print(f'{username}: {token}')


if __name__ == '__main__':
    main()

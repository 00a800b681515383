from sqlalchemy import delete, func, select

from gatekeeper.database import session_scope
from gatekeeper.models.blacklist import BlacklistEntry
from gatekeeper.models.otp import OtpEntry
from gatekeeper.models.refresh_token import RefreshTokenEntry
from gatekeeper.models.user import UserEntry


class Databases:
    otp = OtpEntry
    blacklist = BlacklistEntry
    refresh_token = RefreshTokenEntry
    user = UserEntry


def _model(db: str):
    model = getattr(Databases, db, None)
    if model is None:
        raise ValueError(f"Unknown table '{db}'")
    return model


def count_records(db: str, *conditions) -> int:
    model = _model(db)
    with session_scope() as session:
        return session.execute(
            select(func.count()).select_from(model).where(*conditions)
        ).scalar_one()


def delete_in_batches(db: str, *conditions, batch_size: int) -> int:
    """Delete matching rows page by page and return how many were removed.

    Rows are selected by id and deleted by id, so a concurrent run only
    ever counts rows it actually removed.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be positive")
    model = _model(db)
    deleted = 0
    while True:
        with session_scope() as session:
            ids = (
                session.execute(
                    select(model.id).where(*conditions).order_by(model.id).limit(batch_size)
                )
                .scalars()
                .all()
            )
            if not ids:
                break
            result = session.execute(
                delete(model)
                .where(model.id.in_(ids))
                .execution_options(synchronize_session=False)
            )
            deleted += result.rowcount or 0
        if len(ids) < batch_size:
            break
    return deleted

from database import db


class Repository:
    """Key/value style access to one table through the request's db session.

    Writes commit immediately. Storage errors (``SQLAlchemyError``) are not
    caught here; they are the one kind of failure the engine lets propagate.
    """

    def __init__(self, model):
        self.model = model

    def get(self, key, fresh: bool = False):
        return db.session.get(self.model, key, populate_existing=fresh)

    def find(self, fresh: bool = False, **key):
        stmt = db.select(self.model).filter_by(**key)
        if fresh:
            stmt = stmt.execution_options(populate_existing=True)
        return db.session.execute(stmt).scalar_one_or_none()

    def list(self, *order_by, limit: int | None = None, **filters):
        stmt = db.select(self.model).filter_by(**filters)
        if order_by:
            stmt = stmt.order_by(*order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(db.session.scalars(stmt))

    def count(self, **filters) -> int:
        stmt = db.select(db.func.count()).select_from(self.model).filter_by(**filters)
        return db.session.execute(stmt).scalar_one()

    def upsert(self, obj):
        db.session.add(obj)
        db.session.commit()
        return obj

    def delete(self, obj) -> None:
        db.session.delete(obj)
        db.session.commit()

    def delete_where(self, **filters) -> int:
        stmt = db.delete(self.model).filter_by(**filters)
        n = db.session.execute(stmt).rowcount
        db.session.commit()
        return n

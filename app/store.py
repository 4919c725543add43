"""
Ledger store: the persistence seam every service goes through.

Wraps the Flask-SQLAlchemy session so that the services never touch
commit/rollback directly. ``atomic()`` blocks nest; only the outermost block
commits, so a payment that settles commission and moves loyalty points either
lands completely or not at all.
"""

from contextlib import contextmanager

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.extensions import db
from app.errors import ConflictError, NotFoundError, StoreError

_DEPTH_KEY = "ledger_atomic_depth"


class LedgerStore:
    def __init__(self, session=None):
        self.session = session or db.session

    # ------------------------------------------------------------------
    # transactions
    # ------------------------------------------------------------------
    @contextmanager
    def atomic(self):
        info = self.session.info
        depth = info.get(_DEPTH_KEY, 0)
        info[_DEPTH_KEY] = depth + 1
        try:
            yield self
            if depth == 0:
                self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StoreError(f"Store operation failed: {e}") from e
        except Exception:
            self.session.rollback()
            raise
        finally:
            info[_DEPTH_KEY] = depth

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    def get(self, model, pk, for_update=False):
        if for_update:
            stmt = select(model).where(model.id == pk).with_for_update()
            return self.session.scalars(stmt).first()
        return self.session.get(model, pk)

    def require(self, model, pk, label=None, for_update=False):
        obj = self.get(model, pk, for_update=for_update)
        if obj is None:
            raise NotFoundError(f"{label or model.__name__} {pk} not found")
        return obj

    def query(self, model, *predicates, order_by=None, limit=None, for_update=False):
        stmt = select(model).where(*predicates)
        if order_by is not None:
            if isinstance(order_by, (list, tuple)):
                stmt = stmt.order_by(*order_by)
            else:
                stmt = stmt.order_by(order_by)
        if limit:
            stmt = stmt.limit(limit)
        if for_update:
            stmt = stmt.with_for_update()
        return list(self.session.scalars(stmt).all())

    def first(self, model, *predicates, order_by=None, for_update=False):
        rows = self.query(model, *predicates, order_by=order_by, limit=1, for_update=for_update)
        return rows[0] if rows else None

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------
    def create(self, obj, conflict_message=None, conflict_reason=None):
        self.session.add(obj)
        try:
            self.session.flush()
        except IntegrityError as e:
            raise ConflictError(
                conflict_message or f"Duplicate {type(obj).__name__}: {e.orig}",
                reason=conflict_reason,
            ) from e
        return obj

    def update(self, obj, **patch):
        for field, value in patch.items():
            setattr(obj, field, value)
        self.session.flush()
        return obj

    def update_where(self, model, *predicates, **values):
        """Set-based update for sweeps. Returns the number of rows changed."""
        stmt = (
            update(model)
            .where(*predicates)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        return self.session.execute(stmt).rowcount

    def increment(self, model, pk, field, delta, guard=None, floor=None):
        """
        Atomic counter update evaluated by the database.

        ``guard`` is an extra WHERE clause (e.g. ``FlashDeal.booked_slots <
        FlashDeal.total_slots``); ``floor`` clamps the result from below.
        Returns the number of rows matched, 0 meaning the guard rejected it.
        """
        column = getattr(model, field)
        new_value = column + delta
        if floor is not None:
            new_value = case((column + delta < floor, floor), else_=column + delta)

        stmt = update(model).where(model.id == pk)
        if guard is not None:
            stmt = stmt.where(guard)
        stmt = stmt.values({field: new_value}).execution_options(synchronize_session=False)

        result = self.session.execute(stmt)
        if result.rowcount:
            obj = self.session.get(model, pk)
            if obj is not None:
                self.session.refresh(obj, attribute_names=[field])
        return result.rowcount

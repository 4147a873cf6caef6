"""
Primary store adapter.

Exposes the authoritative collections (customers, agents, policies,
claims, vehicles) through a small collection/key contract on top of a
SQLModel session. Dates, flags and identity keys are normalized here,
at the boundary, so callers never see raw legacy representations.
"""

from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple, Type, Union
from datetime import datetime
import logging

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, SQLModel, select

from policygraph.errors import ConflictError, InternalError
from policygraph.models import Agent, Claim, Customer, Policy, Sequence, SyncDeferral, Vehicle
from policygraph.services.normalize import canonical_key, is_truthy, parse_date

logger = logging.getLogger("policygraph.store")

# collection name -> (model, identity key field, singular name used in error codes)
COLLECTIONS: Dict[str, Tuple[Type[SQLModel], str, str]] = {
    "customers": (Customer, "customer_id", "customer"),
    "agents": (Agent, "agent_id", "agent"),
    "policies": (Policy, "policy_number", "policy"),
    "claims": (Claim, "claim_id", "claim"),
    "vehicles": (Vehicle, "plate", "vehicle"),
}

DATE_FIELDS = frozenset({"start_date", "end_date", "claim_date"})
FLAG_FIELDS = {"active": True, "insured": False}
KEY_FIELDS = frozenset({"customer_id", "agent_id", "policy_number", "plate"})


def _collection(name: str) -> Tuple[Type[SQLModel], str, str]:
    try:
        return COLLECTIONS[name]
    except KeyError:
        raise ValueError(f"Unknown collection: {name}")


def normalize_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize dates, flags and key references in a field mapping."""
    normalized = {}
    for name, value in fields.items():
        if name in DATE_FIELDS:
            value = parse_date(value)
        elif name in FLAG_FIELDS and value is not None:
            value = is_truthy(value, default=FLAG_FIELDS[name])
        elif name in KEY_FIELDS:
            value = canonical_key(value)
        normalized[name] = value
    return normalized


class PrimaryStore:
    """Collection oriented adapter over a SQLModel session."""

    def __init__(self, session: Session):
        self.session = session

    def _coerce_key(self, key_field: str, key: Any) -> Any:
        if key_field == "claim_id":
            return int(key)
        return canonical_key(key)

    def find_by_key(self, collection: str, key: Any) -> Optional[SQLModel]:
        """Return the record whose identity key equals ``key``, or None."""
        model, key_field, _ = _collection(collection)
        try:
            key = self._coerce_key(key_field, key)
        except (TypeError, ValueError):
            return None
        if key is None:
            return None
        try:
            statement = select(model).where(getattr(model, key_field) == key)
            return self.session.exec(statement).first()
        except SQLAlchemyError as e:
            raise InternalError(detail=f"Lookup in {collection} failed: {e}")

    def find_by_id(self, collection: str, record_id: int) -> Optional[SQLModel]:
        """Return the record by its store-generated id."""
        model, _, _ = _collection(collection)
        try:
            return self.session.get(model, record_id)
        except SQLAlchemyError as e:
            raise InternalError(detail=f"Lookup in {collection} failed: {e}")

    def insert(self, collection: str, record: Union[SQLModel, Dict[str, Any]]) -> int:
        """
        Insert a record and commit.

        Uniqueness violations raised by the database are reported as
        ConflictError, which makes the unique index the actual guard
        against concurrent creates of the same key.

        Returns:
            The store-generated id of the new record
        """
        model, key_field, singular = _collection(collection)
        if isinstance(record, dict):
            record = model(**normalize_fields(record))
        else:
            for name, value in normalize_fields(record.model_dump()).items():
                setattr(record, name, value)

        try:
            self.session.add(record)
            self.session.commit()
            self.session.refresh(record)
        except IntegrityError:
            self.session.rollback()
            raise ConflictError(
                f"{singular}_exists",
                f"{singular} {getattr(record, key_field)} already exists"
            )
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Primary insert failed | collection={collection} | error={e}")
            raise InternalError(detail=f"Insert into {collection} failed")

        return record.id

    def update_fields(self, collection: str, key: Any, fields: Dict[str, Any]) -> int:
        """
        Set ``fields`` on the record identified by ``key`` and commit.

        Returns:
            Number of matched records (0 or 1)
        """
        record = self.find_by_key(collection, key)
        if record is None:
            return 0

        for name, value in normalize_fields(fields).items():
            setattr(record, name, value)

        try:
            self.session.add(record)
            self.session.commit()
            self.session.refresh(record)
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Primary update failed | collection={collection} | key={key} | error={e}")
            raise InternalError(detail=f"Update in {collection} failed")
        return 1

    def stream_all(self, collection: str, batch_size: int = 500) -> Iterator[SQLModel]:
        """
        Lazily yield every record of a collection in id order.

        Reads ``batch_size`` rows per query using keyset pagination. Each
        call starts from the beginning.
        """
        model, _, _ = _collection(collection)
        last_id = 0
        while True:
            statement = (
                select(model)
                .where(model.id > last_id)
                .order_by(model.id)
                .limit(batch_size)
            )
            try:
                rows = self.session.exec(statement).all()
            except SQLAlchemyError as e:
                raise InternalError(detail=f"Read of {collection} failed: {e}")
            for row in rows:
                yield row
            if len(rows) < batch_size:
                return
            last_id = rows[-1].id

    def count_all(self, collection: str) -> int:
        model, _, _ = _collection(collection)
        try:
            return self.session.exec(select(func.count()).select_from(model)).one()
        except SQLAlchemyError as e:
            raise InternalError(detail=f"Count of {collection} failed: {e}")

    def max_key(self, collection: str) -> Optional[Any]:
        """Largest identity key in a collection, or None when empty."""
        model, key_field, _ = _collection(collection)
        try:
            return self.session.exec(select(func.max(getattr(model, key_field)))).one()
        except SQLAlchemyError as e:
            raise InternalError(detail=f"Lookup in {collection} failed: {e}")

    def next_sequence(self, name: str, initial: Callable[[], int]) -> int:
        """
        Atomically increment and return the named counter.

        The counter row is created on first use with the value returned by
        ``initial()``, which is then returned as the first value.
        """
        try:
            result = self.session.execute(
                update(Sequence)
                .where(Sequence.name == name)
                .values(value=Sequence.value + 1)
            )
            if result.rowcount == 0:
                self.session.add(Sequence(name=name, value=initial()))
                try:
                    self.session.flush()
                except IntegrityError:
                    # Another worker created the row first
                    self.session.rollback()
                    return self.next_sequence(name, initial)
            value = self.session.exec(
                select(Sequence.value).where(Sequence.name == name)
            ).one()
            self.session.commit()
            return value
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Sequence increment failed | name={name} | error={e}")
            raise InternalError(detail=f"Sequence {name} unavailable")

    # ------------------------------------------------------------------
    # Sync bookkeeping
    # ------------------------------------------------------------------

    def record_deferral(self, collection: str, entity_key: Any, mutation: str, reason: str) -> None:
        """Append a deferred derived write to the operator queue."""
        try:
            self.session.add(SyncDeferral(
                collection=collection,
                entity_key=str(entity_key),
                mutation=mutation,
                reason=reason
            ))
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise InternalError(detail=f"Recording deferral for {collection} {entity_key} failed: {e}")

    def list_deferrals(self, include_resolved: bool = False, limit: int = 100) -> List[SyncDeferral]:
        statement = select(SyncDeferral).order_by(SyncDeferral.id).limit(limit)
        if not include_resolved:
            statement = statement.where(SyncDeferral.resolved_at == None)  # noqa: E711
        try:
            return list(self.session.exec(statement).all())
        except SQLAlchemyError as e:
            raise InternalError(detail=f"Listing deferrals failed: {e}")

    def resolve_deferrals(
        self,
        created_before: datetime,
        exclude: Iterable[Tuple[str, str]] = ()
    ) -> int:
        """
        Mark open deferrals created before ``created_before`` as resolved.

        Deferrals whose (collection, entity_key) is in ``exclude`` stay open.
        """
        exclude = set(exclude)
        statement = (
            select(SyncDeferral)
            .where(SyncDeferral.resolved_at == None)  # noqa: E711
            .where(SyncDeferral.created_at < created_before)
        )
        resolved_at = datetime.utcnow()
        resolved = 0
        try:
            for deferral in self.session.exec(statement).all():
                if (deferral.collection, deferral.entity_key) in exclude:
                    continue
                deferral.resolved_at = resolved_at
                self.session.add(deferral)
                resolved += 1
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise InternalError(detail=f"Resolving deferrals failed: {e}")
        return resolved

    def clear_sync_markers(self, collection: str, record_ids: List[int]) -> int:
        """Clear the sync failure marker on the given records."""
        model, _, _ = _collection(collection)
        if not record_ids or not hasattr(model, "sync_error"):
            return 0
        try:
            result = self.session.execute(
                update(model)
                .where(model.id.in_(record_ids))
                .where(model.sync_error == True)  # noqa: E712
                .values(sync_error=False, sync_error_detail=None)
            )
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise InternalError(detail=f"Clearing sync markers in {collection} failed: {e}")
        return result.rowcount

"""
Local row <-> server payload translation.

Foreign keys are local ids in the database and server ids on the wire. A
reference that cannot be translated means a dependency has not been synced
yet, which is an invariant failure (the orchestrator orders entity types so
that this does not happen in a normal pass).
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple, Type

from sqlmodel import Session, SQLModel, select

from splitsync.errors import EntityNotFoundError
from splitsync.timeutils import parse_timestamp, utcnow


def server_id_for(session: Session, model: Type[SQLModel], local_id: int) -> int:
    row = session.get(model, local_id)
    if row is None or row.server_id is None:
        raise EntityNotFoundError(
            f"{model.__name__} {local_id} has no server id yet"
        )
    return row.server_id


def local_id_for(session: Session, model: Type[SQLModel], server_id: int) -> int:
    row = session.exec(select(model).where(model.server_id == server_id)).first()
    if row is None:
        raise EntityNotFoundError(
            f"{model.__name__} with server id {server_id} is not stored locally"
        )
    return row.id


@dataclass(frozen=True)
class EntityCodec:
    model: Type[SQLModel]
    fields: Tuple[str, ...]
    references: Dict[str, Type[SQLModel]] = field(default_factory=dict)
    decimals: Tuple[str, ...] = ()
    datetimes: Tuple[str, ...] = ()

    def to_payload(self, session: Session, entity) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": entity.server_id,
            "client_ref": entity.id,
            "updated_at": entity.updated_at.isoformat(),
        }
        for name in self.fields:
            payload[name] = self._encode(name, getattr(entity, name))
        for name, ref_model in self.references.items():
            local = getattr(entity, name)
            payload[name] = None if local is None else server_id_for(session, ref_model, local)
        return payload

    def from_payload(self, session: Session, data: Dict[str, Any]) -> Dict[str, Any]:
        """Column values for a local row (without id, server_id or sync_status)."""
        values: Dict[str, Any] = {}
        for name in self.fields:
            if name in data:
                values[name] = self._decode(name, data[name])
        for name, ref_model in self.references.items():
            if name in data:
                server = data[name]
                values[name] = None if server is None else local_id_for(session, ref_model, server)
        values["updated_at"] = (
            parse_timestamp(data["updated_at"]) if data.get("updated_at") else utcnow()
        )
        return values

    def _encode(self, name: str, value):
        if value is None:
            return None
        if name in self.decimals:
            return str(value)
        if name in self.datetimes:
            return value.isoformat()
        return value

    def _decode(self, name: str, value) -> Optional[Any]:
        if value is None:
            return None
        if name in self.decimals:
            # str() first so a float on the wire never leaks binary rounding
            return Decimal(str(value))
        if name in self.datetimes:
            return parse_timestamp(value)
        return value

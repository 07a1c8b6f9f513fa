"""
Persistent store for catalog entities.

Thin functions over an AsyncSession, one per operation. Each mutating
call commits before returning so the caller can invalidate the cache
knowing the write is durable.
"""
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError, InterfaceError
from sqlalchemy.ext.asyncio import AsyncSession

from catalog.entities import EntityType
from catalog.exceptions import DuplicateEntityError, EntityNotFoundError, InvalidPayloadError, StoreUnavailableError


async def create_entity(db: AsyncSession, entity_type: EntityType, data: Dict[str, Any]):
    """Insert an entity with its pre-assigned id"""
    if not data.get("id"):
        raise InvalidPayloadError(f"{entity_type.name} create requires a pre-assigned id")

    entity = entity_type.model(**data)
    db.add(entity)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        if await db.get(entity_type.model, data["id"]) is not None:
            raise DuplicateEntityError(f"{entity_type.name} {data['id']} already exists") from exc
        raise InvalidPayloadError(f"{entity_type.name} violates a constraint: {exc.orig}") from exc
    except (OperationalError, InterfaceError) as exc:
        await db.rollback()
        raise StoreUnavailableError(str(exc)) from exc
    await db.refresh(entity)
    return entity


async def get_entity(db: AsyncSession, entity_type: EntityType, entity_id: str):
    """Return the entity or None"""
    result = await db.execute(select(entity_type.model).where(entity_type.model.id == entity_id))
    return result.scalar_one_or_none()


async def update_entity(db: AsyncSession, entity_type: EntityType, entity_id: str, patch: Dict[str, Any]):
    """Apply a set-field patch. Raises EntityNotFoundError when the id is unknown."""
    entity = await get_entity(db, entity_type, entity_id)
    if entity is None:
        raise EntityNotFoundError(entity_type.name, entity_id)

    for field, value in patch.items():
        setattr(entity, field, value)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise InvalidPayloadError(f"{entity_type.name} violates a constraint: {exc.orig}") from exc
    except (OperationalError, InterfaceError) as exc:
        await db.rollback()
        raise StoreUnavailableError(str(exc)) from exc
    await db.refresh(entity)
    return entity


async def delete_entity(db: AsyncSession, entity_type: EntityType, entity_id: str) -> bool:
    """Delete by id. Returns False when nothing was deleted."""
    try:
        entity = await get_entity(db, entity_type, entity_id)
        if entity is None:
            return False
        await db.delete(entity)
        await db.commit()
    except (OperationalError, InterfaceError) as exc:
        await db.rollback()
        raise StoreUnavailableError(str(exc)) from exc
    return True


async def list_entities(db: AsyncSession, entity_type: EntityType, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """Full collection, newest first, as JSON-safe records"""
    query = select(entity_type.model).order_by(entity_type.model.created_at.desc())
    if limit:
        query = query.limit(limit)
    result = await db.execute(query)
    return [entity.to_dict() for entity in result.scalars().all()]

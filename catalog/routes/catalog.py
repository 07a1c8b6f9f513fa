"""
Catalog entity routes.

Writes are queued and answered immediately with the job id; the client
polls /api/jobs or re-reads the collection to see the outcome. Deletes
are applied synchronously.
"""
import uuid

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from catalog.context import CatalogContext
from catalog.entities import EntityType
from catalog.exceptions import StoreUnavailableError
from catalog.routes.deps import get_context, limiter, write_rate_limit
from catalog.schemas import JobAccepted
from catalog.services import catalog_store


def build_router(entity_type: EntityType) -> APIRouter:
    router = APIRouter()
    label = entity_type.name.capitalize()

    @router.post("", status_code=201, response_model=JobAccepted, name=f"create_{entity_type.name}")
    @limiter.limit(write_rate_limit)
    async def create(
        request: Request,
        body: entity_type.create_schema,
        context: CatalogContext = Depends(get_context),
    ):
        data = body.model_dump(exclude_unset=True, mode="json")
        data["id"] = data.get("id") or str(uuid.uuid4())
        try:
            job_id = await context.queue_for(entity_type).enqueue("create", data)
        except StoreUnavailableError as exc:
            raise HTTPException(status_code=503, detail=str(exc))
        return JobAccepted(message=f"{label} creation queued", job_id=job_id, id=data["id"])

    @router.put("/{entity_id}", status_code=202, response_model=JobAccepted, name=f"update_{entity_type.name}")
    @limiter.limit(write_rate_limit)
    async def update(
        request: Request,
        entity_id: str,
        body: entity_type.update_schema,
        context: CatalogContext = Depends(get_context),
    ):
        data = {"id": entity_id, "updatedData": body.model_dump(exclude_unset=True, mode="json")}
        try:
            job_id = await context.queue_for(entity_type).enqueue("update", data)
        except StoreUnavailableError as exc:
            raise HTTPException(status_code=503, detail=str(exc))
        return JobAccepted(message=f"{label} update queued", job_id=job_id, id=entity_id)

    @router.get("", name=f"list_{entity_type.collection}")
    async def list_all(context: CatalogContext = Depends(get_context)):
        return await context.reader.read_collection(entity_type)

    @router.get("/{entity_id}", name=f"get_{entity_type.name}")
    async def get_one(entity_id: str, context: CatalogContext = Depends(get_context)):
        record = await context.reader.read_one(entity_type, entity_id)
        if record is None:
            raise HTTPException(status_code=404, detail=f"{label} with the specified ID does not exist")
        return record

    @router.delete("/{entity_id}", status_code=204, name=f"delete_{entity_type.name}")
    @limiter.limit(write_rate_limit)
    async def delete(request: Request, entity_id: str, context: CatalogContext = Depends(get_context)):
        try:
            async with context.session_factory() as db:
                deleted = await catalog_store.delete_entity(db, entity_type, entity_id)
        except StoreUnavailableError as exc:
            raise HTTPException(status_code=503, detail=str(exc))
        if not deleted:
            raise HTTPException(status_code=404, detail=f"{label} not found")
        await context.cache.delete(entity_type.cache_key)
        return Response(status_code=204)

    return router

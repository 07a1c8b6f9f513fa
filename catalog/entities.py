"""
Registry of the entity types the catalog queues writes for.
"""
from dataclasses import dataclass
from typing import Dict, Type

from pydantic import BaseModel

from catalog.models import Category, Product
from catalog.schemas import CategoryCreate, CategoryUpdate, ProductCreate, ProductUpdate


@dataclass(frozen=True)
class EntityType:
    name: str
    collection: str
    model: type
    create_schema: Type[BaseModel]
    update_schema: Type[BaseModel]

    @property
    def cache_key(self) -> str:
        """Key of the full-collection snapshot, e.g. products:list"""
        return f"{self.collection}:list"


PRODUCT = EntityType("product", "products", Product, ProductCreate, ProductUpdate)
CATEGORY = EntityType("category", "categories", Category, CategoryCreate, CategoryUpdate)

ENTITY_TYPES: Dict[str, EntityType] = {
    PRODUCT.name: PRODUCT,
    CATEGORY.name: CATEGORY,
}


def get_entity_type(name: str) -> EntityType:
    """Look up by singular name or collection name. Raises KeyError when unknown."""
    if name in ENTITY_TYPES:
        return ENTITY_TYPES[name]
    for entity_type in ENTITY_TYPES.values():
        if entity_type.collection == name:
            return entity_type
    raise KeyError(name)

# Database models package
from catalog.models.category import Category
from catalog.models.product import Product
from catalog.models.queue_job import QueueJob

__all__ = [
    "Category",
    "Product",
    "QueueJob",
]

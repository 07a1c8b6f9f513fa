from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey

from catalog.database import Base
from catalog.models.base import EntityMixin


class Product(EntityMixin, Base):
    __tablename__ = "products"

    name = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=True)
    in_stock = Column(Boolean, nullable=True)
    product_image = Column(String(1024), nullable=True)  # URL, uploads are handled elsewhere
    price = Column(Integer, nullable=True)  # minor units, e.g. cents
    expiry_date = Column(DateTime(timezone=True), nullable=True)
    category_id = Column(String(36), ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True)

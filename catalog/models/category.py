from sqlalchemy import Column, String

from catalog.database import Base
from catalog.models.base import EntityMixin


class Category(EntityMixin, Base):
    __tablename__ = "categories"

    name = Column(String(255), nullable=False)

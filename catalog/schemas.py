"""
Pydantic schemas for catalog writes.

The same models validate request bodies at the HTTP boundary and job data
inside the worker, so a job that was enqueued by another producer is held
to the same rules.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CategoryCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: Optional[str] = Field(default=None, max_length=36)
    name: str = Field(min_length=1, max_length=255)


class CategoryUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)


class ProductCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: Optional[str] = Field(default=None, max_length=36)
    name: str = Field(min_length=1, max_length=255)
    quantity: Optional[int] = Field(default=None, ge=0)
    in_stock: Optional[bool] = None
    product_image: Optional[str] = None
    price: Optional[int] = Field(default=None, ge=0)
    expiry_date: Optional[datetime] = None
    category_id: Optional[str] = None


class ProductUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    quantity: Optional[int] = Field(default=None, ge=0)
    in_stock: Optional[bool] = None
    product_image: Optional[str] = None
    price: Optional[int] = Field(default=None, ge=0)
    expiry_date: Optional[datetime] = None
    category_id: Optional[str] = None


class UpdateJobData(BaseModel):
    """Data of an update job: {id, updatedData}"""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    updated_data: dict = Field(default_factory=dict, alias="updatedData")


class JobAccepted(BaseModel):
    message: str
    job_id: str = Field(serialization_alias="jobId")
    id: Optional[str] = None

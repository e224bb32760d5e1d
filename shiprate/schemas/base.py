"""
Base schema classes.

All response schemas that read from ORM models inherit BaseResponseSchema.
"""
from datetime import datetime
from uuid import UUID
from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """Response schema with ORM attribute access and UUID/datetime serialization."""
    model_config = ConfigDict(
        from_attributes=True,
        json_encoders={
            UUID: str,
            datetime: lambda v: v.isoformat() if v else None,
        },
        populate_by_name=True,
    )

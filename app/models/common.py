# app/models/common.py

from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class RequestModel(BaseModel):
    """Request bodies accept snake_case or camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SuccessResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    code: str


class SweepErrorOut(BaseModel):
    id: int
    code: str
    error: str


class SweepResponse(BaseModel):
    success: bool = True
    processed: int
    succeeded: int
    failed: int
    skipped: int = 0
    errors: List[SweepErrorOut] = []

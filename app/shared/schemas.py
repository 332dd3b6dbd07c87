from pydantic import BaseModel
from typing import Optional, Any


class BaseResponse(BaseModel):
    """Base response model."""

    success: bool = True
    message: Optional[str] = None
    data: Optional[Any] = None

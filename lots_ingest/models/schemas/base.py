"""
Base schemas used across the application.
"""
from datetime import datetime
from typing import Optional, Any, Dict
from pydantic import BaseModel, Field, ConfigDict

from lots_ingest.utils.time import utc_now

class ResponseBase(BaseModel):
    """Base response format for API endpoints with an optional arbitrary data payload."""
    success: bool = True
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)
    data: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

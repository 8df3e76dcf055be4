# publish_cache/schemas.py
from pydantic import BaseModel, ConfigDict
from typing import List, Optional
from datetime import datetime

class ListingsRequest(BaseModel):
    country: Optional[str] = None
    category: Optional[str] = None
    city: Optional[str] = None
    neighborhood: Optional[str] = None
    batch: int = 1

class PublishListingOut(BaseModel):
    listing_id: str
    description: Optional[str] = None
    title: Optional[str] = None
    subcategory: Optional[str] = None
    category: Optional[str] = None
    price: Optional[float] = None
    thumbnail: Optional[str] = None
    coordinates: Optional[str] = None
    neighborhood: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    country_id: int
    category_id: int
    subcategory_id: Optional[int] = None
    city_id: Optional[int] = None
    neighborhood_id: Optional[int] = None

class ListingsPage(BaseModel):
    listings: List[PublishListingOut]
    batch: int
    count: int
    total: int

class RebuildRequest(BaseModel):
    country: Optional[str] = None
    category: Optional[str] = None

class RebuildCacheRequest(RebuildRequest):
    listing_id: Optional[str] = None

class RebuildStarted(BaseModel):
    success: bool = True
    message: str
    job_id: str
    country: Optional[str] = None
    category: Optional[str] = None
    timestamp: datetime

class RebuildJobOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    job_id: str
    kind: str
    country_id: Optional[int] = None
    category_id: Optional[int] = None
    status: str
    rows_written: Optional[int] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

class SegmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    country_id: int
    category_id: int
    table_name: str
    state: str
    rebuild_in_progress: bool
    last_rebuilt_at: Optional[datetime] = None
    active_generation: int
    last_error: Optional[str] = None

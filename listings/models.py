"""
listings/models.py -- Domain dataclasses for marketplace listings.

Pure data containers. Query semantics (status filtering, soft delete, sort
orders) live in listings/store.py.
"""

from dataclasses import dataclass, field
from typing import Optional

PROPERTY_TYPES = ("rent", "sale", "arriendo", "venta")

# A listing typed in either language matches a filter in either language.
TYPE_SYNONYMS: dict[str, tuple[str, ...]] = {
    "rent": ("rent", "arriendo"),
    "arriendo": ("rent", "arriendo"),
    "sale": ("sale", "venta"),
    "venta": ("sale", "venta"),
}

STATUS_DRAFT = "DRAFT"
STATUS_PUBLISHED = "PUBLISHED"
STATUS_ARCHIVED = "ARCHIVED"

SORT_ORDERS = ("recent", "price_asc", "price_desc", "popular", "nearby")


@dataclass
class Property:
    """A listing owned by user_id.

    Only PUBLISHED, non-deleted listings appear in search. Any non-deleted
    listing can be fetched by id. id is None before the record is written.
    """

    user_id: str
    title: str
    id: Optional[str] = None
    description: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None  # region name, matched by the regionId filter
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    facilities: list[str] = field(default_factory=list)
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    price: Optional[float] = None
    currency: str = "CLP"
    type: Optional[str] = None
    status: str = STATUS_DRAFT
    rating_avg: Optional[float] = None
    created_at: str = ""
    updated_at: str = ""
    deleted_at: Optional[str] = None


@dataclass
class PropertyImage:
    property_id: str
    url: str
    sort_order: int
    id: Optional[str] = None
    created_at: str = ""


@dataclass
class Review:
    property_id: str
    user_id: str
    rating: int  # 1..5
    id: Optional[str] = None
    comment: Optional[str] = None
    media_url: Optional[str] = None
    created_at: str = ""


@dataclass
class Favorite:
    user_id: str
    property_id: str
    id: Optional[str] = None
    created_at: str = ""


@dataclass
class PropertyQuery:
    """Search filters for the public listing endpoint. None means "no filter"."""

    q: Optional[str] = None
    type: Optional[str] = None
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    region_id: Optional[str] = None
    comuna_id: Optional[str] = None
    facilities: list[str] = field(default_factory=list)
    lat: Optional[float] = None
    lng: Optional[float] = None
    radius_km: Optional[float] = None
    sort: str = "recent"
    page: int = 1
    limit: int = 20


@dataclass
class Region:
    name: str
    id: Optional[str] = None


@dataclass
class Comuna:
    region_id: str
    name: str
    id: Optional[str] = None

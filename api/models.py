"""
API request and response models for the My Assets REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in each package's models.py,
which own the internal domain representation. Route handlers map between
the two, usually through a from_domain() factory colocated with the model.

Wire format: JSON keys are camelCase. Every model derives from ApiModel,
whose alias generator maps snake_case fields to camelCase aliases; requests
accept either spelling (populate_by_name), responses are dumped by alias.

Envelope: every response body is
    {"success": bool, "data"?: ..., "error"?: CODE, "message"?: str, "details"?: [...]}
ok() builds the success form; api/main.py's exception handlers build the
error form.
"""

from datetime import date
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from audit.models import AuditEntry
from bookings.models import Booking
from listings.models import Comuna, Property, PropertyImage, Region, Review
from messaging.models import Conversation, Message, Notification
from terms.models import Term


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class ResponseModel(ApiModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True, mode="json")
    if isinstance(value, list):
        return [_dump(v) for v in value]
    if isinstance(value, dict):
        return {k: _dump(v) for k, v in value.items()}
    return value


def ok(data: Any = None, message: Optional[str] = None) -> dict:
    """Success envelope."""
    body: dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = _dump(data)
    if message:
        body["message"] = message
    return body


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class GenderEnum(str, Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"
    OTHER = "OTHER"


class OtpPurposeEnum(str, Enum):
    LOGIN = "LOGIN"
    EMAIL_VERIFY = "EMAIL_VERIFY"
    PASSWORD_RESET = "PASSWORD_RESET"


class PropertyTypeEnum(str, Enum):
    rent = "rent"
    sale = "sale"
    arriendo = "arriendo"
    venta = "venta"


class PropertySortEnum(str, Enum):
    recent = "recent"
    recommended = "recommended"  # alias of recent
    price_asc = "price_asc"
    price_desc = "price_desc"
    popular = "popular"
    nearby = "nearby"


class MessageTypeEnum(str, Enum):
    text = "text"
    image = "image"


class BookingStatusEnum(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Payload carried in HTTPException.detail and rendered into the envelope."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    details: Optional[list[str]] = None


class HealthData(ResponseModel):
    status: str = "ok"
    timestamp: str


class ApiInfo(ResponseModel):
    name: str
    version: str
    prefix: str


# ---------------------------------------------------------------------------
# Auth requests
# ---------------------------------------------------------------------------


class RegisterRequest(ApiModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=100)
    first_name: str = Field(min_length=1, max_length=120)
    last_name: str = Field(min_length=1, max_length=120)
    gender: GenderEnum
    birth_date: date
    address: Optional[str] = Field(default=None, max_length=255)
    region_id: Optional[str] = Field(default=None, max_length=36)
    comuna_id: Optional[str] = Field(default=None, max_length=36)
    accept_terms: bool = False


class TokenRequest(ApiModel):
    token: str = Field(min_length=1, max_length=256)


class LoginRequest(ApiModel):
    email: EmailStr
    # Omit the password to receive a LOGIN code by email instead.
    password: Optional[str] = Field(default=None, max_length=100)


class EmailRequest(ApiModel):
    email: EmailStr


class SendOtpRequest(ApiModel):
    email: EmailStr
    purpose: OtpPurposeEnum = OtpPurposeEnum.LOGIN


class VerifyOtpRequest(ApiModel):
    email: EmailStr
    code: str = Field(pattern=r"^\d{6}$")
    purpose: OtpPurposeEnum = OtpPurposeEnum.LOGIN


class RefreshRequest(ApiModel):
    refresh_token: str = Field(min_length=1, max_length=2048)


class PasswordResetRequest(ApiModel):
    token: str = Field(min_length=1, max_length=256)
    new_password: str = Field(min_length=8, max_length=100)


class ProfileUpdate(ApiModel):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    gender: Optional[GenderEnum] = None
    birth_date: Optional[date] = None
    address: Optional[str] = Field(default=None, max_length=255)
    region_id: Optional[str] = Field(default=None, max_length=36)
    comuna_id: Optional[str] = Field(default=None, max_length=36)


# ---------------------------------------------------------------------------
# Auth responses
# ---------------------------------------------------------------------------


class UserSummary(ResponseModel):
    id: str
    email: str
    role: str
    first_name: str
    last_name: str


class SessionResponse(ResponseModel):
    access_token: str
    refresh_token: str
    expires_in: int
    user: Optional[UserSummary] = None


class RegisterResponse(ResponseModel):
    user_id: str
    email: str
    message: str


class MessageResponse(ResponseModel):
    message: str


class ProfileResponse(ResponseModel):
    id: str
    email: str
    role: str
    first_name: str
    last_name: str
    gender: Optional[str] = None
    birth_date: Optional[str] = None
    address: Optional[str] = None
    region_id: Optional[str] = None
    comuna_id: Optional[str] = None
    email_verified_at: Optional[str] = None
    terms_accepted_at: Optional[str] = None
    created_at: Optional[str] = None


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------


class PropertyCreate(ApiModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=10000)
    address: Optional[str] = Field(default=None, max_length=500)
    city: Optional[str] = Field(default=None, max_length=100)
    region: Optional[str] = Field(default=None, max_length=120)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    facilities: Optional[list[str]] = Field(default=None, max_length=50)
    bedrooms: Optional[int] = Field(default=None, ge=0)
    bathrooms: Optional[int] = Field(default=None, ge=0)
    price: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, min_length=1, max_length=10)
    type: Optional[PropertyTypeEnum] = None

    @field_validator("facilities")
    @classmethod
    def normalize_facilities(cls, values: Optional[list[str]]) -> Optional[list[str]]:
        """Strip, drop empties and deduplicate while preserving order."""
        if values is None:
            return None
        seen: set[str] = set()
        result: list[str] = []
        for v in values:
            v = v.strip()
            if v and v not in seen:
                seen.add(v)
                result.append(v)
        return result


class PropertyUpdate(PropertyCreate):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)


class ImageUrlRequest(ApiModel):
    url: str = Field(min_length=1, max_length=500)
    sort_order: Optional[int] = Field(default=None, ge=0)


class ImageResponse(ResponseModel):
    id: str
    url: str
    sort_order: int

    @classmethod
    def from_domain(cls, image: PropertyImage) -> "ImageResponse":
        return cls(id=image.id, url=image.url, sort_order=image.sort_order)


class AgentSummary(ResponseModel):
    id: str
    name: str
    email: str


class PropertyListItem(ResponseModel):
    id: str
    title: str
    address: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    price: Optional[float] = None
    currency: str
    type: Optional[str] = None
    status: str
    rating_avg: Optional[float] = None
    image_url: Optional[str] = None
    reviews_count: int = 0

    @classmethod
    def from_domain(cls, p: Property, image_url: Optional[str], reviews_count: int) -> "PropertyListItem":
        return cls(
            id=p.id,
            title=p.title,
            address=p.address,
            city=p.city,
            region=p.region,
            latitude=p.latitude,
            longitude=p.longitude,
            bedrooms=p.bedrooms,
            bathrooms=p.bathrooms,
            price=p.price,
            currency=p.currency,
            type=p.type,
            status=p.status,
            rating_avg=p.rating_avg,
            image_url=image_url,
            reviews_count=reviews_count,
        )


class PropertyPage(ResponseModel):
    items: list[PropertyListItem]
    total: int
    page: int
    limit: int


class PropertyDetail(ResponseModel):
    id: str
    user_id: str
    title: str
    description: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    facilities: list[str] = Field(default_factory=list)
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    price: Optional[float] = None
    currency: str
    type: Optional[str] = None
    status: str
    rating_avg: Optional[float] = None
    images: list[ImageResponse] = Field(default_factory=list)
    agent: Optional[AgentSummary] = None
    reviews_count: int = 0
    created_at: str
    updated_at: str

    @classmethod
    def from_domain(
        cls,
        p: Property,
        images: Optional[list[PropertyImage]] = None,
        agent: Optional[AgentSummary] = None,
        reviews_count: int = 0,
    ) -> "PropertyDetail":
        return cls(
            id=p.id,
            user_id=p.user_id,
            title=p.title,
            description=p.description,
            address=p.address,
            city=p.city,
            region=p.region,
            latitude=p.latitude,
            longitude=p.longitude,
            facilities=p.facilities,
            bedrooms=p.bedrooms,
            bathrooms=p.bathrooms,
            price=p.price,
            currency=p.currency,
            type=p.type,
            status=p.status,
            rating_avg=p.rating_avg,
            images=[ImageResponse.from_domain(i) for i in images or []],
            agent=agent,
            reviews_count=reviews_count,
            created_at=p.created_at,
            updated_at=p.updated_at,
        )


# ---------------------------------------------------------------------------
# Reviews and favorites
# ---------------------------------------------------------------------------


class ReviewCreate(ApiModel):
    rating: int = Field(ge=1, le=5, strict=True)
    comment: Optional[str] = Field(default=None, max_length=2000)
    media_url: Optional[str] = Field(default=None, max_length=500)


class ReviewResponse(ResponseModel):
    id: str
    property_id: str
    user_id: str
    user_name: str
    rating: int
    comment: Optional[str] = None
    media_url: Optional[str] = None
    created_at: str

    @classmethod
    def from_domain(cls, r: Review, user_name: str) -> "ReviewResponse":
        return cls(
            id=r.id,
            property_id=r.property_id,
            user_id=r.user_id,
            user_name=user_name,
            rating=r.rating,
            comment=r.comment,
            media_url=r.media_url,
            created_at=r.created_at,
        )


class FavoriteItem(ResponseModel):
    id: str
    property_id: str
    title: str
    address: Optional[str] = None
    city: Optional[str] = None
    price: Optional[float] = None
    currency: str
    type: Optional[str] = None
    status: str
    image_url: Optional[str] = None
    reviews_count: int = 0
    created_at: str


class FavoriteResponse(ResponseModel):
    id: str
    user_id: str
    property_id: str
    created_at: str


# ---------------------------------------------------------------------------
# Conversations and notifications
# ---------------------------------------------------------------------------


class ConversationCreate(ApiModel):
    property_id: str = Field(min_length=1, max_length=36)


class MessageCreate(ApiModel):
    body: str = Field(min_length=1, max_length=5000)
    type: MessageTypeEnum = MessageTypeEnum.text


class MessageOut(ResponseModel):
    id: str
    conversation_id: str
    sender_user_id: str
    sender_name: Optional[str] = None
    body: str
    type: str
    created_at: str
    read_at: Optional[str] = None

    @classmethod
    def from_domain(cls, m: Message, sender_name: Optional[str] = None) -> "MessageOut":
        return cls(
            id=m.id,
            conversation_id=m.conversation_id,
            sender_user_id=m.sender_user_id,
            sender_name=sender_name,
            body=m.body,
            type=m.type,
            created_at=m.created_at,
            read_at=m.read_at,
        )


class ConversationResponse(ResponseModel):
    id: str
    property_id: str
    property_title: Optional[str] = None
    owner_user_id: str
    renter_user_id: str
    last_message: Optional[MessageOut] = None
    created_at: str

    @classmethod
    def from_domain(
        cls, c: Conversation, property_title: Optional[str] = None, last_message: Optional[Message] = None
    ) -> "ConversationResponse":
        return cls(
            id=c.id,
            property_id=c.property_id,
            property_title=property_title,
            owner_user_id=c.owner_user_id,
            renter_user_id=c.renter_user_id,
            last_message=MessageOut.from_domain(last_message) if last_message else None,
            created_at=c.created_at,
        )


class NotificationResponse(ResponseModel):
    id: str
    type: str
    title: str
    body: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: str
    read_at: Optional[str] = None

    @classmethod
    def from_domain(cls, n: Notification) -> "NotificationResponse":
        return cls(
            id=n.id,
            type=n.type,
            title=n.title,
            body=n.body,
            data=n.data,
            created_at=n.created_at,
            read_at=n.read_at,
        )


# ---------------------------------------------------------------------------
# Bookings
# ---------------------------------------------------------------------------


class BookingCreate(ApiModel):
    property_id: str = Field(min_length=1, max_length=36)
    date_from: str = Field(min_length=10, max_length=40)
    date_to: str = Field(min_length=10, max_length=40)
    note: Optional[str] = Field(default=None, max_length=1000)


class BookingProperty(ResponseModel):
    id: str
    title: str
    address: Optional[str] = None
    city: Optional[str] = None
    type: Optional[str] = None


class BookingResponse(ResponseModel):
    id: str
    property_id: str
    user_id: str
    date_from: str
    date_to: str
    note: Optional[str] = None
    status: str
    created_at: str
    updated_at: str
    property: Optional[BookingProperty] = None

    @classmethod
    def from_domain(cls, b: Booking, prop: Optional[Property] = None) -> "BookingResponse":
        return cls(
            id=b.id,
            property_id=b.property_id,
            user_id=b.user_id,
            date_from=b.date_from,
            date_to=b.date_to,
            note=b.note,
            status=b.status,
            created_at=b.created_at,
            updated_at=b.updated_at,
            property=(
                BookingProperty(id=prop.id, title=prop.title, address=prop.address, city=prop.city, type=prop.type)
                if prop
                else None
            ),
        )


# ---------------------------------------------------------------------------
# Terms, lookups, audit
# ---------------------------------------------------------------------------


class AcceptTermsRequest(ApiModel):
    term_id: Optional[str] = Field(default=None, max_length=36)
    version: Optional[str] = Field(default=None, max_length=20)

    @field_validator("term_id", "version", mode="before")
    @classmethod
    def blank_as_missing(cls, value):
        return None if isinstance(value, str) and not value.strip() else value


class TermResponse(ResponseModel):
    id: str
    version: str
    title: str
    content: str
    active: bool
    created_at: str

    @classmethod
    def from_domain(cls, t: Term) -> "TermResponse":
        return cls(id=t.id, version=t.version, title=t.title, content=t.content, active=t.active, created_at=t.created_at)


class AcceptTermsResponse(ResponseModel):
    term_id: str
    term_version: str


class RegionResponse(ResponseModel):
    id: str
    name: str

    @classmethod
    def from_domain(cls, r: Region) -> "RegionResponse":
        return cls(id=r.id, name=r.name)


class ComunaResponse(ResponseModel):
    id: str
    region_id: str
    name: str

    @classmethod
    def from_domain(cls, c: Comuna) -> "ComunaResponse":
        return cls(id=c.id, region_id=c.region_id, name=c.name)


class AuditEntryResponse(ResponseModel):
    id: str
    action: str
    entity: str
    entity_id: Optional[str] = None
    user_id: Optional[str] = None
    before: Optional[Any] = None
    after: Optional[Any] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: str

    @classmethod
    def from_domain(cls, e: AuditEntry) -> "AuditEntryResponse":
        return cls(
            id=e.id,
            action=e.action,
            entity=e.entity,
            entity_id=e.entity_id,
            user_id=e.user_id,
            before=e.before,
            after=e.after,
            ip=e.ip,
            user_agent=e.user_agent,
            created_at=e.created_at,
        )

"""
api/routes/v1/properties.py -- Listings, listing images and reviews.

Routes:
  GET    /properties                  -- public search (PUBLISHED only)
  GET    /properties/{id}             -- public detail with agent, images, review count
  POST   /properties                  -- create (DRAFT)
  PUT    /properties/{id}             -- update, owner only
  DELETE /properties/{id}             -- soft delete, owner only
  POST   /properties/{id}/publish     -- DRAFT/ARCHIVED -> PUBLISHED
  POST   /properties/{id}/archive     -- -> ARCHIVED
  POST   /properties/{id}/images      -- JSON {url} or multipart file
  GET    /properties/{id}/reviews     -- public, newest first
  POST   /properties/{id}/reviews     -- add a review, notify the owner

Every mutation requires accepted terms. A listing the caller does not own is
reported as NOT_FOUND, never FORBIDDEN.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import ValidationError

from api.errors import api_error, not_found
from api.models import (
    AgentSummary,
    ImageResponse,
    ImageUrlRequest,
    PropertyCreate,
    PropertyDetail,
    PropertyListItem,
    PropertyPage,
    PropertySortEnum,
    PropertyTypeEnum,
    PropertyUpdate,
    ReviewCreate,
    ReviewResponse,
    ok,
)
from api.validation import ValidationResult, ensure_valid, validate_geo_filter, validate_price_range
from auth.dependencies import get_client_info, require_terms_accepted
from auth.models import User
from core.errors import ErrorCode
from listings.models import STATUS_ARCHIVED, STATUS_PUBLISHED, Property, PropertyQuery, Review
from listings.store import ListingStore
from listings.uploads import UploadRejected, save_property_image
from messaging.models import Notification

logger = logging.getLogger("myassets.api.properties")

router = APIRouter()


def _owned_or_404(store: ListingStore, property_id: str, user: User) -> Property:
    prop = store.get_owned_property(property_id, user.id)
    if prop is None:
        not_found("Property not found.")
    return prop


def _detail(request: Request, prop: Property) -> PropertyDetail:
    store: ListingStore = request.app.state.listing_store
    owner = request.app.state.user_store.get_by_id(prop.user_id)
    agent = AgentSummary(id=owner.id, name=owner.full_name, email=owner.email) if owner else None
    return PropertyDetail.from_domain(
        prop,
        images=store.list_images(prop.id),
        agent=agent,
        reviews_count=store.review_counts([prop.id]).get(prop.id, 0),
    )


# ---------------------------------------------------------------------------
# Public search and detail
# ---------------------------------------------------------------------------


@router.get("/properties")
def list_properties(
    request: Request,
    q: Optional[str] = Query(None, max_length=200),
    type: Optional[PropertyTypeEnum] = None,
    price_min: Optional[float] = Query(None, alias="priceMin", ge=0),
    price_max: Optional[float] = Query(None, alias="priceMax", ge=0),
    bedrooms: Optional[int] = Query(None, ge=0),
    bathrooms: Optional[int] = Query(None, ge=0),
    region_id: Optional[str] = Query(None, alias="regionId"),
    comuna_id: Optional[str] = Query(None, alias="comunaId"),
    facilities: Optional[str] = Query(None, max_length=1000),
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    radius_km: Optional[float] = Query(None, alias="radiusKm", gt=0, le=20000),
    sort: PropertySortEnum = PropertySortEnum.recent,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
) -> dict:
    """Search published listings.

    facilities is a comma-separated list; a listing must carry every entry.
    sort=recommended is the same as recent.
    """
    ensure_valid(
        ValidationResult.of(
            validate_price_range(price_min, price_max).errors
            + validate_geo_filter(lat, lng, radius_km, sort.value).errors
        )
    )
    store: ListingStore = request.app.state.listing_store
    query = PropertyQuery(
        q=q or None,
        type=type.value if type else None,
        price_min=price_min,
        price_max=price_max,
        bedrooms=bedrooms,
        bathrooms=bathrooms,
        region_id=region_id or None,
        comuna_id=comuna_id or None,
        facilities=[f.strip() for f in (facilities or "").split(",") if f.strip()],
        lat=lat,
        lng=lng,
        radius_km=radius_km,
        sort="recent" if sort is PropertySortEnum.recommended else sort.value,
        page=page,
        limit=limit,
    )
    items, total = store.search(query)
    ids = [p.id for p in items]
    images = store.first_image_urls(ids)
    counts = store.review_counts(ids)
    return ok(
        PropertyPage(
            items=[PropertyListItem.from_domain(p, images.get(p.id), counts.get(p.id, 0)) for p in items],
            total=total,
            page=page,
            limit=limit,
        )
    )


@router.get("/properties/{property_id}")
def get_property(property_id: str, request: Request) -> dict:
    """Any non-deleted listing, including drafts, so owners can preview."""
    prop = request.app.state.listing_store.get_property(property_id)
    if prop is None:
        not_found("Property not found.")
    return ok(_detail(request, prop))


# ---------------------------------------------------------------------------
# Owner mutations
# ---------------------------------------------------------------------------


@router.post("/properties", status_code=201)
def create_property(
    request: Request, body: PropertyCreate, current_user: User = Depends(require_terms_accepted)
) -> dict:
    store: ListingStore = request.app.state.listing_store
    fields = body.model_dump(mode="json", exclude_none=True)
    prop_id = store.create_property(Property(user_id=current_user.id, **fields))
    prop = store.get_property(prop_id)
    request.app.state.audit_store.record(
        "CREATE",
        "Property",
        entity_id=prop_id,
        user_id=current_user.id,
        after=asdict(prop),
        client=get_client_info(request),
    )
    logger.info("Property %s created by %s", prop_id, current_user.id)
    return ok(_detail(request, prop))


@router.put("/properties/{property_id}")
def update_property(
    property_id: str,
    request: Request,
    body: PropertyUpdate,
    current_user: User = Depends(require_terms_accepted),
) -> dict:
    store: ListingStore = request.app.state.listing_store
    before = _owned_or_404(store, property_id, current_user)
    fields = body.model_dump(mode="json", exclude_unset=True)
    if fields.get("title") is None:
        fields.pop("title", None)
    if "currency" in fields and fields["currency"] is None:
        fields.pop("currency")
    if fields:
        store.update_property(property_id, **fields)
    after = store.get_property(property_id)
    request.app.state.audit_store.record(
        "UPDATE",
        "Property",
        entity_id=property_id,
        user_id=current_user.id,
        before=asdict(before),
        after=asdict(after),
        client=get_client_info(request),
    )
    return ok(_detail(request, after))


@router.delete("/properties/{property_id}")
def delete_property(
    property_id: str, request: Request, current_user: User = Depends(require_terms_accepted)
) -> dict:
    store: ListingStore = request.app.state.listing_store
    before = _owned_or_404(store, property_id, current_user)
    store.soft_delete_property(property_id)
    request.app.state.audit_store.record(
        "DELETE",
        "Property",
        entity_id=property_id,
        user_id=current_user.id,
        before=asdict(before),
        client=get_client_info(request),
    )
    return ok(message="Property deleted.")


def _change_status(request: Request, property_id: str, user: User, status: str, action: str) -> dict:
    store: ListingStore = request.app.state.listing_store
    before = _owned_or_404(store, property_id, user)
    store.set_status(property_id, status)
    after = store.get_property(property_id)
    request.app.state.audit_store.record(
        action,
        "Property",
        entity_id=property_id,
        user_id=user.id,
        before={"status": before.status},
        after={"status": after.status},
        client=get_client_info(request),
    )
    return ok(_detail(request, after))


@router.post("/properties/{property_id}/publish")
def publish_property(
    property_id: str, request: Request, current_user: User = Depends(require_terms_accepted)
) -> dict:
    return _change_status(request, property_id, current_user, STATUS_PUBLISHED, "PUBLISH_PROPERTY")


@router.post("/properties/{property_id}/archive")
def archive_property(
    property_id: str, request: Request, current_user: User = Depends(require_terms_accepted)
) -> dict:
    return _change_status(request, property_id, current_user, STATUS_ARCHIVED, "ARCHIVE_PROPERTY")


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------


def _parse_sort_order(raw) -> Optional[int]:
    if raw is None or raw == "":
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise api_error(ErrorCode.VALIDATION_ERROR, "sortOrder: must be an integer")
    if value < 0:
        raise api_error(ErrorCode.VALIDATION_ERROR, "sortOrder: must be greater than or equal to 0")
    return value


@router.post("/properties/{property_id}/images", status_code=201)
async def add_image(
    property_id: str, request: Request, current_user: User = Depends(require_terms_accepted)
) -> dict:
    """Attach an image by URL (JSON body) or by upload (multipart field "file")."""
    store: ListingStore = request.app.state.listing_store
    _owned_or_404(store, property_id, current_user)
    settings = request.app.state.settings

    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        upload = form.get("file")
        if upload is None or isinstance(upload, str):
            raise api_error(ErrorCode.MISSING_IMAGE, "Provide a file or an image url.")
        sort_order = _parse_sort_order(form.get("sortOrder"))
        data = await upload.read(settings.max_upload_bytes + 1)
        try:
            url = save_property_image(
                settings.upload_dir,
                property_id,
                upload.filename,
                upload.content_type,
                data,
                settings.max_upload_bytes,
            )
        except UploadRejected as exc:
            raise api_error(ErrorCode.UPLOAD_ERROR, str(exc))
    else:
        try:
            payload = await request.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict) or not payload.get("url"):
            raise api_error(ErrorCode.MISSING_IMAGE, "Provide a file or an image url.")
        try:
            body = ImageUrlRequest.model_validate(payload)
        except ValidationError as exc:
            errors = [f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()]
            raise api_error(ErrorCode.VALIDATION_ERROR, errors[0], details=errors)
        url, sort_order = body.url, body.sort_order

    image = store.add_image(property_id, url, sort_order)
    return ok(ImageResponse.from_domain(image))


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------


@router.get("/properties/{property_id}/reviews")
def list_reviews(property_id: str, request: Request) -> dict:
    store: ListingStore = request.app.state.listing_store
    if store.get_property(property_id) is None:
        not_found("Property not found.")
    items = store.list_reviews(property_id)
    authors = request.app.state.user_store.get_many(r.user_id for r in items)
    return ok(
        [
            ReviewResponse.from_domain(r, authors[r.user_id].full_name if r.user_id in authors else "")
            for r in items
        ]
    )


@router.post("/properties/{property_id}/reviews", status_code=201)
def create_review(
    property_id: str,
    request: Request,
    body: ReviewCreate,
    current_user: User = Depends(require_terms_accepted),
) -> dict:
    store: ListingStore = request.app.state.listing_store
    prop = store.get_property(property_id)
    if prop is None:
        not_found("Property not found.")

    review = store.create_review(
        Review(
            property_id=property_id,
            user_id=current_user.id,
            rating=body.rating,
            comment=body.comment,
            media_url=body.media_url,
        )
    )
    request.app.state.audit_store.record(
        "CREATE",
        "Review",
        entity_id=review.id,
        user_id=current_user.id,
        after=asdict(review),
        client=get_client_info(request),
    )
    if prop.user_id != current_user.id:
        request.app.state.messaging_store.notify(
            Notification(
                user_id=prop.user_id,
                type="NEW_REVIEW",
                title="New review",
                body=f"{current_user.full_name} rated {prop.title} {review.rating}/5.",
                data={"propertyId": property_id, "reviewId": review.id},
            )
        )
    return ok(ReviewResponse.from_domain(review, current_user.full_name))

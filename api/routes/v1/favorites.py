"""
api/routes/v1/favorites.py -- The caller's saved listings.

  POST   /favorites/{property_id}  -- save a PUBLISHED listing (idempotent)
  DELETE /favorites/{property_id}  -- unsave (idempotent)
  GET    /favorites                -- saved listings, newest first
"""

from fastapi import APIRouter, Depends, Request

from api.errors import not_found
from api.models import FavoriteItem, FavoriteResponse, ok
from auth.dependencies import require_terms_accepted
from auth.models import User
from listings.models import STATUS_PUBLISHED
from listings.store import ListingStore

router = APIRouter()


@router.post("/favorites/{property_id}", status_code=201)
def add_favorite(property_id: str, request: Request, current_user: User = Depends(require_terms_accepted)) -> dict:
    store: ListingStore = request.app.state.listing_store
    prop = store.get_property(property_id)
    if prop is None or prop.status != STATUS_PUBLISHED:
        not_found("Property not found.")
    fav, _ = store.add_favorite(current_user.id, property_id)
    return ok(
        FavoriteResponse(id=fav.id, user_id=fav.user_id, property_id=fav.property_id, created_at=fav.created_at)
    )


@router.delete("/favorites/{property_id}")
def remove_favorite(property_id: str, request: Request, current_user: User = Depends(require_terms_accepted)) -> dict:
    request.app.state.listing_store.remove_favorite(current_user.id, property_id)
    return ok(message="Removed from favorites.")


@router.get("/favorites")
def list_favorites(request: Request, current_user: User = Depends(require_terms_accepted)) -> dict:
    store: ListingStore = request.app.state.listing_store
    pairs = store.list_favorites(current_user.id)
    ids = [p.id for _, p in pairs]
    images = store.first_image_urls(ids)
    counts = store.review_counts(ids)
    return ok(
        [
            FavoriteItem(
                id=fav.id,
                property_id=prop.id,
                title=prop.title,
                address=prop.address,
                city=prop.city,
                price=prop.price,
                currency=prop.currency,
                type=prop.type,
                status=prop.status,
                image_url=images.get(prop.id),
                reviews_count=counts.get(prop.id, 0),
                created_at=fav.created_at,
            )
            for fav, prop in pairs
        ]
    )

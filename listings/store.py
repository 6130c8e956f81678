"""
listings/store.py -- SQLAlchemy Core persistence for properties, images,
reviews and favorites.

Pattern: Repository + Data Mapper. ListingStore is the repository; the
_row_to_* functions are the mappers. Route handlers never touch SQL.

Visibility rules enforced here, not in routes:
  search()            -- PUBLISHED and non-deleted only
  get_property()      -- any non-deleted listing
  get_owned_property() -- non-deleted listing owned by the caller; owner-scoped
                         mutations go through this so a foreign id and a
                         missing id are indistinguishable (both None)

facilities is a JSON array serialized as text. The facilities filter matches
the JSON-quoted token, so "wifi" does not match "wifi-6".

Security: all queries use bound parameters. LIKE patterns are escaped.
"""

from __future__ import annotations

import json
import math
from typing import Optional

from sqlalchemy import (
    Column,
    Float,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    and_,
    func,
    or_,
    select,
)
from sqlalchemy.exc import IntegrityError

from core.db import Database, metadata, new_id, now_iso
from listings.models import (
    STATUS_PUBLISHED,
    TYPE_SYNONYMS,
    Favorite,
    Property,
    PropertyImage,
    PropertyQuery,
    Review,
)
from listings.regions import comunas, regions

# Kilometres per degree of latitude, used for the bounding-box filter.
_KM_PER_DEGREE = 111.0

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

properties = Table(
    "properties",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("title", String(255), nullable=False),
    Column("description", Text),
    Column("address", String(500)),
    Column("city", String(100)),
    Column("region", String(120)),
    Column("latitude", Float),
    Column("longitude", Float),
    Column("facilities", Text),  # JSON array serialized as text
    Column("bedrooms", Integer),
    Column("bathrooms", Integer),
    Column("price", Float),
    Column("currency", String(10), nullable=False, server_default="CLP"),
    Column("type", String(20)),
    Column("status", String(20), nullable=False, server_default="DRAFT"),
    Column("rating_avg", Float),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
)

property_images = Table(
    "property_images",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("property_id", String(36), nullable=False, index=True),
    Column("url", String(500), nullable=False),
    Column("sort_order", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

reviews = Table(
    "reviews",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("property_id", String(36), nullable=False, index=True),
    Column("user_id", String(36), nullable=False),
    Column("rating", Integer, nullable=False),
    Column("comment", Text),
    Column("media_url", String(500)),
    Column("created_at", String(32), nullable=False),
)

favorites = Table(
    "favorites",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("property_id", String(36), nullable=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("user_id", "property_id", name="uq_favorite_user_property"),
)

# Columns update_property() accepts. Status and ownership change through
# dedicated methods only.
_EDITABLE = {
    "title",
    "description",
    "address",
    "city",
    "region",
    "latitude",
    "longitude",
    "facilities",
    "bedrooms",
    "bathrooms",
    "price",
    "currency",
    "type",
}


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ListingStore:
    def __init__(self, db: Database) -> None:
        self.engine = db.engine
        db.create_tables(regions, comunas, properties, property_images, reviews, favorites)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    def create_property(self, prop: Property) -> str:
        """Insert a listing and return its id. New listings always start as DRAFT."""
        prop_id = prop.id or new_id()
        now = now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                properties.insert().values(
                    id=prop_id,
                    user_id=prop.user_id,
                    title=prop.title,
                    description=prop.description,
                    address=prop.address,
                    city=prop.city,
                    region=prop.region,
                    latitude=prop.latitude,
                    longitude=prop.longitude,
                    facilities=json.dumps(prop.facilities or []),
                    bedrooms=prop.bedrooms,
                    bathrooms=prop.bathrooms,
                    price=prop.price,
                    currency=prop.currency or "CLP",
                    type=prop.type,
                    status="DRAFT",
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return prop_id

    def get_property(self, property_id: str) -> Optional[Property]:
        """Return a non-deleted listing in any status, or None."""
        with self.engine.connect() as conn:
            row = conn.execute(
                properties.select().where(and_(properties.c.id == property_id, properties.c.deleted_at.is_(None)))
            ).fetchone()
        return _row_to_property(row) if row is not None else None

    def get_owned_property(self, property_id: str, user_id: str) -> Optional[Property]:
        with self.engine.connect() as conn:
            row = conn.execute(
                properties.select().where(
                    and_(
                        properties.c.id == property_id,
                        properties.c.user_id == user_id,
                        properties.c.deleted_at.is_(None),
                    )
                )
            ).fetchone()
        return _row_to_property(row) if row is not None else None

    def get_properties(self, property_ids) -> dict[str, Property]:
        """Return {id: Property} for non-deleted listings among property_ids."""
        ids = list(set(property_ids))
        if not ids:
            return {}
        with self.engine.connect() as conn:
            rows = conn.execute(
                properties.select().where(and_(properties.c.id.in_(ids), properties.c.deleted_at.is_(None)))
            ).fetchall()
        return {r.id: _row_to_property(r) for r in rows}

    def update_property(self, property_id: str, **fields) -> bool:
        unknown = set(fields) - _EDITABLE
        if unknown:
            raise ValueError(f"Unknown property fields: {unknown!r}")
        if "facilities" in fields:
            fields["facilities"] = json.dumps(fields["facilities"] or [])
        fields["updated_at"] = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                properties.update()
                .where(and_(properties.c.id == property_id, properties.c.deleted_at.is_(None)))
                .values(**fields)
            )
            conn.commit()
        return result.rowcount > 0

    def set_status(self, property_id: str, status: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                properties.update()
                .where(and_(properties.c.id == property_id, properties.c.deleted_at.is_(None)))
                .values(status=status, updated_at=now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def soft_delete_property(self, property_id: str) -> bool:
        now = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                properties.update()
                .where(and_(properties.c.id == property_id, properties.c.deleted_at.is_(None)))
                .values(deleted_at=now, updated_at=now)
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(self, query: PropertyQuery) -> tuple[list[Property], int]:
        """Return (page of PUBLISHED listings, total matching) for the given filters."""
        p = properties.c
        conditions = [p.deleted_at.is_(None), p.status == STATUS_PUBLISHED]

        if query.q:
            pattern = f"%{_escape_like(query.q)}%"
            conditions.append(
                or_(
                    p.title.ilike(pattern, escape="\\"),
                    p.description.ilike(pattern, escape="\\"),
                    p.address.ilike(pattern, escape="\\"),
                    p.city.ilike(pattern, escape="\\"),
                )
            )
        if query.type:
            conditions.append(p.type.in_(TYPE_SYNONYMS.get(query.type, (query.type,))))
        if query.price_min is not None:
            conditions.append(p.price >= query.price_min)
        if query.price_max is not None:
            conditions.append(p.price <= query.price_max)
        if query.bedrooms is not None:
            conditions.append(p.bedrooms >= query.bedrooms)
        if query.bathrooms is not None:
            conditions.append(p.bathrooms >= query.bathrooms)
        for facility in query.facilities:
            conditions.append(p.facilities.like(f"%{_escape_like(json.dumps(facility))}%", escape="\\"))

        has_point = query.lat is not None and query.lng is not None
        if has_point and query.radius_km:
            lat_delta = query.radius_km / _KM_PER_DEGREE
            conditions.append(p.latitude.between(query.lat - lat_delta, query.lat + lat_delta))
            cos_lat = math.cos(math.radians(query.lat))
            # At the poles every longitude is within range.
            if cos_lat > 1e-9:
                lng_delta = query.radius_km / (_KM_PER_DEGREE * cos_lat)
                conditions.append(p.longitude.between(query.lng - lng_delta, query.lng + lng_delta))

        with self.engine.connect() as conn:
            region_name = self._region_name(conn, query)
            if region_name is not None:
                conditions.append(p.region == region_name)

            where = and_(*conditions)
            total = conn.execute(select(func.count()).select_from(properties).where(where)).scalar() or 0
            rows = conn.execute(
                properties.select()
                .where(where)
                .order_by(*self._ordering(query, has_point))
                .offset((query.page - 1) * query.limit)
                .limit(query.limit)
            ).fetchall()
        return [_row_to_property(r) for r in rows], total

    @staticmethod
    def _region_name(conn, query: PropertyQuery) -> Optional[str]:
        """Map comunaId (preferred) or regionId to the region name listings store.

        An id that resolves to nothing leaves the filter off.
        """
        if query.comuna_id:
            name = conn.execute(
                select(regions.c.name)
                .select_from(comunas.join(regions, comunas.c.region_id == regions.c.id))
                .where(comunas.c.id == query.comuna_id)
            ).scalar()
            if name is not None:
                return name
        if query.region_id:
            return conn.execute(select(regions.c.name).where(regions.c.id == query.region_id)).scalar()
        return None

    @staticmethod
    def _ordering(query: PropertyQuery, has_point: bool) -> list:
        p = properties.c
        newest = [p.created_at.desc(), p.id]
        if query.sort == "price_asc":
            return [p.price.asc(), *newest]
        if query.sort == "price_desc":
            return [p.price.desc(), *newest]
        if query.sort == "popular":
            return [p.rating_avg.desc(), *newest]
        if query.sort == "nearby" and has_point:
            # Equirectangular approximation; listings without coordinates sort last.
            cos_lat = math.cos(math.radians(query.lat))
            dlat = p.latitude - query.lat
            dlng = (p.longitude - query.lng) * cos_lat
            return [p.latitude.is_(None), (dlat * dlat + dlng * dlng).asc(), *newest]
        return newest

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def add_image(self, property_id: str, url: str, sort_order: Optional[int] = None) -> PropertyImage:
        """Attach an image. sort_order defaults to one past the current maximum, so the first image gets 1."""
        image_id = new_id()
        created_at = now_iso()
        with self.engine.connect() as conn:
            if sort_order is None:
                current = conn.execute(
                    select(func.max(property_images.c.sort_order)).where(property_images.c.property_id == property_id)
                ).scalar()
                sort_order = (current or 0) + 1
            conn.execute(
                property_images.insert().values(
                    id=image_id,
                    property_id=property_id,
                    url=url,
                    sort_order=sort_order,
                    created_at=created_at,
                )
            )
            conn.commit()
        return PropertyImage(
            id=image_id, property_id=property_id, url=url, sort_order=sort_order, created_at=created_at
        )

    def list_images(self, property_id: str) -> list[PropertyImage]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                property_images.select()
                .where(property_images.c.property_id == property_id)
                .order_by(property_images.c.sort_order, property_images.c.created_at)
            ).fetchall()
        return [_row_to_image(r) for r in rows]

    def first_image_urls(self, property_ids) -> dict[str, str]:
        """Return {property_id: url of the lowest sort_order image}."""
        ids = list(set(property_ids))
        if not ids:
            return {}
        with self.engine.connect() as conn:
            rows = conn.execute(
                property_images.select()
                .where(property_images.c.property_id.in_(ids))
                .order_by(property_images.c.property_id, property_images.c.sort_order, property_images.c.created_at)
            ).fetchall()
        urls: dict[str, str] = {}
        for r in rows:
            urls.setdefault(r.property_id, r.url)
        return urls

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    def create_review(self, review: Review) -> Review:
        """Insert a review and recompute the listing's rating_avg in one transaction."""
        review.id = review.id or new_id()
        review.created_at = now_iso()
        avg = select(func.avg(reviews.c.rating)).where(reviews.c.property_id == review.property_id).scalar_subquery()
        with self.engine.connect() as conn:
            conn.execute(
                reviews.insert().values(
                    id=review.id,
                    property_id=review.property_id,
                    user_id=review.user_id,
                    rating=review.rating,
                    comment=review.comment,
                    media_url=review.media_url,
                    created_at=review.created_at,
                )
            )
            conn.execute(properties.update().where(properties.c.id == review.property_id).values(rating_avg=avg))
            conn.commit()
        return review

    def list_reviews(self, property_id: str) -> list[Review]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                reviews.select()
                .where(reviews.c.property_id == property_id)
                .order_by(reviews.c.created_at.desc(), reviews.c.id)
            ).fetchall()
        return [_row_to_review(r) for r in rows]

    def review_counts(self, property_ids) -> dict[str, int]:
        ids = list(set(property_ids))
        if not ids:
            return {}
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(reviews.c.property_id, func.count())
                .where(reviews.c.property_id.in_(ids))
                .group_by(reviews.c.property_id)
            ).fetchall()
        return {property_id: count for property_id, count in rows}

    # ------------------------------------------------------------------
    # Favorites
    # ------------------------------------------------------------------

    def add_favorite(self, user_id: str, property_id: str) -> tuple[Favorite, bool]:
        """Idempotent insert. Returns (favorite, created)."""
        existing = self._get_favorite(user_id, property_id)
        if existing is not None:
            return existing, False
        fav = Favorite(id=new_id(), user_id=user_id, property_id=property_id, created_at=now_iso())
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    favorites.insert().values(
                        id=fav.id, user_id=user_id, property_id=property_id, created_at=fav.created_at
                    )
                )
                conn.commit()
        except IntegrityError:
            # A concurrent request inserted the same pair first.
            return self._get_favorite(user_id, property_id), False
        return fav, True

    def _get_favorite(self, user_id: str, property_id: str) -> Optional[Favorite]:
        with self.engine.connect() as conn:
            row = conn.execute(
                favorites.select().where(and_(favorites.c.user_id == user_id, favorites.c.property_id == property_id))
            ).fetchone()
        return _row_to_favorite(row) if row is not None else None

    def remove_favorite(self, user_id: str, property_id: str) -> int:
        """Delete the pair if present. Returns the number of rows removed (0 or 1)."""
        with self.engine.connect() as conn:
            result = conn.execute(
                favorites.delete().where(and_(favorites.c.user_id == user_id, favorites.c.property_id == property_id))
            )
            conn.commit()
        return result.rowcount

    def list_favorites(self, user_id: str) -> list[tuple[Favorite, Property]]:
        """Newest first. Favorites pointing at deleted listings are skipped."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                favorites.select().where(favorites.c.user_id == user_id).order_by(favorites.c.created_at.desc())
            ).fetchall()
        favs = [_row_to_favorite(r) for r in rows]
        props = self.get_properties(f.property_id for f in favs)
        return [(f, props[f.property_id]) for f in favs if f.property_id in props]


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_property(row) -> Property:
    return Property(
        id=row.id,
        user_id=row.user_id,
        title=row.title,
        description=row.description,
        address=row.address,
        city=row.city,
        region=row.region,
        latitude=row.latitude,
        longitude=row.longitude,
        facilities=json.loads(row.facilities) if row.facilities else [],
        bedrooms=row.bedrooms,
        bathrooms=row.bathrooms,
        price=row.price,
        currency=row.currency,
        type=row.type,
        status=row.status,
        rating_avg=row.rating_avg,
        created_at=row.created_at,
        updated_at=row.updated_at,
        deleted_at=row.deleted_at,
    )


def _row_to_image(row) -> PropertyImage:
    return PropertyImage(
        id=row.id,
        property_id=row.property_id,
        url=row.url,
        sort_order=row.sort_order,
        created_at=row.created_at,
    )


def _row_to_review(row) -> Review:
    return Review(
        id=row.id,
        property_id=row.property_id,
        user_id=row.user_id,
        rating=row.rating,
        comment=row.comment,
        media_url=row.media_url,
        created_at=row.created_at,
    )


def _row_to_favorite(row) -> Favorite:
    return Favorite(id=row.id, user_id=row.user_id, property_id=row.property_id, created_at=row.created_at)

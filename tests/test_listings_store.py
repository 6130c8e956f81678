"""
tests/test_listings_store.py -- ListingStore, RegionStore, BookingStore and MessagingStore.

Store tests run against a fresh named in-memory database per test (db fixture).
"""

from __future__ import annotations

import pytest

from bookings.models import Booking
from bookings.store import BookingStore
from listings.models import STATUS_PUBLISHED, Property, PropertyQuery, Review
from listings.regions import RegionStore, seed_chile
from listings.store import ListingStore
from messaging.models import Message, Notification
from messaging.store import MessagingStore

SANTIAGO = "Región Metropolitana de Santiago"


def _publish(store: ListingStore, **fields) -> str:
    fields.setdefault("user_id", "owner-1")
    fields.setdefault("title", "Listing")
    prop_id = store.create_property(Property(**fields))
    store.set_status(prop_id, STATUS_PUBLISHED)
    return prop_id


@pytest.fixture
def listings(db) -> ListingStore:
    return ListingStore(db)


class TestSearch:
    def test_only_published_and_not_deleted(self, listings) -> None:
        live = _publish(listings, title="Live")
        listings.create_property(Property(user_id="owner-1", title="Draft"))
        gone = _publish(listings, title="Gone")
        listings.soft_delete_property(gone)

        items, total = listings.search(PropertyQuery())
        assert total == 1
        assert [p.id for p in items] == [live]

    def test_new_listing_is_draft(self, listings) -> None:
        prop_id = listings.create_property(Property(user_id="owner-1", title="X", status=STATUS_PUBLISHED))
        assert listings.get_property(prop_id).status == "DRAFT"

    def test_text_search_case_insensitive(self, listings) -> None:
        hit = _publish(listings, title="Casa en Ñuñoa", description="Amplia y luminosa")
        _publish(listings, title="Oficina")
        items, _ = listings.search(PropertyQuery(q="LUMINOSA"))
        assert [p.id for p in items] == [hit]

    def test_like_wildcards_are_literal(self, listings) -> None:
        _publish(listings, title="Plain title")
        items, _ = listings.search(PropertyQuery(q="%"))
        assert items == []

    @pytest.mark.parametrize("query_type", ["rent", "arriendo"])
    def test_type_synonyms_both_directions(self, listings, query_type) -> None:
        a = _publish(listings, title="A", type="rent")
        b = _publish(listings, title="B", type="arriendo")
        _publish(listings, title="C", type="sale")
        items, _ = listings.search(PropertyQuery(type=query_type))
        assert {p.id for p in items} == {a, b}

    def test_numeric_filters(self, listings) -> None:
        cheap = _publish(listings, title="Cheap", price=100, bedrooms=1, bathrooms=1)
        mid = _publish(listings, title="Mid", price=200, bedrooms=3, bathrooms=2)
        _publish(listings, title="Pricey", price=900, bedrooms=4, bathrooms=3)

        items, _ = listings.search(PropertyQuery(price_min=50, price_max=250))
        assert {p.id for p in items} == {cheap, mid}
        items, _ = listings.search(PropertyQuery(price_max=250, bedrooms=2, bathrooms=2))
        assert [p.id for p in items] == [mid]

    def test_facilities_require_every_entry(self, listings) -> None:
        both = _publish(listings, title="Both", facilities=["wifi", "pool"])
        _publish(listings, title="Wifi only", facilities=["wifi"])
        _publish(listings, title="Wifi pro", facilities=["wifi pro", "pool"])
        items, _ = listings.search(PropertyQuery(facilities=["wifi", "pool"]))
        assert [p.id for p in items] == [both]

    def test_radius_bounding_box(self, listings) -> None:
        near = _publish(listings, title="Near", latitude=-33.45, longitude=-70.66)
        _publish(listings, title="Valparaiso", latitude=-33.05, longitude=-71.62)
        _publish(listings, title="No coordinates")
        items, _ = listings.search(PropertyQuery(lat=-33.44, lng=-70.65, radius_km=10))
        assert [p.id for p in items] == [near]

    def test_region_and_comuna_map_to_region_name(self, db, listings) -> None:
        regions = RegionStore(db)
        seed_chile(regions)
        santiago = next(r for r in regions.list_regions() if r.name == SANTIAGO)
        comuna = regions.list_comunas(santiago.id)[0]
        here = _publish(listings, title="Here", region=SANTIAGO)
        _publish(listings, title="Elsewhere", region="Región del Maule")

        assert [p.id for p in listings.search(PropertyQuery(region_id=santiago.id))[0]] == [here]
        assert [p.id for p in listings.search(PropertyQuery(comuna_id=comuna.id))[0]] == [here]

    def test_unknown_region_ignored(self, listings) -> None:
        _publish(listings, title="A", region=SANTIAGO)
        _, total = listings.search(PropertyQuery(region_id="no-such-region"))
        assert total == 1

    def test_pagination(self, listings) -> None:
        for i in range(5):
            _publish(listings, title=f"P{i}")
        items, total = listings.search(PropertyQuery(page=2, limit=2))
        assert total == 5
        assert len(items) == 2
        items, _ = listings.search(PropertyQuery(page=3, limit=2))
        assert len(items) == 1


class TestOrdering:
    def test_price_orders(self, listings) -> None:
        a = _publish(listings, title="A", price=300)
        b = _publish(listings, title="B", price=100)
        c = _publish(listings, title="C", price=200)
        assert [p.id for p in listings.search(PropertyQuery(sort="price_asc"))[0]] == [b, c, a]
        assert [p.id for p in listings.search(PropertyQuery(sort="price_desc"))[0]] == [a, c, b]

    def test_default_newest_first(self, listings) -> None:
        first = _publish(listings, title="First")
        second = _publish(listings, title="Second")
        assert [p.id for p in listings.search(PropertyQuery())[0]] == [second, first]

    def test_nearby(self, listings) -> None:
        far = _publish(listings, title="Far", latitude=-33.05, longitude=-71.62)
        close = _publish(listings, title="Close", latitude=-33.44, longitude=-70.65)
        nowhere = _publish(listings, title="Nowhere")
        items, _ = listings.search(PropertyQuery(sort="nearby", lat=-33.45, lng=-70.66))
        assert [p.id for p in items] == [close, far, nowhere]

    def test_popular_uses_rating(self, listings) -> None:
        low = _publish(listings, title="Low")
        high = _publish(listings, title="High")
        listings.create_review(Review(property_id=low, user_id="u1", rating=2))
        listings.create_review(Review(property_id=high, user_id="u1", rating=5))
        items, _ = listings.search(PropertyQuery(sort="popular"))
        assert [p.id for p in items] == [high, low]


class TestReviewsImagesFavorites:
    def test_rating_average_recomputed(self, listings) -> None:
        prop_id = _publish(listings)
        listings.create_review(Review(property_id=prop_id, user_id="u1", rating=5))
        listings.create_review(Review(property_id=prop_id, user_id="u2", rating=2))
        assert listings.get_property(prop_id).rating_avg == pytest.approx(3.5)
        assert listings.review_counts([prop_id]) == {prop_id: 2}

    def test_image_sort_order_defaults_to_next(self, listings) -> None:
        prop_id = _publish(listings)
        first = listings.add_image(prop_id, "https://img.example/1.jpg")
        second = listings.add_image(prop_id, "https://img.example/2.jpg")
        assert (first.sort_order, second.sort_order) == (1, 2)

        cover = listings.add_image(prop_id, "https://img.example/0.jpg", sort_order=0)
        assert cover.sort_order == 0
        assert listings.first_image_urls([prop_id])[prop_id] == "https://img.example/0.jpg"
        assert [i.url for i in listings.list_images(prop_id)][0] == "https://img.example/0.jpg"

    def test_favorite_idempotent(self, listings) -> None:
        prop_id = _publish(listings)
        fav, created = listings.add_favorite("u1", prop_id)
        again, created_again = listings.add_favorite("u1", prop_id)
        assert created and not created_again
        assert fav.id == again.id
        assert listings.remove_favorite("u1", prop_id) == 1
        assert listings.remove_favorite("u1", prop_id) == 0

    def test_favorites_skip_deleted_listings(self, listings) -> None:
        keep = _publish(listings, title="Keep")
        drop = _publish(listings, title="Drop")
        listings.add_favorite("u1", keep)
        listings.add_favorite("u1", drop)
        listings.soft_delete_property(drop)
        assert [p.id for _, p in listings.list_favorites("u1")] == [keep]

    def test_update_rejects_unknown_fields(self, listings) -> None:
        prop_id = _publish(listings)
        with pytest.raises(ValueError):
            listings.update_property(prop_id, status="PUBLISHED")


class TestRegions:
    def test_seed_is_idempotent(self, db) -> None:
        regions = RegionStore(db)
        added = seed_chile(regions)
        assert added[0] == 16
        assert seed_chile(regions) == (0, 0)
        assert len(regions.list_regions()) == 16


class TestBookings:
    def test_cancel_once(self, db) -> None:
        store = BookingStore(db)
        booking = store.create_booking(Booking(property_id="p1", user_id="u1", date_from="2026-02-01", date_to="2026-02-03"))
        assert booking.status == "PENDING"
        assert not store.cancel(booking.id, "someone-else")
        assert store.cancel(booking.id, "u1")
        assert not store.cancel(booking.id, "u1")
        assert store.get_booking(booking.id).status == "CANCELLED"

    def test_list_filters_by_status(self, db) -> None:
        store = BookingStore(db)
        early = store.create_booking(Booking(property_id="p1", user_id="u1", date_from="2026-02-01", date_to="2026-02-03"))
        late = store.create_booking(Booking(property_id="p1", user_id="u1", date_from="2026-03-01", date_to="2026-03-03"))
        store.cancel(early.id, "u1")
        assert [b.id for b in store.list_by_user("u1")] == [late.id, early.id]
        assert [b.id for b in store.list_by_user("u1", "PENDING")] == [late.id]


class TestMessaging:
    def test_one_conversation_per_property_and_renter(self, db) -> None:
        store = MessagingStore(db)
        conv, created = store.find_or_create_conversation("p1", "owner", "renter")
        same, created_again = store.find_or_create_conversation("p1", "owner", "renter")
        assert created and not created_again
        assert conv.id == same.id
        assert store.get_for_participant(conv.id, "stranger") is None

    def test_messages_oldest_first_and_last_message(self, db) -> None:
        store = MessagingStore(db)
        conv, _ = store.find_or_create_conversation("p1", "owner", "renter")
        store.add_message(Message(conversation_id=conv.id, sender_user_id="renter", body="hola"))
        store.add_message(Message(conversation_id=conv.id, sender_user_id="owner", body="buenas"))
        assert [m.body for m in store.list_messages(conv.id)] == ["hola", "buenas"]
        assert store.last_messages([conv.id])[conv.id].body == "buenas"

    def test_mark_read_owner_only(self, db) -> None:
        store = MessagingStore(db)
        note = store.notify(Notification(user_id="u1", type="NEW_MESSAGE", title="Hi", data={"k": "v"}))
        assert store.mark_read(note.id, "u2") is None
        read = store.mark_read(note.id, "u1")
        assert read.read_at is not None
        assert read.data == {"k": "v"}
        assert store.list_notifications("u1", unread_only=True) == []

"""
Tests for CartStore line-item bookkeeping
"""

from decimal import Decimal

import pytest

from cartkit.cart import CartEvent, CartStore, FromArray, FromAttributes, FromEntityReference
from cartkit.errors import NotFoundError, UnknownModelError, ValidationError


def shirt(size="M", qty=1, price="20.00"):
    return FromAttributes("shirt", "T-Shirt", qty=qty, price=price, options={"size": size})


class TestAdd:
    """Tests for adding items."""

    def test_add_item(self, cart):
        """Test adding a single item."""
        item = cart.add(FromAttributes(1, "Mug", qty=2, price="9.99"))

        assert cart.get(item.row_id) == item
        assert cart.count_items() == 1
        assert cart.count() == 2

    def test_add_same_item_twice_merges(self, cart):
        """Same identity and options end up in one row with summed quantity."""
        first = cart.add(shirt(qty=1))
        second = cart.add(shirt(qty=3))

        assert first.row_id == second.row_id
        assert cart.count_items() == 1
        assert cart.get(first.row_id).qty == 4

    def test_merge_keeps_position(self, cart):
        a = cart.add(FromAttributes(1, "A", price="1.00"))
        cart.add(FromAttributes(2, "B", price="1.00"))
        cart.add(FromAttributes(1, "A", price="1.00"))

        assert list(cart.content())[0] == a.row_id

    def test_different_options_are_different_rows(self, cart):
        cart.add(shirt(size="M"))
        cart.add(shirt(size="L"))

        assert cart.count_items() == 2

    def test_add_appends_in_order(self, cart):
        rows = [cart.add(FromAttributes(i, f"Item {i}", price="1.00")).row_id for i in range(5)]
        assert list(cart.content()) == rows

    def test_add_applies_global_rates(self, cart):
        """Cart-wide tax and discount apply to new items."""
        cart.set_global_discount(5)

        item = cart.add(FromAttributes(1, "Mug", price="10.00"))

        assert item.tax_rate == Decimal("21")
        assert item.discount_rate == Decimal("5")

    def test_add_bulk(self, cart):
        """A list of sources is added in one call."""
        items = cart.add([
            FromAttributes(1, "Mug", price="5.00"),
            FromArray({"id": 2, "name": "Pen", "price": "1.00", "qty": 3}),
        ])

        assert len(items) == 2
        assert cart.count() == 4

    def test_add_bulk_rejects_whole_batch(self, cart):
        """A bad entry in a batch leaves the cart untouched."""
        with pytest.raises(ValidationError):
            cart.add([
                FromAttributes(1, "Mug", price="5.00"),
                FromAttributes(2, "Pen", price="-1.00"),
            ])

        assert cart.count_items() == 0

    def test_add_from_entity_sets_relation(self, cart, product):
        item = cart.add(FromEntityReference(product, qty=1))

        assert item.associated_model.endswith(".Product")
        assert cart.relations()[item.row_id] is product

    @pytest.mark.parametrize(
        "source",
        [
            FromAttributes(1, "Mug", qty=-1, price="1.00"),
            FromAttributes(1, "Mug", qty=1, price="-1.00"),
            FromAttributes("", "Mug", qty=1, price="1.00"),
            FromAttributes(1, "", qty=1, price="1.00"),
            FromAttributes(1, "Mug", qty="x", price="1.00"),
        ],
    )
    def test_add_invalid(self, cart, observer, source):
        """Malformed items are rejected without side effects."""
        with pytest.raises(ValidationError):
            cart.add(source)

        assert cart.count_items() == 0
        assert observer.events == []

    def test_add_events(self, cart, observer):
        item = cart.add(FromAttributes(1, "Mug", price="1.00"))

        assert observer.events == [(CartEvent.BEFORE_ADD, item), (CartEvent.AFTER_ADD, item)]

    def test_add_without_dispatch(self, cart, observer):
        cart.add(FromAttributes(1, "Mug", price="1.00"), dispatch=False)
        assert observer.events == []

    def test_add_writes_back_to_session(self, cart, session_store):
        item = cart.add(FromAttributes(1, "Mug", price="1.00"))

        assert list(session_store.load("cart.default")) == [item.row_id]


class TestUpdate:
    """Tests for updating items."""

    def test_update_quantity(self, cart):
        item = cart.add(shirt(qty=1))

        updated = cart.update(item.row_id, 5)

        assert updated.qty == 5
        assert cart.get(item.row_id).qty == 5

    def test_update_quantity_keeps_order(self, cart):
        rows = [cart.add(FromAttributes(i, f"Item {i}", price="1.00")).row_id for i in range(3)]

        cart.update(rows[1], 7)

        assert list(cart.content()) == rows

    @pytest.mark.parametrize("qty", [0, -2])
    def test_update_to_zero_removes(self, cart, qty):
        """Quantity zero or below removes the row."""
        item = cart.add(shirt())

        result = cart.update(item.row_id, qty)

        assert result is None
        with pytest.raises(NotFoundError):
            cart.get(item.row_id)

    def test_update_collision_removal_reports_removed_row(self, cart, observer):
        medium = cart.add(shirt("M", qty=2))
        cart.add(shirt("L", qty=1))
        observer.events.clear()

        cart.update(medium.row_id, FromArray({"options": {"size": "L"}, "qty": -3}))

        assert cart.count_items() == 0
        _, payload = observer.events[0]
        assert payload.row_id == medium.row_id
        assert payload.qty == 2

    def test_update_removal_fires_remove_events(self, cart, observer):
        item = cart.add(shirt())
        observer.events.clear()

        cart.update(item.row_id, 0)

        assert observer.names == [CartEvent.BEFORE_REMOVE, CartEvent.AFTER_REMOVE]
        assert [payload for _, payload in observer.events] == [item, item]

    def test_update_events(self, cart, observer):
        item = cart.add(shirt())
        observer.events.clear()

        updated = cart.update(item.row_id, 2)

        assert observer.events == [(CartEvent.BEFORE_UPDATE, updated), (CartEvent.AFTER_UPDATE, updated)]

    def test_update_unknown_row(self, cart):
        with pytest.raises(NotFoundError):
            cart.update("missing", 1)

    def test_update_invalid_quantity_leaves_item(self, cart):
        item = cart.add(shirt(qty=2))

        with pytest.raises(ValidationError):
            cart.update(item.row_id, "many")

        assert cart.get(item.row_id).qty == 2

    def test_update_name_keeps_row(self, cart):
        item = cart.add(shirt())

        updated = cart.update(item.row_id, FromArray({"name": "Polo"}))

        assert updated.row_id == item.row_id
        assert cart.get(item.row_id).name == "Polo"

    def test_update_options_changes_row_in_place(self, cart):
        """A new rowId is spliced into the old slot, not appended."""
        first = cart.add(FromAttributes(1, "A", price="1.00"))
        middle = cart.add(shirt(size="M"))
        last = cart.add(FromAttributes(2, "B", price="1.00"))

        updated = cart.update(middle.row_id, FromArray({"options": {"size": "XL"}}))

        assert updated.row_id != middle.row_id
        assert list(cart.content()) == [first.row_id, updated.row_id, last.row_id]
        with pytest.raises(NotFoundError):
            cart.get(middle.row_id)

    def test_update_collision_merges_at_original_slot(self, cart):
        """Colliding update merges into one row placed where the updated row was."""
        a = cart.add(shirt(size="L", qty=2))
        b = cart.add(FromAttributes(9, "Socks", price="3.00"))
        c = cart.add(shirt(size="M", qty=3))

        merged = cart.update(c.row_id, FromArray({"options": {"size": "L"}}))

        assert merged.row_id == a.row_id
        assert merged.qty == 5
        assert list(cart.content()) == [b.row_id, a.row_id]
        assert cart.count_items() == 2

    def test_update_collision_with_later_row(self, cart):
        a = cart.add(FromAttributes(1, "A", price="1.00"))
        m = cart.add(shirt(size="M", qty=1))
        b = cart.add(FromAttributes(2, "B", price="1.00"))
        lrow = cart.add(shirt(size="L", qty=4))

        merged = cart.update(m.row_id, FromArray({"options": {"size": "L"}}))

        assert merged.row_id == lrow.row_id
        assert merged.qty == 5
        assert list(cart.content()) == [a.row_id, lrow.row_id, b.row_id]

    def test_sequential_collisions(self, cart):
        """Two successive collisions each land in the updated row's slot."""
        s = cart.add(shirt(size="S"))
        m = cart.add(shirt(size="M"))
        x = cart.add(FromAttributes(1, "X", price="1.00"))
        lrow = cart.add(shirt(size="L"))

        cart.update(lrow.row_id, FromArray({"options": {"size": "M"}}))
        assert list(cart.content()) == [s.row_id, x.row_id, m.row_id]

        cart.update(s.row_id, FromArray({"options": {"size": "M"}}))
        assert list(cart.content()) == [m.row_id, x.row_id]
        assert cart.get(m.row_id).qty == 3

    def test_update_collision_to_zero_removes_both(self, cart):
        a = cart.add(shirt(size="L", qty=1))
        b = cart.add(shirt(size="M", qty=1))

        result = cart.update(b.row_id, FromArray({"options": {"size": "L"}, "qty": -1}))

        assert result is None
        assert cart.count_items() == 0
        with pytest.raises(NotFoundError):
            cart.get(a.row_id)

    def test_update_from_entity(self, cart, product, product_factory):
        item = cart.add(FromEntityReference(product))
        replacement = product_factory(202, "Grinder", "80.00")

        updated = cart.update(item.row_id, FromEntityReference(replacement))

        assert updated.id == 202
        assert updated.price == Decimal("80.00")
        assert cart.relations()[updated.row_id] is replacement
        assert item.row_id not in cart.relations()


class TestRemoveAndGet:
    """Tests for remove, get, search and destroy."""

    def test_remove(self, cart, observer):
        item = cart.add(shirt())
        observer.events.clear()

        cart.remove(item.row_id)

        assert cart.count_items() == 0
        assert observer.names == [CartEvent.BEFORE_REMOVE, CartEvent.AFTER_REMOVE]

    def test_remove_unknown(self, cart):
        with pytest.raises(NotFoundError) as exc:
            cart.remove("nope")
        assert exc.value.row_id == "nope"

    def test_get_unknown(self, cart):
        with pytest.raises(NotFoundError):
            cart.get("nope")

    def test_search(self, cart):
        """Search returns matches in cart order."""
        cart.add(FromAttributes(1, "Red mug", price="5.00"))
        cart.add(FromAttributes(2, "Pen", price="1.00"))
        cart.add(FromAttributes(3, "Blue mug", price="6.00"))

        found = cart.search(lambda item: "mug" in item.name)

        assert [item.id for item in found] == [1, 3]
        assert cart.count_items() == 3

    def test_destroy(self, cart, session_store):
        cart.add(shirt())

        cart.destroy()

        assert cart.content() == {}
        assert session_store.load("cart.default") is None

    def test_associate(self, cart, product_factory):
        item = cart.add(FromAttributes(101, "Espresso Machine", price="250.00"))

        cart.associate(item.row_id, product_factory)

        assert cart.get(item.row_id).associated_model.endswith(".Product")

    def test_associate_unknown_model(self, cart):
        item = cart.add(shirt())

        with pytest.raises(UnknownModelError):
            cart.associate(item.row_id, "shop.models.Nope")

        assert cart.get(item.row_id).associated_model is None


class TestRates:
    """Tests for per-item and global tax/discount rates."""

    def test_set_tax(self, cart):
        item = cart.add(shirt())

        cart.set_tax(item.row_id, 9)

        assert cart.get(item.row_id).tax_rate == 9

    def test_set_discount(self, cart, session_store):
        item = cart.add(shirt())

        cart.set_discount(item.row_id, 50)

        assert cart.get(item.row_id).discount_rate == 50
        assert session_store.load("cart.default")[item.row_id].discount_rate == 50

    def test_set_tax_unknown_row(self, cart):
        with pytest.raises(NotFoundError):
            cart.set_tax("nope", 10)

    def test_set_invalid_rate(self, cart):
        item = cart.add(shirt())

        with pytest.raises(ValidationError):
            cart.set_discount(item.row_id, -5)

        assert cart.get(item.row_id).discount_rate == 0

    def test_global_discount_is_retroactive(self, cart):
        """setGlobalDiscount reaches items that are already in the cart."""
        a = cart.add(FromAttributes(1, "A", price="10.00"))
        b = cart.add(FromAttributes(2, "B", price="20.00"))
        before = cart.total()

        cart.set_global_discount(10)

        assert cart.get(a.row_id).discount_rate == 10
        assert cart.get(b.row_id).discount_rate == 10
        assert cart.total() < before
        assert cart.discount() == Decimal("3.00")

    def test_global_tax_is_retroactive(self, cart):
        a = cart.add(FromAttributes(1, "A", price="10.00"))

        cart.set_global_tax(0)

        assert cart.get(a.row_id).tax_rate == 0
        assert cart.tax() == 0

    def test_keep_discount_and_tax(self, cart):
        from cartkit.cart import LineItem

        item = LineItem(id=1, name="A", price="10.00", tax_rate=7, discount_rate=3)

        added = cart.add_item(item, keep_discount=True, keep_tax=True)

        assert added.tax_rate == 7
        assert added.discount_rate == 3


class TestAggregations:
    """Tests for cart totals."""

    @pytest.fixture
    def filled(self, cart):
        cart.add(FromAttributes(1, "Mug", qty=2, price="10.00"))
        cart.add(FromAttributes(2, "Pen", qty=3, price="1.50"))
        cart.set_global_discount(10)
        return cart

    def test_count(self, filled):
        assert filled.count() == 5
        assert filled.count_items() == 2

    def test_totals(self, filled):
        # initial 24.50, discount 2.45, subtotal 22.05, tax 21% = 4.63
        assert filled.initial() == Decimal("24.50")
        assert filled.discount() == Decimal("2.45")
        assert filled.subtotal() == Decimal("22.05")
        assert filled.tax() == Decimal("4.63")
        assert filled.total() == Decimal("26.68")

    def test_total_is_subtotal_plus_tax(self, filled):
        assert filled.total() == filled.subtotal() + filled.tax()

    def test_subtotal_is_initial_minus_discount(self, filled):
        assert filled.subtotal() == filled.initial() - filled.discount()

    def test_fractional_quantity_keeps_totals_consistent(self, cart):
        """Rows round to cents, so the cart totals add up for any quantity."""
        cart.add(FromAttributes(1, "Cheese", qty="0.333", price="1.00"))
        cart.add(FromAttributes(2, "Saffron", qty="1.5", price="3.333"))
        cart.set_global_discount("12.5")

        assert cart.initial() == Decimal("0.33") + Decimal("5.00")
        assert cart.subtotal() == cart.initial() - cart.discount()
        assert cart.total() == cart.subtotal() + cart.tax()

    def test_price_total_discounted(self, filled):
        assert filled.price_total_discounted() == filled.subtotal()

    def test_empty_cart(self, cart):
        assert cart.total() == 0
        assert cart.count() == 0

    def test_format_amount(self, filled):
        assert filled.format_amount(Decimal("1234.5")) == "1,234.50"
        assert filled.format_amount(Decimal("1234.5"), 1, ",", ".") == "1.234,5"

    def test_with_currency(self, filled):
        assert filled.with_currency(filled.total()) == "$ 26.68"

    def test_summary(self, filled):
        summary = filled.summary()

        assert summary["is_empty"] is False
        assert summary["count_items"] == 2
        assert summary["total"] == Decimal("26.68")
        assert summary["formatted"]["total"] == "$ 26.68"
        assert [row["name"] for row in summary["items"]] == ["Mug", "Pen"]


class TestNotifications:
    """Observer failures never fail cart operations."""

    def test_failing_observer_is_swallowed(self, session_store, durable_store, settings):
        from cartkit.cart import EventDispatcher

        class Broken:
            def notify(self, event, payload):
                raise RuntimeError("listener down")

        cart = CartStore(session_store, durable_store, "default", EventDispatcher([Broken()]), settings)

        item = cart.add(shirt())
        cart.update(item.row_id, 3)
        cart.remove(item.row_id)

        assert cart.count_items() == 0

    def test_unsubscribe(self, cart, dispatcher, observer):
        dispatcher.unsubscribe(observer)
        cart.add(shirt())
        assert observer.events == []


class TestSessionCache:
    """Tests for lazy loading from the session store."""

    def test_content_loaded_from_session(self, cart, session_store, durable_store, settings):
        item = cart.add(shirt(qty=2))

        other = CartStore(session_store, durable_store, "default", settings=settings)

        assert other.get(item.row_id).qty == 2

    def test_instances_are_independent(self, manager):
        manager.instance("default").add(shirt())
        manager.instance("wishlist").add(FromAttributes(1, "Book", price="12.00"))

        assert manager.instance("default").count_items() == 1
        assert manager.instance("wishlist").search(lambda item: item.name == "Book")
        assert manager.instances() == ["default", "wishlist"]

    def test_instance_is_cached(self, manager):
        assert manager.instance("wishlist") is manager.instance("wishlist")
        assert manager.instance() is manager.instance("default")

    def test_instance_identifier_sets_discount(self, manager, customer_factory):
        cart = manager.instance(customer_factory("vip@example.com", discount=15))

        item = cart.add(FromAttributes(1, "Mug", price="10.00"))

        assert cart.instance == "vip@example.com"
        assert item.discount_rate == 15

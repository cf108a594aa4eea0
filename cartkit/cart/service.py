"""Cart store service: line-item bookkeeping over session and durable stores."""
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from cartkit.config import DEFAULT_INSTANCE, CartSettings, load_settings
from cartkit.errors import ERROR_INVALID_QUANTITY, NotFoundError, ValidationError
from cartkit.logging import get_logger, sanitize_id_for_logging
from cartkit.services.money import Number, number_format
from .events import CartEvent, CartObserver, EventDispatcher
from .models import (
    Buyable,
    FromArray,
    FromEntityReference,
    InstanceIdentifier,
    ItemChange,
    ItemSource,
    LineItem,
    items_from_sources,
    model_path,
    validate_rate,
)
from .storage import (
    Content,
    DurableStore,
    RedisSessionStore,
    SessionStore,
    SupabaseDurableStore,
    utcnow,
)

logger = get_logger(__name__)

Identifier = Union[str, int, InstanceIdentifier]


def _identifier(identifier: Identifier) -> str:
    if isinstance(identifier, InstanceIdentifier):
        return str(identifier.instance_identifier())
    return str(identifier)


class CartStore:
    """
    One named cart instance.

    Content is an ordered mapping rowId -> LineItem. It is loaded lazily
    from the session store, cached in memory, and written back in full on
    every mutation. Stored items are never mutated in place: every change
    builds a new LineItem, so a rejected call leaves the cart untouched.
    """

    def __init__(
        self,
        session: SessionStore,
        durable: DurableStore,
        instance: str = DEFAULT_INSTANCE,
        events: Optional[EventDispatcher] = None,
        settings: Optional[CartSettings] = None,
    ) -> None:
        self.settings = settings or CartSettings()
        self.instance = instance
        self.tax_rate: Decimal = self.settings.tax_rate
        self.discount_rate: Decimal = self.settings.discount_rate
        self._session = session
        self._durable = durable
        self._events = events or EventDispatcher()
        self._session_key = f"cart.{instance}"
        self._cache: Optional[Content] = None
        self._relations: Dict[str, Any] = {}
        self._created_at: Optional[datetime] = None
        self._updated_at: Optional[datetime] = None

    # -- content plumbing --------------------------------------------------

    def _get_content(self) -> Content:
        """Working copy of the content (items are shared, the mapping is not)."""
        if self._cache is None:
            self._cache = self._session.load(self._session_key) or {}
        return dict(self._cache)

    def _set_content(self, content: Content) -> None:
        self._session.save(self._session_key, content)
        self._cache = content

    def content(self) -> Content:
        """Ordered copy of the current content."""
        return self._get_content()

    def destroy(self) -> None:
        """Drop this instance from memory and the session store."""
        self._session.forget(self._session_key)
        self._cache = {}
        self._relations = {}
        logger.debug("Cart instance %s destroyed", self.instance)

    # -- line items ----------------------------------------------------------

    def add(
        self,
        source: Union[ItemSource, Sequence[ItemSource]],
        keep_discount: bool = False,
        keep_tax: bool = False,
        dispatch: bool = True,
    ) -> Union[LineItem, List[LineItem]]:
        """
        Add an item (or a list of items) to the cart.

        An item whose rowId is already present is merged: quantities are
        summed and the row keeps its position.
        """
        if isinstance(source, (list, tuple)):
            items = items_from_sources(list(source), self.instance)
            for item in items:
                self._check_addable(item)
            return [self.add_item(item, keep_discount, keep_tax, dispatch) for item in items]

        item = source.to_item(self.instance)
        added = self.add_item(item, keep_discount, keep_tax, dispatch)
        if isinstance(source, FromEntityReference):
            self._relations[added.row_id] = source.entity
        return added

    def add_item(
        self,
        item: LineItem,
        keep_discount: bool = False,
        keep_tax: bool = False,
        dispatch: bool = True,
    ) -> LineItem:
        """Add an already built LineItem, applying the cart-wide rates."""
        self._check_addable(item)

        changes: Dict[str, Any] = {"instance": self.instance}
        if not keep_discount:
            changes["discount_rate"] = self.discount_rate
        if not keep_tax:
            changes["tax_rate"] = self.tax_rate
        item = item.copy(**changes)

        content = self._get_content()
        existing = content.get(item.row_id)
        if existing is not None:
            item.qty += existing.qty
        content[item.row_id] = item

        if dispatch:
            self._events.notify(CartEvent.BEFORE_ADD, item)

        self._set_content(content)
        logger.debug("Added %s x%s to cart %s", sanitize_id_for_logging(item.row_id), item.qty, self.instance)

        if dispatch:
            self._events.notify(CartEvent.AFTER_ADD, item)

        return item

    def _check_addable(self, item: LineItem) -> None:
        if item.qty < 0:
            raise ValidationError(ERROR_INVALID_QUANTITY)

    def update(self, row_id: str, change: Union[Number, ItemChange]) -> Optional[LineItem]:
        """
        Update the item with the given rowId.

        `change` is either a new quantity, a FromArray with the fields to
        replace, or a FromEntityReference to re-read id/name/price from.

        Returns the updated item, or None when the resulting quantity is
        zero or less and the item was removed instead.
        """
        item = self.get(row_id)

        if isinstance(change, (FromArray, FromEntityReference)):
            updated = change.apply_to(item)
        else:
            updated = item.copy(qty=change)

        content = self._get_content()
        old_index: Optional[int] = None

        if updated.row_id != row_id:
            keys = list(content)
            old_index = keys.index(row_id)
            del content[row_id]

            existing = content.pop(updated.row_id, None)
            if existing is not None:
                if keys.index(updated.row_id) < old_index:
                    old_index -= 1
                updated.qty = existing.qty + updated.qty

            relation = self._relations.pop(row_id, None)
            if relation is not None:
                self._relations[updated.row_id] = relation

        if isinstance(change, FromEntityReference):
            self._relations[updated.row_id] = change.entity

        if updated.qty <= 0:
            content.pop(row_id, None)
            self._events.notify(CartEvent.BEFORE_REMOVE, item)
            self._set_content(content)
            self._relations.pop(updated.row_id, None)
            logger.debug("Removed %s from cart %s on update", sanitize_id_for_logging(row_id), self.instance)
            self._events.notify(CartEvent.AFTER_REMOVE, item)
            return None

        if old_index is not None:
            entries = list(content.items())
            entries.insert(old_index, (updated.row_id, updated))
            content = dict(entries)
        else:
            content[row_id] = updated

        self._events.notify(CartEvent.BEFORE_UPDATE, updated)
        self._set_content(content)
        logger.debug("Updated %s in cart %s", sanitize_id_for_logging(updated.row_id), self.instance)
        self._events.notify(CartEvent.AFTER_UPDATE, updated)

        return updated

    def remove(self, row_id: str) -> None:
        """Remove the item with the given rowId."""
        item = self.get(row_id)

        content = self._get_content()
        del content[row_id]

        self._events.notify(CartEvent.BEFORE_REMOVE, item)
        self._set_content(content)
        self._relations.pop(row_id, None)
        logger.debug("Removed %s from cart %s", sanitize_id_for_logging(row_id), self.instance)
        self._events.notify(CartEvent.AFTER_REMOVE, item)

    def get(self, row_id: str) -> LineItem:
        content = self._get_content()
        if row_id not in content:
            raise NotFoundError(row_id)
        return content[row_id]

    def search(self, predicate: Callable[[LineItem], bool]) -> List[LineItem]:
        """Items matching the predicate, in cart order."""
        return [item for item in self._get_content().values() if predicate(item)]

    def associate(self, row_id: str, model: Any) -> None:
        """Associate a row with a model class (or its dotted path)."""
        path = model_path(model)
        item = self.get(row_id)
        self._replace(item.copy(associated_model=path))

    def _replace(self, item: LineItem) -> None:
        content = self._get_content()
        content[item.row_id] = item
        self._set_content(content)

    # -- rates ---------------------------------------------------------------

    def set_tax(self, row_id: str, tax_rate: Number) -> None:
        item = self.get(row_id)
        self._replace(item.copy(tax_rate=tax_rate))

    def set_discount(self, row_id: str, discount_rate: Number) -> None:
        item = self.get(row_id)
        self._replace(item.copy(discount_rate=discount_rate))

    def set_global_tax(self, tax_rate: Number) -> None:
        """Set the cart-wide tax rate and apply it to every item."""
        self.tax_rate = validate_rate(tax_rate, "tax")
        content = self._get_content()
        if content:
            self._set_content({key: item.copy(tax_rate=self.tax_rate) for key, item in content.items()})

    def set_global_discount(self, discount_rate: Number) -> None:
        """Set the cart-wide discount rate and apply it to every item."""
        self.discount_rate = validate_rate(discount_rate, "discount")
        content = self._get_content()
        if content:
            self._set_content(
                {key: item.copy(discount_rate=self.discount_rate) for key, item in content.items()}
            )

    # -- aggregations --------------------------------------------------------

    def _sum(self, value: Callable[[LineItem], Decimal]) -> Decimal:
        return sum((value(item) for item in self._get_content().values()), Decimal("0"))

    def count(self) -> Decimal:
        """Total quantity of all items."""
        return self._sum(lambda item: item.qty)

    def count_items(self) -> int:
        """Number of distinct rows (does not count quantity)."""
        return len(self._get_content())

    def initial(self) -> Decimal:
        """qty x price over all rows, before discount and tax."""
        return self._sum(lambda item: item.price_total)

    def price_total(self) -> Decimal:
        """qty x price over all rows, rounded per row."""
        return self._sum(lambda item: item.price_total)

    def discount(self) -> Decimal:
        return self._sum(lambda item: item.discount_total)

    def price_total_discounted(self) -> Decimal:
        return self.price_total() - self.discount()

    def subtotal(self) -> Decimal:
        """Price after discount, before tax."""
        return self._sum(lambda item: item.subtotal)

    def tax(self) -> Decimal:
        return self._sum(lambda item: item.tax_total)

    def total(self) -> Decimal:
        return self._sum(lambda item: item.total)

    # -- formatting ----------------------------------------------------------

    def format_amount(
        self,
        value: Number,
        decimals: Optional[int] = None,
        decimal_point: Optional[str] = None,
        thousands_separator: Optional[str] = None,
    ) -> str:
        """Format an amount with the configured (or given) separators."""
        currency = self.settings.currency
        return number_format(
            value,
            currency.decimals if decimals is None else decimals,
            self.settings.decimal_point if decimal_point is None else decimal_point,
            self.settings.thousands_separator if thousands_separator is None else thousands_separator,
        )

    def with_currency(self, value: Number) -> str:
        """Formatted amount with the currency symbol on the configured side."""
        return self.settings.currency.format(self.format_amount(value))

    def summary(self) -> dict:
        """Totals and rows for templates or API responses."""
        content = self._get_content()
        totals = {
            "initial": self.initial(),
            "discount": self.discount(),
            "subtotal": self.subtotal(),
            "tax": self.tax(),
            "total": self.total(),
        }
        return {
            "instance": self.instance,
            "is_empty": not content,
            "count": self.count(),
            "count_items": len(content),
            "items": [
                {
                    "row_id": item.row_id,
                    "id": item.id,
                    "name": item.name,
                    "qty": item.qty,
                    "price": item.price,
                    "options": item.options,
                    "subtotal": item.subtotal,
                    "total": item.total,
                }
                for item in content.values()
            ],
            **totals,
            "formatted": {name: self.with_currency(value) for name, value in totals.items()},
        }

    # -- relations -------------------------------------------------------------

    def relations(self) -> Dict[str, Any]:
        """Entities attached to rows added from a Buyable or refreshed."""
        return dict(self._relations)

    def refresh(
        self,
        fetch: Callable[[List[Any]], Iterable[Buyable]],
        identifier: Optional[Identifier] = None,
    ) -> Content:
        """
        Re-price content from the catalog.

        `fetch` receives the product ids in the cart and returns the
        matching Buyables. Rows whose product is gone are dropped; quantity
        and rates are kept. The cart is stored when an identifier is given.
        """
        content = self._get_content()
        refreshed: Content = {}

        if content:
            entities = list(fetch([item.id for item in content.values()]))
            relations: Dict[str, Any] = {}
            for item in content.values():
                entity = next(
                    (e for e in entities if e.buyable_identifier(item.options) == item.id),
                    None,
                )
                if entity is None:
                    logger.debug("Dropping %s: product no longer available", sanitize_id_for_logging(item.row_id))
                    continue

                fresh = FromEntityReference(entity, qty=item.qty or 1, options=item.options).to_item(self.instance)
                fresh = fresh.copy(discount_rate=item.discount_rate, tax_rate=item.tax_rate)
                refreshed[fresh.row_id] = fresh
                relations[fresh.row_id] = entity

            self._relations = relations
            self._set_content(refreshed)

        if identifier is not None:
            self.store(identifier)

        return refreshed

    # -- durable storage -------------------------------------------------------

    @property
    def created_at(self) -> Optional[datetime]:
        return self._created_at

    @property
    def updated_at(self) -> Optional[datetime]:
        return self._updated_at

    def store(self, identifier: Identifier) -> "CartStore":
        """Save the current content under (identifier, instance)."""
        identifier = _identifier(identifier)
        content = self._get_content()
        now = utcnow()
        created_at = self._created_at or now

        self._durable.upsert(identifier, self.instance, content, created_at, now)
        self._created_at = created_at
        self._updated_at = now

        logger.info(
            "Stored cart %s for %s (%d rows)",
            self.instance,
            sanitize_id_for_logging(identifier),
            len(content),
        )
        self._events.notify(CartEvent.STORED, {"identifier": identifier, "instance": self.instance})
        return self

    def restore(self, identifier: Identifier) -> "CartStore":
        """Replace the content with the stored cart; no-op when nothing is stored."""
        identifier = _identifier(identifier)
        stored = self._durable.fetch(identifier, self.instance)
        if stored is None:
            return self

        self._set_content(stored.items())
        self._created_at = stored.created_at
        self._updated_at = stored.updated_at

        logger.info("Restored cart %s for %s", self.instance, sanitize_id_for_logging(identifier))
        self._events.notify(CartEvent.RESTORED, {"identifier": identifier, "instance": self.instance})
        return self

    def erase(self, identifier: Identifier) -> None:
        """Delete the stored cart; no-op when nothing is stored."""
        identifier = _identifier(identifier)
        if not self._durable.exists(identifier, self.instance):
            return

        self._durable.delete(identifier, self.instance)
        logger.info("Erased cart %s for %s", self.instance, sanitize_id_for_logging(identifier))
        self._events.notify(CartEvent.ERASED, {"identifier": identifier, "instance": self.instance})

    def destroy_and_delete(self, identifier: Optional[Identifier] = None) -> "CartStore":
        """Destroy the session content and, with an identifier, the stored cart."""
        self.destroy()

        if identifier is not None:
            identifier = _identifier(identifier)
            # delete is idempotent, no exists() round trip needed
            self._durable.delete(identifier, self.instance)
            self._events.notify(CartEvent.DELETED, {"identifier": identifier, "instance": self.instance})

        return self

    def merge(
        self,
        identifier: Identifier,
        keep_discount: bool = False,
        keep_tax: bool = False,
        dispatch_add: bool = True,
        instance: str = DEFAULT_INSTANCE,
    ) -> bool:
        """
        Add every item of a stored cart to this one.

        Returns False when no cart is stored under (identifier, instance).
        """
        identifier = _identifier(identifier)
        if not self._durable.exists(identifier, instance):
            return False

        stored = self._durable.fetch(identifier, instance)
        if stored is None:
            return False

        return self.merge_content(stored.items(), keep_discount, keep_tax, dispatch_add)

    def merge_content(
        self,
        content: Optional[Content],
        keep_discount: bool = False,
        keep_tax: bool = False,
        dispatch_add: bool = True,
    ) -> bool:
        """Add every item of another cart's content; False when there is none."""
        if content is None:
            return False

        for item in content.values():
            self.add_item(item, keep_discount, keep_tax, dispatch_add)

        logger.info("Merged %d rows into cart %s", len(content), self.instance)
        self._events.notify(CartEvent.MERGED, {"instance": self.instance, "rows": len(content)})
        return True


class CartManager:
    """
    Per-session entry point handing out CartStore instances by name.

    Instances are created on first access and cached for the lifetime of
    the manager.
    """

    def __init__(
        self,
        session: SessionStore,
        durable: DurableStore,
        events: Optional[EventDispatcher] = None,
        settings: Optional[CartSettings] = None,
    ) -> None:
        self.session = session
        self.durable = durable
        self.events = events or EventDispatcher()
        self.settings = settings or CartSettings()
        self._stores: Dict[str, CartStore] = {}

    def instance(self, instance: Optional[Union[str, InstanceIdentifier]] = None) -> CartStore:
        """
        Get the cart for an instance name.

        An InstanceIdentifier names the instance and also sets its default
        discount rate for subsequent additions.
        """
        discount = None
        if isinstance(instance, InstanceIdentifier):
            discount = validate_rate(instance.instance_global_discount(), "discount")
            instance = instance.instance_identifier()

        name = str(instance or DEFAULT_INSTANCE)
        store = self._stores.get(name)
        if store is None:
            store = CartStore(self.session, self.durable, name, self.events, self.settings)
            self._stores[name] = store

        if discount is not None:
            store.discount_rate = discount
        return store

    def instances(self) -> List[str]:
        """Names of the instances accessed so far."""
        return list(self._stores)


def create_cart_manager(
    session_id: str,
    settings: Optional[CartSettings] = None,
    observers: Iterable[CartObserver] = (),
) -> CartManager:
    """Cart manager on Upstash Redis (session) and Supabase (durable store)."""
    settings = settings or load_settings()
    return CartManager(
        session=RedisSessionStore(session_id, ttl=settings.session_ttl),
        durable=SupabaseDurableStore(table=settings.db_table),
        events=EventDispatcher(observers),
        settings=settings,
    )

"""Cart models with Decimal-based pricing."""
import copy
import hashlib
import importlib
import json
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Union, runtime_checkable

from cartkit.errors import (
    ERROR_INVALID_ID,
    ERROR_INVALID_NAME,
    ERROR_INVALID_OPTIONS,
    ERROR_INVALID_PRICE,
    ERROR_INVALID_QUANTITY,
    ERROR_INVALID_RATE,
    UnknownModelError,
    ValidationError,
)
from cartkit.services.money import Number, parse_decimal, percent, round_money


@runtime_checkable
class Buyable(Protocol):
    """A priceable entity of the host application (a product, a plan...)."""

    def buyable_identifier(self, options: Optional[Mapping[str, Any]] = None) -> Any:
        ...

    def buyable_description(self, options: Optional[Mapping[str, Any]] = None) -> str:
        ...

    def buyable_price(self, options: Optional[Mapping[str, Any]] = None) -> Number:
        ...


@runtime_checkable
class InstanceIdentifier(Protocol):
    """An owner (usually a user) that names a cart instance and its discount."""

    def instance_identifier(self) -> str:
        ...

    def instance_global_discount(self) -> Number:
        ...


def generate_row_id(item_id: Any, options: Mapping[str, Any]) -> str:
    """Deterministic row key from product id and (sorted) options."""
    payload = json.dumps([item_id, options], sort_keys=True, separators=(",", ":"))
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


def model_path(model: Any) -> str:
    """
    Dotted import path for a model class, instance or path string.

    Raises UnknownModelError when the class cannot be imported.
    """
    if isinstance(model, str):
        resolve_model(model)
        return model
    cls = model if isinstance(model, type) else type(model)
    if "<locals>" in cls.__qualname__:
        raise UnknownModelError(cls.__qualname__)
    return f"{cls.__module__}.{cls.__qualname__}"


def resolve_model(path: str) -> type:
    """Import a class from its dotted path."""
    module_name, _, attr = path.rpartition(".")
    if not module_name:
        raise UnknownModelError(path)
    try:
        target: Any = importlib.import_module(module_name)
    except ImportError:
        # Nested class: import the outer module and walk the qualname
        outer, _, nested = module_name.rpartition(".")
        if not outer:
            raise UnknownModelError(path)
        try:
            target = getattr(importlib.import_module(outer), nested)
        except (ImportError, AttributeError):
            raise UnknownModelError(path)
    try:
        cls = getattr(target, attr)
    except AttributeError:
        raise UnknownModelError(path)
    if not isinstance(cls, type):
        raise UnknownModelError(path)
    return cls


def _require_decimal(value: Any, message: str) -> Decimal:
    d = parse_decimal(value)
    if d is None:
        raise ValidationError(message)
    return d


def validate_rate(value: Any, kind: str) -> Decimal:
    d = parse_decimal(value)
    if d is None or d < 0 or d > 100:
        raise ValidationError(ERROR_INVALID_RATE.format(kind=kind))
    return d


@dataclass
class LineItem:
    """
    Single row in a cart.

    `row_id` is derived from `id` and `options` and recomputed on every
    construction, so two items with the same identity always collide.
    """
    id: Any
    name: str
    price: Decimal
    qty: Decimal = Decimal("1")
    options: Dict[str, Any] = field(default_factory=dict)
    tax_rate: Decimal = Decimal("0")
    discount_rate: Decimal = Decimal("0")
    associated_model: Optional[str] = None
    instance: Optional[str] = None
    row_id: str = field(init=False)

    def __post_init__(self):
        if not isinstance(self.id, (str, int)) or isinstance(self.id, bool):
            raise ValidationError(ERROR_INVALID_ID)
        if isinstance(self.id, str) and not self.id.strip():
            raise ValidationError(ERROR_INVALID_ID)
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValidationError(ERROR_INVALID_NAME)
        if not isinstance(self.options, Mapping) or not all(isinstance(k, str) for k in self.options):
            raise ValidationError(ERROR_INVALID_OPTIONS)
        try:
            json.dumps(self.options)
        except (TypeError, ValueError):
            raise ValidationError(ERROR_INVALID_OPTIONS)

        self.price = _require_decimal(self.price, ERROR_INVALID_PRICE)
        if self.price < 0:
            raise ValidationError(ERROR_INVALID_PRICE)
        self.qty = _require_decimal(self.qty, ERROR_INVALID_QUANTITY)
        self.tax_rate = validate_rate(self.tax_rate, "tax")
        self.discount_rate = validate_rate(self.discount_rate, "discount")
        self.options = copy.deepcopy(dict(self.options))
        self.row_id = generate_row_id(self.id, self.options)

    # -- per-unit amounts --------------------------------------------------

    @property
    def discount(self) -> Decimal:
        """Discount for a single unit."""
        return percent(self.price, self.discount_rate)

    @property
    def price_target(self) -> Decimal:
        """Unit price after discount, before tax."""
        return self.price - self.discount

    @property
    def tax(self) -> Decimal:
        """Tax for a single unit."""
        return percent(self.price_target, self.tax_rate)

    @property
    def price_tax(self) -> Decimal:
        """Unit price after discount, including tax."""
        return self.price_target + self.tax

    # -- row amounts (rounded to cents) ------------------------------------

    @property
    def price_total(self) -> Decimal:
        """qty x price, before discount and tax."""
        return round_money(self.price * self.qty)

    @property
    def discount_total(self) -> Decimal:
        return round_money(percent(self.price_total, self.discount_rate))

    @property
    def subtotal(self) -> Decimal:
        """Row price after discount, before tax."""
        return self.price_total - self.discount_total

    @property
    def tax_total(self) -> Decimal:
        # Same basis as subtotal so cart totals stay consistent
        return round_money(percent(self.subtotal, self.tax_rate))

    @property
    def total(self) -> Decimal:
        return self.subtotal + self.tax_total

    # -- mutation helpers --------------------------------------------------

    def copy(self, **changes: Any) -> "LineItem":
        """Validated copy with some fields changed; row_id is recomputed."""
        return replace(self, **changes)

    def model(self, loader: Optional[Callable[[type, Any], Any]] = None) -> Any:
        """
        Resolve the associated entity.

        With a loader, returns `loader(model_class, id)`. Without one, the
        model class must expose a `find(id)` classmethod.
        """
        if not self.associated_model:
            return None
        cls = resolve_model(self.associated_model)
        if loader is not None:
            return loader(cls, self.id)
        finder = getattr(cls, "find", None)
        if finder is None:
            raise UnknownModelError(self.associated_model)
        return finder(self.id)

    # -- serialization -----------------------------------------------------

    def to_dict(self) -> dict:
        """Convert to a JSON-safe dictionary."""
        return {
            "row_id": self.row_id,
            "id": self.id,
            "name": self.name,
            "qty": str(self.qty),
            "price": str(self.price),
            "options": copy.deepcopy(self.options),
            "tax_rate": str(self.tax_rate),
            "discount_rate": str(self.discount_rate),
            "associated_model": self.associated_model,
            "instance": self.instance,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LineItem":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            name=data["name"],
            price=data["price"],
            qty=data.get("qty", 1),
            options=data.get("options") or {},
            tax_rate=data.get("tax_rate", 0),
            discount_rate=data.get("discount_rate", 0),
            associated_model=data.get("associated_model"),
            instance=data.get("instance"),
        )


# -- item sources ---------------------------------------------------------


@dataclass(frozen=True)
class FromAttributes:
    """Plain attributes supplied by the caller."""
    id: Any
    name: str
    qty: Number = 1
    price: Number = 0
    options: Mapping[str, Any] = field(default_factory=dict)

    def to_item(self, instance: Optional[str] = None) -> LineItem:
        return LineItem(
            id=self.id,
            name=self.name,
            price=self.price,
            qty=self.qty,
            options=self.options,
            instance=instance,
        )


@dataclass(frozen=True)
class FromEntityReference:
    """A Buyable entity; id, name and price come from the entity itself."""
    entity: Buyable
    qty: Number = 1
    options: Mapping[str, Any] = field(default_factory=dict)

    def to_item(self, instance: Optional[str] = None) -> LineItem:
        options = dict(self.options)
        return LineItem(
            id=self.entity.buyable_identifier(options),
            name=self.entity.buyable_description(options),
            price=self.entity.buyable_price(options),
            qty=self.qty,
            options=options,
            associated_model=model_path(self.entity),
            instance=instance,
        )

    def apply_to(self, item: LineItem) -> LineItem:
        return item.copy(
            id=self.entity.buyable_identifier(item.options),
            name=self.entity.buyable_description(item.options),
            price=self.entity.buyable_price(item.options),
        )


@dataclass(frozen=True)
class FromArray:
    """A mapping with `id`, `name`, `price` and optional `qty` / `options`."""
    data: Mapping[str, Any]

    def to_item(self, instance: Optional[str] = None) -> LineItem:
        for key, message in (("id", ERROR_INVALID_ID), ("name", ERROR_INVALID_NAME), ("price", ERROR_INVALID_PRICE)):
            if key not in self.data:
                raise ValidationError(message)
        return LineItem(
            id=self.data["id"],
            name=self.data["name"],
            price=self.data["price"],
            qty=self.data.get("qty", 1),
            options=self.data.get("options") or {},
            instance=instance,
        )

    def apply_to(self, item: LineItem) -> LineItem:
        """Partial update: only keys present in the mapping change."""
        changes = {
            key: self.data[key]
            for key in ("id", "name", "qty", "price", "options")
            if key in self.data
        }
        if "options" in changes and changes["options"] is None:
            changes["options"] = {}
        return item.copy(**changes)


ItemSource = Union[FromAttributes, FromEntityReference, FromArray]
ItemChange = Union[FromEntityReference, FromArray]


def items_from_sources(sources: List[ItemSource], instance: Optional[str] = None) -> List[LineItem]:
    """Resolve every source up front so a bad entry rejects the whole batch."""
    return [source.to_item(instance) for source in sources]

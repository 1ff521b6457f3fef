"""
Agrégat panier.
Invariant: toutes les lignes partagent le même mode (abonnement ou produits physiques);
un panier abonnement contient au plus une ligne.
"""
from typing import Any, Dict, List, Optional
from uuid import uuid4

from storefront import policy
from storefront.errors import CartModeConflictError

MODE_EMPTY = "empty"
MODE_PHYSICAL = "physical"
MODE_SUBSCRIPTION = "subscription"

class CartLine:
    def __init__(
        self,
        product_id: str,
        quantity: int,
        unit_price: float,
        price_adjustment: float = 0.0,
        variant_id: Optional[str] = None,
        is_subscription: bool = False,
        subscription_selector: Optional[Dict[str, Any]] = None,
        name: str = "",
        color: Optional[str] = None,
        image_url: Optional[str] = None,
        description: Optional[str] = None,
        line_id: Optional[str] = None,
    ):
        self.line_id = line_id or uuid4().hex
        self.product_id = str(product_id)
        self.variant_id = str(variant_id) if variant_id else None
        self.quantity = int(quantity)
        self.unit_price = float(unit_price)
        self.price_adjustment = float(price_adjustment or 0)
        self.is_subscription = bool(is_subscription)
        self.subscription_selector = subscription_selector
        self.name = name
        self.color = color
        self.image_url = image_url
        self.description = description

    @property
    def effective_unit_price(self) -> float:
        # Le prix unitaire d'un abonnement intègre déjà la remise du palier
        if self.is_subscription:
            return self.unit_price
        return policy.money(self.unit_price + self.price_adjustment)

    @property
    def line_total(self) -> float:
        return policy.money(self.effective_unit_price * self.quantity)

    def matches(self, product_id: str, variant_id: Optional[str]) -> bool:
        return self.product_id == str(product_id) and self.variant_id == (str(variant_id) if variant_id else None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "line_id": self.line_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "price_adjustment": self.price_adjustment,
            "is_subscription": self.is_subscription,
            "subscription_selector": self.subscription_selector,
            "name": self.name,
            "color": self.color,
            "image_url": self.image_url,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CartLine":
        return cls(
            product_id=data["product_id"],
            quantity=data["quantity"],
            unit_price=data["unit_price"],
            price_adjustment=data.get("price_adjustment") or 0.0,
            variant_id=data.get("variant_id"),
            is_subscription=data.get("is_subscription", False),
            subscription_selector=data.get("subscription_selector"),
            name=data.get("name") or "",
            color=data.get("color"),
            image_url=data.get("image_url"),
            description=data.get("description"),
            line_id=data.get("line_id"),
        )


class Cart:
    """
    Panier d'une session (un seul écrivain: la session du navigateur).
    Les lignes sont construites à partir des lignes du catalogue, jamais d'un prix client.
    """

    def __init__(self, lines: Optional[List[CartLine]] = None):
        self.lines: List[CartLine] = list(lines or [])

    @property
    def mode(self) -> str:
        if not self.lines:
            return MODE_EMPTY
        return MODE_SUBSCRIPTION if self.lines[0].is_subscription else MODE_PHYSICAL

    def is_mixed(self) -> bool:
        return len({line.is_subscription for line in self.lines}) > 1

    def add_line(
        self,
        item: Dict[str, Any],
        quantity: int,
        variant: Optional[Dict[str, Any]] = None,
        subscription_selector: Optional[Dict[str, Any]] = None,
    ) -> CartLine:
        """
        Ajoute un produit du catalogue.
        - Mode différent des lignes existantes: CartModeConflictError, panier inchangé
        - Abonnement: remplace toutes les lignes (0 ou 1 sélection)
        - Physique: cumule la quantité sur la paire (produit, variante), sinon nouvelle ligne
        """
        wants_subscription = subscription_selector is not None
        if self.lines and self.lines[0].is_subscription != wants_subscription:
            if wants_subscription:
                raise CartModeConflictError(
                    "Votre panier contient des articles: videz-le avant d'ajouter un abonnement"
                )
            raise CartModeConflictError(
                "Votre panier contient un abonnement: videz-le avant d'ajouter des articles"
            )

        if wants_subscription:
            return self._set_subscription(item, subscription_selector)

        qty = int(quantity)
        if qty <= 0:
            raise ValueError("quantity must be positive")
        variant_id = (variant or {}).get("id")
        for line in self.lines:
            if line.matches(item["id"], variant_id):
                line.quantity += qty
                return line

        line = CartLine(
            product_id=item["id"],
            variant_id=variant_id,
            quantity=qty,
            unit_price=float(item.get("price") or 0),
            price_adjustment=float((variant or {}).get("price_adjustment") or 0),
            name=item.get("name") or "",
            color=(variant or {}).get("color_name"),
            image_url=(variant or {}).get("image_url") or item.get("image_url"),
            description=item.get("description"),
        )
        self.lines.append(line)
        return line

    def _set_subscription(self, item: Dict[str, Any], selector: Dict[str, Any]) -> CartLine:
        quantity_type = str(selector.get("quantity_type") or "")
        quantity, discount = policy.subscription_discount(quantity_type, selector.get("quantity"))
        line = CartLine(
            product_id=item["id"],
            quantity=quantity,
            unit_price=policy.subscription_unit_price(float(item.get("price") or 0), discount),
            is_subscription=True,
            subscription_selector={
                "quantity_type": quantity_type.strip().lower(),
                "quantity": quantity,
                "discount_percent": discount,
                "base_price": float(item.get("price") or 0),
                "billing_interval": policy.SUBSCRIPTION_INTERVAL,
            },
            name=item.get("name") or "",
            image_url=item.get("image_url"),
            description=item.get("description"),
        )
        self.lines = [line]
        return line

    def _resize_subscription(self, line: CartLine, quantity: int) -> None:
        selector = line.subscription_selector or {}
        base_price = selector.get("base_price")
        if base_price is None:
            # Panier de session antérieur: prix catalogue retrouvé depuis la remise appliquée
            discount = int(selector.get("discount_percent") or 0)
            base_price = policy.money(line.unit_price / (1 - discount / 100))
        item = {
            "id": line.product_id,
            "price": base_price,
            "name": line.name,
            "image_url": line.image_url,
            "description": line.description,
        }
        resized = self._set_subscription(item, {
            "quantity_type": policy.subscription_tier_for_quantity(quantity),
            "quantity": quantity,
        })
        resized.line_id = line.line_id

    def update_quantity(self, product_id: str, quantity: int, variant_id: Optional[str] = None) -> None:
        """
        Quantité <= 0: retire la ligne.
        Abonnement: la nouvelle quantité repasse par les paliers (palier prédéfini correspondant,
        sinon quantité libre), remise et prix unitaire recalculés; InvalidSubscriptionSelection
        si elle est refusée, panier inchangé.
        """
        if quantity <= 0:
            self.remove_line(product_id, variant_id)
            return
        for line in self.lines:
            if line.matches(product_id, variant_id):
                if line.is_subscription:
                    self._resize_subscription(line, int(quantity))
                    return
                line.quantity = int(quantity)
                return

    def remove_line(self, product_id: str, variant_id: Optional[str] = None) -> None:
        self.lines = [line for line in self.lines if not line.matches(product_id, variant_id)]

    def get_total(self) -> float:
        return policy.money(sum(line.line_total for line in self.lines))

    def get_item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    def clear(self) -> None:
        self.lines = []

    def is_empty(self) -> bool:
        return not self.lines

    def to_dict(self) -> Dict[str, Any]:
        return {"lines": [line.to_dict() for line in self.lines]}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Cart":
        lines = []
        for raw in (data or {}).get("lines") or []:
            try:
                lines.append(CartLine.from_dict(raw))
            except (KeyError, TypeError, ValueError):
                continue
        return cls(lines)

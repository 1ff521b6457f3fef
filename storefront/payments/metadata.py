"""
Sérialisation/désérialisation des métadonnées Stripe de la session Checkout.
Format minimal des articles: JSON [{"i": id, "n": nom, "p": prix, "q": quantité, "c": couleur}]
(sans image), contenu dans la limite Stripe de 500 caractères par valeur.
"""
import json
import logging
from typing import Any, Dict, List, Optional

from storefront.errors import PaymentProviderError

logger = logging.getLogger(__name__)

# module storefront.payments.metadata
METADATA_VALUE_LIMIT = 500
# Longueurs de nom essayées successivement pour tenir dans la limite (None = nom complet)
NAME_LENGTHS = (None, 24, 12, 0)

def _minimal(item: Dict[str, Any], name_len: Optional[int]) -> Dict[str, Any]:
    name = str(item.get("name") or "")
    if name_len is not None:
        name = name[:name_len]
    entry: Dict[str, Any] = {
        "i": str(item.get("id") or item.get("product_id") or ""),
        "n": name,
        "p": round(float(item.get("price") or 0), 2),
        "q": int(item.get("quantity") or 0),
    }
    if item.get("color"):
        entry["c"] = str(item["color"])
    return entry

def encode_items(items: List[Dict[str, Any]]) -> str:
    """
    Sérialise les articles au format minimal; raccourcit les noms si nécessaire.
    PaymentProviderError si même sans noms la valeur dépasse la limite.
    """
    for name_len in NAME_LENGTHS:
        value = json.dumps([_minimal(it, name_len) for it in items], separators=(",", ":"), ensure_ascii=False)
        if len(value) <= METADATA_VALUE_LIMIT:
            if name_len is not None:
                logger.info("payments.metadata: noms raccourcis à %s caractères", name_len)
            return value
    raise PaymentProviderError("Panier trop volumineux pour le paiement en ligne, réduisez le nombre d'articles")

def decode_items(raw: Optional[str]) -> List[Dict[str, Any]]:
    """
    Reconstruit les articles depuis metadata.items:
    [{product_id, name, price, quantity, color}] (image non transportée).
    Tolérant: JSON illisible => [].
    """
    try:
        data = json.loads(raw) if raw else []
    except (TypeError, ValueError):
        logger.warning("payments.metadata: metadata.items illisible")
        return []
    items: List[Dict[str, Any]] = []
    for entry in data if isinstance(data, list) else []:
        if not isinstance(entry, dict):
            continue
        items.append({
            "product_id": entry.get("i"),
            "name": entry.get("n") or "",
            "price": float(entry.get("p") or 0),
            "quantity": int(entry.get("q") or 0),
            "color": entry.get("c"),
        })
    return items

def items_subtotal(items: List[Dict[str, Any]]) -> float:
    return round(sum(float(it.get("price") or 0) * int(it.get("quantity") or 0) for it in items), 2)

def session_metadata(session: Dict[str, Any]) -> Dict[str, Any]:
    meta = (session or {}).get("metadata") if isinstance(session, dict) else None
    return dict(meta or {})

"""Accès Supabase au catalogue (lecture publique, client anon).
Convention: les erreurs de lecture sont journalisées et deviennent des valeurs neutres ([] / None).
"""
from typing import Any, Dict, List, Optional
import logging
from storefront.infra.supabase_client import get_supabase

logger = logging.getLogger(__name__)

def list_available_products() -> List[Dict[str, Any]]:
    try:
        res = (
            get_supabase()
            .table("products")
            .select("*, category:categories(*)")
            .eq("is_available", True)
            .order("created_at", desc=True)
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("catalog.repository.list_available_products failed")
        return []

def list_products_by_category(slug: str) -> List[Dict[str, Any]]:
    try:
        res = (
            get_supabase()
            .table("products")
            .select("*, category:categories!inner(*)")
            .eq("categories.slug", slug)
            .eq("is_available", True)
            .order("created_at", desc=True)
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("catalog.repository.list_products_by_category failed slug=%s", slug)
        return []

def get_categories() -> List[Dict[str, Any]]:
    try:
        res = get_supabase().table("categories").select("*").order("name").execute()
        return res.data or []
    except Exception:
        logger.exception("catalog.repository.get_categories failed")
        return []

def get_product(product_id: str) -> Optional[Dict[str, Any]]:
    """Produit disponible avec ses variantes (product_variants), ou None."""
    if not product_id:
        return None
    try:
        res = (
            get_supabase()
            .table("products")
            .select("*, variants:product_variants(*)")
            .eq("id", product_id)
            .eq("is_available", True)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("catalog.repository.get_product failed id=%s", product_id)
        return None

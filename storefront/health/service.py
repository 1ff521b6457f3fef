from urllib.parse import urlparse
import socket
from typing import Any, Dict

from storefront.config import SUPABASE_URL, STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET
from storefront.infra.supabase_client import get_service_supabase

LEDGER_TABLES = ["products", "orders", "referral_usage", "referral_payouts"]

def _check_table(client, name: str):
    try:
        res = client.table(name).select("id").limit(1).execute()
        cnt = len(res.data or [])
        return {"ok": True, "rows": cnt}
    except Exception as e:
        return {"ok": False, "error": str(e)}

def health_supabase_info() -> Dict[str, Any]:
    parsed = urlparse(SUPABASE_URL) if SUPABASE_URL else None
    hostname = parsed.hostname if parsed else None
    dns_ok = None
    dns_error = None
    if hostname:
        try:
            socket.getaddrinfo(hostname, 443)
            dns_ok = True
        except OSError as e:
            dns_ok = False
            dns_error = str(e)

    info: Dict[str, Any] = {
        "supabase_url": SUPABASE_URL,
        "hostname": hostname,
        "dns_ok": dns_ok,
        "dns_error": dns_error,
        "connect_ok": False,
        "error": None,
        "tables": {},
    }
    try:
        client = get_service_supabase()
        for t in LEDGER_TABLES:
            info["tables"][t] = _check_table(client, t)
        info["connect_ok"] = True
    except Exception as e:
        info["error"] = str(e)
    return info

def health_stripe_info() -> Dict[str, Any]:
    # Aucune requête réseau: seule la configuration est rapportée
    key = STRIPE_SECRET_KEY or ""
    return {
        "secret_key_set": bool(key),
        "live_mode": key.startswith("sk_live_"),
        "webhook_secret_set": bool(STRIPE_WEBHOOK_SECRET),
    }

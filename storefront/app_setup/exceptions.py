"""
Gestionnaires d’exceptions utilisés par la factory.
- StorefrontError (erreurs métier): JSON {detail, code, ...} avec le status_code de l’erreur.
- HTTPException 401/403: redirection vers la page de connexion pour un navigateur,
  JSON pour les clients de l’API.
"""
import logging
import urllib.parse
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.status import HTTP_303_SEE_OTHER
from storefront.config import LOGIN_PATH
from storefront.errors import StorefrontError

logger = logging.getLogger(__name__)

def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StorefrontError)
    async def storefront_error_handler(request: Request, exc: StorefrontError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path}: {exc.code}: {exc.detail}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(HTTPException)
    async def html_redirect_on_auth_errors(request: Request, exc: HTTPException):
        if exc.status_code in (401, 403):
            accept = (request.headers.get("accept") or "").lower()
            is_api = request.url.path.startswith("/api/")
            if "text/html" in accept and not is_api:
                detail = str(getattr(exc, "detail", "")) or (
                    "Veuillez vous connecter" if exc.status_code == 401 else "Accès interdit"
                )
                msg = urllib.parse.quote_plus(detail)
                return RedirectResponse(url=f"{LOGIN_PATH}?error={msg}", status_code=HTTP_303_SEE_OTHER)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=getattr(exc, "headers", None))

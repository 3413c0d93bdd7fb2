"""OAuth callback and session snapshot endpoints."""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse

from ..errors import AuthError
from ..settings import Settings, get_settings
from .callback import CallbackParams
from .store import SessionStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def get_session_store(request: Request) -> SessionStore:
    store = getattr(request.app.state, "session_store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="session_store_unavailable")
    return store


@router.get("/callback")
async def oauth_callback(
    request: Request,
    store: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
):
    """Finish an OAuth redirect and send the browser on.

    Success lands on the default post-login page; any failure goes back to
    the auth page with ``?error=<message>``.
    """
    params = CallbackParams.from_mapping(dict(request.query_params))
    try:
        await store.complete_oauth_callback(params)
    except AuthError as exc:
        logger.warning("oauth_callback_failed", extra={"meta": {"code": exc.code}})
        target = f"{settings.AUTH_REDIRECT_PATH}?{urlencode({'error': exc.reason})}"
        return RedirectResponse(url=target, status_code=302)
    return RedirectResponse(url=settings.DEFAULT_REDIRECT_PATH, status_code=302)


@router.get("/session")
async def session_snapshot(store: SessionStore = Depends(get_session_store)) -> dict:
    return store.state.as_dict()

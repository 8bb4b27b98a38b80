"""IdP webhook route.

POST /api/webhooks/clerk: Svix-signed Clerk user events. Authenticated by
signature only; AuthMiddleware does not guard this path.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from valtro.api.schemas import UserView, success
from valtro.db.engine import get_db
from valtro.services.webhooks import WebhookReconciler

router = APIRouter()


@router.post("/clerk")
async def clerk_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    reconciler: WebhookReconciler = request.app.state.webhook_reconciler
    body = await request.body()
    outcome = await reconciler.handle(db, body, request.headers)
    data = UserView.of(outcome.user) if outcome.user is not None else None
    return JSONResponse(success(outcome.message, data), status_code=outcome.status_code)

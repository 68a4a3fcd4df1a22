"""
grocer_core API — FastAPI endpoints for the admin dashboard.

Exposes:
- Low-stock alerts (live view over the products collection)
- Reconciler control and status
- Draft slider publishing

Every route except /health sits behind the session gate: the
`firebase_token` cookie must be present. Validating the token belongs to the
authentication provider.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Cookie, Depends, FastAPI, HTTPException

from grocer_core.errors import RecordReadFailure, RecordWriteFailure, RuleEvaluationError
from grocer_core.live_view.low_stock import LowStockFilter
from grocer_core.models.inventory import FeedState
from grocer_core.models.reconciler import ReconcilerConfig
from grocer_core.reconciler.loop import ReconcilerLoop
from grocer_core.store.base import DocumentStore
from grocer_core.store.memory import InMemoryDocumentStore

SESSION_COOKIE = "firebase_token"


def require_session(firebase_token: Optional[str] = Cookie(default=None)) -> str:
    """Reject requests that carry no session token."""
    if not firebase_token:
        raise HTTPException(401, "Not authenticated")
    return firebase_token


# --- Application Factory ---

def create_app(
    store: Optional[DocumentStore] = None,
    reconciler_config: Optional[ReconcilerConfig] = None,
    products_collection: str = "products",
) -> FastAPI:
    """Create and configure the FastAPI application."""

    ds = store or InMemoryDocumentStore()
    config = reconciler_config or ReconcilerConfig()
    reconciler = ReconcilerLoop(store=ds, config=config)
    low_stock = LowStockFilter(ds, collection=products_collection)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        handle = reconciler.start()
        low_stock.open()
        try:
            yield
        finally:
            low_stock.close()
            await handle.stop()

    app = FastAPI(
        title="grocer_core API",
        description="Low-stock alerts and order status reconciliation",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.store = ds
    app.state.reconciler = reconciler
    app.state.low_stock = low_stock

    session = [Depends(require_session)]

    @app.get("/health")
    def health():
        return {"status": "ok"}

    # === LOW STOCK ===

    @app.get("/low-stock", dependencies=session)
    async def get_low_stock():
        """Products with 0 < currentStock < minStockAlert."""
        if low_stock.state == FeedState.CLOSED:
            low_stock.open()

        body = {
            "state": low_stock.state.value,
            "count": len(low_stock.records),
            "products": [
                r.model_dump(mode="json", by_alias=True) for r in low_stock.records
            ],
        }
        if low_stock.failure is not None:
            body["reason"] = low_stock.failure.reason
        return body

    @app.post("/low-stock/resubscribe", dependencies=session)
    async def resubscribe_low_stock():
        """Drop the current feed and subscribe again."""
        low_stock.close()
        low_stock.open()
        return {"state": low_stock.state.value, "count": len(low_stock.records)}

    # === RECONCILER ===

    @app.get("/reconciler/status", dependencies=session)
    def reconciler_status():
        """Current reconciler loop status."""
        last = reconciler.last_report
        return {
            "status": reconciler.status,
            "interval_minutes": reconciler.config.interval_minutes,
            "passes_completed": reconciler.passes_completed,
            "last_pass": last.model_dump(mode="json") if last else None,
        }

    @app.post("/reconciler/trigger", dependencies=session)
    async def trigger_reconciliation():
        """Run one reconciliation pass now."""
        report = await reconciler.reconcile_once()
        return {**report.model_dump(mode="json"), "updated": report.updated}

    @app.get("/reconciler/config", dependencies=session)
    def get_reconciler_config():
        """Current reconciler configuration."""
        return reconciler.config.model_dump(mode="json")

    # === SLIDERS ===

    @app.post("/sliders/{slider_id}/publish", dependencies=session)
    async def publish_slider(slider_id: str):
        """Publish a draft slider on its schedule."""
        try:
            status = await reconciler.publish_draft(slider_id)
        except RecordReadFailure:
            raise HTTPException(404, "Slider not found")
        except RuleEvaluationError as exc:
            raise HTTPException(409, exc.reason)
        except RecordWriteFailure as exc:
            raise HTTPException(502, exc.reason)
        return {"id": slider_id, "publishType": "scheduled", "status": status.value}

    return app


# Default application instance
app = create_app()

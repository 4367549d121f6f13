from fastapi import APIRouter, Request

router = APIRouter()

@router.get("/gradebook/health")
async def health_check(request: Request):
    store = getattr(request.app.state, "store", None)
    return {
        "status": "ok" if store is not None else "starting",
        "revision": store.subscriptions.revision if store is not None else None,
    }

from __future__ import annotations

import logging

from fastapi import Body, Depends, FastAPI
from fastapi.responses import JSONResponse

from readerkit.core.background import BackgroundTasks
from readerkit.core.content_service import ContentService, create_content_service
from readerkit.core.settings import Settings
from readerkit.core.storage import get_store, init_db
from readerkit.providers.reader import ContentFetchError, ContentFetchErrorKind

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ContentFetchErrorKind.UNAUTHORIZED: 401,
    ContentFetchErrorKind.BAD_DATA: 422,
    ContentFetchErrorKind.NETWORK: 502,
}

app = FastAPI(title="readerkit")

_tasks = BackgroundTasks()
_service: ContentService | None = None


@app.on_event("startup")
def _startup() -> None:
    global _service
    s = Settings.from_env()
    logging.basicConfig(
        level=s.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    store = init_db(s)
    _service = create_content_service(s, store, _tasks)


@app.on_event("shutdown")
async def _shutdown() -> None:
    _tasks.cancel_all()
    await _tasks.join()
    if _service is not None:
        await _service.close()
    get_store().close()


def get_content_service() -> ContentService:
    assert _service is not None, "ContentService not initialized"
    return _service


def get_background_tasks() -> BackgroundTasks:
    return _tasks


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/items/{item_id}/content")
async def item_content(
    item_id: str,
    username: str | None = None,
    use_cache: bool = True,
    service: ContentService = Depends(get_content_service),
):
    """Article content for an item, polling while the server renders it."""
    try:
        content = await service.fetch_article_content(item_id, username, use_cache=use_cache)
    except ContentFetchError as e:
        logger.info(f"Content fetch for {item_id} failed ({e.kind.value}): {e}")
        return JSONResponse(
            {"error": e.kind.value, "message": str(e)},
            status_code=ERROR_STATUS[e.kind],
        )
    return content.to_dict()


@app.post("/api/items/prefetch", status_code=202)
async def prefetch_items(
    item_ids: list[str] = Body(..., embed=True),
    service: ContentService = Depends(get_content_service),
    tasks: BackgroundTasks = Depends(get_background_tasks),
):
    """Start a background sweep that warms the local store for item_ids."""
    tasks.spawn(service.prefetch_pages(item_ids), name="prefetch-sweep")
    return {"queued": len(item_ids)}

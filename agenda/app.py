from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Callable, Generator

from fastapi import Body, Depends, FastAPI, HTTPException, Query
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from agenda import services
from agenda.config import get_settings
from agenda.controller import QueueController
from agenda.db import get_session, init_db, session_generator
from agenda.errors import PersistenceError
from agenda.models import Vendor
from agenda.ranking import generate_vendor_agenda
from agenda.schemas import AgendaOut, ItemRef, ItemUpdate, QueueOut, TopicCreate, VendorOut
from agenda.store import AgendaStore

log = logging.getLogger(__name__)

# One interactive queue per vendor; single operator per vendor is assumed.
_queues: dict[int, QueueController] = {}


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield
    pending = [q.drain() for q in _queues.values()]
    if pending:
        await asyncio.gather(*pending)
    _queues.clear()


app = FastAPI(
    title="Vendor Agenda",
    version="0.1.0",
    description=(
        "Ranked vendor meeting agendas built from open blockers, action items, "
        "and discussion topics, with an interactive escalation queue per vendor. "
        "All endpoints return JSON except the plain-text export."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Vendors", "description": "List vendors."},
        {"name": "Agenda", "description": "Read-only ranked agendas."},
        {"name": "Queue", "description": "Interactive escalate / de-escalate / resolve / delete / edit session."},
    ],
)


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    yield from session_generator()


def get_store() -> AgendaStore:
    return AgendaStore(get_session)


def _get_or_404(session: Session, model, entity_id: int, label: str = "Entity"):
    obj = session.get(model, entity_id)
    if not obj:
        raise HTTPException(404, f"{label} not found")
    return obj


async def _queue_for(vendor: Vendor, store: AgendaStore) -> QueueController:
    queue = _queues.get(vendor.id)
    if queue is None:
        queue = QueueController(store, vendor.id, get_settings().default_limit)
        await queue.load()
        _queues[vendor.id] = queue
    return queue


async def _apply(vendor_id: int, session: Session, store: AgendaStore,
                 operation: Callable[[QueueController], bool]) -> dict:
    vendor = _get_or_404(session, Vendor, vendor_id, "Vendor")
    queue = await _queue_for(vendor, store)
    changed = operation(queue)
    return services.queue_payload(vendor, queue, changed)


# ---------------------------------------------------------------------------
# Routes: Vendors & Agenda
# ---------------------------------------------------------------------------


@app.get("/api/vendors", response_model=list[VendorOut],
         tags=["Vendors"], summary="List vendors")
async def list_vendors(session: Session = Depends(db_session)):
    return [services.vendor_summary(v) for v in services.list_vendors(session)]


@app.get("/api/vendors/{vendor_id}/agenda", response_model=AgendaOut,
         tags=["Agenda"], summary="Ranked agenda for a vendor (pure read)")
async def vendor_agenda(
    vendor_id: int,
    limit: int | None = Query(None, ge=1, le=500, description="Maximum number of items (default from settings)"),
    session: Session = Depends(db_session),
):
    vendor = _get_or_404(session, Vendor, vendor_id, "Vendor")
    items = generate_vendor_agenda(session, vendor.id, limit or get_settings().default_limit)
    return services.agenda_payload(vendor, items)


@app.get("/api/agendas/{vendor_slug}", response_model=AgendaOut,
         tags=["Agenda"], summary="Ranked agenda looked up by vendor slug")
async def vendor_agenda_by_slug(
    vendor_slug: str,
    limit: int | None = Query(None, ge=1, le=500),
    session: Session = Depends(db_session),
):
    vendor = services.get_vendor_by_slug(session, vendor_slug)
    if vendor is None:
        raise HTTPException(404, "Vendor not found")
    items = generate_vendor_agenda(session, vendor.id, limit or get_settings().default_limit)
    return services.agenda_payload(vendor, items)


# ---------------------------------------------------------------------------
# Routes: Queue (fixed paths before parameterized ones)
# ---------------------------------------------------------------------------


@app.get("/api/vendors/{vendor_id}/queue", response_model=QueueOut,
         tags=["Queue"], summary="Current local queue order (loads it on first use)")
async def get_queue(vendor_id: int, session: Session = Depends(db_session),
                    store: AgendaStore = Depends(get_store)):
    vendor = _get_or_404(session, Vendor, vendor_id, "Vendor")
    return services.queue_payload(vendor, await _queue_for(vendor, store))


@app.post("/api/vendors/{vendor_id}/queue/refresh", response_model=QueueOut,
          tags=["Queue"], summary="Discard local order and re-fetch the ranked agenda")
async def refresh_queue(vendor_id: int, session: Session = Depends(db_session),
                        store: AgendaStore = Depends(get_store)):
    vendor = _get_or_404(session, Vendor, vendor_id, "Vendor")
    queue = await _queue_for(vendor, store)
    await queue.refresh()
    return services.queue_payload(vendor, queue)


@app.get("/api/vendors/{vendor_id}/queue/export", response_class=PlainTextResponse,
         tags=["Queue"], summary="Copy-out text table of the current local order")
async def export_queue(vendor_id: int, session: Session = Depends(db_session),
                       store: AgendaStore = Depends(get_store)):
    vendor = _get_or_404(session, Vendor, vendor_id, "Vendor")
    queue = await _queue_for(vendor, store)
    return PlainTextResponse(queue.export_snapshot())


@app.post("/api/vendors/{vendor_id}/queue/escalate", response_model=QueueOut,
          tags=["Queue"], summary="Move an item up one slot")
async def escalate(vendor_id: int, body: ItemRef, session: Session = Depends(db_session),
                   store: AgendaStore = Depends(get_store)):
    return await _apply(vendor_id, session, store,
                        lambda q: q.escalate((body.entity_type, body.entity_id)))


@app.post("/api/vendors/{vendor_id}/queue/deescalate", response_model=QueueOut,
          tags=["Queue"], summary="Move an item down one slot")
async def deescalate(vendor_id: int, body: ItemRef, session: Session = Depends(db_session),
                     store: AgendaStore = Depends(get_store)):
    return await _apply(vendor_id, session, store,
                        lambda q: q.deescalate((body.entity_type, body.entity_id)))


@app.post("/api/vendors/{vendor_id}/queue/resolve", response_model=QueueOut,
          tags=["Queue"], summary="Mark an item resolved and drop it from the queue")
async def resolve(vendor_id: int, body: ItemRef, session: Session = Depends(db_session),
                  store: AgendaStore = Depends(get_store)):
    return await _apply(vendor_id, session, store,
                        lambda q: q.resolve((body.entity_type, body.entity_id)))


@app.post("/api/vendors/{vendor_id}/queue/delete", response_model=QueueOut,
          tags=["Queue"], summary="Permanently delete an item's record")
async def delete(vendor_id: int, body: ItemRef, session: Session = Depends(db_session),
                 store: AgendaStore = Depends(get_store)):
    return await _apply(vendor_id, session, store,
                        lambda q: q.delete((body.entity_type, body.entity_id)))


@app.post("/api/vendors/{vendor_id}/queue/items", response_model=QueueOut, status_code=201,
          tags=["Queue"], summary="Add a discussion topic and re-rank")
async def add_item(vendor_id: int, body: TopicCreate, session: Session = Depends(db_session),
                   store: AgendaStore = Depends(get_store)):
    vendor = _get_or_404(session, Vendor, vendor_id, "Vendor")
    queue = await _queue_for(vendor, store)
    try:
        await queue.add_item(body.title, body.context, body.ask)
    except PersistenceError as exc:
        raise HTTPException(500, f"Could not add topic: {exc}") from exc
    return services.queue_payload(vendor, queue, True)


@app.put("/api/vendors/{vendor_id}/queue/items/{entity_type}/{entity_id}", response_model=QueueOut,
         tags=["Queue"], summary="Edit title/context/ask/priority (null fields ignored)")
async def edit_item(vendor_id: int, entity_type: str, entity_id: int,
                    body: ItemUpdate = Body(...), session: Session = Depends(db_session),
                    store: AgendaStore = Depends(get_store)):
    fields = body.model_dump(exclude_none=True)
    try:
        return await _apply(vendor_id, session, store,
                            lambda q: q.edit_item((entity_type, entity_id), fields))
    except ValueError as exc:
        raise HTTPException(422, str(exc)) from exc


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    settings = get_settings()
    uvicorn.run("agenda.app:app", host=settings.host, port=settings.port,
                log_level=settings.log_level.lower(), reload=False)


if __name__ == "__main__":
    main()

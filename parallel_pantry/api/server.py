from __future__ import annotations

import asyncio
import logging

from aiohttp import web

from parallel_pantry.domain import (
    CLAIM_LIMIT_REACHED,
    INVALID_FIELD,
    SCORE_TOO_LOW,
    PersistenceError,
    ValidationError,
)
from parallel_pantry.infra.log import get_logger
from parallel_pantry.runtime import LoopSupervisor
from parallel_pantry.service import ReliefService

logger = logging.getLogger(__name__)

SERVICE_KEY = web.AppKey("service", ReliefService)
SUPERVISOR_KEY = web.AppKey("supervisor", LoopSupervisor)

_FORBIDDEN = {SCORE_TOO_LOW, CLAIM_LIMIT_REACHED}


def _error(status: int, code: str, details: str) -> web.Response:
    return web.json_response({"success": False, "error": code, "details": details}, status=status)


async def handle_submit(req: web.Request) -> web.Response:
    service = req.app[SERVICE_KEY]
    try:
        body = await req.json()
    except ValueError:
        return _error(400, INVALID_FIELD, "request body must be JSON")
    if not isinstance(body, dict):
        return _error(400, INVALID_FIELD, "request body must be a JSON object")
    try:
        request = service.submit(body)
    except ValidationError as err:
        return _error(403 if err.code in _FORBIDDEN else 400, err.code, err.message)
    except PersistenceError as exc:
        logger.error("payout queue write failed: %s", exc)
        return _error(500, "PersistenceError", "failed to queue payout")
    return web.json_response(
        {
            "success": True,
            "status": "queued",
            "id": request.id,
            "amount": request.amount,
            "message": "Relief request verified and queued for the next Relief Round.",
        },
        status=202,
    )


async def handle_settle(req: web.Request) -> web.Response:
    result = await req.app[SERVICE_KEY].settle()
    return web.json_response(result.to_dict(), status=500 if result.status == "error" else 200)


async def handle_queue(req: web.Request) -> web.Response:
    service = req.app[SERVICE_KEY]
    pending = service.pending()
    return web.json_response(
        {
            "pending": len(pending),
            "roundInFlight": service.coordinator.busy,
            "requests": [r.to_dict() for r in pending],
        },
        headers={"Cache-Control": "no-store"},
    )


async def handle_claims(req: web.Request) -> web.Response:
    address = req.match_info["address"]
    return web.json_response({"address": address.lower(), "claims": req.app[SERVICE_KEY].claims_for(address)})


async def handle_dead_letters(req: web.Request) -> web.Response:
    letters = req.app[SERVICE_KEY].dead_letters.snapshot()
    return web.json_response({"count": len(letters), "items": [d.to_dict() for d in letters]})


async def handle_resubmit(req: web.Request) -> web.Response:
    try:
        accepted, kept = req.app[SERVICE_KEY].resubmit_dead_letters()
    except PersistenceError as exc:
        logger.error("dead-letter resubmit failed: %s", exc)
        return _error(500, "PersistenceError", str(exc))
    return web.json_response({"requeued": [r.id for r in accepted], "kept": len(kept)})


async def handle_events(req: web.Request) -> web.Response:
    events = req.app[SERVICE_KEY].events
    try:
        limit = int(req.query.get("limit", "50"))
    except ValueError:
        limit = 50
    return web.json_response({"events": events.tail(limit) if events is not None else []})


async def handle_health(req: web.Request) -> web.Response:
    supervisor = req.app.get(SUPERVISOR_KEY)
    return web.json_response({
        "ok": True,
        "roundInFlight": req.app[SERVICE_KEY].coordinator.busy,
        "loops": supervisor.summary() if supervisor is not None else {},
    })


def build_app(service: ReliefService, supervisor: LoopSupervisor | None = None) -> web.Application:
    app = web.Application()
    app[SERVICE_KEY] = service
    if supervisor is not None:
        app[SUPERVISOR_KEY] = supervisor
    app.router.add_post("/api/payout", handle_submit)
    app.router.add_post("/api/batch-payout", handle_settle)
    app.router.add_get("/api/queue", handle_queue)
    app.router.add_get("/api/claims/{address}", handle_claims)
    app.router.add_get("/api/dead-letter", handle_dead_letters)
    app.router.add_post("/api/dead-letter/resubmit", handle_resubmit)
    app.router.add_get("/api/events", handle_events)
    app.router.add_get("/health", handle_health)
    return app


async def run_api(
    service: ReliefService,
    *,
    host: str,
    port: int,
    log_level: str = "INFO",
    supervisor: LoopSupervisor | None = None,
) -> None:
    log = get_logger("parallel-pantry-api", log_level)
    runner = web.AppRunner(build_app(service, supervisor))
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    log.info("relief api running on %s:%s", host, port)

    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        await runner.cleanup()

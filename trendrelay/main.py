import logging
from typing import Any, Optional

from fastapi import Body, Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict

from trendrelay.core.clock import Clock
from trendrelay.core.config import Settings, settings as default_settings
from trendrelay.core.errors import RelayError, Unauthorized
from trendrelay.core.scheduler import AsyncioScheduler, Scheduler
from trendrelay.relay.service import RelayCore

log = logging.getLogger("trendrelay.api")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


# ---------- request bodies ----------
# Fields stay loosely typed: controllers send "true"/"false" strings as often
# as booleans, and a wrong key type must come back as 401, not 422.
class CommandBody(BaseModel):
    model_config = ConfigDict(extra="allow")

    controllerkey: Any = None
    action: Any = None
    trend: Any = None
    active: Any = None
    forceclose: Any = None
    account: Any = None
    tradeType: Any = None


class ConfirmBody(BaseModel):
    model_config = ConfigDict(extra="allow")

    commandType: Any = None
    status: Any = None
    message: Any = None
    tradeId: Any = None


class KeyBody(BaseModel):
    model_config = ConfigDict(extra="allow")

    controllerkey: Any = None
    botkey: Any = None


def get_relay(request: Request) -> RelayCore:
    return request.app.state.relay


def _client_identity(request: Request) -> tuple:
    address = request.client.host if request.client else None
    return address, request.headers.get("user-agent")


def create_app(
    settings: Optional[Settings] = None,
    scheduler: Optional[Scheduler] = None,
    clock: Optional[Clock] = None,
) -> FastAPI:
    cfg = settings or default_settings

    app = FastAPI(title="Trend Relay Server")
    app.state.settings = cfg
    app.state.relay = RelayCore(cfg, scheduler or AsyncioScheduler(), clock=clock)

    @app.exception_handler(RelayError)
    async def _relay_error(request: Request, exc: RelayError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.name, "message": exc.message},
        )

    @app.exception_handler(Exception)
    async def _internal_error(request: Request, exc: Exception):
        log.exception("unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal"})

    @app.on_event("startup")
    async def _startup():
        """Fail-fast config validation, then start the periodic sweeps."""
        logging.basicConfig(level=cfg.LOG_LEVEL, format=LOG_FORMAT)
        try:
            warnings = cfg.validate_runtime()
            for w in warnings:
                log.warning("[CONFIG WARNING] %s", w)
        except ValueError as e:
            # Fail-closed: refuse to serve with missing/duplicate keys
            log.error(str(e))
            raise

        app.state.relay.start_background_sweeps()
        log.info("trend relay started (state is in memory only; a restart resets it)")

    @app.on_event("shutdown")
    async def _shutdown():
        app.state.relay.stop_background_tasks()

    # ------------------------------------------------------------------
    # public
    # ------------------------------------------------------------------
    @app.get("/api/health")
    async def health(relay: RelayCore = Depends(get_relay)):
        return relay.health()

    @app.get("/api/stats")
    async def stats(relay: RelayCore = Depends(get_relay)):
        return relay.stats()

    @app.get("/api/debug")
    async def debug(relay: RelayCore = Depends(get_relay)):
        return relay.debug()

    # ------------------------------------------------------------------
    # controller
    # ------------------------------------------------------------------
    @app.post("/api/commands")
    async def submit_command(
        body: CommandBody = Body(...), relay: RelayCore = Depends(get_relay)
    ):
        payload = body.model_dump(exclude_unset=True)
        credential = payload.pop("controllerkey", None)
        action = payload.pop("action", None)
        state = relay.submit_command(credential, action, payload)
        return {"status": "success", "currentState": state}

    @app.post("/api/reset")
    async def reset(
        body: Optional[KeyBody] = Body(None), relay: RelayCore = Depends(get_relay)
    ):
        return relay.reset(body.controllerkey if body else None)

    # ------------------------------------------------------------------
    # bots
    # ------------------------------------------------------------------
    @app.get("/api/getcommands")
    async def get_commands(
        request: Request,
        botkey: Optional[str] = None,
        since: Optional[str] = None,
        lastsync: Optional[str] = Query(None, include_in_schema=False),
        relay: RelayCore = Depends(get_relay),
    ):
        address, agent = _client_identity(request)
        cursor = since if since not in (None, "") else lastsync
        return relay.fetch_sync(botkey, address, agent, since=cursor)

    @app.post("/api/bot-confirm")
    async def bot_confirm(
        request: Request,
        body: ConfirmBody = Body(...),
        botkey: Optional[str] = None,
        relay: RelayCore = Depends(get_relay),
    ):
        address, agent = _client_identity(request)
        return relay.confirm_execution(
            botkey,
            address,
            agent,
            command_type=body.commandType,
            status=body.status,
            message=body.message,
            trade_id=body.tradeId,
        )

    @app.post("/api/verify-bot")
    async def verify_bot(
        body: Optional[KeyBody] = Body(None), relay: RelayCore = Depends(get_relay)
    ):
        try:
            return relay.verify_bot(body.botkey if body else None)
        except Unauthorized:
            return JSONResponse(
                status_code=401,
                content={"status": "unauthorized", "message": "Invalid bot key"},
            )

    @app.get("/api/trend-status")
    async def trend_status(
        request: Request,
        botkey: Optional[str] = None,
        relay: RelayCore = Depends(get_relay),
    ):
        address, agent = _client_identity(request)
        return relay.trend_status(botkey, address, agent)

    return app


app = create_app()

from __future__ import annotations
import threading
import time
import uuid
from typing import List, Optional

import yaml
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from .auth import RateLimiter, verify_api_key
from .config import ConfigLoader
from .errors import ResourceExhaustedError, SpawnError
from .logging_setup import get_logger, setup_logging
from .manager import Manager
from .models import (
    DiscoveryStatus,
    DonationConfigUpdate,
    HealthResponse,
    InputLine,
    PingStatus,
    ProcessAction,
    ProcessName,
    ProcessView,
)
from .sys_info import SystemMetricsCollector

APP_VERSION = "0.3.0"


def _process(name: str) -> ProcessName:
    try:
        return ProcessName(name)
    except ValueError:
        raise HTTPException(status_code=404, detail="Process not found")


def _sudo(body: Optional[ProcessAction]) -> Optional[str]:
    return body.sudo_password if body else None


def create_app(
    cfg_loader: Optional[ConfigLoader] = None,
    manager: Optional[Manager] = None,
    background: bool = True,
) -> FastAPI:
    cfg_loader = cfg_loader or ConfigLoader()
    cfg = cfg_loader.config

    setup_logging(cfg.logging.directory, cfg.logging.level, cfg.logging.rotate_mb, cfg.logging.keep)
    logger = get_logger(__name__)

    app = FastAPI(title="Rigwarden", version=APP_VERSION)

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        req_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        response = await call_next(request)
        response.headers["X-Request-ID"] = req_id
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = RateLimiter(cfg.api.rate_capacity, cfg.api.rate_refill_per_sec)
    api_key_dep = verify_api_key(lambda: cfg_loader.config.api.api_key, limiter)

    manager = manager or Manager(cfg)
    events = manager.events
    app.state.manager = manager
    app.state.cfg_loader = cfg_loader

    sys_metrics = SystemMetricsCollector(interval_sec=cfg.telemetry.metrics_interval_sec)
    if background and cfg.telemetry.enable_system_metrics:
        sys_metrics.start()

    def background_loop() -> None:
        while True:
            try:
                if cfg_loader.maybe_reload():
                    logger.info("config reloaded")
                    manager.apply_config(cfg_loader.config)
            except Exception as e:
                logger.error(f"background loop error: {e}")
            time.sleep(2)

    if background:
        threading.Thread(target=background_loop, name="bg-loop", daemon=True).start()

    @app.on_event("shutdown")
    def shutdown() -> None:
        sys_metrics.stop()
        manager.shutdown()

    @app.get("/api/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(status="ok", version=APP_VERSION)

    # ---- processes ------------------------------------------------------------

    @app.get("/api/processes", dependencies=[Depends(api_key_dep)], response_model=List[ProcessView])
    async def list_processes(console_lines: int = 200):
        return manager.records(max(0, console_lines))

    @app.post("/api/processes/all/stop", dependencies=[Depends(api_key_dep)])
    def stop_all():
        stopped = manager.stop_all()
        return {"status": "stopping", "processes": [n.value for n in stopped]}

    @app.get("/api/processes/{name}", dependencies=[Depends(api_key_dep)], response_model=ProcessView)
    async def get_process(name: str, console_lines: int = 500):
        return manager.view(_process(name), max(0, console_lines))

    @app.post("/api/processes/{name}/start", dependencies=[Depends(api_key_dep)])
    def start_process(name: str, body: Optional[ProcessAction] = None):
        proc = _process(name)
        try:
            started = manager.start(proc, _sudo(body))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except ResourceExhaustedError as e:
            raise HTTPException(status_code=503, detail=str(e))
        except SpawnError as e:
            raise HTTPException(status_code=500, detail=str(e))
        if not started:
            raise HTTPException(status_code=409, detail=f"{proc.value} is already running")
        return {"status": "starting"}

    @app.post("/api/processes/{name}/stop", dependencies=[Depends(api_key_dep)])
    def stop_process(name: str, body: Optional[ProcessAction] = None):
        proc = _process(name)
        if not manager.stop(proc, _sudo(body)):
            raise HTTPException(status_code=409, detail=f"{proc.value} is not running")
        return {"status": "stopping"}

    @app.post("/api/processes/{name}/restart", dependencies=[Depends(api_key_dep)])
    def restart_process(name: str, body: Optional[ProcessAction] = None):
        proc = _process(name)
        try:
            restarted = manager.restart(proc, _sudo(body))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except SpawnError as e:
            raise HTTPException(status_code=500, detail=str(e))
        if not restarted:
            raise HTTPException(status_code=409, detail=f"{proc.value} cannot restart right now")
        return {"status": "restarting"}

    @app.post("/api/processes/{name}/input", dependencies=[Depends(api_key_dep)])
    async def send_input(name: str, body: InputLine):
        try:
            manager.submit_input(_process(name), body.line)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"status": "queued"}

    @app.get("/api/snapshots/{name}", dependencies=[Depends(api_key_dep)])
    async def get_snapshot(name: str):
        return manager.snapshot(_process(name))

    # ---- donation ---------------------------------------------------------------

    @app.get("/api/donation/config", dependencies=[Depends(api_key_dep)], response_model=DonationConfigUpdate)
    async def get_donation_config():
        mode, amount, tier = manager.shared.donation.settings()
        return DonationConfigUpdate(mode=mode, manual_amount=amount, manual_tier=tier)

    @app.put("/api/donation/config", dependencies=[Depends(api_key_dep)], response_model=DonationConfigUpdate)
    async def put_donation_config(body: DonationConfigUpdate):
        try:
            manager.set_donation_config(body.mode, body.manual_amount, body.manual_tier)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        mode, amount, tier = manager.shared.donation.settings()
        return DonationConfigUpdate(mode=mode, manual_amount=amount, manual_tier=tier)

    # ---- discovery -----------------------------------------------------------------

    @app.post("/api/discovery/start", dependencies=[Depends(api_key_dep)])
    async def start_discovery():
        if not manager.begin_discovery():
            raise HTTPException(status_code=409, detail="Discovery already running")
        return {"status": "crawling"}

    @app.post("/api/discovery/cancel", dependencies=[Depends(api_key_dep)])
    async def cancel_discovery():
        manager.cancel_discovery()
        return {"status": "cancelling"}

    @app.get("/api/discovery", dependencies=[Depends(api_key_dep)], response_model=DiscoveryStatus)
    async def discovery_status():
        return manager.discovery_status()

    # ---- remote nodes ----------------------------------------------------------------

    @app.post("/api/remote-nodes/ping", dependencies=[Depends(api_key_dep)])
    async def ping_remote_nodes():
        if not manager.begin_ping():
            raise HTTPException(status_code=409, detail="Ping already running")
        return {"status": "pinging"}

    @app.get("/api/remote-nodes", dependencies=[Depends(api_key_dep)], response_model=PingStatus)
    async def remote_nodes():
        return manager.ping_status()

    # ---- misc ---------------------------------------------------------------------

    @app.get("/api/events", dependencies=[Depends(api_key_dep)])
    async def list_events(
        limit: int = 200, process: Optional[str] = None, since: Optional[float] = None, level: str = "DEBUG"
    ):
        return [e.__dict__ for e in events.list(limit=limit, process=process, since=since, min_level=level)]

    @app.get("/api/metrics/system", dependencies=[Depends(api_key_dep)])
    async def get_system_metrics():
        m = sys_metrics.latest
        return m.model_dump() if m else {}

    @app.post("/api/config/reload", dependencies=[Depends(api_key_dep)])
    def reload_config():
        try:
            cfg_loader.reload()
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise HTTPException(status_code=400, detail=str(e))
        manager.apply_config(cfg_loader.config)
        return {"status": "reloaded"}

    return app


def main() -> None:
    import uvicorn

    cfg_loader = ConfigLoader()
    app = create_app(cfg_loader)
    uvicorn.run(app, host=cfg_loader.config.api.host, port=cfg_loader.config.api.port, log_level="info")


if __name__ == "__main__":
    main()

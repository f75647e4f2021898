# app/main.py
import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request

from config import Settings, load_settings, print_banner
from services import Services, build_services
from vote_routes import router as vote_router
from creator_views import router as creator_router

logger = logging.getLogger(__name__)


def configure_logging():
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def _stop(task: asyncio.Task):
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None,
               background: bool = True) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app):
        svc = services
        if svc is None:
            svc = build_services(settings or load_settings())
        app.state.services = svc
        print_banner(svc.settings)

        tasks = []
        if background:
            tasks.append(asyncio.create_task(svc.reader.run()))
            tasks.append(asyncio.create_task(svc.sweep.run()))
            print("Account poller and reconciliation sweep started")
        yield
        for task in tasks:
            await _stop(task)
        if tasks:
            print("Account poller and reconciliation sweep stopped")

    app = FastAPI(title="TalentLink API", version="0.1.0", lifespan=lifespan)
    app.include_router(vote_router)
    app.include_router(creator_router)

    @app.get("/healthz")
    def healthz():
        return {"ok": "true"}

    @app.get("/api/contracts")
    def get_contracts(request: Request):
        s = request.app.state.services.settings
        contracts = {
            "VoteToken": s.vote_token_address,
            "ProfileNFT": s.profile_nft_address,
            "TalentLinkDAO": s.dao_address,
        }
        contracts = {k: v.lower() if isinstance(v, str) else v for k, v in contracts.items()}
        return {"chain_id": s.chain_id, "mode": s.chain_mode, **contracts}

    return app


configure_logging()
app = create_app()

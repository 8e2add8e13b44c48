from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from chatapp.api.routes.auth import router as auth_router
from chatapp.api.routes.groups import router as groups_router
from chatapp.api.routes.messages import router as messages_router
from chatapp.api.routes.ws import router as ws_router
from chatapp.core.config import Settings, settings as default_settings
from chatapp.core.errors import install_error_handlers
from chatapp.core.logging import setup_logging
from chatapp.crypto.codec import MessageCodec
from chatapp.db.init_db import init_db
from chatapp.db.session import build_engine, build_sessionmaker
from chatapp.middleware.csrf import CSRFMiddleware
from chatapp.realtime.dispatcher import Dispatcher
from chatapp.realtime.presence import PresenceRegistry
from chatapp.security.csrf import CSRFTokenManager
from chatapp.services.auth import SessionAuthority
from chatapp.services.client_ip import ClientIpResolver
from chatapp.services.expiry import ExpirySweeper
from chatapp.services.groups import GroupDirectory
from chatapp.services.ledger import MessageLedger
from chatapp.services.notifications import OtpNotifier, notifier_from_settings


def create_app(
    settings: Settings | None = None,
    notifier: OtpNotifier | None = None,
    ip_resolver: ClientIpResolver | None = None,
    start_sweeper: bool = True,
) -> FastAPI:
    settings = settings or default_settings
    setup_logging(settings.LOG_LEVEL)

    engine = build_engine(settings.database_url)
    init_db(engine)
    session_factory = build_sessionmaker(engine)

    csrf = CSRFTokenManager(settings.CSRF_SECRET)
    presence = PresenceRegistry()
    dispatcher = Dispatcher(presence)
    groups = GroupDirectory(dispatcher)
    ledger = MessageLedger(MessageCodec(settings.MESSAGE_ENCRYPTION_KEY), groups, dispatcher, settings)
    auth = SessionAuthority(
        settings,
        notifier or notifier_from_settings(settings),
        ip_resolver or ClientIpResolver(settings.PUBLIC_IP_LOOKUP_URL, settings.PUBLIC_IP_LOOKUP_TIMEOUT),
        csrf,
    )
    sweeper = ExpirySweeper(session_factory, ledger, auth, settings.EXPIRY_SWEEP_SECONDS)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_sweeper:
            sweeper.start()
        try:
            yield
        finally:
            await sweeper.stop()
            engine.dispose()

    app = FastAPI(title="EchoSecure Chat", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.sessionmaker = session_factory
    app.state.presence = presence
    app.state.dispatcher = dispatcher
    app.state.groups = groups
    app.state.ledger = ledger
    app.state.auth = auth
    app.state.sweeper = sweeper

    install_error_handlers(app)
    app.add_middleware(CSRFMiddleware, manager=csrf)

    app.include_router(auth_router)
    app.include_router(messages_router)
    app.include_router(groups_router)
    app.include_router(ws_router)

    @app.get("/health")
    def health():
        return {"status": "ok", "online": len(presence)}

    return app


app = create_app()

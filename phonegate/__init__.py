"""
phonegate - phone-number authentication and session security on FastAPI.

Provides OTP signup and login, signed session tokens with server-side
revocation, password reset, rate limiting, lockout and a security audit log.
"""

__version__ = "0.1.0"

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .auth import AuthGateway, CodeDeliveryGateway, Notifier, build_auth_gateway, register_exception_handlers
from .cache import KeyValueStore, create_store
from .core.config import Settings, settings as default_settings
from .db import Database, DatabaseError
from .middleware.timing import TimingMiddleware
from .tasks import MaintenanceTask

logger = logging.getLogger(__name__)


class PhoneGateAPI(FastAPI):
    """FastAPI application carrying the auth services on ``app.state``."""

    def __init__(self, *args, gate_settings: Settings, **kwargs):
        kwargs.setdefault("lifespan", self._lifespan)
        super().__init__(*args, **kwargs)
        self.logger = logging.getLogger(__name__)
        self.gate_settings = gate_settings

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        await self.on_startup()
        try:
            yield
        finally:
            await self.on_shutdown()

    async def on_startup(self):
        """Create tables, start background sweeps and provision the admin if asked to."""
        self.logger.info(f"Starting up {self.title}...")
        settings = self.gate_settings

        if settings.AUTO_CREATE_TABLES:
            await self.state.db.create_all()

        await self.state.store.start()
        self.state.maintenance.start()

        if settings.PROVISION_ADMIN_ON_STARTUP:
            await self._provision_admin()

    async def _provision_admin(self):
        """Create or update the bootstrap admin from settings."""
        from .auth.provisioning import provision_admin

        settings = self.gate_settings
        if not settings.SUPERUSER_PHONE or not settings.SUPERUSER_PASSWORD:
            self.logger.warning("PROVISION_ADMIN_ON_STARTUP is set but SUPERUSER_PHONE/PASSWORD are missing")
            return

        async with self.state.db.get_session() as db:
            _, created = await provision_admin(
                db,
                self.state.auth_gateway.hasher,
                settings.SUPERUSER_PHONE,
                settings.SUPERUSER_PASSWORD,
                full_name=settings.SUPERUSER_NAME,
                email=settings.SUPERUSER_EMAIL,
                source="startup",
            )
        self.logger.info("Bootstrap admin created" if created else "Bootstrap admin updated")

    async def on_shutdown(self):
        """Handle application shutdown events."""
        self.logger.info(f"Shutting down {self.title}...")
        try:
            await self.state.maintenance.stop()
            await self.state.store.close()
            await self.state.auth_gateway.otp.gateway.close()
            await self.state.db.close()
        except Exception as e:
            self.logger.error(f"Error during application shutdown: {e}", exc_info=True)


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[KeyValueStore] = None,
    delivery: Optional[CodeDeliveryGateway] = None,
    notifier: Optional[Notifier] = None,
    gateway: Optional[AuthGateway] = None,
    database: Optional[Database] = None,
    **kwargs
) -> PhoneGateAPI:
    """
    Create and configure the application.

    Args:
        settings: Settings to use instead of the environment-driven global.
        store: Key-value store for OTPs, pending signups and reset sessions.
        delivery: Code delivery gateway; defaults to HTTP SMS when configured, else console.
        notifier: Receiver for new-user and new-session events.
        gateway: A fully built auth gateway, overriding the three above.
        database: Database to use instead of one built from ``settings.DATABASE_URL``.
        **kwargs: Additional keyword arguments to pass to the FastAPI constructor.

    Returns:
        PhoneGateAPI: The configured application instance.
    """
    settings = settings or default_settings

    logging.basicConfig(
        level=logging.DEBUG if settings.DEBUG else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    logger.info(f"Creating {settings.APP_NAME} application (version: {__version__})")

    app = PhoneGateAPI(
        title=settings.APP_NAME,
        version=__version__,
        debug=settings.DEBUG,
        docs_url="/docs" if settings.DOCS_ENABLED else None,
        redoc_url="/redoc" if settings.DOCS_ENABLED else None,
        gate_settings=settings,
        **kwargs
    )

    database = database or Database(settings.DATABASE_URL, echo_sql=settings.ECHO_SQL)
    if store is None:
        store_config = {"key_prefix": settings.CACHE_KEY_PREFIX}
        if settings.CACHE_BACKEND == "redis":
            store_config["url"] = settings.REDIS_URL
        else:
            store_config["cleanup_interval"] = settings.CACHE_CLEANUP_INTERVAL
        store = create_store(settings.CACHE_BACKEND, **store_config)
    gateway = gateway or build_auth_gateway(store, settings, delivery=delivery, notifier=notifier)

    app.state.settings = settings
    app.state.db = database
    app.state.store = store
    app.state.auth_gateway = gateway
    app.state.brute_force_guard = gateway.guard
    app.state.maintenance = MaintenanceTask(database, gateway, interval=settings.CLEANUP_INTERVAL_SECONDS)

    register_exception_handlers(app)
    app.add_middleware(TimingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from .api.auth import router as auth_router
    app.include_router(auth_router, prefix=settings.API_V1_STR)

    @app.get("/health")
    async def health_check():
        """Database status plus session, blacklist and login counts."""
        healthy = await database.health_check()
        health = {
            "status": "ok" if healthy else "degraded",
            "database": "connected" if healthy else "disconnected",
        }
        if healthy:
            try:
                async with database.get_session() as db:
                    health["security"] = await gateway.security_stats(db)
            except DatabaseError as e:
                logger.error(f"Security stats unavailable: {e}")
                health["security"] = {"status": "unavailable"}
        return health

    logger.info("Application initialization complete")
    return app


__all__ = ["PhoneGateAPI", "create_app", "Settings", "__version__"]

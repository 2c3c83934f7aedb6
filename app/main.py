import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from cleancare_shared import OTPSessionManager, SmsGateway, resolve_backend

from .auth import SessionIssuer
from .config import settings
from .database import SessionLocal, engine
from .errors import register_error_handlers
from .metrics import Metrics
from .middleware_request_id import RequestIDMiddleware
from .models import Base
from .otp_auth import OTPAuthService
from .routers import auth as auth_router
from .routers import profile as profile_router
from .utils.security_headers import SecurityHeadersMiddleware

logger = logging.getLogger("cleancare")


def build_sms_gateway(on_result=None) -> SmsGateway:
    backend = resolve_backend(
        settings.SMS_PROVIDER,
        settings.sms_api_key,
        url=settings.sms_url,
        timeout=settings.SMS_TIMEOUT_SECS,
    )
    gateway = SmsGateway(
        backend,
        production=settings.PRODUCTION,
        template=settings.OTP_SMS_TEMPLATE,
        on_result=on_result,
    )
    if gateway.simulation_mode:
        logger.warning("No SMS API key configured for %s, OTPs will be simulated", settings.SMS_PROVIDER)
    return gateway


def create_app(
    *,
    session_factory=None,
    otp_manager: OTPSessionManager | None = None,
    sms_gateway: SmsGateway | None = None,
    session_issuer: SessionIssuer | None = None,
) -> FastAPI:
    logger.setLevel(settings.LOG_LEVEL.upper())

    metrics = Metrics()
    issuer = session_issuer or SessionIssuer(
        settings.JWT_SECRET,
        issuer=settings.JWT_ISSUER,
        expires_delta=settings.jwt_expires_delta,
    )
    manager = otp_manager or OTPSessionManager(settings.otp_config())
    if sms_gateway is None:
        sms_gateway = build_sms_gateway(on_result=metrics.sms_result)
    elif sms_gateway.on_result is None:
        sms_gateway.on_result = metrics.sms_result
    metrics.track_pending(lambda: manager.pending_count)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        manager.shutdown()
        logger.info("OTP session manager stopped")

    app = FastAPI(title="CleanCare Auth API", version="0.1.0", lifespan=lifespan)
    app.state.session_factory = session_factory or SessionLocal
    app.state.session_issuer = issuer
    app.state.otp_manager = manager
    app.state.metrics = metrics
    app.state.otp_service = OTPAuthService(manager, sms_gateway, issuer, metrics)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Request ID + JSON request log
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    if settings.AUTO_CREATE_SCHEMA:
        bind = session_factory.kw.get("bind") if session_factory is not None else engine
        Base.metadata.create_all(bind=bind)

    @app.middleware("http")
    async def _metrics_mw(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        # label by route template, not raw path
        route = getattr(request.scope.get("route"), "path", None) or request.url.path
        metrics.observe_request(request.method, route, response.status_code, time.perf_counter() - start)
        return response

    @app.get("/health")
    def health():
        return {
            "success": True,
            "status": "ok",
            "env": settings.ENV,
            "otpStoreSize": manager.pending_count,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/metrics")
    def metrics_endpoint():
        return Response(metrics.render(), media_type=metrics.content_type)

    app.include_router(auth_router.router)
    app.include_router(profile_router.router)

    register_error_handlers(app)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=settings.LOG_LEVEL.upper())
    uvicorn.run(app, host=settings.APP_HOST, port=settings.APP_PORT)

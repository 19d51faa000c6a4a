# Copyright © 2025 Phaethon Order LLC. All rights reserved. Provided solely for evaluation. See LICENSE.

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from fastapi import Body, Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from starlette.datastructures import Headers, UploadFile

from database import models  # noqa: F401
from database.session import Base, SessionLocal, engine, get_db
from svc.billing_provider import StripeBillingProvider
from svc.billing_sessions import (
    CheckoutSessionIssuer,
    PortalSessionIssuer,
    PostCheckoutFallbackSync,
    resolve_base_url,
)
from svc.rate_limiter import RateLimiter
from svc.reconciler import SubscriptionReconciler
from svc.reviews import ReviewService, serialize_file
from svc.trial_reminders import send_trial_reminders
from svc.uploads import store_review_file, validate_upload
from svc.webhook_verifier import verify_event
from utils.auth import AuthContext, get_auth_context
from utils.config import Settings
from utils.errors import Misconfigured, ServiceError, UpstreamFailure, ValidationFailed
from utils.logger import setup_logger
from utils.mailer import ResendMailer
from utils.storage import ObjectStorage

logger = setup_logger()


class CreateCheckoutSessionRequest(BaseModel):
    priceId: Optional[str] = None
    successUrl: Optional[str] = None
    cancelUrl: Optional[str] = None


class CreatePortalSessionRequest(BaseModel):
    returnUrl: Optional[str] = None


class CompleteCheckoutRequest(BaseModel):
    session_id: Optional[str] = None


class SessionUrlResponse(BaseModel):
    url: str


class SendReviewRequest(BaseModel):
    reviewRequestId: Optional[str] = None
    origin: Optional[str] = None


@dataclass
class Services:
    provider: StripeBillingProvider
    reconciler: SubscriptionReconciler
    checkout: CheckoutSessionIssuer
    portal: PortalSessionIssuer
    fallback_sync: PostCheckoutFallbackSync
    limiter: RateLimiter
    reviews: ReviewService
    mailer: ResendMailer
    storage: ObjectStorage


def build_services(
    settings: Settings,
    *,
    provider: Optional[StripeBillingProvider] = None,
    mailer: Optional[ResendMailer] = None,
    storage: Optional[ObjectStorage] = None,
    session_factory: sessionmaker = SessionLocal,
    clock: Callable[[], float] = time.time,
) -> Services:
    provider = provider or StripeBillingProvider.from_settings(settings)
    mailer = mailer or ResendMailer.from_settings(settings)
    storage = storage or ObjectStorage.from_settings(settings)
    limiter = RateLimiter(session_factory, clock=clock)
    reconciler = SubscriptionReconciler(provider)
    return Services(
        provider=provider,
        reconciler=reconciler,
        checkout=CheckoutSessionIssuer(provider),
        portal=PortalSessionIssuer(provider),
        fallback_sync=PostCheckoutFallbackSync(provider, reconciler),
        limiter=limiter,
        reviews=ReviewService(settings, limiter, storage, mailer),
        mailer=mailer,
        storage=storage,
    )


class PreflightCORSMiddleware(CORSMiddleware):
    """CORS middleware whose successful preflight answers 204 No Content."""

    def preflight_response(self, request_headers: Headers) -> Response:
        response = super().preflight_response(request_headers)
        if response.status_code != status.HTTP_200_OK:
            return response
        headers = {
            key: value
            for key, value in response.headers.items()
            if key.lower() not in {"content-length", "content-type"}
        }
        return Response(status_code=status.HTTP_204_NO_CONTENT, headers=headers)


def get_services(request: Request) -> Services:
    return request.app.state.services


def _base_url(request: Request, settings: Settings) -> str:
    return resolve_base_url(
        request.headers.get("origin"), request.headers.get("referer"), settings.frontend_base_url
    )


def _ensure_stripe_configured(services: Services) -> None:
    if not services.provider.configured:
        raise Misconfigured("Stripe not configured")


def _ensure_webhook_configured(settings: Settings) -> str:
    if not settings.stripe_webhook_secret:
        raise Misconfigured("Webhook not configured")
    return settings.stripe_webhook_secret


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    services = services or build_services(settings)

    app = FastAPI(title="freelance-billing-core", version="0.1.0")
    app.state.settings = settings
    app.state.services = services

    app.add_middleware(
        PreflightCORSMiddleware,
        allow_origins=["*"],
        allow_methods=["POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message}, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Invalid JSON"})

    @app.on_event("startup")
    def on_startup() -> None:
        Base.metadata.create_all(bind=engine)
        if not services.provider.configured:
            logger.warning("STRIPE_SECRET_KEY not set; billing endpoints will answer 500")
        if not settings.stripe_webhook_secret:
            logger.warning("STRIPE_WEBHOOK_SECRET not set; webhook endpoint will answer 500")
        if not settings.auth_configured:
            logger.warning("No AUTH_JWT_SECRET or AUTH_JWKS_URL; authenticated endpoints will answer 500")

    @app.get("/api/health")
    async def health_check() -> Dict[str, Any]:
        """Health check endpoint that reports which integrations are configured."""
        return {
            "status": "ok",
            "auth_configured": settings.auth_configured,
            "stripe_configured": services.provider.configured,
            "webhook_configured": bool(settings.stripe_webhook_secret),
            "mailer_configured": services.mailer.configured,
            "storage_configured": services.storage.configured,
        }

    @app.post("/api/billing/checkout", response_model=SessionUrlResponse)
    async def create_checkout_session(
        request: Request,
        payload: CreateCheckoutSessionRequest,
        auth: AuthContext = Depends(get_auth_context),
        db: Session = Depends(get_db),
        services: Services = Depends(get_services),
    ) -> SessionUrlResponse:
        _ensure_stripe_configured(services)
        url = services.checkout.issue(
            db,
            user_id=auth.user_id,
            email=auth.email,
            price_id=payload.priceId,
            base_url=_base_url(request, settings),
            success_url=payload.successUrl,
            cancel_url=payload.cancelUrl,
        )
        return SessionUrlResponse(url=url)

    @app.post("/api/billing/portal", response_model=SessionUrlResponse)
    async def create_portal_session(
        request: Request,
        payload: Optional[CreatePortalSessionRequest] = None,
        auth: AuthContext = Depends(get_auth_context),
        db: Session = Depends(get_db),
        services: Services = Depends(get_services),
    ) -> SessionUrlResponse:
        _ensure_stripe_configured(services)
        url = services.portal.issue(
            db,
            user_id=auth.user_id,
            base_url=_base_url(request, settings),
            return_url=payload.returnUrl if payload else None,
        )
        return SessionUrlResponse(url=url)

    @app.post("/api/billing/complete-checkout")
    async def complete_checkout(
        payload: CompleteCheckoutRequest,
        auth: AuthContext = Depends(get_auth_context),
        db: Session = Depends(get_db),
        services: Services = Depends(get_services),
    ) -> Dict[str, Any]:
        """
        Fallback for the window between the checkout redirect and webhook delivery.
        """
        _ensure_stripe_configured(services)
        if not payload.session_id:
            raise ValidationFailed("Missing session_id")

        services.fallback_sync.sync(db, user_id=auth.user_id, session_id=payload.session_id)
        logger.info("Checkout session %s synced for user %s", payload.session_id, auth.user_id)
        return {"ok": True}

    @app.post("/api/billing/webhook")
    async def stripe_webhook(
        request: Request,
        db: Session = Depends(get_db),
        services: Services = Depends(get_services),
    ) -> Dict[str, Any]:
        secret = _ensure_webhook_configured(settings)
        _ensure_stripe_configured(services)

        raw_body = await request.body()
        event = verify_event(raw_body, request.headers.get("stripe-signature"), secret)
        logger.info("Received Stripe webhook event %s", event.event_id)

        try:
            services.reconciler.handle_event(db, event)
        except (UpstreamFailure, SQLAlchemyError) as exc:
            db.rollback()
            logger.error("Failed to process webhook event %s: %s", event.event_id, exc, exc_info=True)
            raise UpstreamFailure("Webhook handler failed", status_code=500) from exc

        return {"received": True}

    @app.post("/api/billing/trial-reminders")
    async def trial_reminders(
        request: Request,
        db: Session = Depends(get_db),
        services: Services = Depends(get_services),
    ) -> Dict[str, int]:
        return send_trial_reminders(db, services.mailer, base_url=_base_url(request, settings))

    @app.post("/api/reviews/get")
    async def get_review(
        payload: Dict[str, Any] = Body(...),
        db: Session = Depends(get_db),
        services: Services = Depends(get_services),
    ) -> JSONResponse:
        content, decision = services.reviews.fetch(db, payload)
        return JSONResponse(content=content, headers=decision.headers())

    @app.post("/api/reviews/comment")
    async def submit_review_comment(
        payload: Dict[str, Any] = Body(...),
        db: Session = Depends(get_db),
        services: Services = Depends(get_services),
    ) -> JSONResponse:
        content, decision = services.reviews.add_comment(db, payload)
        return JSONResponse(content=content, headers=decision.headers())

    @app.post("/api/reviews/status")
    async def update_review_status(
        payload: Dict[str, Any] = Body(...),
        db: Session = Depends(get_db),
        services: Services = Depends(get_services),
    ) -> JSONResponse:
        content, decision = services.reviews.change_status(db, payload)
        return JSONResponse(content=content, headers=decision.headers())

    @app.post("/api/reviews/send")
    async def send_review_request(
        request: Request,
        payload: SendReviewRequest,
        auth: AuthContext = Depends(get_auth_context),
        db: Session = Depends(get_db),
        services: Services = Depends(get_services),
    ) -> JSONResponse:
        base_url = (payload.origin or "").rstrip("/") or _base_url(request, settings)
        content, decision = services.reviews.send_request_email(
            db, user_id=auth.user_id, review_request_id=payload.reviewRequestId, base_url=base_url
        )
        return JSONResponse(content=content, headers=decision.headers())

    @app.post("/api/reviews/upload")
    async def upload_review_file(
        request: Request,
        auth: AuthContext = Depends(get_auth_context),
        db: Session = Depends(get_db),
        services: Services = Depends(get_services),
    ) -> JSONResponse:
        decision = services.limiter.enforce(
            settings.rate_limit("file_upload"),
            auth.user_id,
            "Upload rate limit exceeded. Please try again later.",
        )
        if not services.storage.configured:
            raise Misconfigured("Object storage not configured")

        form = await request.form()
        file = form.get("file")
        review_request_id = form.get("review_request_id")
        if not isinstance(file, UploadFile):
            raise ValidationFailed("No file provided")
        if not review_request_id or not isinstance(review_request_id, str):
            raise ValidationFailed("Review request ID is required")

        data = await file.read(settings.max_upload_bytes + 1)
        upload = validate_upload(file.filename, file.content_type, data, settings.max_upload_bytes)
        record = store_review_file(
            db,
            services.storage,
            user_id=auth.user_id,
            review_request_id=review_request_id,
            upload=upload,
        )
        return JSONResponse(
            content={"success": True, "file": serialize_file(record)},
            headers=decision.headers(),
        )

    return app


app = create_app()

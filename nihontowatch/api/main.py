"""FastAPI application for NihontoWatch."""

import asyncio
import math
from datetime import timedelta
from typing import Optional
from urllib.parse import urlencode

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from loguru import logger
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..alerts.unsubscribe import verify_unsubscribe_token
from ..analytics.market import (
    BREAKDOWN_DIMENSIONS,
    TREND_METRICS,
    market_breakdown,
    market_overview,
    market_trends,
    parse_granularity,
    parse_period,
    price_changes,
    price_distribution,
)
from ..orchestrator.coordinator import SAVED_SEARCH_FREQUENCIES, JobCoordinator
from ..privacy.account import (
    DeletionRejected,
    apply_unsubscribe,
    delete_account,
    pending_deletion,
    unsubscribe_email,
)
from ..privacy.consent import client_ip, get_consent, revoke_consent, save_consent
from ..privacy.export import export_user_data
from ..storage.database import Database
from ..storage.models import (
    ConsentRecord,
    DeleteAccountRequest,
    Profile,
    SyncEliteRequest,
)
from ..tracking.events import filter_valid_events, validate_payload
from ..tracking.rate_limiter import RateLimiter
from ..tracking.store import end_session, record_events, start_session, validate_session_payload
from ..utils.config import Config, get_config, get_settings
from ..utils.helpers import utc_now

MARKET_CURRENCIES = ("JPY", "USD", "EUR")


def _track_error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        {"success": False, "eventsReceived": 0, "error": message}, status_code=status_code
    )


def _session_error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status_code)


def _analytics_response(data) -> dict:
    return {"success": True, "data": data, "timestamp": utc_now().isoformat()}


def _int_param(
    raw: Optional[str], default: Optional[int], low: Optional[int] = None, high: Optional[int] = None
) -> Optional[int]:
    """Parse an integer query parameter, clamped to [low, high]. Invalid values fall back to the default."""
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    if low is not None:
        value = max(low, value)
    if high is not None:
        value = min(high, value)
    return value


def _float_param(raw: Optional[str]) -> Optional[float]:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


def create_app(
    config: Optional[Config] = None,
    db: Optional[Database] = None,
    coordinator: Optional[JobCoordinator] = None,
    cron_secret: Optional[str] = None,
    unsubscribe_secret: Optional[str] = None,
) -> FastAPI:
    """Build the API application.

    Args:
        config: Configuration (defaults to the global config)
        db: Database (defaults to the configured URL)
        coordinator: Job coordinator used by cron and admin routes
        cron_secret: Shared secret for cron routes (defaults to CRON_SECRET)
        unsubscribe_secret: Token secret (defaults to UNSUBSCRIBE_SECRET or CRON_SECRET)

    Returns:
        Configured FastAPI application
    """
    if config is None:
        config = get_config()
    settings = get_settings()

    if cron_secret is None:
        cron_secret = settings.cron_secret
    if unsubscribe_secret is None:
        unsubscribe_secret = settings.unsubscribe_secret or settings.cron_secret
    if db is None:
        db = coordinator.db if coordinator is not None else Database(config.database.url)
    if coordinator is None:
        coordinator = JobCoordinator(config.model_dump(), db=db, unsubscribe_secret=unsubscribe_secret)

    site_url = config.site.base_url.rstrip("/")
    rates = config.currency.model_dump()
    tracking = config.tracking

    app = FastAPI(
        title="NihontoWatch API",
        description="Listing scores, alerts, activity tracking and privacy endpoints",
        version="1.0.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.config = config
    app.state.db = db
    app.state.coordinator = coordinator
    app.state.cron_secret = cron_secret
    app.state.unsubscribe_secret = unsubscribe_secret
    app.state.rate_limiter = RateLimiter(
        max_requests=tracking.rate_limit_max_requests,
        window_seconds=tracking.rate_limit_window_seconds,
    )
    app.state.cleanup_task = None

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if isinstance(exc.detail, dict):
            content = dict(exc.detail)
        else:
            content = {"error": exc.detail}
        return JSONResponse(content, status_code=exc.status_code)

    async def _cleanup_rate_limits():
        limiter = app.state.rate_limiter
        while True:
            await asyncio.sleep(limiter.window_seconds)
            removed = limiter.cleanup()
            if removed:
                logger.debug(f"Removed {removed} expired rate limit entries")

    @app.on_event("startup")
    async def startup_event():
        """Run on application startup."""
        logger.info("NihontoWatch API starting up")
        if not app.state.cron_secret:
            logger.warning("CRON_SECRET not configured - cron endpoints are unauthenticated")
        app.state.cleanup_task = asyncio.create_task(_cleanup_rate_limits())

    @app.on_event("shutdown")
    async def shutdown_event():
        """Run on application shutdown."""
        task = app.state.cleanup_task
        if task is not None:
            task.cancel()
        logger.info("NihontoWatch API shutting down")

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def current_user_id(x_user_id: Optional[str] = Header(None)) -> Optional[str]:
        return x_user_id or None

    def require_user(user_id: Optional[str] = Depends(current_user_id)) -> str:
        if not user_id:
            raise HTTPException(status_code=401, detail="Unauthorized")
        return user_id

    def require_admin(user_id: str = Depends(require_user)) -> Profile:
        profile = db.get_profile(user_id)
        if profile is None or profile.role != "admin":
            raise HTTPException(status_code=403, detail="Forbidden")
        return profile

    def _cron_authorized(request: Request, allow_open: bool = True) -> bool:
        secret = app.state.cron_secret
        if not secret:
            if allow_open:
                logger.warning(f"Unauthenticated cron call to {request.url.path}")
            return allow_open
        auth_header = request.headers.get("authorization")
        cron_header = request.headers.get("x-cron-secret")
        return auth_header == f"Bearer {secret}" or cron_header == secret

    def require_cron(request: Request) -> None:
        if not _cron_authorized(request):
            raise HTTPException(status_code=401, detail="Unauthorized")

    def require_cron_secret(request: Request) -> None:
        if not _cron_authorized(request, allow_open=False):
            raise HTTPException(status_code=401, detail="Unauthorized")

    # ------------------------------------------------------------------
    # Service
    # ------------------------------------------------------------------

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": "NihontoWatch API",
            "version": "1.0.0",
            "status": "running",
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "timestamp": utc_now().isoformat(),
        }

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    @app.post("/api/track")
    async def track_events(request: Request):
        """Receive a batch of client activity events."""
        try:
            body = await request.json()
        except ValueError:
            return _track_error("Invalid JSON", 400)

        if not validate_payload(body, tracking.max_events_per_batch):
            return _track_error("Invalid payload structure", 400)

        session_id = body["sessionId"]
        if not app.state.rate_limiter.check(session_id):
            return _track_error("Rate limit exceeded", 429)

        try:
            events = filter_valid_events(
                body["events"],
                max_age=timedelta(hours=tracking.max_event_age_hours),
                clock_skew=timedelta(seconds=tracking.clock_skew_seconds),
            )
            if not events:
                return {"success": True, "eventsReceived": 0}

            user_id = body.get("userId") or None
            record_events(db, events, session_id, user_id)
            return {"success": True, "eventsReceived": len(events)}
        except Exception as e:
            logger.error(f"Error tracking events for {session_id}: {e}")
            return _track_error("Internal server error", 500)

    @app.post("/api/activity/session")
    async def session_event(request: Request, user_id: Optional[str] = Depends(current_user_id)):
        """Create or end a browsing session."""
        try:
            body = await request.json()
        except ValueError:
            return _session_error("Invalid JSON", 400)

        if not validate_session_payload(body):
            return _session_error("Invalid payload structure", 400)

        try:
            if body["action"] == "create":
                return start_session(db, body, user_id)
            return end_session(db, body)
        except Exception as e:
            logger.error(f"Error handling session {body.get('sessionId')}: {e}")
            return _session_error("Internal server error", 500)

    @app.patch("/api/activity/session")
    async def session_end(request: Request):
        """End a session (sendBeacon fallback)."""
        try:
            body = await request.json()
        except ValueError:
            return _session_error("Invalid JSON", 400)

        if not validate_session_payload(body) or body["action"] != "end":
            return _session_error("Invalid action for PATCH", 400)

        try:
            return end_session(db, body)
        except Exception as e:
            logger.error(f"Error ending session {body.get('sessionId')}: {e}")
            return _session_error("Internal server error", 500)

    # ------------------------------------------------------------------
    # Listings and artisans
    # ------------------------------------------------------------------

    @app.get("/api/listing/{listing_id}/score-breakdown")
    async def score_breakdown(
        listing_id: int,
        tab: str = Query("available"),
        cat: str = Query("nihonto"),
        cert: Optional[str] = Query(None),
        dealer: Optional[str] = Query(None),
        admin: Profile = Depends(require_admin),
    ):
        """Featured score diagnostics for one listing (admin only)."""
        if listing_id <= 0:
            raise HTTPException(status_code=400, detail="Invalid listing ID")

        try:
            result = coordinator.score_breakdown(
                listing_id, tab=tab, category=cat, cert=cert, dealer=dealer
            )
        except Exception as e:
            logger.error(f"Error building score breakdown for listing {listing_id}: {e}")
            raise HTTPException(status_code=500, detail="Internal server error")

        if result is None:
            raise HTTPException(status_code=404, detail="Listing not found")
        return result

    @app.get("/api/artisan/{code}")
    async def artisan_profile(code: str):
        """Artisan elite, Toko Taikan and provenance rankings."""
        try:
            profile = coordinator.artisan_profile(code)
        except Exception as e:
            logger.error(f"Error loading artisan {code}: {e}")
            raise HTTPException(status_code=500, detail="Internal server error")

        if profile is None:
            raise HTTPException(status_code=404, detail="Artisan not found")
        return {"artisan": profile}

    # ------------------------------------------------------------------
    # User privacy
    # ------------------------------------------------------------------

    @app.get("/api/user/consent")
    async def read_consent(user_id: str = Depends(require_user)):
        """Stored consent preferences for the signed-in user."""
        try:
            with db.session() as session:
                consent = get_consent(session, user_id)
        except Exception as e:
            logger.error(f"Error loading consent for {user_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch consent")

        if consent is None:
            raise HTTPException(status_code=404, detail="Profile not found")
        return consent

    @app.post("/api/user/consent")
    async def store_consent(request: Request, user_id: str = Depends(require_user)):
        """Save consent preferences and append to the audit trail."""
        try:
            body = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid consent data")

        if not isinstance(body, dict) or not body.get("consent"):
            raise HTTPException(status_code=400, detail="Invalid consent data")
        consent = body["consent"]
        if not isinstance(consent, dict) or not consent.get("preferences"):
            raise HTTPException(status_code=400, detail="Invalid consent data")

        try:
            record = ConsentRecord(**consent)
        except ValidationError:
            raise HTTPException(status_code=400, detail="Invalid consent preferences")

        ip = client_ip(request.headers)
        try:
            with db.session() as session:
                profile = session.get(Profile, user_id)
                if profile is None:
                    raise HTTPException(status_code=404, detail="Profile not found")
                saved = save_consent(session, profile, record, ip)
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error saving consent for {user_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to save consent")

        return {"success": True, "consent": saved}

    @app.delete("/api/user/consent")
    async def withdraw_consent(request: Request, user_id: str = Depends(require_user)):
        """Reset consent to essential only."""
        ip = client_ip(request.headers)
        try:
            with db.session() as session:
                profile = session.get(Profile, user_id)
                if profile is None:
                    raise HTTPException(status_code=404, detail="Profile not found")
                revoke_consent(session, profile, ip)
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error revoking consent for {user_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to revoke consent")

        return {"success": True, "message": "Consent revoked successfully"}

    @app.post("/api/user/delete-account")
    async def delete_user_account(request: Request, user_id: str = Depends(require_user)):
        """Erase the signed-in user's account and personal data."""
        try:
            body = await request.json()
        except ValueError:
            body = {}

        try:
            deletion = DeleteAccountRequest(**body) if isinstance(body, dict) else DeleteAccountRequest()
        except ValidationError:
            raise HTTPException(status_code=400, detail="Invalid request")

        try:
            deleted = delete_account(db, user_id, deletion)
        except LookupError:
            raise HTTPException(status_code=404, detail="Profile not found")
        except DeletionRejected as e:
            detail = {"error": e.error}
            if e.message:
                detail["message"] = e.message
            raise HTTPException(status_code=400, detail=detail)
        except Exception as e:
            logger.error(f"Error deleting account {user_id}: {e}")
            raise HTTPException(
                status_code=500, detail="Failed to delete account. Please contact support."
            )

        if not deleted:
            raise HTTPException(
                status_code=500, detail="Failed to delete account. Please contact support."
            )
        return {
            "success": True,
            "message": "Your account has been deleted. We're sorry to see you go.",
        }

    @app.get("/api/user/delete-account")
    async def deletion_status(user_id: str = Depends(require_user)):
        """Whether a deletion request is pending for the user."""
        with db.session() as session:
            pending = pending_deletion(session, user_id)
        return {"hasPendingRequest": pending is not None, "request": pending}

    @app.get("/api/user/export")
    async def export_data(user_id: str = Depends(require_user)):
        """Download everything stored about the signed-in user."""
        try:
            with db.session() as session:
                data = export_user_data(session, user_id)
        except Exception as e:
            logger.error(f"Error exporting data for {user_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to export data")

        if data is None:
            raise HTTPException(status_code=404, detail="Profile not found")

        filename = f"nihontowatch-export-{utc_now().strftime('%Y-%m-%d')}.json"
        return JSONResponse(
            data, headers={"Content-Disposition": f'attachment; filename="{filename}"'}
        )

    # ------------------------------------------------------------------
    # Unsubscribe
    # ------------------------------------------------------------------

    def _unsubscribe_redirect(status: str, detail: str) -> RedirectResponse:
        query = urlencode({"status": status, "detail": detail})
        return RedirectResponse(f"{site_url}/unsubscribe?{query}", status_code=307)

    @app.get("/api/unsubscribe")
    async def unsubscribe_link(token: Optional[str] = Query(None)):
        """One-click unsubscribe from an email link."""
        if not token:
            return _unsubscribe_redirect("error", "Missing unsubscribe token")

        verification = verify_unsubscribe_token(token, app.state.unsubscribe_secret)
        if not verification.valid or verification.payload is None:
            return _unsubscribe_redirect("error", verification.error or "Invalid token")

        payload = verification.payload
        try:
            with db.session() as session:
                if session.get(Profile, payload.user_id) is None:
                    return _unsubscribe_redirect("error", "User not found")
                apply_unsubscribe(session, payload.user_id, payload.type, payload.saved_search_id)
        except ValueError as e:
            return _unsubscribe_redirect("error", str(e))
        except Exception as e:
            logger.error(f"Unsubscribe error for {payload.user_id}: {e}")
            return _unsubscribe_redirect("error", "An error occurred")

        return _unsubscribe_redirect("success", payload.type)

    @app.post("/api/unsubscribe")
    async def unsubscribe_form(request: Request):
        """Form-based unsubscribe by token or email."""
        try:
            body = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Token or email required")
        if not isinstance(body, dict):
            raise HTTPException(status_code=400, detail="Token or email required")

        token = body.get("token")
        email = body.get("email")

        try:
            if token:
                verification = verify_unsubscribe_token(token, app.state.unsubscribe_secret)
                if not verification.valid or verification.payload is None:
                    raise HTTPException(status_code=400, detail=verification.error or "Invalid token")

                payload = verification.payload
                with db.session() as session:
                    try:
                        apply_unsubscribe(
                            session, payload.user_id, payload.type, payload.saved_search_id
                        )
                    except ValueError as e:
                        logger.warning(f"Unsubscribe skipped for {payload.user_id}: {e}")
                return {"success": True, "type": payload.type}

            if email:
                with db.session() as session:
                    found = unsubscribe_email(session, email)
                if not found:
                    return {
                        "success": True,
                        "message": "If this email exists, it has been unsubscribed",
                    }
                return {"success": True}
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Unsubscribe error: {e}")
            raise HTTPException(status_code=500, detail="An error occurred")

        raise HTTPException(status_code=400, detail="Token or email required")

    # ------------------------------------------------------------------
    # Cron jobs
    # ------------------------------------------------------------------

    @app.get("/api/cron/compute-featured-scores", dependencies=[Depends(require_cron)])
    async def cron_featured_scores():
        """Recompute featured scores for all available listings."""
        try:
            result = await coordinator.compute_featured_scores()
        except Exception as e:
            logger.error(f"Featured score computation failed: {e}")
            raise HTTPException(status_code=500, detail="Internal server error")
        return {"success": True, **result}

    @app.get("/api/cron/process-price-alerts", dependencies=[Depends(require_cron)])
    async def cron_price_alerts():
        """Send price drop alerts."""
        try:
            return await coordinator.process_price_alerts()
        except Exception as e:
            logger.error(f"Price alert processing failed: {e}")
            raise HTTPException(status_code=500, detail="Internal server error")

    @app.get("/api/cron/process-stock-alerts", dependencies=[Depends(require_cron)])
    async def cron_stock_alerts():
        """Send back-in-stock alerts."""
        try:
            return await coordinator.process_stock_alerts()
        except Exception as e:
            logger.error(f"Stock alert processing failed: {e}")
            raise HTTPException(status_code=500, detail="Internal server error")

    @app.get("/api/cron/process-saved-searches", dependencies=[Depends(require_cron)])
    async def cron_saved_searches(frequency: Optional[str] = Query(None)):
        """Send saved search notifications for one frequency."""
        if frequency not in SAVED_SEARCH_FREQUENCIES:
            raise HTTPException(
                status_code=400, detail='Invalid frequency. Must be "instant" or "daily".'
            )
        try:
            return await coordinator.process_saved_searches(frequency)
        except Exception as e:
            logger.error(f"Saved search processing failed for {frequency}: {e}")
            raise HTTPException(status_code=500, detail="Internal server error")

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    @app.post("/api/admin/sync-elite-factor", dependencies=[Depends(require_cron_secret)])
    async def sync_elite_factor(request: Request):
        """Copy artisan elite stats onto listings."""
        try:
            body = await request.json()
        except ValueError:
            body = {}

        try:
            sync = SyncEliteRequest(**body) if isinstance(body, dict) else SyncEliteRequest()
        except ValidationError:
            raise HTTPException(
                status_code=400, detail="Must provide artisan_codes array or all: true"
            )

        try:
            result = await coordinator.sync_elite_factors(sync.artisan_codes, sync_all=sync.all)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except Exception as e:
            logger.error(f"Elite factor sync failed: {e}")
            raise HTTPException(status_code=500, detail="Internal server error")
        return {"success": True, **result}

    @app.get("/api/admin/sync-elite-factor", dependencies=[Depends(require_cron_secret)])
    async def sync_elite_usage():
        """Usage notes for the sync endpoint."""
        return {
            "status": "ok",
            "usage": {
                "endpoint": "POST /api/admin/sync-elite-factor",
                "headers": {
                    "Authorization": "Bearer {CRON_SECRET}",
                    "Content-Type": "application/json",
                },
                "body_options": [
                    '{ "artisan_codes": ["MAS590", "KUN123"] }',
                    '{ "all": true }',
                ],
            },
        }

    @app.get("/api/admin/analytics/market/overview")
    async def market_overview_route(
        currency: Optional[str] = Query(None),
        admin: Profile = Depends(require_admin),
    ):
        """Market snapshot with week-over-week changes (admin only)."""
        label = currency.upper() if currency else "JPY"
        if label not in MARKET_CURRENCIES:
            label = "JPY"
        try:
            with db.session() as session:
                data = market_overview(session, rates, currency=label)
        except Exception as e:
            logger.error(f"Market overview failed: {e}")
            raise HTTPException(status_code=500, detail="Internal server error")
        return _analytics_response(data)

    @app.get("/api/admin/analytics/market/trends")
    async def market_trends_route(
        metric: Optional[str] = Query(None),
        period: Optional[str] = Query(None),
        granularity: Optional[str] = Query(None),
        itemType: Optional[str] = Query(None),
        admin: Profile = Depends(require_admin),
    ):
        """Time series for one market metric (admin only)."""
        if metric not in TREND_METRICS:
            raise HTTPException(
                status_code=400,
                detail="Missing or invalid 'metric' parameter. Must be one of: "
                + ", ".join(TREND_METRICS),
            )
        try:
            with db.session() as session:
                data = market_trends(
                    session,
                    metric,
                    rates,
                    period=parse_period(period),
                    granularity=parse_granularity(granularity),
                    item_type=itemType,
                )
        except Exception as e:
            logger.error(f"Market trends failed for {metric}: {e}")
            raise HTTPException(status_code=500, detail="Internal server error")
        return _analytics_response(data)

    @app.get("/api/admin/analytics/market/breakdown")
    async def market_breakdown_route(
        by: Optional[str] = Query(None),
        limit: Optional[str] = Query(None),
        admin: Profile = Depends(require_admin),
    ):
        """Market split by category, dealer or certification (admin only)."""
        if by not in BREAKDOWN_DIMENSIONS:
            raise HTTPException(
                status_code=400,
                detail="Missing or invalid 'by' parameter. Must be one of: "
                + ", ".join(BREAKDOWN_DIMENSIONS),
            )
        try:
            with db.session() as session:
                data = market_breakdown(session, by, rates, limit=_int_param(limit, 20, 1, 100))
        except Exception as e:
            logger.error(f"Market breakdown failed for {by}: {e}")
            raise HTTPException(status_code=500, detail="Internal server error")
        return _analytics_response(data)

    @app.get("/api/admin/analytics/market/price-changes")
    async def price_changes_route(
        limit: Optional[str] = Query(None),
        minChangePercent: Optional[str] = Query(None),
        period: Optional[str] = Query(None),
        admin: Profile = Depends(require_admin),
    ):
        """Recent price increases and decreases (admin only)."""
        try:
            with db.session() as session:
                data = price_changes(
                    session,
                    limit=_int_param(limit, 50, 1, 200),
                    min_change_percent=_float_param(minChangePercent),
                    period=period or "7d",
                )
        except Exception as e:
            logger.error(f"Price changes failed: {e}")
            raise HTTPException(status_code=500, detail="Internal server error")
        return _analytics_response(data)

    @app.get("/api/admin/analytics/market/distribution")
    async def price_distribution_route(
        buckets: Optional[str] = Query(None),
        itemType: Optional[str] = Query(None),
        certification: Optional[str] = Query(None),
        dealer: Optional[str] = Query(None),
        minPrice: Optional[str] = Query(None),
        maxPrice: Optional[str] = Query(None),
        admin: Profile = Depends(require_admin),
    ):
        """Price histogram of available listings (admin only)."""
        try:
            with db.session() as session:
                data = price_distribution(
                    session,
                    rates,
                    buckets=_int_param(buckets, 20, 1, 50),
                    item_type=itemType,
                    certification=certification,
                    dealer_id=_int_param(dealer, None),
                    min_price=_float_param(minPrice),
                    max_price=_float_param(maxPrice),
                )
        except Exception as e:
            logger.error(f"Price distribution failed: {e}")
            raise HTTPException(status_code=500, detail="Internal server error")
        return _analytics_response(data)

    return app

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Annotated, Optional

from fastapi import (
    BackgroundTasks,
    Depends,
    FastAPI,
    Header,
    HTTPException,
    Query,
    Request,
    Response,
    WebSocket,
    status,
)
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from partsmatch.auth import (
    AuthError,
    bearer_token,
    get_current_session,
    get_current_user,
    on_session_change,
    sign_in,
    sign_out,
    sign_up,
)
from partsmatch.config import settings
from partsmatch.ingestion import IngestionError, ingest_parts_text
from partsmatch.logging_utils import RequestLoggingMiddleware, log_route_data, setup_logging
from partsmatch.matching import (
    STATUS_BOTH_AGREED,
    SUPPLIER,
    ListingClosedError,
    SelfMatchError,
    counterparty_id,
    derive_status,
    ensure_listing_open,
    listing_owner_id,
    participant_role,
    resolve_parties,
)
from partsmatch.metrics import (
    get_metrics,
    get_metrics_content_type,
    record_ingestion_outcome,
    record_match_event,
    record_message_outcome,
    record_session_event,
)
from partsmatch.notifications import build_match_notification, notify_match
from partsmatch.realtime import broker
from partsmatch.schemas import (
    AgreeResponse,
    ContactResponse,
    CurrentSessionResponse,
    ErrorResponse,
    HealthResponse,
    IngestTextRequest,
    IngestTextResponse,
    ListingRemovedResponse,
    MatchCreateRequest,
    MatchesListResponse,
    MatchResponse,
    MatchSummary,
    MessageResponse,
    MessagesListResponse,
    PartCreateRequest,
    PartRequestCreateRequest,
    PartRequestResponse,
    PartRequestsListResponse,
    PartResponse,
    PartsListResponse,
    ProfileResponse,
    ProfileUpdateRequest,
    SendMessageRequest,
    SendMessageResponse,
    SessionResponse,
    SignInRequest,
    SignUpRequest,
)
from partsmatch.storage import (
    SessionLocal,
    StoreError,
    agree_match,
    browse_parts,
    browse_requests,
    check_db_health,
    create_match,
    create_message,
    create_part,
    create_request,
    get_db,
    get_match,
    get_messages,
    get_part,
    get_profile,
    get_request,
    get_user,
    init_db,
    list_matches_for_user,
    list_parts_for_owner,
    list_requests_for_owner,
    remove_listing,
    update_profile,
)


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


def _log_session_event(event: str, session: Optional[dict]) -> None:
    user_id = session.get("user_id") if session else None
    logger.info(f"Session event: {event}", extra={"user_id": user_id})
    record_session_event(event)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: create tables, start session event logging
    - Shutdown: stop session event logging
    """
    init_db()
    unsubscribe = on_session_change(_log_session_event)
    yield
    unsubscribe()


app = FastAPI(
    title="PartsMatch API",
    description="Marketplace for tradespeople exchanging spare parts",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": str(exc)},
    )


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    # Reads are not wrapped in StoreError; keep their failures JSON too
    logger.error(f"Database error on {request.method} {request.url.path}: {exc!r}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Database error"},
    )


@app.exception_handler(IngestionError)
async def ingestion_error_handler(request: Request, exc: IngestionError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


CurrentUser = Annotated[str, Depends(get_current_user)]


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the DB is reachable and the
    match/message tables exist, 503 otherwise.
    """
    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Account Routes
# =============================================================================

@app.post(
    "/auth/signup",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse, "description": "Email already registered"}},
)
async def signup(body: SignUpRequest, db: Session = Depends(get_db)) -> SessionResponse:
    try:
        session = sign_up(db, body.email, body.password, body.full_name, body.trade_type)
    except AuthError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return SessionResponse(**session)


@app.post(
    "/auth/signin",
    response_model=SessionResponse,
    responses={401: {"model": ErrorResponse, "description": "Bad credentials"}},
)
async def signin(body: SignInRequest, db: Session = Depends(get_db)) -> SessionResponse:
    try:
        session = sign_in(db, body.email, body.password)
    except AuthError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
    return SessionResponse(**session)


@app.post("/auth/signout", status_code=status.HTTP_204_NO_CONTENT)
async def signout(
    authorization: Annotated[str | None, Header()] = None,
    db: Session = Depends(get_db),
) -> Response:
    """Invalidate the bearer token. Unknown tokens are ignored."""
    token = bearer_token(authorization)
    if token:
        sign_out(db, token)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/auth/session", response_model=CurrentSessionResponse)
async def current_session(
    authorization: Annotated[str | None, Header()] = None,
    db: Session = Depends(get_db),
) -> CurrentSessionResponse:
    session = get_current_session(db, bearer_token(authorization))
    if session is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="not signed in")
    return CurrentSessionResponse(**session)


@app.get("/profile", response_model=ProfileResponse)
async def read_profile(user_id: CurrentUser, db: Session = Depends(get_db)) -> ProfileResponse:
    profile = get_profile(db, user_id)
    if profile is None:
        return ProfileResponse(id=user_id)
    return ProfileResponse.model_validate(profile)


@app.put("/profile", response_model=ProfileResponse)
async def edit_profile(
    body: ProfileUpdateRequest,
    user_id: CurrentUser,
    db: Session = Depends(get_db),
) -> ProfileResponse:
    profile = update_profile(db, user_id, body.full_name, body.trade_type)
    logger.info(f"Profile updated: {user_id}")
    return ProfileResponse.model_validate(profile)


# =============================================================================
# Listing Routes
# =============================================================================

def _part_response(part, owner_name=None, owner_trade=None) -> PartResponse:
    return PartResponse.model_validate(part).model_copy(
        update={"owner_name": owner_name, "owner_trade": owner_trade}
    )


def _request_response(part_request, owner_name=None, owner_trade=None) -> PartRequestResponse:
    return PartRequestResponse.model_validate(part_request).model_copy(
        update={"owner_name": owner_name, "owner_trade": owner_trade}
    )


@app.post("/parts", response_model=PartResponse, status_code=status.HTTP_201_CREATED)
async def list_part(
    body: PartCreateRequest,
    user_id: CurrentUser,
    db: Session = Depends(get_db),
) -> PartResponse:
    part = create_part(db, user_id, **body.model_dump(), status="available")
    return _part_response(part)


@app.get("/parts", response_model=PartsListResponse)
async def browse_available_parts(
    user_id: CurrentUser,
    q: Annotated[str | None, Query(description="Search part name or category (case-insensitive)")] = None,
    db: Session = Depends(get_db),
) -> PartsListResponse:
    rows = browse_parts(db, q)
    data = [_part_response(part, name, trade) for part, name, trade in rows]
    return PartsListResponse(data=data, total=len(data))


@app.get("/me/parts", response_model=PartsListResponse)
async def my_parts(user_id: CurrentUser, db: Session = Depends(get_db)) -> PartsListResponse:
    data = [_part_response(part) for part in list_parts_for_owner(db, user_id)]
    return PartsListResponse(data=data, total=len(data))


@app.delete("/parts/{part_id}", response_model=ListingRemovedResponse)
async def delete_part(part_id: str, user_id: CurrentUser, db: Session = Depends(get_db)) -> ListingRemovedResponse:
    part = get_part(db, part_id)
    if part is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Part not found")
    if part.supplier_id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your listing")
    return ListingRemovedResponse(status=remove_listing(db, part, "part"))


@app.post("/requests", response_model=PartRequestResponse, status_code=status.HTTP_201_CREATED)
async def post_request(
    body: PartRequestCreateRequest,
    user_id: CurrentUser,
    db: Session = Depends(get_db),
) -> PartRequestResponse:
    part_request = create_request(db, user_id, **body.model_dump(), status="active")
    return _request_response(part_request)


@app.get("/requests", response_model=PartRequestsListResponse)
async def browse_active_requests(
    user_id: CurrentUser,
    q: Annotated[str | None, Query(description="Search part name or category (case-insensitive)")] = None,
    db: Session = Depends(get_db),
) -> PartRequestsListResponse:
    rows = browse_requests(db, q)
    data = [_request_response(item, name, trade) for item, name, trade in rows]
    return PartRequestsListResponse(data=data, total=len(data))


@app.get("/me/requests", response_model=PartRequestsListResponse)
async def my_requests(user_id: CurrentUser, db: Session = Depends(get_db)) -> PartRequestsListResponse:
    data = [_request_response(item) for item in list_requests_for_owner(db, user_id)]
    return PartRequestsListResponse(data=data, total=len(data))


@app.delete("/requests/{request_id}", response_model=ListingRemovedResponse)
async def delete_request(
    request_id: str,
    user_id: CurrentUser,
    db: Session = Depends(get_db),
) -> ListingRemovedResponse:
    part_request = get_request(db, request_id)
    if part_request is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Request not found")
    if part_request.requester_id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your listing")
    return ListingRemovedResponse(status=remove_listing(db, part_request, "request"))


# =============================================================================
# Match Routes
# =============================================================================

def _load_participant_match(db: Session, match_id: str, user_id: str):
    """Return (match, role) or raise 404/403."""
    match = get_match(db, match_id)
    if match is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Match not found")
    role = participant_role(match, user_id)
    if role is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not a participant of this match")
    return match, role


@app.post(
    "/matches",
    response_model=MatchResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "Matching your own listing"},
        404: {"model": ErrorResponse, "description": "Listing not found"},
        409: {"model": ErrorResponse, "description": "Listing closed"},
    },
)
async def start_match(
    request: Request,
    body: MatchCreateRequest,
    background_tasks: BackgroundTasks,
    user_id: CurrentUser,
    db: Session = Depends(get_db),
) -> MatchResponse:
    """
    Contact the owner of a part or a part request.

    The initiator becomes the requester on a part and the supplier on a
    request. Both parties are notified in the background once the match
    is stored; notification failures never affect this response.
    """
    listing = get_part(db, body.listing_id) if body.listing_type == "part" else get_request(db, body.listing_id)
    if listing is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Listing not found")

    try:
        ensure_listing_open(body.listing_type, listing)
    except ListingClosedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    try:
        supplier_id, requester_id = resolve_parties(
            body.listing_type, listing_owner_id(body.listing_type, listing), user_id
        )
    except SelfMatchError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    match = create_match(db, body.listing_type, listing.id, supplier_id, requester_id)
    record_match_event("created")
    log_route_data(request, match_id=match.id, result="created")

    background_tasks.add_task(
        notify_match, build_match_notification(match, listing.part_name, body.listing_type)
    )
    return MatchResponse.model_validate(match)


@app.get("/matches", response_model=MatchesListResponse)
async def my_matches(user_id: CurrentUser, db: Session = Depends(get_db)) -> MatchesListResponse:
    """All matches of the caller, newest first, from the caller's point of view."""
    data = []
    for row in list_matches_for_user(db, user_id):
        match = row["match"]
        role = participant_role(match, user_id)
        other = "requester" if role == SUPPLIER else "supplier"
        summary = MatchSummary(
            **MatchResponse.model_validate(match).model_dump(),
            role=role,
            counterparty_id=counterparty_id(match, user_id),
            counterparty_name=row[f"{other}_name"],
            counterparty_trade=row[f"{other}_trade"],
            item_name=row["item_name"],
        )
        data.append(summary)
    return MatchesListResponse(data=data, total=len(data))


@app.post(
    "/matches/{match_id}/agree",
    response_model=AgreeResponse,
    responses={
        403: {"model": ErrorResponse, "description": "Not a participant"},
        404: {"model": ErrorResponse, "description": "Match not found"},
    },
)
async def agree_to_connect(
    request: Request,
    match_id: str,
    user_id: CurrentUser,
    db: Session = Depends(get_db),
) -> AgreeResponse:
    """
    Record the caller's consent to share contact details.

    Idempotent. The caller's role decides which flag is set.
    """
    current, role = _load_participant_match(db, match_id, user_id)
    previous_status = current.status

    match = agree_match(db, match_id, role)
    if match is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Match not found")

    record_match_event("agreed")
    if match.status == STATUS_BOTH_AGREED:
        if previous_status != STATUS_BOTH_AGREED:
            record_match_event("both_agreed")
        detail = "Both parties agreed! You can now exchange contact details."
    else:
        detail = "You've agreed to connect. Waiting for the other party."
    log_route_data(request, match_id=match_id, result=match.status)

    return AgreeResponse(match=MatchResponse.model_validate(match), detail=detail)


@app.get(
    "/matches/{match_id}/contact",
    response_model=ContactResponse,
    responses={403: {"model": ErrorResponse, "description": "Consent missing"}},
)
async def counterparty_contact(
    match_id: str,
    user_id: CurrentUser,
    db: Session = Depends(get_db),
) -> ContactResponse:
    """Counterparty contact details; only after both parties agreed."""
    match, _ = _load_participant_match(db, match_id, user_id)
    if derive_status(match.supplier_agreed, match.requester_agreed) != STATUS_BOTH_AGREED:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Contact information is shared only when both parties agree to connect"
        )

    other_id = counterparty_id(match, user_id)
    other = get_user(db, other_id)
    if other is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Counterparty not found")
    profile = get_profile(db, other_id)
    return ContactResponse(
        user_id=other_id,
        email=other.email,
        full_name=profile.full_name if profile else None,
        trade_type=profile.trade_type if profile else None,
    )


# =============================================================================
# Message Routes
# =============================================================================

@app.get("/matches/{match_id}/messages", response_model=MessagesListResponse)
async def list_match_messages(
    match_id: str,
    user_id: CurrentUser,
    db: Session = Depends(get_db),
) -> MessagesListResponse:
    """
    Full conversation history, oldest first.

    Used to hydrate a conversation before the live subscription takes over.
    """
    _load_participant_match(db, match_id, user_id)
    data = [MessageResponse.model_validate(msg) for msg in get_messages(db, match_id)]
    return MessagesListResponse(data=data, total=len(data))


@app.post("/matches/{match_id}/messages", response_model=SendMessageResponse)
async def send_match_message(
    request: Request,
    match_id: str,
    body: SendMessageRequest,
    user_id: CurrentUser,
    db: Session = Depends(get_db),
) -> SendMessageResponse:
    """
    Send a chat message to the other participant.

    Chat is open regardless of consent state. A blank body is ignored.
    """
    match, _ = _load_participant_match(db, match_id, user_id)

    content = body.content.strip()
    if not content:
        record_message_outcome("ignored")
        log_route_data(request, match_id=match_id, result="ignored")
        return SendMessageResponse(status="ignored")

    message = create_message(db, match_id, user_id, counterparty_id(match, user_id), content)
    payload = MessageResponse.model_validate(message)

    delivered = broker.publish(match_id, payload.model_dump())
    logger.debug(f"Message {message.id} pushed to {delivered} subscribers")
    record_message_outcome("sent")
    log_route_data(request, match_id=match_id, result="sent")

    return SendMessageResponse(status="sent", message=payload)


async def _forward_messages(websocket: WebSocket, queue: asyncio.Queue) -> None:
    try:
        while True:
            payload = await queue.get()
            await websocket.send_json(payload)
    except Exception as e:
        logger.info(f"Stopped forwarding messages: {e!r}")


@app.websocket("/ws/matches/{match_id}")
async def match_message_stream(websocket: WebSocket, match_id: str, token: Optional[str] = None):
    """
    Push every message stored in this match after the socket opened.

    Authenticated with ?token=<access token>; only participants may
    subscribe. The subscription is cancelled when the socket closes.
    """
    with SessionLocal() as db:
        session = get_current_session(db, token)
        match = get_match(db, match_id) if session else None
        role = participant_role(match, session["user_id"]) if match else None

    if role is None:
        logger.warning(f"Rejected realtime subscription to match={match_id}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def enqueue(payload: dict) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, payload)

    # Register before accepting so nothing sent after the handshake is missed
    with broker.subscribe(match_id, enqueue):
        await websocket.accept()
        logger.info(f"Realtime subscription opened: match={match_id}, user={session['user_id']}")
        forwarder = asyncio.create_task(_forward_messages(websocket, queue))
        try:
            while True:
                event = await websocket.receive()
                if event["type"] == "websocket.disconnect":
                    break
        finally:
            forwarder.cancel()
    logger.info(f"Realtime subscription closed: match={match_id}")


# =============================================================================
# Bulk Ingestion Route
# =============================================================================

@app.post(
    "/ingest/parts-text",
    response_model=IngestTextResponse,
    responses={
        422: {"model": ErrorResponse, "description": "No parts could be extracted"},
        502: {"model": ErrorResponse, "description": "AI service failure"},
    },
)
async def ingest_text(
    request: Request,
    body: IngestTextRequest,
    user_id: CurrentUser,
    db: Session = Depends(get_db),
) -> IngestTextResponse:
    """
    Turn a pasted parts list into available part listings.

    All-or-nothing: on any failure no part is inserted.
    """
    try:
        parts = await ingest_parts_text(db, user_id, body.text)
    except IngestionError as e:
        record_ingestion_outcome("integration_error" if e.status_code == 502 else "extraction_error")
        log_route_data(request, result="failed")
        raise
    except StoreError:
        record_ingestion_outcome("store_error")
        raise

    record_ingestion_outcome("success")
    log_route_data(request, result="success", count=len(parts))
    logger.info(f"Successfully inserted {len(parts)} parts")

    return IngestTextResponse(
        success=True,
        count=len(parts),
        parts=[_part_response(part) for part in parts],
    )


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )

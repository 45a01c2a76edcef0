import logging

import telnyx
from fastapi import FastAPI, Request, HTTPException, status, BackgroundTasks
from fastapi.responses import PlainTextResponse

import db
from app.context import AppContext, build_context
from app.types.chat_contract import InboundMessage
from config import settings

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
_LOGGER = logging.getLogger(__name__)

# Configure telnyx public key
if settings.TELNYX_PUBLIC_KEY:
    telnyx.public_key = settings.TELNYX_PUBLIC_KEY

app = FastAPI()


def get_context() -> AppContext:
    ctx = getattr(app.state, "ctx", None)
    if ctx is None:
        raise HTTPException(503, "Service not started")
    return ctx


@app.on_event("startup")
async def startup_event():
    # Schema is managed via Alembic; a dead database is fatal at boot
    try:
        await db.ping()
    except Exception:
        _LOGGER.critical("Database unreachable at startup", exc_info=True)
        raise
    app.state.ctx = build_context(settings)
    await app.state.ctx.start()
    _LOGGER.info("Assistant started (transport=%s)", settings.MESSAGE_TRANSPORT)


@app.on_event("shutdown")
async def shutdown_event():
    ctx = getattr(app.state, "ctx", None)
    if ctx is not None:
        await ctx.stop()
        app.state.ctx = None
    await db.dispose_engine()


# --------------------------------------------
# Telnyx payload -> InboundMessage
# --------------------------------------------

def inbound_from_telnyx(payload) -> InboundMessage | None:
    """Map a Telnyx ``message.received`` payload to an ``InboundMessage``.

    Returns None for outbound delivery callbacks and payloads without a
    sender number.
    """
    # TelnyxObject -> dict if needed
    if hasattr(payload, "to_dict"):
        payload = payload.to_dict()

    # Telnyx also reports the bot's own sends; only inbound texts are chat events
    if payload.get("direction", "inbound") != "inbound":
        return None

    sender = payload.get("from") or payload.get("from_", {})
    if hasattr(sender, "to_dict"):
        sender = sender.to_dict()
    from_num = sender.get("phone_number")
    if not from_num:
        return None
    return InboundMessage(**{
        "from": from_num,
        "body": (payload.get("text") or "").strip(),
        "isFromSelf": bool(settings.TELNYX_FROM_NUMBER) and from_num == settings.TELNYX_FROM_NUMBER,
    })


# --------------------------------------------
# Endpoints
# --------------------------------------------
@app.post("/v1/sms/telnyx", response_class=PlainTextResponse)
async def telnyx_webhook(request: Request, background: BackgroundTasks):
    raw_body = await request.body()
    sig = request.headers.get("telnyx-signature-ed25519")
    ts = request.headers.get("telnyx-timestamp")

    _LOGGER.debug("[Webhook] Raw incoming payload: %s", raw_body)
    try:
        if settings.TELNYX_PUBLIC_KEY:
            event = telnyx.Webhook.construct_event(raw_body.decode(), sig, ts)
            payload = event.data["payload"]
        else:  # dev mode: skip signature verification
            payload = (await request.json())["data"]["payload"]
    except Exception as exc:
        _LOGGER.warning("[Webhook] Rejected payload: %s", exc)
        raise HTTPException(400, "Bad signature")

    if payload.get("type") == "ping":
        return PlainTextResponse("PONG")

    message = inbound_from_telnyx(payload)
    if message is None or message.is_from_self:
        return PlainTextResponse("IGNORED", status_code=status.HTTP_200_OK)

    ctx = get_context()
    background.add_task(ctx.pipeline.handle, message)
    return PlainTextResponse("OK")


@app.post("/v1/messages", response_class=PlainTextResponse)
async def bridge_message(message: InboundMessage, background: BackgroundTasks):
    """Inbound events from a chat bridge, already in ``InboundMessage`` shape."""
    ctx = get_context()
    background.add_task(ctx.pipeline.handle, message)
    return PlainTextResponse("OK")


@app.get("/healthz")
async def healthz():
    ctx = getattr(app.state, "ctx", None)
    return {
        "status": "ok",
        "providers": ctx.registry.list_available() if ctx is not None else [],
        "scheduled_reminders": len(ctx.reminders.scheduled_ids) if ctx is not None else 0,
    }

"""
Twilio Webhook Handler for chatrelay.

Receives WhatsApp messages pushed by Twilio and hands them to the
InboundPipeline in a background task.

Twilio retries any request that does not answer quickly with a 2xx, so
both routes always acknowledge with an empty TwiML document, whatever
happens to the auto-reply.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Request, Response

from chatrelay.transports import InboundMessage, Provider, TwilioPollTransport, get_transport

logger = logging.getLogger(__name__)

TWIML_ACK = "<Response></Response>"
DEFAULT_WEBHOOK_PATH = "/webhook/whatsapp"


def _ack() -> Response:
    return Response(content=TWIML_ACK, media_type="text/xml", status_code=200)


async def _process_inbound(message: InboundMessage, transport: TwilioPollTransport) -> None:
    """
    Background task: run the reply pipeline for one webhook message.

    Runs after the acknowledgement has been sent.
    """
    from chatrelay.app.dependencies import get_pipeline

    outcome = await get_pipeline().handle(message, transport)
    logger.debug(f"Webhook message {message.id} handled: {outcome.value}")


async def receive_message(request: Request, background_tasks: BackgroundTasks) -> Response:
    """
    Receive an inbound WhatsApp message.

    Form fields: From, To, Body, MessageSid, plus MediaUrl0 /
    MediaContentType0 for the first attachment.
    """
    try:
        form_data = dict(await request.form())
        transport = get_transport(Provider.TWILIO)
        message = await transport.normalize_request(request, form_data)

        logger.info(
            f"Twilio webhook: sid={message.id}, from={message.from_address}, "
            f"has_body={bool(message.body)}, media={message.media_type or 'none'}"
        )
        background_tasks.add_task(_process_inbound, message, transport)

    except ValueError as e:
        logger.warning(f"Invalid Twilio webhook payload: {e}")
    except Exception as e:
        logger.error(f"Twilio webhook error: {e}", exc_info=True)

    return _ack()


async def receive_status(request: Request) -> Response:
    """
    Handle Twilio message delivery status updates.

    Logged for monitoring only.
    """
    try:
        form = await request.form()

        message_sid = str(form.get("MessageSid") or form.get("SmsSid") or "")
        status = str(form.get("MessageStatus") or "").lower()
        to_number = str(form.get("To") or "")
        error_code = str(form.get("ErrorCode") or "")

        logger.info(
            f"Twilio status: sid={message_sid}, status={status}, to={to_number}"
            f"{f', error_code={error_code}' if error_code else ''}"
        )
    except Exception as e:
        logger.error(f"Twilio status error: {e}", exc_info=True)

    return _ack()


def create_webhook_router(path: str = DEFAULT_WEBHOOK_PATH) -> APIRouter:
    """
    Build the webhook router for a configurable path.

    Routes:
        POST <path>          inbound messages
        POST <path>/status   delivery status callbacks
    """
    path = "/" + path.strip("/")
    router = APIRouter(tags=["webhooks"])
    router.add_api_route(
        path,
        receive_message,
        methods=["POST"],
        summary="Receive Twilio WhatsApp webhook",
        response_class=Response,
    )
    router.add_api_route(
        f"{path}/status",
        receive_status,
        methods=["POST"],
        summary="Twilio delivery status callback",
        response_class=Response,
    )
    return router

"""
LINE Webhook 接口（/line）。

签名校验必须基于原始请求体字节，因此 webhook 直接读取 request.body()，
不走 Pydantic 请求体解析。
"""

import json
from typing import Any

from fastapi import APIRouter, Depends, Request
from loguru import logger

from gembot.api.deps import get_channels
from gembot.api.errors import error_response, ok
from gembot.channels.manager import ChannelManager

router = APIRouter()

SIGNATURE_HEADER = "x-line-signature"


def _parse_payload(raw: bytes) -> dict[str, Any] | None:
    try:
        payload = json.loads(raw or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return payload if isinstance(payload, dict) else None


@router.post("/webhook")
async def webhook(request: Request, channels: ChannelManager = Depends(get_channels)):
    """
    LINE Messaging API 的 Webhook 入口。

    - 无签名：视为手工测试请求，只回显事件数
    - 有签名但与所有 bot 都不匹配：403
    - 匹配：并发处理全部事件后返回 200
    """
    raw = await request.body()
    payload = _parse_payload(raw)
    if payload is None:
        return error_response("Invalid JSON body", 400)

    events = payload.get("events") or []
    signature = request.headers.get(SIGNATURE_HEADER)

    if not signature:
        logger.warning("No LINE signature found, processing as test request")
        return ok(
            {
                "eventsReceived": len(events),
                "note": "Real LINE requests will include X-Line-Signature header",
            },
            "Test webhook received (no signature validation)",
        )

    channel = channels.match_signature(raw, signature)
    if channel is None:
        logger.error(f"LINE signature validation failed (destination {payload.get('destination')})")
        return error_response("Signature validation failed - no matching bot found", 403)

    processed = await channel.handle_webhook(payload)
    return ok({"eventsProcessed": processed})


@router.post("/webhook-test")
async def webhook_test(request: Request):
    """回显收到的 Webhook 请求（不校验签名、不处理事件），用于排查接入问题。"""
    payload = _parse_payload(await request.body())
    if payload is None:
        return error_response("Invalid JSON body", 400)

    events = payload.get("events") or []
    destination = payload.get("destination")
    logger.info(f"Webhook-test received - Bot ID: {destination or 'N/A'}, Events: {len(events)}")
    return ok(
        {"destination": destination, "eventsCount": len(events), "body": payload},
        "Webhook test received",
    )


@router.get("/health")
async def health(channels: ChannelManager = Depends(get_channels)):
    return {
        "status": "LINE Bot server is running",
        "bots": channels.enabled_channels,
        "channels": channels.get_status(),
    }

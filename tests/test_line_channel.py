"""
Tests for the LINE channel: signatures, event parsing and reply delivery.
"""

import json

import httpx
import pytest

from gembot.bus.events import InboundMessage, OutboundMessage
from gembot.channels.line import MAX_TEXT_LENGTH, LineChannel, compute_signature
from gembot.channels.manager import ChannelManager
from gembot.config.schema import ChannelsConfig, Config, LineBotConfig, LineConfig

from tests.conftest import LINE_SECRET, LINE_TOKEN


class RecordingHandler:
    """Message handler that records inbound messages and echoes them."""

    def __init__(self, reply: str | None = "echo"):
        self.reply = reply
        self.received: list[InboundMessage] = []

    async def __call__(self, msg: InboundMessage) -> OutboundMessage | None:
        self.received.append(msg)
        if self.reply is None:
            return None
        return OutboundMessage(
            channel=msg.channel,
            chat_id=msg.chat_id,
            content=self.reply,
            bot_id=msg.bot_id,
            reply_token=msg.reply_token,
        )


class RecordingTransport:
    """httpx mock transport that stores every request."""

    def __init__(self, status_code: int = 200):
        self.status_code = status_code
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json={})


def _channel(handler, transport=None, **bot_kwargs) -> LineChannel:
    bot = LineBotConfig(
        name="main",
        channel_secret=LINE_SECRET,
        channel_access_token=LINE_TOKEN,
        **bot_kwargs,
    )
    client = httpx.AsyncClient(transport=httpx.MockTransport(transport or RecordingTransport()))
    return LineChannel(bot, handler, client=client)


def _text_event(text="你好", user_id="U-1", reply_token="rt-1", **source):
    return {
        "type": "message",
        "replyToken": reply_token,
        "source": {"type": "user", "userId": user_id, **source},
        "message": {"id": "m-1", "type": "text", "text": text},
    }


class TestSignature:
    """X-Line-Signature verification."""

    def test_matching_signature(self):
        body = b'{"events":[]}'
        channel = _channel(RecordingHandler())
        assert channel.verify_signature(body, compute_signature(LINE_SECRET, body))

    def test_signature_over_raw_bytes(self):
        """Test that a re-serialized body no longer verifies."""
        raw = b'{"events": [],  "destination": "B"}'
        signature = compute_signature(LINE_SECRET, raw)
        reserialized = json.dumps(json.loads(raw)).encode()

        channel = _channel(RecordingHandler())
        assert not channel.verify_signature(reserialized, signature)

    def test_wrong_secret(self):
        body = b"{}"
        channel = _channel(RecordingHandler())
        assert not channel.verify_signature(body, compute_signature("other-secret", body))

    def test_empty_signature(self):
        channel = _channel(RecordingHandler())
        assert not channel.verify_signature(b"{}", "")


class TestEventHandling:
    """Webhook event parsing."""

    @pytest.mark.asyncio
    async def test_direct_text_message(self):
        handler = RecordingHandler()
        channel = _channel(handler)

        count = await channel.handle_webhook({"destination": "B-main", "events": [_text_event()]})

        assert count == 1
        msg = handler.received[0]
        assert msg.channel == "line"
        assert msg.sender_id == "U-1"
        assert msg.chat_id == "U-1"
        assert msg.group_id is None
        assert msg.bot_id == "B-main"
        assert msg.content == "你好"
        assert msg.reply_token == "rt-1"

    @pytest.mark.asyncio
    async def test_group_message_replies_to_group(self):
        handler = RecordingHandler()
        channel = _channel(handler)

        await channel.handle_webhook({"events": [_text_event(groupId="C-1")]})

        msg = handler.received[0]
        assert msg.group_id == "C-1"
        assert msg.chat_id == "C-1"
        assert msg.sender_id == "U-1"

    @pytest.mark.asyncio
    async def test_room_treated_as_group(self):
        handler = RecordingHandler()
        channel = _channel(handler)

        await channel.handle_webhook({"events": [_text_event(roomId="R-1")]})

        assert handler.received[0].group_id == "R-1"

    @pytest.mark.asyncio
    async def test_sticker_message(self):
        handler = RecordingHandler()
        channel = _channel(handler)
        event = {
            "type": "message",
            "replyToken": "rt",
            "source": {"type": "user", "userId": "U-1"},
            "message": {"id": "m", "type": "sticker", "packageId": "446", "stickerId": "1988"},
        }

        await channel.handle_webhook({"events": [event]})

        msg = handler.received[0]
        assert msg.is_sticker
        assert msg.content == ""
        assert msg.metadata["package_id"] == "446"
        assert msg.metadata["sticker_id"] == "1988"

    @pytest.mark.asyncio
    async def test_ignored_events(self):
        """Test that follows, images and sourceless events produce nothing."""
        handler = RecordingHandler()
        channel = _channel(handler)
        events = [
            {"type": "follow", "source": {"userId": "U-1"}},
            {"type": "message", "source": {"userId": "U-1"}, "message": {"type": "image"}},
            {"type": "message", "source": {}, "message": {"type": "text", "text": "x"}},
        ]

        count = await channel.handle_webhook({"events": events})

        assert count == 3
        assert handler.received == []

    @pytest.mark.asyncio
    async def test_allow_list(self):
        handler = RecordingHandler()
        channel = _channel(handler, allow_from=["U-ok"])

        await channel.handle_webhook({"events": [_text_event(user_id="U-blocked"), _text_event(user_id="U-ok")]})

        assert [m.sender_id for m in handler.received] == ["U-ok"]

    @pytest.mark.asyncio
    async def test_failing_event_does_not_stop_batch(self):
        """Test that one handler error leaves the other events processed."""
        handler = RecordingHandler()

        async def flaky(msg):
            if msg.content == "boom":
                raise RuntimeError("handler failed")
            return await handler(msg)

        channel = _channel(flaky)
        count = await channel.handle_webhook({"events": [_text_event("boom"), _text_event("fine")]})

        assert count == 2
        assert [m.content for m in handler.received] == ["fine"]


class TestDelivery:
    """Reply / Push API calls."""

    @pytest.mark.asyncio
    async def test_reply_api_with_token(self):
        transport = RecordingTransport()
        channel = _channel(RecordingHandler("回覆"), transport)

        await channel.handle_webhook({"events": [_text_event()]})

        request = transport.requests[0]
        assert request.url.path == "/v2/bot/message/reply"
        assert request.headers["Authorization"] == f"Bearer {LINE_TOKEN}"
        assert json.loads(request.content) == {
            "replyToken": "rt-1",
            "messages": [{"type": "text", "text": "回覆"}],
        }

    @pytest.mark.asyncio
    async def test_push_api_without_token(self):
        transport = RecordingTransport()
        channel = _channel(RecordingHandler(), transport)

        await channel.send(OutboundMessage(channel="line", chat_id="C-1", content="hi"))

        request = transport.requests[0]
        assert request.url.path == "/v2/bot/message/push"
        assert json.loads(request.content)["to"] == "C-1"

    @pytest.mark.asyncio
    async def test_long_reply_is_truncated(self):
        transport = RecordingTransport()
        channel = _channel(RecordingHandler(), transport)

        await channel.send(OutboundMessage(channel="line", chat_id="U-1", content="x" * 6000))

        text = json.loads(transport.requests[0].content)["messages"][0]["text"]
        assert len(text) == MAX_TEXT_LENGTH

    @pytest.mark.asyncio
    async def test_send_raises_on_http_error(self):
        channel = _channel(RecordingHandler(), RecordingTransport(status_code=400))
        with pytest.raises(httpx.HTTPStatusError):
            await channel.send(OutboundMessage(channel="line", chat_id="U-1", content="hi"))

    @pytest.mark.asyncio
    async def test_delivery_failure_is_not_fatal(self):
        """Test that a rejected reply still counts as a handled event."""
        handler = RecordingHandler()
        channel = _channel(handler, RecordingTransport(status_code=500))

        count = await channel.handle_webhook({"events": [_text_event()]})

        assert count == 1
        assert len(handler.received) == 1

    @pytest.mark.asyncio
    async def test_no_reply_means_no_request(self):
        transport = RecordingTransport()
        channel = _channel(RecordingHandler(reply=None), transport)

        await channel.handle_webhook({"events": [_text_event()]})

        assert transport.requests == []


class TestChannelManager:
    """Multi-bot registry and signature routing."""

    def _config(self, *bots: LineBotConfig) -> Config:
        return Config(channels=ChannelsConfig(line=LineConfig(bots=list(bots))))

    def test_bots_without_credentials_are_skipped(self):
        manager = ChannelManager(
            self._config(
                LineBotConfig(name="a", channel_secret="s-a", channel_access_token="t-a"),
                LineBotConfig(name="b", channel_secret="", channel_access_token="t-b"),
            ),
            RecordingHandler(),
        )
        assert manager.enabled_channels == ["line:a"]

    def test_match_signature_picks_the_right_bot(self):
        manager = ChannelManager(
            self._config(
                LineBotConfig(name="a", channel_secret="s-a", channel_access_token="t-a"),
                LineBotConfig(name="b", channel_secret="s-b", channel_access_token="t-b"),
            ),
            RecordingHandler(),
        )
        body = b'{"events":[]}'

        assert manager.match_signature(body, compute_signature("s-b", body)).label == "b"
        assert manager.match_signature(body, compute_signature("s-c", body)) is None

    def test_disabled_line(self):
        config = Config(channels=ChannelsConfig(line=LineConfig(
            enabled=False,
            bots=[LineBotConfig(name="a", channel_secret="s", channel_access_token="t")],
        )))
        assert ChannelManager(config, RecordingHandler()).channels == {}

    def test_unnamed_bots_are_numbered(self):
        manager = ChannelManager(
            self._config(LineBotConfig(channel_secret="s", channel_access_token="t")),
            RecordingHandler(),
        )
        assert manager.enabled_channels == ["line:1"]

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        manager = ChannelManager(
            self._config(LineBotConfig(name="a", channel_secret="s", channel_access_token="t")),
            RecordingHandler(),
        )
        await manager.start_all()
        assert manager.get_status() == {"line:a": {"enabled": True, "running": True}}

        await manager.stop_all()
        assert manager.get_status()["line:a"]["running"] is False

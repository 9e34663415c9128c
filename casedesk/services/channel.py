"""
casedesk External Channel

Best-effort delivery of case events to one external chat destination
(Telegram Bot API).

Nothing in this module raises to its caller: a failed, slow or
unconfigured channel is logged and otherwise ignored, so it can never
fail or roll back the case write that produced the message. Sends run
on a background worker so request handlers never wait on the network.
"""

import asyncio
import html
import logging
import re
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

import httpx
from pydantic import BaseModel

from ..models.case import Case, CaseKind, CaseStatus, utcnow

logger = logging.getLogger(__name__)


class ChannelMessage(BaseModel):
    text: str
    parse_mode: str = "HTML"  # HTML | Markdown
    chat_id: Optional[str] = None  # None = configured destination


# =============================================================================
# RENDERING
# =============================================================================

_PRODUCT_HINTS = re.compile(
    r"sản phẩm|danh sách|hàng hóa|thiết bị|máy móc|linh kiện",
    re.IGNORECASE
)
_PRODUCT_LINE_MARKERS = ("|", "SL:", "Mã:", "S/N:")


def _fit(value: str, width: int) -> str:
    if len(value) > width:
        return value[:width - 3] + "..."
    return value.ljust(width)


def format_product_list(description: Optional[str]) -> str:
    """
    Lay out a receiving case's product lines as a monospace table.

    Lines look like "Name | SL: 2 | Mã: ABC | S/N: 123". Descriptions
    that mention goods but have no structured lines become a bullet
    list; anything else is returned unchanged.
    """
    if not description:
        return "Không có mô tả"
    if not _PRODUCT_HINTS.search(description):
        return html.escape(description)

    lines = [line.strip() for line in description.splitlines() if line.strip()]
    product_lines = [
        line for line in lines
        if not line.startswith(("•", "-"))
        and any(marker in line for marker in _PRODUCT_LINE_MARKERS)
    ]

    if not product_lines:
        return "\n".join(
            html.escape(line) if line.startswith(("•", "-")) else f"• {html.escape(line)}"
            for line in lines
        )

    rows = []
    for line in product_lines:
        parts = [p.strip() for p in line.split("|")]
        name = parts[0] if parts else ""
        quantity = parts[1].replace("SL:", "").strip() if len(parts) > 1 else "1"
        code = parts[2].replace("Mã:", "").strip() if len(parts) > 2 else "-"
        serial = parts[3].replace("S/N:", "").strip() if len(parts) > 3 else "-"
        rows.append(
            f"│ {_fit(name, 25)} │ {(quantity or '1').rjust(2)} │ "
            f"{_fit(code or '-', 8)} │ {_fit(serial or '-', 20)} │"
        )

    header = (
        "<pre>\n"
        f"│ {'Tên sản phẩm'.ljust(25)} │ SL │ {'Mã'.ljust(8)} │ {'S/N'.ljust(20)} │\n"
    )
    return header + html.escape("\n".join(rows)) + "\n</pre>"


def format_timestamp(value: datetime, timezone_name: str = "Asia/Ho_Chi_Minh") -> str:
    return value.astimezone(ZoneInfo(timezone_name)).strftime("%H:%M:%S %d/%m/%Y")


def render_case_created(
    case: Case,
    requester_name: str,
    handler_name: Optional[str],
    dashboard_url: str,
    timezone_name: str = "Asia/Ho_Chi_Minh"
) -> str:
    """
    HTML message announcing a new case.

    Receiving cases use a condensed layout: no requester line, the
    supplier shown instead, products laid out as a table. Every other
    kind gets the full layout.
    """
    title = f"Case {case.kind.label.replace('Case ', '').upper()} được tạo"
    handler = html.escape(handler_name or "Chưa xác định")
    created = format_timestamp(case.created_at, timezone_name)
    link = f'🔗 <b>Xem chi tiết:</b> <a href="{html.escape(dashboard_url)}">Admin Dashboard</a>'

    if case.kind == CaseKind.RECEIVING:
        return "\n".join([
            f"🚨 <b>{title}</b>",
            "",
            f"👨‍💼 <b>Người xử lý:</b> {handler}",
            f"📋 <b>Tiêu đề:</b> {html.escape(case.title)}",
            f"📝 <b>Mô tả chi tiết:</b> {format_product_list(case.description)}",
            "",
            f"📦 <b>Nhận hàng từ cty:</b> {html.escape(case.counterparty_name or 'Chưa xác định')}",
            "",
            f"⏰ <b>Thời gian tạo:</b> {created}",
            "",
            link,
        ])

    return "\n".join([
        f"🚨 <b>{title}</b>",
        "",
        f"👤 <b>Người yêu cầu:</b> {html.escape(requester_name)}",
        f"👨‍💼 <b>Người xử lý:</b> {handler}",
        "",
        f"{case.kind.emoji} <b>Loại Case:</b> {case.kind.label}",
        f"📋 <b>Tiêu đề:</b> {html.escape(case.title)}",
        f"📝 <b>Mô tả chi tiết:</b> {html.escape(case.description or 'Không có mô tả')}",
        "",
        f"⏰ <b>Thời gian tạo:</b> {created}",
        "",
        link,
    ])


def render_case_transitioned(
    case: Case,
    previous_status: CaseStatus,
    dashboard_url: str,
    timezone_name: str = "Asia/Ho_Chi_Minh"
) -> str:
    icon = "✅" if case.status == CaseStatus.COMPLETED else "🔄"
    return "\n".join([
        f"{icon} <b>{case.kind.label} cập nhật trạng thái</b>",
        "",
        f"📋 <b>Tiêu đề:</b> {html.escape(case.title)}",
        f"📊 <b>Trạng thái:</b> {case.kind.status_label(previous_status)} → {case.status_label}",
        f"⏰ <b>Thời gian:</b> {format_timestamp(case.updated_at, timezone_name)}",
        "",
        f'🔗 <a href="{html.escape(dashboard_url)}">Admin Dashboard</a>',
    ])


def render_stale_case(
    case: Case,
    handler_name: Optional[str],
    threshold_hours: int,
    dashboard_url: str,
    timezone_name: str = "Asia/Ho_Chi_Minh"
) -> str:
    return "\n".join([
        f"⏳ <b>{case.kind.label} quá hạn {threshold_hours}h</b>",
        "",
        f"📋 <b>Tiêu đề:</b> {html.escape(case.title)}",
        f"👨‍💼 <b>Người xử lý:</b> {html.escape(handler_name or 'Chưa xác định')}",
        f"📊 <b>Trạng thái:</b> {case.status_label}",
        f"🗓️ <b>Bắt đầu:</b> {format_timestamp(case.start_date, timezone_name)}",
        "",
        f'🔗 <a href="{html.escape(dashboard_url)}">Admin Dashboard</a>',
    ])


# =============================================================================
# TRANSPORT
# =============================================================================

class TelegramChannel:
    """
    Sends messages through the Telegram Bot API `sendMessage` method.

    Usage:
        channel = TelegramChannel(bot_token="123:abc", chat_id="-100200300")
        await channel.send(ChannelMessage(text="<b>hello</b>"))
    """

    def __init__(
        self,
        bot_token: Optional[str],
        chat_id: Optional[str],
        api_base: str = "https://api.telegram.org",
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    async def send(self, message: ChannelMessage) -> bool:
        """
        One outbound call. True on a 2xx answer, False on anything else.

        Network errors, timeouts, auth failures and bad destinations are
        all logged and swallowed.
        """
        chat_id = message.chat_id or self.chat_id
        if not self.bot_token or not chat_id:
            logger.warning("Telegram channel not configured; message dropped")
            return False

        payload = {
            "chat_id": chat_id,
            "text": message.text,
            "parse_mode": message.parse_mode,
        }
        try:
            async with self._get_client() as client:
                response = await client.post(
                    f"{self.api_base}/bot{self.bot_token}/sendMessage",
                    json=payload
                )
                response.raise_for_status()
        except httpx.TimeoutException:
            logger.warning(f"Telegram send timed out after {self.timeout}s")
            return False
        except httpx.HTTPStatusError as e:
            logger.error(
                f"Telegram rejected message: HTTP {e.response.status_code} "
                f"{e.response.text[:200]}"
            )
            return False
        except Exception:
            logger.exception("Telegram send failed")
            return False

        logger.debug(f"Telegram message delivered to chat {chat_id}")
        return True

    async def check_configuration(self) -> bool:
        """Send a self-test message to the configured destination."""
        if not self.is_configured:
            logger.warning("Telegram configuration missing (bot token or chat id)")
            return False

        text = "\n".join([
            "🧪 <b>Test Telegram Bot</b>",
            "",
            "✅ Telegram configuration is working!",
            f"⏰ <b>Test time:</b> {format_timestamp(utcnow())}",
            f"💬 <b>Chat:</b> {html.escape(str(self.chat_id))}",
        ])
        return await self.send(ChannelMessage(text=text))

    def _get_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)


# =============================================================================
# BACKGROUND WORKER
# =============================================================================

class ChannelWorker:
    """
    Single-consumer queue in front of the channel.

    `submit` never blocks and never raises; when the queue is full the
    message is dropped with a warning. Start and stop it with the
    application lifespan.
    """

    def __init__(self, channel, maxsize: int = 100):
        self.channel = channel
        self._queue: "asyncio.Queue[ChannelMessage]" = asyncio.Queue(maxsize=maxsize)
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def submit(self, message: ChannelMessage) -> bool:
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("Channel queue full; message dropped")
            return False
        return True

    async def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="casedesk-channel-worker")
        logger.info("Channel worker started")

    async def stop(self, drain_timeout: float = 5.0) -> None:
        """Flush what is queued (bounded by `drain_timeout`), then stop."""
        if self._task is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Channel worker stopped with {self.pending} message(s) unsent")
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Channel worker stopped")

    async def drain(self) -> None:
        """Wait until every queued message has been attempted."""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                await self.channel.send(message)
            except Exception:
                logger.exception("Channel send raised; message dropped")
            finally:
                self._queue.task_done()

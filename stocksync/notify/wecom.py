#==========================================================================================
# stocksync/notify/wecom.py
# Pass notifications to a WeCom (WeChat Work) group robot webhook.
# A failed notification is logged and never fails the pass.
#==========================================================================================
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from stocksync.config import settings

logger = logging.getLogger("uvicorn.error")

STATUS_SUCCESS = "success"
STATUS_PARTIAL = "partial"
STATUS_NO_CHANGES = "no_changes"
STATUS_FAILED = "failed"

TITLES = {
    STATUS_SUCCESS: "Stock sync completed",
    STATUS_PARTIAL: "Stock sync partially failed",
    STATUS_NO_CHANGES: "Stock sync: no changes",
    STATUS_FAILED: "Stock sync failed",
}

MAX_LISTED_SKUS = 10
MAX_LISTED_FAILURES = 5


def pass_status(outcome) -> Optional[str]:
    """success | partial | no_changes | failed; None for a skipped trigger."""
    if outcome.skipped:
        return None
    if not outcome.success:
        return STATUS_FAILED
    stats = outcome.stats or {}
    if stats.get("total_failed", 0) or any(t.error for t in outcome.site_tallies):
        return STATUS_PARTIAL
    if stats.get("total_synced_to_instock", 0) or stats.get("total_synced_to_outofstock", 0):
        return STATUS_SUCCESS
    return STATUS_NO_CHANGES


def _sku_line(label: str, skus: Sequence[str]) -> str:
    shown = ", ".join(skus[:MAX_LISTED_SKUS])
    more = f" (+{len(skus) - MAX_LISTED_SKUS} more)" if len(skus) > MAX_LISTED_SKUS else ""
    return f"> {label} ({len(skus)}): {shown}{more}"


def build_message(outcome, status: str) -> Tuple[str, str]:
    """(title, markdown body) for one finished pass."""
    title = TITLES[status]
    if status == STATUS_FAILED:
        lines = [f"**Error**: {outcome.error or 'unknown'}"]
        if outcome.batch_id:
            lines.append(f"**Batch**: {outcome.batch_id}")
        return title, "\n".join(lines)

    stats = outcome.stats
    lines = [
        f"**Checked**: {stats.get('total_checked', 0)}",
        f"**To instock**: {stats.get('total_synced_to_instock', 0)}",
        f"**To out of stock**: {stats.get('total_synced_to_outofstock', 0)}",
        f"**Failed**: {stats.get('total_failed', 0)}",
        f"**Skipped**: {stats.get('total_skipped', 0)}",
    ]
    seconds = (outcome.metrics or {}).get("total_seconds")
    if seconds is not None:
        lines.append(f"**Duration**: {seconds}s")

    unchanged: List[str] = []
    for t in outcome.site_tallies:
        changed = t.changed_skus
        failures = t.failures
        if not (changed["to_instock"] or changed["to_outofstock"] or failures or t.error):
            unchanged.append(t.site_name)
            continue
        lines.append("")
        lines.append(f"**{t.site_name}**")
        if t.error:
            lines.append(f"> site error: {t.error}")
        if changed["to_instock"]:
            lines.append(_sku_line("instock", changed["to_instock"]))
        if changed["to_outofstock"]:
            lines.append(_sku_line("outofstock", changed["to_outofstock"]))
        if failures:
            shown = ", ".join(f"{d['sku']}({d.get('error', '')})" for d in failures[:MAX_LISTED_FAILURES])
            lines.append(f"> failed ({len(failures)}): {shown}")
    if unchanged:
        lines.append("")
        lines.append(f"Unchanged: {', '.join(unchanged)}")
    return title, "\n".join(lines)


class PassNotifier:
    def __init__(
        self,
        webhook_url: str,
        *,
        on_success: bool = True,
        on_failure: bool = True,
        on_no_changes: bool = False,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.webhook_url = webhook_url
        self.on_success = on_success
        self.on_failure = on_failure
        self.on_no_changes = on_no_changes
        self.timeout = timeout
        self._client = client

    @classmethod
    def from_settings(cls) -> Optional["PassNotifier"]:
        if not settings.SYNC_NOTIFY_WEBHOOK_URL:
            return None
        return cls(
            settings.SYNC_NOTIFY_WEBHOOK_URL,
            on_success=settings.SYNC_NOTIFY_ON_SUCCESS,
            on_failure=settings.SYNC_NOTIFY_ON_FAILURE,
            on_no_changes=settings.SYNC_NOTIFY_ON_NO_CHANGES,
            timeout=settings.SYNC_NOTIFY_TIMEOUT_SECONDS,
        )

    def wants(self, status: Optional[str]) -> bool:
        if status == STATUS_SUCCESS:
            return self.on_success
        if status in (STATUS_PARTIAL, STATUS_FAILED):
            return self.on_failure
        if status == STATUS_NO_CHANGES:
            return self.on_no_changes
        return False

    async def notify_pass(self, outcome) -> bool:
        """Send the pass summary when its status is enabled. True only if the robot accepted it."""
        status = pass_status(outcome)
        if not self.wants(status):
            return False
        title, content = build_message(outcome, status)
        return await self.send(title, content, ok=status in (STATUS_SUCCESS, STATUS_NO_CHANGES))

    async def send(self, title: str, content: str, ok: bool = True) -> bool:
        payload: Dict[str, Any] = {
            "msgtype": "markdown",
            "markdown": {"content": f"### {'✅' if ok else '❌'} {title}\n{content}"},
        }
        try:
            if self._client is not None:
                resp = await self._client.post(self.webhook_url, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.post(self.webhook_url, json=payload)
        except httpx.HTTPError as e:
            logger.warning("[NOTIFY] webhook request failed: %s", e)
            return False

        if resp.status_code != 200:
            logger.warning("[NOTIFY] webhook answered HTTP %s", resp.status_code)
            return False
        try:
            body = resp.json()
        except ValueError:
            body = {}
        # the robot answers 200 with a non-zero errcode on bad keys or rate limits
        if isinstance(body, dict) and body.get("errcode", 0) != 0:
            logger.warning("[NOTIFY] webhook rejected message: %s", body.get("errmsg"))
            return False
        logger.info("[NOTIFY] sent: %s", title)
        return True

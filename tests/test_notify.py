import json

import httpx
import pytest

from stocksync.config import settings
from stocksync.notify.wecom import (
    STATUS_FAILED,
    STATUS_NO_CHANGES,
    STATUS_PARTIAL,
    STATUS_SUCCESS,
    PassNotifier,
    build_message,
    pass_status,
)
from stocksync.sync.pipeline import PassOutcome, aggregate
from stocksync.sync.recorder import SiteTally

HOOK = "https://qyapi.weixin.qq.com/cgi-bin/webhook/send?key=test"


def _outcome(*tallies, success=True, error=None):
    return PassOutcome(
        success=success,
        batch_id="b-1",
        stats=aggregate(list(tallies)),
        error=error,
        metrics={"total_seconds": 1.5},
        site_tallies=list(tallies),
    )


def _changed_site():
    t = SiteTally(site_id="s1", site_name="alpha")
    for i in range(12):
        t.add(f"W{i:02d}", "to_instock")
    t.add("X1", "to_outofstock")
    t.add("X2", "skipped", reason="exclude_sku_prefix")
    return t


def _quiet_site():
    t = SiteTally(site_id="s2", site_name="beta")
    t.add("W1", "noop")
    return t


def _notifier(handler, **flags):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PassNotifier(HOOK, client=http, **flags)


def test_pass_status():
    assert pass_status(_outcome(_changed_site())) == STATUS_SUCCESS
    assert pass_status(_outcome(_quiet_site())) == STATUS_NO_CHANGES

    broken = _quiet_site()
    broken.add("W9", "failed", error="update_failed: HTTP 403")
    assert pass_status(_outcome(broken)) == STATUS_PARTIAL
    assert pass_status(_outcome(SiteTally(site_id="s3", site_name="gamma", error="ConnectError"))) == STATUS_PARTIAL

    assert pass_status(PassOutcome(success=False, error="ERP down")) == STATUS_FAILED
    assert pass_status(PassOutcome(success=True, skipped=True)) is None

def test_message_lists_changes_per_site_and_unchanged_sites():
    title, content = build_message(_outcome(_changed_site(), _quiet_site()), STATUS_SUCCESS)
    assert title == "Stock sync completed"
    assert "**To instock**: 12" in content
    assert "**Duration**: 1.5s" in content
    assert "> instock (12): W00, W01" in content
    assert "(+2 more)" in content
    assert "W11" not in content
    assert "> outofstock (1): X1" in content
    assert "X2" not in content
    assert content.endswith("Unchanged: beta")

def test_failed_message_carries_error():
    title, content = build_message(PassOutcome(success=False, batch_id="b-9", error="HTTP 502"), STATUS_FAILED)
    assert title == "Stock sync failed"
    assert "**Error**: HTTP 502" in content
    assert "b-9" in content

@pytest.mark.asyncio
async def test_sends_markdown_payload():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"errcode": 0, "errmsg": "ok"})

    notifier = _notifier(handler)
    assert await notifier.notify_pass(_outcome(_changed_site())) is True
    assert seen["url"] == HOOK
    assert seen["body"]["msgtype"] == "markdown"
    assert seen["body"]["markdown"]["content"].startswith("### ✅ Stock sync completed\n")

@pytest.mark.asyncio
async def test_flags_gate_each_status():
    calls = []

    def handler(request):
        calls.append(json.loads(request.content)["markdown"]["content"])
        return httpx.Response(200, json={"errcode": 0})

    notifier = _notifier(handler, on_success=False, on_failure=True, on_no_changes=False)
    assert await notifier.notify_pass(_outcome(_changed_site())) is False
    assert await notifier.notify_pass(_outcome(_quiet_site())) is False
    assert calls == []

    assert await notifier.notify_pass(PassOutcome(success=False, error="ERP down")) is True
    assert calls[0].startswith("### ❌ Stock sync failed")

    notifier.on_no_changes = True
    assert await notifier.notify_pass(_outcome(_quiet_site())) is True
    assert len(calls) == 2

@pytest.mark.asyncio
async def test_webhook_errors_are_reported_not_raised():
    def refused(request):
        raise httpx.ConnectError("refused", request=request)

    assert await _notifier(refused).send("t", "c") is False
    assert await _notifier(lambda request: httpx.Response(500)).send("t", "c") is False
    rejected = _notifier(lambda request: httpx.Response(200, json={"errcode": 93000, "errmsg": "invalid key"}))
    assert await rejected.send("t", "c") is False

def test_no_webhook_url_means_no_notifier(monkeypatch):
    monkeypatch.setattr(settings, "SYNC_NOTIFY_WEBHOOK_URL", "")
    assert PassNotifier.from_settings() is None
    monkeypatch.setattr(settings, "SYNC_NOTIFY_WEBHOOK_URL", HOOK)
    assert PassNotifier.from_settings().webhook_url == HOOK

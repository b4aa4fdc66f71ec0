from __future__ import annotations

import uuid

import pytest

from app.push.ledger import DONE, FAILED, create_job, get_job
from app.push.pipeline import merge_image, reference_audience, run_job
from conftest import SEND_URL, add_token, fail_next_execute


class RecordingGateway:
  def __init__(self) -> None:
    self.messages: list[dict] = []

  async def send(self, url: str, message: dict) -> str | None:
    self.messages.append(message)
    return "ok"


def test_merge_image() -> None:
  assert merge_image(None, None) is None
  assert merge_image(None, "https://i/x.png") == {"image": "https://i/x.png"}
  assert merge_image({"a": "1"}, None) == {"a": "1"}
  assert merge_image({"a": "1", "image": "old"}, "new") == {"a": "1", "image": "new"}


def test_reference_audience_precedence() -> None:
  assert reference_audience(auth_user_id="abc", app_user_id=1) == {"reference": {"kind": "auth_user", "id": "abc"}}
  assert reference_audience(app_user_id=5, report_id=2) == {"reference": {"kind": "app_user", "id": 5}}
  assert reference_audience(helpdesk_id=3) == {"reference": {"kind": "help_desk", "id": 3}}
  assert reference_audience(report_id=4) == {"reference": {"kind": "report", "id": 4}}
  assert reference_audience() is None


@pytest.mark.anyio
async def test_dry_run_counts_targets_without_sending(db) -> None:
  await add_token(str(uuid.uuid4()), "dry-1")
  await add_token(str(uuid.uuid4()), "dry-2")
  job = await create_job(db, title="T", body="B", dry_run=True)
  gateway = RecordingGateway()

  final = await run_job(db, job, gateway, SEND_URL)
  assert final.status == DONE
  assert final.result == {"dry_run": True, "total": 2, "sent": 0, "failed": 0, "disabled_tokens": 0}
  assert gateway.messages == []


@pytest.mark.anyio
async def test_run_job_sends_one_message_per_target(db) -> None:
  uid = str(uuid.uuid4())
  await add_token(uid, "p-1", platform="ios")
  job = await create_job(db, title="T", body="B", target_user_ids=[uid], data={"url": "https://x"})
  gateway = RecordingGateway()

  final = await run_job(db, job, gateway, SEND_URL)
  assert final.result["sent"] == 1
  assert [m["token"] for m in gateway.messages] == ["p-1"]
  assert gateway.messages[0]["data"]["nid"] == f"push-{job.id}"
  assert "notification" not in gateway.messages[0]


@pytest.mark.anyio
async def test_target_lookup_failure_marks_job_failed(db, monkeypatch) -> None:
  await add_token(str(uuid.uuid4()), "never-sent")
  job = await create_job(db, title="T", body="B")
  gateway = RecordingGateway()
  fail_next_execute(monkeypatch, db)

  final = await run_job(db, job, gateway, SEND_URL)
  assert final.status == FAILED
  assert final.result["error"].startswith("Target lookup failed")
  assert gateway.messages == []
  assert (await get_job(db, job.id)).status == FAILED

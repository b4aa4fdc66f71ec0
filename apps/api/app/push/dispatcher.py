from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol, Sequence

from app.config import Settings
from app.push.errors import FailureKind, SendError
from app.push.messages import MessageParams, build_message
from app.push.targets import DeviceTarget

logger = logging.getLogger(__name__)


class Gateway(Protocol):
  async def send(self, url: str, message: dict[str, Any]) -> str | None: ...


@dataclass(frozen=True)
class RetryPolicy:
  max_attempts: int = 3
  base_delay_ms: int = 200
  jitter_ms: int = 100

  @classmethod
  def from_settings(cls, cfg: Settings) -> RetryPolicy:
    return cls(
      max_attempts=max(1, int(cfg.push_max_attempts)),
      base_delay_ms=max(0, int(cfg.push_backoff_base_ms)),
      jitter_ms=max(0, int(cfg.push_backoff_jitter_ms)),
    )

  def delay_seconds(self, attempt_index: int) -> float:
    ms = self.base_delay_ms * (2**attempt_index) + random.randint(0, self.jitter_ms)
    return ms / 1000.0


@dataclass
class SendOutcome:
  token: str
  ok: bool
  attempts: int
  message_id: str | None = None
  status: int | None = None
  code: str | None = None
  error: str | None = None
  kind: FailureKind | None = None


@dataclass
class DispatchSummary:
  total: int = 0
  sent: int = 0
  failed: int = 0
  dead_tokens: list[str] = field(default_factory=list)

  def as_result(self, *, dry_run: bool = False) -> dict[str, Any]:
    return {
      "dry_run": dry_run,
      "total": self.total,
      "sent": self.sent,
      "failed": self.failed,
      "disabled_tokens": len(self.dead_tokens),
    }


async def send_with_retry(
  gateway: Gateway,
  url: str,
  token: str,
  message: dict[str, Any],
  policy: RetryPolicy,
  *,
  sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> SendOutcome:
  attempts = max(1, policy.max_attempts)
  last: SendOutcome | None = None
  for attempt in range(attempts):
    try:
      message_id = await gateway.send(url, message)
      return SendOutcome(token=token, ok=True, attempts=attempt + 1, message_id=message_id)
    except SendError as exc:
      kind = exc.kind
      last = SendOutcome(
        token=token,
        ok=False,
        attempts=attempt + 1,
        status=exc.status,
        code=exc.code,
        error=exc.message,
        kind=kind,
      )
      if kind is not FailureKind.RETRYABLE:
        return last
    if attempt + 1 < attempts:
      await sleep(policy.delay_seconds(attempt))
  assert last is not None
  return last


def _reduce(summary: DispatchSummary, batch: Sequence[DeviceTarget], results: Sequence[Any]) -> None:
  for target, r in zip(batch, results):
    if isinstance(r, BaseException):
      summary.failed += 1
      logger.debug("Push send raised", extra={"token_tail": target.token[-8:], "error": repr(r)})
      continue
    if r.ok:
      summary.sent += 1
      continue
    summary.failed += 1
    if r.kind is FailureKind.DEAD:
      summary.dead_tokens.append(target.token)
    logger.debug(
      "Push send failed",
      extra={"token_tail": target.token[-8:], "status": r.status, "code": r.code, "attempts": r.attempts},
    )


async def dispatch_all(
  gateway: Gateway,
  url: str,
  targets: Sequence[DeviceTarget],
  params: MessageParams,
  *,
  policy: RetryPolicy | None = None,
  batch_size: int = 100,
  sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> DispatchSummary:
  """
  Send one message per target in fixed-size batches.

  Every message is built before the first send, so a builder failure aborts the whole
  dispatch. Per-token send failures never raise; they are counted in the summary.
  """
  policy = policy or RetryPolicy()
  size = max(1, int(batch_size))
  messages = [
    build_message(
      t.token,
      params.title,
      params.body,
      params.data,
      t.platform,
      image_url=params.image_url,
      nid=params.nid,
      channel_id=params.channel_id,
    )
    for t in targets
  ]

  summary = DispatchSummary(total=len(targets))
  for i in range(0, len(targets), size):
    batch = targets[i : i + size]
    results = await asyncio.gather(
      *(send_with_retry(gateway, url, t.token, m, policy, sleep=sleep) for t, m in zip(batch, messages[i : i + size])),
      return_exceptions=True,
    )
    _reduce(summary, batch, results)
  return summary

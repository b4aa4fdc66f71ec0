from __future__ import annotations

import enum
import re


class PushError(RuntimeError):
  pass


class ConfigurationError(PushError):
  """Gateway credentials or project id are missing or unreadable."""


class ResolutionError(PushError):
  """Target lookup failed at the storage layer."""


class LedgerError(PushError):
  """A push job row could not be written; the job may be left in `processing`."""

  def __init__(self, message: str, *, job_id: int | None = None) -> None:
    super().__init__(message)
    self.job_id = job_id


class FailureKind(str, enum.Enum):
  RETRYABLE = "retryable"
  DEAD = "dead"
  PERMANENT = "permanent"


RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})
RETRYABLE_CODES = re.compile(r"UNAVAILABLE|INTERNAL|DEADLINE_EXCEEDED|RESOURCE_EXHAUSTED", re.IGNORECASE)
DEAD_CODES = re.compile(r"UNREGISTERED|NOT_FOUND|INVALID_ARGUMENT", re.IGNORECASE)


def classify_failure(status: int | None, code: str | None) -> FailureKind:
  """
  Map a gateway failure onto retry/hygiene behaviour.

  Vendor error codes drift; this is the only place that knows them.
  """
  if status == 404 or (code and DEAD_CODES.search(code)):
    return FailureKind.DEAD
  if not status and not code:
    return FailureKind.RETRYABLE
  if status in RETRYABLE_STATUSES or (code and RETRYABLE_CODES.search(code)):
    return FailureKind.RETRYABLE
  return FailureKind.PERMANENT


class SendError(PushError):
  def __init__(self, *, status: int | None, code: str | None, message: str) -> None:
    super().__init__(message)
    self.status = status
    self.code = code
    self.message = message

  @property
  def kind(self) -> FailureKind:
    return classify_failure(self.status, self.code)

  @property
  def retryable(self) -> bool:
    return self.kind is FailureKind.RETRYABLE

  @property
  def dead(self) -> bool:
    return self.kind is FailureKind.DEAD

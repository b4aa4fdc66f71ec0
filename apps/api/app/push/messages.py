from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import Any

ANDROID_CHANNEL_ID = "push_default_v2"
LINK_KEYS = ("link_url", "url")


def normalize_data(data: Any) -> dict[str, str]:
  # The FCM data section only carries string values.
  if not isinstance(data, dict):
    return {}
  out: dict[str, str] = {}
  for k, v in data.items():
    if v is None:
      continue
    s = v if isinstance(v, str) else json.dumps(v, ensure_ascii=False, separators=(",", ":"))
    if not s or s in ("null", "undefined"):
      continue
    out[str(k)] = s
  return out


def sanitize_image_url(value: Any) -> str | None:
  if not isinstance(value, str):
    return None
  s = value.strip()
  if not s or s.lower() in ("null", "undefined"):
    return None
  return s


def has_link(data: dict[str, str]) -> bool:
  return any(data.get(k) for k in LINK_KEYS)


def wants_silent(data: dict[str, str], platform: str | None) -> bool:
  """
  Android apps render their own notification from the data payload, and iOS apps do the
  same for deep-linked pushes; an OS alert on top would show the message twice.
  """
  p = (platform or "").strip().lower()
  if p == "android":
    return True
  return p == "ios" and has_link(data)


@dataclass(frozen=True)
class MessageParams:
  title: str
  body: str
  data: dict[str, Any] = field(default_factory=dict)
  image_url: str | None = None
  nid: str | None = None
  channel_id: str = ANDROID_CHANNEL_ID


def build_message(
  token: str,
  title: str | None,
  body: str | None,
  data: dict[str, Any] | None,
  platform: str | None = None,
  *,
  image_url: str | None = None,
  nid: str | None = None,
  channel_id: str = ANDROID_CHANNEL_ID,
) -> dict[str, Any]:
  """
  Build the `message` object of an FCM v1 send request for one device.

  Alert messages carry a top-level `notification` block and an APNs alert; silent messages
  carry only data plus an APNs background push. `nid` collapses gateway retries into one
  OS notification; pass it explicitly for deterministic output.
  """
  base = normalize_data(data)
  image = sanitize_image_url(image_url if image_url is not None else base.get("image"))
  silent = wants_silent(base, platform)
  os_alert = not silent and bool(title or body)
  collapse = nid or base.get("nid") or uuid.uuid4().hex

  payload = dict(base)
  if title:
    payload.setdefault("title", str(title))
  if body:
    payload.setdefault("body", str(body))
  if image:
    payload["image"] = image
  payload["nid"] = collapse
  payload["collapse_key"] = collapse
  payload["expect_os_alert"] = "1" if os_alert else "0"

  android: dict[str, Any] = {"priority": "HIGH", "collapse_key": collapse}
  message: dict[str, Any] = {"token": token, "data": payload, "android": android}

  if os_alert:
    notification: dict[str, str] = {}
    if title:
      notification["title"] = str(title)
    if body:
      notification["body"] = str(body)
    if image:
      notification["image"] = image
    message["notification"] = notification

    android_notification: dict[str, str] = {"channel_id": channel_id, "tag": collapse}
    if image:
      android_notification["image"] = image
    android["notification"] = android_notification

    aps: dict[str, Any] = {}
    alert = {k: v for k, v in (("title", title), ("body", body)) if v}
    if alert:
      aps["alert"] = alert
    if image:
      aps["mutable-content"] = 1
    message["apns"] = {
      "headers": {"apns-push-type": "alert", "apns-priority": "10", "apns-collapse-id": collapse},
      "payload": {"aps": aps},
    }
  else:
    message["apns"] = {
      "headers": {"apns-push-type": "background", "apns-priority": "5"},
      "payload": {"aps": {"content-available": 1}},
    }
  return message

from __future__ import annotations

import uuid

import pytest

from app.push.hygiene import disable_tokens
from conftest import add_token, token_enabled


@pytest.mark.anyio
async def test_disable_tokens_is_idempotent(db) -> None:
  uid = str(uuid.uuid4())
  await add_token(uid, "dead-1")
  await add_token(uid, "dead-2")
  await add_token(uid, "alive")

  assert await disable_tokens(db, ["dead-1", "dead-2", "dead-1", "missing"]) == 2
  assert await token_enabled("dead-1") is False
  assert await token_enabled("dead-2") is False
  assert await token_enabled("alive") is True

  assert await disable_tokens(db, ["dead-1", "dead-2"]) == 0
  assert await token_enabled("dead-1") is False


@pytest.mark.anyio
async def test_disable_tokens_with_nothing_to_do(db) -> None:
  assert await disable_tokens(db, []) == 0
  assert await disable_tokens(db, ["", None]) == 0

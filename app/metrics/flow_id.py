from __future__ import annotations

import hashlib
import hmac
import re
import secrets
import time
from dataclasses import dataclass
from typing import Callable

RANDOM_BYTES = 16
SIGNATURE_HEX_LENGTH = 32
FLOW_ID_LENGTH = RANDOM_BYTES * 2 + SIGNATURE_HEX_LENGTH

_FLOW_ID_RE = re.compile(r"[0-9a-f]{%d}" % FLOW_ID_LENGTH)


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class FlowId:
    flow_id: str
    flow_begin_time: int

    def as_payload(self) -> dict[str, object]:
        return {"flowId": self.flow_id, "flowBeginTime": self.flow_begin_time}


def sign_flow(key: bytes, random_hex: str, flow_begin_time: int) -> str:
    """Signature suffix for a flow.

    The message keeps a trailing empty third segment; existing flow ids were
    signed that way, so it must stay for them to keep validating.
    """

    message = "\n".join([random_hex, format(flow_begin_time, "x"), ""])
    digest = hmac.new(key, message.encode("utf-8"), hashlib.sha256).hexdigest()
    return digest[:SIGNATURE_HEX_LENGTH]


def is_valid_flow_id(key: bytes, flow_id: object, flow_begin_time: object) -> bool:
    """Recompute the signature and compare. Never raises on bad input."""

    if not isinstance(flow_id, str) or not _FLOW_ID_RE.fullmatch(flow_id):
        return False
    # bool is an int subclass but never a valid begin time.
    if isinstance(flow_begin_time, bool) or not isinstance(flow_begin_time, int) or flow_begin_time < 0:
        return False

    random_hex = flow_id[: RANDOM_BYTES * 2]
    signature = flow_id[RANDOM_BYTES * 2 :]
    expected = sign_flow(key, random_hex, flow_begin_time)
    return hmac.compare_digest(signature, expected)


class FlowIdGenerator:
    """Issues (flow_id, flow_begin_time) pairs signed with the flow key.

    Stateless apart from the key, so one instance can be shared by all
    concurrently handled requests.
    """

    def __init__(self, key: bytes, clock: Callable[[], int] = now_ms) -> None:
        if not key:
            raise ValueError("flow id key must not be empty")
        self._key = key
        self._clock = clock

    def generate(self) -> FlowId:
        random_hex = secrets.token_hex(RANDOM_BYTES)
        flow_begin_time = self._clock()
        return FlowId(
            flow_id=random_hex + sign_flow(self._key, random_hex, flow_begin_time),
            flow_begin_time=flow_begin_time,
        )

    def validate(self, flow_id: object, flow_begin_time: object) -> bool:
        return is_valid_flow_id(self._key, flow_id, flow_begin_time)


_generator: FlowIdGenerator | None = None


def set_flow_id_generator(generator: FlowIdGenerator | None) -> None:
    global _generator
    _generator = generator


def get_flow_id_generator() -> FlowIdGenerator:
    global _generator
    if _generator is None:
        from app.config import get_settings

        _generator = FlowIdGenerator(get_settings().require_flow_id_key())
    return _generator

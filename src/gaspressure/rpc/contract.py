"""
GasPressure RPC contract.

Wire envelope, broker topology names and the method catalog. Every action
string maps to one method schema; payloads decode into concrete types
through that registry, never into loose dictionaries.

Envelope (UTF-8 JSON):
    {"action": "Call_IncreaseMass", "data": "{\"Mass\": 2.0}"}

Correlation id and reply address are transport properties, never part of
the envelope.
"""

import json
import math
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import uuid4

from gaspressure.core.container import MassAdjustmentResult

# =============================================================================
# TOPOLOGY
# =============================================================================

EXCHANGE_NAME = "GasPressure.Exchange"
SERVER_QUEUE_NAME = "GasPressure.Service"
CLIENT_QUEUE_PREFIX = "GasPressure."

CALL_PREFIX = "Call_"
RESULT_PREFIX = "Result_"


def client_queue_name(role: str) -> str:
    """Unique reply queue name, e.g. ``GasPressure.InputClient_<uuid>``."""
    return f"{CLIENT_QUEUE_PREFIX}{role}Client_{uuid4()}"


# =============================================================================
# ERRORS
# =============================================================================


class RpcError(Exception):
    """Base exception for RPC errors."""

    pass


class DecodeError(RpcError):
    """Raised when an envelope or payload cannot be decoded."""

    pass


class UnknownActionError(RpcError):
    """Raised when an envelope names an action outside the catalog."""

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"Unsupported RPC action '{action}'")


class RpcTimeoutError(RpcError):
    """Raised when no matching reply arrived in time.

    Distinct from a rejected mass adjustment, which is a normal result.
    """

    def __init__(self, method: str, correlation_id: str, timeout: float):
        self.method = method
        self.correlation_id = correlation_id
        self.timeout = timeout
        super().__init__(
            f"RPC call '{method}' ({correlation_id}) timed out after {timeout:.1f} seconds"
        )


class RpcCancelledError(RpcError):
    """Raised when a pending call is cancelled before its reply arrived."""

    def __init__(self, method: str, correlation_id: str):
        self.method = method
        self.correlation_id = correlation_id
        super().__init__(f"RPC call '{method}' ({correlation_id}) was cancelled")


# =============================================================================
# ENVELOPE
# =============================================================================


class ActionKind(str, Enum):
    """Direction of an envelope."""

    CALL = "call"
    RESULT = "result"


class Method(str, Enum):
    """Remotely callable container operations."""

    GET_PRESSURE = "GetPressure"
    IS_DESTROYED = "IsDestroyed"
    INCREASE_MASS = "IncreaseMass"
    DECREASE_MASS = "DecreaseMass"

    @property
    def call_action(self) -> str:
        return f"{CALL_PREFIX}{self.value}"

    @property
    def result_action(self) -> str:
        return f"{RESULT_PREFIX}{self.value}"


@dataclass(frozen=True, slots=True)
class RpcMessage:
    """Envelope exchanged in both directions."""

    action: str
    data: str | None = None

    def to_bytes(self) -> bytes:
        """Serialize to UTF-8 JSON."""
        envelope = {"action": self.action, "data": self.data}
        return json.dumps(envelope, allow_nan=False).encode("utf-8")

    @classmethod
    def from_bytes(cls, raw: bytes) -> "RpcMessage":
        """Parse an envelope.

        Raises:
            DecodeError: If the body is not a valid envelope.
        """
        try:
            parsed = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise DecodeError(f"Malformed envelope: {e}") from e

        if not isinstance(parsed, dict):
            raise DecodeError("Envelope must be a JSON object")

        action = parsed.get("action")
        data = parsed.get("data")
        if not isinstance(action, str) or not action:
            raise DecodeError("Envelope has no action")
        if data is not None and not isinstance(data, str):
            raise DecodeError("Envelope data must be a string or null")
        return cls(action=action, data=data)


# =============================================================================
# PAYLOADS
# =============================================================================


@dataclass(frozen=True, slots=True)
class MassRequest:
    """Arguments of IncreaseMass / DecreaseMass."""

    mass: float


def _require(data: dict[str, Any], key: str, kinds: tuple[type, ...]) -> Any:
    if key not in data:
        raise DecodeError(f"Payload is missing '{key}'")
    value = data[key]
    # bool is an int subclass; only accept it where asked for
    if isinstance(value, bool) and bool not in kinds:
        raise DecodeError(f"Payload field '{key}' has wrong type bool")
    if not isinstance(value, kinds):
        raise DecodeError(f"Payload field '{key}' has wrong type {type(value).__name__}")
    return value


def _require_finite(data: dict[str, Any], key: str) -> float:
    raw = _require(data, key, (int, float))
    try:
        value = float(raw)
    except OverflowError:
        value = math.inf
    # json.loads accepts NaN and Infinity
    if not math.isfinite(value):
        raise DecodeError(f"Payload field '{key}' must be a finite number")
    return value


def _encode_mass_request(request: MassRequest) -> dict[str, Any]:
    return {"Mass": request.mass}


def _decode_mass_request(data: dict[str, Any]) -> MassRequest:
    return MassRequest(mass=_require_finite(data, "Mass"))


def _encode_pressure(value: float) -> dict[str, Any]:
    return {"Value": value}


def _decode_pressure(data: dict[str, Any]) -> float:
    return _require_finite(data, "Value")


def _encode_destroyed(value: bool) -> dict[str, Any]:
    return {"Value": value}


def _decode_destroyed(data: dict[str, Any]) -> bool:
    return _require(data, "Value", (bool,))


def _encode_adjustment(result: MassAdjustmentResult) -> dict[str, Any]:
    payload: dict[str, Any] = {"IsSuccess": result.success}
    if result.failure_reason is not None:
        payload["FailureReason"] = result.failure_reason
    return payload


def _decode_adjustment(data: dict[str, Any]) -> MassAdjustmentResult:
    success = _require(data, "IsSuccess", (bool,))
    reason = data.get("FailureReason")
    if reason is not None and not isinstance(reason, str):
        raise DecodeError("Payload field 'FailureReason' must be a string")
    return MassAdjustmentResult(success=success, failure_reason=reason)


@dataclass(frozen=True, slots=True)
class PayloadCodec:
    """Converts one payload type to and from its JSON object form."""

    encode: Callable[[Any], dict[str, Any]]
    decode: Callable[[dict[str, Any]], Any]


@dataclass(frozen=True, slots=True)
class MethodSchema:
    """Request and result codecs of one method. None means no payload."""

    method: Method
    request: PayloadCodec | None
    result: PayloadCodec | None


_MASS_REQUEST = PayloadCodec(_encode_mass_request, _decode_mass_request)
_ADJUSTMENT = PayloadCodec(_encode_adjustment, _decode_adjustment)

SCHEMAS: dict[Method, MethodSchema] = {
    Method.GET_PRESSURE: MethodSchema(
        Method.GET_PRESSURE, None, PayloadCodec(_encode_pressure, _decode_pressure)
    ),
    Method.IS_DESTROYED: MethodSchema(
        Method.IS_DESTROYED, None, PayloadCodec(_encode_destroyed, _decode_destroyed)
    ),
    Method.INCREASE_MASS: MethodSchema(Method.INCREASE_MASS, _MASS_REQUEST, _ADJUSTMENT),
    Method.DECREASE_MASS: MethodSchema(Method.DECREASE_MASS, _MASS_REQUEST, _ADJUSTMENT),
}

# Registry indexed by the action string carried in the envelope
ACTIONS: dict[str, tuple[ActionKind, Method]] = {}
for _method in Method:
    ACTIONS[_method.call_action] = (ActionKind.CALL, _method)
    ACTIONS[_method.result_action] = (ActionKind.RESULT, _method)


def parse_action(action: str) -> tuple[ActionKind, Method]:
    """Look up an action string.

    Raises:
        UnknownActionError: If the action is not in the catalog.
    """
    try:
        return ACTIONS[action]
    except KeyError:
        raise UnknownActionError(action) from None


# =============================================================================
# CALLS AND RESULTS
# =============================================================================


@dataclass(frozen=True, slots=True)
class RpcCall:
    """Decoded request: the method plus its typed arguments (or None)."""

    method: Method
    args: Any = None


def _dump(codec: PayloadCodec | None, value: Any) -> str | None:
    if codec is None:
        return None
    return json.dumps(codec.encode(value), allow_nan=False)


def _load(codec: PayloadCodec | None, data: str | None, what: str) -> Any:
    if codec is None:
        return None
    if data is None:
        raise DecodeError(f"{what} requires a payload")
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError as e:
        raise DecodeError(f"Malformed {what} payload: {e}") from e
    if not isinstance(parsed, dict):
        raise DecodeError(f"{what} payload must be a JSON object")
    return codec.decode(parsed)


def encode_call(method: Method, args: Any = None) -> RpcMessage:
    """Build the request envelope of a method."""
    return RpcMessage(action=method.call_action, data=_dump(SCHEMAS[method].request, args))


def decode_call(message: RpcMessage) -> RpcCall:
    """Decode a request envelope.

    Raises:
        UnknownActionError: If the action is unknown or is not a call.
        DecodeError: If the payload does not match the method schema.
    """
    kind, method = parse_action(message.action)
    if kind != ActionKind.CALL:
        raise UnknownActionError(message.action)
    args = _load(SCHEMAS[method].request, message.data, message.action)
    return RpcCall(method=method, args=args)


def encode_result(method: Method, value: Any) -> RpcMessage:
    """Build the response envelope of a method."""
    return RpcMessage(action=method.result_action, data=_dump(SCHEMAS[method].result, value))


def decode_result(message: RpcMessage, method: Method) -> Any:
    """Decode a response envelope expected for ``method``.

    Raises:
        DecodeError: If the action does not match or the payload is malformed.
    """
    if message.action != method.result_action:
        raise DecodeError(
            f"Expected action '{method.result_action}', got '{message.action}'"
        )
    return _load(SCHEMAS[method].result, message.data, message.action)

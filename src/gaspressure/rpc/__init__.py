"""
GasPressure RPC - request/response over the message transport.

Usage:
    from gaspressure.rpc import GasPressureClient, ServiceDispatcher
"""

from gaspressure.rpc.client import GasPressureClient, PendingCall
from gaspressure.rpc.contract import (
    ACTIONS,
    EXCHANGE_NAME,
    SCHEMAS,
    SERVER_QUEUE_NAME,
    ActionKind,
    DecodeError,
    MassRequest,
    Method,
    RpcCall,
    RpcCancelledError,
    RpcError,
    RpcMessage,
    RpcTimeoutError,
    UnknownActionError,
    client_queue_name,
    decode_call,
    decode_result,
    encode_call,
    encode_result,
    parse_action,
)
from gaspressure.rpc.dispatcher import ServiceDispatcher

__all__ = [
    # Contract
    "EXCHANGE_NAME",
    "SERVER_QUEUE_NAME",
    "ACTIONS",
    "SCHEMAS",
    "ActionKind",
    "Method",
    "MassRequest",
    "RpcCall",
    "RpcMessage",
    "client_queue_name",
    "parse_action",
    "encode_call",
    "decode_call",
    "encode_result",
    "decode_result",
    # Errors
    "RpcError",
    "DecodeError",
    "UnknownActionError",
    "RpcTimeoutError",
    "RpcCancelledError",
    # Endpoints
    "GasPressureClient",
    "PendingCall",
    "ServiceDispatcher",
]

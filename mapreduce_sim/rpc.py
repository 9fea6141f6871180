"""
Coordinator RPC service: messages, codec, server registration, client stub.

Messages travel as a protobuf ``Struct`` so the service needs no generated
code; the registration helper and the stub have the same shape as the
``*_pb2_grpc`` modules protoc would emit, so callers look the same either way.

Service ``mapreduce.Coordinator``:
    RequestTask(TaskRequest) -> TaskAssignment
    ReportTaskDone(TaskDoneReport) -> TaskAck
    Done(DoneRequest) -> DoneReply
"""

from dataclasses import asdict, dataclass, field
from typing import List

import grpc
from google.protobuf import json_format, struct_pb2

from mapreduce_sim.config import PROTOCOL_VERSION
from mapreduce_sim.errors import ProtocolError

SERVICE_NAME = 'mapreduce.Coordinator'

TASK_KINDS = ('map', 'reduce')
ASSIGNMENT_KINDS = ('map', 'reduce', 'wait', 'exit')


def _require_str(data, name):
    value = data.get(name)
    if not isinstance(value, str) or not value:
        raise ProtocolError(f"'{name}' must be a non-empty string")
    return value


def _require_int(data, name, default=None):
    value = data.get(name, default)
    # Struct carries every number as a double
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value != int(value):
        raise ProtocolError(f"'{name}' must be an integer, got {value!r}")
    return int(value)


def _require_choice(data, name, choices):
    value = data.get(name)
    if value not in choices:
        raise ProtocolError(f"'{name}' must be one of {choices}, got {value!r}")
    return value


@dataclass
class TaskRequest:
    worker_id: str
    protocol_version: int = PROTOCOL_VERSION

    @classmethod
    def from_dict(cls, data):
        return cls(
            worker_id=_require_str(data, 'worker_id'),
            protocol_version=_require_int(data, 'protocol_version')
        )


@dataclass
class TaskAssignment:
    kind: str
    task_index: int = 0
    input_paths: List[str] = field(default_factory=list)
    n_map: int = 0
    n_reduce: int = 0

    @classmethod
    def from_dict(cls, data):
        input_paths = data.get('input_paths', [])
        if not isinstance(input_paths, list) or not all(isinstance(p, str) for p in input_paths):
            raise ProtocolError("'input_paths' must be a list of strings")
        return cls(
            kind=_require_choice(data, 'kind', ASSIGNMENT_KINDS),
            task_index=_require_int(data, 'task_index', 0),
            input_paths=list(input_paths),
            n_map=_require_int(data, 'n_map', 0),
            n_reduce=_require_int(data, 'n_reduce', 0)
        )


@dataclass
class TaskDoneReport:
    worker_id: str
    kind: str
    task_index: int
    protocol_version: int = PROTOCOL_VERSION

    @classmethod
    def from_dict(cls, data):
        return cls(
            worker_id=_require_str(data, 'worker_id'),
            kind=_require_choice(data, 'kind', TASK_KINDS),
            task_index=_require_int(data, 'task_index'),
            protocol_version=_require_int(data, 'protocol_version')
        )


@dataclass
class TaskAck:
    accepted: bool = False

    @classmethod
    def from_dict(cls, data):
        return cls(accepted=bool(data.get('accepted', False)))


@dataclass
class DoneRequest:

    @classmethod
    def from_dict(cls, data):
        return cls()


@dataclass
class DoneReply:
    done: bool = False

    @classmethod
    def from_dict(cls, data):
        return cls(done=bool(data.get('done', False)))


def encode(message):
    """Serialize a message dataclass to bytes."""
    payload = struct_pb2.Struct()
    payload.update(asdict(message))
    return payload.SerializeToString()


def decode_struct(data):
    """Deserialize bytes to a plain dict.

    The server keeps requests as dicts and validates them in the handler,
    so a bad field becomes INVALID_ARGUMENT instead of a transport error.
    """
    return json_format.MessageToDict(struct_pb2.Struct.FromString(data))


def _decoder(message_cls):
    def decode(data):
        return message_cls.from_dict(decode_struct(data))
    return decode


class CoordinatorServicer:
    """Base class for the coordinator service implementation."""

    def RequestTask(self, request, context):
        context.set_code(grpc.StatusCode.UNIMPLEMENTED)
        context.set_details('Method not implemented!')
        raise NotImplementedError('Method not implemented!')

    def ReportTaskDone(self, request, context):
        context.set_code(grpc.StatusCode.UNIMPLEMENTED)
        context.set_details('Method not implemented!')
        raise NotImplementedError('Method not implemented!')

    def Done(self, request, context):
        context.set_code(grpc.StatusCode.UNIMPLEMENTED)
        context.set_details('Method not implemented!')
        raise NotImplementedError('Method not implemented!')


def add_CoordinatorServicer_to_server(servicer, server):
    rpc_method_handlers = {
        name: grpc.unary_unary_rpc_method_handler(
            getattr(servicer, name),
            request_deserializer=decode_struct,
            response_serializer=encode
        )
        for name in ('RequestTask', 'ReportTaskDone', 'Done')
    }
    generic_handler = grpc.method_handlers_generic_handler(SERVICE_NAME, rpc_method_handlers)
    server.add_generic_rpc_handlers((generic_handler,))


class CoordinatorStub:
    """Client side of the coordinator service."""

    def __init__(self, channel):
        self.RequestTask = channel.unary_unary(
            f'/{SERVICE_NAME}/RequestTask',
            request_serializer=encode,
            response_deserializer=_decoder(TaskAssignment)
        )
        self.ReportTaskDone = channel.unary_unary(
            f'/{SERVICE_NAME}/ReportTaskDone',
            request_serializer=encode,
            response_deserializer=_decoder(TaskAck)
        )
        self.Done = channel.unary_unary(
            f'/{SERVICE_NAME}/Done',
            request_serializer=encode,
            response_deserializer=_decoder(DoneReply)
        )

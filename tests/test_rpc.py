import pytest

from mapreduce_sim import rpc
from mapreduce_sim.errors import ProtocolError


def test_assignment_survives_the_wire():
    message = rpc.TaskAssignment(kind='map', task_index=4, input_paths=['pg-1.txt'],
                                 n_map=8, n_reduce=10)

    decoded = rpc._decoder(rpc.TaskAssignment)(rpc.encode(message))

    assert decoded == message
    assert isinstance(decoded.task_index, int)


def test_server_side_decoding_yields_plain_dict():
    data = rpc.decode_struct(rpc.encode(rpc.TaskRequest(worker_id='w1')))

    assert data['worker_id'] == 'w1'
    assert rpc.TaskRequest.from_dict(data).protocol_version == 1


@pytest.mark.parametrize('message_cls, data', [
    (rpc.TaskRequest, {}),
    (rpc.TaskRequest, {'worker_id': '', 'protocol_version': 1}),
    (rpc.TaskRequest, {'worker_id': 'w', 'protocol_version': 1.5}),
    (rpc.TaskDoneReport, {'worker_id': 'w', 'kind': 'shuffle', 'task_index': 0, 'protocol_version': 1}),
    (rpc.TaskDoneReport, {'worker_id': 'w', 'kind': 'map', 'protocol_version': 1}),
    (rpc.TaskAssignment, {'kind': 'map', 'input_paths': 'not-a-list'}),
])
def test_malformed_messages_rejected(message_cls, data):
    with pytest.raises(ProtocolError):
        message_cls.from_dict(data)

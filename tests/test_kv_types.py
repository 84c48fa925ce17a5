import pytest

from quorumkv.kv_types import Err, GetReply, PutAppendArgs


@pytest.mark.parametrize(
    "wire, code",
    [
        ("OK", Err.OK),
        ("ErrNoKey", Err.NO_KEY),
        ("ErrWrongGroup", Err.WRONG_GROUP),
        ("ErrWrongLeader", Err.WRONG_LEADER),
    ],
)
def test_error_codes_match_wire_strings(wire, code):
    assert Err(wire) is code
    assert code == wire


def test_error_from_wire_string():
    assert Err("ErrNoKey") is Err.NO_KEY


def test_payload_fields():
    args = PutAppendArgs(key="k", value="v", op="Append")
    assert (args.key, args.value, args.op) == ("k", "v", "Append")
    assert GetReply().value == ""
    assert GetReply().err is Err.OK
from labkv.models import (
    GET,
    INVALID,
    PUT,
    KvInput,
    KvOutput,
    KvState,
    Operation,
    describe_operation,
    init_state,
    partition,
    step,
)
from labkv.rpc import Err


def test_init_state_is_empty():
    assert init_state() == KvState("", 0)


def test_get_legal_when_value_matches():
    state = KvState("v", 1)
    ok, nxt = step(state, KvInput(GET, "k"), KvOutput("v", 1, "OK"))
    assert ok is True
    assert nxt is state


def test_get_illegal_when_value_differs():
    state = KvState("v", 1)
    ok, nxt = step(state, KvInput(GET, "k"), KvOutput("w", 1, "OK"))
    assert ok is False
    assert nxt == state


def test_put_matching_version_advances_state():
    state = init_state()
    ok, nxt = step(state, KvInput(PUT, "k", "v", 0), KvOutput(err="OK"))
    assert ok is True
    assert nxt.value == "v"
    assert nxt.version == state.version + 1


def test_put_matching_version_allows_maybe():
    ok, nxt = step(init_state(), KvInput(PUT, "k", "v", 0), KvOutput(err="ErrMaybe"))
    assert ok is True
    assert nxt.value == "v"


def test_put_matching_version_rejects_err_version():
    ok, _ = step(init_state(), KvInput(PUT, "k", "v", 0), KvOutput(err="ErrVersion"))
    assert ok is False


def test_put_mismatched_version_keeps_state():
    state = KvState("old", 2)
    ok, nxt = step(state, KvInput(PUT, "k", "new", 0), KvOutput(err="ErrVersion"))
    assert ok is True
    assert nxt == state
    ok_maybe, _ = step(state, KvInput(PUT, "k", "new", 0), KvOutput(err="ErrMaybe"))
    assert ok_maybe is True
    ok_ok, _ = step(state, KvInput(PUT, "k", "new", 0), KvOutput(err="OK"))
    assert ok_ok is False


def test_step_accepts_err_enum():
    ok, _ = step(init_state(), KvInput(PUT, "k", "v", 0), KvOutput(err=Err.OK))
    assert ok is True


def test_invalid_op():
    assert step(init_state(), KvInput(7, "k"), KvOutput()) == (False, INVALID)
    assert describe_operation(KvInput(7, "k"), KvOutput()) == INVALID


def test_partition_groups_by_sorted_key_preserving_order():
    b1 = Operation(KvInput(PUT, "b", "1", 0), KvOutput(err="OK"), 0, 1, 0)
    a1 = Operation(KvInput(GET, "a"), KvOutput(err="ErrNoKey"), 2, 3, 1)
    b2 = Operation(KvInput(GET, "b"), KvOutput("1", 1, "OK"), 4, 5, 0)
    groups = partition([b1, a1, b2])
    assert groups == [[a1], [b1, b2]]


def test_partition_empty_history():
    assert partition([]) == []


def test_describe_get():
    text = describe_operation(KvInput(GET, "k"), KvOutput("v", 1, "OK"))
    assert text == "get('k') -> ('v', '1', 'OK')"


def test_describe_put():
    text = describe_operation(KvInput(PUT, "k", "v", 0), KvOutput(err=Err.VERSION))
    assert text == "put('k', 'v', '0') -> ('ErrVersion')"
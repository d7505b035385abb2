import pytest

from portal_messaging.realtime.errors import InvalidPath
from portal_messaging.realtime.paths import (
    SERVER_TIMESTAMP,
    ensure_disjoint,
    flatten,
    is_related,
    normalize_path,
    normalize_value,
    resolve_server_values,
    split_path,
    unflatten,
)


def test_split_path_strips_outer_slashes():
    assert split_path("/messages/c1/") == ("messages", "c1")
    assert split_path("") == ()


@pytest.mark.parametrize("path", ["a//b", "a/b.c", "a/#", "a/$x", "a/[0]"])
def test_split_path_rejects_bad_segments(path):
    with pytest.raises(InvalidPath):
        split_path(path)


def test_is_related_covers_ancestors_and_descendants():
    assert is_related("messages/c1", "messages/c1/m1/seenBy/2")
    assert is_related("messages/c1/m1", "messages/c1")
    assert is_related("", "anything")
    assert not is_related("messages/c1", "messages/c10")
    assert not is_related("userConversations/1", "userConversations/2/c1")


def test_ensure_disjoint_rejects_overlap():
    ensure_disjoint(["conversations/c1/updatedAt", "conversations/c2"])
    with pytest.raises(InvalidPath):
        ensure_disjoint(["conversations/c1", "conversations/c1/updatedAt"])


def test_server_timestamp_resolved_recursively():
    value = {"updatedAt": SERVER_TIMESTAMP, "nested": [{"at": SERVER_TIMESTAMP}]}
    assert resolve_server_values(value, 42) == {"updatedAt": 42, "nested": [{"at": 42}]}


def test_normalize_value_drops_empty_children():
    assert normalize_value({"a": None, "b": {}, "c": 1}) == {"c": 1}
    assert normalize_value({"a": None}) is None
    assert normalize_value({"0": "x", "1": "y"}) == ["x", "y"]


def test_normalize_value_rejects_unsupported_types():
    with pytest.raises(TypeError):
        normalize_value({"when": object()})
    with pytest.raises(InvalidPath):
        normalize_value({"a/b": 1})


def test_flatten_then_unflatten_keeps_members_list():
    record = {"id": "c1", "members": [1, 2], "seenBy": {"2": 10}}
    leaves = flatten("conversations/c1", record)
    assert leaves["conversations/c1/members/0"] == "1"
    assert unflatten("conversations/c1", leaves) == record


def test_normalize_path_round_trips_segments():
    assert normalize_path("/a/b/") == "a/b"

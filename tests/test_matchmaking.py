import random
import re

from duel.matchmaking import MatchmakingQueue, new_room_id


def _queue():
    return MatchmakingQueue(room_id_factory=lambda: "room_1_abcdefghi", now_fn=lambda: 0.0)


def test_first_user_waits():
    q = _queue()
    notices = q.join(1, "alice", "Alice")
    assert len(notices) == 1
    assert notices[0].message["status"] == "waiting"
    assert notices[0].message["queueLength"] == 1
    assert "alice" in q


def test_duplicate_join_is_reported():
    q = _queue()
    q.join(1, "alice", "Alice")
    notices = q.join(1, "alice", "Alice")
    assert notices[0].message["status"] == "already_in_queue"
    assert len(q) == 1


def test_second_user_completes_a_match():
    q = _queue()
    q.join(1, "alice", "Alice")
    notices = q.join(2, "bob", "Bob")
    assert len(q) == 0

    by_cid = {n.connection_id: n.message for n in notices}
    assert by_cid[1]["type"] == "matchFound"
    assert by_cid[1]["playerRole"] == "player1"
    assert by_cid[1]["opponent"] == {"username": "Bob", "userId": "bob"}
    assert by_cid[2]["playerRole"] == "player2"
    assert by_cid[2]["opponent"]["userId"] == "alice"
    assert by_cid[1]["roomId"] == by_cid[2]["roomId"] == "room_1_abcdefghi"


def test_third_user_waits_for_the_next_pair():
    q = _queue()
    q.join(1, "alice")
    q.join(2, "bob")
    notices = q.join(3, "carol")
    assert notices[0].message["status"] == "waiting"
    assert "carol" in q
    assert "alice" not in q


def test_cancel_and_disconnect_remove_entries():
    q = _queue()
    q.join(1, "alice")
    assert q.cancel(1, "alice")[0].message["status"] == "cancelled"
    assert q.cancel(1, "alice") == []

    q.join(2, "bob")
    assert q.drop_connection(2)
    assert not q.drop_connection(2)
    assert len(q) == 0


def test_new_room_id_format():
    rid = new_room_id(now_fn=lambda: 1700000000.5, rng=random.Random(4))
    assert re.fullmatch(r"room_1700000000500_[a-z0-9]{9}", rid)

"""
tests.test_party_room
~~~~~~~~~~~~~~~~~~~~~

PartyRoom 房间模型单元测试：座位、队列、播放、连接与语音成员。
"""
from __future__ import annotations

import random

import pytest

from karaoke.schemas.party import Member, PlaybackPatch, SongRequest
from karaoke.services.party_room import HISTORY_CAPACITY, PartyRoom


def req(title: str) -> SongRequest:
    return SongRequest(title=title, artist="Tester", media_ref=f"ref-{title}")


@pytest.fixture()
def room() -> PartyRoom:
    return PartyRoom(code="AB3K")


# ── 座位 ──────────────────────────────────────────────────────────────

class TestSeats:
    """测试座位分配的单射性与幂等性。"""

    def test_default_seats(self, room: PartyRoom) -> None:
        """默认生成 8 个未分配的座位。"""
        assert [s.id for s in room.seats] == [f"char_{i}" for i in range(1, 9)]
        assert room.seats[0].name == "Ruby"
        assert all(s.assigned_to is None for s in room.seats)

    def test_assign_open_seat(self, room: PartyRoom) -> None:
        assert room.assign_seat("alice", "char_1") is True
        assert room.get_seat("char_1").assigned_to == "alice"

    def test_reassign_same_seat_is_idempotent(self, room: PartyRoom) -> None:
        """同一参与者重复认领同一座位，两次都成功且状态不变。"""
        assert room.assign_seat("alice", "char_1") is True
        assert room.assign_seat("alice", "char_1") is True
        assert [s.id for s in room.seats if s.assigned_to == "alice"] == ["char_1"]

    def test_seat_taken_by_other_participant(self, room: PartyRoom) -> None:
        """座位被他人占用时失败，且不释放请求者原来的座位。"""
        room.assign_seat("alice", "char_1")
        room.assign_seat("bob", "char_2")

        assert room.assign_seat("bob", "char_1") is False
        assert room.get_seat("char_1").assigned_to == "alice"
        assert room.get_seat("char_2").assigned_to == "bob"

    def test_switching_seat_releases_previous(self, room: PartyRoom) -> None:
        room.assign_seat("alice", "char_1")
        assert room.assign_seat("alice", "char_3") is True

        assert room.get_seat("char_1").assigned_to is None
        assert room.get_seat("char_3").assigned_to == "alice"

    def test_unknown_seat(self, room: PartyRoom) -> None:
        assert room.assign_seat("alice", "char_99") is False
        assert room.seat_of("alice") is None

    def test_assignment_stays_injective(self, room: PartyRoom) -> None:
        """随机认领序列下，任何参与者最多持有一个座位，每个座位最多一个参与者。"""
        rng = random.Random(7)
        participants = [f"p{i}" for i in range(12)]
        seat_ids = [s.id for s in room.seats]
        for _ in range(500):
            room.assign_seat(rng.choice(participants), rng.choice(seat_ids))
            holders = [s.assigned_to for s in room.seats if s.assigned_to is not None]
            assert len(holders) == len(set(holders))


# ── 队列与播放 ────────────────────────────────────────────────────────

class TestQueue:
    """测试点歌队列、切歌与历史记录。"""

    def test_first_enqueue_starts_playing(self, room: PartyRoom) -> None:
        item = room.enqueue(req("Song A"))

        assert room.now_playing is item
        assert room.queue == []
        assert room.playback_state.is_playing is True
        assert room.playback_state.position_seconds == 0.0

    def test_enqueue_keeps_insertion_order_and_unique_ids(self, room: PartyRoom) -> None:
        room.enqueue(req("warmup"))
        titles = [f"Song {i}" for i in range(30)]
        items = [room.enqueue(req(t)) for t in titles]

        assert [i.title for i in room.queue] == titles
        ids = [room.now_playing.id] + [i.id for i in items]
        assert len(ids) == len(set(ids))
        assert all(i.startswith("song_") for i in ids)

    def test_dequeue(self, room: PartyRoom) -> None:
        room.enqueue(req("A"))
        b = room.enqueue(req("B"))
        c = room.enqueue(req("C"))

        assert room.dequeue(b.id) is True
        assert [i.id for i in room.queue] == [c.id]

    def test_dequeue_missing_reports_not_found(self, room: PartyRoom) -> None:
        room.enqueue(req("A"))
        b = room.enqueue(req("B"))

        assert room.dequeue("song_404_nope") is False
        # 正在播放的歌曲不在队列中
        assert room.dequeue(room.now_playing.id) is False
        assert [i.id for i in room.queue] == [b.id]

    def test_play_next_moves_current_to_history(self, room: PartyRoom) -> None:
        a = room.enqueue(req("A"))
        b = room.enqueue(req("B"))

        assert room.play_next() is b
        assert list(room.history) == [a]
        assert room.queue == []

    def test_play_next_on_empty_queue_clears_now_playing(self, room: PartyRoom) -> None:
        a = room.enqueue(req("A"))

        assert room.play_next() is None
        assert room.now_playing is None
        assert room.playback_state.is_playing is False
        assert list(room.history) == [a]

    def test_play_next_then_previous_round_trip(self, room: PartyRoom) -> None:
        """切到下一首后立刻回到上一首，正在播放与队列顺序恢复原状。"""
        a = room.enqueue(req("A"))
        b = room.enqueue(req("B"))
        c = room.enqueue(req("C"))
        room.playback_state.position_seconds = 42.0

        room.play_next()
        assert room.play_previous() is a
        assert [i.id for i in room.queue] == [b.id, c.id]
        assert room.playback_state.position_seconds == 0.0
        assert list(room.history) == []

    def test_previous_with_empty_history_is_noop(self, room: PartyRoom) -> None:
        a = room.enqueue(req("A"))
        b = room.enqueue(req("B"))

        assert room.play_previous() is a
        assert room.now_playing is a
        assert [i.id for i in room.queue] == [b.id]

    def test_history_is_bounded(self, room: PartyRoom) -> None:
        """历史最多保留 50 首，超出时淘汰最旧的。"""
        items = [room.enqueue(req(f"S{i}")) for i in range(HISTORY_CAPACITY + 6)]
        for _ in range(len(items)):
            room.play_next()

        assert len(room.history) == HISTORY_CAPACITY
        assert room.history[0] is items[6]
        assert room.history[-1] is items[-1]

    def test_karaoke_night_scenario(self, room: PartyRoom) -> None:
        a = room.enqueue(req("Song A"))
        assert room.now_playing.title == "Song A"

        room.enqueue(req("Song B"))
        assert room.now_playing is a
        assert len(room.queue) == 1

        room.play_next()
        assert room.now_playing.title == "Song B"
        assert [s.title for s in room.history] == ["Song A"]
        assert room.queue == []

        room.play_previous()
        assert room.now_playing.title == "Song A"
        assert [s.title for s in room.queue] == ["Song B"]
        assert list(room.history) == []


# ── 播放状态 ──────────────────────────────────────────────────────────

class TestPlaybackState:
    """测试播放状态的逐字段合并。"""

    def test_patch_merges_only_given_fields(self, room: PartyRoom) -> None:
        room.update_playback_state(PlaybackPatch(is_playing=True, position_seconds=12.5))
        changes = room.update_playback_state(PlaybackPatch(position_seconds=3.0))

        assert changes == {"position_seconds": 3.0}
        assert room.playback_state.is_playing is True
        # 允许回退 seek
        assert room.playback_state.position_seconds == 3.0

    def test_unknown_fields_are_not_applied(self, room: PartyRoom) -> None:
        patch = PlaybackPatch(is_playing=False, volume=80)

        assert patch.unknown_fields == ["volume"]
        assert room.update_playback_state(patch) == {"is_playing": False}
        assert not hasattr(room.playback_state, "volume")

    def test_set_lyrics_offset(self, room: PartyRoom) -> None:
        room.set_lyrics_offset(-1.5)
        assert room.playback_state.lyrics_offset_seconds == -1.5


# ── 连接 ──────────────────────────────────────────────────────────────

class TestConnections:
    """测试连接登记与活动时间。"""

    def test_add_and_remove(self, room: PartyRoom) -> None:
        record = room.add_connection("c1", role="host")

        assert record.is_host
        assert room.client_count == 1
        assert room.remove_connection("c1") is record
        assert room.client_count == 0
        assert room.remove_connection("c1") is None

    def test_remove_releases_connection_seat(self, room: PartyRoom) -> None:
        room.add_connection("c1")
        room.assign_seat("alice", "char_2", connection_id="c1")

        room.remove_connection("c1")

        assert room.get_seat("char_2").assigned_to is None

    def test_remove_releases_every_seat_claimed_by_connection(self, room: PartyRoom) -> None:
        """同一连接先后为不同参与者认领座位，断开时全部释放。"""
        room.add_connection("c1")
        room.assign_seat("p", "char_1", connection_id="c1")
        room.assign_seat("q", "char_2", connection_id="c1")

        room.remove_connection("c1")

        assert [s.id for s in room.seats if s.assigned_to is not None] == []

    def test_remove_keeps_seat_claimed_elsewhere(self, room: PartyRoom) -> None:
        """参与者已经换到其他座位时，断开旧连接不应影响新座位。"""
        room.add_connection("c1")
        room.add_connection("c2")
        room.assign_seat("alice", "char_2", connection_id="c1")
        room.assign_seat("alice", "char_5", connection_id="c2")

        room.remove_connection("c1")

        assert room.get_seat("char_5").assigned_to == "alice"

    def test_mutations_touch_activity(self, room: PartyRoom) -> None:
        room.last_activity_at = 0.0
        room.enqueue(req("A"))
        assert room.last_activity_at > 0.0

    def test_is_idle(self, room: PartyRoom) -> None:
        room.last_activity_at = 1000.0
        assert room.is_idle(60, now=1100.0) is True
        assert room.is_idle(60, now=1050.0) is False

        room.add_connection("c1")
        room.last_activity_at = 1000.0
        assert room.is_idle(60, now=5000.0) is False


# ── 语音成员 ──────────────────────────────────────────────────────────

class TestMembers:
    """测试语音成员整体替换与说话状态。"""

    def test_refresh_replaces_wholesale(self, room: PartyRoom) -> None:
        room.refresh_members([Member(participant_id="1", display_name="A")])
        room.refresh_members([Member(participant_id="2", display_name="B")])

        assert [m.participant_id for m in room.members] == ["2"]

    def test_speaking_reflected_in_snapshot(self, room: PartyRoom) -> None:
        room.refresh_members([Member(participant_id="1"), Member(participant_id="2")])
        room.set_speaking("2", True)

        snapshot = room.snapshot()

        assert [m.is_speaking for m in snapshot.members] == [False, True]

    def test_refresh_drops_speaking_of_departed(self, room: PartyRoom) -> None:
        room.refresh_members([Member(participant_id="1")])
        room.set_speaking("1", True)
        room.refresh_members([])

        assert room.speaking == {}

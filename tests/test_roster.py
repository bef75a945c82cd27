"""Tests for roster reconciliation."""
import pytest

from guildsync.network.protocol import decode
from guildsync.network.session import ServerSession
from guildsync.player_state import LocalPlayerView
from guildsync.roster import RemotePlayer, RosterReconciler
from tests.conftest import assert_position


@pytest.fixture
def view():
    return LocalPlayerView()


@pytest.fixture
def session():
    s = ServerSession()
    s.establish("me", "#FF5252")
    return s


@pytest.fixture
def roster(view, session):
    return RosterReconciler(view, session)


class TestSnapshots:
    """Full player lists."""

    def test_absent_players_are_removed(self, roster):
        """A player missing from the next snapshot has left."""
        roster.apply_snapshot([
            {'id': "p1", 'name': "Amy", 'x': 10, 'y': 10},
            {'id': "p2", 'name': "Ben", 'x': 20, 'y': 20},
        ], "me")
        change = roster.apply_snapshot([{'id': "p2", 'name': "Ben", 'x': 25, 'y': 25}], "me")

        assert list(roster.players) == ["p2"]
        assert_position(roster.get("p2").position, 25, 25)
        assert change.removed == ["p1"]
        assert change.updated == ["p2"]

    def test_new_players_are_added(self, roster):
        change = roster.apply_snapshot([{'id': "p1", 'name': "Amy", 'color': "#4CAF50", 'x': 1, 'y': 2}], "me")
        assert change.added == ["p1"]
        player = roster.get("p1")
        assert isinstance(player, RemotePlayer)
        assert player.name == "Amy"
        assert player.color_hex == "#4CAF50"
        assert (player.x, player.y) == (1, 2)
        assert player.is_active

    def test_unchanged_snapshot_reports_nothing(self, roster):
        entries = [{'id': "p1", 'name': "Amy", 'color': "#4CAF50", 'x': 1, 'y': 2}]
        roster.apply_snapshot(entries, "me")
        assert not roster.apply_snapshot(entries, "me")

    def test_entries_without_id_are_dropped(self, roster):
        roster.apply_snapshot([{'name': "ghost"}, "garbage", {'id': "p1"}], "me")
        assert list(roster.players) == ["p1"]

    def test_bad_color_falls_back_to_red(self, roster):
        roster.apply_snapshot([{'id': "p1", 'color': "blue"}], "me")
        assert roster.get("p1").color_hex == "#FF0000"

    def test_local_entry_never_joins_remote_roster(self, roster, view):
        """Our own entry seeds the local view instead."""
        change = roster.apply_snapshot([
            {'id': "me", 'name': "Bob", 'x': 50, 'y': 60},
            {'id': "p1", 'name': "Amy", 'x': 1, 'y': 1},
        ], "me")
        assert "me" not in roster
        assert len(roster) == 1
        assert change.local_position
        assert view.has_position
        assert_position(view.position, 50, 60)

    def test_server_color_wins_for_local_player(self, roster, session):
        change = roster.apply_snapshot([{'id': "me", 'color': "#2196f3"}], "me")
        assert change.local_color
        assert session.color == "#2196F3"

    def test_local_map_follows_snapshot(self, roster, view):
        roster.apply_snapshot([{'id': "me", 'map_id': "forest"}], "me")
        assert view.map_id == "forest"

    def test_players_view_is_read_only(self, roster):
        roster.apply_snapshot([{'id': "p1"}], "me")
        with pytest.raises(TypeError):
            roster.players["p2"] = RemotePlayer(id="p2")

    def test_removed_player_marked_inactive(self, roster):
        roster.apply_snapshot([{'id': "p1"}], "me")
        player = roster.get("p1")
        roster.apply_snapshot([], "me")
        assert not player.is_active

    def test_missing_fields_keep_known_values(self, roster):
        """A later entry without name or color does not blank them."""
        roster.apply_snapshot([{'id': "p1", 'name': "Amy", 'color': "#4CAF50", 'x': 1, 'y': 1}], "me")
        roster.apply_snapshot([{'id': "p1", 'x': 2, 'y': 2}], "me")
        player = roster.get("p1")
        assert player.name == "Amy"
        assert player.color_hex == "#4CAF50"
        assert_position(player.position, 2, 2)

    def test_decoded_entry_without_name_keeps_name(self, roster):
        roster.apply_snapshot(decode('PLAYERS [{"id":"p1","name":"Amy"}]').payload.get_list('players'), "me")
        roster.apply_snapshot(decode('PLAYERS [{"id":"p1","x":5,"y":5}]').payload.get_list('players'), "me")
        assert roster.get("p1").name == "Amy"


class TestPositionDeltas:
    """Single-player position updates."""

    def test_remote_delta_moves_player(self, roster):
        roster.apply_snapshot([{'id': "p1", 'x': 0, 'y': 0}], "me")
        change = roster.apply_position_delta("p1", 5.0, 6.0, "me")
        assert change.updated == ["p1"]
        assert_position(roster.get("p1").position, 5, 6)

    def test_unknown_remote_id_ignored(self, roster):
        change = roster.apply_position_delta("stranger", 1.0, 1.0, "me")
        assert not change
        assert "stranger" not in roster

    def test_local_delta_moves_only_server_position(self, roster, view):
        """After the first position, deltas leave the prediction for correction."""
        view.apply_authoritative(100.0, 100.0)
        change = roster.apply_position_delta("me", 110.0, 100.0, "me")
        assert change.local_position
        assert_position(view.server_position, 110, 100)
        assert_position(view.position, 100, 100)

    def test_first_local_delta_seeds_prediction(self, roster, view):
        roster.apply_position_delta("me", 30.0, 40.0, "me")
        assert view.has_position
        assert_position(view.position, 30, 40)

    def test_repeated_local_delta_is_not_a_change(self, roster, view):
        roster.apply_position_delta("me", 30.0, 40.0, "me")
        assert not roster.apply_position_delta("me", 30.0, 40.0, "me")

"""Tests for roster storage."""

from __future__ import annotations

import pytest

from wartracker.database import StorageEngine
from wartracker.services.roster import MemberNotRegistered, RosterStore


@pytest.fixture
def roster(storage: StorageEngine) -> RosterStore:
    return RosterStore(storage, timeout=2.0)


class TestRegistration:
    """Upsert and placeholder inserts."""

    def test_register_new_member(self, roster: RosterStore) -> None:
        """First registration creates a record with defaults."""
        assert roster.upsert_member("1", "Alice") is True
        m = roster.get_member("1")
        assert m is not None
        assert (m.in_game_name, m.war_orders, m.lumber, m.availability, m.guild_role_id) == (
            "Alice",
            0,
            0,
            "Not Set",
            "",
        )

    def test_reregister_renames_only(self, roster: RosterStore) -> None:
        """Registering again changes the name and keeps the other fields."""
        roster.upsert_member("1", "Alice")
        roster.update_orders("1", 7)
        roster.update_availability("1", "18:00-20:00 GMT")

        assert roster.upsert_member("1", "Alicia") is False
        m = roster.get_member("1")
        assert m.in_game_name == "Alicia"
        assert m.war_orders == 7
        assert m.availability == "18:00-20:00 GMT"

    def test_name_is_trimmed(self, roster: RosterStore) -> None:
        """Surrounding whitespace is not stored."""
        roster.upsert_member("1", "  Alice  ")
        assert roster.get_member("1").in_game_name == "Alice"

    def test_blank_name_rejected(self, roster: RosterStore) -> None:
        """Blank names are invalid."""
        with pytest.raises(ValueError):
            roster.upsert_member("1", "   ")
        assert roster.get_member("1") is None

    def test_insert_if_missing(self, roster: RosterStore) -> None:
        """Placeholder inserts never overwrite an existing name."""
        assert roster.insert_member_if_missing("1", "discord_user") is True
        assert roster.insert_member_if_missing("1", "other_name") is False
        assert roster.get_member("1").in_game_name == "discord_user"

        roster.upsert_member("2", "Bob")
        assert roster.insert_member_if_missing("2", "bob_discord") is False
        assert roster.get_member("2").in_game_name == "Bob"


class TestUpdates:
    """Field updates for registered and unknown members."""

    def test_update_resources(self, roster: RosterStore) -> None:
        """Orders and lumber are stored as given."""
        roster.upsert_member("1", "Alice")
        roster.update_orders("1", 12)
        roster.update_lumber("1", 1234567)
        m = roster.get_member("1")
        assert (m.war_orders, m.lumber) == (12, 1234567)

    def test_zero_is_allowed(self, roster: RosterStore) -> None:
        """Zero is a valid amount."""
        roster.upsert_member("1", "Alice")
        roster.update_orders("1", 5)
        roster.update_orders("1", 0)
        assert roster.get_member("1").war_orders == 0

    def test_negative_amounts_rejected(self, roster: RosterStore) -> None:
        """Negative amounts never reach storage."""
        roster.upsert_member("1", "Alice")
        with pytest.raises(ValueError):
            roster.update_orders("1", -1)
        with pytest.raises(ValueError):
            roster.update_lumber("1", -5)
        assert roster.get_member("1").war_orders == 0

    def test_availability_blank_resets(self, roster: RosterStore) -> None:
        """A missing slot stores the "Not Set" sentinel."""
        roster.upsert_member("1", "Alice")
        roster.update_availability("1", "Not Available")
        assert roster.get_member("1").availability == "Not Available"
        roster.update_availability("1", None)
        assert roster.get_member("1").availability == "Not Set"

    def test_role_snapshot_stored(self, roster: RosterStore) -> None:
        """Role ids are stored as strings."""
        roster.upsert_member("1", "Alice")
        roster.update_member_role("1", "555")
        assert roster.get_member("1").guild_role_id == "555"

    @pytest.mark.parametrize(
        "method, value",
        [
            ("update_orders", 1),
            ("update_lumber", 1),
            ("update_availability", "Not Available"),
            ("update_member_role", "555"),
        ],
    )
    def test_unknown_member_raises(self, roster: RosterStore, method: str, value) -> None:  # noqa: ANN001
        """Updating someone who never registered is reported, not ignored."""
        with pytest.raises(MemberNotRegistered) as excinfo:
            getattr(roster, method)("404", value)
        assert excinfo.value.discord_id == "404"
        assert roster.get_member("404") is None


class TestListing:
    """Reads and deletes."""

    def test_all_members_sorted_case_insensitively(self, roster: RosterStore) -> None:
        """Listing order ignores case."""
        roster.upsert_member("1", "charlie")
        roster.upsert_member("2", "Alice")
        roster.upsert_member("3", "bob")
        assert [m.in_game_name for m in roster.get_all_members()] == ["Alice", "bob", "charlie"]

    def test_empty_roster(self, roster: RosterStore) -> None:
        """No members gives an empty list."""
        assert roster.get_all_members() == []

    def test_delete(self, roster: RosterStore) -> None:
        """Deleting reports whether anything was removed."""
        roster.upsert_member("1", "Alice")
        assert roster.delete_member("1") is True
        assert roster.delete_member("1") is False
        assert roster.get_member("1") is None

import pytest

from mealmate.errors import AppError, ErrorCode


class TestUsers:
    """Test user profiles."""

    def test_upsert_creates_and_updates(self, households):
        created = households.upsert_user("carol", " Carol@Example.com ", full_name="Carol")
        assert created.email == "carol@example.com"
        assert created.household_id is None

        updated = households.upsert_user("carol", "carol@example.com", avatar_url="https://example.com/c.png")

        assert updated.full_name == "Carol"
        assert updated.avatar_url == "https://example.com/c.png"
        assert households.get_user("carol") == updated

    def test_email_must_be_valid(self, households):
        with pytest.raises(AppError) as exc_info:
            households.upsert_user("carol", "not-an-email")
        assert exc_info.value.status_code == 400

    def test_email_is_unique(self, households, alice):
        with pytest.raises(AppError) as exc_info:
            households.upsert_user("carol", "ALICE@example.com")

        assert exc_info.value.code == ErrorCode.DUPLICATE_ENTRY
        assert exc_info.value.status_code == 409

    def test_unknown_user(self, households):
        with pytest.raises(AppError) as exc_info:
            households.get_user("nobody")
        assert exc_info.value.code == ErrorCode.USER_NOT_FOUND


class TestHouseholds:
    """Test household membership."""

    def test_creator_becomes_member(self, households, household, alice):
        assert household.household_name == "The Smiths"
        assert households.get_user(alice.id).household_id == household.id
        assert households.is_member(alice.id, household.id)

    def test_name_required(self, households, alice):
        with pytest.raises(AppError) as exc_info:
            households.create_household("   ", alice.id)
        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR

    def test_creator_must_exist(self, households):
        with pytest.raises(AppError) as exc_info:
            households.create_household("Ghosts", "nobody")
        assert exc_info.value.code == ErrorCode.USER_NOT_FOUND

    def test_non_member_cannot_read(self, households, household, bob):
        with pytest.raises(AppError) as exc_info:
            households.get_household(household.id, bob.id)
        assert exc_info.value.status_code == 403

    def test_unknown_household(self, households, alice):
        with pytest.raises(AppError) as exc_info:
            households.get_household("missing", alice.id)
        assert exc_info.value.status_code == 404

    def test_join_and_list_members(self, households, household, alice, bob):
        households.join_household(bob.id, household.id)

        members = households.list_members(household.id, bob.id)

        assert [m.full_name for m in members] == ["Alice", "Bob"]

    def test_leave(self, households, household, alice):
        user = households.leave_household(alice.id)

        assert user.household_id is None
        assert not households.is_member(alice.id, household.id)

    def test_is_member_without_household(self, households, alice):
        assert households.is_member(alice.id, None) is False

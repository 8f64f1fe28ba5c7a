"""Tests for the deploy status record."""

import pytest

from deployer.status import DeployStatus, MissingStatusError, StatusConflictError


class TestDeployStatus:
    """Tests for DeployStatus."""

    def test_write_and_read(self) -> None:
        """Test that written fields are readable as a mapping."""
        status = DeployStatus()

        status.write("role", role_arn="arn:aws:iam::123:role/app", role_name="app")

        assert status["role_arn"] == "arn:aws:iam::123:role/app"
        assert dict(status) == {"role_arn": "arn:aws:iam::123:role/app", "role_name": "app"}
        assert status.owner_of("role_arn") == "role"

    def test_initial_values_belong_to_input(self) -> None:
        """Test that seeded values are owned by the input stage."""
        status = DeployStatus({"image_uri": "repo:tag"})

        assert status.owner_of("image_uri") == "input"
        assert status.owned_by("input") == {"image_uri": "repo:tag"}

    def test_none_values_are_skipped(self) -> None:
        """Test that None never overwrites or creates a field."""
        status = DeployStatus()
        status.write("function", function_arn="arn:1")

        status.write("function", function_arn=None, architecture=None)

        assert status["function_arn"] == "arn:1"
        assert "architecture" not in status

    def test_owner_may_replace_its_own_fields(self) -> None:
        """Test that the owning step can overwrite its outputs."""
        status = DeployStatus()
        status.write("function", function_arn="arn:1")

        status.write("function", function_arn="arn:2")

        assert status["function_arn"] == "arn:2"

    def test_foreign_owner_is_rejected(self) -> None:
        """Test that another step cannot write an owned key."""
        status = DeployStatus()
        status.write("role", role_arn="arn:1")

        with pytest.raises(StatusConflictError):
            status.write("function", role_arn="arn:2", function_arn="arn:3")

        assert status["role_arn"] == "arn:1"
        assert "function_arn" not in status

    def test_require_missing_field(self) -> None:
        """Test the error for a missing dependency."""
        status = DeployStatus()

        with pytest.raises(MissingStatusError) as exc_info:
            status.require("role_arn", needed_by="function")

        assert exc_info.value.key == "role_arn"
        assert str(exc_info.value) == "Deploy status has no 'role_arn' (needed by function)"

    def test_require_present_field(self) -> None:
        """Test that require returns present values."""
        status = DeployStatus({"unique_id": "1a2b3c4d"})

        assert status.require("unique_id") == "1a2b3c4d"

    def test_as_dict_is_a_copy(self) -> None:
        """Test that as_dict cannot be used to mutate the status."""
        status = DeployStatus({"image_uri": "repo:tag"})

        status.as_dict()["image_uri"] = "other"

        assert status["image_uri"] == "repo:tag"

"""Tests for configuration loading."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from deployer.config import Config, ConfigurationError
from deployer.retry import RetryPolicy


class TestConfig:
    """Tests for Config class."""

    def test_valid_config(self) -> None:
        """Test creating a valid configuration."""
        config = Config(app_name="orders-api", region="eu-west-1")

        assert config.app_name == "orders-api"
        assert config.spec_path == Path("deploy.yaml")
        assert config.retries.max_retries == 60
        assert config.check_permissions is False
        assert config.continue_on_error is False

    def test_missing_app_name(self) -> None:
        """Test that a missing app name raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(app_name="")

        assert "APP_NAME" in str(exc_info.value)

    @pytest.mark.parametrize("name", ["Orders", "1orders", "orders-", "o" * 60, "orders_api"])
    def test_invalid_app_name(self, name: str) -> None:
        """Test that names unusable as resource names are rejected."""
        with pytest.raises(ConfigurationError):
            Config(app_name=name)

    def test_invalid_region(self) -> None:
        """Test that region format is validated."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(app_name="orders-api", region="mars")

        assert "AWS_REGION" in str(exc_info.value)

    def test_gov_region_is_valid(self) -> None:
        """Test that multi-part region names are accepted."""
        assert Config(app_name="orders-api", region="us-gov-west-1").region == "us-gov-west-1"

    def test_mutation_retries_bounds(self) -> None:
        """Test that mutation retries must be within bounds."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(app_name="orders-api", mutation_retries=11)

        assert "MUTATION_RETRIES" in str(exc_info.value)

    def test_call_timeout_bounds(self) -> None:
        """Test that the provider call timeout must be within bounds."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(app_name="orders-api", call_timeout_seconds=0)

        assert "CALL_TIMEOUT" in str(exc_info.value)

    def test_all_errors_reported_together(self) -> None:
        """Test that every invalid field is listed in one error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(app_name="", region="", mutation_retries=-1)

        message = str(exc_info.value)
        assert "APP_NAME" in message
        assert "AWS_REGION" in message
        assert "MUTATION_RETRIES" in message

    def test_retry_policies_use_backoff_base(self) -> None:
        """Test the policies the engine receives."""
        config = Config(
            app_name="orders-api",
            retries=RetryPolicy.unbounded(),
            mutation_retries=5,
            backoff_base_seconds=0.5,
        )

        assert config.convergence_retry_policy.is_unbounded
        assert config.convergence_retry_policy.base_delay_seconds == 0.5
        assert config.mutation_retry_policy.max_retries == 5
        assert config.mutation_retry_policy.base_delay_seconds == 0.5

    def test_bounded_convergence_policy(self) -> None:
        """Test that a bounded retry count carries over with the backoff base."""
        config = Config(app_name="orders-api", retries=RetryPolicy.bounded(7), backoff_base_seconds=0.5)

        policy = config.convergence_retry_policy
        assert policy.max_retries == 7
        assert policy.base_delay_seconds == 0.5


class TestConfigFromEnv:
    """Tests for Config.from_env."""

    def test_from_env_minimal(self) -> None:
        """Test loading with only the required variables."""
        with patch.dict(os.environ, {"APP_NAME": "orders-api"}, clear=True):
            config = Config.from_env()

        assert config.app_name == "orders-api"
        assert config.region == "us-east-1"
        assert config.image_uri is None

    def test_from_env_full(self) -> None:
        """Test loading every supported variable."""
        env = {
            "APP_NAME": "orders-api",
            "AWS_REGION": "eu-central-1",
            "DEPLOY_SPEC": "/tmp/app.yaml",
            "DEPLOY_RETRIES": "forever",
            "MUTATION_RETRIES": "4",
            "RETRY_BACKOFF_SECONDS": "0.25",
            "CALL_TIMEOUT": "30",
            "CHECK_PERMISSIONS": "true",
            "DESTROY": "yes",
            "CONTINUE_ON_ERROR": "1",
            "IMAGE_URI": "123.dkr.ecr.eu-central-1.amazonaws.com/orders-api:abc",
        }
        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.region == "eu-central-1"
        assert config.spec_path == Path("/tmp/app.yaml")
        assert config.retries.is_unbounded
        assert config.mutation_retries == 4
        assert config.backoff_base_seconds == 0.25
        assert config.call_timeout_seconds == 30
        assert config.check_permissions is True
        assert config.destroy is True
        assert config.continue_on_error is True
        assert config.image_uri.endswith("orders-api:abc")

    def test_default_region_fallback(self) -> None:
        """Test that AWS_DEFAULT_REGION is used when AWS_REGION is unset."""
        with patch.dict(os.environ, {"APP_NAME": "orders-api", "AWS_DEFAULT_REGION": "ap-southeast-2"}, clear=True):
            config = Config.from_env()

        assert config.region == "ap-southeast-2"

    def test_overrides_take_precedence(self) -> None:
        """Test that non-None overrides replace environment values."""
        with patch.dict(os.environ, {"APP_NAME": "orders-api", "AWS_REGION": "eu-west-1"}, clear=True):
            config = Config.from_env(region="us-west-2", image_uri=None)

        assert config.region == "us-west-2"
        assert config.image_uri is None

    def test_invalid_integer(self) -> None:
        """Test that non-numeric integers are reported by variable name."""
        with patch.dict(os.environ, {"APP_NAME": "orders-api", "MUTATION_RETRIES": "many"}, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                Config.from_env()

        assert "MUTATION_RETRIES" in str(exc_info.value)

    def test_invalid_retries(self) -> None:
        """Test that an unparseable retry budget is rejected."""
        with patch.dict(os.environ, {"APP_NAME": "orders-api", "DEPLOY_RETRIES": "lots"}, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                Config.from_env()

        assert "DEPLOY_RETRIES" in str(exc_info.value)

    def test_false_booleans(self) -> None:
        """Test that anything but true/1/yes is false."""
        with patch.dict(os.environ, {"APP_NAME": "orders-api", "CHECK_PERMISSIONS": "no"}, clear=True):
            config = Config.from_env()

        assert config.check_permissions is False

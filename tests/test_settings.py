"""
Tests for settings module.

Tests settings validation, YAML config loading and environment variable
precedence.
"""
from __future__ import annotations

import os
import pytest
from unittest.mock import patch

from image_sync.settings import Settings, create_settings_from_env, load_config_file


class TestSettings:
    """Test Settings dataclass validation."""

    def test_defaults(self):
        """Test default values match the deployed mirror job."""
        settings = Settings()
        assert settings.images == ()
        assert settings.max_tags == 10
        assert settings.skip_latest is True
        assert settings.isolate_failures is False
        assert settings.workers == 1
        assert settings.source_provider == "quay"
        assert settings.source_url == "https://quay.io"
        assert settings.destination_provider == "acr"
        assert settings.destination_url is None
        assert settings.request_timeout_s == 10.0
        assert settings.http_retry == 0

    def test_images_stored_as_tuple(self):
        """Test that any sequence of images is normalized to a tuple."""
        settings = Settings(images=["org/app", "openshift/release"])
        assert settings.images == ("org/app", "openshift/release")

    def test_string_images_rejected(self):
        """Test that a bare string is not split into one-letter repositories."""
        with pytest.raises(ValueError, match="images must be a list"):
            Settings(images="nginx")

    def test_invalid_image_raises(self):
        """Test that non-OCI repository names are rejected."""
        with pytest.raises(ValueError, match="Invalid image repository path"):
            Settings(images=["Org/App"])

        with pytest.raises(ValueError, match="Invalid image repository path"):
            Settings(images=["org//app"])

    def test_max_tags_must_be_positive(self):
        """Test that max_tags below one is rejected."""
        with pytest.raises(ValueError, match="max_tags must be at least 1"):
            Settings(max_tags=0)

    def test_workers_must_be_positive(self):
        """Test that workers below one is rejected."""
        with pytest.raises(ValueError, match="workers must be at least 1"):
            Settings(workers=0)

    def test_unknown_provider_raises(self):
        """Test that unsupported providers are rejected."""
        with pytest.raises(ValueError, match="Unknown source_provider: ghcr"):
            Settings(source_provider="ghcr")

        with pytest.raises(ValueError, match="Unknown destination_provider"):
            Settings(destination_provider="ecr")

    def test_invalid_url_format_raises(self):
        """Test that invalid registry URLs raise ValueError."""
        with pytest.raises(ValueError, match="Invalid source_url format"):
            Settings(source_url="not a url")

        with pytest.raises(ValueError, match="Invalid source_url format"):
            Settings(source_url="")

        with pytest.raises(ValueError, match="Invalid destination_url format"):
            Settings(destination_url="://missing-host")

    def test_valid_url_formats(self):
        """Test that common registry URL shapes are accepted."""
        for url in ["https://myregistry.azurecr.io", "myregistry.azurecr.io", "http://localhost:5000"]:
            assert Settings(destination_url=url).destination_url == url

    def test_negative_timeout_raises(self):
        """Test that non-positive timeouts raise ValueError."""
        with pytest.raises(ValueError, match="request_timeout_s must be positive"):
            Settings(request_timeout_s=0)

    def test_negative_retry_raises(self):
        """Test that negative retry count raises ValueError."""
        with pytest.raises(ValueError, match="http_retry must be non-negative"):
            Settings(http_retry=-1)

    def test_partial_service_principal_raises(self):
        """Test that a half-configured service principal is rejected."""
        with pytest.raises(ValueError, match="missing: azure_client_secret_file, azure_tenant_id"):
            Settings(azure_client_id="client")

    def test_complete_service_principal(self):
        """Test that a complete service principal is accepted."""
        settings = Settings(azure_tenant_id="t", azure_client_id="c", azure_client_secret_file="/secret")
        assert settings.azure_client_id == "c"

    def test_settings_immutable(self):
        """Test that Settings is frozen."""
        settings = Settings()
        with pytest.raises(AttributeError):
            settings.max_tags = 5  # type: ignore

    def test_with_overrides_ignores_none(self):
        """Test that only flags that were given replace values."""
        settings = Settings(max_tags=5)
        updated = settings.with_overrides(max_tags=None, skip_latest=False)
        assert updated.max_tags == 5
        assert updated.skip_latest is False
        assert settings.with_overrides(max_tags=None) is settings

    def test_with_overrides_validates(self):
        """Test that overrides go through validation."""
        with pytest.raises(ValueError, match="max_tags"):
            Settings().with_overrides(max_tags=0)


class TestConfigFile:
    """Test YAML config loading."""

    def test_load_config_file(self, tmp_path):
        """Test that a YAML mapping loads with Settings field names."""
        path = tmp_path / "config.yaml"
        path.write_text("images:\n  - org/app\n  - org/other\nmax_tags: 5\nskip_latest: false\n")

        data = load_config_file(path)
        assert data == {"images": ["org/app", "org/other"], "max_tags": 5, "skip_latest": False}

    def test_empty_file_is_empty_config(self, tmp_path):
        """Test that an empty document yields no values."""
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config_file(path) == {}

    def test_unknown_keys_rejected(self, tmp_path):
        """Test that typos in config keys fail fast."""
        path = tmp_path / "config.yaml"
        path.write_text("numberoftags: 10\n")
        with pytest.raises(ValueError, match="Unknown keys.*numberoftags"):
            load_config_file(path)

    def test_non_mapping_rejected(self, tmp_path):
        """Test that a list document is rejected."""
        path = tmp_path / "config.yaml"
        path.write_text("- org/app\n")
        with pytest.raises(ValueError, match="must contain a mapping"):
            load_config_file(path)

    def test_missing_file(self, tmp_path):
        """Test that a missing config file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_config_file(tmp_path / "nope.yaml")

    def test_scalar_images_rejected(self, tmp_path):
        """Test that images given as a single string is a config error."""
        path = tmp_path / "config.yaml"
        path.write_text("images: nginx\n")
        with pytest.raises(ValueError, match="images must be a list of strings"):
            create_settings_from_env(str(path))

    @pytest.mark.parametrize("document, key", [
        ("skip_latest: \"false\"\n", "skip_latest"),
        ("isolate_failures: 1\n", "isolate_failures"),
        ("max_tags: ten\n", "max_tags"),
        ("workers: true\n", "workers"),
        ("request_timeout_s: fast\n", "request_timeout_s"),
        ("destination_url: 42\n", "destination_url"),
        ("images: [org/app, 7]\n", "images"),
    ])
    def test_wrongly_typed_values_rejected(self, tmp_path, document, key):
        """Test that YAML values must match the Settings field types."""
        path = tmp_path / "config.yaml"
        path.write_text(document)
        with pytest.raises(ValueError, match=f"{key} must be"):
            load_config_file(path)

    def test_integer_timeout_accepted(self, tmp_path):
        """Test that a whole-number timeout is a valid float setting."""
        path = tmp_path / "config.yaml"
        path.write_text("request_timeout_s: 5\n")
        assert create_settings_from_env(str(path)).request_timeout_s == 5


class TestCreateSettingsFromEnv:
    """Test environment variable loading."""

    def test_no_environment(self):
        """Test that defaults apply with nothing configured."""
        with patch.dict(os.environ, {}, clear=True):
            settings = create_settings_from_env()
            assert settings == Settings()

    def test_all_env_vars(self):
        """Test loading every supported environment variable."""
        env_vars = {
            "IMAGE_SYNC_IMAGES": "org/app, org/other ,",
            "IMAGE_SYNC_MAX_TAGS": "4",
            "IMAGE_SYNC_SKIP_LATEST": "false",
            "IMAGE_SYNC_ISOLATE_FAILURES": "yes",
            "IMAGE_SYNC_WORKERS": "3",
            "IMAGE_SYNC_SOURCE_PROVIDER": "QUAY",
            "IMAGE_SYNC_SOURCE_URL": "https://quay.example.com",
            "IMAGE_SYNC_SOURCE_TOKEN_FILE": "/secrets/quay-token",
            "IMAGE_SYNC_SOURCE_PULL_SECRET_FILE": "/secrets/pull-secret",
            "IMAGE_SYNC_DESTINATION_URL": "https://mirror.azurecr.io",
            "AZURE_TENANT_ID": "tenant",
            "AZURE_CLIENT_ID": "client",
            "IMAGE_SYNC_AZURE_CLIENT_SECRET_FILE": "/secrets/sp",
            "IMAGE_SYNC_REQUEST_TIMEOUT": "2.5",
            "IMAGE_SYNC_HTTP_RETRY": "3",
        }
        with patch.dict(os.environ, env_vars, clear=True):
            settings = create_settings_from_env()

        assert settings.images == ("org/app", "org/other")
        assert settings.max_tags == 4
        assert settings.skip_latest is False
        assert settings.isolate_failures is True
        assert settings.workers == 3
        assert settings.source_provider == "quay"
        assert settings.source_url == "https://quay.example.com"
        assert settings.source_token_file == "/secrets/quay-token"
        assert settings.source_pull_secret_file == "/secrets/pull-secret"
        assert settings.destination_url == "https://mirror.azurecr.io"
        assert settings.azure_tenant_id == "tenant"
        assert settings.request_timeout_s == 2.5
        assert settings.http_retry == 3

    def test_boolean_parsing(self):
        """Test truthy spellings for boolean variables."""
        for value in ["true", "1", "YES", "on"]:
            with patch.dict(os.environ, {"IMAGE_SYNC_ISOLATE_FAILURES": value}, clear=True):
                assert create_settings_from_env().isolate_failures is True
        for value in ["false", "0", "no", "off"]:
            with patch.dict(os.environ, {"IMAGE_SYNC_SKIP_LATEST": value}, clear=True):
                assert create_settings_from_env().skip_latest is False

    def test_invalid_integer_raises(self):
        """Test that a non-numeric cap raises ValueError."""
        with patch.dict(os.environ, {"IMAGE_SYNC_MAX_TAGS": "ten"}, clear=True):
            with pytest.raises(ValueError):
                create_settings_from_env()

    def test_env_overrides_config_file(self, tmp_path):
        """Test that environment wins over the config file."""
        path = tmp_path / "config.yaml"
        path.write_text("images: [org/app]\nmax_tags: 5\nworkers: 2\n")

        with patch.dict(os.environ, {"IMAGE_SYNC_MAX_TAGS": "7"}, clear=True):
            settings = create_settings_from_env(str(path))

        assert settings.images == ("org/app",)
        assert settings.max_tags == 7
        assert settings.workers == 2

    def test_config_path_from_env(self, tmp_path):
        """Test that IMAGE_SYNC_CONFIG names the config file."""
        path = tmp_path / "config.yaml"
        path.write_text("images: [org/app]\n")

        with patch.dict(os.environ, {"IMAGE_SYNC_CONFIG": str(path)}, clear=True):
            assert create_settings_from_env().images == ("org/app",)

    def test_fresh_instance_each_call(self):
        """Test that settings are not cached between calls."""
        with patch.dict(os.environ, {"IMAGE_SYNC_MAX_TAGS": "3"}, clear=True):
            first = create_settings_from_env()
        with patch.dict(os.environ, {"IMAGE_SYNC_MAX_TAGS": "4"}, clear=True):
            second = create_settings_from_env()
        assert first.max_tags == 3
        assert second.max_tags == 4

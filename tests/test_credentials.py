"""Tests for credentials.py module."""

import json
import stat
from datetime import datetime, timezone

import pytest
import yaml

from vault_auto.credentials import CredentialStore, RootTokenSink
from vault_auto.exceptions import CorruptRecordError, CredentialsNotFoundError, CredentialStoreError
from vault_auto.models import BootstrapCredentials, Environment


@pytest.fixture
def credentials():
    return BootstrapCredentials(
        unseal_keys=["k1", "k2", "k3"],
        unseal_keys_encoded=["b1", "b2", "b3"],
        root_token="hvs.root",
        created=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


class TestCredentialStore:
    """Tests for the per-environment credential record."""

    def test_write_then_read(self, tmp_path, credentials):
        """Test a stored record reads back equal."""
        store = CredentialStore(tmp_path)

        path = store.write(Environment.DEV, credentials)

        assert path == tmp_path / "dev" / "vault-credentials.json"
        assert store.read(Environment.DEV) == credentials
        assert store.exists(Environment.DEV)

    def test_record_format(self, tmp_path, credentials):
        """Test the record uses the keys, keys_base64 and token fields."""
        path = CredentialStore(tmp_path).write(Environment.PROD, credentials)

        record = json.loads(path.read_text())

        assert record["keys"] == ["k1", "k2", "k3"]
        assert record["keys_base64"] == ["b1", "b2", "b3"]
        assert record["token"] == "hvs.root"
        assert record["created"].startswith("2026-01-01")

    def test_record_is_private(self, tmp_path, credentials):
        """Test only the owner can read the record."""
        path = CredentialStore(tmp_path).write(Environment.DEV, credentials)

        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_environments_are_separate(self, tmp_path, credentials):
        """Test a record for one environment is invisible to another."""
        store = CredentialStore(tmp_path)
        store.write(Environment.DEV, credentials)

        with pytest.raises(CredentialsNotFoundError):
            store.read(Environment.STAGE)

    def test_overwrite_leaves_no_temp_files(self, tmp_path, credentials):
        """Test rewriting replaces the record in place."""
        store = CredentialStore(tmp_path)
        store.write(Environment.DEV, credentials)
        store.write(Environment.DEV, credentials)

        assert [p.name for p in (tmp_path / "dev").iterdir()] == ["vault-credentials.json"]

    def test_missing_record(self, tmp_path):
        """Test a missing record is reported as not found."""
        with pytest.raises(CredentialsNotFoundError):
            CredentialStore(tmp_path).read(Environment.DEV)

    @pytest.mark.parametrize(
        "content",
        [
            "{not json",
            json.dumps({"keys_base64": []}),
            json.dumps({"keys": "k1", "token": "hvs.root"}),
            json.dumps({"keys": ["k1"], "token": ""}),
        ],
    )
    def test_corrupt_record(self, tmp_path, content):
        """Test undecodable records are reported as corrupt."""
        path = tmp_path / "dev" / "vault-credentials.json"
        path.parent.mkdir()
        path.write_text(content)

        with pytest.raises(CorruptRecordError):
            CredentialStore(tmp_path).read(Environment.DEV)

    def test_corrupt_record_is_a_store_error(self):
        """Test callers can handle all record problems together."""
        assert issubclass(CorruptRecordError, CredentialStoreError)
        assert issubclass(CredentialsNotFoundError, CredentialStoreError)

    def test_unwritable_location(self, tmp_path, credentials):
        """Test write failures are reported as store errors."""
        blocker = tmp_path / "dev"
        blocker.write_text("not a directory")

        with pytest.raises(CredentialStoreError):
            CredentialStore(tmp_path).write(Environment.DEV, credentials)


class TestRootTokenSink:
    """Tests for copying the root token into a secrets file."""

    def test_creates_file(self, tmp_path):
        """Test a new file is created with the token."""
        path = tmp_path / "secrets.yaml"

        RootTokenSink(path).write("hvs.root")

        assert yaml.safe_load(path.read_text()) == {"vault": {"rootToken": "hvs.root"}}

    def test_preserves_other_keys(self, tmp_path):
        """Test existing content survives the merge."""
        path = tmp_path / "secrets.yaml"
        path.write_text(yaml.safe_dump({"gitlab": {"token": "glpat"}, "vault": {"address": "https://vault"}}))

        RootTokenSink(path).write("hvs.root")

        document = yaml.safe_load(path.read_text())
        assert document["gitlab"] == {"token": "glpat"}
        assert document["vault"] == {"address": "https://vault", "rootToken": "hvs.root"}

    def test_rejects_non_mapping(self, tmp_path):
        """Test a file that is not a mapping is left untouched."""
        path = tmp_path / "secrets.yaml"
        path.write_text("- one\n- two\n")

        with pytest.raises(CredentialStoreError):
            RootTokenSink(path).write("hvs.root")

        assert path.read_text() == "- one\n- two\n"

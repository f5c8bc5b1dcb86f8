"""Tests for SSH credential resolution."""

from __future__ import annotations

import io
from unittest.mock import MagicMock

import paramiko
import pytest

from claudedeploy.exceptions import CredentialUnavailable
from claudedeploy.services.credentials import (
    CredentialRequest,
    CredentialResolver,
    default_key_paths,
    key_is_encrypted,
    load_private_key,
)
from claudedeploy.storage.models import CredentialKind


@pytest.fixture(scope="module")
def rsa_key():
    return paramiko.RSAKey.generate(2048)


@pytest.fixture(scope="module")
def plain_key_bytes(rsa_key):
    buf = io.StringIO()
    rsa_key.write_private_key(buf)
    return buf.getvalue().encode()


@pytest.fixture(scope="module")
def encrypted_key_bytes(rsa_key):
    buf = io.StringIO()
    rsa_key.write_private_key(buf, password="correct horse")
    return buf.getvalue().encode()


def make_resolver(prompt=None, agent="", key_paths=None):
    return CredentialResolver(prompt_secret=prompt, agent_socket=agent, key_paths=key_paths or [])


class TestKeyParsing:
    def test_plain_key_not_encrypted(self, plain_key_bytes):
        assert key_is_encrypted(plain_key_bytes) is False

    def test_encrypted_key_detected(self, encrypted_key_bytes):
        assert key_is_encrypted(encrypted_key_bytes) is True

    def test_garbage_is_not_encrypted(self):
        assert key_is_encrypted(b"not a key") is False

    def test_load_with_passphrase(self, encrypted_key_bytes, rsa_key):
        loaded = load_private_key(encrypted_key_bytes, "correct horse")
        assert loaded.get_fingerprint() == rsa_key.get_fingerprint()

    def test_load_garbage_raises(self):
        with pytest.raises(paramiko.SSHException):
            load_private_key(b"garbage")

    def test_default_key_paths(self, tmp_path):
        paths = default_key_paths(tmp_path)
        assert [p.name for p in paths] == ["id_rsa", "id_ed25519", "id_ecdsa"]
        assert all(p.parent == tmp_path / ".ssh" for p in paths)


class TestCredentialResolver:
    def test_password_only(self):
        cred = make_resolver().resolve(CredentialRequest(password="pw"))
        assert cred.kind is CredentialKind.PASSWORD
        assert cred.password == "pw"

    def test_password_beats_key_and_agent(self, tmp_path, plain_key_bytes):
        key_file = tmp_path / "key"
        key_file.write_bytes(plain_key_bytes)
        resolver = make_resolver(agent="/tmp/agent.sock", key_paths=[key_file])
        cred = resolver.resolve(CredentialRequest(password="pw", key_path=str(key_file)))
        assert cred.kind is CredentialKind.PASSWORD

    def test_key_only(self, tmp_path, plain_key_bytes):
        key_file = tmp_path / "key"
        key_file.write_bytes(plain_key_bytes)
        prompt = MagicMock()
        cred = make_resolver(prompt=prompt, agent="/tmp/agent.sock").resolve(CredentialRequest(key_path=str(key_file)))
        assert cred.kind is CredentialKind.PRIVATE_KEY
        assert cred.key_material == plain_key_bytes
        assert cred.passphrase is None
        prompt.assert_not_called()

    def test_key_with_bad_passphrase_still_selected(self, encrypted_key_bytes):
        prompt = MagicMock()
        cred = make_resolver(prompt=prompt).resolve(
            CredentialRequest(key_material=encrypted_key_bytes, passphrase="wrong")
        )
        assert cred.kind is CredentialKind.PRIVATE_KEY
        assert cred.passphrase == "wrong"
        prompt.assert_not_called()

    def test_encrypted_key_prompts_for_passphrase(self, encrypted_key_bytes):
        prompt = MagicMock(return_value="correct horse")
        cred = make_resolver(prompt=prompt).resolve(CredentialRequest(key_material=encrypted_key_bytes))
        prompt.assert_called_once_with("SSH Key Passphrase")
        assert cred.passphrase == "correct horse"

    def test_encrypted_key_without_prompt(self, encrypted_key_bytes):
        cred = make_resolver().resolve(CredentialRequest(key_material=encrypted_key_bytes))
        assert cred.kind is CredentialKind.PRIVATE_KEY
        assert cred.passphrase is None

    def test_missing_explicit_key(self, tmp_path):
        with pytest.raises(CredentialUnavailable, match="not found"):
            make_resolver().resolve(CredentialRequest(key_path=str(tmp_path / "nope")))

    def test_agent_only(self, tmp_path, plain_key_bytes):
        default_key = tmp_path / "id_rsa"
        default_key.write_bytes(plain_key_bytes)
        cred = make_resolver(agent="/tmp/agent.sock", key_paths=[default_key]).resolve(CredentialRequest())
        assert cred.kind is CredentialKind.AGENT

    def test_default_keys_skip_unreadable(self, tmp_path, plain_key_bytes):
        unreadable = tmp_path / "id_rsa"
        unreadable.mkdir()  # exists but cannot be read as a file
        missing = tmp_path / "id_ed25519"
        usable = tmp_path / "id_ecdsa"
        usable.write_bytes(plain_key_bytes)
        cred = make_resolver(key_paths=[unreadable, missing, usable]).resolve(CredentialRequest())
        assert cred.kind is CredentialKind.PRIVATE_KEY
        assert cred.source == str(usable)

    def test_default_keys_first_wins(self, tmp_path, plain_key_bytes):
        first = tmp_path / "id_rsa"
        second = tmp_path / "id_ed25519"
        first.write_bytes(plain_key_bytes)
        second.write_bytes(b"other")
        cred = make_resolver(key_paths=[first, second]).resolve(CredentialRequest())
        assert cred.source == str(first)

    def test_none_prompts_for_password(self):
        prompt = MagicMock(return_value="typed")
        cred = make_resolver(prompt=prompt).resolve(CredentialRequest())
        prompt.assert_called_once_with("SSH Password")
        assert cred.kind is CredentialKind.PASSWORD
        assert cred.password == "typed"

    def test_none_non_interactive(self):
        with pytest.raises(CredentialUnavailable):
            make_resolver().resolve(CredentialRequest())

    def test_empty_prompt_answer(self):
        with pytest.raises(CredentialUnavailable):
            make_resolver(prompt=lambda label: "").resolve(CredentialRequest())

    @pytest.mark.parametrize(
        "password,key,agent,default_key,expected",
        [
            (True, True, True, True, CredentialKind.PASSWORD),
            (False, True, True, True, CredentialKind.PRIVATE_KEY),
            (False, False, True, True, CredentialKind.AGENT),
            (False, False, False, True, CredentialKind.PRIVATE_KEY),
            (True, False, False, False, CredentialKind.PASSWORD),
            (False, True, False, False, CredentialKind.PRIVATE_KEY),
        ],
    )
    def test_highest_priority_method_wins(self, tmp_path, plain_key_bytes, password, key, agent, default_key, expected):
        explicit = tmp_path / "explicit"
        explicit.write_bytes(plain_key_bytes)
        fallback = tmp_path / "id_rsa"
        if default_key:
            fallback.write_bytes(plain_key_bytes)
        resolver = make_resolver(agent="/tmp/agent.sock" if agent else "", key_paths=[fallback])
        cred = resolver.resolve(
            CredentialRequest(password="pw" if password else None, key_path=str(explicit) if key else None)
        )
        assert cred.kind is expected
        if expected is CredentialKind.PRIVATE_KEY:
            assert cred.source == str(explicit if key else fallback)

    def test_repr_hides_secrets(self):
        cred = make_resolver().resolve(CredentialRequest(password="hunter2"))
        assert "hunter2" not in repr(cred)

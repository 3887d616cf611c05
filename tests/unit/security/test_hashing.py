import pytest

from app.security import hashing


def _configure_secret(monkeypatch, secret: str = "a" * 32):
    monkeypatch.setattr("app.security.hashing.settings.HASHING_SECRET", secret, raising=False)


def test_compute_hmac_is_deterministic(monkeypatch):
    _configure_secret(monkeypatch)
    first = hashing.compute_hmac("value", namespace="test")
    second = hashing.compute_hmac("value", namespace="test")
    assert first == second


def test_namespaces_change_output(monkeypatch):
    _configure_secret(monkeypatch)
    generic = hashing.compute_hmac("10.0.0.1", namespace="generic")
    ip_hash = hashing.hash_ip("10.0.0.1")
    assert generic != ip_hash


def test_hash_ip_never_contains_raw_ip(monkeypatch):
    _configure_secret(monkeypatch)
    digest = hashing.hash_ip("192.168.1.42")
    assert "192.168.1.42" not in digest
    assert len(digest) == 64


def test_hash_ip_strips_whitespace(monkeypatch):
    _configure_secret(monkeypatch)
    assert hashing.hash_ip(" 10.0.0.1 ") == hashing.hash_ip("10.0.0.1")


def test_missing_secret_raises(monkeypatch):
    monkeypatch.setattr("app.security.hashing.settings.HASHING_SECRET", "", raising=False)
    with pytest.raises(hashing.HashingError):
        hashing.compute_hmac("value", namespace="test")


def test_too_short_secret_raises(monkeypatch):
    monkeypatch.setattr("app.security.hashing.settings.HASHING_SECRET", "short", raising=False)
    with pytest.raises(hashing.HashingError):
        hashing.hash_ip("10.0.0.1")

"""Unit tests for the auth service.

Tests for:
- Administrative disable switch
- Credential and device-signature login
- Validation against the revocation ledger
- Refresh (no rotation)
- Logout idempotency
- Persistence failures
"""

import pytest

from nekolc.service.auth import AuthService
from nekolc.service.claims import ClaimsCodec
from nekolc.service.credentials import StaticCredentialBackend
from nekolc.service.errors import (
    AuthDisabledError,
    AuthenticationError,
    InvalidRequestError,
    ServerError,
)
from nekolc.service.issuer import TokenIssuer
from nekolc.service.replay import ReplayGuard
from nekolc.storage.errors import StorageError
from nekolc.storage.file import FileTokenStore
from nekolc.storage.models import TokenKind

SECRET = "s1"


class FlakyStore:
    """Wraps a real store and fails selected operations."""

    def __init__(self, inner, fail_put_kinds=(), fail_revoke=False):
        self.inner = inner
        self.fail_put_kinds = set(fail_put_kinds)
        self.fail_revoke = fail_revoke

    def put(self, record):
        if record.kind in self.fail_put_kinds:
            raise StorageError("disk full")
        self.inner.put(record)

    def get(self, token_hash):
        return self.inner.get(token_hash)

    def revoke(self, token_hash):
        if self.fail_revoke:
            raise StorageError("disk full")
        self.inner.revoke(token_hash)

    def revoke_all_for_subject(self, subject):
        return self.inner.revoke_all_for_subject(subject)

    def close(self):
        self.inner.close()


@pytest.fixture
def store(tmp_path, clock):
    return FileTokenStore(str(tmp_path), clock=clock)


@pytest.fixture
def codec():
    return ClaimsCodec(SECRET, issuer="NekoLcServer")


@pytest.fixture
def build_service(codec, clock):
    def _build(store, enabled=True):
        return AuthService(
            store,
            codec,
            TokenIssuer(codec, clock=clock),
            ReplayGuard(SECRET, clock=clock),
            StaticCredentialBackend({"alice": "wonderland"}),
            enabled=enabled,
            clock=clock,
        )

    return _build


@pytest.fixture
def service(build_service, store):
    return build_service(store)


def _device_login(service, identifier="dev-42", timestamp=None, clock=None):
    ts = int(clock()) if timestamp is None else timestamp
    return service.login(
        identifier=identifier,
        timestamp=ts,
        signature=service.replay_guard.expected_signature(identifier, ts),
    )


class TestDisabled:
    def test_every_operation_is_not_implemented(self, build_service, store):
        service = build_service(store, enabled=False)
        with pytest.raises(AuthDisabledError):
            service.login(username="alice", password="wonderland")
        with pytest.raises(AuthDisabledError):
            service.login()
        with pytest.raises(AuthDisabledError):
            service.refresh("anything")
        with pytest.raises(AuthDisabledError):
            service.validate("anything")
        with pytest.raises(AuthDisabledError):
            service.logout("a", "b")

    def test_disabled_login_persists_nothing(self, build_service, store):
        service = build_service(store, enabled=False)
        with pytest.raises(AuthDisabledError):
            service.login(username="alice", password="wonderland")
        assert list(store.token_dir.iterdir()) == []


class TestLogin:
    def test_credentials_return_two_distinct_persisted_tokens(self, service, store, codec):
        pair = service.login(username="alice", password="wonderland")
        assert pair.access.token and pair.refresh.token
        assert pair.access.token != pair.refresh.token

        access_record = store.get(codec.content_hash(pair.access.token))
        refresh_record = store.get(codec.content_hash(pair.refresh.token))
        assert access_record.kind is TokenKind.ACCESS
        assert refresh_record.kind is TokenKind.REFRESH
        assert access_record.subject == refresh_record.subject == "alice"

    def test_tokens_are_independently_revocable(self, service, store, codec):
        pair = service.login(username="alice", password="wonderland")
        store.revoke(codec.content_hash(pair.access.token))
        with pytest.raises(AuthenticationError):
            service.validate(pair.access.token)
        assert service.refresh(pair.refresh.token).token

    def test_wrong_password_is_unauthorized(self, service):
        with pytest.raises(AuthenticationError) as exc_info:
            service.login(username="alice", password="nope")
        assert exc_info.value.message == "Invalid credentials"

    def test_unknown_user_gets_same_error(self, service):
        with pytest.raises(AuthenticationError) as exc_info:
            service.login(username="bob", password="wonderland")
        assert exc_info.value.message == "Invalid credentials"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {},
            {"username": "alice"},
            {"password": "wonderland"},
            {"identifier": "dev-42"},
            {"username": "", "password": "", "identifier": "", "signature": ""},
        ],
    )
    def test_incomplete_payload_is_invalid_request(self, service, kwargs):
        with pytest.raises(InvalidRequestError):
            service.login(**kwargs)

    def test_device_login(self, service, clock):
        pair = _device_login(service, clock=clock)
        assert pair.access.claims.subject == "dev-42"

    def test_device_assertion_replayed_after_window_is_unauthorized(self, service, clock):
        ts = int(clock())
        first = _device_login(service, timestamp=ts, clock=clock)
        assert first.access.token and first.refresh.token

        clock.advance(301)
        with pytest.raises(AuthenticationError) as exc_info:
            _device_login(service, timestamp=ts, clock=clock)
        assert exc_info.value.message == "Invalid credentials"

    def test_bad_device_signature_gets_same_error(self, service, clock):
        with pytest.raises(AuthenticationError) as exc_info:
            service.login(identifier="dev-42", timestamp=int(clock()), signature="0" * 64)
        assert exc_info.value.message == "Invalid credentials"

    def test_refresh_persist_failure_returns_nothing_and_revokes_access(
        self, build_service, store, codec
    ):
        flaky = FlakyStore(store, fail_put_kinds={TokenKind.REFRESH})
        service = build_service(flaky)
        with pytest.raises(ServerError):
            service.login(username="alice", password="wonderland")

        # The access record that did land is no longer live
        records = list(store._iter_records())
        assert len(records) == 1
        assert records[0][1].kind is TokenKind.ACCESS
        assert records[0][1].revoked

    def test_access_persist_failure_is_server_error(self, build_service, store):
        flaky = FlakyStore(store, fail_put_kinds={TokenKind.ACCESS})
        service = build_service(flaky)
        with pytest.raises(ServerError):
            service.login(username="alice", password="wonderland")
        assert list(store._iter_records()) == []


class TestValidate:
    def test_fresh_access_token_is_live(self, service):
        pair = service.login(username="alice", password="wonderland")
        claims = service.validate(pair.access.token)
        assert claims.subject == "alice"

    def test_logout_then_validate_is_unauthorized(self, service, codec):
        pair = service.login(username="alice", password="wonderland")
        service.logout(pair.access.token, pair.refresh.token)

        # Signature alone still verifies
        assert codec.decode(pair.access.token).subject == "alice"
        with pytest.raises(AuthenticationError):
            service.validate(pair.access.token)

    def test_refresh_token_is_not_an_access_token(self, service):
        pair = service.login(username="alice", password="wonderland")
        with pytest.raises(AuthenticationError):
            service.validate(pair.refresh.token)

    def test_expired_access_token_is_unauthorized(self, service, clock):
        pair = service.login(username="alice", password="wonderland")
        clock.advance(3600)
        with pytest.raises(AuthenticationError):
            service.validate(pair.access.token)

    def test_garbage_is_unauthorized(self, service):
        with pytest.raises(AuthenticationError):
            service.validate("not-a-token")

    def test_signed_but_unrecorded_token_is_unauthorized(self, service):
        minted = service.issuer.issue_pair("alice")
        with pytest.raises(AuthenticationError):
            service.validate(minted.access.token)


class TestRefresh:
    def test_refresh_mints_persisted_access_token(self, service, clock):
        pair = service.login(username="alice", password="wonderland")
        clock.advance(10)
        renewed = service.refresh(pair.refresh.token)
        assert renewed.token != pair.access.token
        assert service.validate(renewed.token).subject == "alice"

    def test_refresh_token_is_not_rotated(self, service, clock):
        pair = service.login(username="alice", password="wonderland")
        first = service.refresh(pair.refresh.token)
        clock.advance(1)
        second = service.refresh(pair.refresh.token)
        assert first.token != second.token

    def test_access_token_cannot_refresh(self, service):
        pair = service.login(username="alice", password="wonderland")
        with pytest.raises(AuthenticationError):
            service.refresh(pair.access.token)

    def test_revoked_refresh_token_rejected(self, service):
        pair = service.login(username="alice", password="wonderland")
        service.logout(refresh_token=pair.refresh.token)
        with pytest.raises(AuthenticationError):
            service.refresh(pair.refresh.token)

    def test_expired_refresh_token_rejected(self, service, clock):
        pair = service.login(username="alice", password="wonderland")
        clock.advance(30 * 24 * 3600 + 1)
        with pytest.raises(AuthenticationError):
            service.refresh(pair.refresh.token)

    def test_empty_refresh_token_rejected(self, service):
        with pytest.raises(AuthenticationError):
            service.refresh("")


class TestLogout:
    def test_logout_is_idempotent(self, service):
        pair = service.login(username="alice", password="wonderland")
        service.logout(pair.access.token, pair.refresh.token)
        service.logout(pair.access.token, pair.refresh.token)

    def test_logout_of_unknown_tokens_succeeds(self, service):
        service.logout("never-issued", "also-never-issued")

    def test_empty_tokens_are_skipped(self, build_service, store):
        flaky = FlakyStore(store, fail_revoke=True)
        service = build_service(flaky)
        service.logout("", None)

    def test_store_fault_is_server_error(self, build_service, store):
        service = build_service(FlakyStore(store, fail_revoke=True))
        with pytest.raises(ServerError):
            service.logout("a", "b")


class TestRevokeAllForSubject:
    def test_bulk_revoke_then_login_leaves_only_new_tokens(self, service):
        old = [service.login(username="alice", password="wonderland") for _ in range(3)]
        assert service.revoke_all_for_subject("alice") == 6
        new = service.login(username="alice", password="wonderland")

        for pair in old:
            with pytest.raises(AuthenticationError):
                service.validate(pair.access.token)
        assert service.validate(new.access.token).subject == "alice"

    def test_empty_subject_is_invalid_request(self, service):
        with pytest.raises(InvalidRequestError):
            service.revoke_all_for_subject("")

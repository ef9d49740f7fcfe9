"""
Tests for pre-signed upload URLs and file reference resolution.
"""

import os
import tempfile
from datetime import datetime, timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from compliancehub.exceptions import ConflictError, NotFoundError, UploadRejectedError, ValidationError
from compliancehub.files import FileReferenceResolver, LocalUploadStorage, UrlSigner
from compliancehub.server.database import Database


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def _query(url):
    params = parse_qs(urlparse(url).query)
    return int(params["expires"][0]), params["signature"][0]


class TestUrlSigner:
    def test_sign_and_verify(self):
        signer = UrlSigner("secret", "http://files.local/")
        url = signer.sign("a" * 32, datetime(2026, 1, 1, 12, 15))
        assert url.startswith("http://files.local/api/compliance/uploads/" + "a" * 32 + "?")
        expires, signature = _query(url)
        assert signer.verify("a" * 32, expires, signature)

    def test_tampered_expiry_fails(self):
        signer = UrlSigner("secret", "http://files.local")
        expires, signature = _query(signer.sign("a" * 32, datetime(2026, 1, 1, 12, 15)))
        assert not signer.verify("a" * 32, expires + 3600, signature)

    def test_other_secret_fails(self):
        url = UrlSigner("secret", "http://files.local").sign("a" * 32, datetime(2026, 1, 1))
        expires, signature = _query(url)
        assert not UrlSigner("other", "http://files.local").verify("a" * 32, expires, signature)


class TestFileReferenceResolver:
    """Tests for issue / receive / consume."""

    @pytest.fixture
    def db(self):
        with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
            db_path = f.name

        db = Database(f"sqlite:///{db_path}")
        db.create_tables()
        yield db

        db.engine.dispose()
        os.unlink(db_path)

    @pytest.fixture
    def clock(self):
        return FakeClock(datetime(2026, 3, 1, 9, 0, 0))

    @pytest.fixture
    def resolver(self, db, clock, tmp_path):
        return FileReferenceResolver(
            db,
            LocalUploadStorage(tmp_path / "blobs"),
            UrlSigner("test-secret", "http://testserver"),
            ttl_seconds=900,
            clock=clock,
        )

    @pytest.fixture
    def session(self, db):
        session = db.get_session()
        yield session
        session.close()

    def _upload(self, resolver, session, ticket, data=b"%PDF-1.7"):
        expires, signature = _query(ticket.pre_signed_url)
        return resolver.receive(session, ticket.object_key, expires, signature, data, "application/pdf")

    def test_issue_one_ticket_per_name(self, resolver, session):
        tickets = resolver.issue(session, ["passport.pdf"], "demo")
        assert len(tickets) == 1
        ticket = tickets[0]
        assert ticket.file_name == "passport.pdf"
        assert len(ticket.object_key) == 32
        assert ticket.object_key in ticket.pre_signed_url

    def test_same_name_gets_distinct_keys(self, resolver, session):
        first = resolver.issue(session, ["passport.pdf"], "demo")[0]
        second = resolver.issue(session, ["passport.pdf"], "demo")[0]
        assert first.object_key != second.object_key
        assert first.pre_signed_url != second.pre_signed_url

    def test_duplicates_in_one_request(self, resolver, session):
        tickets = resolver.issue(session, ["scan.png", "scan.png"], "demo")
        assert len({t.object_key for t in tickets}) == 2

    def test_window_is_fifteen_minutes(self, resolver, session, clock):
        ticket = resolver.issue(session, ["passport.pdf"], "demo")[0]
        assert ticket.expires_at - clock.now == timedelta(minutes=15)

    def test_empty_request_rejected(self, resolver, session):
        with pytest.raises(ValidationError):
            resolver.issue(session, [], "demo")

    def test_consume_before_upload(self, resolver, session):
        ticket = resolver.issue(session, ["passport.pdf"], "demo")[0]
        assert resolver.consume(session, ticket.object_key) is False

    def test_consume_after_upload(self, resolver, session, clock):
        ticket = resolver.issue(session, ["passport.pdf"], "demo")[0]
        clock.advance(minutes=5)
        reference = self._upload(resolver, session, ticket)
        assert reference.size == len(b"%PDF-1.7")
        assert reference.original_name == "passport.pdf"
        assert resolver.consume(session, ticket.object_key) is True
        assert resolver.storage.read(ticket.object_key) == b"%PDF-1.7"

    def test_upload_still_counts_after_window(self, resolver, session, clock):
        ticket = resolver.issue(session, ["passport.pdf"], "demo")[0]
        self._upload(resolver, session, ticket)
        clock.advance(hours=2)
        assert resolver.consume(session, ticket.object_key) is True

    def test_expired_without_upload_stays_unavailable(self, resolver, session, clock):
        ticket = resolver.issue(session, ["passport.pdf"], "demo")[0]
        clock.advance(minutes=16)
        assert resolver.consume(session, ticket.object_key) is False
        with pytest.raises(UploadRejectedError):
            self._upload(resolver, session, ticket)
        clock.advance(days=1)
        assert resolver.consume(session, ticket.object_key) is False

    def test_upload_at_the_deadline_accepted(self, resolver, session, clock):
        ticket = resolver.issue(session, ["passport.pdf"], "demo")[0]
        clock.advance(minutes=15)
        self._upload(resolver, session, ticket)
        assert resolver.consume(session, ticket.object_key) is True

    def test_second_upload_conflicts(self, resolver, session):
        ticket = resolver.issue(session, ["passport.pdf"], "demo")[0]
        self._upload(resolver, session, ticket)
        with pytest.raises(ConflictError):
            self._upload(resolver, session, ticket, b"other")
        assert resolver.storage.read(ticket.object_key) == b"%PDF-1.7"

    def test_forged_signature_rejected(self, resolver, session):
        ticket = resolver.issue(session, ["passport.pdf"], "demo")[0]
        expires, _ = _query(ticket.pre_signed_url)
        with pytest.raises(UploadRejectedError):
            resolver.receive(session, ticket.object_key, expires, "0" * 64, b"x")

    def test_unknown_key_not_available(self, resolver, session):
        assert resolver.consume(session, "f" * 32) is False
        assert resolver.consume(session, "not-a-key") is False

    def test_consume_scoped_to_tenant(self, resolver, session):
        ticket = resolver.issue(session, ["passport.pdf"], "demo")[0]
        self._upload(resolver, session, ticket)
        assert resolver.consume(session, ticket.object_key, tenant="demo") is True
        assert resolver.consume(session, ticket.object_key, tenant="other") is False

    def test_get_reference(self, resolver, session):
        ticket = resolver.issue(session, ["passport.pdf"], "demo")[0]
        reference = resolver.get(session, ticket.object_key)
        assert reference.original_name == "passport.pdf"
        assert not reference.is_uploaded
        with pytest.raises(NotFoundError):
            resolver.get(session, "f" * 32)

    def test_window_counts_from_the_exact_issue_time(self, resolver, session, clock):
        clock.now = datetime(2026, 3, 1, 9, 0, 0, 750000)
        ticket = resolver.issue(session, ["passport.pdf"], "demo")[0]
        assert ticket.expires_at == datetime(2026, 3, 1, 9, 15, 0, 750000)
        clock.now = datetime(2026, 3, 1, 9, 15, 0, 500000)
        self._upload(resolver, session, ticket)
        assert resolver.consume(session, ticket.object_key) is True

"""Tests for autologin token issuance and redemption, and the multisite authorization rules."""
import re
import threading
import time
from datetime import datetime, timezone

import pytest

from wboard_connector.autologin import KEY_PREFIX, TokenIssuer, decode_session
from wboard_connector.errors import NotAdministrator, UserNotFound
from wboard_connector.multisite import MultisiteResolver, NetworkInfo
from wboard_connector.transients import MemoryTransientStore


@pytest.fixture
def store(clock):
    return MemoryTransientStore(clock=clock)


def _issuer(db, store, clock, multisite=False):
    resolver = MultisiteResolver(db, multisite=multisite, site_url="http://site.test/")
    return TokenIssuer(store, resolver, ttl=30, site_url="http://site.test", clock=clock)


@pytest.fixture
def issuer(db, store, clock, users):
    return _issuer(db, store, clock)


@pytest.fixture
def network_issuer(db, store, clock, users):
    return _issuer(db, store, clock, multisite=True)


def test_issue_for_admin(issuer, users, clock):
    grant = issuer.issue(users["admin"])
    assert re.fullmatch(r"[A-Za-z0-9]{32}", grant.token)
    assert grant.login_url == f"http://site.test/?wboard_token={grant.token}"
    assert grant.expires_at == datetime.fromtimestamp(int(clock.now) + 30, timezone.utc)
    assert grant.redirect_url == "http://site.test/wp-admin/"


def test_issue_response_shape(issuer, users):
    data = issuer.issue(users["admin"]).to_response()
    assert data["success"] is True
    assert set(data) == {"success", "token", "login_url", "expires_at", "redirect_url"}
    assert data["expires_at"].endswith("+00:00")


def test_tokens_are_unique(issuer, users):
    tokens = {issuer.issue(users["admin"]).token for _ in range(50)}
    assert len(tokens) == 50


def test_issue_unknown_user(issuer):
    with pytest.raises(UserNotFound) as exc:
        issuer.issue(12345)
    assert exc.value.status_code == 404


def test_issue_non_admin_forbidden_and_nothing_stored(issuer, users, store):
    with pytest.raises(NotAdministrator) as exc:
        issuer.issue(users["editor"])
    assert exc.value.status_code == 403
    assert store._entries == {}
    assert issuer.redeem("guess" * 6 + "ab") is None


def test_super_admin_ignored_on_single_site(issuer, users):
    """Without multisite the super-admin flag means nothing; a subscriber is refused."""
    with pytest.raises(NotAdministrator):
        issuer.issue(users["super_admin"])


def test_super_admin_on_network_gets_network_admin_url(network_issuer, users):
    grant = network_issuer.issue(users["super_admin"])
    assert grant.redirect_url == "http://site.test/wp-admin/network/"


def test_site_admin_on_network_gets_site_admin_url(network_issuer, users):
    grant = network_issuer.issue(users["admin"])
    assert grant.redirect_url == "http://site.test/wp-admin/"


def test_editor_on_network_forbidden(network_issuer, users):
    with pytest.raises(NotAdministrator):
        network_issuer.issue(users["editor"])


def test_redeem_is_single_use(issuer, users):
    token = issuer.issue(users["admin"]).token
    assert issuer.redeem(token) == 42
    assert issuer.redeem(token) is None


def test_redeem_after_ttl_is_absent(issuer, users, clock):
    token = issuer.issue(users["admin"]).token
    clock.advance(30)
    assert issuer.redeem(token) is None


def test_redeem_just_before_expiry(issuer, users, clock):
    token = issuer.issue(users["admin"]).token
    clock.advance(29)
    assert issuer.redeem(token) == 42


def test_redeem_empty_or_unknown(issuer):
    assert issuer.redeem("") is None
    assert issuer.redeem("x" * 32) is None


def test_token_stored_under_prefixed_key(issuer, users, store):
    token = issuer.issue(users["admin"]).token
    assert store.get(KEY_PREFIX + token) == "42"


def test_concurrent_redemption_single_winner(issuer, users):
    token = issuer.issue(users["admin"]).token
    results = []
    barrier = threading.Barrier(6)

    def worker():
        barrier.wait()
        results.append(issuer.redeem(token))

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert results.count(42) == 1
    assert results.count(None) == 5


def test_login_user_session(issuer, users, clock):
    # Sessions are checked against the real clock when decoded
    clock.now = time.time()
    session = issuer.login_user(users["admin"])
    assert decode_session(session) == 42


def test_login_user_unknown(issuer):
    assert issuer.login_user(555) is None


def test_decode_session_rejects_garbage():
    assert decode_session("not-a-jwt") is None


def test_multisite_info_single_site(db, users):
    assert MultisiteResolver(db, multisite=False).get_multisite_info() == {"is_multisite": False}
    assert MultisiteResolver(db, multisite=False).get_site_count() == 1


def test_multisite_info_defaults(db, users):
    info = MultisiteResolver(db, multisite=True).get_multisite_info()
    assert info == {
        "is_multisite": True,
        "is_main_site": True,
        "blog_id": 1,
        "network_id": 1,
        "network_name": None,
        "network_domain": "site.test",
        "site_count": 1,
    }


def test_multisite_info_secondary_site(db, users):
    network = NetworkInfo(blog_id=3, network_id=2, network_name="Agency", network_domain="net.test", site_count=5)
    info = MultisiteResolver(db, multisite=True, network=network).get_multisite_info()
    assert info["is_main_site"] is False
    assert info["blog_id"] == 3
    assert info["network_id"] == 2
    assert info["network_name"] == "Agency"
    assert info["network_domain"] == "net.test"
    assert info["site_count"] == 5


@pytest.mark.parametrize("user_id", [0, -1, 2**63, 10**23])
def test_out_of_range_user_ids_resolve_to_nobody(db, users, user_id):
    resolver = MultisiteResolver(db, multisite=True)
    assert resolver.get_user(user_id) is None
    assert not resolver.user_can_administrate(user_id)

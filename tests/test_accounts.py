"""
tests/test_accounts.py

EscrowIssuer (create, external transitions, account view) and ClaimVerifier
(stateless preview, claim lookup).
"""

from datetime import timedelta

import pytest

from escrowclaim.accounts.service import claim_url
from escrowclaim.core.exceptions import (
    AccountFailed,
    AccountNotFound,
    AlreadyRedeemed,
    ClaimNotFound,
    CredentialExpired,
    CredentialInvalid,
    InvalidRequest,
    InvalidTransition,
    LedgerClientError,
    NotFunded,
)
from escrowclaim.core.models import AccountStatus
from escrowclaim.credentials.codec import fingerprint


class TestCreate:

    def test_create_persists_pending_payment(self, issuer, store, ledger, cipher, clock, funder):
        issued = issuer.create(funder, "100", "native", 3600, metadata={"ref": "inv-9"})

        view = issued.account
        assert view.status == "pending_payment"
        assert view.amount == "100.0000000"
        assert view.asset == "native"
        assert view.expires_at == clock() + timedelta(hours=1)
        assert view.metadata == {"ref": "inv-9"}
        assert issued.claim_url == f"https://claim.bridgelet.io/c/{issued.credential}"
        assert view.claim_url == issued.claim_url
        assert len(issued.funding_reference) == 64

        account = store.get_account(view.account_id)
        assert account.credential_fingerprint == fingerprint(issued.credential)
        assert account.public_key == view.public_key
        assert account.funding_source == funder
        # stored secret is ciphertext for the escrow identity
        secret = cipher.decrypt(account.secret_encrypted)
        assert secret.startswith("S") and secret not in account.secret_encrypted
        assert ledger.exists(view.public_key)

    def test_credential_not_in_repr(self, issuer, funder):
        issued = issuer.create(funder, "1", "native", 3600)
        assert issued.credential not in repr(issued)

    def test_xlm_alias(self, issuer, funder):
        assert issuer.create(funder, "1", "XLM", 3600).account.asset == "native"

    @pytest.mark.parametrize("expires_in", [3599, 2592001, 0, -5, "3600", 3600.0, True])
    def test_expires_in_window(self, issuer, funder, expires_in):
        with pytest.raises(InvalidRequest):
            issuer.create(funder, "1", "native", expires_in)

    @pytest.mark.parametrize("expires_in", [3600, 2592000])
    def test_expires_in_bounds_inclusive(self, issuer, funder, expires_in):
        issuer.create(funder, "1", "native", expires_in)

    @pytest.mark.parametrize("amount", [
        "0", "-1", "abc", "1.00000001", "NaN", "", "Infinity",
        "1" + "0" * 22, "922337203685.4775808",
    ])
    def test_bad_amount(self, issuer, funder, amount):
        with pytest.raises(InvalidRequest):
            issuer.create(funder, amount, "native", 3600)

    def test_largest_amount_accepted(self, issuer, funder):
        """The int64 stroop ceiling itself is a valid amount."""
        issued = issuer.create(funder, "922337203685.4775807", "native", 3600)
        assert issued.account.amount == "922337203685.4775807"

    @pytest.mark.parametrize("asset", [
        "", "USDC", "USDC:nope", "TOOLONGASSETCODE:G" + "A" * 55, "a:b:c", "USDC:G" + "A" * 55,
    ])
    def test_bad_asset(self, issuer, funder, asset):
        with pytest.raises(InvalidRequest):
            issuer.create(funder, "1", asset, 3600)

    @pytest.mark.parametrize("funding_source", ["nobody", "G" + "A" * 55])
    def test_bad_funding_source(self, issuer, funding_source):
        with pytest.raises(InvalidRequest):
            issuer.create(funding_source, "1", "native", 3600)

    def test_ledger_failure_persists_nothing(self, issuer, store, ledger, funder):
        ledger.fail_next("fund", "op_low_reserve")
        with pytest.raises(LedgerClientError):
            issuer.create(funder, "1", "native", 3600)
        assert store.list_accounts() == []

    def test_custom_claim_base_url(self, issuer, funder):
        issuer.claim_base_url = "https://pay.example.com/"
        issued = issuer.create(funder, "1", "native", 3600)
        assert issued.claim_url.startswith("https://pay.example.com/c/")


class TestTransitions:

    def test_confirm_funding(self, issuer, funder):
        issued = issuer.create(funder, "1", "native", 3600)
        view = issuer.confirm_funding(issued.account.account_id)
        assert view.status == "pending_claim"
        with pytest.raises(InvalidTransition):
            issuer.confirm_funding(issued.account.account_id)

    def test_expire_stamps_expired_at(self, issuer, store, clock, funder):
        issued = issuer.create(funder, "1", "native", 3600)
        clock.advance(10)
        issuer.expire(issued.account.account_id)
        account = store.get_account(issued.account.account_id)
        assert account.status == AccountStatus.EXPIRED
        assert account.expired_at == clock()

    def test_terminal_accounts_stay_put(self, issuer, funder):
        issued = issuer.create(funder, "1", "native", 3600)
        issuer.mark_failed(issued.account.account_id)
        with pytest.raises(InvalidTransition):
            issuer.expire(issued.account.account_id)
        with pytest.raises(InvalidTransition):
            issuer.confirm_funding(issued.account.account_id)

    def test_unknown_account(self, issuer):
        with pytest.raises(AccountNotFound):
            issuer.confirm_funding("missing")


class TestAccountView:

    def test_claim_url_masked(self, issuer, make_escrow):
        issued = make_escrow()
        view = issuer.get_account(issued.account.account_id)
        assert view.claim_url == "https://claim.bridgelet.io/c/***"
        assert issued.credential not in str(view.to_dict())

    def test_view_has_no_secret(self, issuer, store, make_escrow):
        issued = make_escrow()
        view = issuer.get_account(issued.account.account_id).to_dict()
        secret = store.get_account(issued.account.account_id).secret_encrypted
        assert "secret_encrypted" not in view
        assert secret not in str(view)
        assert secret not in repr(store.get_account(issued.account.account_id))

    def test_view_after_redeem(self, issuer, engine, make_escrow, destination):
        issued = make_escrow()
        engine.redeem(issued.credential, destination)
        view = issuer.get_account(issued.account.account_id)
        assert view.status == "claimed"
        assert view.destination == destination
        assert view.claimed_at is not None

    def test_claim_url_helper(self):
        assert claim_url("https://x.io/", "tok") == "https://x.io/c/tok"


class TestClaimVerifier:

    def test_verify_eligible(self, verifier, make_escrow, store):
        issued = make_escrow()
        before = store.get_account(issued.account.account_id)
        result = verifier.verify(issued.credential)
        assert result.valid
        assert result.account_id == issued.account.account_id
        assert result.amount == "100.0000000"
        assert result.asset == "native"
        assert result.expires_at == issued.account.expires_at
        assert store.get_account(issued.account.account_id) == before

    def test_verify_pending_payment(self, verifier, make_escrow):
        with pytest.raises(NotFunded):
            verifier.verify(make_escrow(fund=False).credential)

    def test_verify_claimed_is_conflict(self, verifier, engine, make_escrow, destination):
        issued = make_escrow()
        engine.redeem(issued.credential, destination)
        with pytest.raises(AlreadyRedeemed) as exc_info:
            verifier.verify(issued.credential)
        assert exc_info.value.kind == "conflict"

    def test_verify_failed_and_expired(self, verifier, issuer, make_escrow):
        failed = make_escrow()
        issuer.mark_failed(failed.account.account_id)
        with pytest.raises(AccountFailed):
            verifier.verify(failed.credential)

        expired = make_escrow()
        issuer.expire(expired.account.account_id)
        with pytest.raises(CredentialInvalid):
            verifier.verify(expired.credential)

    def test_verify_expiry_boundary(self, verifier, make_escrow, clock):
        issued = make_escrow()
        clock.advance(3600)
        assert verifier.verify(issued.credential).valid
        clock.advance(1)
        with pytest.raises(CredentialExpired):
            verifier.verify(issued.credential)

    def test_to_dict(self, verifier, make_escrow):
        data = verifier.verify(make_escrow().credential).to_dict()
        assert data["valid"] is True
        assert data["expires_at"].endswith("Z")

    def test_find_claim(self, verifier, engine, make_escrow, destination):
        issued = make_escrow()
        result = engine.redeem(issued.credential, destination)
        claim_id = verifier.store.find_claim_by_account(issued.account.account_id).id

        details = verifier.find_claim(claim_id)
        assert details.transfer_reference == result.transfer_reference
        assert details.amount_swept == "100.0000000"
        assert details.to_dict()["claimed_at"].endswith("Z")

    def test_find_claim_missing(self, verifier):
        with pytest.raises(ClaimNotFound) as exc_info:
            verifier.find_claim("missing")
        assert exc_info.value.to_dict() == {
            "error": "ClaimNotFound", "kind": "not_found", "message": "Claim missing not found",
        }


class TestListAccounts:

    def test_filter_and_page(self, issuer, make_escrow):
        pending = [make_escrow(fund=False) for _ in range(3)]
        funded = make_escrow()

        views, total = issuer.list_accounts()
        assert total == 4
        assert [v.account_id for v in views][:3] == [p.account.account_id for p in pending]

        views, total = issuer.list_accounts(status="pending_claim")
        assert total == 1
        assert views[0].account_id == funded.account.account_id

        views, total = issuer.list_accounts(status="pending_payment", limit=2, offset=1)
        assert total == 3
        assert [v.account_id for v in views] == [p.account.account_id for p in pending[1:]]

    def test_views_are_masked(self, issuer, make_escrow):
        issued = make_escrow()
        views, _ = issuer.list_accounts()
        assert views[0].claim_url.endswith("/c/***")
        assert issued.credential not in str([v.to_dict() for v in views])

    def test_limit_capped(self, issuer, funder):
        for _ in range(101):
            issuer.create(funder, "1", "native", 3600)
        views, total = issuer.list_accounts(limit=500)
        assert total == 101
        assert len(views) == 100

    @pytest.mark.parametrize("kwargs", [
        {"status": "archived"},
        {"limit": 0},
        {"limit": True},
        {"offset": -1},
    ])
    def test_bad_arguments(self, issuer, kwargs):
        with pytest.raises(InvalidRequest):
            issuer.list_accounts(**kwargs)

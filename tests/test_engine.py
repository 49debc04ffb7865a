"""
tests/test_engine.py

Redemption engine properties.

  END-TO-END     create → fund → redeem → replay
  IDEMPOTENCE    replay returns the stored claim, no second transfer/record
  EXCLUSIVITY    concurrent redemptions move funds exactly once
  ROLLBACK       authorize / transfer failure restores the pre-claim state
  MASKING        a failed rollback never replaces the original error
  GATES          status, expiry, mismatch and credential failures mutate nothing
"""

import logging
import threading

import pytest

from escrowclaim.core.exceptions import (
    AccountFailed,
    AmountMismatch,
    AssetMismatch,
    AuthorizationFailed,
    CredentialExpired,
    CredentialInvalid,
    CredentialMalformed,
    InvalidDestination,
    NotFunded,
    RedemptionInProgress,
    StoreError,
    TransferFailed,
)
from escrowclaim.core.crypto import Ed25519KeyManager, generate_ledger_keypair
from escrowclaim.core.models import ALREADY_REDEEMED_MESSAGE, AccountStatus
from escrowclaim.credentials.codec import CredentialCodec
from escrowclaim.settlement.engine import SWEEP_COMPLETED, SWEEP_FAILED
from escrowclaim.sweeps.authorizer import HashAttestationAuthorizer


class DownAuthorizer(HashAttestationAuthorizer):
    def _attest(self, document):
        raise ConnectionError("authority unreachable")


def snapshot(store, issued):
    return store.get_account(issued.account.account_id)


# ─────────────────────────────────────────────────────────────
# End-to-end
# ─────────────────────────────────────────────────────────────

class TestEndToEnd:

    def test_create_fund_redeem_replay(self, make_escrow, engine, store, ledger, clock, destination):
        issued = make_escrow(amount="100.0000000", asset="native")
        assert issued.account.amount == "100.0000000"

        result = engine.redeem(issued.credential, destination)

        assert result.success
        assert result.amount_swept == "100.0000000"
        assert result.asset == "native"
        assert result.destination == destination
        assert result.claimed_at == clock()
        assert result.message is None
        assert not result.replayed

        account = snapshot(store, issued)
        assert account.status == AccountStatus.CLAIMED
        assert account.destination == destination
        record = store.find_claim_by_account(account.id)
        assert record.transfer_reference == result.transfer_reference
        assert record.amount_swept == "100.0000000"

        # 100 swept + 2 starting balance reclaimed by the merge
        assert ledger.balance_of(destination, "native") == "102.0000000"
        assert not ledger.exists(account.public_key)

        clock.advance(60)
        again = engine.redeem(issued.credential, destination)
        assert again.message == ALREADY_REDEEMED_MESSAGE
        assert again.replayed
        assert again.transfer_reference == result.transfer_reference
        assert again.amount_swept == result.amount_swept
        assert again.asset == result.asset
        assert again.destination == result.destination
        assert again.claimed_at == result.claimed_at
        assert store.count_claims() == 1
        assert len(ledger.transfers) == 1

    def test_result_dict_shape(self, make_escrow, engine, destination):
        issued = make_escrow()
        first = engine.redeem(issued.credential, destination).to_dict()
        assert set(first) == {
            "success", "transfer_reference", "amount_swept", "asset", "destination", "claimed_at",
        }
        replay = engine.redeem(issued.credential, destination).to_dict()
        assert replay.pop("message") == "Claim was already redeemed"
        assert replay == first

    def test_issued_asset_escrow(self, make_escrow, engine, ledger, store, destination):
        issuer_id, _ = generate_ledger_keypair()
        asset = f"USDC:{issuer_id}"
        issued = make_escrow(amount="25.5", asset=asset)

        result = engine.redeem(issued.credential, destination)

        assert result.asset == asset
        assert result.amount_swept == "25.5000000"
        assert ledger.balance_of(destination, asset) == "25.5000000"
        # merge refused (trust line left behind), redemption still succeeds
        assert ledger.merges == []
        assert snapshot(store, issued).status == AccountStatus.CLAIMED

    def test_explicit_amount_and_asset(self, make_escrow, engine, destination):
        issued = make_escrow()
        result = engine.redeem(issued.credential, destination, amount="100.0000000", asset="native")
        assert result.success

    def test_secret_and_credential_never_logged(self, make_escrow, engine, store, cipher, destination, caplog):
        with caplog.at_level(logging.DEBUG, logger="escrowclaim"):
            issued = make_escrow()
            secret = cipher.decrypt(snapshot(store, issued).secret_encrypted)
            engine.redeem(issued.credential, destination)
            engine.redeem(issued.credential, destination)
        assert caplog.records
        assert secret not in caplog.text
        assert issued.credential not in caplog.text


# ─────────────────────────────────────────────────────────────
# Idempotence & exclusivity
# ─────────────────────────────────────────────────────────────

class TestIdempotence:

    def test_replay_ignores_new_destination(self, make_escrow, engine, ledger, destination):
        issued = make_escrow()
        first = engine.redeem(issued.credential, destination)
        other, _ = generate_ledger_keypair()
        replay = engine.redeem(issued.credential, other)
        assert replay.destination == first.destination
        assert len(ledger.transfers) == 1

    def test_replay_skips_validation(self, make_escrow, engine, destination):
        """Once claimed, the stored outcome is returned whatever was asked."""
        issued = make_escrow()
        engine.redeem(issued.credential, destination)
        replay = engine.redeem(issued.credential, "not-an-address", amount="1")
        assert replay.replayed

    def test_claimed_without_record_is_in_progress(self, make_escrow, engine, ledger, destination):
        issued = make_escrow()
        seen = []

        def second_attempt(secret, dest):
            try:
                engine.redeem(issued.credential, destination)
            except RedemptionInProgress as exc:
                seen.append(exc)

        ledger.before_transfer = second_attempt
        result = engine.redeem(issued.credential, destination)

        assert result.success and not result.replayed
        assert len(seen) == 1
        assert seen[0].kind == "conflict"
        assert len(ledger.transfers) == 1

    def test_lost_commit_takes_replay_path(self, make_escrow, engine, validator, ledger, monkeypatch, destination):
        """A redemption that loses the commit point returns the winner's claim."""
        issued = make_escrow()
        original = validator.validate
        inner = []

        def racing_validate(request):
            original(request)
            if not inner:
                inner.append(None)
                inner[0] = engine.redeem(issued.credential, destination)

        monkeypatch.setattr(validator, "validate", racing_validate)
        outer = engine.redeem(issued.credential, destination)

        assert not inner[0].replayed
        assert outer.replayed
        assert outer.transfer_reference == inner[0].transfer_reference
        assert len(ledger.transfers) == 1

    def test_lost_commit_to_expiry(self, make_escrow, engine, issuer, validator, store, monkeypatch, destination):
        issued = make_escrow()
        original = validator.validate

        def expiring_validate(request):
            original(request)
            issuer.expire(issued.account.account_id)

        monkeypatch.setattr(validator, "validate", expiring_validate)
        with pytest.raises(CredentialInvalid, match="expired"):
            engine.redeem(issued.credential, destination)
        assert snapshot(store, issued).status == AccountStatus.EXPIRED

    def test_concurrent_redemptions_sweep_once(self, make_escrow, engine, ledger, store, destination):
        issued = make_escrow()
        barrier = threading.Barrier(8)
        results, in_progress, errors = [], [], []
        lock = threading.Lock()

        def attempt():
            barrier.wait()
            try:
                result = engine.redeem(issued.credential, destination)
                with lock:
                    results.append(result)
            except RedemptionInProgress:
                with lock:
                    in_progress.append(1)
            except Exception as exc:
                with lock:
                    errors.append(exc)

        threads = [threading.Thread(target=attempt) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(ledger.transfers) == 1
        assert store.count_claims() == 1
        winners = [r for r in results if not r.replayed]
        assert len(winners) == 1
        assert len(results) + len(in_progress) == 8
        assert {r.transfer_reference for r in results} == {ledger.transfers[0].reference}

        # a loser that saw RedemptionInProgress retries and gets the replay
        retry = engine.redeem(issued.credential, destination)
        assert retry.replayed
        assert retry.transfer_reference == ledger.transfers[0].reference


# ─────────────────────────────────────────────────────────────
# Rollback
# ─────────────────────────────────────────────────────────────

class TestRollback:

    def _assert_restored(self, store, ledger, issued):
        account = snapshot(store, issued)
        assert account.status == AccountStatus.PENDING_CLAIM
        assert account.destination is None
        assert account.claimed_at is None
        assert store.find_claim_by_account(account.id) is None
        assert ledger.transfers == []

    def test_authorization_failure(self, make_escrow, engine, store, ledger, clock, destination):
        issued = make_escrow()
        working = engine.authorizer
        engine.authorizer = DownAuthorizer(clock=clock)

        with pytest.raises(AuthorizationFailed):
            engine.redeem(issued.credential, destination)
        self._assert_restored(store, ledger, issued)

        engine.authorizer = working
        assert engine.redeem(issued.credential, destination).success

    def test_transfer_failure(self, make_escrow, engine, store, ledger, destination):
        issued = make_escrow()
        ledger.fail_next("transfer", "tx_bad_seq")

        with pytest.raises(TransferFailed) as exc_info:
            engine.redeem(issued.credential, destination)
        assert exc_info.value.reason == "tx_bad_seq"
        self._assert_restored(store, ledger, issued)

        assert engine.redeem(issued.credential, destination).success
        assert len(ledger.transfers) == 1

    def test_underfunded_escrow(self, issuer, engine, store, ledger, funder, destination):
        issued = issuer.create(funder, "100", "native", 3600)
        issuer.confirm_funding(issued.account.account_id)

        with pytest.raises(TransferFailed, match="op_underfunded"):
            engine.redeem(issued.credential, destination)
        self._assert_restored(store, ledger, issued)

    def test_failed_rollback_does_not_mask_error(self, make_escrow, engine, store, ledger, monkeypatch, caplog, destination):
        issued = make_escrow()
        original = store.conditional_update

        def flaky(account_id, expected_status, mutate):
            if expected_status == AccountStatus.CLAIMED:
                raise StoreError("journal unavailable")
            return original(account_id, expected_status, mutate)

        monkeypatch.setattr(store, "conditional_update", flaky)
        ledger.fail_next("transfer", "tx_failed")

        with caplog.at_level(logging.CRITICAL, logger="escrowclaim"):
            with pytest.raises(TransferFailed) as exc_info:
                engine.redeem(issued.credential, destination)

        failures = exc_info.value.compensation_failures
        assert isinstance(failures[0][1], StoreError)
        assert any(r.levelno == logging.CRITICAL for r in caplog.records)
        # Restore never landed: the escrow stays locked, no funds moved.
        assert snapshot(store, issued).status == AccountStatus.CLAIMED
        assert ledger.transfers == []

    def test_claim_record_failure_keeps_escrow_locked(self, make_escrow, engine, store, ledger, monkeypatch, caplog, destination):
        issued = make_escrow()

        def broken_insert(record):
            raise StoreError("journal unavailable")

        monkeypatch.setattr(store, "insert_claim", broken_insert)
        with caplog.at_level(logging.CRITICAL, logger="escrowclaim"):
            with pytest.raises(StoreError):
                engine.redeem(issued.credential, destination)
        assert any("claim record was not stored" in r.getMessage() for r in caplog.records)

        monkeypatch.undo()
        assert snapshot(store, issued).status == AccountStatus.CLAIMED
        assert len(ledger.transfers) == 1
        with pytest.raises(RedemptionInProgress):
            engine.redeem(issued.credential, destination)
        assert len(ledger.transfers) == 1


# ─────────────────────────────────────────────────────────────
# Gates: nothing moves
# ─────────────────────────────────────────────────────────────

class TestGates:

    def test_pending_payment(self, make_escrow, engine, store, ledger, destination):
        issued = make_escrow(fund=False)
        before = snapshot(store, issued)
        with pytest.raises(NotFunded):
            engine.redeem(issued.credential, destination)
        assert snapshot(store, issued) == before
        assert ledger.transfers == []

    def test_expired_status(self, make_escrow, engine, issuer, destination):
        issued = make_escrow()
        issuer.expire(issued.account.account_id)
        with pytest.raises(CredentialInvalid):
            engine.redeem(issued.credential, destination)

    def test_failed_status(self, make_escrow, engine, issuer, destination):
        issued = make_escrow()
        issuer.mark_failed(issued.account.account_id)
        with pytest.raises(AccountFailed):
            engine.redeem(issued.credential, destination)

    def test_credential_expiry_boundary(self, make_escrow, engine, clock, destination):
        at_boundary = make_escrow()
        past_boundary = make_escrow()
        clock.advance(3600)
        assert engine.redeem(at_boundary.credential, destination).success
        clock.advance(1)
        with pytest.raises(CredentialExpired):
            engine.redeem(past_boundary.credential, destination)

    def test_account_expiry_beyond_credential(self, make_escrow, engine, issuer, clock, destination):
        """The escrow's own expiry applies even while the credential lives."""
        issuer.credential_ttl = 7200
        issued = make_escrow(expires_in=3600)
        clock.advance(3601)
        with pytest.raises(CredentialInvalid, match="Claim has expired"):
            engine.redeem(issued.credential, destination)

    @pytest.mark.parametrize("kwargs,error", [
        ({"amount": "99.0000000"},  AmountMismatch),
        ({"amount": "100"},         AmountMismatch),
        ({"asset": "XLM"},          AssetMismatch),
    ])
    def test_mismatch_mutates_nothing(self, make_escrow, engine, store, ledger, destination, kwargs, error):
        issued = make_escrow()
        before = snapshot(store, issued)
        with pytest.raises(error):
            engine.redeem(issued.credential, destination, **kwargs)
        assert snapshot(store, issued) == before
        assert ledger.transfers == []

    def test_invalid_destination(self, make_escrow, engine, store, destination):
        issued = make_escrow()
        before = snapshot(store, issued)
        with pytest.raises(InvalidDestination):
            engine.redeem(issued.credential, destination.lower())
        assert snapshot(store, issued) == before

    def test_checksum_mismatch_destination(self, make_escrow, engine, store, ledger, destination):
        issued = make_escrow()
        before = snapshot(store, issued)
        typo = destination[:20] + ("B" if destination[20] == "A" else "A") + destination[21:]
        with pytest.raises(InvalidDestination):
            engine.redeem(issued.credential, typo)
        assert snapshot(store, issued) == before
        assert snapshot(store, issued).status == AccountStatus.PENDING_CLAIM
        assert ledger.transfers == []

    def test_forged_credential(self, make_escrow, engine, clock, destination):
        issued = make_escrow()
        forger = CredentialCodec(Ed25519KeyManager.generate(), clock=clock)
        with pytest.raises(CredentialMalformed):
            engine.redeem(forger.issue(issued.account.public_key, 3600), destination)

    def test_unknown_credential(self, make_escrow, engine, codec, destination):
        issued = make_escrow()
        # Same key and identity, different exp, so a different fingerprint.
        stray = codec.issue(issued.account.public_key, 60)
        with pytest.raises(CredentialInvalid):
            engine.redeem(stray, destination)


# ─────────────────────────────────────────────────────────────
# Events
# ─────────────────────────────────────────────────────────────

class TestEvents:

    def test_completed_event(self, make_escrow, engine, destination):
        events = []
        engine.add_listener(lambda name, payload: events.append((name, payload)))
        issued = make_escrow(metadata={"order": "A-1"})
        result = engine.redeem(issued.credential, destination)

        assert [name for name, _ in events] == [SWEEP_COMPLETED]
        payload = events[0][1]
        assert payload["account_id"] == issued.account.account_id
        assert payload["transfer_reference"] == result.transfer_reference
        assert payload["metadata"] == {"order": "A-1"}

        engine.redeem(issued.credential, destination)
        assert len(events) == 1

    def test_failed_event(self, make_escrow, engine, ledger, destination):
        events = []
        engine.add_listener(lambda name, payload: events.append((name, payload)))
        issued = make_escrow()
        ledger.fail_next("transfer", "tx_failed")
        with pytest.raises(TransferFailed):
            engine.redeem(issued.credential, destination)
        assert events[0][0] == SWEEP_FAILED
        assert "tx_failed" in events[0][1]["error"]

    def test_listener_errors_are_contained(self, make_escrow, engine, destination):
        def broken(name, payload):
            raise RuntimeError("webhook down")

        engine.add_listener(broken)
        issued = make_escrow()
        assert engine.redeem(issued.credential, destination).success

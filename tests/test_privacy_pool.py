"""
Privacy Pool Test Suite

Tests for the pool engine:
- Initialization and asset registration
- Single and batch deposits
- Compliant withdrawals (deposit proof, inclusion set, exclusion set, verifier)
- Ragequit timing and lifecycle
- Reentrancy guard, statistics, state export and audit trail

Run with: pytest tests/test_privacy_pool.py -v
"""

import pytest

from conftest import ALICE, ASP_OPERATOR, ASSET, AUDITORS, BOB, CAROL, OWNER
from shieldpool.aegis.association import SetType
from shieldpool.aegis.collaborators import AcceptingVerifier, InMemoryToken, ManualClock, RejectingVerifier
from shieldpool.aegis.config import AegisConfig
from shieldpool.aegis.curve import IDENTITY
from shieldpool.aegis.elgamal import pedersen_commit
from shieldpool.aegis.hardening import (
    AlreadyExists,
    AlreadyInitialized,
    AlreadySpent,
    CapacityExceeded,
    ExcludedDeposit,
    Expired,
    InvalidInput,
    InvalidProof,
    InvalidState,
    NotFound,
    NotInitialized,
    NotYetExecutable,
    ReentrantCall,
    TransferFailed,
    Unauthorized,
)
from shieldpool.aegis.pool import (
    PrivacyPool,
    RagequitStatus,
    WithdrawalParams,
    withdrawal_public_inputs,
)
from shieldpool.hashing import hash_pair
from shieldpool.leanimt import LeanIMT, MerkleProof


DELAY = 86400
WINDOW = 604800


def _deposit(pool, entry, caller=ALICE):
    return pool.deposit(caller, entry.commitment, entry.amount_commitment, entry.asset_id, entry.amount)


def _params(pool, entry, set_id, nullifier, recipient=BOB, proof=b"zk", exclusion_set_id=None):
    return WithdrawalParams(
        nullifier=nullifier,
        recipient=recipient,
        deposit_proof=pool.generate_deposit_proof(entry.commitment),
        inclusion_set_id=set_id,
        inclusion_proof=pool.generate_membership_proof(set_id, entry.commitment),
        proof=proof,
        exclusion_set_id=exclusion_set_id,
    )


@pytest.fixture
def funded(pool, make_note, nullifier_for, active_asp):
    """Three deposits by ALICE and an inclusion set certifying the first two."""
    notes = [make_note(i, amount=100 * (i + 1)) for i in range(3)]
    for entry, _, _ in notes:
        _deposit(pool, entry)
    set_id = pool.create_association_set(
        ASP_OPERATOR, SetType.INCLUSION, [notes[0][0].commitment, notes[1][0].commitment]
    )
    nullifiers = [nullifier_for(seed, i) for i, (_, _, seed) in enumerate(notes)]
    return notes, nullifiers, set_id


# =============================================================================
# INITIALIZATION
# =============================================================================

class TestInitialization:
    """One-time setup guard."""

    def test_uninitialized_pool_rejects_mutation(self, make_note):
        pool = PrivacyPool()
        entry, _, _ = make_note(1)
        with pytest.raises(NotInitialized):
            _deposit(pool, entry)
        with pytest.raises(NotInitialized):
            pool.register_asset(OWNER, ASSET, InMemoryToken())
        with pytest.raises(NotInitialized):
            pool.get_pool_stats()

    def test_reinitialize_rejected(self, pool, token, verifier):
        with pytest.raises(AlreadyInitialized):
            pool.initialize(OWNER, OWNER, token, verifier)
        assert pool.owner == OWNER

    def test_config_captured_at_initialize(self, token):
        config = AegisConfig()
        config.pool.ragequit_delay_seconds.set(60)
        config.governance.approval_threshold.set(3)

        pool = PrivacyPool()
        pool.initialize(OWNER, OWNER, token, AcceptingVerifier(), clock=ManualClock(), config=config)

        assert pool.registry.approval_threshold == 3
        assert pool._settings.ragequit_delay == 60

    def test_register_asset_owner_only(self, pool):
        with pytest.raises(Unauthorized):
            pool.register_asset(ALICE, 0xe7, InMemoryToken())
        with pytest.raises(AlreadyExists):
            pool.register_asset(OWNER, ASSET, InMemoryToken())


# =============================================================================
# DEPOSITS
# =============================================================================

class TestDeposit:
    def test_deposit_appends_and_pulls_funds(self, pool, token, make_note):
        entry, _, _ = make_note(1, amount=250)
        empty_root = pool.get_global_state().root

        receipt = _deposit(pool, entry)

        assert receipt.leaf_index == 0
        assert receipt.size == 1
        assert receipt.depth == 1
        assert receipt.root == entry.commitment != empty_root
        assert pool.is_known_root(receipt.root)
        assert token.balance_of(pool.address) == 250
        assert token.balance_of(ALICE) == 1_000_000 - 250

        deposit = pool.get_deposit(entry.commitment)
        assert deposit.depositor == ALICE
        assert deposit.amount == 250
        assert deposit.leaf_index == 0

    def test_duplicate_commitment_rejected(self, pool, make_note):
        entry, _, _ = make_note(1)
        _deposit(pool, entry)
        with pytest.raises(AlreadyExists):
            _deposit(pool, entry, caller=BOB)
        assert pool.get_global_state().size == 1

    def test_unregistered_asset(self, pool, make_note):
        entry, _, _ = make_note(1, asset=0xabcdef)
        with pytest.raises(NotFound):
            _deposit(pool, entry)

    def test_malformed_inputs(self, pool, make_note):
        entry, _, _ = make_note(1)
        with pytest.raises(InvalidInput):
            pool.deposit(ALICE, 0, entry.amount_commitment, ASSET, 100)
        with pytest.raises(InvalidInput):
            pool.deposit(ALICE, entry.commitment, IDENTITY, ASSET, 100)
        with pytest.raises(InvalidInput):
            pool.deposit(ALICE, entry.commitment, entry.amount_commitment, ASSET, 0)
        with pytest.raises(InvalidInput):
            pool.deposit("alice", entry.commitment, entry.amount_commitment, ASSET, 100)
        assert pool.get_global_state().size == 0

    def test_failed_pull_leaves_no_trace(self, pool, token, make_note):
        entry, _, _ = make_note(1)
        stranger = "0x5757"
        with pytest.raises(TransferFailed):
            _deposit(pool, entry, caller=stranger)
        assert not pool.has_deposit(entry.commitment)
        assert pool.get_global_state().size == 0
        assert pool.root_history() == []

    def test_range_proof_checked_when_present(self, pool, verifier, make_note):
        entry, _, _ = make_note(1)
        pool.deposit(ALICE, entry.commitment, entry.amount_commitment, ASSET, 100, range_proof=b"range")
        assert verifier.calls[-1][0] == b"range"

        other, _, _ = make_note(2)
        pool.verifier = RejectingVerifier()
        with pytest.raises(InvalidProof):
            pool.deposit(ALICE, other.commitment, other.amount_commitment, ASSET, 100, range_proof=b"range")
        # no proof, no verifier call
        _deposit(pool, other)
        assert len(pool.verifier.calls) == 1


class TestBatchDeposit:
    def test_batch_publishes_one_root(self, pool, make_note):
        first, _, _ = make_note(0)
        _deposit(pool, first)
        entries = [make_note(i)[0] for i in (1, 2, 3)]

        result = pool.batch_deposit(BOB, entries)

        assert result.start_index == 1
        assert result.inserted_count == 3
        assert result.size == 4
        assert len(pool.root_history()) == 2
        assert [pool.get_deposit(e.commitment).leaf_index for e in entries] == [1, 2, 3]

        sequential = LeanIMT()
        sequential.insert_many([first.commitment] + [e.commitment for e in entries])
        assert result.root == sequential.root

    def test_empty_and_oversized(self, pool, make_note):
        with pytest.raises(InvalidInput):
            pool.batch_deposit(BOB, [])
        with pytest.raises(CapacityExceeded):
            pool.batch_deposit(BOB, [make_note(i)[0] for i in range(17)])

    def test_repeat_within_batch(self, pool, make_note):
        entry, _, _ = make_note(1)
        with pytest.raises(AlreadyExists):
            pool.batch_deposit(BOB, [entry, make_note(2)[0], entry])
        assert pool.get_global_state().size == 0

    def test_bad_entry_aborts_whole_batch(self, pool, token, make_note):
        good = make_note(1)[0]
        bad = make_note(2, asset=0x404)[0]
        with pytest.raises(NotFound):
            pool.batch_deposit(BOB, [good, bad])
        assert not pool.has_deposit(good.commitment)
        assert token.balance_of(pool.address) == 0

    def test_mid_batch_transfer_failure_refunds(self, pool, token, make_note):
        entries = [make_note(1, amount=600_000)[0], make_note(2, amount=600_000)[0]]
        with pytest.raises(TransferFailed):
            pool.batch_deposit(CAROL, entries)
        assert token.balance_of(CAROL) == 1_000_000
        assert token.balance_of(pool.address) == 0
        assert pool.get_global_state().size == 0


# =============================================================================
# WITHDRAWALS
# =============================================================================

class TestWithdraw:
    def test_withdraw_pays_recipient(self, pool, token, verifier, funded):
        notes, nullifiers, set_id = funded
        entry = notes[0][0]
        params = _params(pool, entry, set_id, nullifiers[0])

        receipt = pool.withdraw(CAROL, params)

        assert receipt.amount == 100
        assert receipt.recipient == BOB
        assert token.balance_of(BOB) == 1_000_000 + 100
        assert pool.is_nullifier_spent(nullifiers[0])
        assert verifier.calls[-1] == (
            b"zk",
            tuple(withdrawal_public_inputs(
                nullifiers[0],
                entry.commitment,
                params.deposit_proof.root,
                params.inclusion_proof.root,
                BOB,
                100,
                ASSET,
            )),
        )

    def test_nullifier_spends_once(self, pool, funded):
        notes, nullifiers, set_id = funded
        pool.withdraw(CAROL, _params(pool, notes[0][0], set_id, nullifiers[0]))
        with pytest.raises(AlreadySpent):
            pool.withdraw(CAROL, _params(pool, notes[1][0], set_id, nullifiers[0]))

    def test_note_pays_once_even_with_fresh_nullifier(self, pool, funded):
        notes, nullifiers, set_id = funded
        pool.withdraw(CAROL, _params(pool, notes[0][0], set_id, nullifiers[0]))
        with pytest.raises(AlreadySpent):
            pool.withdraw(CAROL, _params(pool, notes[0][0], set_id, 0xfeed))

    def test_spent_check_comes_first(self, pool, verifier, funded):
        notes, nullifiers, set_id = funded
        pool.withdraw(CAROL, _params(pool, notes[0][0], set_id, nullifiers[0]))
        params = _params(pool, notes[1][0], set_id, nullifiers[0])
        params.deposit_proof = MerkleProof([], [], 1, 1, 0)
        with pytest.raises(AlreadySpent):
            pool.withdraw(CAROL, params)

    def test_stale_deposit_root_within_history(self, pool, make_note, funded):
        notes, nullifiers, set_id = funded
        params = _params(pool, notes[1][0], set_id, nullifiers[1])
        _deposit(pool, make_note(10)[0])
        assert pool.get_global_state().root != params.deposit_proof.root
        assert pool.withdraw(CAROL, params).amount == 200

    def test_unknown_deposit_root(self, pool, funded):
        notes, nullifiers, set_id = funded
        params = _params(pool, notes[0][0], set_id, nullifiers[0])
        fake = LeanIMT()
        fake.insert_many([notes[0][0].commitment, 0x1234])
        params.deposit_proof = fake.generate_proof(0)
        with pytest.raises(InvalidProof):
            pool.withdraw(CAROL, params)
        assert not pool.is_nullifier_spent(nullifiers[0])

    def test_set_interior_node_is_not_certification(self, pool, token, make_note, active_asp):
        c0, c1, c2 = (make_note(i)[0].commitment for i in range(3))
        set_id = pool.create_association_set(ASP_OPERATOR, SetType.INCLUSION, [c0, c1, c2])
        set_root = pool.sets.get_set(set_id).tree.root

        interior = hash_pair(c0, c1)
        pool.deposit(CAROL, interior, pedersen_commit(100, 0x77), ASSET, 100)
        assert not pool.sets.contains(set_id, interior)

        params = WithdrawalParams(
            nullifier=0xf0f0,
            recipient=CAROL,
            deposit_proof=pool.generate_deposit_proof(interior),
            inclusion_set_id=set_id,
            inclusion_proof=MerkleProof([0, c2], [0, 0], interior, set_root, 3),
            proof=b"zk",
        )
        with pytest.raises(InvalidProof):
            pool.withdraw(CAROL, params)
        assert not pool.is_nullifier_spent(0xf0f0)
        assert token.balance_of(CAROL) == 1_000_000 - 100

    def test_out_of_field_proof_values_are_invalid_proofs(self, pool, funded):
        notes, nullifiers, set_id = funded
        params = _params(pool, notes[0][0], set_id, nullifiers[0])
        inclusion = params.inclusion_proof
        params.inclusion_proof = MerkleProof(
            [-5] + inclusion.siblings[1:], inclusion.path_indices, inclusion.leaf, inclusion.root, inclusion.tree_size
        )
        with pytest.raises(InvalidProof):
            pool.withdraw(CAROL, params)

        params = _params(pool, notes[0][0], set_id, nullifiers[0])
        deposit = params.deposit_proof
        params.deposit_proof = MerkleProof(
            [2 ** 300] + deposit.siblings[1:], deposit.path_indices, deposit.leaf, deposit.root, deposit.tree_size
        )
        with pytest.raises(InvalidProof):
            pool.withdraw(CAROL, params)
        assert not pool.is_nullifier_spent(nullifiers[0])

    def test_uncertified_deposit_rejected(self, pool, funded):
        notes, nullifiers, set_id = funded
        uncertified = notes[2][0]
        params = _params(pool, notes[0][0], set_id, nullifiers[2])
        params.deposit_proof = pool.generate_deposit_proof(uncertified.commitment)
        with pytest.raises(InvalidProof):
            pool.withdraw(CAROL, params)

    def test_suspended_asp_set_not_honored(self, pool, funded, active_asp):
        notes, nullifiers, set_id = funded
        pool.suspend_asp(AUDITORS[0], active_asp)
        with pytest.raises(InvalidProof):
            pool.withdraw(CAROL, _params(pool, notes[0][0], set_id, nullifiers[0]))
        pool.reinstate_asp(OWNER, active_asp)
        assert pool.withdraw(CAROL, _params(pool, notes[0][0], set_id, nullifiers[0])).amount == 100

    def test_deactivated_inclusion_set(self, pool, funded):
        notes, nullifiers, set_id = funded
        params = _params(pool, notes[0][0], set_id, nullifiers[0])
        pool.deactivate_association_set(ASP_OPERATOR, set_id)
        with pytest.raises(InvalidProof):
            pool.withdraw(CAROL, params)

    def test_exclusion_set_blocks(self, pool, funded):
        notes, nullifiers, set_id = funded
        flagged = pool.create_association_set(ASP_OPERATOR, SetType.EXCLUSION, [notes[0][0].commitment])
        clean = pool.create_association_set(ASP_OPERATOR, SetType.EXCLUSION, [0xbad])

        with pytest.raises(ExcludedDeposit):
            pool.withdraw(CAROL, _params(pool, notes[0][0], set_id, nullifiers[0], exclusion_set_id=flagged))
        assert not pool.is_nullifier_spent(nullifiers[0])

        receipt = pool.withdraw(CAROL, _params(pool, notes[0][0], set_id, nullifiers[0], exclusion_set_id=clean))
        assert receipt.amount == 100

    def test_deactivated_exclusion_set_no_longer_blocks(self, pool, funded):
        notes, nullifiers, set_id = funded
        flagged = pool.create_association_set(ASP_OPERATOR, SetType.EXCLUSION, [notes[0][0].commitment])
        pool.deactivate_association_set(ASP_OPERATOR, flagged)
        params = _params(pool, notes[0][0], set_id, nullifiers[0], exclusion_set_id=flagged)
        assert pool.withdraw(CAROL, params).amount == 100

    def test_exclusion_id_must_name_exclusion_set(self, pool, funded):
        notes, nullifiers, set_id = funded
        params = _params(pool, notes[0][0], set_id, nullifiers[0], exclusion_set_id=set_id)
        with pytest.raises(InvalidInput):
            pool.withdraw(CAROL, params)

    def test_verifier_rejection(self, pool, token, funded):
        notes, nullifiers, set_id = funded
        pool.verifier = RejectingVerifier()
        with pytest.raises(InvalidProof):
            pool.withdraw(CAROL, _params(pool, notes[0][0], set_id, nullifiers[0]))
        assert not pool.is_nullifier_spent(nullifiers[0])
        assert token.balance_of(BOB) == 1_000_000

    def test_empty_proof_rejected(self, pool, funded):
        notes, nullifiers, set_id = funded
        with pytest.raises(InvalidInput):
            pool.withdraw(CAROL, _params(pool, notes[0][0], set_id, nullifiers[0], proof=b""))

    def test_failed_payout_restores_nullifier(self, pool, token, funded):
        notes, nullifiers, set_id = funded
        token.frozen.add(BOB)
        with pytest.raises(TransferFailed):
            pool.withdraw(CAROL, _params(pool, notes[0][0], set_id, nullifiers[0]))
        assert not pool.is_nullifier_spent(nullifiers[0])

        token.frozen.clear()
        assert pool.withdraw(CAROL, _params(pool, notes[0][0], set_id, nullifiers[0])).amount == 100


# =============================================================================
# RAGEQUIT
# =============================================================================

class TestRagequit:
    @pytest.fixture
    def deposited(self, pool, make_note, nullifier_for):
        entry, _, seed = make_note(1, amount=500)
        receipt = _deposit(pool, entry)
        return entry, nullifier_for(seed, receipt.leaf_index)

    def test_timing_boundaries(self, pool, clock, token, deposited):
        entry, nullifier = deposited
        start = clock.now()
        request_id = pool.request_ragequit(ALICE, entry.commitment, nullifier, 500, CAROL, b"rq")

        request = pool.get_ragequit(request_id)
        assert request.executable_at == start + DELAY
        assert request.expires_at == start + DELAY + WINDOW
        assert pool.ragequit_status(request_id) == RagequitStatus.PENDING

        clock.set(request.executable_at - 1)
        with pytest.raises(NotYetExecutable):
            pool.execute_ragequit(ALICE, request_id)

        clock.set(request.executable_at)
        assert pool.ragequit_status(request_id) == RagequitStatus.EXECUTABLE
        done = pool.execute_ragequit(ALICE, request_id)

        assert done.status == RagequitStatus.COMPLETED
        assert done.completed_at == request.executable_at
        assert pool.is_nullifier_spent(nullifier)
        assert token.balance_of(CAROL) == 1_000_000 + 500
        with pytest.raises(InvalidState):
            pool.execute_ragequit(ALICE, request_id)

    def test_needs_no_asp(self, pool, clock, deposited):
        entry, nullifier = deposited
        assert pool.registry.count() == 0
        request_id = pool.request_ragequit(ALICE, entry.commitment, nullifier, 500, ALICE, b"rq")
        clock.advance(DELAY)
        assert pool.execute_ragequit(ALICE, request_id).status == RagequitStatus.COMPLETED

    def test_only_depositor(self, pool, clock, deposited):
        entry, nullifier = deposited
        with pytest.raises(Unauthorized):
            pool.request_ragequit(BOB, entry.commitment, nullifier, 500, BOB, b"rq")
        request_id = pool.request_ragequit(ALICE, entry.commitment, nullifier, 500, ALICE, b"rq")
        clock.advance(DELAY)
        with pytest.raises(Unauthorized):
            pool.execute_ragequit(BOB, request_id)
        with pytest.raises(Unauthorized):
            pool.cancel_ragequit(BOB, request_id)

    def test_amount_must_match(self, pool, deposited):
        entry, nullifier = deposited
        with pytest.raises(InvalidInput):
            pool.request_ragequit(ALICE, entry.commitment, nullifier, 499, ALICE, b"rq")

    def test_unknown_commitment_and_request(self, pool):
        with pytest.raises(NotFound):
            pool.request_ragequit(ALICE, 0x777, 0x888, 1, ALICE, b"rq")
        with pytest.raises(NotFound):
            pool.execute_ragequit(ALICE, 9)

    def test_proof_goes_to_verifier(self, pool, deposited):
        entry, nullifier = deposited
        with pytest.raises(InvalidProof):
            pool.request_ragequit(ALICE, entry.commitment, nullifier, 500, ALICE, b"")
        pool.verifier = RejectingVerifier()
        with pytest.raises(InvalidProof):
            pool.request_ragequit(ALICE, entry.commitment, nullifier, 500, ALICE, b"rq")

    def test_one_open_request_per_note(self, pool, deposited):
        entry, nullifier = deposited
        first = pool.request_ragequit(ALICE, entry.commitment, nullifier, 500, ALICE, b"rq")
        with pytest.raises(AlreadyExists):
            pool.request_ragequit(ALICE, entry.commitment, nullifier, 500, ALICE, b"rq")

        pool.cancel_ragequit(ALICE, first)
        assert pool.ragequit_status(first) == RagequitStatus.CANCELLED
        second = pool.request_ragequit(ALICE, entry.commitment, nullifier, 500, ALICE, b"rq")
        assert second == first + 1

    def test_cancelled_request_cannot_run(self, pool, clock, deposited):
        entry, nullifier = deposited
        request_id = pool.request_ragequit(ALICE, entry.commitment, nullifier, 500, ALICE, b"rq")
        pool.cancel_ragequit(ALICE, request_id)
        clock.advance(DELAY)
        with pytest.raises(InvalidState):
            pool.execute_ragequit(ALICE, request_id)
        with pytest.raises(InvalidState):
            pool.cancel_ragequit(ALICE, request_id)

    def test_expiry(self, pool, clock, deposited):
        entry, nullifier = deposited
        request_id = pool.request_ragequit(ALICE, entry.commitment, nullifier, 500, ALICE, b"rq")
        request = pool.get_ragequit(request_id)

        clock.set(request.expires_at)
        assert pool.ragequit_status(request_id) == RagequitStatus.EXECUTABLE
        clock.set(request.expires_at + 1)
        assert pool.ragequit_status(request_id) == RagequitStatus.EXPIRED
        with pytest.raises(Expired):
            pool.execute_ragequit(ALICE, request_id)
        with pytest.raises(Expired):
            pool.cancel_ragequit(ALICE, request_id)

        # an expired request no longer blocks a new one
        renewed = pool.request_ragequit(ALICE, entry.commitment, nullifier, 500, ALICE, b"rq")
        assert pool.ragequit_status(renewed) == RagequitStatus.PENDING

    def test_spent_note_cannot_ragequit(self, pool, clock, deposited):
        entry, nullifier = deposited
        request_id = pool.request_ragequit(ALICE, entry.commitment, nullifier, 500, ALICE, b"rq")
        clock.advance(DELAY)
        pool.execute_ragequit(ALICE, request_id)
        with pytest.raises(AlreadySpent):
            pool.request_ragequit(ALICE, entry.commitment, nullifier, 500, ALICE, b"rq")

    def test_withdrawn_note_cannot_ragequit(self, pool, funded):
        notes, nullifiers, set_id = funded
        pool.withdraw(CAROL, _params(pool, notes[0][0], set_id, nullifiers[0]))
        with pytest.raises(AlreadySpent):
            pool.request_ragequit(ALICE, notes[0][0].commitment, nullifiers[0], 100, ALICE, b"rq")

    def test_ragequit_after_withdraw_race(self, pool, clock, funded):
        notes, nullifiers, set_id = funded
        request_id = pool.request_ragequit(ALICE, notes[0][0].commitment, nullifiers[0], 100, ALICE, b"rq")
        pool.withdraw(CAROL, _params(pool, notes[0][0], set_id, 0xabc))
        clock.advance(DELAY)
        with pytest.raises(AlreadySpent):
            pool.execute_ragequit(ALICE, request_id)

    def test_failed_payout_rolls_back(self, pool, clock, token, deposited):
        entry, nullifier = deposited
        request_id = pool.request_ragequit(ALICE, entry.commitment, nullifier, 500, CAROL, b"rq")
        clock.advance(DELAY)
        token.frozen.add(CAROL)
        with pytest.raises(TransferFailed):
            pool.execute_ragequit(ALICE, request_id)
        assert not pool.is_nullifier_spent(nullifier)
        assert pool.ragequit_status(request_id) == RagequitStatus.EXECUTABLE

        token.frozen.clear()
        assert pool.execute_ragequit(ALICE, request_id).status == RagequitStatus.COMPLETED


# =============================================================================
# REENTRANCY
# =============================================================================

class ReentrantToken(InMemoryToken):
    """Token whose payout hook tries to call back into the pool."""

    def __init__(self):
        super().__init__("EVIL")
        self.pool = None
        self.reentry_errors = []

    def transfer(self, sender, recipient, amount):
        if self.pool is not None:
            try:
                self.pool.cancel_ragequit(recipient, 1)
            except ReentrantCall as exc:
                self.reentry_errors.append(exc)
        return super().transfer(sender, recipient, amount)


class TestReentrancy:
    def test_callback_during_payout_is_rejected(self, pool, clock, make_note, nullifier_for):
        evil = ReentrantToken()
        evil_asset = 0xe7e7
        pool.register_asset(OWNER, evil_asset, evil)
        evil.mint(ALICE, 1000)
        evil.approve(ALICE, pool.address, 1000)

        entry, _, seed = make_note(5, amount=300, asset=evil_asset)
        _deposit(pool, entry)
        nullifier = nullifier_for(seed, 0)
        request_id = pool.request_ragequit(ALICE, entry.commitment, nullifier, 300, ALICE, b"rq")
        clock.advance(DELAY)

        evil.pool = pool
        pool.execute_ragequit(ALICE, request_id)

        assert len(evil.reentry_errors) == 1
        assert pool.ragequit_status(request_id) == RagequitStatus.COMPLETED
        assert evil.balance_of(ALICE) == 1000
        # guard released after the outer call
        assert not pool._entered


# =============================================================================
# QUERIES AND AUDIT
# =============================================================================

class TestQueries:
    def test_pool_stats(self, pool, funded):
        notes, nullifiers, set_id = funded
        pool.withdraw(CAROL, _params(pool, notes[0][0], set_id, nullifiers[0]))
        stats = pool.get_pool_stats()

        assert stats["deposits"] == 3
        assert stats["nullifiers_spent"] == 1
        assert stats["value_locked"] == {hex(ASSET): 200 + 300}
        assert stats["asps"]["active"] == 1
        assert stats["association_sets"] == 1
        assert stats["tree"]["size"] == 3

    def test_export_state(self, pool, funded):
        notes, nullifiers, set_id = funded
        state = pool.export_state()

        assert state["owner"] == OWNER
        assert state["auditors"] == sorted(AUDITORS)
        assert [d["leaf_index"] for d in state["deposits"]] == [0, 1, 2]
        assert state["association_sets"][0]["members"] == [
            hex(notes[0][0].commitment), hex(notes[1][0].commitment),
        ]
        assert state["audit_head"] == pool.audit.head

    def test_audit_chain(self, pool, funded):
        notes, nullifiers, set_id = funded
        pool.withdraw(CAROL, _params(pool, notes[0][0], set_id, nullifiers[0]))

        actions = [e.action for e in pool.audit.events()]
        assert actions[:2] == ["initialize", "register_asset"]
        assert actions[-1] == "withdraw"
        assert pool.audit.verify_chain()

        pool.audit._events[3].actor = "0xe1e1"
        assert not pool.audit.verify_chain()

    def test_failed_operations_are_not_audited(self, pool, make_note):
        before = len(pool.audit)
        with pytest.raises(NotFound):
            _deposit(pool, make_note(1, asset=0x404)[0])
        assert len(pool.audit) == before

    def test_audit_can_be_disabled(self, token):
        config = AegisConfig()
        config.observability.audit_enabled.set(False)
        pool = PrivacyPool()
        pool.initialize(OWNER, OWNER, token, AcceptingVerifier(), clock=ManualClock(), config=config)
        assert len(pool.audit) == 0

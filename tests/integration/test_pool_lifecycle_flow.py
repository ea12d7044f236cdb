"""
Integration Test: Complete Shielded Pool Flow

End-to-end walk through ASP onboarding, deposits, certification, a compliant
withdrawal and an uncertified ragequit exit, driven through the pool API.
"""

import pytest

from conftest import ALICE, ASP_OPERATOR, ASSET, AUDITORS, BOB, CAROL, MIN_STAKE
from shieldpool.aegis.asp import ASPStatus
from shieldpool.aegis.association import SetType
from shieldpool.aegis.elgamal import generate_keypair
from shieldpool.aegis.hardening import AlreadySpent, NotYetExecutable
from shieldpool.aegis.pool import RagequitStatus, WithdrawalParams
from shieldpool.hashing import hash_pair
from shieldpool.leanimt import RootHistory


class TestShieldedPoolFlow:
    """The six-step lifecycle, each step building on the previous one."""

    def test_full_lifecycle(self, pool, clock, token, make_note, nullifier_for):
        # (1) ASP onboarding: stake, two distinct auditor votes, active
        keys = generate_keypair(0xa5b0001)
        asp_id = pool.register_asp(ASP_OPERATOR, keys.public_key, 0x1234, MIN_STAKE)
        assert pool.get_asp(asp_id).status == ASPStatus.PENDING
        pool.approve_asp(AUDITORS[0], asp_id)
        assert pool.approve_asp(AUDITORS[1], asp_id) == ASPStatus.ACTIVE

        # (2) first deposit lands at index 0 and moves the root
        c1, _, seed1 = make_note(1, amount=100)
        r0 = pool.get_global_state().root
        receipt = pool.deposit(ALICE, c1.commitment, c1.amount_commitment, ASSET, 100)
        assert receipt.leaf_index == 0
        r1 = receipt.root
        assert r1 != r0

        # (3) batch of three: size 4, start index 1
        batch = [make_note(i, amount=100)[0] for i in (2, 3, 4)]
        result = pool.batch_deposit(BOB, batch)
        assert result.size == 4
        assert result.start_index == 1
        c2 = batch[0]

        # (4) inclusion set with c1 only
        set_id = pool.create_association_set(ASP_OPERATOR, SetType.INCLUSION, [c1.commitment])
        proof_c1 = pool.generate_membership_proof(set_id, c1.commitment)
        assert pool.sets.verify_membership(set_id, proof_c1)
        assert not pool.sets.contains(set_id, c2.commitment)
        forged = pool.generate_deposit_proof(c2.commitment)
        assert not pool.sets.verify_membership(set_id, forged)

        # (5) withdraw c1 once; the same nullifier fails the second time
        nullifier1 = nullifier_for(seed1, 0)
        params = WithdrawalParams(
            nullifier=nullifier1,
            recipient=CAROL,
            deposit_proof=pool.generate_deposit_proof(c1.commitment),
            inclusion_set_id=set_id,
            inclusion_proof=proof_c1,
            proof=b"withdrawal-proof",
        )
        pool.withdraw(CAROL, params)
        assert pool.is_nullifier_spent(nullifier1)
        with pytest.raises(AlreadySpent):
            pool.withdraw(CAROL, params)

        # (6) BOB ragequits c2 without certification
        nullifier2 = nullifier_for(0x9e11000 + 2, 1)
        t = clock.now()
        request_id = pool.request_ragequit(BOB, c2.commitment, nullifier2, 100, BOB, b"ragequit-proof")
        clock.set(t + 1000)
        with pytest.raises(NotYetExecutable):
            pool.execute_ragequit(BOB, request_id)
        clock.set(t + 86401)
        pool.execute_ragequit(BOB, request_id)
        assert pool.ragequit_status(request_id) == RagequitStatus.COMPLETED
        assert pool.is_nullifier_spent(nullifier2)

        balance = token.balance_of(BOB)
        assert balance == 1_000_000 - 300 + 100
        assert pool.audit.verify_chain()


class TestRootHistoryFlow:
    """Withdrawals tolerate a deposit root that has since moved on."""

    def test_root_history_bounds_staleness(self, pool, make_note):
        pool._root_history = RootHistory(capacity=3)
        c1 = make_note(1)[0]
        pool.deposit(ALICE, c1.commitment, c1.amount_commitment, ASSET, 100)
        stale = pool.generate_deposit_proof(c1.commitment)

        for i in range(2, 6):
            entry = make_note(i)[0]
            pool.deposit(ALICE, entry.commitment, entry.amount_commitment, ASSET, 100)

        assert not pool.is_known_root(stale.root)
        assert pool.is_known_root(pool.get_global_state().root)

    def test_two_leaf_root_matches_manual_hash(self, pool, make_note):
        a = make_note(1)[0]
        b = make_note(2)[0]
        pool.batch_deposit(ALICE, [a, b])
        assert pool.get_global_state().root == hash_pair(a.commitment, b.commitment)

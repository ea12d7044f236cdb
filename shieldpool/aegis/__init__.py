"""
AEGIS — Compliance-Compatible Shielded Pool

Users deposit funds under a hidden commitment and later withdraw by proving
membership in the deposit set without revealing which deposit is theirs.
Association Set Providers (ASPs) certify deposits as compliant or flag them,
and a time-locked ragequit lets a depositor exit when certification is
withheld.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                          SHIELDED POOL CORE                              │
    │                                                                          │
    │  LIFECYCLE                                                               │
    │    pool.py           Deposit, withdraw, ragequit, nullifier set         │
    │                                                                          │
    │  COMPLIANCE                                                              │
    │    asp.py            Staked ASP registry with M-of-N auditor approval   │
    │    association.py    Inclusion / exclusion sets over LeanIMT            │
    │                                                                          │
    │  CRYPTOGRAPHY                                                            │
    │    curve.py          Stark curve group law, generators G and H          │
    │    elgamal.py        Homomorphic ElGamal, Pedersen, encrypted balances  │
    │    zkp.py            Schnorr and correct-encryption sigma proofs        │
    │                                                                          │
    │  SUPPORT                                                                 │
    │    hardening.py      Errors, validators, transition tables, guards      │
    │    config.py         YAML / env configuration with schema validation    │
    │    observability.py  Structured logging and hash-chained audit trail    │
    │    collaborators.py  Token, verifier and clock interfaces               │
    │    cli.py            Operator command line                              │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

The accumulator itself (``shieldpool.leanimt``) and field hashing
(``shieldpool.hashing``) sit below this package and have no AEGIS dependencies.

Design Principles
─────────────────

    Fail Closed: Proof verification never raises on malformed input; it
    returns False. Unknown roots, inactive sets and inactive ASPs reject.

    Atomic Operations: Every mutation completes fully or leaves no trace.
    Failed payouts restore the nullifier before the error propagates.

    Single Use: A nullifier is spent at most once, by withdrawal or by
    ragequit, never both.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

__version__ = "0.3.0"
__codename__ = "AEGIS"


def __getattr__(name):
    """Lazy import AEGIS modules on first access."""

    # Curve / ElGamal exports
    if name in ("Point", "IDENTITY", "CURVE_ORDER", "generator_g", "generator_h",
                "scalar_mul", "point_add", "is_on_curve"):
        from shieldpool.aegis import curve
        return getattr(curve, name)

    if name in ("Ciphertext", "KeyPair", "EncryptedBalance", "encrypt", "decrypt_point",
                "decrypt_amount", "homomorphic_add", "homomorphic_sub", "rerandomize",
                "pedersen_commit", "generate_keypair"):
        from shieldpool.aegis import elgamal
        return getattr(elgamal, name)

    if name in ("SchnorrProof", "EncryptionProof"):
        from shieldpool.aegis import zkp
        return getattr(zkp, name)

    # Governance exports
    if name in ("ASPRegistry", "ASPInfo", "ASPStatus"):
        from shieldpool.aegis import asp
        return getattr(asp, name)

    if name in ("AssociationSetManager", "AssociationSetInfo", "SetType"):
        from shieldpool.aegis import association
        return getattr(association, name)

    # Pool exports
    if name in ("PrivacyPool", "Deposit", "DepositEntry", "DepositReceipt",
                "WithdrawalParams", "WithdrawalReceipt", "RagequitRequest",
                "RagequitStatus", "withdrawal_public_inputs", "ragequit_public_inputs"):
        from shieldpool.aegis import pool
        return getattr(pool, name)

    if name in ("InMemoryToken", "AcceptingVerifier", "RejectingVerifier",
                "ManualClock", "SystemClock"):
        from shieldpool.aegis import collaborators
        return getattr(collaborators, name)

    if name in ("AegisError", "InvalidInput", "Unauthorized", "InsufficientStake",
                "AlreadyExists", "DuplicateVote", "NotFound", "InvalidProof",
                "ExcludedDeposit", "AlreadySpent", "NotYetExecutable", "Expired",
                "CapacityExceeded", "InvalidState", "NotInitialized",
                "AlreadyInitialized", "TransferFailed", "ReentrantCall"):
        from shieldpool.aegis import hardening
        return getattr(hardening, name)

    if name in ("AegisConfig", "ConfigManager", "get_config", "get_config_manager"):
        from shieldpool.aegis import config
        return getattr(config, name)

    raise AttributeError(f"module 'aegis' has no attribute '{name}'")


__all__ = [
    "__version__",
    "__codename__",
    # Crypto
    "Point",
    "Ciphertext",
    "KeyPair",
    "EncryptedBalance",
    "SchnorrProof",
    "EncryptionProof",
    # Governance
    "ASPRegistry",
    "ASPStatus",
    "AssociationSetManager",
    "SetType",
    # Pool
    "PrivacyPool",
    "DepositEntry",
    "WithdrawalParams",
    "RagequitStatus",
    # Errors
    "AegisError",
]

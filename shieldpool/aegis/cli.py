#!/usr/bin/env python3
"""
AEGIS Operator CLI

Command-line access to the shielded-pool primitives for operators, ASPs and
integrators.

Usage:
    aegis <command> [subcommand] [options]

Commands:
    keygen      Generate or derive an ElGamal / Schnorr key pair
    note        Compute note commitments and nullifiers
    encrypt     Encrypt an amount under a public key
    decrypt     Decrypt a small amount with a secret key
    tree        LeanIMT root, proof generation and verification
    config      Configuration management

Integers may be given in decimal or 0x-prefixed hex.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import argparse
import json
import sys
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional

from shieldpool.aegis import __version__
from shieldpool.aegis.hardening import AegisError


class OutputFormat(Enum):
    """Output format options."""
    JSON = "json"
    YAML = "yaml"


class CLIError(Exception):
    """CLI error with exit code."""
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    """Format data for output."""
    if fmt == OutputFormat.YAML:
        import yaml
        return yaml.dump(data, default_flow_style=False, sort_keys=False)
    return json.dumps(data, indent=2, default=str)


def parse_int(value: str) -> int:
    """Parse decimal or 0x-prefixed hex."""
    text = value.strip().lower()
    try:
        return int(text, 16) if text.startswith("0x") else int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {value}") from None


def _load_json_arg(value: str) -> Any:
    """Inline JSON, or @path to a JSON file."""
    if value.startswith("@"):
        path = Path(value[1:])
        if not path.exists():
            raise CLIError(f"File not found: {path}")
        value = path.read_text()
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise CLIError(f"Invalid JSON: {e}") from e


class AegisCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="aegis",
            description="AEGIS shielded pool CLI",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"aegis {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=["json", "yaml"],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress error output",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        """Register all command groups."""
        self._register_key_commands()
        self._register_note_commands()
        self._register_tree_commands()
        self._register_config_commands()

    def _register_key_commands(self) -> None:
        keygen = self.subparsers.add_parser("keygen", help="Generate a key pair")
        keygen.add_argument("--secret-key", "-s", type=parse_int, help="Derive from this secret key")
        keygen.add_argument("--with-proof", action="store_true", help="Attach a Schnorr proof of possession")

        encrypt = self.subparsers.add_parser("encrypt", help="Encrypt an amount")
        encrypt.add_argument("--amount", "-a", type=parse_int, required=True, help="Plaintext amount")
        encrypt.add_argument("--public-key", "-k", required=True, help="Public key JSON {x, y} or @file")
        encrypt.add_argument("--randomness", "-r", type=parse_int, help="Encryption randomness")
        encrypt.add_argument("--with-proof", action="store_true", help="Attach a correct-encryption proof")

        decrypt = self.subparsers.add_parser("decrypt", help="Decrypt a small amount")
        decrypt.add_argument("--ciphertext", "-c", required=True, help="Ciphertext JSON {c1, c2} or @file")
        decrypt.add_argument("--secret-key", "-s", type=parse_int, required=True, help="Secret key")
        decrypt.add_argument("--max-amount", type=int, default=1 << 20, help="Search bound")

    def _register_note_commands(self) -> None:
        note = self.subparsers.add_parser("note", help="Note commitments")
        note_sub = note.add_subparsers(dest="subcommand")

        commit = note_sub.add_parser("commitment", help="Compute a note commitment")
        commit.add_argument("--secret", type=parse_int, required=True, help="Note secret")
        commit.add_argument("--nullifier-seed", type=parse_int, required=True, help="Nullifier seed")
        commit.add_argument("--amount", "-a", type=parse_int, required=True, help="Note amount")
        commit.add_argument("--asset", type=parse_int, required=True, help="Asset id")
        commit.add_argument("--leaf-index", type=int, help="Also derive the nullifier for this leaf")

    def _register_tree_commands(self) -> None:
        tree = self.subparsers.add_parser("tree", help="LeanIMT operations")
        tree_sub = tree.add_subparsers(dest="subcommand")

        root = tree_sub.add_parser("root", help="Compute a tree root")
        root.add_argument("leaves", nargs="*", type=parse_int, help="Leaves in insertion order")

        proof = tree_sub.add_parser("proof", help="Generate an inclusion proof")
        proof.add_argument("--index", "-i", type=int, required=True, help="Leaf index")
        proof.add_argument("leaves", nargs="+", type=parse_int, help="Leaves in insertion order")

        verify = tree_sub.add_parser("verify", help="Verify an inclusion proof")
        verify.add_argument("--proof", "-p", required=True, help="Proof JSON or @file")

    def _register_config_commands(self) -> None:
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")

        get = config_sub.add_parser("get", help="Get a configuration value")
        get.add_argument("path", help="Config path (e.g., pool.ragequit_delay_seconds)")

        config_sub.add_parser("show", help="Show all configuration")
        config_sub.add_parser("schema", help="Show configuration JSON Schema")

        validate = config_sub.add_parser("validate", help="Validate configuration")
        validate.add_argument("--file", help="Validate a YAML file instead of the live config")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        try:
            fmt = OutputFormat(parsed.format)
            result = self._dispatch(parsed)

            if result is not None:
                print(format_output(result, fmt))

            return 0

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except AegisError as e:
            if not parsed.quiet:
                print(f"Error [{e.code}]: {e}", file=sys.stderr)
            return 2

        except (KeyError, TypeError, ValueError) as e:
            if not parsed.quiet:
                print(f"Error: malformed input: {e}", file=sys.stderr)
            return 1

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler."""
        cmd = args.command
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {cmd} {subcmd or ''}")

        return handler(args)

    # Key handlers
    def _handle_keygen(self, args: argparse.Namespace) -> Any:
        from shieldpool.aegis.elgamal import generate_keypair
        from shieldpool.aegis.zkp import SchnorrProof

        pair = generate_keypair(args.secret_key)
        out = pair.to_dict()
        if args.with_proof:
            out["key_proof"] = SchnorrProof.prove(pair.secret_key, pair.public_key).to_dict()
        return out

    def _handle_encrypt(self, args: argparse.Namespace) -> Any:
        from shieldpool.aegis.curve import Point, random_scalar
        from shieldpool.aegis.elgamal import encrypt
        from shieldpool.aegis.zkp import EncryptionProof

        pk = Point.from_dict(_load_json_arg(args.public_key))
        r = args.randomness if args.randomness is not None else random_scalar()
        ct = encrypt(args.amount, pk, r)
        out = {"ciphertext": ct.to_dict()}
        if args.with_proof:
            proof = EncryptionProof.prove(args.amount, r, pk, ct)
            out["proof"] = {
                "a1": proof.a1.to_dict(),
                "a2": proof.a2.to_dict(),
                "challenge": hex(proof.challenge),
                "s_amount": hex(proof.s_amount),
                "s_randomness": hex(proof.s_randomness),
            }
        return out

    def _handle_decrypt(self, args: argparse.Namespace) -> Any:
        from shieldpool.aegis.elgamal import Ciphertext, decrypt_amount, decrypt_point

        ct = Ciphertext.from_dict(_load_json_arg(args.ciphertext))
        amount = decrypt_amount(ct, args.secret_key, args.max_amount)
        return {
            "amount": amount,
            "message_point": decrypt_point(ct, args.secret_key).to_dict(),
        }

    # Note handlers
    def _handle_note_commitment(self, args: argparse.Namespace) -> Any:
        from shieldpool.hashing import compute_commitment, compute_nullifier

        out = {
            "commitment": hex(compute_commitment(args.secret, args.nullifier_seed, args.amount, args.asset)),
        }
        if args.leaf_index is not None:
            out["nullifier"] = hex(compute_nullifier(args.nullifier_seed, args.leaf_index))
        return out

    # Tree handlers
    def _handle_tree_root(self, args: argparse.Namespace) -> Any:
        from shieldpool.leanimt import LeanIMT, LeanIMTError

        tree = LeanIMT()
        try:
            tree.insert_many(args.leaves)
        except LeanIMTError as e:
            raise CLIError(str(e)) from e
        return tree.state().to_dict()

    def _handle_tree_proof(self, args: argparse.Namespace) -> Any:
        from shieldpool.leanimt import LeanIMT, LeanIMTError

        tree = LeanIMT()
        try:
            tree.insert_many(args.leaves)
            return tree.generate_proof(args.index).to_dict()
        except (LeanIMTError, IndexError) as e:
            raise CLIError(str(e)) from e

    def _handle_tree_verify(self, args: argparse.Namespace) -> Any:
        from shieldpool.leanimt import verify_proof_dict

        data = _load_json_arg(args.proof)
        if not isinstance(data, dict):
            raise CLIError("Proof must be a JSON object")
        return {"valid": verify_proof_dict(data)}

    # Config handlers
    def _handle_config_get(self, args: argparse.Namespace) -> Any:
        from shieldpool.aegis.config import ConfigError, get_config_manager
        mgr = get_config_manager()
        try:
            return {"path": args.path, "value": mgr.get(args.path)}
        except ConfigError as e:
            raise CLIError(str(e)) from e

    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        from shieldpool.aegis.config import get_config_manager
        return get_config_manager().config.to_dict()

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        from shieldpool.aegis.config import get_config_manager
        return get_config_manager().export_schema()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        from shieldpool.aegis.config import get_config_manager
        mgr = get_config_manager()
        if args.file:
            import yaml
            path = Path(args.file)
            if not path.exists():
                raise CLIError(f"File not found: {path}")
            errors = mgr.check_document(yaml.safe_load(path.read_text()) or {})
        else:
            errors = mgr.validate()
        return {"valid": len(errors) == 0, "errors": errors}


def main() -> int:
    """CLI entry point."""
    cli = AegisCLI()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())

"""Isolated transaction signer.

This module runs as a SUBPROCESS spawned by sniper.signer.keychain with a
minimal environment. It is the only place the wallet key is ever decoded.

Flow:
  1. Read the wallet key from SIGNER_PRIVATE_KEY (this process's env only)
  2. Read the unsigned transaction (base64) from stdin
  3. Sign it
  4. Write the signed transaction (base64) to stdout and exit

What this process NEVER does:
  - Write to any file or log
  - Make any network request
  - Print the private key or anything derived from it other than the pubkey

Accepted key encodings: base64 of the 64 keypair bytes, base58 (wallet
export format), or a JSON byte array (solana-keygen file format).

Modes:
  Sign:   echo '<unsigned_tx_base64>' | python3 -m sniper.signer.signer
  Pubkey: python3 -m sniper.signer.signer --pubkey

Exit codes:
  0 = success (signed tx or pubkey on stdout)
  1 = error (error message on stderr)
"""

from __future__ import annotations

import base64
import binascii
import json
import os
import sys

import base58
from solders.keypair import Keypair
from solders.transaction import VersionedTransaction


def _load_keypair(encoded: str) -> Keypair:
    encoded = encoded.strip()
    if encoded.startswith("["):
        return Keypair.from_bytes(bytes(json.loads(encoded)))
    try:
        raw = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        raw = b""
    if len(raw) == 64:
        return Keypair.from_bytes(raw)
    return Keypair.from_bytes(base58.b58decode(encoded))


def _sign_transaction(unsigned_tx_bytes: bytes, keypair: Keypair) -> bytes:
    """Sign a versioned Solana transaction.

    The VersionedTransaction constructor signs the versioned message
    correctly; keypair.sign_message() + populate() would skip the prefix.
    """
    tx = VersionedTransaction.from_bytes(unsigned_tx_bytes)
    signed_tx = VersionedTransaction(tx.message, [keypair])
    return bytes(signed_tx)


def main() -> None:
    """Signer entry point. Reads stdin, signs, writes stdout."""
    key_encoded = os.environ.get("SIGNER_PRIVATE_KEY", "")
    if not key_encoded:
        print("ERROR: SIGNER_PRIVATE_KEY not set in signer environment", file=sys.stderr)
        sys.exit(1)

    try:
        keypair = _load_keypair(key_encoded)
    except Exception:
        # The exception text may echo key bytes; never forward it.
        print("ERROR: Signer key could not be decoded", file=sys.stderr)
        sys.exit(1)
    key_encoded = ""  # noqa: F841

    if "--pubkey" in sys.argv:
        sys.stdout.write(str(keypair.pubkey()))
        sys.stdout.flush()
        sys.exit(0)

    unsigned_b64 = sys.stdin.read().strip()
    if not unsigned_b64:
        print("ERROR: No transaction data on stdin", file=sys.stderr)
        sys.exit(1)

    try:
        unsigned_tx_bytes = base64.b64decode(unsigned_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        print(f"ERROR: Base64 decode failed: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        signed_tx_bytes = _sign_transaction(unsigned_tx_bytes, keypair)
    except Exception as e:
        print(f"ERROR: Signing failed: {type(e).__name__}", file=sys.stderr)
        sys.exit(1)

    sys.stdout.write(base64.b64encode(signed_tx_bytes).decode("ascii"))
    sys.stdout.flush()
    sys.exit(0)


if __name__ == "__main__":
    main()

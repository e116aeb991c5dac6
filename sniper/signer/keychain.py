"""Keychain — bridge between the sniper process and the signer subprocess.

The sniper calls `sign_transaction()` here. This module:
1. Reads the wallet key from SNIPER_SIGNER_KEY_PATH (a chmod 400 file), the
   macOS keychain (dev mode) or SNIPER_SIGNER_KEY (tests only).
2. Spawns sniper/signer/signer.py with a CLEAN environment containing only
   PATH, HOME, PYTHONPATH and SIGNER_PRIVATE_KEY. The sniper's API keys are
   not inherited.
3. Passes the unsigned tx on stdin and reads the signed tx from stdout.

Invariants:
  - The sniper process NEVER has SIGNER_PRIVATE_KEY in os.environ
  - The key is NEVER written, logged, or included in an error message
  - The subprocess gets a minimal env, never os.environ.copy()
"""

from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path
from typing import Any

SIGNER_SCRIPT = Path(__file__).parent / "signer.py"

WORKSPACE = Path(__file__).resolve().parent.parent.parent

SIGNER_TIMEOUT_SECONDS = 10
KEYCHAIN_SERVICE = "sniper-signer"


class SignerError(Exception):
    """Error from the signer subprocess. Never contains key material."""


def _get_signer_key() -> str:
    """Retrieve the encoded wallet key.

    Sources (in priority order):
    1. File at SNIPER_SIGNER_KEY_PATH
    2. macOS Keychain via `security` (dev mode)
    3. SNIPER_SIGNER_KEY env var (tests only)
    """
    key_path = os.environ.get("SNIPER_SIGNER_KEY_PATH", "")
    if key_path:
        path = Path(key_path)
        if path.exists():
            return path.read_text().strip()
        raise SignerError(f"Signer key file not found: {key_path}")

    if sys.platform == "darwin":
        try:
            result = subprocess.run(
                ["security", "find-generic-password", "-s", KEYCHAIN_SERVICE, "-w"],
                capture_output=True,
                text=True,
                timeout=5,
            )
            if result.returncode == 0 and result.stdout.strip():
                return result.stdout.strip()
        except (subprocess.TimeoutExpired, FileNotFoundError):
            pass

    test_key = os.environ.get("SNIPER_SIGNER_KEY", "")
    if test_key:
        return test_key

    raise SignerError(
        "No signer key source found. Set SNIPER_SIGNER_KEY_PATH or add to "
        f"macOS Keychain: security add-generic-password -s {KEYCHAIN_SERVICE} "
        "-a sniper -w '<private_key>'"
    )


def _signer_env(signer_key: str) -> dict[str, str]:
    signer_env = {
        "PATH": os.environ.get("PATH", "/usr/bin:/usr/local/bin"),
        "PYTHONPATH": str(WORKSPACE),
        "SIGNER_PRIVATE_KEY": signer_key,
        "HOME": os.environ.get("HOME", ""),
    }
    venv = os.environ.get("VIRTUAL_ENV", "")
    if venv:
        signer_env["VIRTUAL_ENV"] = venv
        signer_env["PATH"] = f"{venv}/bin:{signer_env['PATH']}"
    return signer_env


def _run_signer(args: list[str], stdin: str | None, what: str) -> str:
    signer_env = _signer_env(_get_signer_key())
    try:
        result = subprocess.run(
            [sys.executable, str(SIGNER_SCRIPT), *args],
            input=stdin,
            capture_output=True,
            text=True,
            timeout=SIGNER_TIMEOUT_SECONDS,
            env=signer_env,
            cwd=str(WORKSPACE),
        )
    except subprocess.TimeoutExpired:
        raise SignerError(f"Signer subprocess timed out ({SIGNER_TIMEOUT_SECONDS}s) in {what} mode")
    except OSError as e:
        raise SignerError(f"Failed to spawn signer subprocess: {e}")
    finally:
        signer_env.clear()

    if result.returncode != 0:
        error_msg = result.stderr.strip() if result.stderr else "Unknown signer error"
        raise SignerError(f"Signer failed ({what}): {error_msg}")

    output = result.stdout.strip()
    if not output:
        raise SignerError(f"Signer returned empty output ({what})")
    return output


def sign_transaction(unsigned_tx_base64: str) -> str:
    """Sign a transaction using the isolated signer subprocess.

    Args:
        unsigned_tx_base64: Base64-encoded unsigned transaction bytes.

    Returns:
        Base64-encoded signed transaction bytes.

    Raises:
        SignerError: If signing fails for any reason.
    """
    return _run_signer([], unsigned_tx_base64, "sign")


def get_public_key() -> str:
    """Wallet public key (base58).

    SNIPER_WALLET_PUBKEY wins when set; otherwise the signer derives it.
    """
    configured = os.environ.get("SNIPER_WALLET_PUBKEY", "")
    if configured:
        return configured
    return _run_signer(["--pubkey"], None, "pubkey")


def verify_isolation() -> dict[str, Any]:
    """Check that the sniper process does not hold the signer key in its env.

    Called at startup; returns a status dict for logging.
    """
    violations: list[str] = []

    if "SIGNER_PRIVATE_KEY" in os.environ:
        violations.append("CRITICAL: SIGNER_PRIVATE_KEY found in sniper process environment!")

    safe_prefixes = (
        "PATH", "HOME", "PYTHON", "VIRTUAL_ENV", "SHELL", "TERM", "LANG",
        "USER", "LOGNAME", "PWD", "OLDPWD", "TMPDIR", "XDG_", "LC_",
        "HELIUS_", "SNIPER_", "PYTEST_",
        "VSCODE_", "CURSOR_", "ELECTRON_", "NODE_", "NPM_", "NVM_",
        "COLORTERM", "GIT_", "SSH_", "GPG_", "DISPLAY", "DBUS_",
        "CONDA_", "HOMEBREW_", "APPLE_", "COMMAND_MODE", "MallocNanoZone",
        "__CF", "SECURITYSESSIONID", "LaunchInstanceID", "ORIGINAL_XDG",
    )
    for key, value in os.environ.items():
        if len(value) >= 64 and not any(key.startswith(p) for p in safe_prefixes):
            violations.append(f"WARNING: Suspicious long env var: {key} (len={len(value)})")

    return {
        "status": "VIOLATION" if violations else "CLEAN",
        "violations": violations,
        "message": "Key isolation verified" if not violations else "; ".join(violations),
    }

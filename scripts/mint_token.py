#!/usr/bin/env python3
"""Mint session claims and a refresh credential for local testing.

Usage:
    JWT_SECRET=... python scripts/mint_token.py --subject user-42 --role admin

    # Also revoke the minted token right away (needs a reachable REDIS_URL):
    python scripts/mint_token.py --subject user-42 --revoke

Environment Variables:
    JWT_SECRET: Signing secret (a throwaway one is generated if unset)
    ACCESS_TOKEN_TTL_SECONDS: Claims lifetime (default 900)
    REDIS_URL / CACHE_PREFIX: Coordination store, only used with --revoke
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


async def mint(subject: str, role: str, revoke: bool = False) -> dict:
    """Issue a token pair and optionally blacklist the access token.

    Returns:
        dict with access_token, token_id, expires_at, refresh_token and
        refresh_hash (the value a caller would persist under the session id)
    """
    # Import here to avoid loading config before env vars are set
    from warden.service.runtime import get_runtime

    runtime = get_runtime()
    access_token, claims = runtime.tokens.issue_claims(subject, role)
    credential, credential_hash = runtime.tokens.create_refresh_credential()
    result = {
        "access_token": access_token,
        "token_id": claims.token_id,
        "expires_at": claims.expires_at,
        "session_id": str(credential.session_id),
        "refresh_token": runtime.tokens.format_refresh_token(
            credential.session_id, credential.secret
        ),
        "refresh_hash": credential_hash.hash,
        "revoked": False,
    }
    if revoke:
        try:
            await runtime.store.blacklist_token(
                claims.token_id, runtime.tokens.remaining_validity(claims)
            )
            result["revoked"] = await runtime.store.is_token_blacklisted(claims.token_id)
        finally:
            await runtime.close()
    return result


def main():
    parser = argparse.ArgumentParser(
        description="Mint a session token and refresh credential",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--subject", required=True, help="Subject (user id) to embed")
    parser.add_argument("--role", default="user", help="Role claim (default: user)")
    parser.add_argument(
        "--revoke",
        action="store_true",
        help="Blacklist the minted access token in the coordination store",
    )

    args = parser.parse_args()

    if not os.environ.get("JWT_SECRET"):
        import secrets

        os.environ["JWT_SECRET"] = secrets.token_urlsafe(48)
        print("Note: JWT_SECRET not set; using a throwaway secret")

    try:
        result = asyncio.run(mint(args.subject, args.role, args.revoke))
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    print(f"Access Token:  {result['access_token']}")
    print(f"Token ID:      {result['token_id']}")
    print(f"Expires At:    {result['expires_at']}")
    print(f"Session ID:    {result['session_id']}")
    print(f"Refresh Token: {result['refresh_token']}")
    print(f"Refresh Hash:  {result['refresh_hash']}")
    if args.revoke:
        print(f"Revoked:       {result['revoked']}")


if __name__ == "__main__":
    main()

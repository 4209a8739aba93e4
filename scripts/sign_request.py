"""
sign_request.py — Print the HMAC headers the proxy would add to a request.

Used when debugging backend signature verification: shows the exact canonical
string, the signature and the header names for the chosen profile.

The secret comes from --secret, the HMAC_SECRET env var, or AWS Secrets
Manager (--secret-name / --region) through the same cache the proxy uses.

Usage:
    uv run python scripts/sign_request.py --method POST --path "/api/users?page=1" \\
        --secret-name platform/hmac-secret --region eu-west-2 [--profile legacy] \\
        [--timestamp 2026-01-01T00:00:00.000Z] [--show-canonical]

Exit codes:
    0  headers printed
    1  secret could not be resolved
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT / "src" / "signing-lib" / "src"))

from hmac_signing import (  # noqa: E402  (must be after sys.path modification)
    SecretCache,
    SecretFetchError,
    build_canonical_string,
    get_profile,
    sign,
    utc_timestamp,
)

logger = logging.getLogger("sign_request")
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)


def resolve_secret(args: argparse.Namespace, cache: SecretCache | None = None) -> str:
    """--secret, then HMAC_SECRET, then Secrets Manager."""
    if args.secret:
        return str(args.secret)
    env_secret = os.environ.get("HMAC_SECRET")
    if env_secret:
        return env_secret
    if not args.secret_name:
        raise SecretFetchError(
            "No secret given: use --secret, HMAC_SECRET or --secret-name",
            secret_name="",
            region=args.region,
        )
    return (cache or SecretCache(default_region=args.region)).get(args.secret_name, args.region)


def build_headers(
    secret: str, method: str, path: str, profile_name: str, timestamp: str | None = None
) -> dict[str, str]:
    profile = get_profile(profile_name)
    ts = timestamp or utc_timestamp()
    return {
        profile.signature_header: sign(secret, method, path, ts),
        profile.timestamp_header: ts,
    }


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1] if __doc__ else None)
    parser.add_argument("--method", default="GET")
    parser.add_argument("--path", required=True, help="path and query, e.g. /api/users?page=1")
    parser.add_argument("--profile", default="hmac", choices=["hmac", "legacy"])
    parser.add_argument("--timestamp", help="fixed timestamp (default: now, ISO-8601 UTC)")
    parser.add_argument("--secret", help="literal secret (local testing only)")
    parser.add_argument("--secret-name", help="Secrets Manager id")
    parser.add_argument("--region", default=os.environ.get("AWS_REGION", "us-east-1"))
    parser.add_argument("--show-canonical", action="store_true")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        secret = resolve_secret(args)
    except SecretFetchError as exc:
        logger.error("%s", exc)
        return 1

    headers = build_headers(secret, args.method, args.path, args.profile, args.timestamp)
    output: dict[str, object] = {"headers": headers}
    if args.show_canonical:
        timestamp = next(v for k, v in headers.items() if "timestamp" in k.lower())
        output["canonical"] = build_canonical_string(args.method, args.path, timestamp)
    print(json.dumps(output, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Generate a VAPID key pair for Web Push.

Usage:
    python scripts/generate_vapid_keys.py
    python scripts/generate_vapid_keys.py --subject mailto:ops@whistle-connect.com >> .env

The public key is what browsers pass to pushManager.subscribe(); it is also
served from GET /notifications/push/public-key. The private key never leaves
the server.
"""

import argparse

from cryptography.hazmat.primitives import serialization
from py_vapid import Vapid
from py_vapid.utils import b64urlencode


def generate_keys() -> tuple[str, str]:
    """Return (public_key, private_key), both base64url without padding."""
    vapid = Vapid()
    vapid.generate_keys()

    public_bytes = vapid.public_key.public_bytes(
        serialization.Encoding.X962,
        serialization.PublicFormat.UncompressedPoint,
    )
    private_bytes = vapid.private_key.private_numbers().private_value.to_bytes(32, "big")
    return b64urlencode(public_bytes), b64urlencode(private_bytes)


def main():
    parser = argparse.ArgumentParser(description="Generate VAPID keys for Web Push")
    parser.add_argument("--subject", help="Contact URI sent with every push, e.g. mailto:ops@example.com")
    args = parser.parse_args()

    public_key, private_key = generate_keys()
    print(f"VAPID_PUBLIC_KEY={public_key}")
    print(f"VAPID_PRIVATE_KEY={private_key}")
    if args.subject:
        print(f"VAPID_SUBJECT={args.subject}")


if __name__ == "__main__":
    main()

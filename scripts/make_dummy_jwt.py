#!/usr/bin/env python3
import argparse
import datetime
import pathlib
import sys

from jose import jwt

DEFAULT_PERMISSIONS = ["delivery:read", "delivery:update", "vehicle:read"]


def generate_token(subject: str, permissions: list, private_key_path: str) -> str:
    """Generate a JWT token for testing."""
    try:
        private_key = pathlib.Path(private_key_path).read_text()
    except FileNotFoundError:
        print(f"Error: Private key file not found at {private_key_path}")
        sys.exit(1)

    payload = {
        "sub": subject,
        "permissions": permissions,
        "exp": datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(hours=1)
    }

    try:
        return jwt.encode(payload, private_key, algorithm="RS256")
    except Exception as e:
        print(f"Error generating token: {e}")
        sys.exit(1)


def main():
    parser = argparse.ArgumentParser(description="Generate a JWT token for testing")
    parser.add_argument("--sub", type=str, default="tester", help="Subject (user id) of the token")
    parser.add_argument(
        "--permission", action="append", dest="permissions",
        help="Permission as resource:action; repeatable. Defaults to full tracking access"
    )
    parser.add_argument("--private-key", type=str, required=True, help="Path to private key file")
    args = parser.parse_args()

    token = generate_token(args.sub, args.permissions or DEFAULT_PERMISSIONS, args.private_key)
    print(token)


if __name__ == "__main__":
    main()

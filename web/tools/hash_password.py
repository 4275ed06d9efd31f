import argparse
import getpass
import os
import sys
from typing import List, Optional

# Allow running as `python tools/hash_password.py` from the web/ folder.
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from services.auth_store import hash_password  # noqa: E402


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Print a passwordHash value for config.json")
    ap.add_argument("--password", help="password to hash (prompted for when omitted)")
    args = ap.parse_args(argv)

    password = args.password
    if password is None:
        password = getpass.getpass("Password: ")
        if getpass.getpass("Repeat: ") != password:
            sys.stderr.write("Passwords do not match\n")
            return 2

    try:
        sys.stdout.write(hash_password(password) + "\n")
    except ValueError as e:
        sys.stderr.write(f"{e}\n")
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

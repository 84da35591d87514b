import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from userdirectory.config import load_settings
from userdirectory.directory import UserDirectory
from userdirectory.errors import DirectoryError
from userdirectory.models import ROLES
from userdirectory.store import open_store


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a user in the directory")
    parser.add_argument("name", help="Display name for the user")
    parser.add_argument("email", help="Unique email address")
    parser.add_argument("age", help="Age in whole years (at least 1)")
    parser.add_argument("--role", choices=ROLES, default="user", help="Directory role (default: user)")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a YAML settings file (defaults to USER_DIRECTORY_CONFIG or config/settings.yaml)",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    settings = load_settings(Path(args.config) if args.config else None)
    store = open_store(settings)
    directory = UserDirectory(store)

    try:
        store.initialize()
        user = directory.create_user(
            {"name": args.name, "email": args.email, "age": args.age, "role": args.role}
        )
    except DirectoryError as exc:  # duplicates, validation, store failures
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1

    print(f"Created user {user.id}: {user.name} <{user.email}> ({user.role})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

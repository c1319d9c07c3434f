import argparse
import asyncio
import sys
import os
from dotenv import load_dotenv

# --- [Settings] ---
# Load backend/.env relative to this script and make the package importable
current_dir = os.path.dirname(os.path.abspath(__file__))
backend_dir = os.path.dirname(current_dir)
sys.path.append(backend_dir)

dotenv_path = os.path.join(backend_dir, '.env')
if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path=dotenv_path)
else:
    print(f"Warning: .env file not found at {dotenv_path}")

from portfolio_cms.core.config import settings
from portfolio_cms.repositories import create_repository_provider
from portfolio_cms.services.admin_bootstrap import ensure_default_admin


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create the first admin account")
    parser.add_argument("--username", default=settings.DEFAULT_ADMIN_USERNAME)
    parser.add_argument("--email", default=settings.DEFAULT_ADMIN_EMAIL)
    parser.add_argument("--password", default=settings.DEFAULT_ADMIN_PASSWORD,
                        help="Defaults to DEFAULT_ADMIN_PASSWORD")
    return parser.parse_args()


async def create_admin(args: argparse.Namespace) -> int:
    if not args.password:
        print("❌ No password given and DEFAULT_ADMIN_PASSWORD is not set")
        return 1

    config = settings.model_copy(update={
        "DEFAULT_ADMIN_USERNAME": args.username,
        "DEFAULT_ADMIN_EMAIL": args.email,
        "DEFAULT_ADMIN_PASSWORD": args.password,
    })
    provider = create_repository_provider(config)
    print(f"🔌 Connecting to the {provider.backend} backend")

    try:
        await provider.initialize()
        admin = await ensure_default_admin(provider, config)
    finally:
        await provider.close()

    if admin is None:
        print("✅ An admin account already exists, nothing to do")
    else:
        print(f"✅ Admin account created: id={admin.id} username={admin.username} email={admin.email}")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(create_admin(parse_args())))

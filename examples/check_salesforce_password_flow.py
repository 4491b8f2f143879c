import asyncio
import os
from pathlib import Path

import httpx
from dotenv import load_dotenv

from auth.errors import NetworkError, ProviderAuthError
from auth.oauth2_client import password_grant
from auth.oauth_server import password_flow_hints


def load_env() -> None:
    env_path = Path(__file__).resolve().parents[1] / ".env"
    if env_path.exists():
        load_dotenv(env_path)


def get_credentials() -> dict[str, str]:
    required = ("SF_CLIENT_ID", "SF_CLIENT_SECRET", "SF_USERNAME", "SF_PASSWORD")
    missing = [key for key in required if not os.getenv(key, "").strip()]
    if missing:
        raise RuntimeError(f"Set {', '.join(missing)} to run the check.")
    return {
        "instance_url": os.getenv("SF_INSTANCE_URL", "https://test.salesforce.com").rstrip("/"),
        "client_id": os.environ["SF_CLIENT_ID"],
        "client_secret": os.environ["SF_CLIENT_SECRET"],
        "username": os.environ["SF_USERNAME"],
        # password followed by the user's security token
        "password": os.environ["SF_PASSWORD"],
    }


async def check(credentials: dict[str, str]) -> bool:
    token_url = f"{credentials['instance_url']}/services/oauth2/token"

    async with httpx.AsyncClient(timeout=30) as client:
        print(f"Testing connectivity to {credentials['instance_url']} ...")
        try:
            await client.head(token_url)
        except httpx.HTTPError as error:
            print(f"Cannot reach Salesforce instance: {error}")
            return False
        print("Salesforce instance is reachable")

        print(f"\nAttempting password flow against {token_url} ...")
        try:
            token = await password_grant(
                token_url=token_url,
                client_id=credentials["client_id"],
                client_secret=credentials["client_secret"],
                username=credentials["username"],
                password=credentials["password"],
                client=client,
            )
        except ProviderAuthError as error:
            print(f"\nAUTHENTICATION FAILED: {error.code}: {error.message}")
            for line in password_flow_hints(error.error):
                print(f"  {line}")
            return False
        except NetworkError as error:
            print(f"\nNETWORK ERROR: {error.message}")
            return False

    print("\nSUCCESS! Authentication worked.")
    print(f"Access token length: {len(token.access_token)}")
    print(f"Instance URL: {token.instance_url}")
    return True


def main() -> None:
    load_env()
    ok = asyncio.run(check(get_credentials()))
    raise SystemExit(0 if ok else 1)


if __name__ == "__main__":
    main()

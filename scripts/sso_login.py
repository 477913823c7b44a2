"""
Exercise configured SSO providers from a terminal.

Usage:
  python scripts/sso_login.py --config data/sso_providers.json providers
  python scripts/sso_login.py authorize-url okta --redirect-uri http://localhost:8000/callback
  python scripts/sso_login.py authorize-url okta --redirect-uri http://localhost:8000/callback --exchange
  python scripts/sso_login.py device-login okta
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from urllib.parse import parse_qs, urlparse

from sso_engine.auth.sso import DevicePoller, JSONFileConfigStore, SSOManager
from sso_engine.auth.sso.pkce import generate_nonce
from sso_engine.config import get_settings
from sso_engine.exceptions import SSOError
from sso_engine.types.sso import DevicePollStatus, SSOAuthResult
from sso_engine.utils.logging import setup_logging


def _print_result(result: SSOAuthResult) -> None:
    user = result.user_info
    print(f"Signed in with {result.provider_id}")
    print(f"  subject: {user.subject}")
    if user.email:
        print(f"  email:   {user.email}")
    if user.name:
        print(f"  name:    {user.name}")
    if result.id_claims:
        print(f"  id token expires: {result.id_claims.expires_at.isoformat()}")


async def list_providers(manager: SSOManager, args: argparse.Namespace) -> int:
    providers = manager.list_providers()
    if args.json:
        print(json.dumps(providers, indent=2))
        return 0
    if not providers:
        print("No SSO providers configured")
        return 1
    for p in providers:
        status = "enabled" if p["enabled"] else "disabled"
        print(f"{p['provider_id']:<16} {p['type']:<8} {status:<9} {p['display_name']}")
    return 0


async def authorize_url(manager: SSOManager, args: argparse.Namespace) -> int:
    nonce = generate_nonce()
    url = await manager.start_authorization_flow(args.provider, args.redirect_uri, nonce=nonce)
    print(url)
    if not args.exchange:
        return 0

    callback = input("\nPaste the full callback URL: ").strip()
    query = parse_qs(urlparse(callback).query)
    if "error" in query:
        print(f"Provider returned an error: {query['error'][0]}", file=sys.stderr)
        return 1
    state = query.get("state", [""])[0]
    code = query.get("code", [""])[0]
    if not state or not code:
        print("Callback URL has no state or code", file=sys.stderr)
        return 1

    _print_result(await manager.handle_callback(state, code))
    return 0


async def device_login(manager: SSOManager, args: argparse.Namespace) -> int:
    session = await manager.start_device_flow(args.provider)
    print(f"Open {session.verification_uri} and enter code {session.user_code}")
    if session.verification_uri_complete:
        print(f"Or open {session.verification_uri_complete}")

    def on_pending(status: DevicePollStatus, interval: int) -> None:
        if status == DevicePollStatus.SLOW_DOWN:
            print(f"  provider asked to slow down, polling every {interval}s")

    poller = DevicePoller(
        manager.poll_device_flow,
        args.provider,
        session,
        slow_down_factor=manager.settings.device_slow_down_factor,
        on_pending=on_pending,
    )
    _print_result(await poller.run())
    return 0


COMMANDS = {
    "providers": list_providers,
    "authorize-url": authorize_url,
    "device-login": device_login,
}


async def run(args: argparse.Namespace) -> int:
    async with SSOManager(JSONFileConfigStore(args.config)) as manager:
        await manager.init()
        try:
            return await COMMANDS[args.command](manager, args)
        except SSOError as e:
            print(f"{e.kind.value}: {e.message}", file=sys.stderr)
            return 1


def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Try out configured SSO providers")
    parser.add_argument(
        "--config",
        default=settings.sso.config_store_path,
        help="Provider configuration JSON file (defaults to SSO_CONFIG_STORE_PATH)",
    )
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    providers_parser = subparsers.add_parser("providers", help="List configured providers")
    providers_parser.add_argument("--json", action="store_true", help="Print as JSON")

    authorize_parser = subparsers.add_parser(
        "authorize-url",
        help="Print an authorization URL for a provider",
    )
    authorize_parser.add_argument("provider", help="Provider id")
    authorize_parser.add_argument("--redirect-uri", required=True, help="Registered redirect URI")
    authorize_parser.add_argument(
        "--exchange",
        action="store_true",
        help="Wait for the callback URL and complete the login",
    )

    device_parser = subparsers.add_parser("device-login", help="Sign in with the device flow")
    device_parser.add_argument("provider", help="Provider id")

    args = parser.parse_args()

    setup_logging(
        service_name=settings.logging.service_name,
        log_level=logging.DEBUG if args.verbose else None,
    )

    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        print("\nAborted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    raise SystemExit(main())

"""CLI sync client: keep a local copy of a paired device's contacts."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import quote, urlparse

try:
    import httpx
except ImportError:
    print("Error: httpx is required. Install with: pip install httpx")
    sys.exit(1)

from contactsync.protocol.packets import NetworkPacket
from contactsync.services.identity_service import UID
from contactsync.services.reconciliation_service import (
    ContactCache,
    FetchPlan,
    FetchResult,
    ReconciliationSession,
)
from contactsync.services.vcard_service import DEFAULT_NAMESPACE

if TYPE_CHECKING:
    from collections.abc import Mapping

MANIFEST_FILE = ".contactsync-manifest.json"
CONFIG_FILE = ".contactsync.json"


def load_manifest(contacts_dir: Path) -> dict[UID, int]:
    """Load the cached uID -> timestamp manifest from the last sync."""
    manifest_path = contacts_dir / MANIFEST_FILE
    if not manifest_path.exists():
        return {}
    data = json.loads(manifest_path.read_text())
    manifest: dict[UID, int] = {}
    for raw_uid, timestamp in data.items():
        try:
            uid = UID.parse(raw_uid)
        except ValueError:
            print(f"  Skip (bad uID in manifest): {raw_uid!r}")
            continue
        if isinstance(timestamp, int) and not isinstance(timestamp, bool):
            manifest[uid] = timestamp
    return manifest


def save_manifest(contacts_dir: Path, manifest: Mapping[UID, int]) -> None:
    """Save the uID -> timestamp manifest."""
    manifest_path = contacts_dir / MANIFEST_FILE
    data = {str(uid): manifest[uid] for uid in sorted(manifest)}
    manifest_path.write_text(json.dumps(data, indent=2))


def vcard_path(contacts_dir: Path, uid: UID) -> Path:
    """Map a uID to its .vcf file; the uID is percent-encoded to stay inside the directory."""
    return contacts_dir / f"{quote(str(uid), safe='')}.vcf"


class SyncClient:
    """Requester-side client for a contactsync server."""

    def __init__(
        self,
        server_url: str,
        contacts_dir: Path,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self.contacts_dir = contacts_dir
        self.namespace = namespace
        self.client = httpx.Client(base_url=self.server_url, timeout=60.0)

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> SyncClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _exchange(self, packet: NetworkPacket) -> NetworkPacket:
        """Send one packet and return the server's response packet."""
        resp = self.client.post(
            "/api/packets",
            content=packet.serialize(),
            headers={"Content-Type": "application/json"},
        )
        resp.raise_for_status()
        return NetworkPacket.deserialize(resp.content)

    def _start_session(self) -> tuple[ReconciliationSession, FetchPlan]:
        cache = ContactCache(timestamps=load_manifest(self.contacts_dir))
        session = ReconciliationSession(cache, namespace=self.namespace)
        plan = session.receive_manifest(self._exchange(session.request_manifest()))
        return session, plan

    def status(self) -> FetchPlan:
        """Show what would be fetched without fetching it."""
        _session, plan = self._start_session()
        return plan

    def sync(self) -> FetchResult:
        """Fetch new and changed contacts and store them as .vcf files."""
        session, plan = self._start_session()
        request = session.request_fetch()
        result = FetchResult()
        if request is not None:
            result = session.receive_vcards(self._exchange(request))

        self.contacts_dir.mkdir(parents=True, exist_ok=True)
        for uid in result.updated:
            vcard_path(self.contacts_dir, uid).write_text(
                session.cache.vcards[uid] + "\n", encoding="utf-8"
            )
            print(f"  Fetch: {uid}")

        for uid in result.unavailable:
            print(f"  Unavailable: {uid}")
        for uid in result.malformed:
            print(f"  Malformed: {uid}")
        for uid in plan.deleted:
            print(f"  Deleted remotely: {uid}")

        save_manifest(self.contacts_dir, session.cache.timestamps)
        print(
            f"Sync complete. {len(result.updated)} contact(s) fetched, "
            f"{len(plan.unchanged)} unchanged, {len(plan.deleted)} deleted remotely."
        )
        return result


_LOCALHOST_HOSTS = {"localhost", "127.0.0.1", "::1"}


def validate_server_url(server_url: str, allow_insecure_http: bool = False) -> str:
    """Validate server URL and enforce HTTPS for non-localhost hosts by default."""
    normalized = server_url.strip().rstrip("/")
    parsed = urlparse(normalized)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("Server URL must include scheme and host (e.g. https://example.com)")

    hostname = parsed.hostname
    if parsed.scheme == "http" and not allow_insecure_http and hostname not in _LOCALHOST_HOSTS:
        raise ValueError(
            "HTTPS is required for non-localhost servers. "
            "Use --allow-insecure-http only on trusted networks."
        )

    return normalized


def load_config(dir_path: Path) -> dict[str, str]:
    """Load sync config from file."""
    config_path = dir_path / CONFIG_FILE
    if not config_path.exists():
        return {}
    config: dict[str, str] = json.loads(config_path.read_text())
    return config


def save_config(dir_path: Path, config: dict[str, str]) -> None:
    """Save sync config to file."""
    config_path = dir_path / CONFIG_FILE
    config_path.write_text(json.dumps(config, indent=2))


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="contactsync-sync",
        description="Keep a local copy of a paired device's contacts",
    )
    parser.add_argument("--dir", "-d", default=".", help="Contacts directory (default: current)")
    parser.add_argument("--server", "-s", help="Server URL")
    parser.add_argument(
        "--allow-insecure-http",
        action="store_true",
        help="Allow http:// server URLs for non-localhost hosts",
    )
    parser.add_argument("--namespace", help="vCard metadata namespace (default: KDECONNECT)")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("init", help="Initialize sync configuration")
    subparsers.add_parser("status", help="Show what would be fetched")
    subparsers.add_parser("sync", help="Fetch new and changed contacts")

    args = parser.parse_args()
    contacts_dir = Path(args.dir).resolve()

    if args.command == "init":
        if not args.server:
            print("Error: --server required for init")
            sys.exit(1)
        try:
            server_url = validate_server_url(args.server, args.allow_insecure_http)
        except ValueError as exc:
            print(f"Error: {exc}")
            sys.exit(1)
        contacts_dir.mkdir(parents=True, exist_ok=True)
        config = {
            "server": server_url,
            "contacts_dir": str(contacts_dir),
        }
        if args.namespace:
            config["namespace"] = args.namespace
        save_config(contacts_dir, config)
        print(f"Initialized sync config in {contacts_dir / CONFIG_FILE}")
        return

    config = load_config(contacts_dir)
    configured_server_url = args.server or config.get("server")
    if not configured_server_url:
        print("Error: No server configured. Run 'contactsync-sync init --server <url>' first.")
        sys.exit(1)
    try:
        server_url = validate_server_url(configured_server_url, args.allow_insecure_http)
    except ValueError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    namespace = args.namespace or config.get("namespace") or DEFAULT_NAMESPACE

    with SyncClient(server_url, contacts_dir, namespace) as client:
        if args.command == "status":
            plan = client.status()
            print("Sync Status:")
            print(f"  To fetch:         {len(plan.to_fetch)}")
            print(f"  Unchanged:        {len(plan.unchanged)}")
            print(f"  Deleted remotely: {len(plan.deleted)}")

            for uid in plan.to_fetch:
                print(f"    < {uid} (fetch)")
            for uid in plan.deleted:
                print(f"    - {uid} (deleted remotely)")

        elif args.command == "sync":
            client.sync()
        else:
            parser.print_help()


if __name__ == "__main__":
    main()

"""CLI client for a running theme sync server."""

from __future__ import annotations

import argparse
import base64
import os
import sys
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import httpx

DEFAULT_SERVER = "http://localhost:3000"
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


def collect_batch(directory: Path, prefix: str = "") -> list[dict[str, str]]:
    """Base64-encode the direct, non-hidden files of ``directory`` for /upload-batch."""
    if not directory.is_dir():
        msg = f"Not a directory: {directory}"
        raise ValueError(msg)
    prefix = prefix.strip("/")
    files: list[dict[str, str]] = []
    for path in sorted(directory.iterdir()):
        if not path.is_file() or path.name.startswith("."):
            continue
        name = f"{prefix}/{path.name}" if prefix else path.name
        files.append(
            {
                "name": name,
                "contentBase64": base64.b64encode(path.read_bytes()).decode("ascii"),
            }
        )
    return files


class SyncServerClient:
    """Client for the theme sync HTTP API."""

    def __init__(self, server_url: str, timeout: float = 120.0) -> None:
        self.server_url = server_url.rstrip("/")
        self.client = httpx.Client(base_url=self.server_url, timeout=timeout)

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> SyncServerClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _check(self, resp: httpx.Response) -> Any:
        if resp.is_success:
            return resp.json()
        try:
            message = resp.json().get("error", resp.text)
        except ValueError:
            message = resp.text
        raise RuntimeError(f"Server returned {resp.status_code}: {message}")

    def targets(self) -> list[dict[str, Any]]:
        result: list[dict[str, Any]] = self._check(self.client.get("/targets"))
        return result

    def publish(self, target_id: str) -> dict[str, Any]:
        result: dict[str, Any] = self._check(
            self.client.post("/publish", json={"targetId": target_id})
        )
        return result

    def upload_batch(self, target_id: str, files: list[dict[str, str]]) -> dict[str, Any]:
        result: dict[str, Any] = self._check(
            self.client.post("/upload-batch", json={"targetId": target_id, "files": files})
        )
        return result


def print_results(response: dict[str, Any]) -> bool:
    """Print a per-file breakdown. Returns True when every file succeeded."""
    for item in response.get("results", []):
        status = item.get("status", "?")
        line = f"  [{status:<10}] {item.get('key')}"
        if item.get("error"):
            line += f"  {item['error']}"
        print(line)
    failed = int(response.get("failed", 0))
    print(f"{response.get('succeeded', 0)} succeeded, {failed} failed.")
    return failed == 0


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="themesync-client",
        description="Talk to a running theme sync server",
    )
    parser.add_argument(
        "--server",
        "-s",
        default=os.environ.get("THEMESYNC_SERVER", DEFAULT_SERVER),
        help=f"Server URL (default: $THEMESYNC_SERVER or {DEFAULT_SERVER})",
    )
    parser.add_argument(
        "--allow-insecure-http",
        action="store_true",
        help="Allow http:// server URLs for non-localhost hosts",
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("targets", help="List themes of the store")
    publish_parser = subparsers.add_parser("publish", help="Publish the watched bundle")
    publish_parser.add_argument("--target", "-t", required=True, help="Theme id")
    upload_parser = subparsers.add_parser("upload", help="Upload the files of a directory")
    upload_parser.add_argument("--target", "-t", required=True, help="Theme id")
    upload_parser.add_argument("directory", help="Directory whose files are uploaded")
    upload_parser.add_argument(
        "--prefix", default="", help="Name prefix inside assets/ (e.g. product_frames)"
    )

    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        server_url = validate_server_url(args.server, args.allow_insecure_http)
    except ValueError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    try:
        with SyncServerClient(server_url) as client:
            if args.command == "targets":
                print(f"{'ID':<20} {'ROLE':<12} NAME")
                for target in client.targets():
                    role = target.get("role", "")
                    print(f"{target['id']:<20} {role:<12} {target.get('name', '')}")
                return

            if args.command == "publish":
                response = client.publish(args.target)
            else:
                files = collect_batch(Path(args.directory), args.prefix)
                if not files:
                    print(f"Nothing to upload in {args.directory}")
                    return
                response = client.upload_batch(args.target, files)
    except (RuntimeError, ValueError, httpx.HTTPError) as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    if not print_results(response):
        sys.exit(2)


if __name__ == "__main__":
    main()

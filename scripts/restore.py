#!/usr/bin/env python3
"""
Restore Saintfest data from a backup ZIP to a running server.

Usage:
    python scripts/restore.py backup.zip --url https://saintfest.example.org
    python scripts/restore.py backup.zip --url https://saintfest.example.org --force

The API token is read from --token or the SAINTFEST_API_TOKEN environment
variable.

Safety:
    - Validates ZIP structure before uploading
    - The server keeps a pre-restore copy of its data directory
    - Asks for confirmation unless --force is given
"""

import argparse
import os
import sys
import zipfile

import requests

DEFAULT_URL = 'http://localhost:5000'
DEFAULT_TIMEOUT = 300
REQUIRED_ANY = ('saints.yaml', 'brackets.yaml')


def error(message: str, code: int = 1):
    """Print error and exit."""
    print(f"❌ ERROR: {message}", file=sys.stderr)
    sys.exit(code)


def validate_zip_structure(zip_path: str):
    """Validate ZIP holds Saintfest data and no unsafe paths."""
    if not os.path.exists(zip_path):
        error(f"Backup file not found: {zip_path}")

    print(f"📦 Validating backup structure: {zip_path}")

    try:
        with zipfile.ZipFile(zip_path, 'r') as zf:
            names = zf.namelist()

            if not any(f in names for f in REQUIRED_ANY):
                error(f"Invalid backup ZIP. Expected one of: {', '.join(REQUIRED_ANY)}")

            for name in names:
                if name.startswith('/') or name.startswith('\\') or '..' in name:
                    error(f"Invalid file path in ZIP: {name}")

            print(f"   ✓ Found {len(names)} files")

    except zipfile.BadZipFile:
        error("Invalid ZIP file format")


def upload_backup(zip_path: str, base_url: str, token: str, timeout: int = DEFAULT_TIMEOUT) -> dict:
    """POST the ZIP to the admin import endpoint and return the JSON reply."""
    url = f"{base_url}/api/admin/import"
    print(f"\n📤 Uploading backup to {url}...")

    try:
        with open(zip_path, 'rb') as f:
            response = requests.post(
                url,
                headers={'Authorization': f'Bearer {token}'},
                files={'file': (os.path.basename(zip_path), f, 'application/zip')},
                timeout=timeout,
            )
    except requests.ConnectionError as e:
        error(f"Could not connect to {base_url}: {e}", code=2)
    except requests.Timeout:
        error(f"Timeout after {timeout}s while uploading backup", code=2)
    except requests.RequestException as e:
        error(f"Request failed: {e}", code=2)

    try:
        payload = response.json()
    except ValueError:
        payload = {'error': response.text}

    if response.status_code in (401, 403):
        error(f"Server rejected the API token ({response.status_code})", code=2)
    if response.status_code != 200 or not payload.get('success'):
        error(f"Restore failed ({response.status_code}): {payload.get('error', 'unknown error')}", code=3)

    print("   ✓ Upload complete")
    return payload


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Restore Saintfest data to a running server',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/restore.py backup.zip --url https://saintfest.example.org
  python scripts/restore.py backup.zip --url https://saintfest.example.org --force

Exit codes:
  0: Success
  1: Invalid ZIP or missing configuration
  2: Server connection or authentication failed
  3: Restore operation failed
        """
    )

    parser.add_argument('backup_zip', help='Path to backup ZIP file')
    parser.add_argument('--url', help=f'Server base URL (default: $SAINTFEST_URL or {DEFAULT_URL})')
    parser.add_argument('--token', help='Admin API token (default: $SAINTFEST_API_TOKEN)')
    parser.add_argument('--timeout', type=int, default=DEFAULT_TIMEOUT, help='Request timeout in seconds')
    parser.add_argument('--force', action='store_true',
                        help='Skip confirmation prompt')

    args = parser.parse_args(argv)

    base_url = (args.url or os.environ.get('SAINTFEST_URL') or DEFAULT_URL).rstrip('/')
    token = args.token or os.environ.get('SAINTFEST_API_TOKEN')
    if not token:
        error("No API token given. Use --token or set SAINTFEST_API_TOKEN.")

    print("=== Saintfest Restore ===\n")
    print(f"Backup file: {args.backup_zip}")
    print(f"Server: {base_url}")
    print()

    validate_zip_structure(args.backup_zip)

    if not args.force:
        print("\n⚠️  WARNING: This will replace all data on the server.")
        print(f"   Target: {base_url}")
        response = input("\nType 'RESTORE' to continue: ")
        if response != 'RESTORE':
            print("Restore cancelled.")
            return 0

    payload = upload_backup(args.backup_zip, base_url, token, args.timeout)

    print("\n✅ Restore complete!")
    if payload.get('backup_location'):
        print(f"\nPrevious server data saved to: {payload['backup_location']}")
    return 0


if __name__ == '__main__':
    sys.exit(main())

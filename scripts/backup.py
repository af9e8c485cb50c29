#!/usr/bin/env python3
"""
Saintfest Backup Tool

Downloads the whole data directory from a running Saintfest server through
the admin export endpoint and saves it as a timestamped ZIP locally.

Usage:
    python scripts/backup.py --url https://saintfest.example.org
    python scripts/backup.py --url https://saintfest.example.org --output /path/to/backup.zip

The API token is read from --token or the SAINTFEST_API_TOKEN environment
variable.

Exit codes:
    0: Success
    1: Missing configuration (API token)
    2: Connection failed or server returned an error
    3: Backup write failure
"""
import argparse
import io
import os
import sys
import zipfile
from datetime import datetime
from pathlib import Path

import requests

DEFAULT_URL = 'http://localhost:5000'
DEFAULT_TIMEOUT = 120


def resolve_config(url: str, token: str):
    """Return (base_url, token), or None when no API token is available."""
    base_url = (url or os.environ.get('SAINTFEST_URL') or DEFAULT_URL).rstrip('/')
    token = token or os.environ.get('SAINTFEST_API_TOKEN')
    if not token:
        print("Error: No API token given. Use --token or set SAINTFEST_API_TOKEN.", file=sys.stderr)
        return None
    return base_url, token


def download_backup(base_url: str, token: str, timeout: int = DEFAULT_TIMEOUT):
    """Fetch the export ZIP. Returns its bytes, or None on failure."""
    url = f"{base_url}/api/admin/export"
    print(f"Requesting export from {url}...")
    try:
        response = requests.get(url, headers={'Authorization': f'Bearer {token}'}, timeout=timeout)
    except requests.ConnectionError as e:
        print(f"Error: Could not connect to {base_url}: {e}", file=sys.stderr)
        return None
    except requests.Timeout:
        print(f"Error: Timeout after {timeout}s while downloading backup", file=sys.stderr)
        return None
    except requests.RequestException as e:
        print(f"Error: Request failed: {e}", file=sys.stderr)
        return None

    if response.status_code != 200:
        try:
            detail = response.json().get('error', response.text)
        except ValueError:
            detail = response.text
        print(f"Error: Server returned {response.status_code}: {detail}", file=sys.stderr)
        return None

    if not zipfile.is_zipfile(io.BytesIO(response.content)):
        print("Error: Server response is not a ZIP archive", file=sys.stderr)
        return None

    print(f"Download complete: {len(response.content)} bytes")
    return response.content


def write_backup(content: bytes, output_path: str) -> bool:
    """Write the downloaded ZIP to disk."""
    print(f"Writing backup ZIP: {output_path}")
    try:
        os.makedirs(os.path.dirname(os.path.abspath(output_path)), exist_ok=True)
        with open(output_path, 'wb') as f:
            f.write(content)
    except OSError as e:
        print(f"Error: Failed to write backup ZIP: {e}", file=sys.stderr)
        return False

    file_size = os.path.getsize(output_path)
    print(f"Backup created successfully: {output_path} ({file_size / 1024 / 1024:.2f} MB)")
    return True


def default_output_path(prefix: str = 'saintfest-backup') -> str:
    timestamp = datetime.now().strftime('%Y%m%d-%H%M%S')
    backups_dir = Path(__file__).parent.parent / 'backups'
    backups_dir.mkdir(exist_ok=True)
    return str(backups_dir / f'{prefix}-{timestamp}.zip')


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Backup a Saintfest server data directory to a local ZIP file'
    )
    parser.add_argument('--url', help=f'Server base URL (default: $SAINTFEST_URL or {DEFAULT_URL})')
    parser.add_argument('--token', help='Admin API token (default: $SAINTFEST_API_TOKEN)')
    parser.add_argument(
        '--output',
        help='Output ZIP file path (default: backups/saintfest-backup-YYYYMMDD-HHMMSS.zip)'
    )
    parser.add_argument('--prefix', default='saintfest-backup', help='File name prefix for the default output path')
    parser.add_argument('--timeout', type=int, default=DEFAULT_TIMEOUT, help='Request timeout in seconds')

    args = parser.parse_args(argv)

    config = resolve_config(args.url, args.token)
    if config is None:
        return 1
    base_url, token = config

    content = download_backup(base_url, token, args.timeout)
    if content is None:
        print("Backup failed during download.", file=sys.stderr)
        return 2

    output_path = args.output or default_output_path(args.prefix)
    if not output_path.endswith('.zip'):
        output_path += '.zip'

    if not write_backup(content, output_path):
        print("Backup failed while writing the ZIP.", file=sys.stderr)
        return 3

    print("\nBackup completed successfully!")
    print(f"Location: {output_path}")
    return 0


if __name__ == '__main__':
    sys.exit(main())

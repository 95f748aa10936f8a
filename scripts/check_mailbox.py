#!/usr/bin/env python3
"""
Dev helper: probe an IMAP mailbox the way the automation controller does.

Connects with the given credentials, lists recent messages that look like job
applications, and optionally downloads the first resume attachment and runs
text extraction on it.  Nothing is written to the datastore and the language
model is never called.

Usage
-----
# Gmail account, last day of mail
python scripts/check_mailbox.py --provider gmail --user hr@company.io

# Custom server, last 7 days, include messages without a job-like subject
python scripts/check_mailbox.py --host imap.company.io --user hr --days 7 --all-subjects

# Also download the first resume and print the start of its text
python scripts/check_mailbox.py --provider outlook --user hr@company.io --extract

Environment / .env
------------------
IMAP_PASSWORD   Mailbox password or app password (or pass --password).

The script reads .env from the project root and from backend/ if present.
Run it after `pip install -e .` so the intake package is importable.
"""

import argparse
import asyncio
import datetime
import os
import sys
import textwrap
from pathlib import Path

from dotenv import load_dotenv

from intake.config import MAX_LOOKBACK_DAYS
from intake.errors import IngestionError
from intake.models.mail import PROVIDER_HOSTS, ConnectionConfig
from intake.services.job_filters import is_likely_job_application, resume_attachments
from intake.services.mail_transport import ImapMailTransport
from intake.services.text_extraction import extract_text, file_extension


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

def _build_config(args: argparse.Namespace, password: str) -> ConnectionConfig:
    host, port = args.host, args.port
    if args.provider:
        default_host, default_port = PROVIDER_HOSTS[args.provider]
        host = host or default_host
        port = port or default_port
    return ConnectionConfig(
        host=host,
        port=port or 993,
        username=args.user,
        password=password,
        use_tls=not args.no_tls,
    )


# ---------------------------------------------------------------------------
# Probe
# ---------------------------------------------------------------------------

async def _probe(config: ConnectionConfig, args: argparse.Namespace) -> int:
    transport = ImapMailTransport()

    print(f"Connecting to {config.host}:{config.port} as {config.username} ...")
    await transport.validate_connection(config)
    print("[OK] Login and INBOX select succeeded")

    since = datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(days=args.days)
    messages = await transport.list_messages(
        config,
        since,
        job_related=not args.all_subjects,
        with_attachments=True,
        max_results=args.limit,
    )

    print(f"\n{len(messages)} message(s) with attachments since {since.date()}:\n")
    for message in messages:
        flag = "APPLICATION" if is_likely_job_application(message) else "other"
        print(f"  [{flag:11}] uid={message.uid} from={message.sender_email} subject={message.subject!r}")
        for descriptor in message.attachments:
            print(f"                {descriptor.filename} ({descriptor.content_type}, {descriptor.size:,} bytes)")

    if not args.extract:
        return 0

    for message in messages:
        resumes = resume_attachments(message.attachments)
        if not resumes:
            continue
        descriptor = resumes[0]
        print(f"\nDownloading {descriptor.filename} from message {message.uid} ...")
        attachment = await transport.fetch_attachment(config, message, descriptor)
        extracted = extract_text(attachment.content, file_extension(descriptor.filename))
        print(f"[OK] Decoded via {attachment.decoded_by}, text via {extracted.strategy}")
        print("-" * 60)
        print(extracted.text[:1500])
        print("-" * 60)
        return 0

    print("\nNo resume attachment found to extract.")
    return 0


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> int:
    # Locate project root (scripts/ lives one level below the root)
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")
    load_dotenv(project_root / "backend" / ".env")

    parser = argparse.ArgumentParser(
        prog="check_mailbox.py",
        description=textwrap.dedent("""\
            List candidate application emails on an IMAP mailbox without
            importing anything.

            Reads IMAP_PASSWORD from the environment or a .env file.
        """),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--provider", choices=sorted(PROVIDER_HOSTS), help="Known provider preset")
    parser.add_argument("--host", default=None, help="IMAP host (overrides the provider preset)")
    parser.add_argument("--port", type=int, default=None, help="IMAP port (default: 993)")
    parser.add_argument("--user", required=True, help="Mailbox username")
    parser.add_argument("--password", default=None, help="Mailbox password (default: $IMAP_PASSWORD)")
    parser.add_argument("--no-tls", action="store_true", help="Use a plain-text connection")
    parser.add_argument(
        "--days",
        type=int,
        default=1,
        help=f"Days of mail to scan, at most {MAX_LOOKBACK_DAYS} (default: 1)",
    )
    parser.add_argument("--limit", type=int, default=20, help="Maximum messages to list (default: 20)")
    parser.add_argument(
        "--all-subjects",
        action="store_true",
        help="Do not require a job-related subject",
    )
    parser.add_argument(
        "--extract",
        action="store_true",
        help="Download the first resume attachment and print its extracted text",
    )

    args = parser.parse_args()
    args.days = max(1, min(args.days, MAX_LOOKBACK_DAYS))

    password = args.password or os.getenv("IMAP_PASSWORD", "")
    if not password:
        print(
            "ERROR: No password found.\n"
            "Set IMAP_PASSWORD in your environment or .env file, or pass --password.",
            file=sys.stderr,
        )
        return 1

    if not args.host and not args.provider:
        print("ERROR: Pass --provider or --host.", file=sys.stderr)
        return 1

    config = _build_config(args, password)
    try:
        return asyncio.run(_probe(config, args))
    except IngestionError as exc:
        print(f"\n[FAIL] {type(exc).__name__}: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())

from __future__ import annotations

import argparse
import json
import os
import sys

SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.abspath(os.path.join(SCRIPT_DIR, ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)


def load_env_file(env_path: str) -> None:
    if not os.path.exists(env_path):
        return
    with open(env_path, "r", encoding="utf-8") as env_file:
        for line in env_file:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            os.environ.setdefault(key, value)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Archive elapsed user statistics periods and open the current ones."
    )
    parser.add_argument(
        "--env-file",
        default=os.path.join(PROJECT_ROOT, ".env"),
        help="Path to .env file.",
    )
    parser.add_argument(
        "--user-id",
        type=int,
        default=None,
        help="Archive a single user instead of sweeping everyone.",
    )
    parser.add_argument(
        "--apply",
        action="store_true",
        help="Write changes. Without this flag the script only lists due users.",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    load_env_file(os.path.abspath(args.env_file))

    from src.api.dependencies import get_clock, get_stats_archival_service, get_user_stats_store
    from src.core.config import get_settings
    from src.core.logging import configure_logging

    configure_logging(get_settings().log_level)
    now = get_clock().now()

    if not args.apply:
        due_rows = get_user_stats_store().list_due(now)
        if args.user_id is not None:
            due_rows = [row for row in due_rows if row.user_id == args.user_id]
        summary = [
            {
                "userId": row.user_id,
                "periodStart": row.period_start.isoformat(),
                "periodEnd": row.period_end.isoformat(),
                "leadsReceived": row.leads_received,
                "paymentsProcessed": row.payments_processed,
            }
            for row in due_rows
        ]
        print(json.dumps({"dryRun": True, "asOf": now.isoformat(), "due": summary}, indent=2))
        return

    service = get_stats_archival_service()
    if args.user_id is not None:
        record = service.archive_and_reset(args.user_id, now)
        payload = record.model_dump(mode="json") if record is not None else None
        print(json.dumps({"archived": payload}, indent=2, default=str))
        return

    result = service.archive_and_reset_all(now)
    print(json.dumps(result.model_dump(by_alias=True), indent=2, default=str))
    if result.failed_user_ids:
        sys.exit(1)


if __name__ == "__main__":
    main()

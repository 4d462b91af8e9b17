from __future__ import annotations

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from sharealert.config import get_settings


def main() -> int:
    try:
        settings = get_settings()
    except RuntimeError as exc:
        print(f"Invalid configuration: {exc}")
        return 1

    required = {
        "SUPABASE_URL": settings.supabase_url,
        "SUPABASE_SERVICE_KEY": settings.supabase_service_key,
    }
    optional = {
        "NOTIFICATION_WEBHOOK_URL": settings.notification_webhook_url,
        "NOTIFICATION_WEBHOOK_TOKEN": settings.notification_webhook_token,
        "REDIS_URL": settings.redis_url if settings.redis_enabled else "",
        "PROXY_URL": settings.proxy_url,
    }

    missing_required = [name for name, value in required.items() if not str(value or "").strip()]

    print("Environment check")
    print("=================")
    for name, value in required.items():
        print(f"[{'ok' if value else 'missing'}] {name} (required)")
    for name, value in optional.items():
        print(f"[{'ok' if value else 'missing'}] {name} (optional)")

    print("\nMonitor schedule")
    for family in settings.monitor_enabled_families:
        print(f"- {family}: every {settings.interval_for(family)}s")

    if missing_required:
        print("\nMissing required environment variables:")
        for item in missing_required:
            print(f"- {item}")
        return 1

    print("\nAll required environment variables are present.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

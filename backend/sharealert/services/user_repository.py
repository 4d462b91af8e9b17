from __future__ import annotations

import threading
from typing import Any

from sharealert.errors import StoreError
from sharealert.schemas import User, UserPreferences


class UserRepository:
    def __init__(self, client: Any | None = None) -> None:
        self._client = client
        self._users: dict[str, User] = {}
        self._preferences: dict[str, UserPreferences] = {}
        self._lock = threading.Lock()

    def add_user(self, user: User, preferences: UserPreferences | None = None) -> User:
        if self._client is not None:
            try:
                self._client.table("users").upsert(user.model_dump(mode="json"), on_conflict="id").execute()
                if preferences is not None:
                    self._client.table("user_preferences").upsert(
                        preferences.model_dump(mode="json"), on_conflict="user_id"
                    ).execute()
            except Exception as exc:
                raise StoreError(f"Failed to save user {user.id}: {exc}") from exc
            return user

        with self._lock:
            self._users[user.id] = user
            if preferences is not None:
                self._preferences[user.id] = preferences
        return user

    def get_user(self, user_id: str) -> User | None:
        if self._client is not None:
            try:
                data = self._client.table("users").select("id,email,name").eq("id", user_id).limit(1).execute().data
            except Exception as exc:
                raise StoreError(f"Failed to load user {user_id}: {exc}") from exc
            return User.model_validate(data[0]) if data else None

        with self._lock:
            return self._users.get(user_id)

    def get_preferences(self, user_id: str) -> UserPreferences | None:
        if self._client is not None:
            try:
                data = (
                    self._client.table("user_preferences")
                    .select("*")
                    .eq("user_id", user_id)
                    .limit(1)
                    .execute()
                    .data
                )
            except Exception as exc:
                raise StoreError(f"Failed to load preferences for {user_id}: {exc}") from exc
            if not data:
                return None
            row = data[0]
            frequency = str(row.get("notification_frequency") or "immediate").strip().lower()
            return UserPreferences(
                user_id=user_id,
                email_notifications=bool(row.get("email_notifications", True)),
                push_notifications=bool(row.get("push_notifications", True)),
                notification_frequency=frequency if frequency in {"immediate", "daily", "weekly"} else "immediate",
            )

        with self._lock:
            return self._preferences.get(user_id)

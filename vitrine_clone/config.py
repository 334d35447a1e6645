"""Settings loaded from the environment (and a .env file, when present)."""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from vitrine_clone.errors import ConfigurationError


@dataclass(frozen=True)
class Settings:
    supabase_url: str | None = None
    service_role_key: str | None = None
    anon_key: str | None = None
    clone_api_key: str | None = None
    clone_user_api_key: str | None = None
    storage_bucket: str = "public"
    clone_timeout: float = 300.0
    log_dir: Path | None = None

    @classmethod
    def from_env(cls, load_dotenv_file: bool = True) -> "Settings":
        if load_dotenv_file:
            load_dotenv()
        log_dir = os.getenv("CLONE_LOG_DIR")
        return cls(
            supabase_url=os.getenv("SUPABASE_URL"),
            service_role_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY"),
            anon_key=os.getenv("SUPABASE_ANON_KEY"),
            clone_api_key=os.getenv("CLONE_API_KEY") or os.getenv("COPY_PRODUCTS_API_KEY"),
            clone_user_api_key=os.getenv("CLONE_USER_API_KEY"),
            storage_bucket=os.getenv("STORAGE_BUCKET", "public"),
            clone_timeout=float(os.getenv("CLONE_TIMEOUT_SECONDS", "300")),
            log_dir=Path(log_dir) if log_dir else None,
        )

    def create_client(self, debug: bool = False):
        """Build a store client, failing early when credentials are missing."""
        from vitrine_clone.api.client import SupabaseClient

        if not self.supabase_url or not self.service_role_key:
            raise ConfigurationError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
        return SupabaseClient(
            self.supabase_url,
            self.service_role_key,
            anon_key=self.anon_key,
            bucket=self.storage_bucket,
            debug=debug,
        )

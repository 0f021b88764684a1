"""Supabase client setup and database utilities."""

from supabase import create_client, Client

from donorsync.config import get_settings


OPEN_SYNC_STATUSES = ["pending", "in_progress"]
MERGE_KEY_COLUMNS = "account_id,provider,external_id"


def get_admin_client() -> Client:
    """Get Supabase admin client using service_role key (NO CACHE).

    Bypasses RLS - background syncs run after the triggering request is
    gone, so authorization has already been checked by then.
    """
    settings = get_settings()
    return create_client(
        settings.supabase_url,
        settings.supabase_service_role_key
    )


class Database:
    """Database helper class for CRM sync tables."""

    def __init__(self, client: Client):
        self.client = client

    # --- CRM Sync Logs ---

    def create_crm_sync_log(self, log_data: dict) -> dict:
        result = self.client.table("crm_sync_logs").insert(log_data).execute()
        return result.data[0]

    def get_crm_sync_log_by_id(self, log_id: str) -> dict | None:
        result = (
            self.client.table("crm_sync_logs")
            .select("*")
            .eq("id", log_id)
            .execute()
        )
        return result.data[0] if result.data else None

    def get_latest_crm_sync_log(
        self,
        account_id: str,
        provider: str,
        status: str,
        order_by: str = "started_at",
    ) -> dict | None:
        result = (
            self.client.table("crm_sync_logs")
            .select("*")
            .eq("account_id", account_id)
            .eq("provider", provider)
            .eq("status", status)
            .order(order_by, desc=True)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    def get_crm_sync_logs(
        self, account_id: str, provider: str, limit: int = 5
    ) -> list[dict]:
        result = (
            self.client.table("crm_sync_logs")
            .select("*")
            .eq("account_id", account_id)
            .eq("provider", provider)
            .order("started_at", desc=True)
            .limit(limit)
            .execute()
        )
        return result.data

    def update_open_crm_sync_log(self, log_id: str, data: dict) -> dict | None:
        """Update a sync log unless it already reached a terminal status."""
        result = (
            self.client.table("crm_sync_logs")
            .update(data)
            .eq("id", log_id)
            .in_("status", OPEN_SYNC_STATUSES)
            .execute()
        )
        return result.data[0] if result.data else None

    # --- CRM Records ---

    def upsert_crm_records(self, table: str, rows: list[dict]) -> list[dict]:
        if not rows:
            return []
        result = (
            self.client.table(table)
            .upsert(rows, on_conflict=MERGE_KEY_COLUMNS)
            .execute()
        )
        return result.data

    # --- CRM Credentials ---

    def get_crm_user_key(self, account_id: str, provider: str) -> dict | None:
        result = (
            self.client.table("user_keys")
            .select("encrypted_key")
            .eq("account_id", account_id)
            .eq("provider", provider)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    def get_crm_connections(self, providers: list[str]) -> list[dict]:
        """All (account_id, provider) pairs with a stored CRM key."""
        if not providers:
            return []
        result = (
            self.client.table("user_keys")
            .select("account_id, provider")
            .in_("provider", providers)
            .execute()
        )
        return result.data

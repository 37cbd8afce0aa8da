"""CRM module: local user accounts <-> remote contacts, plus web leads.

- contact -> res.partner, bidirectional, deduplicated by email
- lead -> crm.lead, push only (leads are created from a local form)
"""

from __future__ import annotations

from typing import Any

from src.erpsync.core.context import SyncContext
from src.erpsync.modules.base import ModuleDescriptor, SyncModule
from src.erpsync.modules.events import EventSource
from src.erpsync.modules.fields import clean_remote_value, many2one_to_name
from src.erpsync.modules.settings import SettingSpec
from src.erpsync.remote.client import Domain
from src.erpsync.sync.schemas import LocalId, ModuleDirection


class CRMModule(SyncModule):
    """Contacts and leads."""

    descriptor = ModuleDescriptor(
        id="crm",
        name="CRM",
        direction=ModuleDirection.bidirectional,
        remote_models={"contact": "res.partner", "lead": "crm.lead"},
        default_mappings={
            "contact": {
                "display_name": "name",
                "user_email": "email",
                "description": "comment",
                "billing_phone": "phone",
                "billing_company": "company_name",
                "billing_address_1": "street",
                "billing_address_2": "street2",
                "billing_city": "city",
                "billing_postcode": "zip",
                "billing_state": "state_id",
                "user_url": "website",
            },
            "lead": {
                "name": "name",
                "email": "email_from",
                "phone": "phone",
                "company": "partner_name",
                "description": "description",
                "source": "x_source",
            },
        },
        local_tables={"contact": "users", "lead": "leads"},
        settings=(
            SettingSpec("sync_users_as_contacts", True, label="Sync users as contacts"),
            SettingSpec("sync_leads", True, label="Sync web leads"),
            SettingSpec("pull_contact", True, label="Apply remote contact changes"),
        ),
    )

    def get_event_sources(self) -> list[EventSource]:
        return [
            EventSource("user.registered", self.on_user_saved, "sync_users_as_contacts"),
            EventSource("user.updated", self.on_user_saved, "sync_users_as_contacts"),
            EventSource("user.deleted", self.on_user_deleted, "sync_users_as_contacts"),
            EventSource("lead.submitted", self.on_lead_submitted, "sync_leads"),
        ]

    def should_pull(self, entity_type: str) -> bool:
        if entity_type == "lead":
            return False
        return super().should_pull(entity_type)

    # ── Event callbacks ─────────────────────────────────────────────────────

    async def on_user_saved(self, user_id: LocalId, **_: Any) -> None:
        if not self.should_sync("sync_users_as_contacts"):
            return
        await self.push_entity("contact", user_id)

    async def on_user_deleted(self, user_id: LocalId, **_: Any) -> None:
        if not self.should_sync("sync_users_as_contacts"):
            return
        await self.push_delete("contact", user_id)

    async def on_lead_submitted(self, lead_id: LocalId, **_: Any) -> None:
        if not self.should_sync("sync_leads"):
            return
        await self.push_entity("lead", lead_id)

    # ── Mapping refinements ─────────────────────────────────────────────────

    async def map_to_remote(self, entity_type: str, data: dict[str, Any]) -> dict[str, Any]:
        values = await super().map_to_remote(entity_type, data)
        if entity_type == "contact":
            first = (data.get("first_name") or "").strip()
            last = (data.get("last_name") or "").strip()
            if first or last:
                values["name"] = f"{first} {last}".strip()
            if values.get("email"):
                values["email"] = str(values["email"]).strip().lower()
            # State names cannot be written to a many-to-one directly
            values.pop("state_id", None)
        return values

    async def map_from_remote(self, entity_type: str, remote_data: dict[str, Any]) -> dict[str, Any]:
        data = await super().map_from_remote(entity_type, remote_data)
        data = {k: clean_remote_value(v) for k, v in data.items()}
        if entity_type == "contact":
            if "state_id" in remote_data:
                data["billing_state"] = many2one_to_name(remote_data["state_id"]) or ""
            name = data.get("display_name") or ""
            if name:
                first, _, last = name.partition(" ")
                data.setdefault("first_name", first)
                data.setdefault("last_name", last)
        return data

    def get_dedup_domain(self, entity_type: str, values: dict[str, Any]) -> Domain:
        if entity_type == "contact" and values.get("email"):
            return [("email", "=", values["email"])]
        if entity_type == "lead" and values.get("email_from"):
            return [("email_from", "=", values["email_from"]), ("type", "=", "lead")]
        return []

    async def save_local_data(
        self,
        entity_type: str,
        data: dict[str, Any],
        local_id: str | None,
        context: SyncContext,
    ) -> str | int | None:
        # New local accounts need an email to log in with
        if entity_type == "contact" and local_id is None and not data.get("user_email"):
            self.logger.warning("crm.pull_contact_without_email", display_name=data.get("display_name"))
            return None
        return await super().save_local_data(entity_type, data, local_id, context)

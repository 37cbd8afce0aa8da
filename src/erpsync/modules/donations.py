"""Donation modules: donation forms/campaigns and donations -> remote accounting.

GiveWP and Charitable write the same remote records, so they share the
``donations`` exclusivity group; GiveWP wins when both are available.
Both are push only: donations become customer invoices, the forms or
campaigns they belong to become service products.
"""

from __future__ import annotations

from typing import Any, ClassVar

from src.erpsync.modules.base import ModuleDescriptor, SyncModule
from src.erpsync.modules.events import EventSource
from src.erpsync.modules.fields import create_line
from src.erpsync.modules.settings import SettingSpec
from src.erpsync.remote.client import Domain
from src.erpsync.sync.schemas import LocalId, ModuleDirection

DONATION_SETTINGS = (
    SettingSpec("sync_forms", True, label="Sync donation forms"),
    SettingSpec("sync_donations", True, label="Sync donations"),
)


class DonationModuleBase(SyncModule):
    """Shared donation behaviour. Subclasses define vocabulary and tables."""

    parent_entity: ClassVar[str] = "form"
    status_map: ClassVar[dict[str, str]] = {}
    syncable_statuses: ClassVar[frozenset[str]] = frozenset()

    def get_event_sources(self) -> list[EventSource]:
        return [
            EventSource(f"{self.id}.{self.parent_entity}_saved", self.on_parent_saved, "sync_forms"),
            EventSource(f"{self.id}.donation_status_changed", self.on_donation_status_changed, "sync_donations"),
        ]

    async def on_parent_saved(self, parent_id: LocalId, **_: Any) -> None:
        if not self.should_sync("sync_forms"):
            return
        await self.push_entity(self.parent_entity, parent_id)

    async def on_donation_status_changed(
        self, donation_id: LocalId, new_status: str, old_status: str | None = None, **_: Any
    ) -> None:
        if not self.should_sync("sync_donations"):
            return
        if new_status not in self.syncable_statuses:
            return
        await self.push_entity("donation", donation_id)

    async def map_to_remote(self, entity_type: str, data: dict[str, Any]) -> dict[str, Any]:
        values = await super().map_to_remote(entity_type, data)
        if entity_type == self.parent_entity:
            values.setdefault("type", "service")
            return values
        return {**values, **await self._donation_values(data)}

    async def _donation_values(self, data: dict[str, Any]) -> dict[str, Any]:
        entity_map = self._services.entity_map
        line: dict[str, Any] = {
            "name": data.get("parent_title") or "Donation",
            "quantity": 1,
            "price_unit": float(data.get("amount") or 0),
        }
        if data.get("parent_id"):
            product_id = await entity_map.get_remote_id(self.id, self.parent_entity, data["parent_id"])
            if product_id:
                line["product_id"] = product_id

        values: dict[str, Any] = {
            "move_type": "out_invoice",
            "invoice_date": data.get("date"),
            "x_donation_state": self.resolve_status(
                data.get("status"), self.status_map, "donation_status", "draft"
            ),
            "invoice_line_ids": [create_line(line)],
        }
        if data.get("id"):
            values["ref"] = f"{self.id}:{data['id']}"
        if data.get("donor_user_id"):
            partner_id = await entity_map.get_remote_id("crm", "contact", data["donor_user_id"])
            if partner_id:
                values["partner_id"] = partner_id
        if "partner_id" not in values and data.get("donor_email"):
            values["x_donor_email"] = data["donor_email"]
        return values

    def get_dedup_domain(self, entity_type: str, values: dict[str, Any]) -> Domain:
        if entity_type == "donation" and values.get("ref"):
            return [("ref", "=", values["ref"]), ("move_type", "=", "out_invoice")]
        return []


class GiveWPModule(DonationModuleBase):
    descriptor = ModuleDescriptor(
        id="givewp",
        name="GiveWP",
        direction=ModuleDirection.push_only,
        remote_models={"form": "product.product", "donation": "account.move"},
        default_mappings={
            "form": {"form_name": "name", "list_price": "list_price", "type": "type"},
            "donation": {},
        },
        local_tables={"form": "give_forms", "donation": "give_payments"},
        exclusive_group="donations",
        exclusive_priority=10,
        required_dependency="givewp",
        settings=DONATION_SETTINGS,
    )

    parent_entity = "form"
    status_map = {
        "publish": "posted",
        "pending": "draft",
        "refunded": "cancel",
        "failed": "cancel",
        "abandoned": "cancel",
    }
    syncable_statuses = frozenset({"publish", "refunded"})


class CharitableModule(DonationModuleBase):
    descriptor = ModuleDescriptor(
        id="charitable",
        name="WP Charitable",
        direction=ModuleDirection.push_only,
        remote_models={"campaign": "product.product", "donation": "account.move"},
        default_mappings={
            "campaign": {"form_name": "name", "list_price": "list_price", "type": "type"},
            "donation": {},
        },
        local_tables={"campaign": "charitable_campaigns", "donation": "charitable_donations"},
        exclusive_group="donations",
        exclusive_priority=20,
        required_dependency="charitable",
        settings=DONATION_SETTINGS,
    )

    parent_entity = "campaign"
    status_map = {
        "charitable-completed": "posted",
        "charitable-pending": "draft",
        "charitable-refunded": "cancel",
        "charitable-failed": "cancel",
        "charitable-cancelled": "cancel",
    }
    syncable_statuses = frozenset({"charitable-completed", "charitable-refunded"})

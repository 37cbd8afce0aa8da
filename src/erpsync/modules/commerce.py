"""Commerce modules: products, orders and memberships.

WooCommerce and the pull-only Sales module both claim the remote product
catalogue, so they share the ``commerce`` exclusivity group. Memberships
needs the WooCommerce module booted and keys its records by user and plan.
"""

from __future__ import annotations

from typing import Any

from src.erpsync.modules.base import ModuleDescriptor, SyncModule
from src.erpsync.modules.events import EventSource
from src.erpsync.modules.fields import clean_remote_value, create_line, many2one_to_id
from src.erpsync.modules.settings import SettingSpec
from src.erpsync.remote.client import Domain
from src.erpsync.sync.keys import CompositeKey
from src.erpsync.sync.schemas import LocalId, ModuleDirection

ORDER_STATUS_MAP = {
    "pending": "draft",
    "on-hold": "sent",
    "processing": "sale",
    "completed": "done",
    "cancelled": "cancel",
    "refunded": "cancel",
    "failed": "cancel",
}

MEMBERSHIP_STATUS_MAP = {
    "active": "paid",
    "complimentary": "free",
    "pending-cancel": "paid",
    "delayed": "waiting",
    "paused": "waiting",
    "expired": "old",
    "cancelled": "canceled",
}

PRODUCT_MAPPING = {
    "name": "name",
    "sku": "default_code",
    "regular_price": "list_price",
    "weight": "weight",
    "description": "description_sale",
}


class WooCommerceModule(SyncModule):
    """Products and orders. Remote order state changes flow back as statuses."""

    descriptor = ModuleDescriptor(
        id="woocommerce",
        name="WooCommerce",
        remote_models={"product": "product.template", "order": "sale.order"},
        default_mappings={
            "product": PRODUCT_MAPPING,
            "order": {"total": "amount_total", "date_created": "date_order", "note": "note"},
        },
        local_tables={"product": "wc_products", "order": "wc_orders"},
        exclusive_group="commerce",
        exclusive_priority=10,
        required_dependency="woocommerce",
        settings=(
            SettingSpec("sync_products", True, label="Sync products"),
            SettingSpec("sync_orders", True, label="Sync orders"),
            SettingSpec("pull_product", True, label="Apply remote product changes"),
            SettingSpec("pull_order", True, label="Apply remote order status"),
        ),
    )

    def get_event_sources(self) -> list[EventSource]:
        return [
            EventSource("woocommerce.product_saved", self.on_product_saved, "sync_products"),
            EventSource("woocommerce.product_deleted", self.on_product_deleted, "sync_products"),
            EventSource("woocommerce.order_saved", self.on_order_saved, "sync_orders"),
        ]

    async def on_product_saved(self, product_id: LocalId, **_: Any) -> None:
        if self.should_sync("sync_products"):
            await self.push_entity("product", product_id)

    async def on_product_deleted(self, product_id: LocalId, **_: Any) -> None:
        if self.should_sync("sync_products"):
            await self.push_delete("product", product_id)

    async def on_order_saved(self, order_id: LocalId, **_: Any) -> None:
        if self.should_sync("sync_orders"):
            await self.push_entity("order", order_id, priority=3)

    async def map_to_remote(self, entity_type: str, data: dict[str, Any]) -> dict[str, Any]:
        values = await super().map_to_remote(entity_type, data)
        if entity_type == "product":
            if "list_price" in values:
                values["list_price"] = float(values["list_price"] or 0)
            return values

        # order
        values.pop("amount_total", None)  # computed remotely from lines
        values["state"] = self.resolve_status(data.get("status"), ORDER_STATUS_MAP, "order_status", "draft")
        if data.get("id"):
            values["client_order_ref"] = f"WC-{data['id']}"
        if data.get("customer_id"):
            partner_id = await self._services.entity_map.get_remote_id("crm", "contact", data["customer_id"])
            if partner_id:
                values["partner_id"] = partner_id
        lines = []
        for item in data.get("items") or []:
            line: dict[str, Any] = {
                "name": item.get("name") or "",
                "product_uom_qty": item.get("quantity", 1),
                "price_unit": float(item.get("price") or 0),
            }
            if item.get("product_id"):
                product_id = await self.get_mapping("product", item["product_id"])
                if product_id:
                    line["product_id"] = product_id
            lines.append(create_line(line))
        if lines:
            values["order_line"] = lines
        return values

    async def map_from_remote(self, entity_type: str, remote_data: dict[str, Any]) -> dict[str, Any]:
        if entity_type == "order":
            # Only the status is authoritative on the remote side
            if "state" not in remote_data:
                return {}
            return {
                "status": self.reverse_status(remote_data["state"], ORDER_STATUS_MAP, "order_status", "on-hold")
            }
        data = await super().map_from_remote(entity_type, remote_data)
        return {k: clean_remote_value(v) for k, v in data.items()}

    def get_dedup_domain(self, entity_type: str, values: dict[str, Any]) -> Domain:
        if entity_type == "product" and values.get("default_code"):
            return [("default_code", "=", values["default_code"])]
        if entity_type == "order" and values.get("client_order_ref"):
            return [("client_order_ref", "=", values["client_order_ref"])]
        return []


class SalesModule(SyncModule):
    """Pull-only catalogue for sites that sell without WooCommerce."""

    descriptor = ModuleDescriptor(
        id="sales",
        name="Sales",
        direction=ModuleDirection.pull_only,
        remote_models={"product": "product.template"},
        default_mappings={
            "product": {
                "post_title": "name",
                "sku": "default_code",
                "price": "list_price",
                "post_content": "description_sale",
            },
        },
        local_tables={"product": "sales_products"},
        exclusive_group="commerce",
        exclusive_priority=30,
        settings=(SettingSpec("pull_product", True, label="Apply remote product changes"),),
    )

    async def map_from_remote(self, entity_type: str, remote_data: dict[str, Any]) -> dict[str, Any]:
        data = await super().map_from_remote(entity_type, remote_data)
        return {k: clean_remote_value(v) for k, v in data.items()}


class MembershipsModule(SyncModule):
    """Membership plans and per-user membership lines.

    A membership has no id of its own locally; it is keyed by
    ``CompositeKey(user_id, plan_id)``.
    """

    descriptor = ModuleDescriptor(
        id="memberships",
        name="WooCommerce Memberships",
        direction=ModuleDirection.push_only,
        remote_models={"plan": "product.product", "membership": "membership.membership_line"},
        default_mappings={
            "plan": {"plan_name": "name", "list_price": "list_price"},
            "membership": {"start_date": "date_from", "end_date": "date_to"},
        },
        local_tables={"plan": "wc_membership_plans", "membership": "wc_user_memberships"},
        required_modules=("woocommerce",),
        required_dependency="woocommerce-memberships",
        settings=(SettingSpec("sync_memberships", True, label="Sync memberships"),),
    )

    def get_event_sources(self) -> list[EventSource]:
        return [
            EventSource("memberships.plan_saved", self.on_plan_saved, "sync_memberships"),
            EventSource("memberships.membership_saved", self.on_membership_saved, "sync_memberships"),
            EventSource("memberships.membership_deleted", self.on_membership_deleted, "sync_memberships"),
        ]

    @staticmethod
    def membership_key(user_id: LocalId, plan_id: LocalId) -> str:
        return CompositeKey.of(user_id, plan_id).encode()

    async def on_plan_saved(self, plan_id: LocalId, **_: Any) -> None:
        if self.should_sync("sync_memberships"):
            await self.push_entity("plan", plan_id)

    async def on_membership_saved(self, user_id: LocalId, plan_id: LocalId, **_: Any) -> None:
        if self.should_sync("sync_memberships"):
            await self.push_entity("membership", self.membership_key(user_id, plan_id))

    async def on_membership_deleted(self, user_id: LocalId, plan_id: LocalId, **_: Any) -> None:
        if self.should_sync("sync_memberships"):
            await self.push_delete("membership", self.membership_key(user_id, plan_id))

    async def load_local_data(self, entity_type: str, local_id: str) -> dict[str, Any]:
        data = await super().load_local_data(entity_type, local_id)
        if entity_type == "membership" and data and CompositeKey.is_composite(local_id):
            key = CompositeKey.parse(local_id)
            data.setdefault("user_id", key.primary)
            data.setdefault("plan_id", key.secondary)
        return data

    async def map_to_remote(self, entity_type: str, data: dict[str, Any]) -> dict[str, Any]:
        values = await super().map_to_remote(entity_type, data)
        if entity_type == "plan":
            values["membership"] = True
            values.setdefault("type", "service")
            return values

        entity_map = self._services.entity_map
        values["state"] = self.resolve_status(
            data.get("status"), MEMBERSHIP_STATUS_MAP, "membership_status", "none"
        )
        if data.get("user_id"):
            partner_id = await entity_map.get_remote_id("crm", "contact", data["user_id"])
            if partner_id:
                values["partner"] = partner_id
        if data.get("plan_id"):
            product_id = await self.get_mapping("plan", data["plan_id"])
            if product_id:
                values["membership_id"] = product_id
        return values

    def get_dedup_domain(self, entity_type: str, values: dict[str, Any]) -> Domain:
        if entity_type == "membership" and values.get("partner") and values.get("membership_id"):
            return [
                ("partner", "=", many2one_to_id(values["partner"])),
                ("membership_id", "=", many2one_to_id(values["membership_id"])),
            ]
        return []

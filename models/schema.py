# Centralized collection names and relationship contracts to prevent drift.
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

COL_COMPANIES = "companies"
COL_EMPLOYEES = "employees"
COL_VENDORS = "vendors"
COL_UNIFORMS = "uniforms"
COL_ORDERS = "orders"
COL_LOCATIONS = "locations"
COL_COMPANY_ADMINS = "companyadmins"
COL_PRODUCT_COMPANIES = "productcompanies"
COL_PRODUCT_VENDORS = "productvendors"
COL_VENDOR_INVENTORIES = "vendorinventories"
COL_SHIPMENT_PROVIDERS = "shipmentserviceproviders"
COL_SHIPMENTS = "shipments"
COL_PURCHASE_ORDERS = "purchaseorders"
COL_GRNS = "grns"
COL_INVOICES = "invoices"

# Append-only audit trail of every change a reconciliation run applies.
COL_MIGRATION_LOGS = "migration_logs"

DEFAULT_BUSINESS_ID_FIELDS: Tuple[str, ...] = ("id",)

# Lookup order for a collection's business identifier. The first field is the
# primary one (the one new ids are written to).
BUSINESS_ID_FIELDS: Dict[str, Tuple[str, ...]] = {
    COL_EMPLOYEES: ("id", "employeeId"),
    COL_SHIPMENTS: ("shipmentId", "id"),
}

# Starting block for generated 6-digit business ids (prefix * 1000 + 1).
BUSINESS_ID_PREFIXES: Dict[str, int] = {
    COL_COMPANIES: 100,
    COL_VENDORS: 200,
    COL_EMPLOYEES: 300,
    COL_UNIFORMS: 400,
    COL_LOCATIONS: 500,
    COL_COMPANY_ADMINS: 600,
    COL_SHIPMENTS: 700,
    COL_SHIPMENT_PROVIDERS: 800,
    COL_PRODUCT_VENDORS: 900,
    COL_PRODUCT_COMPANIES: 950,
}

# Collections whose documents must carry a valid, unique business id.
ENTITY_COLLECTIONS: Tuple[str, ...] = (
    COL_COMPANIES,
    COL_EMPLOYEES,
    COL_VENDORS,
    COL_UNIFORMS,
    COL_LOCATIONS,
    COL_SHIPMENT_PROVIDERS,
)

# PII stored encrypted at rest.
ENCRYPTED_FIELDS: Dict[str, Tuple[str, ...]] = {
    COL_EMPLOYEES: ("firstName", "lastName", "email", "mobile", "address", "designation"),
    COL_VENDORS: ("email", "phone"),
    COL_LOCATIONS: ("address",),
}


@dataclass(frozen=True)
class RelationshipField:
    """A field on `collection` that must hold the native reference of a `target` document."""

    collection: str
    field: str
    target: str
    required: bool = False

    @property
    def label(self) -> str:
        return f"{self.collection}.{self.field}"


RELATIONSHIPS: Tuple[RelationshipField, ...] = (
    RelationshipField(COL_EMPLOYEES, "companyId", COL_COMPANIES, required=True),
    RelationshipField(COL_EMPLOYEES, "locationId", COL_LOCATIONS),
    RelationshipField(COL_LOCATIONS, "companyId", COL_COMPANIES, required=True),
    RelationshipField(COL_COMPANY_ADMINS, "companyId", COL_COMPANIES, required=True),
    RelationshipField(COL_COMPANY_ADMINS, "employeeId", COL_EMPLOYEES, required=True),
    RelationshipField(COL_PRODUCT_COMPANIES, "productId", COL_UNIFORMS, required=True),
    RelationshipField(COL_PRODUCT_COMPANIES, "companyId", COL_COMPANIES, required=True),
    RelationshipField(COL_PRODUCT_VENDORS, "productId", COL_UNIFORMS, required=True),
    RelationshipField(COL_PRODUCT_VENDORS, "vendorId", COL_VENDORS, required=True),
    RelationshipField(COL_VENDOR_INVENTORIES, "productId", COL_UNIFORMS, required=True),
    RelationshipField(COL_VENDOR_INVENTORIES, "vendorId", COL_VENDORS, required=True),
    RelationshipField(COL_ORDERS, "employeeId", COL_EMPLOYEES),
    RelationshipField(COL_ORDERS, "companyId", COL_COMPANIES),
    RelationshipField(COL_ORDERS, "vendorId", COL_VENDORS),
    RelationshipField(COL_ORDERS, "locationId", COL_LOCATIONS),
    RelationshipField(COL_SHIPMENTS, "vendorId", COL_VENDORS),
    RelationshipField(COL_SHIPMENTS, "providerId", COL_SHIPMENT_PROVIDERS),
)


@dataclass(frozen=True)
class OrphanCheck:
    """`collection.field` must point at an existing `target` document.

    With `target_field` set the link is a business number matched against the
    distinct values of that field (e.g. shipments.prNumber -> orders.pr_number);
    without it the field is a relationship resolved through the resolver.
    """

    name: str
    collection: str
    field: str
    target: str
    target_field: Optional[str] = None
    key_field: str = "id"


ORPHAN_CHECKS: Tuple[OrphanCheck, ...] = (
    OrphanCheck("shipments_without_pr", COL_SHIPMENTS, "prNumber", COL_ORDERS, target_field="pr_number", key_field="shipmentId"),
    OrphanCheck("grns_without_po", COL_GRNS, "poNumber", COL_PURCHASE_ORDERS, target_field="client_po_number", key_field="grnNumber"),
    OrphanCheck("invoices_without_grn", COL_INVOICES, "grnId", COL_GRNS, target_field="id", key_field="invoiceNumber"),
    OrphanCheck("productvendors_without_vendor", COL_PRODUCT_VENDORS, "vendorId", COL_VENDORS),
    OrphanCheck("productvendors_without_product", COL_PRODUCT_VENDORS, "productId", COL_UNIFORMS),
    OrphanCheck("vendorinventories_without_vendor", COL_VENDOR_INVENTORIES, "vendorId", COL_VENDORS),
    OrphanCheck("vendorinventories_without_product", COL_VENDOR_INVENTORIES, "productId", COL_UNIFORMS),
    OrphanCheck("employees_without_company", COL_EMPLOYEES, "companyId", COL_COMPANIES),
    OrphanCheck("companyadmins_without_employee", COL_COMPANY_ADMINS, "employeeId", COL_EMPLOYEES),
)


def business_id_fields(collection: str) -> Tuple[str, ...]:
    return BUSINESS_ID_FIELDS.get(collection, DEFAULT_BUSINESS_ID_FIELDS)


def relationships_for(collection: str) -> List[RelationshipField]:
    return [r for r in RELATIONSHIPS if r.collection == collection]

"""
Import Target Schemas
Field catalogues for every table an upload can be imported into, plus the
header aliases used to recognise common commerce exports.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from services.errors import UnknownTargetSchemaError


@dataclass(frozen=True)
class TargetField:
    key: str
    label: str
    required: bool = False


@dataclass(frozen=True)
class TargetSchema:
    key: str
    label: str
    fields: tuple
    # ecom tables keep extension values in their metadata map;
    # crm tables keep typed custom field definitions.
    extension_mode: str = "metadata"

    @property
    def is_commerce(self) -> bool:
        return self.key.startswith("ecom_")

    @property
    def field_keys(self) -> List[str]:
        return [f.key for f in self.fields]

    @property
    def required_keys(self) -> List[str]:
        return [f.key for f in self.fields if f.required]

    def has_field(self, key: str) -> bool:
        return any(f.key == key for f in self.fields)


def _fields(*specs) -> tuple:
    return tuple(TargetField(key, label, required) for key, label, required in specs)


_ADDRESS_FIELDS = (
    ("addr_address1", "Address Line 1", False),
    ("addr_city", "City", False),
    ("addr_province", "State/Province", False),
    ("addr_zip", "Zip Code", False),
    ("addr_country", "Country", False),
)

TARGET_SCHEMAS: Dict[str, TargetSchema] = {
    "crm_contacts": TargetSchema(
        key="crm_contacts",
        label="CRM Contacts",
        extension_mode="custom_fields",
        fields=_fields(
            ("first_name", "First Name", True),
            ("last_name", "Last Name", False),
            ("email", "Email", False),
            ("phone", "Phone", False),
            ("title", "Job Title", False),
            ("company_name", "Company Name (auto-links)", False),
            ("status", "Status (lead/active/inactive/churned)", False),
            ("notes", "Notes", False),
        ),
    ),
    "crm_companies": TargetSchema(
        key="crm_companies",
        label="CRM Companies",
        extension_mode="custom_fields",
        fields=_fields(
            ("name", "Company Name", True),
            ("domain", "Domain", False),
            ("industry", "Industry", False),
            ("size", "Size", False),
            ("sector", "Sector", False),
            ("annual_revenue", "Annual Revenue", False),
            ("employees", "Employees", False),
            ("description", "Description", False),
        ),
    ),
    "crm_deals": TargetSchema(
        key="crm_deals",
        label="CRM Deals",
        extension_mode="custom_fields",
        fields=_fields(
            ("title", "Title", True),
            ("value", "Value", False),
            ("stage", "Stage", False),
            ("probability", "Probability", False),
            ("expected_close_date", "Expected Close Date", False),
            ("notes", "Notes", False),
        ),
    ),
    "crm_products": TargetSchema(
        key="crm_products",
        label="CRM Products",
        extension_mode="custom_fields",
        fields=_fields(
            ("name", "Product Name", True),
            ("sku", "SKU", False),
            ("category", "Category", False),
            ("unit_price", "Unit Price", False),
            ("description", "Description", False),
        ),
    ),
    "ecom_customers": TargetSchema(
        key="ecom_customers",
        label="E-Commerce Customers",
        fields=_fields(
            ("email", "Email", True),
            ("full_name", "Full Name (splits into first + last)", False),
            ("first_name", "First Name", False),
            ("last_name", "Last Name", False),
            ("phone", "Phone", False),
            ("accepts_marketing", "Accepts Marketing", False),
            *_ADDRESS_FIELDS,
        ),
    ),
    "ecom_orders": TargetSchema(
        key="ecom_orders",
        label="E-Commerce Orders (+ Customers)",
        fields=_fields(
            ("email", "Customer Email", True),
            ("full_name", "Full Name (splits into first + last)", False),
            ("first_name", "Customer First Name", False),
            ("last_name", "Customer Last Name", False),
            ("phone", "Customer Phone", False),
            ("accepts_marketing", "Accepts Marketing", False),
            ("order_number", "Order Number / Name", False),
            ("total_price", "Total Price", False),
            ("subtotal_price", "Subtotal", False),
            ("total_tax", "Tax", False),
            ("total_discounts", "Discounts", False),
            ("total_shipping", "Shipping Cost", False),
            ("currency", "Currency", False),
            ("financial_status", "Financial Status", False),
            ("fulfillment_status", "Fulfillment Status", False),
            ("processed_at", "Order Date / Created At", False),
            ("discount_code", "Discount Code", False),
            ("shipping_method", "Shipping Method", False),
            ("note", "Notes", False),
            ("lineitem_name", "Line Item Name", False),
            ("lineitem_quantity", "Line Item Quantity", False),
            ("lineitem_price", "Line Item Price", False),
            ("lineitem_sku", "Line Item SKU", False),
            ("addr_address1", "Billing Address", False),
            ("addr_city", "Billing City", False),
            ("addr_province", "Billing State/Province", False),
            ("addr_zip", "Billing Zip", False),
            ("addr_country", "Billing Country", False),
            ("addr_phone", "Billing Phone", False),
            ("ship_address1", "Ship Address", False),
            ("ship_city", "Ship City", False),
            ("ship_province", "Ship State/Province", False),
            ("ship_zip", "Ship Zip", False),
            ("ship_country", "Ship Country", False),
            ("ship_phone", "Ship Phone", False),
        ),
    ),
}

# Lower-cased Shopify export header -> target field
SHOPIFY_HEADER_MAP: Dict[str, str] = {
    "name": "order_number",
    "total": "total_price",
    "subtotal": "subtotal_price",
    "taxes": "total_tax",
    "shipping": "total_shipping",
    "discount amount": "total_discounts",
    "discount code": "discount_code",
    "shipping method": "shipping_method",
    "created at": "processed_at",
    "paid at": "processed_at",
    "financial status": "financial_status",
    "fulfillment status": "fulfillment_status",
    "accepts marketing": "accepts_marketing",
    "currency": "currency",
    "lineitem name": "lineitem_name",
    "lineitem quantity": "lineitem_quantity",
    "lineitem price": "lineitem_price",
    "lineitem sku": "lineitem_sku",
    "billing name": "full_name",
    "shipping name": "full_name",
    "billing address1": "addr_address1",
    "billing city": "addr_city",
    "billing province": "addr_province",
    "billing province name": "addr_province",
    "billing zip": "addr_zip",
    "billing country": "addr_country",
    "billing phone": "addr_phone",
    "shipping address1": "ship_address1",
    "shipping city": "ship_city",
    "shipping province": "ship_province",
    "shipping province name": "ship_province",
    "shipping zip": "ship_zip",
    "shipping country": "ship_country",
    "shipping phone": "ship_phone",
    "notes": "note",
    "phone": "phone",
}

_COMMERCE_SIGNALS = (
    "order", "lineitem", "line item", "total", "fulfillment", "shipping",
    "sku", "product", "variant", "subtotal", "discount",
)
_CRM_SIGNALS = ("company", "deal", "stage", "pipeline", "lead", "status")


def get_target_schema(key: Optional[str]) -> TargetSchema:
    schema = TARGET_SCHEMAS.get((key or "").strip())
    if schema is None:
        raise UnknownTargetSchemaError(key or "")
    return schema


def detect_target_schema(headers: Sequence[str]) -> str:
    """Guess the import target from the header row."""
    lower = [h.lower() for h in headers]

    def has(signals) -> bool:
        return any(s in h for h in lower for s in signals)

    if has(_COMMERCE_SIGNALS):
        return "ecom_orders"
    if has(_CRM_SIGNALS):
        if has(("value", "stage")):
            return "crm_deals"
        if has(("domain", "industry")):
            return "crm_companies"
    return "crm_contacts"

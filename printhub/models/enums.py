import enum


class UserRole(str, enum.Enum):
    ceo = "ceo"
    sales = "sales"
    sales_head = "sales_head"
    design = "design"
    design_head = "design_head"
    printing = "printing"
    printing_head = "printing_head"
    accounting = "accounting"
    accounting_head = "accounting_head"
    dispatch = "dispatch"
    dispatch_head = "dispatch_head"


class Department(str, enum.Enum):
    management = "management"
    sales = "sales"
    design = "design"
    printing = "printing"
    accounting = "accounting"
    dispatch = "dispatch"


class OrderStatus(str, enum.Enum):
    draft = "draft"
    pending_ceo_review = "pending_ceo_review"
    rejected_by_ceo = "rejected_by_ceo"
    returned_to_sales = "returned_to_sales"
    pending_design = "pending_design"
    in_design = "in_design"
    design_review = "design_review"
    design_completed = "design_completed"
    pending_materials = "pending_materials"
    materials_in_progress = "materials_in_progress"
    materials_ready = "materials_ready"
    pending_printing = "pending_printing"
    in_printing = "in_printing"
    printing_completed = "printing_completed"
    pending_payment = "pending_payment"
    payment_confirmed = "payment_confirmed"
    ready_for_dispatch = "ready_for_dispatch"
    in_dispatch = "in_dispatch"
    delivered = "delivered"
    cancelled = "cancelled"
    on_hold = "on_hold"


class OrderPriority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


class PaymentStatus(str, enum.Enum):
    pending = "pending"
    partial = "partial"
    completed = "completed"


class PrintType(str, enum.Enum):
    digital = "digital"
    offset = "offset"
    indoor = "indoor"


class StockStatus(str, enum.Enum):
    in_stock = "in_stock"
    low_stock = "low_stock"
    out_of_stock = "out_of_stock"


class TransactionType(str, enum.Enum):
    stock_in = "in"
    stock_out = "out"
    adjustment = "adjustment"


class PurchaseRequestStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    ordered = "ordered"
    received = "received"


class NotificationType(str, enum.Enum):
    order_created = "order_created"
    order_status_changed = "order_status_changed"
    task_assigned = "task_assigned"
    task_completed = "task_completed"
    inventory_out_of_stock = "inventory_out_of_stock"
    inventory_low_stock = "inventory_low_stock"
    purchase_request = "purchase_request"
    material_request_approved = "material_request_approved"
    material_request_rejected = "material_request_rejected"

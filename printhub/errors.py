"""
Structured error kinds raised (or accumulated) by the workflow services.

Services never build user-facing strings. Each error carries a stable ``code``
plus the context needed to render it; the HTTP boundary turns that into a
localised message through ``render_message``.
"""
from typing import Any, Dict, Optional


class WorkflowError(Exception):
    code = "workflow_error"
    http_status = 400

    def __init__(self, **context: Any) -> None:
        self.context: Dict[str, Any] = context
        super().__init__(f"{self.code}: {context}" if context else self.code)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "context": {k: _jsonable(v) for k, v in self.context.items()}}


class NotFoundError(WorkflowError):
    """Referenced order, user, assignment or inventory item is absent."""
    code = "not_found"
    http_status = 404


class InactiveActorError(WorkflowError):
    code = "inactive_actor"
    http_status = 409


class NotStartedError(WorkflowError):
    code = "task_not_started"
    http_status = 409


class AlreadyCompletedError(WorkflowError):
    code = "task_already_completed"
    http_status = 409


class InsufficientStockError(WorkflowError):
    """Per ledger line. Collected into LedgerResult.errors, never raised by the ledger."""
    code = "insufficient_stock"
    http_status = 409


class PersistenceError(WorkflowError):
    code = "persistence_error"
    http_status = 503


class InvalidTransitionError(WorkflowError):
    code = "invalid_transition"
    http_status = 409


class DepartmentGateError(WorkflowError):
    code = "department_gate"
    http_status = 403


class MaterialsUnavailableError(WorkflowError):
    code = "materials_unavailable"
    http_status = 409


class ValidationError(WorkflowError):
    code = "validation_error"
    http_status = 422


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    return str(getattr(value, "value", value))


MESSAGES: Dict[str, Dict[str, str]] = {
    "en": {
        "workflow_error": "The operation could not be completed",
        "not_found": "{entity} not found",
        "inactive_actor": "{name} is not an active employee",
        "task_not_started": "The task must be started before it can be completed",
        "task_already_completed": "The task has already been completed",
        "insufficient_stock": "Not enough {item_name} in stock (available: {available}, requested: {requested})",
        "persistence_error": "Could not save changes, please try again",
        "invalid_transition": "An order in status {current} cannot move to {target}",
        "department_gate": "Your department cannot act on an order in status {current}",
        "materials_unavailable": "Some materials are not available in stock",
        "validation_error": "{detail}",
    },
    "ar": {
        "workflow_error": "تعذر إتمام العملية",
        "not_found": "{entity} غير موجود",
        "inactive_actor": "الموظف {name} غير نشط",
        "task_not_started": "يجب بدء المهمة أولاً",
        "task_already_completed": "تم إكمال المهمة مسبقاً",
        "insufficient_stock": "الكمية المتوفرة من {item_name} غير كافية (المتوفر: {available}, المطلوب: {requested})",
        "persistence_error": "فشل حفظ التغييرات، حاول مرة أخرى",
        "invalid_transition": "لا يمكن نقل الطلب من الحالة {current} إلى {target}",
        "department_gate": "لا يمكن لقسمك التعامل مع طلب في الحالة {current}",
        "materials_unavailable": "بعض الخامات غير متوفرة في المخزون",
        "validation_error": "{detail}",
    },
}


def locale_from_header(accept_language: Optional[str], default: str = "en") -> str:
    """First language of an Accept-Language header that has a catalogue, else ``default``."""
    for part in (accept_language or "").split(","):
        tag = part.split(";")[0].strip().split("-")[0].lower()
        if tag in MESSAGES:
            return tag
    return default


def render_message(error: WorkflowError, locale: Optional[str] = None) -> str:
    catalogue = MESSAGES.get((locale or "en").split("-")[0].lower(), MESSAGES["en"])
    template = catalogue.get(error.code) or catalogue["workflow_error"]
    context = error.to_dict()["context"]
    try:
        return template.format(**context)
    except (KeyError, IndexError):
        return catalogue["workflow_error"]

"""
WhatsApp Flows management (WABA flows edge) and prebuilt Flow JSON
for common enquiry forms.
"""
from __future__ import annotations

import json
import logging
from datetime import date
from typing import Any

from app.tourdesk.modules.whatsapp.client import GraphApiError, MetaGraphClient

logger = logging.getLogger(__name__)

FLOW_JSON_VERSION = "7.3"
FLOW_CATEGORIES = (
    "SIGN_UP",
    "SIGN_IN",
    "APPOINTMENT_BOOKING",
    "LEAD_GENERATION",
    "CONTACT_US",
    "CUSTOMER_SUPPORT",
    "SURVEY",
    "OTHER",
)
DEFAULT_FLOW_FIELDS = (
    "id",
    "name",
    "status",
    "categories",
    "validation_errors",
    "json_version",
    "data_api_version",
    "endpoint_uri",
    "preview",
    "whatsapp_business_account",
    "application",
)
APPOINTMENT_SLOTS = (
    ("09:00", "9:00 AM"),
    ("10:00", "10:00 AM"),
    ("11:00", "11:00 AM"),
    ("14:00", "2:00 PM"),
    ("15:00", "3:00 PM"),
    ("16:00", "4:00 PM"),
)
FLOW_TEMPLATE_TYPES = {
    "signup": ("SIGN_UP", "Sign-up form with custom fields (options.fields required)"),
    "appointment": ("APPOINTMENT_BOOKING", "Service, date and time picker (options.services required)"),
    "survey": ("SURVEY", "Rating, multiple choice, yes/no and text questions (options.questions required)"),
    "lead_generation": ("LEAD_GENERATION", "Name, email, phone and optional custom fields"),
}


class FlowError(ValueError):
    def __init__(
        self, message: str, status: int = 400, validation_errors: list | None = None, flow_id: str | None = None
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.validation_errors = validation_errors or []
        self.flow_id = flow_id


def _waba(client: MetaGraphClient) -> str:
    if not client.business_account_id:
        raise GraphApiError("Missing META_WHATSAPP_BUSINESS_ACCOUNT_ID")
    return client.business_account_id


# ---------- Management ----------
def list_flows(client: MetaGraphClient) -> list[dict]:
    return client.request_json("GET", f"{_waba(client)}/flows").get("data") or []


def get_flow(client: MetaGraphClient, flow_id: str, fields: tuple[str, ...] | list[str] = DEFAULT_FLOW_FIELDS) -> dict:
    return client.request_json("GET", flow_id, params={"fields": ",".join(fields)})


def create_flow(
    client: MetaGraphClient, *, name: str, categories: list[str], clone_flow_id: str | None = None
) -> dict[str, Any]:
    body: dict[str, Any] = {"name": name, "categories": categories}
    if clone_flow_id:
        body["clone_flow_id"] = clone_flow_id
    data = client.request_json("POST", f"{_waba(client)}/flows", body=body)
    logger.info("Flow %s created (id=%s)", name, data.get("id"))
    return data


def delete_flow(client: MetaGraphClient, flow_id: str) -> dict[str, Any]:
    return client.request_json("DELETE", flow_id)


def publish_flow(client: MetaGraphClient, flow_id: str) -> dict[str, Any]:
    return client.request_json("POST", f"{flow_id}/publish")


def deprecate_flow(client: MetaGraphClient, flow_id: str) -> dict[str, Any]:
    return client.request_json("POST", f"{flow_id}/deprecate")


def get_flow_json(client: MetaGraphClient, flow_id: str) -> dict[str, Any]:
    """Read the FLOW_JSON asset, inline when Graph returns it, otherwise from its download URL."""
    assets = client.request_json(
        "GET", f"{flow_id}/assets", params={"fields": "name,asset_type,download_url,asset_content"}
    ).get("data") or []
    asset = next((a for a in assets if a.get("asset_type") == "FLOW_JSON"), None)
    if asset is None:
        raise FlowError("Flow JSON asset not found", status=404)

    raw = asset.get("asset_content")
    if not raw and asset.get("download_url"):
        raw = client.download(asset["download_url"]).decode("utf-8", errors="replace")
    if not raw:
        raise FlowError("Flow JSON asset did not include content or download URL", status=502)
    try:
        return json.loads(raw)
    except ValueError as e:
        raise FlowError(f"Flow JSON download was not valid JSON. Response begins with: {raw[:200]}", status=502) from e


def update_flow_json(client: MetaGraphClient, flow_id: str, flow_json: dict[str, Any]) -> dict[str, Any]:
    data = client.upload_file(
        f"{flow_id}/assets",
        filename="flow.json",
        content=json.dumps(flow_json).encode("utf-8"),
        content_type="application/json",
        fields={"asset_type": "FLOW_JSON", "name": "flow.json"},
    )
    errors = data.get("validation_errors") or []
    if errors:
        logger.warning("Flow %s JSON rejected: %s", flow_id, errors)
    return {"success": not errors, "validation_errors": errors}


def get_flow_preview(client: MetaGraphClient, flow_id: str) -> dict[str, Any]:
    preview = get_flow(client, flow_id, fields=("preview",)).get("preview")
    if not preview:
        raise FlowError("Flow preview not available. Publish the flow first.", status=404)
    return preview


def validate_flow_json(flow_json: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    if not flow_json.get("version"):
        errors.append("Flow version is required")
    screens = flow_json.get("screens")
    if not isinstance(screens, list) or not screens:
        errors.append("Flow must have at least one screen")
        screens = []
    for index, screen in enumerate(screens):
        screen_id = screen.get("id")
        if not screen_id:
            errors.append(f"Screen {index} missing id")
        layout = screen.get("layout") or {}
        if layout.get("type") != "SingleColumnLayout":
            errors.append(f"Screen {screen_id} must have SingleColumnLayout")
        if not layout.get("children"):
            errors.append(f"Screen {screen_id} must have components")
    return errors


# ---------- Prebuilt flows ----------
def _complete_footer(label: str, screen_id: str) -> dict[str, Any]:
    return {"type": "Footer", "label": label, "on-click-action": {"name": "complete", "payload": {"screen": screen_id}}}


def _terminal_screen(screen_id: str, title: str, children: list[dict]) -> dict[str, Any]:
    return {
        "id": screen_id,
        "title": title,
        "data": {},
        "layout": {"type": "SingleColumnLayout", "children": children},
        "terminal": True,
        "success": True,
    }


def _form_flow(screen_id: str, title: str, form_name: str, fields: list[dict], submit_label: str) -> dict[str, Any]:
    form = {"type": "Form", "name": form_name, "children": [*fields, _complete_footer(submit_label, screen_id)]}
    return {"version": FLOW_JSON_VERSION, "screens": [_terminal_screen(screen_id, title, [form])]}


def build_signup_flow(fields: list[dict], *, submit_button_text: str | None = None) -> dict[str, Any]:
    components = []
    for f in fields:
        c = {
            "type": f.get("type") or "TextInput",
            "name": f.get("name"),
            "label": f.get("label"),
            "required": bool(f.get("required", False)),
        }
        if f.get("helperText"):
            c["helper-text"] = f["helperText"]
        components.append(c)
    return _form_flow("SIGNUP_SCREEN", "Sign Up", "signup_form", components, submit_button_text or "Submit")


def build_appointment_flow(
    services: list[dict],
    *,
    date_label: str | None = None,
    time_label: str | None = None,
    today: date | None = None,
) -> dict[str, Any]:
    service_screen = {
        "id": "SERVICE_SELECTION",
        "title": "Select Service",
        "data": {},
        "layout": {
            "type": "SingleColumnLayout",
            "children": [
                {
                    "type": "RadioButtonsGroup",
                    "name": "selected_service",
                    "label": "Choose a service",
                    "required": True,
                    "data-source": [
                        {k: v for k, v in {"id": s.get("id"), "title": s.get("title"), "description": s.get("description")}.items() if v is not None}
                        for s in services
                    ],
                },
                {
                    "type": "Footer",
                    "label": "Next",
                    "on-click-action": {
                        "name": "navigate",
                        "next": {"type": "screen", "name": "DATE_TIME_SELECTION"},
                        "payload": {},
                    },
                },
            ],
        },
    }
    slot_screen = _terminal_screen(
        "DATE_TIME_SELECTION",
        "Select Date & Time",
        [
            {
                "type": "DatePicker",
                "name": "appointment_date",
                "label": date_label or "Select Date",
                "required": True,
                "min-date": (today or date.today()).isoformat(),
            },
            {
                "type": "Dropdown",
                "name": "appointment_time",
                "label": time_label or "Select Time",
                "required": True,
                "data-source": [{"id": slot, "title": title} for slot, title in APPOINTMENT_SLOTS],
            },
            _complete_footer("Book Appointment", "DATE_TIME_SELECTION"),
        ],
    )
    return {"version": FLOW_JSON_VERSION, "screens": [service_screen, slot_screen]}


def _survey_component(q: dict) -> dict[str, Any]:
    base = {"name": q.get("id"), "label": q.get("question"), "required": bool(q.get("required", True))}
    qtype = q.get("type")
    if qtype == "rating":
        source = [{"id": str(n), "title": "⭐" * n} for n in range(1, 6)]
    elif qtype == "multiple_choice":
        source = [{"id": str(i), "title": opt} for i, opt in enumerate(q.get("options") or [])]
    elif qtype == "yes_no":
        source = [{"id": "yes", "title": "Yes"}, {"id": "no", "title": "No"}]
    else:
        return {"type": "TextArea", **base}
    return {"type": "RadioButtonsGroup", **base, "data-source": source}


def build_survey_flow(questions: list[dict]) -> dict[str, Any]:
    children = [_survey_component(q) for q in questions]
    children.append(_complete_footer("Submit", "SURVEY_SCREEN"))
    return {"version": FLOW_JSON_VERSION, "screens": [_terminal_screen("SURVEY_SCREEN", "Survey", children)]}


def build_lead_generation_flow(
    *,
    collect_email: bool = True,
    collect_phone: bool = True,
    collect_company: bool = False,
    custom_fields: list[dict] | None = None,
) -> dict[str, Any]:
    fields: list[dict] = [
        {"type": "TextInput", "name": "full_name", "label": "Full Name", "required": True, "input-type": "text"},
    ]
    if collect_email:
        fields.append({"type": "TextInput", "name": "email", "label": "Email Address", "required": True, "input-type": "email"})
    if collect_phone:
        fields.append({"type": "TextInput", "name": "phone", "label": "Phone Number", "required": True, "input-type": "phone"})
    if collect_company:
        fields.append({"type": "TextInput", "name": "company", "label": "Company Name", "required": False, "input-type": "text"})
    for f in custom_fields or []:
        ftype = f.get("type")
        if ftype == "dropdown":
            fields.append(
                {
                    "type": "Dropdown",
                    "name": f.get("name"),
                    "label": f.get("label"),
                    "required": False,
                    "data-source": [{"id": str(i), "title": opt} for i, opt in enumerate(f.get("options") or [])],
                }
            )
        elif ftype == "textarea":
            fields.append({"type": "TextArea", "name": f.get("name"), "label": f.get("label"), "required": False})
        else:
            fields.append(
                {"type": "TextInput", "name": f.get("name"), "label": f.get("label"), "required": False, "input-type": "text"}
            )
    return _form_flow("LEAD_FORM", "Contact Information", "lead_form", fields, "Submit")


def build_flow_from_template(template_type: str, options: dict[str, Any]) -> tuple[dict[str, Any], str]:
    """Return (flow_json, category) for a prebuilt flow type."""
    if template_type == "signup":
        if not isinstance(options.get("fields"), list):
            raise FlowError("Fields array is required for sign-up flow")
        flow = build_signup_flow(options["fields"], submit_button_text=options.get("submitButtonText"))
    elif template_type == "appointment":
        if not isinstance(options.get("services"), list):
            raise FlowError("Services array is required for appointment booking flow")
        flow = build_appointment_flow(
            options["services"], date_label=options.get("dateLabel"), time_label=options.get("timeLabel")
        )
    elif template_type == "survey":
        if not isinstance(options.get("questions"), list):
            raise FlowError("Questions array is required for survey flow")
        flow = build_survey_flow(options["questions"])
    elif template_type == "lead_generation":
        flow = build_lead_generation_flow(
            collect_email=options.get("collectEmail") is not False,
            collect_phone=options.get("collectPhone") is not False,
            collect_company=bool(options.get("collectCompany")),
            custom_fields=options.get("customFields"),
        )
    else:
        raise FlowError(f"Unknown template type: {template_type}")
    return flow, FLOW_TEMPLATE_TYPES[template_type][0]


def create_flow_from_template(
    client: MetaGraphClient,
    template_type: str,
    options: dict[str, Any],
    *,
    flow_name: str,
    auto_publish: bool = False,
) -> dict[str, Any]:
    flow_json, category = build_flow_from_template(template_type, options)
    errors = validate_flow_json(flow_json)
    if errors:
        raise FlowError("Generated flow JSON is invalid", validation_errors=errors)

    flow = create_flow(client, name=flow_name, categories=[category])
    flow_id = flow.get("id")
    upload = update_flow_json(client, flow_id, flow_json)
    if not upload["success"]:
        raise FlowError(
            "Flow created but its JSON was rejected", validation_errors=upload["validation_errors"], flow_id=flow_id
        )

    status = "DRAFT"
    if auto_publish:
        published = publish_flow(client, flow_id)
        if published.get("validation_errors"):
            raise FlowError(
                "Flow created but failed to publish", validation_errors=published["validation_errors"], flow_id=flow_id
            )
        status = "PUBLISHED"
    return {
        "flow_id": flow_id,
        "flow_name": flow_name,
        "status": status,
        "categories": [category],
        "flow_json": flow_json,
    }

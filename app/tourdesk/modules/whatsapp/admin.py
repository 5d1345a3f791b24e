from __future__ import annotations

import time

from flask import Blueprint, current_app, g, jsonify, request

from app.tourdesk.constants import DEFAULT_MESSAGE_FETCH_LIMIT, META_ERROR_REENGAGEMENT
from app.tourdesk.db import db_session
from app.tourdesk.models import User
from app.tourdesk.modules.whatsapp.campaigns import (
    CampaignError,
    add_recipients,
    campaign_stats,
    create_campaign,
    delete_campaign,
    list_recipients,
    run_campaign,
    serialize_campaign,
    serialize_recipient,
    set_campaign_status,
    update_campaign,
    validate_campaign_payload,
)
from app.tourdesk.modules.whatsapp.catalog import (
    create_catalog_product,
    serialize_catalog_product,
    sync_catalog_product,
    validate_catalog_product_payload,
)
from app.tourdesk.modules.whatsapp.chat import build_conversations
from app.tourdesk.modules.whatsapp.client import (
    GraphApiError,
    GraphApiNotConfigured,
    MetaGraphClient,
    client_from_config,
    get_meta_config_status,
)
from app.tourdesk.modules.whatsapp.customers import (
    CustomerImportError,
    create_customer,
    delete_customer,
    list_customers,
    parse_customer_csv,
    serialize_customer,
    tag_counts,
    update_customer,
    upsert_whatsapp_customers,
    validate_customer_payload,
)
from app.tourdesk.modules.whatsapp.flows import (
    FLOW_CATEGORIES,
    FLOW_TEMPLATE_TYPES,
    FlowError,
    create_flow,
    create_flow_from_template,
    delete_flow,
    deprecate_flow,
    get_flow,
    get_flow_json,
    get_flow_preview,
    list_flows,
    publish_flow,
    update_flow_json,
    validate_flow_json,
)
from app.tourdesk.modules.whatsapp.models import WhatsAppCampaign, WhatsAppCatalogProduct, WhatsAppCustomer
from app.tourdesk.modules.whatsapp.service import (
    check_messaging_window,
    list_messages,
    send_interactive_product,
    send_interactive_product_list,
    send_template_message,
    send_text_message,
    serialize_message,
)
from app.tourdesk.modules.whatsapp.templates import (
    analyze_template_quality,
    create_template,
    delete_template,
    extract_template_parameters,
    filter_templates,
    get_all_templates,
    get_template,
    get_templates_by_category,
    list_templates,
    preview_template,
    search_templates,
    template_summary,
    validate_template_parameters,
)
from app.tourdesk.rbac import require_permission
from app.tourdesk.utils import parse_bool, parse_int

bp = Blueprint("whatsapp", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _payload() -> dict:
    return request.get_json(silent=True) or {}


def _client() -> MetaGraphClient:
    """Graph client for this request. Tests register a fake under app.extensions."""
    return current_app.extensions.get("whatsapp_client") or client_from_config(current_app.config)


def _graph_error(e: GraphApiError):
    current_app.logger.warning("Graph API error: %s (status=%s code=%s)", e.message, e.status, e.code)
    status = 503 if isinstance(e, GraphApiNotConfigured) else 502
    return jsonify({"error": e.message, "errorCode": e.code}), status


# ---------- Config ----------
@bp.get("/whatsapp/config")
@require_permission("whatsapp.view")
def whatsapp_config():
    return jsonify(get_meta_config_status(current_app.config))


# ---------- Messages ----------
@bp.post("/whatsapp/send")
@require_permission("whatsapp.send")
def whatsapp_send():
    payload = _payload()
    to = (payload.get("to") or "").strip()
    message = payload.get("message") or ""
    if not to or not message.strip():
        return jsonify({"error": "Missing required fields: to, message"}), 400

    s = db_session()
    if parse_bool(payload.get("checkWindow"), default=True):
        window = check_messaging_window(s, to)
        if not window["canMessage"]:
            return (
                jsonify(
                    {
                        "error": "Cannot send message - customer has not messaged you recently",
                        "details": "Messages can only be sent within 24 hours of the customer's last message. "
                        "Use a template message instead.",
                        "canMessage": False,
                        "requiresTemplate": True,
                    }
                ),
                403,
            )

    result = send_text_message(
        s, _client(), to, message, _current_user(), preview_url=parse_bool(payload.get("previewUrl"), default=True)
    )
    s.commit()
    if not result.success:
        if result.error_code == META_ERROR_REENGAGEMENT:
            return (
                jsonify(
                    {
                        "error": "Message rejected - customer has not messaged you within 24 hours",
                        "details": result.error,
                        "errorCode": result.error_code,
                        "requiresTemplate": True,
                    }
                ),
                403,
            )
        return jsonify({"error": "Failed to send message", "details": result.error, "errorCode": result.error_code}), 502
    return jsonify(
        {
            "success": True,
            "messageId": result.message_id,
            "databaseId": result.record.id if result.record else None,
            "to": to,
            "message": message,
        }
    )


@bp.get("/whatsapp/send")
@require_permission("whatsapp.view")
def whatsapp_window():
    to = (request.args.get("to") or "").strip()
    if not to:
        return jsonify({"error": "Missing required parameter: to"}), 400
    return jsonify(check_messaging_window(db_session(), to))


@bp.get("/whatsapp/messages")
@require_permission("whatsapp.view")
def whatsapp_messages():
    limit = min(max(parse_int(request.args.get("limit"), DEFAULT_MESSAGE_FETCH_LIMIT) or 1, 1), 5000)
    rows = list_messages(db_session(), limit=limit, phone=request.args.get("phone") or None)
    return jsonify({"success": True, "messages": [serialize_message(m) for m in rows], "count": len(rows)})


@bp.get("/whatsapp/chat")
@require_permission("whatsapp.view")
def whatsapp_chat():
    limit = min(max(parse_int(request.args.get("limit"), DEFAULT_MESSAGE_FETCH_LIMIT) or 1, 1), 5000)
    rows = list_messages(db_session(), limit=limit)
    templates: list[dict] = []
    if parse_bool(request.args.get("withTemplates")):
        try:
            templates = get_all_templates(_client(), status="APPROVED")
        except GraphApiError as e:
            current_app.logger.warning("Chat view without templates: %s", e.message)
    return jsonify(build_conversations(rows, templates))


# ---------- Templates ----------
@bp.get("/whatsapp/templates")
@require_permission("whatsapp.view")
def whatsapp_templates():
    args = request.args
    action = args.get("action") or "list"
    status = args.get("status") or None
    category = args.get("category") or None
    language = args.get("language") or None
    client = _client()
    try:
        if action == "list":
            page = list_templates(
                client,
                limit=parse_int(args.get("limit"), 50) or 50,
                after=args.get("after") or None,
                status=status,
                category=category,
                language=language,
            )
            data = page.get("data") or []
            return jsonify({"success": True, "data": data, "paging": page.get("paging"), "count": len(data)})
        if action == "all":
            data = get_all_templates(client, status=status, category=category, language=language)
            return jsonify({"success": True, "data": data, "count": len(data)})
        if action == "search":
            name = args.get("name") or None
            content = args.get("content") or None
            if not name and not content:
                return jsonify({"success": False, "error": 'Provide "name" or "content" parameter for search'}), 400
            data = search_templates(client, name=name, content=content, status=status, category=category, language=language)
            return jsonify({"success": True, "data": data, "count": len(data)})
        if action == "analytics":
            data = get_all_templates(client, status=status, category=category, language=language)
            return jsonify(
                {
                    "success": True,
                    "analytics": analyze_template_quality(data),
                    "templates": [
                        {
                            "id": t.get("id"),
                            "name": t.get("name"),
                            "language": t.get("language"),
                            "status": t.get("status"),
                            "category": t.get("category"),
                            "quality": t.get("quality_score"),
                            "parameters": extract_template_parameters(t),
                        }
                        for t in data
                    ],
                }
            )
        if action == "approved":
            data = get_all_templates(client, status="APPROVED", category=category, language=language)
            return jsonify({"success": True, "data": data, "count": len(data)})
        if action == "by-category":
            if not category:
                return jsonify({"success": False, "error": "Category parameter required"}), 400
            data = get_templates_by_category(client, category)
            return jsonify({"success": True, "category": category, "data": data, "count": len(data)})
    except GraphApiError as e:
        return _graph_error(e)
    return jsonify({"success": False, "error": f"Unknown action: {action}"}), 400


@bp.post("/whatsapp/templates")
@require_permission("whatsapp.manage")
def whatsapp_template_create():
    payload = _payload()
    if not payload.get("name") or not payload.get("category") or not payload.get("components"):
        return jsonify({"success": False, "error": "Missing required fields"}), 400
    request_body = {
        "name": payload["name"],
        "language": payload.get("language") or "en_US",
        "category": payload["category"],
        "components": payload["components"],
    }
    if payload.get("parameter_format") or payload.get("parameterFormat"):
        request_body["parameter_format"] = payload.get("parameter_format") or payload.get("parameterFormat")
    try:
        data = create_template(_client(), request_body)
    except GraphApiError as e:
        return _graph_error(e)
    current_app.logger.info("Template %s submitted (id=%s)", request_body["name"], data.get("id"))
    return jsonify({"success": True, "template": data}), 201


@bp.delete("/whatsapp/templates")
@require_permission("whatsapp.manage")
def whatsapp_template_delete():
    name = request.args.get("name") or None
    hsm_id = request.args.get("id") or None
    if not name and not hsm_id:
        return jsonify({"success": False, "error": 'Provide either "name" or "id" parameter'}), 400
    try:
        data = delete_template(_client(), name=name, hsm_id=hsm_id)
    except GraphApiError as e:
        return _graph_error(e)
    return jsonify({"success": bool(data.get("success", True)), "deleted": name or hsm_id})


@bp.post("/whatsapp/templates/preview")
@require_permission("whatsapp.view")
def whatsapp_template_preview():
    payload = _payload()
    template = payload.get("template")
    client = _client()
    try:
        if not isinstance(template, dict):
            if payload.get("id"):
                template = get_template(client, str(payload["id"]))
            elif payload.get("name"):
                found = filter_templates(get_all_templates(client), name=payload["name"])
                if not found:
                    return jsonify({"success": False, "error": f"Template not found: {payload['name']}"}), 404
                template = found[0]
            else:
                return jsonify({"success": False, "error": 'Provide either "id" or "name" parameter'}), 400
    except GraphApiError as e:
        return _graph_error(e)

    parameters = payload.get("parameters") or {}
    return jsonify(
        {
            "success": True,
            "template": {k: template.get(k) for k in ("id", "name", "language", "status", "category")},
            "parameters": extract_template_parameters(template),
            "validation": validate_template_parameters(template, parameters),
            "preview": preview_template(template, parameters),
            "components": template.get("components") or [],
        }
    )


@bp.post("/whatsapp/template")
@require_permission("whatsapp.send")
def whatsapp_template_send():
    payload = _payload()
    to = (payload.get("to") or "").strip()
    template_name = (payload.get("templateName") or "").strip()
    if not to or not template_name:
        return jsonify({"error": "Phone number and template name are required"}), 400

    variables = payload.get("variables") or []
    if isinstance(variables, dict):
        keys = sorted((k for k in variables if str(k).isdigit()), key=int)
        body_params = [variables[k] for k in keys]
    else:
        body_params = list(variables)

    header_params = None
    if payload.get("headerImage"):
        header_params = [{"type": "image", "image": {"link": payload["headerImage"]}}]

    client = _client()
    template_meta = None
    if payload.get("templateId"):
        try:
            template_meta = template_summary(get_template(client, str(payload["templateId"])))
        except GraphApiError as e:
            current_app.logger.warning("Template %s lookup failed: %s", payload["templateId"], e.message)

    s = db_session()
    result = send_template_message(
        s,
        client,
        to,
        template_name,
        language=payload.get("language") or "en_US",
        body_params=body_params,
        header_params=header_params,
        button_params=payload.get("buttons") or None,
        template_meta=template_meta,
        user=_current_user(),
    )
    s.commit()
    if not result.success:
        return jsonify({"error": "Failed to send template message", "details": result.error, "errorCode": result.error_code}), 502
    return jsonify({"success": True, "messageId": result.message_id, "databaseId": result.record.id if result.record else None})


# ---------- Customers ----------
@bp.get("/whatsapp/customers")
@require_permission("whatsapp.view")
def whatsapp_customers_list():
    args = request.args
    tags = [t for t in (args.get("tags") or "").split(",") if t.strip()]
    opted = args.get("isOptedIn")
    result = list_customers(
        db_session(),
        search=args.get("search") or None,
        tags=tags,
        is_opted_in=parse_bool(opted) if opted not in (None, "") else None,
        skip=max(parse_int(args.get("skip"), 0) or 0, 0),
        take=min(max(parse_int(args.get("take"), 50) or 50, 1), 500),
    )
    return jsonify(
        {
            "data": [serialize_customer(c) for c in result["data"]],
            "total": result["total"],
            "tags": result["tags"],
        }
    )


@bp.post("/whatsapp/customers")
@require_permission("whatsapp.manage")
def whatsapp_customer_create():
    payload = _payload()
    errors = validate_customer_payload(payload)
    if errors:
        return jsonify({"errors": errors}), 400
    s = db_session()
    try:
        c = create_customer(s, payload, _current_user())
    except ValueError as e:
        return jsonify({"error": str(e)}), 409
    s.commit()
    return jsonify(serialize_customer(c)), 201


@bp.get("/whatsapp/customers/tags")
@require_permission("whatsapp.view")
def whatsapp_customer_tags():
    return jsonify({"tags": tag_counts(db_session())})


@bp.get("/whatsapp/customers/<int:customer_id>")
@require_permission("whatsapp.view")
def whatsapp_customer_get(customer_id: int):
    c = db_session().get(WhatsAppCustomer, customer_id)
    if not c:
        return jsonify({"error": "Customer not found"}), 404
    return jsonify(serialize_customer(c))


@bp.patch("/whatsapp/customers/<int:customer_id>")
@require_permission("whatsapp.manage")
def whatsapp_customer_update(customer_id: int):
    s = db_session()
    c = s.get(WhatsAppCustomer, customer_id)
    if not c:
        return jsonify({"error": "Customer not found"}), 404
    payload = _payload()
    errors = validate_customer_payload(payload, partial=True)
    if errors:
        return jsonify({"errors": errors}), 400
    try:
        update_customer(s, c, payload, _current_user())
    except ValueError as e:
        return jsonify({"error": str(e)}), 409
    s.commit()
    return jsonify(serialize_customer(c))


@bp.delete("/whatsapp/customers/<int:customer_id>")
@require_permission("whatsapp.manage")
def whatsapp_customer_delete(customer_id: int):
    s = db_session()
    c = s.get(WhatsAppCustomer, customer_id)
    if not c:
        return jsonify({"error": "Customer not found"}), 404
    delete_customer(s, c, _current_user())
    s.commit()
    return jsonify({"success": True})


@bp.post("/whatsapp/customers/import")
@require_permission("whatsapp.manage")
def whatsapp_customer_import():
    f = request.files.get("file")
    if not f or not f.filename:
        return jsonify({"error": "File upload is required"}), 400
    default_tags = [t.strip() for t in (request.form.get("tags") or "").split(",") if t.strip()]
    try:
        parsed = parse_customer_csv(f.read(), source_name=f.filename, default_tags=default_tags)
    except CustomerImportError as e:
        return jsonify({"error": str(e)}), 400

    summary = parsed.to_dict()
    if parse_bool(request.form.get("dryRun") or request.args.get("dryRun")):
        return jsonify({"dryRun": True, **summary})
    if not parsed.customers:
        return jsonify({"error": "No valid customer rows to import", **summary}), 422

    s = db_session()
    counts = upsert_whatsapp_customers(s, parsed.customers, _current_user(), imported_from=f.filename)
    s.commit()
    current_app.logger.info(
        "Customer CSV %s imported: created=%s updated=%s skipped=%s",
        f.filename,
        counts["created"],
        counts["updated"],
        parsed.skipped_rows,
    )
    return jsonify({**summary, **counts})


# ---------- Campaigns ----------
def _campaign_or_404(s, campaign_id: int):
    c = s.get(WhatsAppCampaign, campaign_id)
    if not c:
        return None, (jsonify({"error": "Campaign not found"}), 404)
    return c, None


@bp.get("/whatsapp/campaigns")
@require_permission("whatsapp.view")
def whatsapp_campaigns_list():
    s = db_session()
    q = s.query(WhatsAppCampaign)
    if request.args.get("status"):
        q = q.filter(WhatsAppCampaign.status == request.args["status"])
    rows = q.order_by(WhatsAppCampaign.created_at.desc(), WhatsAppCampaign.id.desc()).all()
    return jsonify({"campaigns": [serialize_campaign(c) for c in rows]})


@bp.post("/whatsapp/campaigns")
@require_permission("whatsapp.manage")
def whatsapp_campaign_create():
    payload = _payload()
    errors = validate_campaign_payload(payload)
    if errors:
        return jsonify({"errors": errors}), 400
    s = db_session()
    c = create_campaign(s, payload, _current_user())
    s.commit()
    return jsonify({"success": True, "campaign": serialize_campaign(c)}), 201


@bp.get("/whatsapp/campaigns/<int:campaign_id>")
@require_permission("whatsapp.view")
def whatsapp_campaign_get(campaign_id: int):
    s = db_session()
    c, err = _campaign_or_404(s, campaign_id)
    if err:
        return err
    return jsonify({"campaign": serialize_campaign(c), "stats": campaign_stats(s, c)})


@bp.patch("/whatsapp/campaigns/<int:campaign_id>")
@require_permission("whatsapp.manage")
def whatsapp_campaign_update(campaign_id: int):
    s = db_session()
    c, err = _campaign_or_404(s, campaign_id)
    if err:
        return err
    payload = _payload()
    try:
        if isinstance(payload.get("status"), str):
            set_campaign_status(
                s, c, payload["status"], _current_user(), scheduled_for=payload.get("scheduledFor")
            )
        else:
            update_campaign(s, c, payload, _current_user())
    except CampaignError as e:
        return jsonify({"error": e.message}), e.status
    s.commit()
    return jsonify({"success": True, "campaign": serialize_campaign(c)})


@bp.delete("/whatsapp/campaigns/<int:campaign_id>")
@require_permission("whatsapp.manage")
def whatsapp_campaign_delete(campaign_id: int):
    s = db_session()
    c, err = _campaign_or_404(s, campaign_id)
    if err:
        return err
    outcome = delete_campaign(s, c, _current_user())
    s.commit()
    return jsonify({"success": True, "message": f"Campaign {outcome}"})


@bp.get("/whatsapp/campaigns/<int:campaign_id>/recipients")
@require_permission("whatsapp.view")
def whatsapp_campaign_recipients(campaign_id: int):
    s = db_session()
    _c, err = _campaign_or_404(s, campaign_id)
    if err:
        return err
    args = request.args
    return jsonify(
        list_recipients(
            s,
            campaign_id,
            page=parse_int(args.get("page"), 1) or 1,
            limit=parse_int(args.get("limit"), 50) or 50,
            status=args.get("status") or None,
        )
    )


@bp.post("/whatsapp/campaigns/<int:campaign_id>/recipients")
@require_permission("whatsapp.manage")
def whatsapp_campaign_add_recipients(campaign_id: int):
    s = db_session()
    c, err = _campaign_or_404(s, campaign_id)
    if err:
        return err
    recipients = _payload().get("recipients")
    if not isinstance(recipients, list) or not recipients:
        return jsonify({"error": "Recipients array is required"}), 400
    try:
        added = add_recipients(s, c, recipients)
    except CampaignError as e:
        return jsonify({"error": e.message}), e.status
    s.commit()
    return jsonify({"success": True, "added": added, "totalRecipients": c.total_recipients})


@bp.post("/whatsapp/campaigns/<int:campaign_id>/send")
@require_permission("whatsapp.send")
def whatsapp_campaign_send(campaign_id: int):
    s = db_session()
    c, err = _campaign_or_404(s, campaign_id)
    if err:
        return err
    try:
        summary = run_campaign(
            s,
            c,
            _client(),
            user=_current_user(),
            sleep=current_app.extensions.get("whatsapp_sleep") or time.sleep,
            max_batch=int(current_app.config.get("WHATSAPP_CAMPAIGN_MAX_BATCH") or 500),
        )
    except CampaignError as e:
        return jsonify({"error": e.message}), e.status
    except Exception:
        s.commit()
        raise
    s.commit()
    return jsonify({"success": True, **summary, "campaign": serialize_campaign(c)})


@bp.get("/whatsapp/campaigns/<int:campaign_id>/recipients/<int:recipient_id>")
@require_permission("whatsapp.view")
def whatsapp_campaign_recipient(campaign_id: int, recipient_id: int):
    s = db_session()
    c, err = _campaign_or_404(s, campaign_id)
    if err:
        return err
    for r in c.recipients:
        if r.id == recipient_id:
            return jsonify(serialize_recipient(r))
    return jsonify({"error": "Recipient not found"}), 404


# ---------- Catalog ----------
@bp.get("/whatsapp/catalog/products")
@require_permission("whatsapp.view")
def whatsapp_catalog_list():
    s = db_session()
    q = s.query(WhatsAppCatalogProduct)
    if request.args.get("syncStatus"):
        q = q.filter(WhatsAppCatalogProduct.sync_status == request.args["syncStatus"])
    rows = q.order_by(WhatsAppCatalogProduct.name.asc()).all()
    return jsonify({"products": [serialize_catalog_product(p) for p in rows]})


@bp.post("/whatsapp/catalog/products")
@require_permission("whatsapp.manage")
def whatsapp_catalog_create():
    payload = _payload()
    errors = validate_catalog_product_payload(payload)
    if errors:
        return jsonify({"errors": errors}), 400
    s = db_session()
    try:
        p = create_catalog_product(s, payload, _current_user())
    except LookupError as e:
        return jsonify({"error": str(e)}), 404
    except ValueError as e:
        return jsonify({"error": str(e)}), 409
    s.commit()
    return jsonify(serialize_catalog_product(p)), 201


@bp.post("/whatsapp/catalog/products/<int:product_id>/sync")
@require_permission("whatsapp.manage")
def whatsapp_catalog_sync(product_id: int):
    s = db_session()
    p = s.get(WhatsAppCatalogProduct, product_id)
    if not p:
        return jsonify({"error": "Catalog product not found"}), 404
    try:
        sync_catalog_product(
            s,
            p,
            _client(),
            catalog_id=current_app.config.get("META_WHATSAPP_CATALOG_ID") or "",
            public_base_url=current_app.config.get("PUBLIC_BASE_URL") or None,
            user=_current_user(),
        )
    except GraphApiError as e:
        s.commit()
        return _graph_error(e)
    s.commit()
    return jsonify(serialize_catalog_product(p))


@bp.post("/whatsapp/catalog/share")
@require_permission("whatsapp.send")
def whatsapp_catalog_share():
    payload = _payload()
    to = (payload.get("to") or "").strip()
    if not to:
        return jsonify({"error": "Recipient phone number is required"}), 400
    catalog_id = payload.get("catalogId") or current_app.config.get("META_WHATSAPP_CATALOG_ID") or ""
    if not catalog_id:
        return jsonify({"error": "Catalog id is not configured"}), 400

    s = db_session()
    client = _client()
    retailer_ids = [r for r in (payload.get("productRetailerIds") or []) if r]
    product_ids = [parse_int(i) for i in (payload.get("productIds") or []) if parse_int(i) is not None]
    if product_ids:
        rows = s.query(WhatsAppCatalogProduct).filter(WhatsAppCatalogProduct.id.in_(product_ids)).all()
        retailer_ids += [p.retailer_id for p in rows if p.retailer_id not in retailer_ids]
    if not retailer_ids:
        return jsonify({"error": "Select at least one product to share"}), 400

    if len(retailer_ids) == 1:
        result = send_interactive_product(
            s,
            client,
            to,
            catalog_id=catalog_id,
            product_retailer_id=retailer_ids[0],
            body=payload.get("body") or None,
            footer=payload.get("footer") or None,
            user=_current_user(),
        )
    else:
        result = send_interactive_product_list(
            s,
            client,
            to,
            catalog_id=catalog_id,
            sections=[{"title": payload.get("sectionTitle") or "Tour Packages", "product_retailer_ids": retailer_ids}],
            header=payload.get("header") or "Tour Packages",
            body=payload.get("body") or "Browse our tour packages",
            footer=payload.get("footer") or None,
            user=_current_user(),
        )
    s.commit()
    if not result.success:
        return jsonify({"error": "Failed to share catalog", "details": result.error, "errorCode": result.error_code}), 502
    return jsonify({"success": True, "messageId": result.message_id, "products": retailer_ids})


# ---------- Flows ----------
def _flow_error(e: FlowError):
    body = {"success": False, "error": e.message}
    if e.validation_errors:
        body["validation_errors"] = e.validation_errors
    if e.flow_id:
        body["flow_id"] = e.flow_id
    return jsonify(body), e.status


@bp.get("/whatsapp/flows")
@require_permission("whatsapp.view")
def whatsapp_flows():
    action = request.args.get("action") or "list"
    flow_id = (request.args.get("id") or "").strip()
    client = _client()
    try:
        if action == "list":
            data = list_flows(client)
            return jsonify({"success": True, "data": data, "count": len(data)})
        if action not in ("get", "json", "preview"):
            return jsonify({"success": False, "error": f"Unknown action: {action}"}), 400
        if not flow_id:
            return jsonify({"success": False, "error": "Flow ID required"}), 400
        if action == "get":
            return jsonify({"success": True, "data": get_flow(client, flow_id)})
        if action == "json":
            return jsonify({"success": True, "data": get_flow_json(client, flow_id)})
        return jsonify({"success": True, "data": get_flow_preview(client, flow_id)})
    except FlowError as e:
        return _flow_error(e)
    except GraphApiError as e:
        return _graph_error(e)


@bp.post("/whatsapp/flows")
@require_permission("whatsapp.manage")
def whatsapp_flow_action():
    payload = _payload()
    action = payload.get("action") or "create"
    flow_id = str(payload.get("flowId") or "").strip()
    client = _client()
    try:
        if action == "create":
            name = (payload.get("name") or "").strip()
            categories = payload.get("categories")
            if not name or not isinstance(categories, list) or not categories:
                return jsonify({"success": False, "error": "Name and categories are required"}), 400
            unknown = [c for c in categories if c not in FLOW_CATEGORIES]
            if unknown:
                return jsonify({"success": False, "error": f"Unknown flow categories: {', '.join(map(str, unknown))}"}), 400
            data = create_flow(client, name=name, categories=categories, clone_flow_id=payload.get("clone_flow_id"))
            return jsonify({"success": True, "data": data, "message": "Flow created successfully"}), 201

        if action not in ("update_json", "publish", "deprecate"):
            return jsonify({"success": False, "error": f"Unknown action: {action}"}), 400
        if not flow_id:
            return jsonify({"success": False, "error": "Flow ID is required"}), 400

        if action == "update_json":
            flow_json = payload.get("flowJson")
            if not isinstance(flow_json, dict):
                return jsonify({"success": False, "error": "Flow ID and flow JSON are required"}), 400
            errors = validate_flow_json(flow_json)
            if errors:
                return jsonify({"success": False, "error": "Flow JSON is invalid", "validation_errors": errors}), 400
            result = update_flow_json(client, flow_id, flow_json)
            if not result["success"]:
                return (
                    jsonify(
                        {
                            "success": False,
                            "error": "Flow JSON validation failed",
                            "validation_errors": result["validation_errors"],
                        }
                    ),
                    400,
                )
            return jsonify({"success": True, "data": result, "message": "Flow JSON updated successfully"})

        if action == "publish":
            result = publish_flow(client, flow_id)
            if result.get("validation_errors"):
                return (
                    jsonify(
                        {
                            "success": False,
                            "error": "Flow has validation errors",
                            "validation_errors": result["validation_errors"],
                        }
                    ),
                    400,
                )
            current_app.logger.info("Flow %s published by %s", flow_id, _current_user().email)
            return jsonify({"success": True, "data": result, "message": "Flow published successfully"})

        result = deprecate_flow(client, flow_id)
        return jsonify({"success": True, "data": result, "message": "Flow deprecated successfully"})
    except GraphApiError as e:
        return _graph_error(e)


@bp.delete("/whatsapp/flows")
@require_permission("whatsapp.manage")
def whatsapp_flow_delete():
    flow_id = (request.args.get("id") or "").strip()
    if not flow_id:
        return jsonify({"success": False, "error": "Flow ID is required"}), 400
    try:
        result = delete_flow(_client(), flow_id)
    except GraphApiError as e:
        return _graph_error(e)
    return jsonify({"success": True, "data": result, "message": "Flow deleted successfully"})


@bp.get("/whatsapp/flows/templates")
@require_permission("whatsapp.view")
def whatsapp_flow_templates():
    return jsonify(
        {
            "templates": [
                {"type": key, "category": category, "description": description}
                for key, (category, description) in FLOW_TEMPLATE_TYPES.items()
            ]
        }
    )


@bp.post("/whatsapp/flows/templates")
@require_permission("whatsapp.manage")
def whatsapp_flow_from_template():
    payload = _payload()
    template_type = payload.get("type")
    if not template_type:
        return jsonify({"success": False, "error": "Template type is required"}), 400
    if template_type not in FLOW_TEMPLATE_TYPES:
        return (
            jsonify(
                {
                    "success": False,
                    "error": f"Unknown template type: {template_type}",
                    "available_types": list(FLOW_TEMPLATE_TYPES),
                }
            ),
            400,
        )
    options = payload.get("options") or {}
    auto_publish = parse_bool(payload.get("autoPublish"), default=False)
    flow_name = options.get("flowName") or f"{template_type}_flow_{int(time.time() * 1000)}"
    try:
        data = create_flow_from_template(
            _client(), template_type, options, flow_name=flow_name, auto_publish=auto_publish
        )
    except FlowError as e:
        return _flow_error(e)
    except GraphApiError as e:
        return _graph_error(e)
    message = (
        "Flow created and published successfully"
        if auto_publish
        else "Flow created successfully. Use the publish action to make it available."
    )
    return jsonify({"success": True, "data": data, "message": message}), 201

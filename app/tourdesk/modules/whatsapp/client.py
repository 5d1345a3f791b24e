from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.parse
import urllib.request
import uuid
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.facebook.com"


class GraphApiError(RuntimeError):
    def __init__(self, message: str, *, status: int | None = None, code: int | None = None, payload: Any = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code
        self.payload = payload


class GraphApiNotConfigured(GraphApiError):
    pass


def error_from_response(status: int | None, data: Any) -> GraphApiError:
    """Pick the most useful message out of a Graph error body."""
    err = data.get("error") if isinstance(data, dict) else None
    err = err if isinstance(err, dict) else {}
    details = (err.get("error_data") or {}).get("details") if isinstance(err.get("error_data"), dict) else None
    message = err.get("message") or details or f"Meta API request failed ({status})"
    code = err.get("code")
    try:
        code = int(code) if code is not None else None
    except (TypeError, ValueError):
        code = None
    return GraphApiError(message, status=status, code=code, payload=data)


def message_id_from(data: dict[str, Any]) -> str | None:
    messages = data.get("messages") if isinstance(data, dict) else None
    if isinstance(messages, list) and messages and isinstance(messages[0], dict):
        return messages[0].get("id")
    return data.get("id") if isinstance(data, dict) else None


@dataclass(frozen=True)
class MetaGraphClient:
    access_token: str
    phone_number_id: str
    business_account_id: str = ""
    api_version: str = "v22.0"
    app_id: str = ""
    app_secret: str = ""
    base_url: str = GRAPH_BASE_URL
    timeout_seconds: int = 30

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token and self.phone_number_id)

    def _url(self, path: str, params: dict[str, Any] | None = None) -> str:
        url = f"{self.base_url.rstrip('/')}/{self.api_version}/{path.lstrip('/')}"
        if params:
            url += "?" + urllib.parse.urlencode({k: v for k, v in params.items() if v is not None})
        return url

    def request_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
        retries: int = 3,
        auth: bool = True,
        data: bytes | None = None,
        content_type: str = "application/json",
    ) -> dict[str, Any]:
        if auth and not self.access_token:
            raise GraphApiNotConfigured("Missing Meta WhatsApp credentials. Set META_WHATSAPP_ACCESS_TOKEN.")
        url = self._url(path, params)
        if body is not None:
            data = json.dumps(body).encode("utf-8")

        last_err: Exception | None = None
        for attempt in range(retries + 1):
            try:
                req = urllib.request.Request(url, data=data, method=method.upper())
                if auth:
                    req.add_header("Authorization", f"Bearer {self.access_token}")
                req.add_header("Accept", "application/json")
                if data is not None:
                    req.add_header("Content-Type", content_type)
                with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                    raw = resp.read()
                    try:
                        out = json.loads(raw.decode("utf-8")) if raw else {}
                    except ValueError as e:
                        raise GraphApiError(f"Failed to parse Meta API response ({path})", status=resp.status) from e
                    if isinstance(out, dict) and out.get("error"):
                        raise error_from_response(resp.status, out)
                    return out
            except urllib.error.HTTPError as e:
                try:
                    payload = json.loads(e.read().decode("utf-8", errors="ignore") or "{}")
                except ValueError:
                    payload = {}
                if e.code == 429:
                    time.sleep(min(2 * (attempt + 1), 10))
                    last_err = error_from_response(429, payload)
                    continue
                raise error_from_response(e.code, payload) from e
            except (urllib.error.URLError, TimeoutError) as e:
                last_err = e
                logger.warning("Graph API %s %s failed (attempt %s): %s", method, path, attempt + 1, e)
                time.sleep(min(1 * (attempt + 1), 5))
                continue
        if isinstance(last_err, GraphApiError):
            raise last_err
        raise GraphApiError(f"Meta API request failed after retries: {last_err}")

    def upload_file(
        self,
        path: str,
        *,
        filename: str,
        content: bytes,
        content_type: str = "application/octet-stream",
        fields: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """multipart/form-data POST with one file part plus plain form fields."""
        boundary = f"tourdesk-{uuid.uuid4().hex}"
        parts: list[bytes] = []
        for name, value in (fields or {}).items():
            parts.append(
                f'--{boundary}\r\nContent-Disposition: form-data; name="{name}"\r\n\r\n{value}\r\n'.encode("utf-8")
            )
        parts.append(
            (
                f'--{boundary}\r\nContent-Disposition: form-data; name="file"; filename="{filename}"\r\n'
                f"Content-Type: {content_type}\r\n\r\n"
            ).encode("utf-8")
            + content
            + b"\r\n"
        )
        parts.append(f"--{boundary}--\r\n".encode("utf-8"))
        return self.request_json(
            "POST", path, data=b"".join(parts), content_type=f"multipart/form-data; boundary={boundary}"
        )

    def download(self, url: str) -> bytes:
        """Fetch a signed asset URL returned by Graph (no bearer token)."""
        try:
            with urllib.request.urlopen(urllib.request.Request(url, method="GET"), timeout=self.timeout_seconds) as resp:
                return resp.read()
        except urllib.error.HTTPError as e:
            raise GraphApiError(f"Failed to download asset ({e.code})", status=e.code) from e
        except (urllib.error.URLError, TimeoutError) as e:
            raise GraphApiError(f"Failed to download asset: {e}") from e

    # ---------- Messaging ----------
    def send_message(self, payload: dict[str, Any]) -> dict[str, Any]:
        if not self.is_configured:
            raise GraphApiNotConfigured(
                "Missing Meta WhatsApp credentials. Please set META_WHATSAPP_ACCESS_TOKEN and META_WHATSAPP_PHONE_NUMBER_ID"
            )
        # POST is not idempotent: a retried send could deliver twice.
        return self.request_json("POST", f"{self.phone_number_id}/messages", body=payload, retries=0)

    # ---------- Auth ----------
    def exchange_token_for_long_lived(self, short_lived_token: str) -> dict[str, Any] | None:
        """Swap a short-lived user token for a ~60 day token. Needs app id + secret."""
        if not self.app_id or not self.app_secret:
            logger.error("META_APP_ID and META_APP_SECRET are required for token exchange")
            return None
        data = self.request_json(
            "GET",
            "oauth/access_token",
            params={
                "grant_type": "fb_exchange_token",
                "client_id": self.app_id,
                "client_secret": self.app_secret,
                "fb_exchange_token": short_lived_token,
            },
            auth=False,
        )
        if not data.get("access_token"):
            logger.error("Token exchange failed: %s", data)
            return None
        return {"access_token": data["access_token"], "expires_in": data.get("expires_in") or 5184000}


def client_from_config(config: dict) -> MetaGraphClient:
    return MetaGraphClient(
        access_token=(config.get("META_WHATSAPP_ACCESS_TOKEN") or "").strip(),
        phone_number_id=(config.get("META_WHATSAPP_PHONE_NUMBER_ID") or "").strip(),
        business_account_id=(config.get("META_WHATSAPP_BUSINESS_ACCOUNT_ID") or "").strip(),
        api_version=(config.get("META_GRAPH_API_VERSION") or "v22.0").strip(),
        app_id=(config.get("META_APP_ID") or "").strip(),
        app_secret=(config.get("META_APP_SECRET") or "").strip(),
    )


def get_meta_config_status(config: dict) -> dict[str, Any]:
    has = {k: bool((config.get(k) or "").strip()) for k in (
        "META_WHATSAPP_PHONE_NUMBER_ID",
        "META_WHATSAPP_ACCESS_TOKEN",
        "META_WHATSAPP_BUSINESS_ACCOUNT_ID",
        "META_APP_ID",
        "META_APP_SECRET",
        "META_WEBHOOK_VERIFY_TOKEN",
        "META_WHATSAPP_CATALOG_ID",
    )}
    return {
        "hasPhoneNumberId": has["META_WHATSAPP_PHONE_NUMBER_ID"],
        "hasAccessToken": has["META_WHATSAPP_ACCESS_TOKEN"],
        "hasBusinessAccountId": has["META_WHATSAPP_BUSINESS_ACCOUNT_ID"],
        "hasAppId": has["META_APP_ID"],
        "hasAppSecret": has["META_APP_SECRET"],
        "hasWebhookToken": has["META_WEBHOOK_VERIFY_TOKEN"],
        "hasCatalogId": has["META_WHATSAPP_CATALOG_ID"],
        "apiVersion": config.get("META_GRAPH_API_VERSION") or "v22.0",
        "isFullyConfigured": has["META_WHATSAPP_PHONE_NUMBER_ID"] and has["META_WHATSAPP_ACCESS_TOKEN"],
        "hasProductionAuth": has["META_APP_ID"] and has["META_APP_SECRET"],
    }

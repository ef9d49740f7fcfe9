"""
compliancehub - HTTP client for the compliance application API.

Provides both synchronous and asynchronous clients.
"""

import asyncio
import logging
import time
from datetime import date
from typing import Any, Iterator, Optional, Union

import httpx

from .exceptions import (
    APIError,
    AuthenticationError,
    AuthorizationError,
    ComplianceError,
    ConflictError,
    FieldError,
    NotFoundError,
    UnresolvedFileReferenceError,
    ValidationError,
)
from .models import Application, ApplicationStatus, ComplianceType, FormSchema, Page, UploadTicket
from .validation import (
    validate_application_create,
    validate_country_code,
    validate_email,
    validate_file_names,
    validate_in_list,
    validate_required,
    validate_uuid,
)

logger = logging.getLogger("compliancehub.client")

RETRYABLE_STATUS = {500, 502, 503, 504}


def _body(response: httpx.Response) -> dict:
    if not response.content:
        return {}
    try:
        data = response.json()
    except ValueError:
        return {"detail": response.text}
    return data if isinstance(data, dict) else {"detail": data}


def _handle_response(response: httpx.Response) -> Any:
    """Handle HTTP response and raise appropriate exceptions."""
    if response.status_code < 400:
        return response.json() if response.content else {}

    data = _body(response)
    detail = data.get("detail") or f"Request failed with status {response.status_code}"
    if response.status_code == 400:
        errors = [
            FieldError(e.get("field", ""), e.get("code", "invalid"), e.get("message", ""))
            for e in data.get("errors", [])
            if isinstance(e, dict)
        ]
        if errors and all(e.code == "unresolved_file" for e in errors):
            raise UnresolvedFileReferenceError(detail, errors=errors, status_code=400, response=data)
        raise ValidationError(detail, errors=errors, status_code=400, response=data)
    elif response.status_code == 401:
        raise AuthenticationError(detail, status_code=401, response=data)
    elif response.status_code == 403:
        raise AuthorizationError(detail, status_code=403, response=data)
    elif response.status_code == 404:
        raise NotFoundError(detail, status_code=404, response=data)
    elif response.status_code == 409:
        raise ConflictError(detail, status_code=409, response=data)
    elif response.status_code >= 500:
        raise APIError(detail, status_code=response.status_code, response=data)
    raise ComplianceError(detail, status_code=response.status_code, response=data)


def _application_payload(
    home_country: str,
    host_countries: list[str],
    compliance_type: Union[str, ComplianceType],
    start_date: Union[str, date],
    expiry_date: Union[str, date],
    fields: Optional[dict[str, Any]],
    uploaded_files: Optional[list[str]],
) -> dict[str, Any]:
    kind = compliance_type.value if isinstance(compliance_type, ComplianceType) else compliance_type
    start = start_date.isoformat() if isinstance(start_date, date) else start_date
    expiry = expiry_date.isoformat() if isinstance(expiry_date, date) else expiry_date
    validate_application_create(home_country, host_countries, kind, start, expiry)
    return {
        "home_country": home_country,
        "host_countries": host_countries,
        "compliance_type": kind,
        "start_date": start,
        "expiry_date": expiry,
        "fields": fields or {},
        "uploaded_files": uploaded_files or [],
    }


def _page(data: dict) -> Page:
    return Page(
        count=data.get("count", 0),
        next=data.get("next"),
        previous=data.get("previous"),
        results=[Application.from_dict(a) for a in data.get("results", [])],
    )


def _list_params(page: int, page_size: Optional[int], filters: dict[str, Any]) -> dict[str, Any]:
    status = filters.get("status")
    if status is not None:
        validate_in_list(status.upper(), "status", [s.value for s in ApplicationStatus])
    params: dict[str, Any] = {"page": page}
    if page_size is not None:
        params["page_size"] = page_size
    params.update({k: v for k, v in filters.items() if v is not None})
    return params


class ComplianceClient:
    """
    Synchronous client for the compliance application API.

    Example:
        ```python
        client = ComplianceClient(base_url="https://api.example.com", tenant="acme")
        client.login("ops@acme.example", "secret")

        schema = client.get_fields("US", "COC")
        tickets = client.request_upload_urls(["passport.pdf"])
        client.upload(tickets[0], open("passport.pdf", "rb").read())

        application = client.submit_application(
            home_country="US",
            host_countries=["DE"],
            compliance_type="COC",
            start_date="2026-01-01",
            expiry_date="2026-12-31",
            fields={"employee_first_name": "John", ...},
            uploaded_files=[tickets[0].object_key],
        )
        ```

    Schema fetches, upload URL issuance and listings are retried on server
    faults; submissions never are, since the API has no deduplication key.
    """

    def __init__(
        self,
        base_url: str,
        tenant: str,
        id_token: Optional[str] = None,
        timeout: float = 30.0,
        max_retries: int = 2,
        retry_backoff: float = 0.5,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.tenant = tenant
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._client = httpx.Client(
            base_url=self.base_url,
            headers={"Version": tenant, "Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )
        if id_token:
            self.set_token(id_token)

    def set_token(self, id_token: str) -> None:
        self._client.headers["Authorization"] = f"Bearer {id_token}"

    def _request(self, method: str, path: str, idempotent: bool = False, **kwargs: Any) -> Any:
        attempts = self.max_retries + 1 if idempotent else 1
        for attempt in range(attempts):
            last = attempt == attempts - 1
            try:
                response = self._client.request(method, path, **kwargs)
            except httpx.TransportError as e:
                if last:
                    raise APIError(f"Request to {path} failed: {e}") from e
                logger.warning(f"{method} {path} failed ({e}), retrying")
            else:
                if response.status_code not in RETRYABLE_STATUS or last:
                    return _handle_response(response)
                logger.warning(f"{method} {path} returned {response.status_code}, retrying")
            time.sleep(self.retry_backoff * (2 ** attempt))

    # ==================== Authentication ====================

    def login(self, email: str, password: str) -> dict:
        """Exchange credentials for tokens and use the id token from now on."""
        validate_required(email, "email")
        validate_email(email, "email")
        validate_required(password, "password")
        tokens = self._request(
            "POST", "/api/users/token/", json={"email": email, "password": password}
        )
        self.set_token(tokens["id_token"])
        return tokens

    # ==================== Schemas ====================

    def list_forms(self) -> list[dict]:
        return self._request("GET", "/api/compliance/forms", idempotent=True)["forms"]

    def get_fields(
        self,
        country: str,
        form_type: Union[str, ComplianceType],
        host_country: Optional[str] = None,
    ) -> FormSchema:
        """
        Fetch the dynamic form schema for a jurisdiction.

        Args:
            country: Home country (ISO 3166-1 alpha-2).
            form_type: Compliance type, e.g. ``"COC"``.
            host_country: Optional host country for host-specific variants.

        Returns:
            The FormSchema with its conditional field tree.
        """
        validate_country_code(country, "country")
        validate_country_code(host_country, "host_country")
        kind = form_type.value if isinstance(form_type, ComplianceType) else form_type
        params = {"country": country, "form_type": kind}
        if host_country:
            params["host_country"] = host_country
        data = self._request("GET", "/api/compliance/fields", idempotent=True, params=params)
        return FormSchema.from_dict(data, source="server")

    def evaluate_fields(
        self,
        country: str,
        form_type: Union[str, ComplianceType],
        fields: dict[str, Any],
        host_countries: Optional[list[str]] = None,
    ) -> list[dict]:
        """Ask the server which fields are active for a partial set of answers."""
        kind = form_type.value if isinstance(form_type, ComplianceType) else form_type
        data = self._request(
            "POST",
            "/api/compliance/fields/evaluate",
            idempotent=True,
            json={
                "country": country,
                "form_type": kind,
                "host_countries": host_countries or [],
                "fields": fields,
            },
        )
        return data["active_fields"]

    # ==================== Uploads ====================

    def request_upload_urls(self, file_names: list[str]) -> list[UploadTicket]:
        validate_file_names(file_names)
        data = self._request(
            "POST",
            "/api/compliance/document_upload_url/",
            idempotent=True,
            json={"file_names": file_names},
        )
        return [UploadTicket.from_dict(t) for t in data]

    def upload(
        self,
        ticket: UploadTicket,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> dict:
        """PUT a blob to its pre-signed URL. The URL carries its own credentials."""
        request = self._client.build_request(
            "PUT", ticket.pre_signed_url, content=data, headers={"Content-Type": content_type}
        )
        request.headers.pop("Authorization", None)
        request.headers.pop("Version", None)
        return _handle_response(self._client.send(request))

    # ==================== Applications ====================

    def submit_application(
        self,
        home_country: str,
        host_countries: list[str],
        compliance_type: Union[str, ComplianceType],
        start_date: Union[str, date],
        expiry_date: Union[str, date],
        fields: Optional[dict[str, Any]] = None,
        uploaded_files: Optional[list[str]] = None,
    ) -> Application:
        """
        File a compliance application.

        Raises:
            ValidationError: Field-scoped problems, see ``errors``.
            UnresolvedFileReferenceError: A referenced object key has no upload.
            NotFoundError: No schema for the country / compliance type.
        """
        payload = _application_payload(
            home_country, host_countries, compliance_type, start_date, expiry_date,
            fields, uploaded_files,
        )
        data = self._request("POST", "/api/compliance/requests/create", json=payload)
        return Application.from_dict(data)

    def get_application(self, application_id: str) -> Application:
        validate_uuid(application_id, "application_id")
        data = self._request(
            "GET", f"/api/compliance/compliance-requests/{application_id}", idempotent=True
        )
        return Application.from_dict(data)

    def list_applications(
        self,
        page: int = 1,
        page_size: Optional[int] = None,
        status: Optional[str] = None,
        compliance_type: Optional[str] = None,
        home_country: Optional[str] = None,
        host_country: Optional[str] = None,
    ) -> Page:
        params = _list_params(
            page,
            page_size,
            {
                "status": status,
                "compliance_type": compliance_type,
                "home_country": home_country,
                "host_country": host_country,
            },
        )
        data = self._request(
            "GET", "/api/compliance/compliance-requests/", idempotent=True, params=params
        )
        return _page(data)

    def iter_applications(self, page_size: Optional[int] = None, **filters: Any) -> Iterator[Application]:
        """Yield applications across all pages, newest first."""
        page = 1
        while True:
            result = self.list_applications(page=page, page_size=page_size, **filters)
            yield from result.results
            if not result.has_next:
                return
            page += 1

    def close(self) -> None:
        """Close the HTTP client connection."""
        self._client.close()

    def __enter__(self) -> "ComplianceClient":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class AsyncComplianceClient:
    """
    Asynchronous client for the compliance application API.

    Example:
        ```python
        async with AsyncComplianceClient(
            base_url="https://api.example.com", tenant="acme"
        ) as client:
            await client.login("ops@acme.example", "secret")
            schema = await client.get_fields("US", "COC")
        ```
    """

    def __init__(
        self,
        base_url: str,
        tenant: str,
        id_token: Optional[str] = None,
        timeout: float = 30.0,
        max_retries: int = 2,
        retry_backoff: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.tenant = tenant
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Version": tenant, "Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )
        if id_token:
            self.set_token(id_token)

    def set_token(self, id_token: str) -> None:
        self._client.headers["Authorization"] = f"Bearer {id_token}"

    async def _request(self, method: str, path: str, idempotent: bool = False, **kwargs: Any) -> Any:
        attempts = self.max_retries + 1 if idempotent else 1
        for attempt in range(attempts):
            last = attempt == attempts - 1
            try:
                response = await self._client.request(method, path, **kwargs)
            except httpx.TransportError as e:
                if last:
                    raise APIError(f"Request to {path} failed: {e}") from e
                logger.warning(f"{method} {path} failed ({e}), retrying")
            else:
                if response.status_code not in RETRYABLE_STATUS or last:
                    return _handle_response(response)
                logger.warning(f"{method} {path} returned {response.status_code}, retrying")
            await asyncio.sleep(self.retry_backoff * (2 ** attempt))

    async def login(self, email: str, password: str) -> dict:
        validate_required(email, "email")
        validate_email(email, "email")
        validate_required(password, "password")
        tokens = await self._request(
            "POST", "/api/users/token/", json={"email": email, "password": password}
        )
        self.set_token(tokens["id_token"])
        return tokens

    async def list_forms(self) -> list[dict]:
        data = await self._request("GET", "/api/compliance/forms", idempotent=True)
        return data["forms"]

    async def get_fields(
        self,
        country: str,
        form_type: Union[str, ComplianceType],
        host_country: Optional[str] = None,
    ) -> FormSchema:
        validate_country_code(country, "country")
        validate_country_code(host_country, "host_country")
        kind = form_type.value if isinstance(form_type, ComplianceType) else form_type
        params = {"country": country, "form_type": kind}
        if host_country:
            params["host_country"] = host_country
        data = await self._request("GET", "/api/compliance/fields", idempotent=True, params=params)
        return FormSchema.from_dict(data, source="server")

    async def evaluate_fields(
        self,
        country: str,
        form_type: Union[str, ComplianceType],
        fields: dict[str, Any],
        host_countries: Optional[list[str]] = None,
    ) -> list[dict]:
        kind = form_type.value if isinstance(form_type, ComplianceType) else form_type
        data = await self._request(
            "POST",
            "/api/compliance/fields/evaluate",
            idempotent=True,
            json={
                "country": country,
                "form_type": kind,
                "host_countries": host_countries or [],
                "fields": fields,
            },
        )
        return data["active_fields"]

    async def request_upload_urls(self, file_names: list[str]) -> list[UploadTicket]:
        validate_file_names(file_names)
        data = await self._request(
            "POST",
            "/api/compliance/document_upload_url/",
            idempotent=True,
            json={"file_names": file_names},
        )
        return [UploadTicket.from_dict(t) for t in data]

    async def upload(
        self,
        ticket: UploadTicket,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> dict:
        request = self._client.build_request(
            "PUT", ticket.pre_signed_url, content=data, headers={"Content-Type": content_type}
        )
        request.headers.pop("Authorization", None)
        request.headers.pop("Version", None)
        return _handle_response(await self._client.send(request))

    async def submit_application(
        self,
        home_country: str,
        host_countries: list[str],
        compliance_type: Union[str, ComplianceType],
        start_date: Union[str, date],
        expiry_date: Union[str, date],
        fields: Optional[dict[str, Any]] = None,
        uploaded_files: Optional[list[str]] = None,
    ) -> Application:
        payload = _application_payload(
            home_country, host_countries, compliance_type, start_date, expiry_date,
            fields, uploaded_files,
        )
        data = await self._request("POST", "/api/compliance/requests/create", json=payload)
        return Application.from_dict(data)

    async def get_application(self, application_id: str) -> Application:
        validate_uuid(application_id, "application_id")
        data = await self._request(
            "GET", f"/api/compliance/compliance-requests/{application_id}", idempotent=True
        )
        return Application.from_dict(data)

    async def list_applications(
        self,
        page: int = 1,
        page_size: Optional[int] = None,
        status: Optional[str] = None,
        compliance_type: Optional[str] = None,
        home_country: Optional[str] = None,
        host_country: Optional[str] = None,
    ) -> Page:
        params = _list_params(
            page,
            page_size,
            {
                "status": status,
                "compliance_type": compliance_type,
                "home_country": home_country,
                "host_country": host_country,
            },
        )
        data = await self._request(
            "GET", "/api/compliance/compliance-requests/", idempotent=True, params=params
        )
        return _page(data)

    async def close(self) -> None:
        """Close the HTTP client connection."""
        await self._client.aclose()

    async def __aenter__(self) -> "AsyncComplianceClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

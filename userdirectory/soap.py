"""SOAP 1.1 adapter for the user directory.

Envelopes posted to the SOAP path are parsed into an operation name plus a
plain argument dictionary, dispatched to the matching handler in an
:class:`OperationRegistry`, and answered with either a ``<OpResponse>``
element or a ``soap:Fault``. The WSDL served under ``?wsdl`` describes the
same operation set.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

import anyio
from fastapi import FastAPI, Request, Response

from .config import Settings
from .directory import UserDirectory
from .errors import DirectoryError, ErrorKind, MalformedRequestError, UserValidationError
from .models import User, format_timestamp

logger = logging.getLogger("userdirectory.soap")

SOAP_ENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"
SERVICE_NS = "http://www.example.com/soap/user"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"

XML_MEDIA_TYPE = "text/xml; charset=utf-8"
WSDL_PATH = Path(__file__).resolve().with_name("user.wsdl")

SOAP_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, SOAPAction, Authorization",
}

FAULT_CODE_BY_KIND: Mapping[ErrorKind, str] = {
    ErrorKind.VALIDATION: "Client",
    ErrorKind.CONFLICT: "Client",
    ErrorKind.NOT_FOUND: "Client",
    ErrorKind.MALFORMED_REQUEST: "Client",
    ErrorKind.STORE_FAILURE: "Server",
}

ET.register_namespace("soap", SOAP_ENV_NS)
ET.register_namespace("tns", SERVICE_NS)

USER_SCHEMA = {"name": "string", "email": "string", "age": "int", "role": "string"}


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


# ----------------------------------------------------------------------
# Wire shape
# ----------------------------------------------------------------------
def user_to_soap(user: User) -> Dict[str, Any]:
    """Flatten a user into the record shape declared by the WSDL."""

    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "age": user.age,
        "role": user.role,
        "createdAt": format_timestamp(user.created_at),
    }


def _read_scalar(element: ET.Element, kind: str) -> Any:
    if element.get(f"{{{XSI_NS}}}nil") in ("true", "1"):
        return None
    text = element.text or ""
    if kind == "int":
        try:
            return int(text.strip())
        except ValueError:
            return text
    return text


def _read_arguments(element: ET.Element, schema: Mapping[str, Any]) -> Dict[str, Any]:
    arguments: Dict[str, Any] = {}
    for child in element:
        name = _local_name(child.tag)
        kind = schema.get(name)
        if kind is None:
            continue
        if isinstance(kind, Mapping):
            if child.get(f"{{{XSI_NS}}}nil") in ("true", "1"):
                arguments[name] = None
            else:
                arguments[name] = _read_arguments(child, kind)
        else:
            arguments[name] = _read_scalar(child, kind)
    return arguments


def _append_value(parent: ET.Element, name: str, value: Any) -> None:
    if isinstance(value, (list, tuple)):
        for item in value:
            _append_value(parent, name, item)
        return
    element = ET.SubElement(parent, f"{{{SERVICE_NS}}}{name}")
    if isinstance(value, Mapping):
        for key, item in value.items():
            _append_value(element, key, item)
    elif isinstance(value, bool):
        element.text = "true" if value else "false"
    elif value is not None:
        element.text = str(value)


def _envelope() -> tuple[ET.Element, ET.Element]:
    envelope = ET.Element(f"{{{SOAP_ENV_NS}}}Envelope")
    body = ET.SubElement(envelope, f"{{{SOAP_ENV_NS}}}Body")
    return envelope, body


def _serialize(envelope: ET.Element) -> bytes:
    return ET.tostring(envelope, encoding="utf-8", xml_declaration=True)


def render_result(operation: str, result: Mapping[str, Any]) -> bytes:
    envelope, body = _envelope()
    response = ET.SubElement(body, f"{{{SERVICE_NS}}}{operation}Response")
    _append_value(response, "result", result)
    return _serialize(envelope)


def render_fault(code: str, message: str) -> bytes:
    envelope, body = _envelope()
    fault = ET.SubElement(body, f"{{{SOAP_ENV_NS}}}Fault")
    ET.SubElement(fault, "faultcode").text = f"soap:{code}"
    ET.SubElement(fault, "faultstring").text = message
    return _serialize(envelope)


# ----------------------------------------------------------------------
# Operations
# ----------------------------------------------------------------------
OperationHandler = Callable[[UserDirectory, Dict[str, Any]], Dict[str, Any]]


@dataclass(frozen=True)
class SoapOperation:
    name: str
    error_context: str
    schema: Mapping[str, Any]
    handler: OperationHandler


class OperationRegistry:
    """Named SOAP operations available on the service port."""

    def __init__(self, operations: Iterable[SoapOperation] = ()) -> None:
        self._operations: Dict[str, SoapOperation] = {}
        for operation in operations:
            self.register(operation)

    def register(self, operation: SoapOperation) -> None:
        if operation.name in self._operations:
            raise ValueError(f"SOAP operation '{operation.name}' is already registered")
        self._operations[operation.name] = operation

    def get(self, name: str) -> Optional[SoapOperation]:
        return self._operations.get(name)

    def names(self) -> List[str]:
        return list(self._operations)


def _user_id(args: Mapping[str, Any]) -> str:
    return str(args.get("id") or "").strip()


def build_default_registry(*, max_limit: int = 100) -> OperationRegistry:
    """Return the operation set published in ``user.wsdl``."""

    def get_all_users(directory: UserDirectory, args: Dict[str, Any]) -> Dict[str, Any]:
        page = directory.list_users(args.get("page"), args.get("limit"), max_limit=max_limit)
        return {"users": [user_to_soap(user) for user in page.users], "total": page.total}

    def get_user_by_id(directory: UserDirectory, args: Dict[str, Any]) -> Dict[str, Any]:
        return user_to_soap(directory.get_user(_user_id(args)))

    def create_user(directory: UserDirectory, args: Dict[str, Any]) -> Dict[str, Any]:
        return user_to_soap(directory.create_user(args.get("user") or {}))

    def update_user(directory: UserDirectory, args: Dict[str, Any]) -> Dict[str, Any]:
        user_id = _user_id(args)
        if not user_id:
            raise UserValidationError("User ID is required")
        updated = directory.update_user(user_id, args.get("user") or {})
        return {"success": True, "message": f"User {updated.name} updated successfully"}

    def delete_user(directory: UserDirectory, args: Dict[str, Any]) -> Dict[str, Any]:
        deleted = directory.delete_user(_user_id(args))
        return {"success": True, "message": f"User {deleted.name} deleted successfully"}

    def search_users(directory: UserDirectory, args: Dict[str, Any]) -> Dict[str, Any]:
        result = directory.search_users(args.get("query") or "")
        return {"users": [user_to_soap(user) for user in result.users], "total": result.total}

    return OperationRegistry(
        [
            SoapOperation("GetAllUsers", "Error fetching users", {"page": "int", "limit": "int"}, get_all_users),
            SoapOperation("GetUserById", "Error fetching user", {"id": "string"}, get_user_by_id),
            SoapOperation("CreateUser", "Error creating user", {"user": USER_SCHEMA}, create_user),
            SoapOperation(
                "UpdateUser",
                "Error updating user",
                {"id": "string", "user": USER_SCHEMA},
                update_user,
            ),
            SoapOperation("DeleteUser", "Error deleting user", {"id": "string"}, delete_user),
            SoapOperation("SearchUsers", "Error searching users", {"query": "string"}, search_users),
        ]
    )


# ----------------------------------------------------------------------
# Envelope processing
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class SoapCall:
    operation: SoapOperation
    arguments: Dict[str, Any]


@dataclass(frozen=True)
class SoapReply:
    status_code: int
    body: bytes

    @property
    def is_fault(self) -> bool:
        return self.status_code != 200


def _action_name(soap_action: Optional[str]) -> str:
    if not soap_action:
        return ""
    cleaned = soap_action.strip().strip('"').strip()
    for separator in ("#", "/"):
        cleaned = cleaned.rsplit(separator, 1)[-1]
    return cleaned


def parse_envelope(
    payload: bytes,
    registry: OperationRegistry,
    *,
    soap_action: Optional[str] = None,
) -> SoapCall:
    """Decode a SOAP envelope into the operation it invokes and its arguments."""

    if not payload or not payload.strip():
        raise MalformedRequestError("Invalid SOAP request: empty body")
    try:
        root = ET.fromstring(payload)
    except ET.ParseError as exc:
        raise MalformedRequestError(f"Invalid SOAP request: {exc}") from exc

    if root.tag != f"{{{SOAP_ENV_NS}}}Envelope":
        raise MalformedRequestError("Invalid SOAP request: root element is not a SOAP 1.1 Envelope")
    body = root.find(f"{{{SOAP_ENV_NS}}}Body")
    if body is None:
        raise MalformedRequestError("Invalid SOAP request: envelope has no Body")
    request_element = next(iter(body), None)
    if request_element is None:
        raise MalformedRequestError("Invalid SOAP request: Body is empty")

    element_name = _local_name(request_element.tag)
    if element_name.endswith("Request"):
        element_name = element_name[: -len("Request")]

    operation = registry.get(_action_name(soap_action)) or registry.get(element_name)
    if operation is None:
        raise MalformedRequestError(f"Invalid SOAP request: unknown operation '{element_name}'")

    return SoapCall(operation=operation, arguments=_read_arguments(request_element, operation.schema))


class SoapService:
    """Processes SOAP envelopes against a :class:`UserDirectory`."""

    def __init__(
        self,
        directory: UserDirectory,
        *,
        registry: OperationRegistry | None = None,
        wsdl_path: Path = WSDL_PATH,
    ) -> None:
        self._directory = directory
        self._registry = registry or build_default_registry()
        self._wsdl_path = wsdl_path
        self._wsdl: bytes | None = None

    @property
    def registry(self) -> OperationRegistry:
        return self._registry

    def wsdl(self) -> bytes:
        if self._wsdl is None:
            self._wsdl = self._wsdl_path.read_bytes()
        return self._wsdl

    def handle(self, payload: bytes, soap_action: Optional[str] = None) -> SoapReply:
        """Process one envelope and return the serialised response or fault."""

        try:
            call = parse_envelope(payload, self._registry, soap_action=soap_action)
        except MalformedRequestError as exc:
            logger.warning("Rejected SOAP request: %s", exc.message)
            return SoapReply(500, render_fault(FAULT_CODE_BY_KIND[exc.kind], exc.message))

        operation = call.operation
        logger.info("SOAP %s", operation.name)
        try:
            result = operation.handler(self._directory, call.arguments)
        except DirectoryError as exc:
            if exc.kind is ErrorKind.STORE_FAILURE:
                logger.error("Store failure during %s: %s", operation.name, exc.message)
            message = f"{operation.error_context}: {exc.message}"
            return SoapReply(500, render_fault(FAULT_CODE_BY_KIND[exc.kind], message))
        except Exception as exc:
            logger.exception("Unexpected error during SOAP %s", operation.name)
            return SoapReply(500, render_fault("Server", f"{operation.error_context}: {exc}"))

        return SoapReply(200, render_result(operation.name, result))


def _xml_response(reply: SoapReply) -> Response:
    return Response(
        content=reply.body,
        status_code=reply.status_code,
        media_type=XML_MEDIA_TYPE,
        headers=SOAP_CORS_HEADERS,
    )


def create_soap_app(service: SoapService, settings: Settings) -> FastAPI:
    """Instantiate the application that owns the SOAP path."""

    app = FastAPI(
        title=f"{settings.service_name} SOAP endpoint",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.soap_service = service
    soap_path = settings.soap_path

    @app.options(soap_path)
    async def preflight() -> Response:
        return Response(status_code=200, headers=SOAP_CORS_HEADERS)

    @app.get(soap_path)
    async def describe(request: Request) -> Response:
        if any(key.lower() == "wsdl" for key in request.query_params.keys()):
            return Response(
                content=service.wsdl(),
                media_type=XML_MEDIA_TYPE,
                headers=SOAP_CORS_HEADERS,
            )
        message = "Invalid SOAP request: POST an envelope or GET ?wsdl for the service description"
        return _xml_response(SoapReply(500, render_fault("Client", message)))

    @app.post(soap_path)
    async def invoke(request: Request) -> Response:
        payload = await request.body()
        reply = await anyio.to_thread.run_sync(
            service.handle,
            payload,
            request.headers.get("soapaction"),
        )
        return _xml_response(reply)

    @app.api_route(soap_path + "/{remainder:path}", methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"])
    async def unknown_endpoint(remainder: str) -> Response:
        message = f"Invalid SOAP request: unknown endpoint '{soap_path}/{remainder}'"
        return _xml_response(SoapReply(500, render_fault("Client", message)))

    return app


__all__ = [
    "FAULT_CODE_BY_KIND",
    "OperationRegistry",
    "SoapOperation",
    "SoapReply",
    "SoapService",
    "build_default_registry",
    "create_soap_app",
    "parse_envelope",
    "render_fault",
    "render_result",
    "user_to_soap",
]

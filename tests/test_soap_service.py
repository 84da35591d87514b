"""End-to-end tests for the SOAP endpoint."""

from __future__ import annotations

import sys
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from userdirectory.config import Settings
from userdirectory.database import Database
from userdirectory.service import create_app
from userdirectory.soap import SERVICE_NS, SOAP_ENV_NS

NS = {"soap": SOAP_ENV_NS, "tns": SERVICE_NS}


def _envelope(body: str) -> str:
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<soapenv:Envelope
  xmlns:soapenv="http://schemas.xmlsoap.org/soap/envelope/"
  xmlns:usr="{SERVICE_NS}">
  <soapenv:Header/>
  <soapenv:Body>
{body}
  </soapenv:Body>
</soapenv:Envelope>"""


def _user_xml(**fields) -> str:
    parts = "".join(f"<usr:{key}>{value}</usr:{key}>" for key, value in fields.items())
    return f"<usr:user>{parts}</usr:user>"


@pytest.fixture()
def client(tmp_path: Path):
    database = Database(tmp_path / "directory.sqlite3")
    app = create_app(settings=Settings(database_path=database.path), store=database)
    with TestClient(app) as test_client:
        yield test_client


def _call(client: TestClient, operation: str, inner: str, *, action: Optional[str] = None):
    body = _envelope(f"<usr:{operation}Request>{inner}</usr:{operation}Request>")
    response = client.post(
        "/soap",
        content=body.encode("utf-8"),
        headers={
            "Content-Type": "text/xml; charset=utf-8",
            "SOAPAction": action if action is not None else operation,
        },
    )
    return response, ET.fromstring(response.content)


def _result(root: ET.Element, operation: str) -> ET.Element:
    result = root.find(f"soap:Body/tns:{operation}Response/tns:result", NS)
    assert result is not None, ET.tostring(root)
    return result


def _fault(root: ET.Element) -> Dict[str, str]:
    fault = root.find("soap:Body/soap:Fault", NS)
    assert fault is not None, ET.tostring(root)
    return {
        "faultcode": fault.findtext("faultcode") or "",
        "faultstring": fault.findtext("faultstring") or "",
    }


def _record(element: ET.Element) -> Dict[str, str]:
    return {child.tag.split("}")[-1]: child.text or "" for child in element}


def _create(client: TestClient, **fields) -> Dict[str, str]:
    values = {"name": "Ann", "email": "Ann@X.com", "age": 30}
    values.update(fields)
    response, root = _call(client, "CreateUser", _user_xml(**values))
    assert response.status_code == 200, response.text
    return _record(_result(root, "CreateUser"))


def _users(result: ET.Element) -> List[Dict[str, str]]:
    return [_record(item) for item in result.findall("tns:users", NS)]


def test_create_user_returns_flat_record(client: TestClient) -> None:
    record = _create(client)

    assert set(record) == {"id", "name", "email", "age", "role", "createdAt"}
    assert record["email"] == "ann@x.com"
    assert record["role"] == "user"
    assert record["age"] == "30"
    assert record["id"]
    assert record["createdAt"].endswith("Z")


def test_get_user_by_id_round_trips_created_record(client: TestClient) -> None:
    created = _create(client)

    response, root = _call(client, "GetUserById", f"<usr:id>{created['id']}</usr:id>")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/xml")
    assert _record(_result(root, "GetUserById")) == created


def test_duplicate_email_is_client_fault(client: TestClient) -> None:
    _create(client)

    response, root = _call(
        client, "CreateUser", _user_xml(name="Other", email="ANN@x.com", age=22)
    )

    assert response.status_code == 500
    fault = _fault(root)
    assert fault["faultcode"] == "soap:Client"
    assert fault["faultstring"].startswith("Error creating user: ")
    assert "already exists" in fault["faultstring"]


def test_create_with_missing_fields_is_client_fault(client: TestClient) -> None:
    response, root = _call(client, "CreateUser", _user_xml(name="Ann"))

    fault = _fault(root)
    assert fault["faultcode"] == "soap:Client"
    assert "Email is required" in fault["faultstring"]
    assert "Age is required" in fault["faultstring"]


def test_unknown_id_is_client_fault(client: TestClient) -> None:
    response, root = _call(client, "GetUserById", "<usr:id>000</usr:id>")

    assert response.status_code == 500
    fault = _fault(root)
    assert fault["faultcode"] == "soap:Client"
    assert fault["faultstring"] == "Error fetching user: User not found"


def test_get_all_users_pages_and_clamps_limit(client: TestClient) -> None:
    for index in range(3):
        _create(client, name=f"User {index}", email=f"user{index}@example.com")

    response, root = _call(
        client, "GetAllUsers", "<usr:page>2</usr:page><usr:limit>2</usr:limit>"
    )
    result = _result(root, "GetAllUsers")
    assert [user["name"] for user in _users(result)] == ["User 2"]
    assert result.findtext("tns:total", namespaces=NS) == "3"

    response, root = _call(client, "GetAllUsers", "<usr:limit>1000</usr:limit>")
    assert len(_users(_result(root, "GetAllUsers"))) == 3


def test_get_all_users_defaults_without_arguments(client: TestClient) -> None:
    _create(client)

    response, root = _call(client, "GetAllUsers", "")

    assert response.status_code == 200
    result = _result(root, "GetAllUsers")
    assert len(_users(result)) == 1
    assert result.findtext("tns:total", namespaces=NS) == "1"


def test_update_user_is_partial_and_acknowledged(client: TestClient) -> None:
    created = _create(client)

    response, root = _call(
        client,
        "UpdateUser",
        f"<usr:id>{created['id']}</usr:id>{_user_xml(role='admin')}",
    )

    result = _result(root, "UpdateUser")
    assert result.findtext("tns:success", namespaces=NS) == "true"
    assert result.findtext("tns:message", namespaces=NS) == "User Ann updated successfully"

    _, root = _call(client, "GetUserById", f"<usr:id>{created['id']}</usr:id>")
    record = _record(_result(root, "GetUserById"))
    assert record["role"] == "admin"
    assert (record["name"], record["email"], record["age"]) == ("Ann", "ann@x.com", "30")


def test_update_without_id_is_client_fault(client: TestClient) -> None:
    _, root = _call(client, "UpdateUser", _user_xml(role="admin"))

    fault = _fault(root)
    assert fault["faultcode"] == "soap:Client"
    assert fault["faultstring"] == "Error updating user: User ID is required"


def test_update_with_explicit_empty_name_is_rejected(client: TestClient) -> None:
    created = _create(client)

    _, root = _call(client, "UpdateUser", f"<usr:id>{created['id']}</usr:id><usr:user><usr:name/></usr:user>")

    fault = _fault(root)
    assert fault["faultcode"] == "soap:Client"
    assert "Name is required" in fault["faultstring"]


def test_delete_user_then_lookup_faults(client: TestClient) -> None:
    created = _create(client)

    _, root = _call(client, "DeleteUser", f"<usr:id>{created['id']}</usr:id>")
    result = _result(root, "DeleteUser")
    assert result.findtext("tns:message", namespaces=NS) == "User Ann deleted successfully"

    _, root = _call(client, "GetUserById", f"<usr:id>{created['id']}</usr:id>")
    assert "User not found" in _fault(root)["faultstring"]

    _, root = _call(client, "DeleteUser", f"<usr:id>{created['id']}</usr:id>")
    assert _fault(root)["faultstring"] == "Error deleting user: User not found"


def test_search_users_matches_name_or_email(client: TestClient) -> None:
    _create(client, name="Alice", email="alice@example.com")
    _create(client, name="Bob", email="bob@example.com")

    _, root = _call(client, "SearchUsers", "<usr:query>BOB</usr:query>")
    result = _result(root, "SearchUsers")
    assert [user["name"] for user in _users(result)] == ["Bob"]
    assert result.findtext("tns:total", namespaces=NS) == "1"

    _, root = _call(client, "SearchUsers", "<usr:query></usr:query>")
    assert _result(root, "SearchUsers").findtext("tns:total", namespaces=NS) == "2"


def test_operation_falls_back_to_body_element_without_soap_action(client: TestClient) -> None:
    response, root = _call(client, "SearchUsers", "", action="")

    assert response.status_code == 200
    assert _result(root, "SearchUsers") is not None


def test_malformed_envelope_is_client_fault(client: TestClient) -> None:
    response = client.post("/soap", content=b"<not-closed", headers={"Content-Type": "text/xml"})

    assert response.status_code == 500
    fault = _fault(ET.fromstring(response.content))
    assert fault["faultcode"] == "soap:Client"
    assert fault["faultstring"].startswith("Invalid SOAP request")


def test_unknown_operation_is_client_fault(client: TestClient) -> None:
    _, root = _call(client, "PurgeUsers", "")

    fault = _fault(root)
    assert fault["faultcode"] == "soap:Client"
    assert "PurgeUsers" in fault["faultstring"]


def test_wsdl_is_served_under_query_marker(client: TestClient) -> None:
    response = client.get("/soap?wsdl")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/xml")
    wsdl = ET.fromstring(response.content)
    operations = {
        element.get("name")
        for element in wsdl.findall("{http://schemas.xmlsoap.org/wsdl/}portType/{http://schemas.xmlsoap.org/wsdl/}operation")
    }
    assert operations == {
        "GetAllUsers",
        "GetUserById",
        "CreateUser",
        "UpdateUser",
        "DeleteUser",
        "SearchUsers",
    }


def test_preflight_is_acknowledged_with_cors_headers(client: TestClient) -> None:
    response = client.options("/soap")

    assert response.status_code == 200
    assert response.content == b""
    assert response.headers["access-control-allow-origin"] == "*"
    assert "SOAPAction" in response.headers["access-control-allow-headers"]


def test_soap_responses_carry_cors_headers(client: TestClient) -> None:
    response, _ = _call(client, "SearchUsers", "")

    assert response.headers["access-control-allow-origin"] == "*"


def test_oversized_age_is_client_fault(client: TestClient) -> None:
    response, root = _call(
        client,
        "CreateUser",
        _user_xml(name="Ann", email="ann@x.com", age="100000000000000000000"),
    )

    assert response.status_code == 500
    fault = _fault(root)
    assert fault["faultcode"] == "soap:Client"
    assert fault["faultstring"] == "Error creating user: Age is too large"


def test_oversized_paging_values_are_bounded(client: TestClient) -> None:
    _create(client)

    response, root = _call(
        client,
        "GetAllUsers",
        f"<usr:page>{10**20}</usr:page><usr:limit>{10**20}</usr:limit>",
    )

    assert response.status_code == 200
    result = _result(root, "GetAllUsers")
    assert _users(result) == []
    assert result.findtext("tns:total", namespaces=NS) == "1"


def test_records_from_rest_stay_readable_over_soap(client: TestClient) -> None:
    rejected = client.post(
        "/api/users", json={"name": "Ann\u0001", "email": "ann@x.com", "age": 30}
    )
    assert rejected.status_code == 400

    accepted = client.post(
        "/api/users", json={"name": "Zoë", "email": "zoe@x.com", "age": 30}
    )
    assert accepted.status_code == 201

    response, root = _call(client, "SearchUsers", "<usr:query></usr:query>")

    assert response.status_code == 200
    result = _result(root, "SearchUsers")
    assert [user["name"] for user in _users(result)] == ["Zoë"]

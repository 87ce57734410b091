import io
import json
import zipfile

import pytest
import requests

from tmtools.connectors.salesforce import SalesforceConnector
from tmtools.errors import AuthError, ConnectorError, NetworkError, RateLimitError


class StubResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload
        self.text = json.dumps(payload) if payload is not None else ""
        self.content = self.text.encode("utf-8")

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON body")
        return self._payload


class StubSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _connector(*responses) -> SalesforceConnector:
    return SalesforceConnector(
        instance_url="https://acme.my.salesforce.com/",
        access_token="00D!token",
        session=StubSession(responses),
        poll_interval_seconds=0,
    )


def test_missing_credentials_are_an_auth_error() -> None:
    with pytest.raises(AuthError):
        SalesforceConnector(instance_url="", access_token="")


def test_query_follows_pagination_and_strips_attributes() -> None:
    connector = _connector(
        StubResponse(payload={
            "done": False,
            "nextRecordsUrl": "/services/data/v59.0/query/01g-2000",
            "records": [{"attributes": {"type": "Territory"}, "Id": "0MI1", "Name": "West"}],
        }),
        StubResponse(payload={
            "done": True,
            "records": [{"attributes": {"type": "Territory"}, "Id": "0MI2", "Name": "East"}],
        }),
    )

    rows = connector.query("SELECT Id, Name FROM Territory ORDER BY Id")

    assert rows == [{"Id": "0MI1", "Name": "West"}, {"Id": "0MI2", "Name": "East"}]
    first, second = connector._session.requests
    assert first[1] == "https://acme.my.salesforce.com/services/data/v59.0/query"
    assert first[2]["headers"]["Authorization"] == "Bearer 00D!token"
    assert second[1] == "https://acme.my.salesforce.com/services/data/v59.0/query/01g-2000"


def test_query_count_reads_total_size() -> None:
    connector = _connector(StubResponse(payload={"totalSize": 42, "done": True, "records": []}))

    assert connector.query_count("SELECT count() FROM Territory") == 42


@pytest.mark.parametrize("response,error_type", [
    (StubResponse(429, [{"errorCode": "TOO_MANY_REQUESTS", "message": "slow down"}]), RateLimitError),
    (StubResponse(403, [{"errorCode": "REQUEST_LIMIT_EXCEEDED", "message": "limit"}]), RateLimitError),
    (StubResponse(401, [{"errorCode": "INVALID_SESSION_ID", "message": "expired"}]), AuthError),
    (StubResponse(400, [{"errorCode": "INVALID_TYPE", "message": "no Territory"}]), ConnectorError),
])
def test_error_responses_are_typed(response, error_type) -> None:
    connector = _connector(response)

    with pytest.raises(error_type) as exc_info:
        connector.query("SELECT Id FROM Territory")

    assert exc_info.value.status_code == response.status_code


def test_connection_failures_are_network_errors() -> None:
    connector = _connector(requests.exceptions.ConnectionError("connection reset"))

    with pytest.raises(NetworkError):
        connector.query("SELECT Id FROM Territory")


def test_bulk_load_reports_job_outcome(tmp_path) -> None:
    csv_path = tmp_path / "UserTerritory2Association.csv"
    csv_path.write_text("UserId,Territory2Id\n0051,0MI21\n0052,0MI22\n", encoding="utf-8")
    connector = _connector(
        StubResponse(payload={"id": "7501"}),
        StubResponse(201, {}),
        StubResponse(payload={"id": "7501", "state": "UploadComplete"}),
        StubResponse(payload={"id": "7501", "state": "InProgress"}),
        StubResponse(payload={
            "id": "7501",
            "state": "JobComplete",
            "numberRecordsProcessed": 2,
            "numberRecordsFailed": 1,
            "createdDate": "2024-05-01T10:00:00.000+0000",
            "systemModstamp": "2024-05-01T10:00:07.000+0000",
        }),
    )

    result = connector.bulk_load(csv_path, "UserTerritory2Association")

    assert result.job_id == "7501"
    assert result.records_processed == 2
    assert result.records_failed == 1
    assert not result.success
    assert result.error == "1 of 2 records failed"


def _zip(entries) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in entries.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def test_retrieved_archive_is_unpacked_into_target(tmp_path) -> None:
    content = _zip({"sharingRules/Account.sharingRules": "<SharingRules/>", "package.xml": "<Package/>"})

    files = SalesforceConnector._unpack_zip(content, tmp_path / "metadata")

    assert sorted(p.relative_to(tmp_path / "metadata").as_posix() for p in files) == [
        "package.xml",
        "sharingRules/Account.sharingRules",
    ]
    assert (tmp_path / "metadata" / "sharingRules" / "Account.sharingRules").read_text() == "<SharingRules/>"


@pytest.mark.parametrize("name", ["../escaped.txt", "sharingRules/../../escaped.txt", "/tmp/escaped.txt"])
def test_archive_members_outside_target_are_rejected(tmp_path, name) -> None:
    content = _zip({"package.xml": "<Package/>", name: "payload"})
    target = tmp_path / "nested" / "metadata"

    with pytest.raises(ConnectorError, match="unsafe path"):
        SalesforceConnector._unpack_zip(content, target)

    assert not (tmp_path / "nested" / "escaped.txt").exists()
    assert not (tmp_path / "escaped.txt").exists()
    assert not (target / "package.xml").exists()

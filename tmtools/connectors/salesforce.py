"""REST-based connector for Salesforce orgs."""

import base64
import io
import json
import logging
import time
import zipfile
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import requests
from dateutil import parser as date_parser
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .base import OrgConnector
from ..errors import AuthError, ConnectorError, NetworkError, RateLimitError
from ..models.reports import ComponentStatus, DataLoadResult, DeployResultSummary, OrgInfo

logger = logging.getLogger(__name__)

METADATA_NS = "http://soap.sforce.com/2006/04/metadata"
SOAP_NS = "http://schemas.xmlsoap.org/soap/envelope/"

RATE_LIMIT_CODES = {"REQUEST_LIMIT_EXCEEDED", "TOO_MANY_REQUESTS"}
AUTH_CODES = {"INVALID_SESSION_ID", "INVALID_AUTH_HEADER", "INVALID_LOGIN"}

BULK_TERMINAL_STATES = {"JobComplete", "Failed", "Aborted"}


class SalesforceConnector(OrgConnector):
    """
    Connector for the Salesforce REST, Tooling, Metadata and Bulk 2.0 APIs.

    Supports:
    - SOQL queries with nextRecordsUrl pagination
    - Aggregate count queries
    - Metadata retrieve (SOAP) and deploy (REST deployRequest)
    - Bulk 2.0 ingest jobs
    - Retry on transient server errors
    """

    def __init__(
        self,
        instance_url: str,
        access_token: str,
        api_version: str = "59.0",
        username: Optional[str] = None,
        alias: Optional[str] = None,
        login_url: str = "https://login.salesforce.com",
        retry_config: Optional[Dict[str, Any]] = None,
        session: Optional[requests.Session] = None,
        poll_interval_seconds: float = 5.0,
        poll_timeout_seconds: float = 600.0,
        timeout: float = 120.0,
    ):
        """
        Initialize the connector.

        Args:
            instance_url: Org instance URL (e.g. https://acme.my.salesforce.com)
            access_token: OAuth access token or session id
            api_version: Salesforce API version
            username: Username reported in OrgInfo (looked up if omitted)
            alias: Local alias reported in OrgInfo
            login_url: Login URL reported in OrgInfo
            retry_config: max_retries / backoff_factor for transient errors
            session: Custom requests session
            poll_interval_seconds: Delay between async status checks
            poll_timeout_seconds: Give up on async jobs after this long
            timeout: Per-request timeout in seconds
        """
        if not instance_url or not access_token:
            raise AuthError("An instance URL and access token are required to connect to an org")

        self.instance_url = instance_url.rstrip("/")
        self.access_token = access_token
        self.api_version = api_version
        self.username = username
        self.alias = alias
        self.login_url = login_url
        self.retry_config = retry_config or {"max_retries": 3, "backoff_factor": 2.0}
        self.poll_interval_seconds = poll_interval_seconds
        self.poll_timeout_seconds = poll_timeout_seconds
        self.timeout = timeout
        self._session = session or self._create_session()

    def _create_session(self) -> requests.Session:
        """Create a requests session with retry logic."""
        session = requests.Session()

        retries = Retry(
            total=self.retry_config.get("max_retries", 3),
            backoff_factor=self.retry_config.get("backoff_factor", 2.0),
            status_forcelist=[500, 502, 503, 504],
            raise_on_status=False,
        )

        adapter = HTTPAdapter(max_retries=retries)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        return session

    @property
    def data_path(self) -> str:
        return f"/services/data/v{self.api_version}"

    def _get_auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        """Send a request and translate failures into connector errors."""
        url = path if path.startswith("http") else f"{self.instance_url}{path}"
        headers = self._get_auth_headers()
        headers.update(kwargs.pop("headers", {}))

        try:
            response = self._session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise NetworkError(f"{method} {path} failed: {e}") from e
        except requests.exceptions.RetryError as e:
            raise NetworkError(f"{method} {path} exhausted retries: {e}") from e

        self._raise_for_status(response, f"{method} {path}")
        return response

    def _raise_for_status(self, response: requests.Response, operation: str) -> None:
        if response.status_code < 400:
            return

        error_code = None
        message = response.text
        try:
            body = response.json()
            first = body[0] if isinstance(body, list) and body else body
            if isinstance(first, dict):
                error_code = first.get("errorCode") or first.get("error")
                message = first.get("message") or first.get("error_description") or message
        except ValueError:
            pass

        text = f"{operation} returned HTTP {response.status_code}: {message}"
        if response.status_code == 429 or error_code in RATE_LIMIT_CODES:
            raise RateLimitError(text, status_code=response.status_code, error_code=error_code)
        if response.status_code == 401 or error_code in AUTH_CODES:
            raise AuthError(text, status_code=response.status_code, error_code=error_code)
        raise ConnectorError(text, status_code=response.status_code, error_code=error_code)

    def _poll(self, fetch: Callable[[], Dict[str, Any]], is_done: Callable[[Dict[str, Any]], bool], what: str) -> Dict[str, Any]:
        """Poll an async operation until it finishes or times out."""
        deadline = time.monotonic() + self.poll_timeout_seconds
        while True:
            status = fetch()
            if is_done(status):
                return status
            if time.monotonic() >= deadline:
                raise NetworkError(f"Timed out after {self.poll_timeout_seconds:.0f}s waiting for {what}")
            time.sleep(self.poll_interval_seconds)

    @staticmethod
    def _strip_attributes(record: Dict[str, Any]) -> Dict[str, Any]:
        clean = {}
        for key, value in record.items():
            if key == "attributes":
                continue
            if isinstance(value, dict):
                value = SalesforceConnector._strip_attributes(value)
            clean[key] = value
        return clean

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _query_all(self, endpoint: str, soql: str) -> List[Dict[str, Any]]:
        records: List[Dict[str, Any]] = []
        data = self._request("GET", endpoint, params={"q": soql}).json()

        while True:
            records.extend(self._strip_attributes(r) for r in data.get("records", []))
            next_url = data.get("nextRecordsUrl")
            if data.get("done", True) or not next_url:
                break
            data = self._request("GET", next_url).json()

        logger.debug(f"Query returned {len(records)} records: {soql}")
        return records

    def query(self, soql: str) -> List[Dict[str, Any]]:
        return self._query_all(f"{self.data_path}/query", soql)

    def tooling_query(self, soql: str) -> List[Dict[str, Any]]:
        return self._query_all(f"{self.data_path}/tooling/query", soql)

    def query_count(self, soql: str) -> int:
        data = self._request("GET", f"{self.data_path}/query", params={"q": soql}).json()
        return int(data.get("totalSize", 0))

    def get_org_info(self) -> OrgInfo:
        userinfo = self._request("GET", "/services/oauth2/userinfo").json()
        organizations = self.query("SELECT Id, InstanceName FROM Organization")
        instance = organizations[0].get("InstanceName", "") if organizations else ""

        return OrgInfo(
            org_id=userinfo.get("organization_id") or (organizations[0]["Id"] if organizations else ""),
            username=self.username or userinfo.get("preferred_username", ""),
            alias=self.alias,
            login_url=self.login_url,
            instance=instance or "",
        )

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def _soap_call(self, body: ET.Element) -> ET.Element:
        envelope = ET.Element(f"{{{SOAP_NS}}}Envelope")
        header = ET.SubElement(envelope, f"{{{SOAP_NS}}}Header")
        session_header = ET.SubElement(header, f"{{{METADATA_NS}}}SessionHeader")
        ET.SubElement(session_header, f"{{{METADATA_NS}}}sessionId").text = self.access_token
        soap_body = ET.SubElement(envelope, f"{{{SOAP_NS}}}Body")
        soap_body.append(body)

        payload = ET.tostring(envelope, encoding="utf-8", xml_declaration=True)
        response = self._request(
            "POST",
            f"/services/Soap/m/{self.api_version}",
            data=payload,
            headers={"Content-Type": "text/xml; charset=utf-8", "SOAPAction": '""'},
        )
        root = ET.fromstring(response.content)
        result = root.find(f".//{{{METADATA_NS}}}result")
        if result is None:
            raise ConnectorError("Metadata API response did not contain a result")
        return result

    def retrieve_metadata(self, component_types: Dict[str, List[str]], target_dir: Path) -> List[Path]:
        m = f"{{{METADATA_NS}}}"
        retrieve = ET.Element(f"{m}retrieve")
        request = ET.SubElement(retrieve, f"{m}retrieveRequest")
        ET.SubElement(request, f"{m}apiVersion").text = self.api_version
        ET.SubElement(request, f"{m}singlePackage").text = "true"
        unpackaged = ET.SubElement(request, f"{m}unpackaged")
        for type_name in sorted(component_types):
            types = ET.SubElement(unpackaged, f"{m}types")
            for member in component_types[type_name]:
                ET.SubElement(types, f"{m}members").text = member
            ET.SubElement(types, f"{m}name").text = type_name
        ET.SubElement(unpackaged, f"{m}version").text = self.api_version

        async_id = self._soap_call(retrieve).findtext(f"{m}id")
        logger.info(f"Started metadata retrieve {async_id}")

        def _check() -> Dict[str, Any]:
            check = ET.Element(f"{m}checkRetrieveStatus")
            ET.SubElement(check, f"{m}asyncProcessId").text = async_id
            ET.SubElement(check, f"{m}includeZip").text = "true"
            result = self._soap_call(check)
            return {
                "done": result.findtext(f"{m}done") == "true",
                "status": result.findtext(f"{m}status"),
                "zip": result.findtext(f"{m}zipFile"),
                "error": result.findtext(f"{m}errorMessage"),
            }

        status = self._poll(_check, lambda s: s["done"], f"metadata retrieve {async_id}")
        if status["status"] != "Succeeded" or not status["zip"]:
            raise ConnectorError(f"Metadata retrieve {async_id} ended with status {status['status']}: {status['error']}")

        files = self._unpack_zip(base64.b64decode(status["zip"]), Path(target_dir))

        logger.info(f"Retrieved {len(files)} metadata files into {target_dir}")
        return sorted(files)

    @staticmethod
    def _unpack_zip(content: bytes, target_dir: Path) -> List[Path]:
        """
        Extract a retrieved archive into target_dir.

        Raises:
            ConnectorError: If any member would land outside target_dir
        """
        target_dir.mkdir(parents=True, exist_ok=True)
        root = target_dir.resolve()
        with zipfile.ZipFile(io.BytesIO(content)) as archive:
            names = archive.namelist()
            for name in names:
                destination = (root / name).resolve()
                if destination != root and root not in destination.parents:
                    raise ConnectorError(f"Retrieved archive contains an unsafe path: {name}")
            archive.extractall(target_dir)
        return [target_dir / name for name in names if not name.endswith("/")]

    @staticmethod
    def _zip_directory(source_dir: Path) -> bytes:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
            for path in sorted(p for p in Path(source_dir).rglob("*") if p.is_file()):
                archive.write(path, path.relative_to(source_dir).as_posix())
        return buffer.getvalue()

    @staticmethod
    def _component_statuses(details: Dict[str, Any]) -> List[ComponentStatus]:
        components = []
        for key, success in (("componentSuccesses", True), ("componentFailures", False)):
            entries = details.get(key) or []
            if isinstance(entries, dict):
                entries = [entries]
            for entry in entries:
                # package.xml itself shows up as a component with an empty type
                if not entry.get("componentType"):
                    continue
                components.append(ComponentStatus(
                    component_type=entry.get("componentType", ""),
                    full_name=entry.get("fullName", ""),
                    success=success,
                    problem=entry.get("problem"),
                ))
        return sorted(components, key=lambda c: (c.component_type, c.full_name))

    def deploy_metadata(self, source_dir: Path) -> DeployResultSummary:
        options = {
            "deployOptions": {
                "singlePackage": True,
                "rollbackOnError": True,
                "checkOnly": False,
            }
        }
        files = {
            "json": (None, json.dumps(options), "application/json"),
            "file": ("deploy.zip", self._zip_directory(Path(source_dir)), "application/zip"),
        }
        response = self._request("POST", f"{self.data_path}/metadata/deployRequest", files=files)
        deploy_id = response.json().get("id")
        logger.info(f"Started metadata deployment {deploy_id} from {source_dir}")

        def _check() -> Dict[str, Any]:
            data = self._request(
                "GET",
                f"{self.data_path}/metadata/deployRequest/{deploy_id}",
                params={"includeDetails": "true"},
            ).json()
            return data.get("deployResult", {})

        result = self._poll(_check, lambda r: bool(r.get("done")), f"deployment {deploy_id}")
        success = bool(result.get("success"))
        summary = DeployResultSummary(
            deploy_id=deploy_id,
            status=result.get("status", "Unknown"),
            success=success,
            components=tuple(self._component_statuses(result.get("details") or {})),
            error_message=result.get("errorMessage"),
        )
        logger.info(f"Deployment {deploy_id} finished with status {summary.status}")
        return summary

    # ------------------------------------------------------------------
    # Bulk data
    # ------------------------------------------------------------------

    def bulk_load(self, csv_path: Path, object_name: str, operation: str = "insert") -> DataLoadResult:
        jobs_path = f"{self.data_path}/jobs/ingest"
        job = self._request(
            "POST",
            jobs_path,
            json={"object": object_name, "operation": operation, "contentType": "CSV", "lineEnding": "LF"},
        ).json()
        job_id = job["id"]

        with open(csv_path, "rb") as f:
            self._request("PUT", f"{jobs_path}/{job_id}/batches", data=f.read(), headers={"Content-Type": "text/csv"})
        self._request("PATCH", f"{jobs_path}/{job_id}", json={"state": "UploadComplete"})
        logger.info(f"Started bulk {operation} job {job_id} for {object_name}")

        info = self._poll(
            lambda: self._request("GET", f"{jobs_path}/{job_id}").json(),
            lambda i: i.get("state") in BULK_TERMINAL_STATES,
            f"bulk job {job_id}",
        )

        if info.get("createdDate") and info.get("systemModstamp"):
            elapsed = date_parser.parse(info["systemModstamp"]) - date_parser.parse(info["createdDate"])
            logger.info(f"Bulk job {job_id} finished in {elapsed.total_seconds():.1f}s with state {info['state']}")

        processed = int(info.get("numberRecordsProcessed", 0))
        failed = int(info.get("numberRecordsFailed", 0))
        success = info.get("state") == "JobComplete" and failed == 0
        error = info.get("errorMessage") or None
        if not success and not error:
            error = f"{failed} of {processed} records failed"

        return DataLoadResult(
            object_name=object_name,
            csv_path=str(csv_path),
            records_processed=processed,
            records_failed=failed,
            success=success,
            job_id=job_id,
            error=error,
        )

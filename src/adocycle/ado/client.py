"""Azure DevOps REST client for work item and Git operations.

This module provides an async wrapper around the Azure DevOps REST API
implementing WorkItemTrackingPort and GitPort:

- Fetching and patching work items, reading their relations
- Running WIQL queries
- Looking up repositories and refs
- Compare-and-swap ref updates
- Searching and creating pull requests

Idempotent reads are retried with exponential backoff; mutations are
sent exactly once.
"""

import asyncio
import logging
import random
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlsplit

import httpx

from src.adocycle.ado.models import (
    GitRef,
    PullRequestCreate,
    PullRequestRecord,
    PullRequestSearchCriteria,
    RefUpdate,
    RefUpdateResult,
    RepositoryInfo,
    WorkItemRecord,
    WorkItemRelation,
)
from src.adocycle.errors import AdoCycleError, AuthError, ValidationError

logger = logging.getLogger(__name__)

API_VERSION = "7.1"
DEV_AZURE_HOST = "dev.azure.com"
LEGACY_HOST_SUFFIX = ".visualstudio.com"
CONTINUATION_HEADER = "x-ms-continuationtoken"


class AzureDevOpsAPIError(AdoCycleError):
    """Raised when an Azure DevOps API request fails.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status code from the response.
        response_body: Response body from the API.
        request_url: The URL that was requested.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
    ):
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url
        super().__init__(message)


class AzureDevOpsAuthError(AzureDevOpsAPIError, AuthError):
    """Raised when the API rejects the personal access token (401/403)."""

    pass


def normalize_organization_url(value: str) -> str:
    """Normalize an organization name or URL into the organization endpoint.

    Args:
        value: Bare organization name ("myorg") or an https URL.

    Returns:
        Canonical endpoint such as "https://dev.azure.com/myorg".

    Raises:
        ValidationError: If the value is empty, malformed or not https.
    """
    trimmed = value.strip()
    if not trimmed:
        raise ValidationError("Azure DevOps organization cannot be empty.")

    if "://" not in trimmed:
        org_name = trimmed.strip("/")
        if not org_name:
            raise ValidationError(
                "Invalid organization value. Provide an organization name like 'myorg'."
            )
        return f"https://{DEV_AZURE_HOST}/{org_name}"

    parts = urlsplit(trimmed)
    if not parts.hostname:
        raise ValidationError(f"Invalid organization URL: {trimmed}")
    if parts.scheme.lower() != "https":
        raise ValidationError("Azure DevOps organization URL must use https.")

    hostname = parts.hostname.lower()
    if hostname == DEV_AZURE_HOST:
        segments = [segment for segment in parts.path.split("/") if segment]
        if not segments:
            raise ValidationError(
                "Organization URL must include organization name, "
                "for example https://dev.azure.com/myorg."
            )
        return f"https://{DEV_AZURE_HOST}/{segments[0]}"

    if hostname.endswith(LEGACY_HOST_SUFFIX):
        return f"https://{hostname}"

    origin = f"{parts.scheme.lower()}://{parts.netloc}"
    path = parts.path.rstrip("/")
    return f"{origin}{path}" if path else origin


def organization_from_url(organization_url: str) -> str:
    """Derive the organization name implied by an organization endpoint.

    Raises:
        ValidationError: If a dev.azure.com URL has no organization segment.
    """
    parts = urlsplit(organization_url)
    hostname = (parts.hostname or "").lower()
    if hostname == DEV_AZURE_HOST:
        segments = [segment for segment in parts.path.split("/") if segment]
        if not segments:
            raise ValidationError(
                "Cannot determine organization from Azure DevOps URL."
            )
        return segments[0]

    if hostname.endswith(LEGACY_HOST_SUFFIX):
        return hostname.split(".")[0]

    return hostname


def build_work_item_url(organization_url: str, project: str, work_item_id: int) -> str:
    project_segment = f"/{quote(project, safe='')}" if project.strip() else ""
    return f"{organization_url.rstrip('/')}{project_segment}/_workitems/edit/{work_item_id}"


def build_pull_request_url(
    organization_url: str,
    repository: RepositoryInfo,
    pull_request_id: int,
) -> str:
    return (
        f"{organization_url.rstrip('/')}/{quote(repository.project, safe='')}"
        f"/_git/{quote(repository.name, safe='')}/pullrequest/{pull_request_id}"
    )


class AzureDevOpsClient:
    """Async Azure DevOps REST client with retry logic.

    Authenticates with a personal access token (Basic auth, empty user).
    Idempotent GET requests are retried on transient failures with
    exponential backoff and full jitter; PATCH/POST requests are sent
    once so that no mutation is duplicated.

    Attributes:
        organization_url: Organization endpoint, e.g. https://dev.azure.com/myorg.
        token: Personal access token.
        max_retries: Maximum number of retry attempts for idempotent reads.
        base_delay: Base delay in seconds for exponential backoff.
        max_delay: Maximum delay in seconds between retries.
        timeout: Request timeout in seconds.

    Example:
        >>> async with AzureDevOpsClient("https://dev.azure.com/myorg", pat) as client:
        ...     record = await client.get_work_item(42, WORK_ITEM_FIELDS)
    """

    # HTTP status codes that should trigger a retry
    RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}

    def __init__(
        self,
        organization_url: str,
        token: str,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            organization_url: Organization endpoint.
            token: Personal access token.
            max_retries: Maximum number of retry attempts.
            base_delay: Base delay in seconds for exponential backoff.
            max_delay: Maximum delay in seconds between retries.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (used by tests).

        Raises:
            ValidationError: If the token is empty.
        """
        if not token or not token.strip():
            raise ValidationError("Azure DevOps PAT cannot be empty.")

        self.organization_url = organization_url.rstrip("/")
        self.token = token.strip()
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it if necessary."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.organization_url + "/",
                auth=httpx.BasicAuth("", self.token),
                headers=self._default_headers(),
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    def _default_headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "User-Agent": "adocycle/0.1",
            # Ask for 401 instead of a 203 sign-in page on bad credentials
            "X-TFS-FedAuthRedirect": "Suppress",
        }

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "AzureDevOpsClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _calculate_backoff(self, attempt: int) -> float:
        """Exponential backoff with full jitter.

        Args:
            attempt: The current retry attempt (0-indexed).

        Returns:
            Delay in seconds before the next retry.
        """
        exponential_delay = self.base_delay * (2 ** attempt)
        capped_delay = min(exponential_delay, self.max_delay)
        return random.uniform(0, capped_delay)

    def _retry_after(self, response: httpx.Response, attempt: int) -> float:
        header = response.headers.get("retry-after")
        if header is not None:
            try:
                return min(float(header), self.max_delay)
            except ValueError:
                pass
        return self._calculate_backoff(attempt)

    def _raise_for_status(self, response: httpx.Response, method: str, path: str) -> None:
        status_code = response.status_code
        # A 203 with HTML is the sign-in page served for a rejected PAT
        if status_code == 203:
            status_code = 401

        if status_code in (401, 403):
            logger.error(
                "Azure DevOps rejected the credential",
                extra={"status_code": status_code, "path": path, "method": method},
            )
            raise AzureDevOpsAuthError(
                message=(
                    f"Azure DevOps authentication failed ({status_code}). "
                    "The PAT may be expired or missing required scopes."
                ),
                status_code=status_code,
                response_body=response.text,
                request_url=str(response.url),
            )

        if status_code >= 400:
            error_body = response.text
            logger.error(
                "Azure DevOps API error",
                extra={
                    "status_code": status_code,
                    "path": path,
                    "method": method,
                    "response_body": error_body[:500],
                },
            )
            raise AzureDevOpsAPIError(
                message=f"Azure DevOps API error: {status_code}{self._server_message(response)}",
                status_code=status_code,
                response_body=error_body,
                request_url=str(response.url),
            )

    @staticmethod
    def _server_message(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return ""
        message = payload.get("message") if isinstance(payload, dict) else None
        return f" ({message})" if message else ""

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Any] = None,
        content_type: Optional[str] = None,
    ) -> httpx.Response:
        """Make an HTTP request, retrying idempotent reads.

        Args:
            method: HTTP method (GET, POST, PATCH).
            path: API path relative to the organization URL.
            params: Query parameters; api-version is added automatically.
            json_data: Optional JSON body.
            content_type: Optional Content-Type override for the body.

        Returns:
            The successful HTTP response.

        Raises:
            AzureDevOpsAuthError: On 401/403.
            AzureDevOpsAPIError: If the request fails after all retries.
        """
        query = dict(params or {})
        query["api-version"] = API_VERSION
        headers = {"Content-Type": content_type} if content_type else None
        retries = self.max_retries if method == "GET" else 0
        last_exception: Optional[Exception] = None

        for attempt in range(retries + 1):
            try:
                response = await self.client.request(
                    method=method,
                    url=path.lstrip("/"),
                    params=query,
                    json=json_data,
                    headers=headers,
                )
            except httpx.RequestError as e:
                last_exception = e
                if attempt < retries:
                    delay = self._calculate_backoff(attempt)
                    logger.warning(
                        "Request error, retrying",
                        extra={
                            "error": str(e),
                            "attempt": attempt + 1,
                            "max_retries": retries,
                            "delay": delay,
                            "path": path,
                        },
                    )
                    await asyncio.sleep(delay)
                    continue
                break

            if response.status_code in self.RETRYABLE_STATUS_CODES and attempt < retries:
                delay = self._retry_after(response, attempt)
                logger.warning(
                    "Retryable error from Azure DevOps API",
                    extra={
                        "status_code": response.status_code,
                        "attempt": attempt + 1,
                        "max_retries": retries,
                        "delay": delay,
                        "path": path,
                    },
                )
                await asyncio.sleep(delay)
                continue

            self._raise_for_status(response, method, path)
            return response

        logger.error(
            "Azure DevOps request failed",
            extra={
                "path": path,
                "method": method,
                "max_retries": retries,
                "last_error": str(last_exception),
            },
        )
        raise AzureDevOpsAPIError(
            message=f"Request to Azure DevOps failed: {last_exception}",
            request_url=f"{self.organization_url}/{path.lstrip('/')}",
        )

    async def _get_optional(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """GET a resource, returning None when it does not exist."""
        try:
            response = await self._request("GET", path, params=params)
        except AzureDevOpsAPIError as e:
            if e.status_code == 404:
                logger.debug("Resource not found", extra={"path": path})
                return None
            raise
        return response.json()

    # ------------------------------------------------------------------
    # Work item tracking
    # ------------------------------------------------------------------

    async def get_work_item(
        self,
        work_item_id: int,
        fields: List[str],
    ) -> Optional[WorkItemRecord]:
        logger.debug("Getting work item", extra={"work_item_id": work_item_id})
        data = await self._get_optional(
            f"_apis/wit/workitems/{work_item_id}",
            params={"fields": ",".join(fields)},
        )
        return WorkItemRecord.model_validate(data) if data is not None else None

    async def get_work_item_relations(
        self,
        work_item_id: int,
        project: str,
    ) -> List[WorkItemRelation]:
        response = await self._request(
            "GET",
            f"{quote(project, safe='')}/_apis/wit/workitems/{work_item_id}",
            params={"$expand": "relations"},
        )
        return WorkItemRecord.model_validate(response.json()).relations

    async def update_work_item(
        self,
        work_item_id: int,
        project: str,
        patch_operations: List[Dict[str, Any]],
    ) -> None:
        """Apply JSON Patch operations to a work item.

        Args:
            work_item_id: Work item to patch.
            project: Owning project name.
            patch_operations: JSON Patch operation list.

        Raises:
            AzureDevOpsAPIError: If the request fails.
        """
        logger.info(
            "Updating work item",
            extra={
                "work_item_id": work_item_id,
                "project": project,
                "paths": [op.get("path") for op in patch_operations],
            },
        )
        await self._request(
            "PATCH",
            f"{quote(project, safe='')}/_apis/wit/workitems/{work_item_id}",
            json_data=patch_operations,
            content_type="application/json-patch+json",
        )

    async def query_by_wiql(
        self,
        query: str,
        project: Optional[str],
        limit: int,
    ) -> List[int]:
        """Run a WIQL query and return the matching work item ids."""
        prefix = f"{quote(project, safe='')}/" if project else ""
        response = await self._request(
            "POST",
            f"{prefix}_apis/wit/wiql",
            params={"$top": limit},
            json_data={"query": query},
        )
        work_items = response.json().get("workItems") or []
        return [item["id"] for item in work_items if isinstance(item.get("id"), int)]

    # ------------------------------------------------------------------
    # Git
    # ------------------------------------------------------------------

    async def get_repository(
        self,
        name: str,
        project: str,
    ) -> Optional[RepositoryInfo]:
        data = await self._get_optional(
            f"{quote(project, safe='')}/_apis/git/repositories/{quote(name, safe='')}"
        )
        if data is None or not data.get("id"):
            return None
        return RepositoryInfo.from_api_response(data, requested_project=project)

    async def get_repositories(self) -> List[RepositoryInfo]:
        response = await self._request("GET", "_apis/git/repositories")
        return [
            RepositoryInfo.from_api_response(item)
            for item in response.json().get("value") or []
            if item.get("id")
        ]

    async def get_refs(
        self,
        repository_id: str,
        project: str,
        filter_prefix: str,
    ) -> List[GitRef]:
        """List refs matching a prefix, following continuation tokens."""
        path = f"{quote(project, safe='')}/_apis/git/repositories/{repository_id}/refs"
        params: Dict[str, Any] = {"filter": filter_prefix}
        refs: List[GitRef] = []

        while True:
            response = await self._request("GET", path, params=params)
            refs.extend(
                GitRef.model_validate(item)
                for item in response.json().get("value") or []
                if item.get("name")
            )
            token = response.headers.get(CONTINUATION_HEADER)
            if not token:
                return refs
            params = {"filter": filter_prefix, "continuationToken": token}

    async def update_refs(
        self,
        repository_id: str,
        project: str,
        updates: List[RefUpdate],
    ) -> List[RefUpdateResult]:
        logger.info(
            "Updating refs",
            extra={
                "repository_id": repository_id,
                "refs": [update.name for update in updates],
            },
        )
        response = await self._request(
            "POST",
            f"{quote(project, safe='')}/_apis/git/repositories/{repository_id}/refs",
            json_data=[update.model_dump(by_alias=True) for update in updates],
        )
        return [
            RefUpdateResult.from_api_response(item)
            for item in response.json().get("value") or []
        ]

    async def get_pull_requests(
        self,
        repository_id: str,
        criteria: PullRequestSearchCriteria,
        project: str,
    ) -> List[PullRequestRecord]:
        response = await self._request(
            "GET",
            f"{quote(project, safe='')}/_apis/git/repositories/{repository_id}/pullrequests",
            params={
                "searchCriteria.sourceRefName": criteria.source_ref_name,
                "searchCriteria.targetRefName": criteria.target_ref_name,
                "searchCriteria.status": criteria.status.value,
            },
        )
        return [
            PullRequestRecord.from_api_response(item)
            for item in response.json().get("value") or []
        ]

    async def create_pull_request(
        self,
        repository_id: str,
        project: str,
        request: PullRequestCreate,
    ) -> PullRequestRecord:
        """Create a pull request.

        Raises:
            AzureDevOpsAPIError: If the request fails.
        """
        logger.info(
            "Creating pull request",
            extra={
                "repository_id": repository_id,
                "source": request.source_ref_name,
                "target": request.target_ref_name,
                "is_draft": request.is_draft,
            },
        )
        response = await self._request(
            "POST",
            f"{quote(project, safe='')}/_apis/git/repositories/{repository_id}/pullrequests",
            json_data=request.model_dump(by_alias=True),
        )
        result = PullRequestRecord.from_api_response(response.json())
        logger.info(
            "Pull request created",
            extra={"pull_request_id": result.pull_request_id},
        )
        return result

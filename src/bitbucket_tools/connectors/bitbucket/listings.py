"""Listing-style Bitbucket operations exposed to the agent.

Each operation builds a resource path and its filter params, resolves the
deprecated ``limit`` alias into ``pagelen``, and delegates to
``BitbucketPaginator.fetch_values``. Failures surface as BitbucketToolError.
"""

import asyncio
import logging
from typing import Any, Optional

from ...pagination import (
    BitbucketPaginator,
    PaginationError,
    PaginationRequest,
    PaginationResult,
    resolve_pagelen,
)
from .client import BitbucketClient

logger = logging.getLogger("bitbucket_tools.bitbucket.listings")


class BitbucketToolError(Exception):
    """Raised when a listing operation fails (maps to an internal tool error)."""

    pass


class InvalidParamsError(BitbucketToolError):
    """Raised when required tool arguments are missing or unusable."""

    pass


class BitbucketListings:
    """Listing operations over a shared paginator.

    Attributes:
        paginator: BitbucketPaginator bound to a BitbucketClient
        default_workspace: Workspace used when list_repositories gets none
        username: Nickname matched as reviewer by list_pending_review_prs

    Example:
        >>> listings = BitbucketListings(BitbucketPaginator(client), "acme")
        >>> prs = await listings.get_pull_requests("acme", "widgets", state="OPEN", all=True)
    """

    # Repositories checked concurrently by list_pending_review_prs
    REVIEW_BATCH_SIZE = 5
    REVIEW_PR_FIELDS = ",".join(
        [
            "values.id",
            "values.title",
            "values.description",
            "values.state",
            "values.created_on",
            "values.updated_on",
            "values.author",
            "values.source",
            "values.destination",
            "values.participants.user.nickname",
            "values.participants.role",
            "values.participants.approved",
            "values.links",
        ]
    )

    def __init__(
        self,
        paginator: BitbucketPaginator,
        default_workspace: Optional[str] = None,
        username: Optional[str] = None,
    ) -> None:
        self.paginator = paginator
        self.default_workspace = default_workspace or None
        self.username = username or None

    @classmethod
    def from_config(cls, config: Any) -> "BitbucketListings":
        """Wire client, paginator and listings from a BitbucketConfig.

        Raises:
            ValueError: If no credentials are configured
        """
        client = BitbucketClient.from_config(config)
        paginator = BitbucketPaginator(client, config.pagination_policy())
        return cls(paginator, config.workspace or None, config.username or None)

    async def close(self) -> None:
        """Close the underlying transport if it holds connections."""
        close = getattr(self.paginator.transport, "close", None)
        if close is not None:
            await close()

    async def _fetch(
        self,
        path: str,
        description: str,
        failure: str,
        pagelen: Any = None,
        page: Any = None,
        all: Optional[bool] = None,
        params: Optional[dict[str, Any]] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> PaginationResult[Any]:
        """Run one traversal, logging the call and wrapping failures.

        Args:
            path: Listing endpoint relative to the API base URL
            description: Operation name, used in logs and pagination errors
            failure: Human-readable failure prefix (e.g. "list repositories")
            context: Identifying arguments included in log records

        Raises:
            BitbucketToolError: If the traversal fails
        """
        context = context or {}
        logger.info(
            description,
            extra={**context, "pagelen": pagelen, "page": page, "all": all},
        )
        try:
            return await self.paginator.fetch_values(
                path,
                PaginationRequest(
                    pagelen=pagelen,
                    page=page,
                    all=all,
                    params=params or {},
                    description=description,
                ),
            )
        except PaginationError as e:
            logger.error(
                f"{description}_failed",
                extra={**context, "page_index": e.page_index, "error": str(e)},
            )
            raise BitbucketToolError(f"Failed to {failure}: {e}") from e

    # --- Repositories ---

    async def list_repositories(
        self,
        workspace: Optional[str] = None,
        pagelen: Any = None,
        page: Any = None,
        all: Optional[bool] = None,
        name: Optional[str] = None,
        limit: Any = None,
    ) -> list[Any]:
        """List repositories in a workspace.

        Args:
            workspace: Workspace slug (default: configured workspace)
            name: Substring filter on repository name (``q=name~"..."``)
            limit: Deprecated alias for pagelen

        Raises:
            InvalidParamsError: If no workspace is given or configured
        """
        ws_name = workspace or self.default_workspace
        if not ws_name:
            raise InvalidParamsError(
                "Workspace must be provided either as a parameter or through "
                "BITBUCKET_WORKSPACE environment variable"
            )

        params: dict[str, Any] = {}
        if name:
            params["q"] = f'name~"{name}"'

        result = await self._fetch(
            f"/repositories/{ws_name}",
            "listRepositories",
            "list repositories",
            pagelen=resolve_pagelen(pagelen, limit),
            page=page,
            all=all,
            params=params,
            context={"workspace": ws_name, "name_filter": name},
        )
        return result.values

    # --- Pull requests ---

    async def get_pull_requests(
        self,
        workspace: str,
        repo_slug: str,
        state: Optional[str] = None,
        pagelen: Any = None,
        page: Any = None,
        all: Optional[bool] = None,
        limit: Any = None,
    ) -> list[Any]:
        """List pull requests, optionally filtered by state (OPEN, MERGED, ...)."""
        params: dict[str, Any] = {}
        if state:
            params["state"] = state

        result = await self._fetch(
            f"/repositories/{workspace}/{repo_slug}/pullrequests",
            "getPullRequests",
            "get pull requests",
            pagelen=resolve_pagelen(pagelen, limit),
            page=page,
            all=all,
            params=params,
            context={"workspace": workspace, "repo_slug": repo_slug, "state": state},
        )
        return result.values

    async def _pull_request_listing(
        self,
        workspace: str,
        repo_slug: str,
        pull_request_id: str,
        suffix: str,
        description: str,
        failure: str,
        pagelen: Any,
        page: Any,
        all: Optional[bool],
    ) -> PaginationResult[Any]:
        return await self._fetch(
            f"/repositories/{workspace}/{repo_slug}/pullrequests/{pull_request_id}/{suffix}",
            description,
            failure,
            pagelen=pagelen,
            page=page,
            all=all,
            context={
                "workspace": workspace,
                "repo_slug": repo_slug,
                "pull_request_id": pull_request_id,
            },
        )

    async def get_pull_request_activity(
        self,
        workspace: str,
        repo_slug: str,
        pull_request_id: str,
        pagelen: Any = None,
        page: Any = None,
        all: Optional[bool] = None,
    ) -> list[Any]:
        result = await self._pull_request_listing(
            workspace, repo_slug, pull_request_id, "activity",
            "getPullRequestActivity", "get pull request activity",
            pagelen, page, all,
        )
        return result.values

    async def get_pull_request_comments(
        self,
        workspace: str,
        repo_slug: str,
        pull_request_id: str,
        pagelen: Any = None,
        page: Any = None,
        all: Optional[bool] = None,
    ) -> list[Any]:
        result = await self._pull_request_listing(
            workspace, repo_slug, pull_request_id, "comments",
            "getPullRequestComments", "get pull request comments",
            pagelen, page, all,
        )
        return result.values

    async def get_pull_request_commits(
        self,
        workspace: str,
        repo_slug: str,
        pull_request_id: str,
        pagelen: Any = None,
        page: Any = None,
        all: Optional[bool] = None,
    ) -> list[Any]:
        result = await self._pull_request_listing(
            workspace, repo_slug, pull_request_id, "commits",
            "getPullRequestCommits", "get pull request commits",
            pagelen, page, all,
        )
        return result.values

    async def get_pull_request_diffstat(
        self,
        workspace: str,
        repo_slug: str,
        pull_request_id: str,
        pagelen: Any = None,
        page: Any = None,
        all: Optional[bool] = None,
    ) -> list[Any]:
        result = await self._pull_request_listing(
            workspace, repo_slug, pull_request_id, "diffstat",
            "getPullRequestDiffStat", "get pull request diffstat",
            pagelen, page, all,
        )
        return result.values

    async def get_pull_request_tasks(
        self,
        workspace: str,
        repo_slug: str,
        pull_request_id: str,
        pagelen: Any = None,
        page: Any = None,
        all: Optional[bool] = None,
    ) -> list[Any]:
        result = await self._pull_request_listing(
            workspace, repo_slug, pull_request_id, "tasks",
            "getPullRequestTasks", "get pull request tasks",
            pagelen, page, all,
        )
        return result.values

    async def get_pull_request_statuses(
        self,
        workspace: str,
        repo_slug: str,
        pull_request_id: str,
        pagelen: Any = None,
        page: Any = None,
        all: Optional[bool] = None,
    ) -> dict[str, Any]:
        """List commit statuses for a pull request.

        Unlike the other listings this returns the full payload (values plus
        page, pagelen, next, previous, fetchedPages, totalFetched) so callers
        can resume traversal from ``next``.
        """
        result = await self._pull_request_listing(
            workspace, repo_slug, pull_request_id, "statuses",
            "getPullRequestStatuses", "get pull request statuses",
            pagelen, page, all,
        )
        return result.to_payload()

    async def list_pending_comments(
        self, workspace: str, repo_slug: str, pull_request_id: str
    ) -> list[Any]:
        """Return the caller's draft (pending) comments on a pull request.

        Walks every comment page at the maximum page size, then keeps the
        ones flagged ``pending``.
        """
        result = await self._fetch(
            f"/repositories/{workspace}/{repo_slug}/pullrequests/{pull_request_id}/comments",
            "listPendingComments",
            "list pending comments",
            pagelen=self.paginator.policy.max_pagelen,
            all=True,
            context={
                "workspace": workspace,
                "repo_slug": repo_slug,
                "pull_request_id": pull_request_id,
            },
        )
        return [
            comment
            for comment in result.values
            if isinstance(comment, dict) and comment.get("pending") is True
        ]

    async def list_pending_review_prs(
        self,
        workspace: Optional[str] = None,
        limit: int = 50,
        repository_list: Optional[list[str]] = None,
    ) -> dict[str, Any]:
        """Find open pull requests awaiting the configured user's approval.

        Without ``repository_list`` every repository in the workspace is
        listed first (exhaustively, at the maximum page size). Repositories
        are then checked in batches of REVIEW_BATCH_SIZE for open pull
        requests where the user is a REVIEWER who has not approved. A
        repository whose pull requests cannot be read is logged and skipped.

        Returns:
            Dict with pending_review_prs (newest update first, at most
            ``limit``), total_found, searched_repositories, user, workspace

        Raises:
            InvalidParamsError: If no workspace or no username is configured
            BitbucketToolError: If the repository listing fails
        """
        ws_name = workspace or self.default_workspace
        if not ws_name:
            raise InvalidParamsError(
                "Workspace must be provided either as a parameter or through "
                "BITBUCKET_WORKSPACE environment variable"
            )
        if not self.username:
            raise InvalidParamsError(
                "Username must be provided through BITBUCKET_USERNAME "
                "environment variable"
            )

        logger.info(
            "getPendingReviewPRs",
            extra={
                "workspace": ws_name,
                "username": self.username,
                "repositories": len(repository_list) if repository_list else "all",
                "limit": limit,
            },
        )

        if repository_list:
            repositories = list(repository_list)
        else:
            result = await self._fetch(
                f"/repositories/{ws_name}",
                "getPendingReviewPRs.repositories",
                "get pending review PRs",
                pagelen=self.paginator.policy.max_pagelen,
                all=True,
                context={"workspace": ws_name},
            )
            repositories = [
                repo.get("slug") or repo.get("name")
                for repo in result.values
                if isinstance(repo, dict) and (repo.get("slug") or repo.get("name"))
            ]

        pending: list[dict[str, Any]] = []
        for start in range(0, len(repositories), self.REVIEW_BATCH_SIZE):
            batch = repositories[start : start + self.REVIEW_BATCH_SIZE]
            batch_results = await asyncio.gather(
                *(self._pending_reviews_in(ws_name, repo_slug, limit) for repo_slug in batch)
            )
            for repo_prs in batch_results:
                pending.extend(repo_prs)
                if len(pending) >= limit:
                    break
            if len(pending) >= limit:
                break

        pending = pending[:limit]
        pending.sort(key=lambda pr: pr.get("updated_on") or "", reverse=True)

        logger.info(
            "getPendingReviewPRs_done",
            extra={"workspace": ws_name, "total_found": len(pending)},
        )
        return {
            "pending_review_prs": pending,
            "total_found": len(pending),
            "searched_repositories": len(repositories),
            "user": self.username,
            "workspace": ws_name,
        }

    async def _pending_reviews_in(
        self, workspace: str, repo_slug: str, limit: int
    ) -> list[dict[str, Any]]:
        """Open pull requests in one repository awaiting the user's approval."""
        try:
            result = await self.paginator.fetch_values(
                f"/repositories/{workspace}/{repo_slug}/pullrequests",
                PaginationRequest(
                    pagelen=min(limit, 50),
                    params={"state": "OPEN", "fields": self.REVIEW_PR_FIELDS},
                    description="getPendingReviewPRs.pullrequests",
                ),
            )
        except PaginationError as e:
            logger.warning(
                "pending_review_repository_skipped",
                extra={"workspace": workspace, "repo_slug": repo_slug, "error": str(e)},
            )
            return []

        return [
            {**pr, "repository": {"name": repo_slug, "full_name": f"{workspace}/{repo_slug}"}}
            for pr in result.values
            if isinstance(pr, dict) and self._awaits_review(pr)
        ]

    def _awaits_review(self, pr: dict[str, Any]) -> bool:
        participants = pr.get("participants")
        if not isinstance(participants, list):
            return False
        return any(
            isinstance(p, dict)
            and (p.get("user") or {}).get("nickname") == self.username
            and p.get("role") == "REVIEWER"
            and p.get("approved") is False
            for p in participants
        )

    # --- Pipelines ---

    async def list_pipeline_runs(
        self,
        workspace: str,
        repo_slug: str,
        pagelen: Any = None,
        page: Any = None,
        all: Optional[bool] = None,
        status: Optional[str] = None,
        target_branch: Optional[str] = None,
        trigger_type: Optional[str] = None,
        limit: Any = None,
    ) -> list[Any]:
        """List pipeline runs with optional status/branch/trigger filters."""
        params: dict[str, Any] = {}
        if status:
            params["status"] = status
        if target_branch:
            params["target.branch"] = target_branch
        if trigger_type:
            params["trigger_type"] = trigger_type

        result = await self._fetch(
            f"/repositories/{workspace}/{repo_slug}/pipelines",
            "listPipelineRuns",
            "list pipeline runs",
            pagelen=resolve_pagelen(pagelen, limit),
            page=page,
            all=all,
            params=params,
            context={
                "workspace": workspace,
                "repo_slug": repo_slug,
                "status": status,
                "target_branch": target_branch,
                "trigger_type": trigger_type,
            },
        )
        return result.values

    async def get_pipeline_steps(
        self,
        workspace: str,
        repo_slug: str,
        pipeline_uuid: str,
        pagelen: Any = None,
        page: Any = None,
        all: Optional[bool] = None,
    ) -> list[Any]:
        result = await self._fetch(
            f"/repositories/{workspace}/{repo_slug}/pipelines/{pipeline_uuid}/steps",
            "getPipelineSteps",
            "get pipeline steps",
            pagelen=pagelen,
            page=page,
            all=all,
            context={
                "workspace": workspace,
                "repo_slug": repo_slug,
                "pipeline_uuid": pipeline_uuid,
            },
        )
        return result.values

"""GitHub REST client for the writes the bot makes on a repository.

All failures surface as RepositoryMutationFailure. Callers treat these
writes as best-effort: a failure here never causes a ledger retry.
"""

import base64
import logging
from typing import Any, Dict, Optional

import httpx

from .errors import RepositoryMutationFailure
from .models import RepoRef, ReplyTarget

logger = logging.getLogger(__name__)


class RepositoryMutator:
    """Create branches, commit files, open pull requests and post comments."""

    def __init__(
        self,
        token: str = "",
        api_url: str = "https://api.github.com",
        timeout: float = 30.0,
    ):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
        allow: tuple = (),
    ) -> httpx.Response:
        """Send a request; statuses in `allow` are returned instead of raised."""
        async with httpx.AsyncClient() as client:
            try:
                response = await client.request(
                    method,
                    f"{self.api_url}{path}",
                    json=json,
                    params=params,
                    headers=self.headers,
                    timeout=self.timeout,
                )
            except httpx.HTTPError as e:
                raise RepositoryMutationFailure(f"{method} {path} failed: {e}") from e

        if response.status_code in allow:
            return response
        if response.is_error:
            raise RepositoryMutationFailure(
                f"{method} {path} returned {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        return response

    async def create_branch(self, repo: RepoRef, from_ref: str, new_name: str) -> str:
        """Create new_name at the head of from_ref. An existing branch is kept.

        Returns:
            The commit SHA the branch was created from.
        """
        base = f"/repos/{repo.owner}/{repo.name}/git"
        ref = await self._request("GET", f"{base}/ref/heads/{from_ref}")
        sha = ref.json()["object"]["sha"]

        response = await self._request(
            "POST",
            f"{base}/refs",
            json={"ref": f"refs/heads/{new_name}", "sha": sha},
            allow=(422,),
        )
        if response.status_code == 422:
            if "already exists" not in response.text:
                raise RepositoryMutationFailure(
                    f"could not create branch {new_name}: {response.text}",
                    status_code=422,
                )
            logger.info(f"Branch {new_name} already exists in {repo.full_name}")
        return sha

    async def put_file(
        self,
        repo: RepoRef,
        path: str,
        content: bytes,
        branch: str,
        message: str,
    ) -> dict:
        """Create or update a file on branch.

        The current blob SHA is passed through when the file exists, so the
        write is an update rather than a conflicting create.
        """
        url = f"/repos/{repo.owner}/{repo.name}/contents/{path}"
        current = await self._request("GET", url, params={"ref": branch}, allow=(404,))

        body: Dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content).decode("ascii"),
            "branch": branch,
        }
        if current.status_code == 200:
            body["sha"] = current.json()["sha"]

        response = await self._request("PUT", url, json=body)
        return response.json()

    async def open_pull_request(
        self,
        repo: RepoRef,
        head: str,
        base: str,
        title: str,
        body: str,
    ) -> dict:
        """Open a pull request, or return the one already open for head."""
        url = f"/repos/{repo.owner}/{repo.name}/pulls"
        response = await self._request(
            "POST",
            url,
            json={
                "title": title,
                "head": head,
                "base": base,
                "body": body,
                "maintainer_can_modify": True,
            },
            allow=(422,),
        )
        if response.status_code != 422:
            return response.json()

        existing = await self._request(
            "GET", url, params={"head": f"{repo.owner}:{head}", "state": "open"}
        )
        pulls = existing.json()
        if not pulls:
            raise RepositoryMutationFailure(
                f"could not open pull request from {head}: {response.text}",
                status_code=422,
            )
        logger.info(f"Pull request for {head} already open in {repo.full_name}")
        return pulls[0]

    async def post_comment(self, target: ReplyTarget, body: str) -> dict:
        response = await self._request(
            "POST",
            f"/repos/{target.repo.owner}/{target.repo.name}"
            f"/issues/{target.issue_number}/comments",
            json={"body": body},
        )
        return response.json()

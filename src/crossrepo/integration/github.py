"""GitHub REST client: repo-pattern expansion and repository metadata lookup."""

from __future__ import annotations

import re
from dataclasses import dataclass
from fnmatch import fnmatchcase
from types import TracebackType
from typing import TYPE_CHECKING, Any

import httpx

from crossrepo.constants import DEFAULT_GITHUB_API_URL

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

_OWNER_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?$")
_NAME_RE = re.compile(r"^[A-Za-z0-9_.*?\[\]-]+$")
_WILDCARD_CHARS = ("*", "?", "[")
_PER_PAGE = 100


class GitHubError(RuntimeError):
    """Raised when GitHub rejects a request or returns an unexpected payload."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True, slots=True)
class GitHubRepoReference:
    """An ``owner/name[#ref]`` reference to one repository."""

    owner: str
    name: str
    ref: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def is_pattern(self) -> bool:
        return any(char in self.name for char in _WILDCARD_CHARS)


@dataclass(frozen=True, slots=True)
class GitHubRepo:
    """Resolved repository metadata."""

    owner: str
    name: str
    full_name: str
    clone_url: str
    default_branch: str
    ref: str | None = None


def parse_repo_pattern(pattern: str) -> GitHubRepoReference:
    """Parse ``owner/name``, ``owner/name#ref`` or ``owner/<glob>`` into a reference."""

    text = pattern.strip()
    target, _, ref = text.partition("#")
    owner, sep, name = target.partition("/")
    if not sep or not owner or not name:
        raise ValueError(f"repo pattern must look like 'owner/name[#ref]': {pattern!r}")
    if _OWNER_RE.fullmatch(owner) is None:
        raise ValueError(f"repo pattern has an invalid owner: {pattern!r}")
    if _NAME_RE.fullmatch(name) is None:
        raise ValueError(f"repo pattern has an invalid name: {pattern!r}")
    if "#" in text and not ref.strip():
        raise ValueError(f"repo pattern has an empty ref: {pattern!r}")
    return GitHubRepoReference(owner=owner, name=name, ref=ref.strip() or None)


class GitHubConnection:
    """Authenticated connection to the GitHub REST API."""

    def __init__(
        self,
        token: str | None,
        *,
        api_url: str = DEFAULT_GITHUB_API_URL,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "crossrepo",
        }
        if token:
            self._headers["Authorization"] = f"Bearer {token}"
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    async def __aenter__(self) -> GitHubConnection:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def expand_repo_patterns(self, patterns: Sequence[str]) -> list[GitHubRepoReference]:
        """Expand wildcard patterns against the owner's repositories.

        Results keep the order of ``patterns`` (and GitHub's listing order within
        one wildcard) and are de-duplicated case-insensitively by full name.
        """

        expanded: list[GitHubRepoReference] = []
        seen: set[str] = set()
        owner_listings: dict[str, list[str]] = {}

        for pattern in patterns:
            reference = parse_repo_pattern(pattern)
            if not reference.is_pattern:
                candidates = [reference]
            else:
                owner_key = reference.owner.lower()
                if owner_key not in owner_listings:
                    owner_listings[owner_key] = await self._list_owner_repo_names(reference.owner)
                glob = reference.name.lower()
                candidates = [
                    GitHubRepoReference(owner=reference.owner, name=name, ref=reference.ref)
                    for name in owner_listings[owner_key]
                    if fnmatchcase(name.lower(), glob)
                ]

            for candidate in candidates:
                key = candidate.full_name.lower()
                if key in seen:
                    continue
                seen.add(key)
                expanded.append(candidate)

        return expanded

    async def get_repo_info(self, reference: GitHubRepoReference) -> GitHubRepo:
        """Fetch metadata for ``reference``; the reference's ref is carried through."""

        response = await self._get(f"{self._api_url}/repos/{reference.owner}/{reference.name}")
        if response.status_code == httpx.codes.NOT_FOUND:
            raise GitHubError(
                f"repository not found: {reference.full_name}",
                status_code=response.status_code,
            )
        payload = self._json_object(response, reference.full_name)

        owner = payload.get("owner")
        owner_login = owner.get("login") if isinstance(owner, dict) else None
        fields = {
            "name": payload.get("name"),
            "full_name": payload.get("full_name"),
            "clone_url": payload.get("clone_url"),
            "default_branch": payload.get("default_branch"),
            "owner.login": owner_login,
        }
        missing = sorted(key for key, value in fields.items() if not isinstance(value, str))
        if missing:
            raise GitHubError(
                f"incomplete metadata for {reference.full_name}: missing {', '.join(missing)}"
            )

        return GitHubRepo(
            owner=str(owner_login),
            name=str(fields["name"]),
            full_name=str(fields["full_name"]),
            clone_url=str(fields["clone_url"]),
            default_branch=str(fields["default_branch"]),
            ref=reference.ref,
        )

    async def _list_owner_repo_names(self, owner: str) -> list[str]:
        params = {"per_page": str(_PER_PAGE)}
        response = await self._get(f"{self._api_url}/orgs/{owner}/repos", params=params)
        if response.status_code == httpx.codes.NOT_FOUND:
            response = await self._get(f"{self._api_url}/users/{owner}/repos", params=params)
        if response.status_code == httpx.codes.NOT_FOUND:
            raise GitHubError(f"owner not found: {owner}", status_code=response.status_code)

        names: list[str] = []
        while True:
            for item in self._json_list(response, owner):
                name = item.get("name") if isinstance(item, dict) else None
                if isinstance(name, str):
                    names.append(name)
            next_url = response.links.get("next", {}).get("url")
            if not next_url:
                return names
            response = await self._get(next_url)

    async def _get(
        self,
        url: str,
        *,
        params: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        try:
            response = await self._client.get(url, params=params, headers=self._headers)
        except httpx.HTTPError as exc:
            raise GitHubError(f"request to {url} failed: {exc}") from exc

        if response.status_code == httpx.codes.NOT_FOUND:
            return response
        if response.is_error:
            detail = _error_detail(response)
            raise GitHubError(
                f"GitHub returned {response.status_code} for {url}: {detail}",
                status_code=response.status_code,
            )
        return response

    def _json_object(self, response: httpx.Response, context: str) -> dict[str, Any]:
        payload = self._decode(response, context)
        if not isinstance(payload, dict):
            raise GitHubError(f"expected a JSON object for {context}")
        return payload

    def _json_list(self, response: httpx.Response, context: str) -> list[Any]:
        payload = self._decode(response, context)
        if not isinstance(payload, list):
            raise GitHubError(f"expected a JSON array for {context}")
        return payload

    def _decode(self, response: httpx.Response, context: str) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise GitHubError(f"invalid JSON from GitHub for {context}") from exc


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text.strip() or response.reason_phrase
    if isinstance(payload, dict) and isinstance(payload.get("message"), str):
        return str(payload["message"])
    return response.reason_phrase


__all__ = [
    "GitHubConnection",
    "GitHubError",
    "GitHubRepo",
    "GitHubRepoReference",
    "parse_repo_pattern",
]

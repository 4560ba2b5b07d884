"""
Handler strategies reporting to GitLab merge requests.

Both strategies address a single merge request by its project (an id or
a full path like ``group/project``) and its iid (``mergeRequestId``)::

    handlers:
      - pullRequestComment:
          gitlab:
            project: group/project
            mergeRequestId: 12
            api: https://gitlab.example.com    # optional; default: gitlab.com
            pullRequestState: opened           # optional; act only in this state
            tokenRef:
              secretName: gitlab-token
              key: token                       # optional; default: token
          comment: "### Deployment status"    # optional header of the report
      - pullRequestApprove:
          gitlab: {...}

The token is read from a secret in the namespace of the ``ObjectHandler``.
"""
import dataclasses
import urllib.parse
from collections.abc import Mapping
from typing import Any

import aiohttp

from objecthandler._cogs.clients import repository as repositories
from objecthandler._cogs.configs import configuration
from objecthandler._cogs.helpers import typedefs
from objecthandler._cogs.structs import bodies, conditions, objecthandlers
from objecthandler._core.intents import handlers

DEFAULT_API = 'https://gitlab.com'
DEFAULT_HEADER = '### Object status'
PAGE_SIZE = 100

# The target's condition that decides whether the merge request is approved.
READY_CONDITION = 'Ready'


class GitlabError(Exception):
    """ Raised when GitLab responds with an error. """

    def __init__(self, message: str, *, status: int) -> None:
        super().__init__(message)
        self.status = status


@dataclasses.dataclass(frozen=True)
class MergeRequest:
    api: str
    project: str
    iid: int
    state: str | None = None  # filter: act only if the merge request is in this state.
    token_ref: Mapping[str, Any] | None = None

    def __str__(self) -> str:
        return f'{self.project}!{self.iid}'

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "MergeRequest":
        gitlab = config.get('gitlab')
        if not isinstance(gitlab, Mapping):
            raise objecthandlers.HandlerConfigError("No pull request provider specified.")
        project = gitlab.get('project')
        if not project or not isinstance(project, (str, int)):
            raise objecthandlers.HandlerConfigError("gitlab.project is required.")
        try:
            iid = int(gitlab['mergeRequestId'])
        except (KeyError, TypeError, ValueError):
            raise objecthandlers.HandlerConfigError("gitlab.mergeRequestId must be an integer.")
        return cls(
            api=(gitlab.get('api') or DEFAULT_API).rstrip('/'),
            project=str(project),
            iid=iid,
            state=gitlab.get('pullRequestState') or None,
            token_ref=gitlab.get('tokenRef'),
        )


class GitlabClient:
    """
    A tiny client of the GitLab REST API v4: only what the strategies need.

    A new HTTP session is opened for every request: the strategies are built
    per reconciliation pass and do only a few requests in each.
    """

    def __init__(
            self,
            *,
            api: str,
            token: str | None,
            timeout: float | None = None,
    ) -> None:
        super().__init__()
        self.api = api.rstrip('/')
        self.headers = {'PRIVATE-TOKEN': token} if token else {}
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    def _mr_url(self, mr: MergeRequest, *parts: str) -> str:
        project = urllib.parse.quote(mr.project, safe='')
        return '/'.join([f'{self.api}/api/v4/projects/{project}/merge_requests/{mr.iid}', *parts])

    async def request(
            self,
            method: str,
            url: str,
            *,
            payload: object | None = None,
            params: Mapping[str, str] | None = None,
    ) -> tuple[Any, Mapping[str, str]]:
        async with aiohttp.ClientSession(headers=self.headers, timeout=self.timeout) as session:
            async with session.request(method, url, json=payload, params=params) as response:
                if response.status >= 400:
                    text = await response.text()
                    raise GitlabError(f"GitLab responded with HTTP {response.status} "
                                      f"to {method.upper()} {url}: {text}",
                                      status=response.status)
                data = await response.json(content_type=None) if response.status != 204 else None
                return data, dict(response.headers)

    async def get_merge_request(self, mr: MergeRequest) -> Mapping[str, Any]:
        data, _ = await self.request('get', self._mr_url(mr))
        return data

    async def list_notes(self, mr: MergeRequest) -> list[Mapping[str, Any]]:
        notes: list[Mapping[str, Any]] = []
        page: str | None = '1'
        while page:
            params = {'per_page': str(PAGE_SIZE), 'page': page}
            data, headers = await self.request('get', self._mr_url(mr, 'notes'), params=params)
            notes.extend(data or [])
            page = headers.get('X-Next-Page') or None
        return notes

    async def create_note(self, mr: MergeRequest, body: str) -> None:
        await self.request('post', self._mr_url(mr, 'notes'), payload={'body': body})

    async def update_note(self, mr: MergeRequest, note_id: int, body: str) -> None:
        await self.request('put', self._mr_url(mr, 'notes', str(note_id)), payload={'body': body})

    async def get_current_user(self) -> Mapping[str, Any]:
        data, _ = await self.request('get', f'{self.api}/api/v4/user')
        return data

    async def get_approvals(self, mr: MergeRequest) -> Mapping[str, Any]:
        data, _ = await self.request('get', self._mr_url(mr, 'approvals'))
        return data

    async def approve(self, mr: MergeRequest) -> None:
        await self.request('post', self._mr_url(mr, 'approve'))

    async def unapprove(self, mr: MergeRequest) -> None:
        await self.request('post', self._mr_url(mr, 'unapprove'))


def make_marker(key: str) -> str:
    """ A hidden marker to find the handler's own note among all others. """
    return f'<!-- objecthandler:{key} -->'


def render_report(
        target: Mapping[str, Any],
        *,
        marker: str,
        header: str | None = None,
) -> str:
    """
    Render the target object's status as a Markdown note.

    The rendering is deterministic (no timestamps), so that the same status
    renders to the same text, and the note is not updated on every pass.
    """
    meta = target.get('metadata', {})
    namespace = meta.get('namespace')
    name = meta.get('name', '')
    ident = f'{namespace}/{name}' if namespace else name
    lines = [
        marker,
        header or DEFAULT_HEADER,
        '',
        f"**{target.get('kind', 'Object')}** `{ident}`",
        '',
    ]

    items = target.get('status', {}).get('conditions')
    if isinstance(items, list) and items:
        lines.append('| Type | Status | Reason | Message |')
        lines.append('|------|--------|--------|---------|')
        for item in items:
            cells = [str(item.get(field, '')).replace('|', '\\|').replace('\n', ' ')
                     for field in ['type', 'status', 'reason', 'message']]
            lines.append('| ' + ' | '.join(cells) + ' |')
    else:
        lines.append('_No conditions reported._')
    return '\n'.join(lines) + '\n'


class _MergeRequestHandler:
    def __init__(self, *, client: GitlabClient, mr: MergeRequest) -> None:
        super().__init__()
        self.client = client
        self.mr = mr

    async def _in_state(self, logger: typedefs.Logger) -> bool:
        if self.mr.state is None:
            return True
        data = await self.client.get_merge_request(self.mr)
        if data.get('state') != self.mr.state:
            logger.debug(f"Merge request {self.mr} is {data.get('state')!r}, "
                         f"not {self.mr.state!r}; skipping.")
            return False
        return True


class PullRequestCommentHandler(_MergeRequestHandler):
    """
    Keep exactly one note on the merge request with the target's status.
    """

    def __init__(self, *, client: GitlabClient, mr: MergeRequest, header: str | None) -> None:
        super().__init__(client=client, mr=mr)
        self.header = header

    async def handle(
            self,
            *,
            repository: repositories.ObjectRepository,
            target: bodies.RawBody,
            status: objecthandlers.HandlerStatus,
            logger: typedefs.Logger,
    ) -> None:
        if not await self._in_state(logger):
            return

        marker = make_marker(status['key'])
        text = render_report(target, marker=marker, header=self.header)
        notes = await self.client.list_notes(self.mr)
        existing = next((note for note in notes if marker in (note.get('body') or '')), None)
        if existing is None:
            await self.client.create_note(self.mr, text)
            logger.info(f"Commented on merge request {self.mr}.")
        elif existing.get('body') != text:
            await self.client.update_note(self.mr, existing['id'], text)
            logger.info(f"Updated the comment on merge request {self.mr}.")


class PullRequestApproveHandler(_MergeRequestHandler):
    """
    Approve the merge request while the target is ready; revoke otherwise.
    """

    async def handle(
            self,
            *,
            repository: repositories.ObjectRepository,
            target: bodies.RawBody,
            status: objecthandlers.HandlerStatus,
            logger: typedefs.Logger,
    ) -> None:
        if not await self._in_state(logger):
            return

        ready = conditions.is_condition_true(target.get('status', {}).get('conditions'),
                                             READY_CONDITION)
        user = await self.client.get_current_user()
        approvals = await self.client.get_approvals(self.mr)
        approved = any(
            (item.get('user') or {}).get('id') == user.get('id')
            for item in approvals.get('approved_by') or []
        )
        if ready and not approved:
            await self.client.approve(self.mr)
            logger.info(f"Approved merge request {self.mr}.")
        elif not ready and approved:
            await self.client.unapprove(self.mr)
            logger.info(f"Revoked the approval of merge request {self.mr}.")


async def _make_client(
        mr: MergeRequest,
        *,
        namespace: str,
        repository: repositories.ObjectRepository,
        settings: configuration.OperatorSettings,
        logger: typedefs.Logger,
) -> GitlabClient:
    token: str | None = None
    if mr.token_ref is not None:
        token = await handlers.resolve_secret(mr.token_ref, namespace=namespace,
                                              repository=repository, logger=logger)
    return GitlabClient(api=mr.api, token=token, timeout=settings.networking.request_timeout)


@handlers.default_registry.register(objecthandlers.HandlerKind.PULL_REQUEST_COMMENT)
async def build_pull_request_comment(
        config: Mapping[str, Any],
        *,
        namespace: str,
        repository: repositories.ObjectRepository,
        settings: configuration.OperatorSettings,
        logger: typedefs.Logger,
) -> PullRequestCommentHandler:
    mr = MergeRequest.from_config(config)
    client = await _make_client(mr, namespace=namespace, repository=repository,
                                settings=settings, logger=logger)
    return PullRequestCommentHandler(client=client, mr=mr, header=config.get('comment'))


@handlers.default_registry.register(objecthandlers.HandlerKind.PULL_REQUEST_APPROVE)
async def build_pull_request_approve(
        config: Mapping[str, Any],
        *,
        namespace: str,
        repository: repositories.ObjectRepository,
        settings: configuration.OperatorSettings,
        logger: typedefs.Logger,
) -> PullRequestApproveHandler:
    mr = MergeRequest.from_config(config)
    client = await _make_client(mr, namespace=namespace, repository=repository,
                                settings=settings, logger=logger)
    return PullRequestApproveHandler(client=client, mr=mr)

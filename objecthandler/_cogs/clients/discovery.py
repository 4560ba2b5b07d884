"""
Resolution of the declared kinds into the API resources.

The users declare the kinds as in the manifests (``apps/v1, Deployment``),
while the API URLs need the plural names (``deployments``) and the scope.
The discovery endpoints of K8s API are scanned once per group-version
and cached for the lifetime of the API context.
"""
from typing import Any

from objecthandler._cogs.clients import api, auth, errors
from objecthandler._cogs.configs import configuration
from objecthandler._cogs.helpers import typedefs
from objecthandler._cogs.structs import references


class ResourceDiscoveryError(Exception):
    """ Raised when a declared kind cannot be resolved to an API resource. """


@auth.authenticated
async def discover(
        gvk: references.GroupVersionKind,
        *,
        settings: configuration.OperatorSettings,
        logger: typedefs.Logger,
        context: auth.APIContext | None = None,  # injected by the decorator
) -> references.Resource:
    if context is None:  # for type-checking!
        raise RuntimeError("API instance is not injected by the decorator.")

    async with context.discovery_lock:
        if gvk.api_version not in context.discovered:
            context.discovered[gvk.api_version] = await _read_version(
                gvk=gvk, settings=settings, logger=logger)

    try:
        return context.discovered[gvk.api_version][gvk.kind]
    except KeyError:
        # Forget the group-version, so that the next attempt rescans it:
        # e.g. if the CRD is created later than the objects referring to it.
        context.discovered.pop(gvk.api_version, None)
        raise ResourceDiscoveryError(f"Kind {gvk} is not served by the cluster.") from None


async def _read_version(
        *,
        gvk: references.GroupVersionKind,
        settings: configuration.OperatorSettings,
        logger: typedefs.Logger,
) -> dict[str, references.Resource]:
    group_version = references.Resource(group=gvk.group, version=gvk.version, plural='')
    try:
        rsp: dict[str, Any] = await api.get(
            url=group_version.get_version_url(),
            settings=settings,
            logger=logger,
        )
    except errors.APINotFoundError:
        raise ResourceDiscoveryError(f"API {gvk.api_version} is not served by the cluster.") from None

    # Subresources are listed as separate resources ("deployments/status"),
    # and there can be several resources of the same kind (rarely), so the main
    # resource is the one without a slash in its name.
    return {
        resource['kind']: references.Resource(
            group=gvk.group,
            version=gvk.version,
            kind=resource['kind'],
            plural=resource['name'],
            namespaced=resource['namespaced'],
            subresources=frozenset(
                subresource['name'].split('/', 1)[-1]
                for subresource in rsp.get('resources', [])
                if subresource['name'].startswith(f'{resource["name"]}/')
            ),
        )
        for resource in rsp.get('resources', [])
        if '/' not in resource['name']
    }

from objecthandler._cogs.clients import api, errors
from objecthandler._cogs.configs import configuration
from objecthandler._cogs.helpers import typedefs
from objecthandler._cogs.structs import bodies, patches, references


async def patch_obj(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: references.Namespace,
        name: str,
        patch: patches.Patch,
        logger: typedefs.Logger,
) -> bodies.RawBody | None:
    """
    Patch the status of an object as a JSON merge-patch (RFC 7386).

    Only the ``status`` stanza is patched, via the status subresource
    if the resource has one, so that the object's spec is never touched.

    Returns the patched body as reported by the server. An empty patch does
    not reach the server, and an empty body is returned.

    Returns ``None`` if the underlying object is absent, as detected by trying
    to patch it and failing with HTTP 404. This can happen if the object was
    deleted externally during the processing.
    """
    if not patch:
        return bodies.RawBody()

    as_subresource = 'status' in resource.subresources
    try:
        patched_body: bodies.RawBody = await api.patch(
            url=resource.get_url(namespace=namespace, name=name,
                                 subresource='status' if as_subresource else None),
            headers={'Content-Type': 'application/merge-patch+json'},
            payload=dict(patch),
            settings=settings,
            logger=logger,
        )
        return patched_body

    except errors.APINotFoundError:
        return None

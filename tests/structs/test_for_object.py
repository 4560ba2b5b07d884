import pytest

from objecthandler._cogs.structs.objecthandlers import ForObject, InvalidReferenceError, \
                                                       get_for_object, get_identity, get_interval
from objecthandler._cogs.structs.references import GroupVersionKind, ObjectName


def test_creation_from_full_spec():
    for_object = ForObject.from_spec({
        'group': 'apps', 'version': 'v1', 'kind': 'Deployment',
        'name': 'app', 'namespace': 'other',
    })
    assert for_object.gvk == GroupVersionKind(group='apps', version='v1', kind='Deployment')
    assert for_object.name == 'app'
    assert for_object.namespace == 'other'


def test_core_group_is_empty():
    for_object = ForObject.from_spec({'version': 'v1', 'kind': 'ConfigMap', 'name': 'cm'})
    assert for_object.group == ''
    assert for_object.gvk.api_version == 'v1'


@pytest.mark.parametrize('namespace, expected', [
    pytest.param(None, 'own', id='absent'),
    pytest.param('', 'own', id='empty'),
    pytest.param('other', 'other', id='overridden'),
])
def test_namespace_defaulting(namespace, expected):
    for_object = ForObject(group='apps', version='v1', kind='Deployment', name='app',
                           namespace=namespace or None)
    assert for_object.resolve_namespace('own') == expected


@pytest.mark.parametrize('field', ['version', 'kind', 'name'])
def test_required_fields(field):
    raw = {'group': 'apps', 'version': 'v1', 'kind': 'Deployment', 'name': 'app'}
    del raw[field]
    with pytest.raises(InvalidReferenceError, match=rf"spec.forObject.{field} is required"):
        ForObject.from_spec(raw)


@pytest.mark.parametrize('raw', [None, 'app', ['app']])
def test_non_objects(raw):
    with pytest.raises(InvalidReferenceError, match=r"must be an object"):
        ForObject.from_spec(raw)


def test_getting_from_body():
    body = {'spec': {'forObject': {'version': 'v1', 'kind': 'Secret', 'name': 's'}}}
    for_object = get_for_object(body)
    assert for_object.kind == 'Secret'


def test_getting_from_body_without_spec():
    with pytest.raises(InvalidReferenceError):
        get_for_object({})


def test_identity():
    body = {'metadata': {'namespace': 'ns1', 'name': 'name1'}}
    assert get_identity(body) == ObjectName(namespace='ns1', name='name1')
    assert str(get_identity(body)) == 'ns1/name1'


@pytest.mark.parametrize('interval, expected', [
    pytest.param(None, 30.0, id='default'),
    pytest.param('10s', 10.0, id='seconds'),
    pytest.param('1m30s', 90.0, id='combined'),
    pytest.param(5, 5.0, id='number'),
])
def test_interval(interval, expected):
    body = {'spec': {} if interval is None else {'interval': interval}}
    assert get_interval(body, default=30.0) == expected


def test_interval_malformed():
    with pytest.raises(ValueError):
        get_interval({'spec': {'interval': 'soon'}}, default=30.0)

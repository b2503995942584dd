import asyncio
from copy import deepcopy
from itertools import count

from autotls.controller.exceptions import ConflictError, NotFoundError
from autotls.controller.ingress.desired import tls_bindings
from autotls.controller.ingress.issuer import IssuerStatus
from autotls.data.ingress import HostRule


MUTATIONS = ("patch_ingress", "create_certificate")


class FakeClusterApi(object):
    """In-memory cluster implementing the interface of
    :class:`autotls.controller.ingress.client.KubernetesClusterApi`.

    Every call is recorded in :attr:`calls`. Errors can be injected per method:
    the exceptions in ``errors[method]`` are raised, one per call, before the
    method does anything.

    Args:
        issuers (dict[str, IssuerStatus], optional): status of the issuers of the
            cluster. Unknown issuers are not found.

    """

    def __init__(self, issuers=None):
        self.ingresses = {}
        self.certificates = {}
        self.issuers = issuers or {}
        self.conditions = []
        self.calls = []
        self.errors = {}
        self._versions = count(100)

    def add_ingress(self, routing):
        """Store a routing object in the cluster with a new resource version.

        Returns:
            RoutingObject: a copy of the stored object.

        """
        stored = deepcopy(routing)
        stored.resource_version = str(next(self._versions))
        self.ingresses[stored.key] = stored
        return deepcopy(stored)

    def touch(self, key):
        """Simulate a modification of an object by another client."""
        self.ingresses[key].resource_version = str(next(self._versions))

    def mutations(self):
        return [call for call in self.calls if call[0] in MUTATIONS]

    def call_names(self):
        return [call[0] for call in self.calls]

    def _call(self, method, *args):
        self.calls.append((method,) + args)
        errors = self.errors.get(method)
        if errors:
            raise errors.pop(0)

    async def get_ingress(self, key):
        self._call("get_ingress", key)
        try:
            return deepcopy(self.ingresses[key])
        except KeyError:
            raise NotFoundError(f"Ingress {key} not found")

    async def patch_ingress(self, key, rules, expected_version):
        self._call("patch_ingress", key, rules, expected_version)
        live = self.ingresses.get(key)
        if live is None:
            raise NotFoundError(f"Ingress {key} not found")
        if live.resource_version != expected_version:
            raise ConflictError(f"Ingress {key} was modified")

        live.rules = [
            HostRule(host=rule.host, http=deepcopy(rule.http), tls_secret=rule.tls_secret)
            for rule in rules
        ]
        live.tls = tls_bindings(rules)
        live.resource_version = str(next(self._versions))
        return live.resource_version

    async def certificate_exists(self, namespace, name):
        self._call("certificate_exists", namespace, name)
        return (namespace, name) in self.certificates

    async def create_certificate(self, routing, request):
        self._call("create_certificate", routing.key, request)
        key = (routing.namespace, request.secret_name)
        if key in self.certificates:
            return False
        self.certificates[key] = deepcopy(request)
        return True

    async def query_issuer(self, name, kind, namespace):
        self._call("query_issuer", name, kind, namespace)
        return self.issuers.get(name, IssuerStatus.NOT_FOUND)

    async def report_condition(self, routing, condition):
        self._call("report_condition", routing.key, condition)
        self.conditions.append((routing.key, condition))


class SimpleWorker(object):
    """Simple controller worker which validates received resource keys against
    a set of expected keys.

    Args:
        expected (set[ObjectKey]): Set of expected resource keys

    """

    def __init__(self, expected):
        self.expected = expected
        self.received = set()
        self.done = asyncio.get_running_loop().create_future()

    async def resource_received(self, resource):
        if self.done.done():
            return

        try:
            assert resource.key in self.expected
            self.received.add(resource.key)

            if self.received == self.expected:
                self.done.set_result(None)

        except AssertionError as err:
            self.done.set_exception(err)

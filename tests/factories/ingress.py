from factory import Factory, Sequence, lazy_attribute

from .fake import fake
from autotls.data.ingress import HostRule, RoutingObject


def fuzzy_name():
    return "-".join(fake.name().split()).lower().replace(".", "")


def http_paths(service=None, port=80):
    """Path rules of a host rule, in the form used by the Kubernetes API."""
    if service is None:
        service = fuzzy_name()
    return {
        "paths": [
            {
                "path": "/",
                "pathType": "Prefix",
                "backend": {"service": {"name": service, "port": {"number": port}}},
            }
        ]
    }


class HostRuleFactory(Factory):
    class Meta:
        model = HostRule

    host = Sequence(lambda n: f"{fake.domain_word()}-{n}")
    tls_secret = None

    @lazy_attribute
    def http(self):
        return http_paths()


class RoutingObjectFactory(Factory):
    class Meta:
        model = RoutingObject

    class Params:
        rule_count = 2
        issuer = "auto"

    namespace = "default"
    uid = Sequence(lambda n: fake.uuid4())
    resource_version = Sequence(lambda n: str(n + 1))

    @lazy_attribute
    def tls(self):
        return []

    @lazy_attribute
    def name(self):
        return fuzzy_name()

    @lazy_attribute
    def annotations(self):
        if self.issuer is None:
            return {}
        return {"autotls/issuer": self.issuer}

    @lazy_attribute
    def rules(self):
        return [HostRuleFactory() for _ in range(self.rule_count)]


def ingress_manifest(routing):
    """Create the Ingress returned by the Kubernetes API for a routing object.

    Args:
        routing (RoutingObject): the routing object.

    Returns:
        dict: the Ingress, as serialized by the Kubernetes API.

    """
    rules = []
    for rule in routing.rules:
        entry = {}
        if rule.host is not None:
            entry["host"] = rule.host
        if rule.http is not None:
            entry["http"] = rule.http
        rules.append(entry)

    spec = {"rules": rules}
    if routing.tls:
        spec["tls"] = [
            {"hosts": binding.hosts, "secretName": binding.secret_name}
            for binding in routing.tls
        ]

    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "Ingress",
        "metadata": {
            "name": routing.name,
            "namespace": routing.namespace,
            "uid": routing.uid,
            "resourceVersion": routing.resource_version,
            "annotations": routing.annotations,
        },
        "spec": spec,
    }

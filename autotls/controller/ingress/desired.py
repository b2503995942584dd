"""Construction of the desired state of a routing object: the certificates that
should exist for it, and the layout of its host rules and TLS bindings.

All functions of this module are pure: the same input always produces the same
output, down to the serialized representation.
"""
import hashlib
import json

from autotls.data.ingress import CertRequest, DesiredState, HostRule, TlsBinding
from ..exceptions import InvariantViolationError


MAX_NAME_LENGTH = 253
DIGEST_LENGTH = 10
SECRET_INFIX = "-tls-"


def secret_name(namespace, name, hosts):
    """Derive the name of the TLS secret of a routing object.

    The name is ``<name>-tls-<digest>``, where the digest is computed from the
    identity of the object and the set of its hosts. The name of the object is
    truncated if the result would exceed the length limit of Kubernetes object
    names.

    Args:
        namespace (str): namespace of the routing object.
        name (str): name of the routing object.
        hosts (list[str]): hosts covered by the certificate. Order and
            duplicates are not relevant.

    Returns:
        str: the name of the secret.

    """
    identity = json.dumps([namespace, name, sorted(set(hosts))])
    digest = hashlib.sha256(identity.encode()).hexdigest()[:DIGEST_LENGTH]

    prefix_length = MAX_NAME_LENGTH - len(SECRET_INFIX) - DIGEST_LENGTH
    prefix = name[:prefix_length].rstrip("-.")

    return f"{prefix}{SECRET_INFIX}{digest}"


def build_desired_state(routing, hosts, issuer):
    """Compute the desired state of a routing object.

    All hosts share the same issuer, so they are covered by a single
    certificate. Every rule with a host is bound to the secret of this
    certificate.

    Args:
        routing (autotls.data.ingress.RoutingObject): the live routing object.
        hosts (list[str]): hosts of the rules of the object after the domain
            merge, in the order of the rules.
        issuer (autotls.data.ingress.ResolvedIssuer): the issuer of the
            certificate.

    Returns:
        DesiredState: the desired state. It is empty if no rule has a host.

    """
    assert len(hosts) == len(routing.rules), "One host is expected per rule"

    unique_hosts = sorted(set(host for host in hosts if host is not None))
    if not unique_hosts:
        return DesiredState()

    secret = secret_name(routing.namespace, routing.name, unique_hosts)
    request = CertRequest(hosts=unique_hosts, issuer=issuer, secret_name=secret)

    rules = [
        HostRule(
            host=host,
            http=rule.http,
            tls_secret=secret if host is not None else None,
        )
        for host, rule in zip(hosts, routing.rules)
    ]

    return DesiredState(certificate_requests=[request], rules=rules)


def tls_bindings(rules):
    """Group the TLS bindings of the host rules into the entries of the
    ``spec.tls`` section of an Ingress.

    Args:
        rules (list[autotls.data.ingress.HostRule]): the host rules.

    Returns:
        list[TlsBinding]: one binding per secret, in the order of first
        appearance in the rules.

    """
    bindings = {}
    for rule in rules:
        if rule.host is None or rule.tls_secret is None:
            continue

        binding = bindings.setdefault(
            rule.tls_secret, TlsBinding(hosts=[], secret_name=rule.tls_secret)
        )
        if rule.host not in binding.hosts:
            binding.hosts.append(rule.host)

    return list(bindings.values())


def check_invariant(desired):
    """Verify that every TLS binding of the desired host rules is backed by a
    certificate request covering the host.

    Args:
        desired (DesiredState): the desired state to check.

    Raises:
        InvariantViolationError: if a host is bound to a secret without backing
            request.

    """
    requests = {
        request.secret_name: request for request in desired.certificate_requests
    }

    for rule in desired.rules:
        if rule.tls_secret is None:
            continue

        request = requests.get(rule.tls_secret)
        if request is None:
            raise InvariantViolationError(
                f"Host {rule.host!r} is bound to secret {rule.tls_secret!r}"
                " which is not backed by any certificate request"
            )
        if rule.host not in request.hosts:
            raise InvariantViolationError(
                f"Host {rule.host!r} is bound to secret {rule.tls_secret!r}"
                " whose certificate request does not cover it"
            )

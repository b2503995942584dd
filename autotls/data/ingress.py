"""Data model of the routing objects (Kubernetes Ingresses) handled by the
controller, and of the state derived from them during reconciliation.
"""
from dataclasses import field
from datetime import datetime
from enum import Enum, auto
from typing import List, Dict

from .core import ObjectKey, Condition
from .serializable import Serializable


AUTO_ISSUER = "auto"


class HostRule(Serializable):
    """One entry of the ``spec.rules`` of an Ingress.

    Attributes:
        host (str): host of the rule. None for rules matching every host.
        http (dict): path rules, kept verbatim in their Kubernetes form.
        tls_secret (str): name of the secret bound to the host in ``spec.tls``.

    """

    host: str = None
    http: dict = None
    tls_secret: str = None


class TlsBinding(Serializable):
    hosts: List[str] = field(default_factory=list)
    secret_name: str = None


class RoutingObject(Serializable):
    """Observed state of an Ingress, restricted to what the controller reads
    and writes.
    """

    namespace: str
    name: str
    uid: str = None
    resource_version: str = None
    annotations: dict = field(default_factory=dict)
    rules: List[HostRule] = field(default_factory=list)
    tls: List[TlsBinding] = field(default_factory=list)

    @property
    def key(self):
        return ObjectKey(namespace=self.namespace, name=self.name)

    @property
    def hosts(self):
        """list[str]: host of every rule, in order. None for rules without host."""
        return [rule.host for rule in self.rules]


class IssuerRef(Serializable):
    """Reference to the issuer requested by the issuer annotation. A reference
    without name stands for ``auto``, the default issuer of the controller.
    """

    name: str = None

    @property
    def is_auto(self):
        return self.name is None

    def __str__(self):
        return AUTO_ISSUER if self.is_auto else self.name


class Intent(Serializable):
    issuer: IssuerRef
    domain: str = None


class ResolvedIssuer(Serializable):
    name: str
    kind: str = "ClusterIssuer"


class CertRequest(Serializable):
    """A certificate covering :attr:`hosts`, issued by :attr:`issuer` and
    stored in the secret :attr:`secret_name`, should exist.
    """

    hosts: List[str]
    issuer: ResolvedIssuer
    secret_name: str


class DesiredState(Serializable):
    certificate_requests: List[CertRequest] = field(default_factory=list)
    rules: List[HostRule] = field(default_factory=list)


class ReconcileState(Enum):
    PENDING = auto()
    SYNCING = auto()
    SYNCED = auto()
    FAILING = auto()
    RETIRED = auto()


class ReconcileRecord(Serializable):
    """Entry of the state store for one routing object.

    The record is not authoritative: the live cluster state is. Dropping a
    record only costs one additional reconciliation pass.

    Attributes:
        object_key (ObjectKey): identity of the routing object.
        last_applied (DesiredState): desired state of the last successful pass.
        last_observed_resource_version (str): resource version of the object
            after the last successful pass.
        retry_count (int): number of consecutive failed passes.
        next_attempt_at (datetime): when the next retry is scheduled.
        state (ReconcileState): outcome of the last pass.
        conditions (dict[str, Condition]): last condition written on the object,
            per condition kind.

    """

    object_key: ObjectKey
    last_applied: DesiredState = None
    last_observed_resource_version: str = None
    retry_count: int = 0
    next_attempt_at: datetime = None
    state: ReconcileState = ReconcileState.PENDING
    conditions: Dict[str, Condition] = field(default_factory=dict)

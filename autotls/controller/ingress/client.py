"""Binding of the Ingress controller to the Kubernetes API.

The controller reads and patches ``networking.k8s.io/v1`` Ingresses, creates
cert-manager ``Certificate`` resources, reads cert-manager issuers and reports
conditions as Kubernetes Events attached to the Ingresses.
"""
import logging
from contextlib import asynccontextmanager
from typing import NamedTuple

from kubernetes_asyncio import watch
from kubernetes_asyncio.client import CoreV1Api, CustomObjectsApi, NetworkingV1Api
from kubernetes_asyncio.client.rest import ApiException

from autotls.data.core import ConditionStatus, WatchEventType
from autotls.data.ingress import HostRule, RoutingObject, TlsBinding
from autotls.utils import now
from ..exceptions import ConflictError, NotFoundError
from ..kubernetes import translate_api_errors
from .desired import tls_bindings
from .issuer import IssuerStatus

logger = logging.getLogger(__name__)


CERT_MANAGER_GROUP = "cert-manager.io"
CERT_MANAGER_VERSION = "v1"
CERTIFICATE_PLURAL = "certificates"
ISSUER_PLURALS = {"ClusterIssuer": "clusterissuers", "Issuer": "issuers"}

INGRESS_API_VERSION = "networking.k8s.io/v1"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGER_NAME = "autotls"
EVENT_COMPONENT = "autotls-controller"


class IngressEvent(NamedTuple):
    type: WatchEventType
    object: RoutingObject


def ingress_to_routing_object(manifest):
    """Convert an Ingress, as serialized by the Kubernetes API, to a routing
    object.

    The TLS secret of a rule is the secret of the first ``spec.tls`` entry
    listing the host of the rule.

    Args:
        manifest (dict): the Ingress, with the camel case keys of the API.

    Returns:
        RoutingObject: the converted Ingress.

    """
    metadata = manifest.get("metadata") or {}
    spec = manifest.get("spec") or {}

    tls = [
        TlsBinding(hosts=list(entry.get("hosts") or []), secret_name=entry.get("secretName"))
        for entry in spec.get("tls") or []
    ]

    secrets = {}
    for binding in tls:
        for host in binding.hosts:
            secrets.setdefault(host, binding.secret_name)

    rules = [
        HostRule(
            host=rule.get("host"),
            http=rule.get("http"),
            tls_secret=secrets.get(rule.get("host")),
        )
        for rule in spec.get("rules") or []
    ]

    return RoutingObject(
        namespace=metadata.get("namespace"),
        name=metadata.get("name"),
        uid=metadata.get("uid"),
        resource_version=metadata.get("resourceVersion"),
        annotations=dict(metadata.get("annotations") or {}),
        rules=rules,
        tls=tls,
    )


def rules_to_manifest(rules):
    """Convert host rules to the ``spec.rules`` of an Ingress.

    Args:
        rules (list[HostRule]): the rules to convert.

    Returns:
        list[dict]: the rules, with the camel case keys of the API.

    """
    manifest = []
    for rule in rules:
        entry = {}
        if rule.host is not None:
            entry["host"] = rule.host
        if rule.http is not None:
            entry["http"] = rule.http
        manifest.append(entry)
    return manifest


def tls_to_manifest(bindings):
    return [
        {"hosts": list(binding.hosts), "secretName": binding.secret_name}
        for binding in bindings
    ]


def certificate_manifest(routing, request):
    """Create the cert-manager Certificate of a certificate request.

    The Certificate is owned by the routing object, hence it is garbage
    collected by Kubernetes when the routing object is deleted.

    Args:
        routing (RoutingObject): the routing object the certificate is for.
        request (autotls.data.ingress.CertRequest): the request to fulfil.

    Returns:
        dict: the manifest of the Certificate.

    """
    metadata = {
        "name": request.secret_name,
        "namespace": routing.namespace,
        "labels": {MANAGED_BY_LABEL: MANAGER_NAME},
    }
    if routing.uid:
        metadata["ownerReferences"] = [
            {
                "apiVersion": INGRESS_API_VERSION,
                "kind": "Ingress",
                "name": routing.name,
                "uid": routing.uid,
                "blockOwnerDeletion": True,
            }
        ]

    return {
        "apiVersion": f"{CERT_MANAGER_GROUP}/{CERT_MANAGER_VERSION}",
        "kind": "Certificate",
        "metadata": metadata,
        "spec": {
            "secretName": request.secret_name,
            "dnsNames": list(request.hosts),
            "issuerRef": {
                "name": request.issuer.name,
                "kind": request.issuer.kind,
                "group": CERT_MANAGER_GROUP,
            },
        },
    }


def event_reason(reason):
    """Convert a reason code into the camel case form of Event reasons.

    Example:
        .. code:: python

            >>> event_reason(ReasonCode.ISSUER_NOT_READY)
            'IssuerNotReady'

    """
    return "".join(part.capitalize() for part in reason.name.split("_"))


def condition_event(routing, condition):
    """Create the Kubernetes Event reporting a condition of a routing object.

    Args:
        routing (RoutingObject): the object the condition is about.
        condition (autotls.data.core.Condition): the condition to report.

    Returns:
        dict: the manifest of the Event.

    """
    timestamp = now().strftime("%Y-%m-%dT%H:%M:%SZ")
    if condition.status == ConditionStatus.FALSE:
        event_type = "Warning"
    else:
        event_type = "Normal"

    return {
        "apiVersion": "v1",
        "kind": "Event",
        "metadata": {"generateName": f"{routing.name}.", "namespace": routing.namespace},
        "involvedObject": {
            "apiVersion": INGRESS_API_VERSION,
            "kind": "Ingress",
            "name": routing.name,
            "namespace": routing.namespace,
            "uid": routing.uid,
            "resourceVersion": routing.resource_version,
        },
        "type": event_type,
        "reason": event_reason(condition.reason),
        "message": f"{condition.kind}={condition.status.value}: {condition.message}",
        "source": {"component": EVENT_COMPONENT},
        "firstTimestamp": timestamp,
        "lastTimestamp": timestamp,
        "count": 1,
    }


class KubernetesClusterApi(object):
    """Client of the Kubernetes API used by the Ingress controller.

    Every error of the Kubernetes client library is translated into an
    exception of :mod:`autotls.controller.exceptions`.

    Args:
        api_client (kubernetes_asyncio.client.ApiClient): the base client used to
            connect to the Kubernetes API.
        watch_timeout (int, optional): number of seconds after which the API
            closes a watch. The Reflector then lists and watches again.

    """

    def __init__(self, api_client, watch_timeout=None):
        self.api_client = api_client
        self.watch_timeout = watch_timeout
        self.networking_api = NetworkingV1Api(api_client)
        self.custom_objects_api = CustomObjectsApi(api_client)
        self.core_api = CoreV1Api(api_client)

    def _to_routing_object(self, ingress):
        manifest = self.api_client.sanitize_for_serialization(ingress)
        return ingress_to_routing_object(manifest)

    async def get_ingress(self, key):
        """Fetch the live state of an Ingress.

        Args:
            key (autotls.data.core.ObjectKey): key of the Ingress.

        Returns:
            RoutingObject: the Ingress.

        Raises:
            NotFoundError: if the Ingress does not exist.
            TransientApiError: if the Ingress could not be fetched.

        """
        with translate_api_errors(f"Ingress {key}"):
            ingress = await self.networking_api.read_namespaced_ingress(
                name=key.name, namespace=key.namespace
            )
        return self._to_routing_object(ingress)

    async def patch_ingress(self, key, rules, expected_version):
        """Replace the rules and the TLS section of an Ingress.

        The resource version is given as precondition of the patch: the API
        rejects the patch if the Ingress was modified in the meantime.

        Args:
            key (autotls.data.core.ObjectKey): key of the Ingress.
            rules (list[HostRule]): the new rules of the Ingress.
            expected_version (str): resource version the Ingress should have.

        Returns:
            str: the resource version of the patched Ingress.

        Raises:
            ConflictError: if the resource version does not match anymore.
            NotFoundError: if the Ingress does not exist anymore.
            TransientApiError: if the Ingress could not be patched.

        """
        body = {
            "metadata": {"resourceVersion": expected_version},
            "spec": {
                "rules": rules_to_manifest(rules),
                "tls": tls_to_manifest(tls_bindings(rules)),
            },
        }
        with translate_api_errors(f"Ingress {key}"):
            ingress = await self.networking_api.patch_namespaced_ingress(
                name=key.name, namespace=key.namespace, body=body
            )
        logger.debug("Ingress %s patched", key)
        return ingress.metadata.resource_version

    async def certificate_exists(self, namespace, name):
        try:
            with translate_api_errors(f"Certificate {namespace}/{name}"):
                await self.custom_objects_api.get_namespaced_custom_object(
                    CERT_MANAGER_GROUP,
                    CERT_MANAGER_VERSION,
                    namespace,
                    CERTIFICATE_PLURAL,
                    name,
                )
        except NotFoundError:
            return False
        return True

    async def create_certificate(self, routing, request):
        """Create the Certificate of a certificate request.

        Args:
            routing (RoutingObject): the routing object owning the Certificate.
            request (autotls.data.ingress.CertRequest): the request to fulfil.

        Returns:
            bool: True if the Certificate was created, False if it already
            existed.

        Raises:
            TransientApiError: if the Certificate could not be created.

        """
        body = certificate_manifest(routing, request)
        resource = f"Certificate {routing.namespace}/{request.secret_name}"
        try:
            with translate_api_errors(resource):
                await self.custom_objects_api.create_namespaced_custom_object(
                    CERT_MANAGER_GROUP,
                    CERT_MANAGER_VERSION,
                    routing.namespace,
                    CERTIFICATE_PLURAL,
                    body,
                )
        except ConflictError:
            logger.debug("%s already exists", resource)
            return False

        logger.info("%s created", resource)
        return True

    async def query_issuer(self, name, kind, namespace):
        """Look up a cert-manager issuer and check if it is ready.

        Args:
            name (str): name of the issuer.
            kind (str): ``ClusterIssuer`` or ``Issuer``.
            namespace (str): namespace of the issuer, for the ``Issuer`` kind.

        Returns:
            IssuerStatus: the status of the issuer.

        Raises:
            TransientApiError: if the issuer could not be fetched.

        """
        plural = ISSUER_PLURALS[kind]
        try:
            with translate_api_errors(f"{kind} {name}"):
                if kind == "Issuer":
                    issuer = await self.custom_objects_api.get_namespaced_custom_object(
                        CERT_MANAGER_GROUP, CERT_MANAGER_VERSION, namespace, plural, name
                    )
                else:
                    issuer = await self.custom_objects_api.get_cluster_custom_object(
                        CERT_MANAGER_GROUP, CERT_MANAGER_VERSION, plural, name
                    )
        except NotFoundError:
            return IssuerStatus.NOT_FOUND

        conditions = (issuer.get("status") or {}).get("conditions") or []
        for condition in conditions:
            if condition.get("type") == "Ready" and condition.get("status") == "True":
                return IssuerStatus.READY

        return IssuerStatus.NOT_READY

    async def report_condition(self, routing, condition):
        """Surface a condition on a routing object as Kubernetes Event.

        Args:
            routing (RoutingObject): the object the condition is about.
            condition (autotls.data.core.Condition): the condition to report.

        Raises:
            TransientApiError: if the Event could not be created.

        """
        body = condition_event(routing, condition)
        with translate_api_errors(f"Event for Ingress {routing.key}"):
            await self.core_api.create_namespaced_event(
                namespace=routing.namespace, body=body
            )

    async def list_ingresses(self):
        """List the Ingresses of all namespaces.

        Returns:
            list[RoutingObject]: the Ingresses.

        """
        ingresses = await self.networking_api.list_ingress_for_all_namespaces()
        return [self._to_routing_object(ingress) for ingress in ingresses.items]

    @asynccontextmanager
    async def watch_ingresses(self):
        """Watch the Ingresses of all namespaces.

        .. code:: python

            async with cluster_api.watch_ingresses() as watcher:
                async for event in watcher:
                    print(event.type, event.object.key)

        Yields:
            async iterator of :class:`IngressEvent`.

        """
        kwargs = {}
        if self.watch_timeout:
            kwargs["timeout_seconds"] = self.watch_timeout

        watcher = watch.Watch()
        async with watcher.stream(
            self.networking_api.list_ingress_for_all_namespaces, **kwargs
        ) as stream:
            yield self._ingress_events(stream)

    async def _ingress_events(self, stream):
        async for event in stream:
            raw = event.get("raw_object") or {}

            if event["type"] == "ERROR":
                raise ApiException(status=raw.get("code"), reason=raw.get("message"))

            try:
                event_type = WatchEventType[event["type"]]
            except KeyError:
                logger.debug("Ignore %r event", event["type"])
                continue

            yield IngressEvent(type=event_type, object=ingress_to_routing_object(raw))

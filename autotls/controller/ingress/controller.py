"""Module comprises the reconciliation of Ingresses toward the TLS automation
intent expressed in their annotations.
"""
import logging
from copy import deepcopy
from datetime import timedelta
from functools import partial

from autotls.data.config import AnnotationsConfiguration, BackoffConfiguration
from autotls.data.core import Condition, ConditionStatus, ReasonCode
from autotls.data.ingress import ReconcileRecord, ReconcileState
from autotls.utils import now

from .. import Action, Controller, Reflector
from ..backoff import Backoff
from ..exceptions import (
    ConflictError,
    ControllerError,
    DependencyError,
    InvalidAnnotationError,
    InvariantViolationError,
    NoDefaultIssuerError,
    NotFoundError,
)
from .annotations import extract_intent
from .client import KubernetesClusterApi
from .desired import build_desired_state, check_invariant, tls_bindings
from .domain import merge_domain
from .issuer import IssuerResolver
from .store import StateStore


logger = logging.getLogger(__name__)


READY = "Ready"
DOMAIN_MERGED = "DomainMerged"


class IngressController(Controller):
    """Controller responsible for the TLS automation of the Ingresses carrying
    the issuer annotation.

    Args:
        kubeconfig (str, optional): path to the kubeconfig file of the cluster.
        worker_count (int, optional): the amount of worker function that should be
            run as background tasks.
        debounce (float, optional): value of the debounce for the
            :class:`WorkQueue`.
        resync_interval (float, optional): number of seconds after which a synced
            Ingress is reconciled again. 0 disables the periodic reconciliation.
        watch_timeout (int, optional): number of seconds after which the API
            server closes the watch of the Ingresses. 0 keeps its default.
        default_issuer (str, optional): issuer used for the ``auto`` issuer.
        issuer_kind (str, optional): kind of the cert-manager issuers.
        annotations (AnnotationsConfiguration, optional): keys of the annotations.
        backoff (BackoffConfiguration, optional): retry policy of failing
            Ingresses.
        rng (random.Random, optional): source of randomness of the backoff jitter.

    """

    def __init__(
        self,
        kubeconfig=None,
        worker_count=5,
        debounce=0,
        resync_interval=300,
        watch_timeout=0,
        default_issuer=None,
        issuer_kind="ClusterIssuer",
        annotations=None,
        backoff=None,
        rng=None,
    ):
        super().__init__(kubeconfig=kubeconfig, debounce=debounce)
        self.worker_count = worker_count
        self.resync_interval = resync_interval
        self.watch_timeout = watch_timeout
        self.default_issuer = default_issuer
        self.issuer_kind = issuer_kind
        self.annotations = annotations or AnnotationsConfiguration()

        backoff = backoff or BackoffConfiguration()
        self.backoff = Backoff.from_config(backoff, rng=rng)
        self.max_retries = backoff.max_retries

        self.store = StateStore()
        self.in_flight = set()

        self.cluster_api = None
        self.resolver = None
        self.reflector = None

    def bind(self, cluster_api):
        """Set the client used to communicate with the cluster.

        Args:
            cluster_api (KubernetesClusterApi): the client.

        """
        self.cluster_api = cluster_api
        self.resolver = IssuerResolver(
            cluster_api,
            default_issuer=self.default_issuer,
            issuer_kind=self.issuer_kind,
        )

    async def prepare(self, api_client):
        assert api_client is not None
        self.api_client = api_client
        self.bind(KubernetesClusterApi(api_client, watch_timeout=self.watch_timeout))

        for i in range(self.worker_count):
            self.register_task(self.handle_resource, name=f"worker_{i}")

        receive_ingress = partial(self.simple_on_receive, condition=self.is_managed)

        self.reflector = Reflector(
            listing=self.cluster_api.list_ingresses,
            watching=self.cluster_api.watch_ingresses,
            on_list=receive_ingress,
            on_add=receive_ingress,
            on_update=receive_ingress,
            on_delete=self.on_ingress_deleted,
            resource_plural="Ingresses",
        )
        self.register_task(self.reflector, name="Reflector")

    async def cleanup(self):
        self.reflector = None
        self.resolver = None
        self.cluster_api = None
        self.in_flight = set()

    def is_managed(self, routing):
        """Check if a routing object should be handled by the controller. Only
        objects carrying the issuer annotation are.

        The record of an object that is not managed anymore is dropped.

        Args:
            routing (autotls.data.ingress.RoutingObject): the object to check.

        Returns:
            bool: True if the object should be handled, False otherwise.

        """
        if self.annotations.issuer in routing.annotations:
            return True

        if self.store.discard(routing.key) is not None:
            logger.info("%s is not managed anymore", routing.key)
        return False

    async def on_ingress_deleted(self, routing):
        logger.debug("%s deleted", routing.key)
        self.store.discard(routing.key)
        await self.queue.cancel(routing.key)

    def object_state(self, key):
        """Get the reconciliation state of an object.

        Args:
            key (autotls.data.core.ObjectKey): key of the object.

        Returns:
            ReconcileState: SYNCING if the object is being reconciled, the state
            of the last reconciliation otherwise. PENDING for unknown objects.

        """
        if key in self.in_flight:
            return ReconcileState.SYNCING

        record = self.store.get(key)
        if record is None:
            return ReconcileState.PENDING
        return record.state

    async def handle_resource(self, run_once=False):
        """Infinite loop which fetches keys from the queue and reconciles the
        corresponding objects. The object is requeued according to the
        :class:`Action` returned by the reconciliation.

        This function is meant to be run as background task.

        Args:
            run_once (bool, optional): if True, the function only handles one
                key, then stops. Otherwise, continue to handle each new key on
                the queue indefinitely.

        """
        while True:
            key = await self.queue.get()
            self.in_flight.add(key)
            try:
                action = await self.reconcile(key)
            except Exception:
                logger.exception("Unexpected error while reconciling %s", key)
                action = Action.requeue(self.backoff.capped_delay())
            finally:
                self.in_flight.discard(key)
                await self.queue.done(key)

            if action.requeue_after is not None:
                await self.queue.put(key, delay=action.requeue_after)

            if run_once:
                break

    async def reconcile(self, key):
        """Perform one reconciliation pass of an object.

        The live object is always fetched again, the key is the only
        information taken from the events. The record of the object is only
        stored at the end of the pass, hence it stays untouched when the pass
        ends with a version conflict.

        Args:
            key (autotls.data.core.ObjectKey): key of the object to reconcile.

        Returns:
            Action: when the object should be reconciled again.

        """
        logger.debug("Reconcile %s", key)

        previous = self.store.get(key)
        if previous is None:
            record = ReconcileRecord(object_key=key)
        else:
            record = deepcopy(previous)

        try:
            routing = await self.cluster_api.get_ingress(key)
        except NotFoundError:
            return self._retire(key)
        except DependencyError as error:
            return await self._retry(record, None, error)

        try:
            intent = extract_intent(
                routing.annotations, self.annotations.issuer, self.annotations.domain
            )
        except InvalidAnnotationError as error:
            return await self._fail(record, routing, error)

        if intent is None:
            return self._retire(key)

        try:
            return await self._reconcile_routing(record, routing, intent)
        except NoDefaultIssuerError as error:
            return await self._fail(record, routing, error)
        except ConflictError as error:
            logger.info("%s was modified concurrently, requeue (%s)", key, error)
            return Action.requeue(0)
        except NotFoundError:
            return self._retire(key)
        except InvariantViolationError as error:
            return await self._invariant_violated(record, routing, error)
        except DependencyError as error:
            return await self._retry(record, routing, error)

    async def _reconcile_routing(self, record, routing, intent):
        issuer = await self.resolver.resolve(intent.issuer, routing.namespace)

        merged = merge_domain(routing.hosts, intent.domain)
        desired = build_desired_state(routing, merged.hosts, issuer)
        check_invariant(desired)

        if (
            record.last_applied == desired
            and record.last_observed_resource_version == routing.resource_version
        ):
            logger.debug("%s is up to date", routing.key)
            version = routing.resource_version
        elif desired.certificate_requests:
            version = await self.apply(routing, desired)
            logger.info("%s synced", routing.key)
        else:
            logger.warning("%s has no host, nothing to secure", routing.key)
            version = routing.resource_version

        # Surfaced after the mutations, a conflict leaves the record untouched
        await self._surface_duplicates(record, routing, merged.duplicates)
        await self._surface_recovery(record, routing)

        record.last_applied = desired
        record.last_observed_resource_version = version
        record.retry_count = 0
        record.next_attempt_at = None
        record.state = ReconcileState.SYNCED
        self.store.put(record)

        return self._resync()

    async def _surface_duplicates(self, record, routing, duplicates):
        if not duplicates:
            record.conditions.pop(DOMAIN_MERGED, None)
            return

        await self._surface(
            record,
            routing,
            Condition(
                kind=DOMAIN_MERGED,
                status=ConditionStatus.FALSE,
                reason=ReasonCode.DUPLICATE_HOST_AFTER_MERGE,
                message=(
                    "Domain not appended to hosts"
                    f" {', '.join(duplicates)}: the merged hosts already exist"
                ),
            ),
        )

    async def _surface_recovery(self, record, routing):
        """Report that an object is ready again if the last reported readiness
        was a failure.
        """
        last_ready = record.conditions.get(READY)
        if last_ready is None or last_ready.status != ConditionStatus.FALSE:
            return

        await self._surface(
            record,
            routing,
            Condition(
                kind=READY,
                status=ConditionStatus.TRUE,
                reason=ReasonCode.RECONCILED,
                message="TLS is provisioned",
            ),
        )

    async def apply(self, routing, desired):
        """Apply the minimal set of mutations transferring an object to its
        desired state.

        Missing certificates are created before the object is patched, so the
        object never references a secret without backing certificate.

        Args:
            routing (autotls.data.ingress.RoutingObject): the live object.
            desired (autotls.data.ingress.DesiredState): its desired state.

        Returns:
            str: the resource version of the object after the mutations.

        """
        for request in desired.certificate_requests:
            exists = await self.cluster_api.certificate_exists(
                routing.namespace, request.secret_name
            )
            if not exists:
                await self.cluster_api.create_certificate(routing, request)

        if not self.layout_differs(routing, desired):
            logger.debug("Rules of %s are up to date", routing.key)
            return routing.resource_version

        return await self.cluster_api.patch_ingress(
            routing.key, desired.rules, routing.resource_version
        )

    @staticmethod
    def layout_differs(routing, desired):
        """Check if the host rules and the TLS bindings of a live object differ
        from the desired ones.
        """
        live = [(rule.host, rule.http, rule.tls_secret) for rule in routing.rules]
        target = [(rule.host, rule.http, rule.tls_secret) for rule in desired.rules]
        if live != target:
            return True

        return routing.tls != tls_bindings(desired.rules)

    def _resync(self):
        if self.resync_interval:
            return Action.requeue(self.resync_interval)
        return Action.await_change()

    def _retire(self, key):
        if self.store.discard(key) is not None:
            logger.info("%s %s", key, ReconcileState.RETIRED.name.lower())
        return Action.await_change()

    def _schedule(self, record, delay):
        record.next_attempt_at = now() + timedelta(seconds=delay)
        record.state = ReconcileState.FAILING
        self.store.put(record)
        return Action.requeue(delay)

    async def _fail(self, record, routing, error):
        """Handle the errors that cannot be fixed by retrying. The object is only
        reconciled again on a new event.
        """
        logger.warning("%s: %s", routing.key, error)
        await self._surface(record, routing, self._failure_condition(error))

        record.retry_count = 0
        record.next_attempt_at = None
        record.state = ReconcileState.FAILING
        self.store.put(record)
        return Action.await_change()

    async def _retry(self, record, routing, error):
        """Handle recoverable errors: the object is retried with exponential
        backoff. A persistent failure is reported once the maximal number of
        retries is reached, and the retries continue at the capped interval.
        """
        record.retry_count += 1

        if record.retry_count >= self.max_retries:
            delay = self.backoff.capped_delay()
            if routing is not None:
                await self._surface(record, routing, self._failure_condition(error))
        else:
            delay = self.backoff.delay(record.retry_count - 1)

        logger.warning(
            "%s: %s, retry %d in %.1fs",
            record.object_key,
            error,
            record.retry_count,
            delay,
        )
        return self._schedule(record, delay)

    async def _invariant_violated(self, record, routing, error):
        logger.error("%s: %s", routing.key, error)
        await self._surface(record, routing, self._failure_condition(error))

        record.retry_count += 1
        return self._schedule(record, self.backoff.capped_delay())

    @staticmethod
    def _failure_condition(error):
        return Condition(
            kind=READY,
            status=ConditionStatus.FALSE,
            reason=error.code,
            message=error.message or "",
        )

    async def _surface(self, record, routing, condition):
        """Report a condition on an object, unless the same condition was the
        last one reported for its kind.
        """
        if record.conditions.get(condition.kind) == condition:
            return

        try:
            await self.cluster_api.report_condition(routing, condition)
        except ControllerError as error:
            logger.warning(
                "Condition %s of %s could not be reported: %s",
                condition.kind,
                routing.key,
                error,
            )
            return

        record.conditions[condition.kind] = condition

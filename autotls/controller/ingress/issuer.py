import logging
from enum import Enum, auto

from autotls.data.ingress import ResolvedIssuer
from ..exceptions import IssuerNotFoundError, IssuerNotReadyError, NoDefaultIssuerError

logger = logging.getLogger(__name__)


class IssuerStatus(Enum):
    READY = auto()
    NOT_READY = auto()
    NOT_FOUND = auto()


class IssuerResolver(object):
    """Map the issuer reference of an intent to an existing and ready
    cert-manager issuer.

    Args:
        cluster_api: client used to look up the issuers. It needs to provide a
            ``query_issuer(name, kind, namespace)`` coroutine returning an
            :class:`IssuerStatus`.
        default_issuer (str, optional): issuer used for the ``auto`` reference.
        issuer_kind (str, optional): kind of the issuers, ``ClusterIssuer`` or
            ``Issuer``.

    """

    def __init__(self, cluster_api, default_issuer=None, issuer_kind="ClusterIssuer"):
        self.cluster_api = cluster_api
        self.default_issuer = default_issuer
        self.issuer_kind = issuer_kind

    async def resolve(self, ref, namespace):
        """Resolve an issuer reference.

        Args:
            ref (autotls.data.ingress.IssuerRef): the reference to resolve.
            namespace (str): namespace of the routing object, where issuers of
                kind ``Issuer`` are looked up.

        Returns:
            ResolvedIssuer: the issuer to use.

        Raises:
            NoDefaultIssuerError: if ``auto`` is requested without default
                issuer.
            IssuerNotFoundError: if the issuer does not exist.
            IssuerNotReadyError: if the issuer exists but is not ready.

        """
        if ref.is_auto:
            if not self.default_issuer:
                raise NoDefaultIssuerError(
                    "Issuer 'auto' requested but no default issuer is configured"
                )
            name = self.default_issuer
        else:
            name = ref.name

        status = await self.cluster_api.query_issuer(
            name, self.issuer_kind, namespace
        )
        logger.debug("%s %r is %s", self.issuer_kind, name, status.name)

        if status == IssuerStatus.NOT_FOUND:
            raise IssuerNotFoundError(f"{self.issuer_kind} {name!r} does not exist")
        if status == IssuerStatus.NOT_READY:
            raise IssuerNotReadyError(f"{self.issuer_kind} {name!r} is not ready")

        return ResolvedIssuer(name=name, kind=self.issuer_kind)

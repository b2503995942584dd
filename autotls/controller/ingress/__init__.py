"""Controller automating the TLS provisioning of Kubernetes Ingresses.

Ingresses carrying the issuer annotation get a cert-manager Certificate
covering their hosts, and their rules are bound to the secret of this
Certificate.
"""
from .controller import IngressController

__all__ = ["IngressController"]

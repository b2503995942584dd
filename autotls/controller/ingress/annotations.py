"""Extraction of the TLS automation intent from the annotations of an
Ingress.
"""
import re

from autotls.data.ingress import AUTO_ISSUER, Intent, IssuerRef
from ..exceptions import InvalidDomainError, InvalidIssuerError


# Lowercase RFC 1123 label, as required for the hosts of an Ingress
_label_pattern = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$")

MAX_DOMAIN_LENGTH = 253


def validate_domain(domain):
    """Check that a domain is a valid sequence of DNS labels.

    Args:
        domain (str): the domain to check.

    Raises:
        InvalidDomainError: if the domain is empty, too long, starts or ends with
            a dot, or contains an empty, uppercase or invalid label.

    """
    if not domain:
        raise InvalidDomainError("Domain must not be empty")

    if len(domain) > MAX_DOMAIN_LENGTH:
        raise InvalidDomainError(
            f"Domain {domain!r} is longer than {MAX_DOMAIN_LENGTH} characters"
        )

    for label in domain.split("."):
        if not label:
            raise InvalidDomainError(f"Domain {domain!r} contains an empty label")
        if not _label_pattern.match(label):
            raise InvalidDomainError(
                f"Label {label!r} of domain {domain!r} is not a valid DNS label"
            )


def extract_intent(annotations, issuer_annotation, domain_annotation):
    """Read the intent of the operator from the annotations of a routing object.

    Args:
        annotations (dict): annotations of the routing object.
        issuer_annotation (str): key of the issuer annotation.
        domain_annotation (str): key of the domain annotation.

    Returns:
        Intent: the intent, or None if the object does not carry the issuer
        annotation and is therefore not managed.

    Raises:
        InvalidIssuerError: if the issuer annotation is empty.
        InvalidDomainError: if the domain annotation is not a valid domain.

    """
    if not annotations or issuer_annotation not in annotations:
        return None

    issuer = (annotations[issuer_annotation] or "").strip()
    if not issuer:
        raise InvalidIssuerError(f"Annotation {issuer_annotation!r} is empty")

    if issuer == AUTO_ISSUER:
        ref = IssuerRef()
    else:
        ref = IssuerRef(name=issuer)

    domain = annotations.get(domain_annotation)
    if domain is not None:
        domain = domain.strip()
        validate_domain(domain)

    return Intent(issuer=ref, domain=domain)

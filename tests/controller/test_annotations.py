import pytest

from autotls.controller.exceptions import InvalidDomainError, InvalidIssuerError
from autotls.controller.ingress.annotations import extract_intent, validate_domain
from autotls.data.core import ReasonCode
from autotls.data.ingress import Intent, IssuerRef


ISSUER = "autotls/issuer"
DOMAIN = "autotls/domain"


def test_extract_auto_issuer():
    intent = extract_intent({ISSUER: "auto"}, ISSUER, DOMAIN)

    assert intent == Intent(issuer=IssuerRef(), domain=None)
    assert intent.issuer.is_auto
    assert str(intent.issuer) == "auto"


def test_extract_named_issuer_and_domain():
    annotations = {ISSUER: " letsencrypt-prod ", DOMAIN: "example.com"}
    intent = extract_intent(annotations, ISSUER, DOMAIN)

    assert intent.issuer == IssuerRef(name="letsencrypt-prod")
    assert not intent.issuer.is_auto
    assert intent.domain == "example.com"


def test_extract_without_issuer_annotation():
    assert extract_intent({}, ISSUER, DOMAIN) is None
    assert extract_intent(None, ISSUER, DOMAIN) is None
    # The domain annotation alone does not make an object managed
    assert extract_intent({DOMAIN: "example.com"}, ISSUER, DOMAIN) is None


@pytest.mark.parametrize("value", ["", "   ", None])
def test_extract_empty_issuer(value):
    with pytest.raises(InvalidIssuerError) as info:
        extract_intent({ISSUER: value}, ISSUER, DOMAIN)

    assert info.value.code == ReasonCode.INVALID_ISSUER


def test_extract_custom_annotation_keys():
    annotations = {"tls.example.org/issuer": "auto", "tls.example.org/domain": "lan"}
    intent = extract_intent(
        annotations, "tls.example.org/issuer", "tls.example.org/domain"
    )

    assert intent.issuer.is_auto
    assert intent.domain == "lan"


@pytest.mark.parametrize(
    "domain",
    [
        "",
        ".example.com",
        "example.com.",
        "example..com",
        "exa_mple.com",
        "Example.COM",
        "shop.EXAMPLE.com",
        "-example.com",
        "example-.com",
        "a" * 64 + ".com",
        ".".join(["a" * 63] * 4),
    ],
)
def test_extract_invalid_domain(domain):
    with pytest.raises(InvalidDomainError) as info:
        extract_intent({ISSUER: "auto", DOMAIN: domain}, ISSUER, DOMAIN)

    assert info.value.code == ReasonCode.INVALID_DOMAIN


@pytest.mark.parametrize(
    "domain", ["com", "example.com", "my-shop.example.co.uk", "a" * 63 + ".io"]
)
def test_validate_domain(domain):
    validate_domain(domain)

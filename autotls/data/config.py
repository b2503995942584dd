from dataclasses import field

from marshmallow import ValidationError
from marshmallow.validate import OneOf, Range

from .serializable import Serializable


ISSUER_KINDS = ("ClusterIssuer", "Issuer")


def default_log_config():
    return {
        "version": 1,
        "level": "INFO",
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s - [%(name)s] - [%(levelname)-5s] - %(message)s"
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stdout",
            }
        },
        "loggers": {"autotls": {"handlers": ["console"]}},
    }


class AnnotationsConfiguration(Serializable):
    issuer: str = field(
        default="autotls/issuer",
        metadata={"help": "Annotation holding the issuer ('auto' or a name)"},
    )
    domain: str = field(
        default="autotls/domain",
        metadata={"help": "Annotation holding the domain appended to bare hosts"},
    )


class BackoffConfiguration(Serializable):
    min_delay: float = field(
        default=1.0,
        metadata={
            "help": "Delay in seconds before the first retry of a failed object",
            "validate": Range(min=0, min_inclusive=False),
        },
    )
    max_delay: float = field(
        default=300.0,
        metadata={
            "help": "Maximal delay in seconds between two retries of an object",
            "validate": Range(min=0, min_inclusive=False),
        },
    )
    factor: float = field(
        default=2.0,
        metadata={
            "help": "Growth factor of the delay between two retries",
            "validate": Range(min=1),
        },
    )
    jitter: float = field(
        default=0.1,
        metadata={
            "help": "Fraction of the delay randomly subtracted from each retry delay",
            "validate": Range(min=0, max=1),
        },
    )
    max_retries: int = field(
        default=5,
        metadata={
            "help": (
                "Number of failed retries after which a persistent failure is"
                " reported on the object. Retries continue afterwards."
            ),
            "validate": Range(min=0),
        },
    )

    def __post_init__(self):
        if self.min_delay > self.max_delay:
            raise ValidationError("'min_delay' must not be greater than 'max_delay'")


class ControllerConfiguration(Serializable):
    kubeconfig: str = field(
        default=None,
        metadata={
            "help": (
                "Path to the kubeconfig file used to connect to the cluster. If not"
                " given, the in-cluster service account is used."
            )
        },
    )
    worker_count: int = field(
        default=5,
        metadata={
            "help": "Number of workers that are used to reconcile Ingresses",
            "validate": Range(min=1, error="Must be int greater than 0"),
        },
    )
    debounce: float = field(
        default=1.0,
        metadata={"help": "Number of seconds to wait until a state change is handled"},
    )
    resync_interval: float = field(
        default=300.0,
        metadata={
            "help": (
                "Number of seconds after which a synced Ingress is checked again."
                " 0 disables the periodic check."
            ),
            "validate": Range(min=0),
        },
    )
    watch_timeout: int = field(
        default=0,
        metadata={
            "help": (
                "Number of seconds after which the API server closes the watch of"
                " the Ingresses, which is then listed and watched again. 0 keeps"
                " the timeout of the API server."
            ),
            "validate": Range(min=0),
        },
    )
    default_issuer: str = field(
        default=None,
        metadata={"help": "Issuer used for Ingresses annotated with 'auto'"},
    )
    issuer_kind: str = field(
        default="ClusterIssuer",
        metadata={
            "help": "Kind of the cert-manager issuers referenced by the annotation",
            "validate": OneOf(ISSUER_KINDS),
        },
    )
    annotations: AnnotationsConfiguration = field(
        default_factory=AnnotationsConfiguration
    )
    backoff: BackoffConfiguration = field(default_factory=BackoffConfiguration)
    log: dict = field(default_factory=default_log_config)

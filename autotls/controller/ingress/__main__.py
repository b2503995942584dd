"""Module for the autotls controller responsible for the TLS automation of
Kubernetes Ingresses and entry point of the controller.

.. code:: bash

    python -m autotls.controller.ingress --help

Configuration is loaded from the ``autotls.yaml`` file:

.. code:: yaml

    kubeconfig: /etc/autotls/kubeconfig
    worker_count: 5
    debounce: 1.0
    resync_interval: 300
    watch_timeout: 0
    default_issuer: letsencrypt
    issuer_kind: ClusterIssuer

    annotations:
      issuer: autotls/issuer
      domain: autotls/domain

    backoff:
      min_delay: 1.0
      max_delay: 300.0
      factor: 2.0
      jitter: 0.1
      max_retries: 5

    log:
      ...

"""
import logging
import pprint
from argparse import ArgumentParser

from autotls import (
    setup_logging,
    search_config,
    ConfigurationOptionMapper,
    load_yaml_config,
)
from autotls.data.config import ControllerConfiguration
from autotls.utils import AutotlsArgumentFormatter

from ...controller import run
from .controller import IngressController


logger = logging.getLogger("autotls.controller.ingress")


parser = ArgumentParser(
    description="Ingress TLS automation controller",
    formatter_class=AutotlsArgumentFormatter,
)
parser.add_argument("-c", "--config", type=str, help="Path to configuration YAML file")

mapper = ConfigurationOptionMapper(ControllerConfiguration)
mapper.add_arguments(parser)


def main(config):
    setup_logging(config.log)
    logger.debug(
        "autotls Ingress Controller configuration settings:\n %s",
        pprint.pformat(config.serialize()),
    )

    if not config.default_issuer:
        logger.warning("No default issuer configured, issuer 'auto' will be rejected")

    controller = IngressController(
        kubeconfig=config.kubeconfig,
        worker_count=config.worker_count,
        debounce=config.debounce,
        resync_interval=config.resync_interval,
        watch_timeout=config.watch_timeout,
        default_issuer=config.default_issuer,
        issuer_kind=config.issuer_kind,
        annotations=config.annotations,
        backoff=config.backoff,
    )
    run(controller)


def load_config(argv=None):
    """Read the configuration from the file and from the command line.

    Args:
        argv (list[str], optional): command line arguments. Those of the process
            are used if not given.

    Returns:
        ControllerConfiguration: the configuration of the controller.

    """
    args = vars(parser.parse_args(argv))

    config = load_yaml_config(args["config"] or search_config("autotls.yaml"))
    return mapper.merge(config, args)


def cli():
    main(load_config())


if __name__ == "__main__":
    cli()

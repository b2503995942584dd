"""Connection to the Kubernetes API of the cluster the controller manages, and
translation of the errors of the Kubernetes client library into the
controller's own exceptions.
"""
import asyncio
import logging
import os
from contextlib import contextmanager

import yaml
from aiohttp import ClientError
from kubernetes_asyncio.client import ApiClient, Configuration
from kubernetes_asyncio.client.rest import ApiException
from kubernetes_asyncio.config import load_incluster_config
from kubernetes_asyncio.config.kube_config import KubeConfigLoader

from .exceptions import ConflictError, NotFoundError, TransientApiError

logger = logging.getLogger(__name__)


async def create_api_client(kubeconfig=None):
    """Create the base client of the Kubernetes API.

    Args:
        kubeconfig (str|dict, optional): path to a kubeconfig file, or the content
            of a kubeconfig file. If not given, the service account of the Pod
            the controller is running in is used.

    Returns:
        kubernetes_asyncio.client.ApiClient: the client, to be closed by the
        caller.

    """
    config = Configuration()

    if kubeconfig is None:
        logger.info("Using in-cluster configuration")
        load_incluster_config(client_configuration=config)
        return ApiClient(config)

    if isinstance(kubeconfig, dict):
        loader = KubeConfigLoader(kubeconfig)
    else:
        logger.info("Using kubeconfig %s", kubeconfig)
        with open(kubeconfig, "r") as fd:
            content = yaml.safe_load(fd)
        loader = KubeConfigLoader(
            content, config_base_path=os.path.dirname(os.path.abspath(kubeconfig))
        )

    await loader.load_and_set(config)
    return ApiClient(config)


@contextmanager
def translate_api_errors(resource):
    """Translate the errors raised while communicating with the Kubernetes API.

    .. code:: python

        with translate_api_errors("Ingress default/shop"):
            await networking_api.read_namespaced_ingress("shop", "default")

    Args:
        resource (str): description of the resource handled, for the error
            messages.

    Raises:
        NotFoundError: if the API answered with 404.
        ConflictError: if the API answered with 409.
        TransientApiError: on any other error status, or if the API could not
            be reached.

    """
    try:
        yield
    except ApiException as err:
        if err.status == 404:
            raise NotFoundError(f"{resource} not found") from err
        if err.status == 409:
            raise ConflictError(f"{resource}: {err.reason}") from err
        raise TransientApiError(f"{resource}: {err.status} {err.reason}") from err
    except (ClientError, asyncio.TimeoutError) as err:
        raise TransientApiError(f"{resource}: {err!r}") from err

import os
import sys
import logging.config

import pytest

# Prepend package directory for working imports
package_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, package_dir)

from autotls.data.config import ControllerConfiguration  # noqa: E402
from autotls.controller.ingress.issuer import IssuerStatus  # noqa: E402
from tests.controller import FakeClusterApi  # noqa: E402


logging.config.dictConfig(
    {
        "version": 1,
        "handlers": {"console": {"class": "logging.StreamHandler", "level": "DEBUG"}},
        "loggers": {"autotls": {"handlers": ["console"]}},
    }
)


def pytest_addoption(parser):
    """Register :mod:`argparse`-style options and ini-style config values for pytest.

    Called once at the beginning of a test run.

    Args:
        parser (pytest.config.Parser): pytest parser

    """
    parser.addoption(
        "--runslow", action="store_true", default=False, help="run slow tests"
    )


def pytest_configure(config):
    """Allows plugins and conftest files to perform initial configuration.

    Args:
        config (pytest.config.Config): config object

    """
    config.addinivalue_line("markers", "slow: mark test as slow to run")


def pytest_collection_modifyitems(config, items):
    """Called after pytest collection has been performed, may filter or
    re-order the items in-place.

    Args:
        config (pytest.config.Config): config object
        items (List[pytest.nodes.Item]): list of test item objects

    """
    if not config.getoption("--runslow"):
        skip_slow = pytest.mark.skip(reason="need --runslow option to run")
        for item in items:
            if "slow" in item.keywords:
                item.add_marker(skip_slow)


@pytest.fixture
def log_to_file_config(tmp_path):
    """Returns a function that can generate a dictionary that can be used as
    configuration for the logging module. The generated configuration sets the
    "INFO" log level, and only logs to a file. The path to the file can be
    provided. If not, a file is created by default in a temporary directory.
    """
    base_file_path = str(tmp_path / "autotls.log")

    def generate_log_config(file_path=None):
        """Generate the actual dictionary for logging.

        Args:
            file_path (str): path to the file to which the logs will be written. If not
                specified, a temporary file is used by default.

        Returns:
            (dict[str, Any], str): a tuple that contains first the generated dictionary,
                and second the path to the file where the logs will be written.

        """
        final_file_path = base_file_path
        if file_path is not None:
            final_file_path = file_path

        log_format = "%(asctime)s - [%(name)s] - [%(levelname)-5s] - %(message)s"
        return (
            {
                "version": 1,
                "level": "INFO",
                "formatters": {"autotls": {"format": log_format}},
                "handlers": {
                    "file": {
                        "class": "logging.FileHandler",
                        "formatter": "autotls",
                        "filename": final_file_path,
                    }
                },
                "loggers": {"autotls": {"handlers": ["file"], "propagate": False}},
            },
            final_file_path,
        )

    return generate_log_config


@pytest.fixture
def controller_config():
    """Create a configuration for the Ingress Controller.

    Returns:
        ControllerConfiguration: the created configuration.

    """
    config = {
        "kubeconfig": "/etc/autotls/kubeconfig",
        "default_issuer": "letsencrypt",
        "backoff": {"min_delay": 1, "max_delay": 60, "max_retries": 3},
        "log": {},
    }
    return ControllerConfiguration.deserialize(config)


@pytest.fixture
def cluster_api():
    """In-memory cluster with a ready "letsencrypt" ClusterIssuer.

    Returns:
        FakeClusterApi: the fake cluster.

    """
    return FakeClusterApi(issuers={"letsencrypt": IssuerStatus.READY})

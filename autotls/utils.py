from argparse import MetavarTypeHelpFormatter, ArgumentDefaultsHelpFormatter
from datetime import datetime, timezone


class AutotlsArgumentFormatter(
    ArgumentDefaultsHelpFormatter, MetavarTypeHelpFormatter
):
    """Custom formatter class which allows argparse help to display both the default
    value and the expected type (str, int...) for each arguments.

    To use for the ``formatter_class`` parameter of the
    :class:`argparse.ArgumentParser` constructor.
    """


def now():
    """Returns the current time in the UTC timezone.

    Returns:
        datetime.datetime: the current time (UTC timezone)

    """
    return datetime.now(timezone.utc)

import os
import sys
from copy import deepcopy

import yaml
import logging.config

from dataclasses import is_dataclass, MISSING
from marshmallow import ValidationError


def load_yaml_config(filepath):
    """Load the autotls configuration from a YAML file. An empty file is an
    empty configuration.

    Args:
        filepath (os.PathLike): path to the YAML configuration file.

    Returns:
        dict: the content of the file.

    """
    with open(filepath, "r") as fd:
        return yaml.safe_load(fd) or {}


def _option_fields(config_cls, parents=()):
    """Walk the fields of a configuration class and its nested configuration
    classes.

    Yields:
        (str, list): the name of the option, for instance
        ``"backoff-max-retries"``, and the hierarchy of fields it sets.

    """
    for field in config_cls.__dataclass_fields__.values():
        fields = list(parents) + [field]

        if is_dataclass(field.type):
            yield from _option_fields(field.type, parents=fields)
        # Mappings, like the logging configuration, are only read from file
        elif field.type is not dict:
            name = "-".join(parent.name.replace("_", "-") for parent in fields)
            yield name, fields


def _flatten_errors(messages, prefix=""):
    for name, errors in messages.items():
        if isinstance(errors, dict):
            yield from _flatten_errors(errors, prefix=f"{prefix}{name}.")
        elif isinstance(errors, list):
            yield f"{prefix}{name}", errors
        else:
            yield f"{prefix}{name}", [str(errors)]


class ConfigurationOptionMapper(object):
    """Create one command line option per attribute of a configuration class,
    nested configurations included, and merge the values given on the command
    line into the configuration read from file.

    The name of a nested option is prefixed with its parents:
    ``backoff.max_retries`` is set with ``--backoff-max-retries``. As argparse
    stores it as ``backoff_max_retries``, which cannot be split back without
    ambiguity, :attr:`option_fields_mapping` keeps the fields set by each
    option.

    Args:
        config_cls (type): the configuration class used as model of the options.

    """

    def __init__(self, config_cls):
        self.config_cls = config_cls
        self.option_fields_mapping = {}

    def add_arguments(self, parser):
        """Add the options of the configuration class to a parser.

        Args:
            parser (argparse.ArgumentParser): the parser to extend.

        """
        for name, fields in _option_fields(self.config_cls):
            field = fields[-1]
            kwargs = {"type": field.type}
            if "help" in field.metadata:
                kwargs["help"] = field.metadata["help"]
            if field.default is not MISSING:
                kwargs["default"] = field.default

            parser.add_argument(f"--{name}", **kwargs)
            self.option_fields_mapping[name] = fields

    @classmethod
    def _replace_hyphen(cls, dictionary):
        """Copy a dictionary, replacing recursively the hyphens of its keys with
        underscores.
        """
        if type(dictionary) is not dict:
            return deepcopy(dictionary)

        return {
            key.replace("-", "_"): cls._replace_hyphen(value)
            for key, value in dictionary.items()
        }

    def _command_line_values(self, args):
        """Keep only the parsed values set by the user through the options of the
        mapper. Values equal to the default are ignored, as argparse sets the
        default of every option.
        """
        for arg, value in args.items():
            fields = self.option_fields_mapping.get(arg.replace("_", "-"))
            if fields and value is not None and value != fields[-1].default:
                yield fields, value

    def merge(self, config, args):
        """Merge the values given on the command line into the configuration read
        from file. The command line has priority.

        Exits the process with a message listing every invalid field if the
        result is not a valid configuration.

        Args:
            config (dict): the configuration read from file.
            args (dict): the values read by the command line parser.

        Returns:
            autotls.data.serializable.Serializable: the merged configuration.

        """
        merged = self._replace_hyphen(config)

        for fields, value in self._command_line_values(args):
            section = merged
            for field in fields[:-1]:
                section = section.setdefault(field.name, {})
            section[fields[-1].name] = value

        try:
            return self.config_cls.deserialize(merged)
        except ValidationError as err:
            lines = [
                f" - field {name!r}: " + ", ".join(errors)
                for name, errors in _flatten_errors(err.messages)
            ]
            sys.exit(
                "Parsing configuration failed with error(s): \n" + "\n".join(lines)
            )


def search_config(filename):
    """Search a configuration file in the current working directory, then in
    ``/etc/autotls``.

    Returns:
        os.PathLike: path to the configuration file.

    Raises:
        FileNotFoundError: if the file is in none of the locations.

    """
    options = [filename, os.path.join("/etc/autotls/", filename)]

    for path in options:
        if os.path.exists(path):
            return path

    locations = ", ".join(map(repr, options))
    raise FileNotFoundError(f"Configuration in {locations} not found")


def setup_logging(config_log):
    """Configure the logging. Loggers without level get the global ``level`` of
    the configuration.

    Args:
        config_log (dict): logging configuration, in the format of
            :func:`logging.config.dictConfig`.

    """
    logging.config.dictConfig(config_log)

    level = config_log.get("level", "INFO")
    for name in list(logging.root.manager.loggerDict):
        logger = logging.getLogger(name)
        if not logger.level:
            logger.setLevel(level)

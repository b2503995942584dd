"""This module defines a declarative API for defining data models that are
JSON-serializable and JSON-deserializable.
"""
import dataclasses
import typing
from enum import Enum
from datetime import datetime, date

from marshmallow import Schema, fields, post_load, EXCLUDE, missing


class ModelizedSchema(Schema):
    """Simple marshmallow schema constructing Python objects in a
    ``post_load`` hook.

    Subclasses can specify a callable attribute ``__model__`` which is
    called with all deserialized attributes as keyword arguments.

    The ``Meta.unknown`` field is set to avoid considering unknown fields
    during validation.

    Attributes:
        __model__ (callable): Model factory returning a new instance of a
            specific model

    """

    __model__ = None

    class Meta:
        unknown = EXCLUDE

    @post_load
    def create_model(self, data, **kwargs):
        # kwargs necessary for unused additional parameters
        if self.__model__:
            return self.__model__(**data)
        return data


def is_generic(cls):
    """Detects any kind of generic, for example `List` or `List[int]`. This
    includes "special" types like Union and Tuple - anything that's subscriptable,
    basically.

    Args:
        cls: Type annotation that should be checked

    Returns:
        bool: True if the passed type annotation is a generic.

    """
    if hasattr(cls, "__origin__"):
        return cls.__origin__ is not None

    return isinstance(cls, typing._SpecialForm)


def is_base_generic(cls):
    """Detects generic base classes, for example ``List`` but not
    ``List[int]``.

    Args:
        cls: Type annotation that should be checked

    Returns:
        bool: True if the passed type annotation is a generic base.

    """
    if hasattr(cls, "__args__") and cls.__args__:
        return False

    if not hasattr(cls, "__origin__"):
        if not isinstance(cls, typing._SpecialForm):
            return False

    return True


def is_qualified_generic(cls):
    """Detects generics with arguments, for example ``List[int]`` but not
    ``List``

    Args:
        cls: Type annotation that should be checked

    Returns:
        bool: True if the passed type annotation is a qualified generic.

    """
    return is_generic(cls) and not is_base_generic(cls)


def has_origin(cls):
    return hasattr(cls, "__origin__")


def is_generic_subtype(cls, base):
    """Check if a given generic class is a subtype of another generic class

    If the base is a qualified generic, e.g. ``List[int]``, it is checked if
    the types are equal. Otherwise, the original types of the generics (e.g.
    :class:`list` for :class:`typing.List`) are compared.

    Args:
        cls: Generic type
        base: Generic type that should be the base of the given generic type.

    Returns:
        bool: True of the given generic type is a subtype of the given base
        generic type.

    """
    if is_qualified_generic(base):
        return cls == base

    if not has_origin(cls) and not has_origin(base):
        return cls == base

    if not has_origin(cls):
        return cls == base.__origin__

    if not has_origin(base):
        return cls.__origin__ == base

    return cls.__origin__ == base.__origin__


_native_to_marshmallow = {
    int: fields.Integer,
    bool: fields.Boolean,
    str: fields.String,
    float: fields.Float,
    dict: fields.Dict,
    datetime: fields.DateTime,
    date: fields.Date,
}

# Keyword arguments understood by marshmallow fields. Every other metadata
# entry (e.g. "help") is forwarded as field metadata.
_field_arguments = {
    "validate",
    "required",
    "allow_none",
    "data_key",
    "load_only",
    "dump_only",
    "error_messages",
    "load_default",
}


def field_for_schema(type_, default=dataclasses.MISSING, **metadata):
    """Create a corresponding :class:`marshmallow.fields.Field` for the passed
    type.

    If ``metadata`` contains ``marshmallow_field`` key, the value will be used
    directly as field.

    If ``type_`` has a ``Schema`` attribute which should be a subclass of
    :class:`marshmallow.Schema` a :class.`marshmallow.fields.Nested` field
    will be returned wrapping the schema.

    Args:
        type_ (type): Type of the field
        default (optional): Default value of the field
        **metadata (dict): Any additional keyword argument. Arguments known by
            marshmallow are passed to the field, the others are stored in the
            field metadata.

    Returns:
        marshmallow.fields.Field: Serialization field for the passed type

    Raises:
        NotImplementedError: If the marshmallow field cannot not be determined
            for the passed type

    """
    if "marshmallow_field" in metadata:
        return metadata["marshmallow_field"]

    kwargs = {key: value for key, value in metadata.items() if key in _field_arguments}
    extra = {
        key: value for key, value in metadata.items() if key not in _field_arguments
    }
    if extra:
        kwargs["metadata"] = extra

    if default is not dataclasses.MISSING:
        kwargs.setdefault("load_default", default)

    # If no default value is given in the class definition,
    # it means this field needs to be given
    if kwargs.get("load_default", missing) is missing:
        kwargs.setdefault("required", True)

    if hasattr(type_, "Schema"):
        return fields.Nested(type_.Schema, **kwargs)

    if type_ in _native_to_marshmallow:
        return _native_to_marshmallow[type_](**kwargs)

    if is_qualified_generic(type_):
        if is_generic_subtype(type_, typing.List):
            inner_serializer = field_for_schema(type_.__args__[0])
            return fields.List(inner_serializer, **kwargs)

        if is_generic_subtype(type_, typing.Dict):
            keys_field = field_for_schema(type_.__args__[0])
            values_field = field_for_schema(type_.__args__[1])
            return fields.Dict(keys=keys_field, values=values_field, **kwargs)

    elif isinstance(type_, type) and issubclass(type_, Enum):
        return fields.Enum(type_, **kwargs)

    raise NotImplementedError(f"No serializer found for {type_!r}")


class SerializableMeta(type):
    """Metaclass for :class:`Serializable`. It automatically converts a
    specified class into an dataclass (see :func:`dataclasses.dataclass`) and
    creates a corresponding :class:`marshmallow.Schema` class. The schema
    class is assigned to the :attr:`Schema` attribute.
    """

    def __new__(mcls, name, bases, attrs, **kwargs):
        cls = super().__new__(mcls, name, bases, attrs, **kwargs)
        cls = dataclasses.dataclass(cls, init=False)

        # Check if the class defines an own "Schema" attribute but not its
        # parent classes. Therefore, we use the "__dict__" attribute directly
        # here instead of "hasattr()".
        if "Schema" not in cls.__dict__:
            schema_attrs = {
                "__module__": cls.__module__,
                "__qualname__": f"{cls.__qualname__}.Schema",
                "__model__": cls,
            }

            for field in dataclasses.fields(cls):
                if field.default_factory is not dataclasses.MISSING:
                    default = field.default_factory
                else:
                    default = field.default
                serializer = field_for_schema(field.type, default, **field.metadata)
                schema_attrs[field.name] = serializer

            cls.Schema = type("Schema", (ModelizedSchema,), schema_attrs)

        return cls


class Serializable(metaclass=SerializableMeta):
    """Base class for declarative serialization API.

    All field metadata attributes are passed to the generated
    :class:`marshmallow.fields.Field` instance, either as keyword arguments
    (``validate``, ``required``...) or as field metadata (``help``...). This
    means the user can control the generated marshmallow field with the
    metadata attributes.

    The class also defines a custom ``__init__`` method accepting every
    attribute as keyword argument in arbitrary order in contrast to the
    standard init method of dataclasses.

    Example:
        .. code:: python

            from autotls.data.serializable import Serializable

            class TlsBinding(Serializable):
                hosts: List[str]
                secret_name: str

            assert hasattr(TlsBinding, "Schema")

    Schema-level validation can leverage the ``__post_init__()`` method: a
    :class:`marshmallow.ValidationError` raised there propagates to the Schema
    deserialization method.

    Attributes:
        Schema (ModelizedSchema): Schema for this dataclass

    """

    def __init__(self, **kwargs):
        for field in dataclasses.fields(self):
            if field.name in kwargs:
                value = kwargs.pop(field.name)
            elif field.default is not dataclasses.MISSING:
                value = field.default
            elif field.default_factory is not dataclasses.MISSING:
                value = field.default_factory()
            else:
                raise TypeError(f"Missing keyword argument {field.name!r}")
            setattr(self, field.name, value)
        if kwargs:
            key, _ = kwargs.popitem()
            raise TypeError(f"Got unexpected keyword argument {key!r}")

        self.__post_init__()

    def __post_init__(self):
        """The :meth:`__init__` method calls this method after all fields are
        initialized.

        It is mostly useful for schema-level validation (see above).
        """
        pass

    def serialize(self):
        """Serialize the object using the generated :attr:`Schema`.

        Returns:
            dict: JSON representation of the object

        """
        return self.Schema().dump(self)

    @classmethod
    def deserialize(cls, data):
        """Loading an instance of the class from JSON-encoded data.

        Args:
            data (dict): JSON dictionary that should be deserialized.

        Raises:
            marshmallow.ValidationError: If the data is invalid

        """
        return cls.Schema().load(data)

"""Data abstraction module for the objects handled by the autotls controller.

The core functionality is provided by :mod:`.serializable` providing a Python
API for declarative definitions of data models together with serializing and
deserializing functionality.

Domain-specific models are defined in corresponding submodules, e.g.
Ingress-related data models are defined in :mod:`.ingress`, and the controller
configuration in :mod:`.config`.
"""

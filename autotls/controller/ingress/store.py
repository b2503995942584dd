class StateStore(object):
    """In-memory cache of the :class:`autotls.data.ingress.ReconcileRecord` of
    every managed routing object, indexed by object key.

    The store is only accessed from the event loop. The work queue ensures that
    the record of a key is only modified by the worker processing this key.
    """

    def __init__(self):
        self._records = {}

    def get(self, key):
        """Get the record of an object.

        Args:
            key (autotls.data.core.ObjectKey): key of the object.

        Returns:
            ReconcileRecord: the record, or None if the object is unknown.

        """
        return self._records.get(key)

    def put(self, record):
        self._records[record.object_key] = record

    def discard(self, key):
        """Remove the record of an object. Unknown keys are ignored.

        Returns:
            ReconcileRecord: the removed record, or None.

        """
        return self._records.pop(key, None)

    def __contains__(self, key):
        return key in self._records

    def __len__(self):
        return len(self._records)

    def __iter__(self):
        return iter(list(self._records))

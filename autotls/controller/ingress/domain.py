from typing import NamedTuple, List, Optional


class MergeResult(NamedTuple):
    """Result of :func:`merge_domain`.

    Attributes:
        hosts (list[str]): the amended hosts, in the order of the input.
        duplicates (list[str]): hosts left unchanged because their merged form
            is already present in the input.

    """

    hosts: List[Optional[str]]
    duplicates: List[str]


def merge_domain(hosts, domain):
    """Append the domain to every host that is not fully qualified.

    A host is left unchanged if it already contains a dot or is the domain
    itself. Rules without host (None) are passed through.

    Example:
        .. code:: python

            >>> merge_domain(["shop", "api.example.org", None], "example.com")
            MergeResult(hosts=['shop.example.com', 'api.example.org', None], duplicates=[])

    Args:
        hosts (list[str]): hosts of the rules of a routing object.
        domain (str): suffix to append. No suffix means no change.

    Returns:
        MergeResult: the merged hosts and the hosts that could not be merged
        because the result would duplicate an existing host.

    """
    if not domain:
        return MergeResult(hosts=list(hosts), duplicates=[])

    present = set(host for host in hosts if host is not None)
    merged = []
    duplicates = []

    for host in hosts:
        if host is None or "." in host or host == domain:
            merged.append(host)
            continue

        candidate = f"{host}.{domain}"
        if candidate in present:
            duplicates.append(host)
            merged.append(host)
        else:
            merged.append(candidate)

    return MergeResult(hosts=merged, duplicates=duplicates)

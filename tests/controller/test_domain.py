from autotls.controller.ingress.domain import merge_domain


def test_merge_bare_host():
    result = merge_domain(["api"], "example.com")

    assert result.hosts == ["api.example.com"]
    assert result.duplicates == []


def test_merge_qualified_hosts_unchanged():
    result = merge_domain(["api.example.com", "api.other.com"], "example.com")

    assert result.hosts == ["api.example.com", "api.other.com"]
    assert result.duplicates == []


def test_merge_host_equal_to_domain():
    result = merge_domain(["localdomain"], "localdomain")
    assert result.hosts == ["localdomain"]


def test_merge_without_domain():
    hosts = ["api", "shop", None]

    assert merge_domain(hosts, None).hosts == hosts
    assert merge_domain(hosts, "").hosts == hosts


def test_merge_preserves_order_and_rules_without_host():
    result = merge_domain(["shop", None, "api.example.org", "api"], "example.com")

    assert result.hosts == ["shop.example.com", None, "api.example.org", "api.example.com"]


def test_merge_duplicate_is_skipped():
    result = merge_domain(["api", "api.example.com", "web"], "example.com")

    # "api" would become "api.example.com" which is already present
    assert result.hosts == ["api", "api.example.com", "web.example.com"]
    assert result.duplicates == ["api"]


def test_merge_does_not_modify_input():
    hosts = ["api"]
    merge_domain(hosts, "example.com")

    assert hosts == ["api"]

from types import SimpleNamespace

from stocksync.sync.filters import FilterDefaults, RuleKind, compile_filter, compile_site_filter, split_list


def test_split_list_accepts_mixed_separators():
    assert split_list("A, B，C\nD;E") == ("A", "B", "C", "D", "E")
    assert split_list(["x ", "", " y"]) == ("x", "y")
    assert split_list(None) == ()

def test_empty_filter_keeps_everything_in_scope():
    f = compile_filter()
    assert f.is_empty
    assert f.is_in_scope("ANY-SKU", "whatever", "WH1")

def test_exclude_warehouse_is_case_insensitive():
    f = compile_filter(exclude_warehouses="wh-closed")
    assert f.evaluate("SKU1", "", "WH-CLOSED") is RuleKind.EXCLUDE_WAREHOUSE
    assert f.is_in_scope("SKU1", "", "WH-OPEN")
    # rows without a warehouse are never excluded by warehouse
    assert f.is_in_scope("SKU1", "", "")

def test_exclude_sku_prefix():
    f = compile_filter(exclude_sku_prefixes="TEST-, tmp")
    assert f.evaluate("test-001") is RuleKind.EXCLUDE_SKU_PREFIX
    assert f.evaluate("TMP9") is RuleKind.EXCLUDE_SKU_PREFIX
    assert f.is_in_scope("PROD-1")

def test_category_filter_requires_listed_category():
    f = compile_filter(category_filters=["Shoes", "Bags"])
    assert f.is_in_scope("S1", "shoes")
    assert f.evaluate("S1", "Hats") is RuleKind.REQUIRE_CATEGORY
    assert f.evaluate("S1", "") is RuleKind.REQUIRE_CATEGORY

def test_sku_filter_substring_and_wildcard():
    f = compile_filter(sku_filter="abc, x*-01")
    assert f.is_in_scope("ZZABCZZ")
    assert f.is_in_scope("X99-01")
    assert f.evaluate("X99-02") is RuleKind.REQUIRE_SKU_PATTERN

def test_exclusion_beats_inclusion():
    f = compile_filter(sku_filter="A1", exclude_sku_prefixes="A1")
    assert f.evaluate("A1-RED") is RuleKind.EXCLUDE_SKU_PREFIX

def test_evaluation_order_reports_first_rejecting_rule():
    f = compile_filter(
        sku_filter="nomatch",
        exclude_sku_prefixes="P-",
        category_filters=["Shoes"],
        exclude_warehouses="WH9",
    )
    assert f.evaluate("P-1", "Hats", "WH9") is RuleKind.EXCLUDE_WAREHOUSE
    assert f.evaluate("P-1", "Hats", "WH1") is RuleKind.EXCLUDE_SKU_PREFIX
    assert f.evaluate("Q-1", "Hats", "WH1") is RuleKind.REQUIRE_CATEGORY
    assert f.evaluate("Q-1", "Shoes", "WH1") is RuleKind.REQUIRE_SKU_PATTERN

def test_compile_site_filter_from_row():
    assert compile_site_filter(None).is_empty
    row = SimpleNamespace(
        sku_filter="",
        exclude_sku_prefixes="OLD-",
        category_filters=[],
        exclude_warehouses="",
    )
    f = compile_site_filter(row)
    assert [r.kind for r in f.rules] == [RuleKind.EXCLUDE_SKU_PREFIX]

def test_sku_rules_also_match_the_erp_sku():
    f = compile_filter(exclude_sku_prefixes="TEST-")
    assert f.evaluate("W1", erp_sku="TEST-1") is RuleKind.EXCLUDE_SKU_PREFIX
    assert f.evaluate("TEST-W1", erp_sku="E1") is RuleKind.EXCLUDE_SKU_PREFIX
    assert f.is_in_scope("W1", erp_sku="E1")

    f = compile_filter(sku_filter="E-*")
    assert f.is_in_scope("W1", erp_sku="E-100")
    assert f.evaluate("W1", erp_sku="X-100") is RuleKind.REQUIRE_SKU_PATTERN

def test_empty_site_fields_fall_back_to_global_defaults():
    defaults = FilterDefaults(
        sku_filter="",
        exclude_sku_prefixes="TEST-",
        category_filters=("Shoes",),
        exclude_warehouses="WH-GLOBAL",
    )
    assert [r.kind for r in compile_site_filter(None, defaults).rules] == [
        RuleKind.EXCLUDE_WAREHOUSE, RuleKind.EXCLUDE_SKU_PREFIX, RuleKind.REQUIRE_CATEGORY,
    ]

    row = SimpleNamespace(
        sku_filter="",
        exclude_sku_prefixes="OLD-",
        category_filters=[],
        exclude_warehouses="  ",
    )
    f = compile_site_filter(row, defaults)
    # the site's own prefix list replaces the global one
    assert f.is_in_scope("TEST-1", "Shoes", "WH1")
    assert f.evaluate("OLD-1", "Shoes", "WH1") is RuleKind.EXCLUDE_SKU_PREFIX
    assert f.evaluate("P-1", "Hats", "WH1") is RuleKind.REQUIRE_CATEGORY
    assert f.evaluate("P-1", "Shoes", "wh-global") is RuleKind.EXCLUDE_WAREHOUSE

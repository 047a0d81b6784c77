from catalog_agent.queries import render_product_info, run_query_code, run_report_query


def test_report_listing(catalog):
    answer = run_report_query(catalog, "productos sin precio")
    assert answer["code"] == "A1"
    assert answer["message"].splitlines() == [
        "Encontré 1 producto sin precio. Te muestro hasta 5:",
        "• Pantalón Cargo (ID 30)",
    ]


def test_report_count_mode(catalog):
    answer = run_report_query(catalog, "cuantos productos sin sku hay")
    assert answer["message"] == "Encontré 1 producto sin SKU."


def test_stock_reports(catalog):
    assert "Remera Negra (ID 21)" in run_report_query(catalog, "productos agotados")["message"]
    low = run_report_query(catalog, "productos con bajo stock")
    assert low["meta"]["report"] == "low_stock"
    assert "Remera Roja (ID 15)" in low["message"]


def test_uncategorized_report(catalog):
    answer = run_report_query(catalog, "productos sin categoria")
    assert answer["code"] == "A4"
    assert "Gorra Trucker (ID 999)" in answer["message"]


def test_empty_report_is_positive(catalog):
    assert run_report_query(catalog, "productos en backorder")["message"] == "No encontré productos en backorder ✅"


def test_health_summary(catalog):
    answer = run_report_query(catalog, "salud del catalogo")
    assert answer["code"] == "A8"
    assert answer["message"].startswith("Salud del catálogo: **")
    assert 0 <= answer["meta"]["score"] <= 100


def test_unrelated_text_is_not_a_report(catalog):
    assert run_report_query(catalog, "hola que tal") is None


def test_query_code_from_gate(catalog):
    answer = run_query_code(catalog, "A7", "summary")
    assert "sin stock" in answer["message"]
    assert run_query_code(catalog, "A9") is None


def test_product_info_focus(catalog):
    product = catalog.get_product(12)
    assert render_product_info(product, "que stock tiene el #12") == "El stock del producto #12 (Remera Azul) es 10 unidades."
    card = render_product_info(product, "info del #12")
    assert "• SKU: REM-AZ" in card

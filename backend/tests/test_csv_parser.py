"""
CSV parsing tests for sales imports.

Verifies:
- Quoted cells, escaped quotes and embedded newlines
- Header alias normalization (accents, spaces, first occurrence wins)
- Product cell splitting and embedded prices
- Number cells above the storable range are rejected
- Product name resolution with accent stripping and spelling aliases
"""

import pytest

from tourledger.services import csv_parser
from tourledger.services.csv_parser import ProductResolver
from tourledger.validation import MAX_AMOUNT, MAX_QUANTITY


class _FakeTour:
    def __init__(self, id, name):
        self.id = id
        self.name = name


class TestLines:

    def test_quoted_comma_and_escaped_quote(self):
        cells = csv_parser.parse_line('a, "b, c" ,"say ""hi"""')
        assert cells == ["a", "b, c", 'say "hi"']

    def test_records_keep_newlines_inside_quotes_and_drop_blank_rows(self):
        text = 'producto,total\n"Tour A\nnoche",700\n\n , \nTour B,300\n'
        records = csv_parser.split_records(text)
        assert records == [["producto", "total"], ["Tour A\nnoche", "700"], ["Tour B", "300"]]


class TestHeaders:

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("Producto", "product"),
            ("Productos", "product"),
            ("Artículo", "product"),
            ("Cantidad", "quantity"),
            ("Precio", "total"),
            ("Teléfono", "customer_phone"),
            ("Fecha de Entrega", "delivery_date"),
            ("Fecha de Visita", "visit_date"),
            ("Nombre Vendedor", "seller_name"),
            ("Dirección", "customer_address"),
            ("Abono", "deposit"),
            ("Pendiente", "balance_due"),
            ("Estado", "is_paid"),
            ("Columna Rara", "columnarara"),
        ],
    )
    def test_alias_normalization(self, raw, expected):
        assert csv_parser.normalize_header(raw) == expected

    def test_first_occurrence_wins(self):
        header_map = csv_parser.build_header_map(["Total", "Precio", "Producto"])
        assert header_map["total"] == 0
        assert header_map["product"] == 2

    def test_get_cell_falls_back_through_keys(self):
        header_map = {"delivery_date": 0, "date": 1}
        assert csv_parser.get_cell(["", "2024-01-15"], header_map, "delivery_date", "date") == "2024-01-15"
        assert csv_parser.get_cell(["x"], header_map, "date") == ""


class TestNumbers:

    def test_int_cell_strips_thousands_separators(self):
        assert csv_parser.parse_int_cell("1,400") == 1400
        assert csv_parser.parse_int_cell("12.9") == 12
        assert csv_parser.parse_int_cell("") is None
        assert csv_parser.parse_int_cell("n/a") is None

    def test_amount_rounds_and_defaults_to_zero(self):
        assert csv_parser.parse_amount("699.5") == 700
        assert csv_parser.parse_amount("") == 0
        assert csv_parser.parse_amount("abc") == 0

    def test_quantity_defaults_to_one(self):
        assert csv_parser.parse_quantity(None) == 1
        assert csv_parser.parse_quantity("") == 1
        assert csv_parser.parse_quantity("0") == 1
        assert csv_parser.parse_quantity("3") == 3

    @pytest.mark.parametrize("value", ["9" * 400, "100000000000000000000", "1000000001"])
    def test_amount_out_of_range(self, value):
        with pytest.raises(csv_parser.CellRangeError):
            csv_parser.parse_amount(value)
        with pytest.raises(csv_parser.CellRangeError):
            csv_parser.parse_int_cell(value)

    def test_amount_at_maximum_is_accepted(self):
        assert csv_parser.parse_amount(str(MAX_AMOUNT)) == MAX_AMOUNT

    def test_quantity_above_maximum(self):
        assert csv_parser.parse_quantity(str(MAX_QUANTITY)) == MAX_QUANTITY
        with pytest.raises(csv_parser.CellRangeError):
            csv_parser.parse_quantity(str(MAX_QUANTITY + 1))

    def test_price_in_product_cell_out_of_range(self):
        with pytest.raises(csv_parser.CellRangeError):
            csv_parser.parse_product_cell("Tour A: " + "9" * 400)

    @pytest.mark.parametrize("value", ["1", "true", "Si", "sí", "YES", "Pagado"])
    def test_paid_values(self, value):
        assert csv_parser.parse_paid(value)

    def test_unpaid_values(self):
        assert not csv_parser.parse_paid("pendiente")
        assert not csv_parser.parse_paid("")


class TestProductCells:

    def test_single_segment_with_price(self):
        segments = csv_parser.parse_product_cell("Gotero de Ampollas: 700")
        assert segments == [csv_parser.ProductSegment("Gotero de Ampollas", 700)]

    def test_segment_without_price(self):
        assert csv_parser.parse_product_cell("Tour A") == [csv_parser.ProductSegment("Tour A", None)]

    def test_multi_item_cell(self):
        segments = csv_parser.parse_product_cell("Tour A: 700 , Tour B: 700")
        assert [(s.lookup_name, s.price) for s in segments] == [("Tour A", 700), ("Tour B", 700)]

    def test_thousands_separator_inside_price_is_not_a_split(self):
        segments = csv_parser.parse_product_cell("Tour A: 1,400 , Tour B: 700")
        assert [(s.lookup_name, s.price) for s in segments] == [("Tour A", 1400), ("Tour B", 700)]

    def test_empty_cell(self):
        assert csv_parser.parse_product_cell("   ") == []


class TestProductResolution:

    def test_accent_and_case_insensitive(self):
        resolver = ProductResolver([_FakeTour(1, "Línea de Miel")])
        assert resolver.resolve("LINEA DE MIEL") == 1

    def test_spelling_alias(self):
        resolver = ProductResolver([_FakeTour(7, "Línea de Miel & Leche con Macademia")])
        assert resolver.resolve("Linea de Miel & Leche con Macadamia") == 7

    def test_first_tour_with_a_key_wins(self):
        resolver = ProductResolver([_FakeTour(1, "Tour A"), _FakeTour(2, "tour a")])
        assert resolver.resolve("Tour A") == 1

    def test_unknown_name(self):
        assert ProductResolver([]).resolve("Nada") is None

"""Unit tests for the box/sheet/piece packaging arithmetic."""

from __future__ import annotations

import pytest

from medcure_pos.packaging import PackagingQuantity, describe_pieces, format_quantity, from_pieces, to_pieces


@pytest.fixture
def blister_pack(product_factory):
    # 10 pieces per sheet, 10 sheets per box
    return product_factory()


def test_to_pieces_combines_all_levels(blister_pack):
    quantity = PackagingQuantity(boxes=2, sheets=3, pieces=4)
    assert to_pieces(quantity, blister_pack) == 234


def test_to_pieces_clamps_negative_components(blister_pack):
    """Negative inputs are treated as zero rather than raising."""

    quantity = PackagingQuantity(boxes=-1, sheets=2, pieces=-5)
    assert to_pieces(quantity, blister_pack) == 20


def test_to_pieces_zero_is_valid(blister_pack):
    assert to_pieces(PackagingQuantity(), blister_pack) == 0


def test_from_pieces_prefers_largest_units(blister_pack):
    assert from_pieces(234, blister_pack) == PackagingQuantity(boxes=2, sheets=3, pieces=4)


def test_from_pieces_single_piece_products(product_factory):
    loose = product_factory(pieces_per_sheet=1, sheets_per_box=1)
    assert from_pieces(7, loose) == PackagingQuantity(boxes=7, sheets=0, pieces=0)


@pytest.mark.parametrize("total", [0, 1, 9, 10, 99, 100, 101, 457])
@pytest.mark.parametrize("pieces_per_sheet, sheets_per_box", [(10, 10), (8, 2), (1, 12), (6, 1)])
def test_round_trip_preserves_piece_count(product_factory, total, pieces_per_sheet, sheets_per_box):
    product = product_factory(pieces_per_sheet=pieces_per_sheet, sheets_per_box=sheets_per_box)
    decomposed = from_pieces(total, product)

    assert to_pieces(decomposed, product) == total
    assert decomposed.sheets < product.sheets_per_box
    assert decomposed.pieces < product.pieces_per_sheet


def test_format_quantity_uses_singular_and_plural():
    assert format_quantity(PackagingQuantity(boxes=2, sheets=1, pieces=3)) == "2 boxes, 1 sheet, 3 pieces"


def test_format_quantity_omits_zero_components():
    assert format_quantity(PackagingQuantity(sheets=2)) == "2 sheets"


def test_format_quantity_empty():
    assert format_quantity(PackagingQuantity()) == "0 pieces"


def test_describe_pieces(blister_pack):
    assert describe_pieces(101, blister_pack) == "1 box, 1 piece"

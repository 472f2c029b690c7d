from decimal import Decimal

import pytest

from backend.app.errors import ValidationError
from backend.app.refunds.validator import (
    RefundLineRequest,
    RefundRequest,
    check_refund_request,
    derive_status,
    summarize_billed_parts,
)

BRAKE_PAD = 1
OIL_FILTER = 2


def _bill(total="325.00", refunded="0.00", status="active"):
    return {"id": 10, "total_amount": Decimal(total), "refund_amount": Decimal(refunded), "status": status}


def _items():
    return [
        {"id": 1, "part_id": BRAKE_PAD, "part_name": "Brake Pad", "manufacturer": "Bosch",
         "quantity": 5, "unit_price": Decimal("50.00"), "total_price": Decimal("250.00")},
        {"id": 2, "part_id": OIL_FILTER, "part_name": "Oil Filter", "manufacturer": "Mann",
         "quantity": 3, "unit_price": Decimal("25.00"), "total_price": Decimal("75.00")},
    ]


def _partial(*lines, amount=None):
    return RefundRequest(
        refund_type="partial",
        refund_reason="customer return",
        refund_amount=None if amount is None else Decimal(amount),
        items=[RefundLineRequest(part_id=p, quantity=q) for p, q in lines],
    )


def test_partial_refund_of_two_brake_pads_plans_one_line():
    plan = check_refund_request(_bill(), _items(), {}, _partial((BRAKE_PAD, 2), amount="100"))

    assert plan.amount == Decimal("100.00")
    assert plan.new_status == "partially_refunded"
    assert plan.remaining_after == Decimal("225.00")
    assert [(l.part_id, l.quantity, l.unit_price, l.total_price) for l in plan.lines] == [
        (BRAKE_PAD, 2, Decimal("50.00"), Decimal("100.00"))
    ]


def test_refund_of_everything_left_marks_bill_refunded():
    plan = check_refund_request(
        _bill(refunded="100.00", status="partially_refunded"),
        _items(),
        {BRAKE_PAD: 2},
        _partial((BRAKE_PAD, 3), (OIL_FILTER, 3), amount="225"),
    )
    assert plan.amount == Decimal("225.00")
    assert plan.new_status == "refunded"
    assert plan.remaining_after == Decimal("0.00")
    assert plan.status_before == "partially_refunded"


def test_amount_is_derived_from_items_when_omitted():
    plan = check_refund_request(_bill(), _items(), {}, _partial((OIL_FILTER, 2)))
    assert plan.amount == Decimal("50.00")


def test_quantity_above_remaining_is_rejected_with_line_detail():
    with pytest.raises(ValidationError) as exc_info:
        check_refund_request(_bill(refunded="100.00"), _items(), {BRAKE_PAD: 2}, _partial((OIL_FILTER, 1), (BRAKE_PAD, 4)))
    exc = exc_info.value
    assert exc.line == 1
    assert exc.part_id == BRAKE_PAD
    assert "only 3 of 5 remain" in exc.detail


def test_part_not_on_bill_is_rejected():
    with pytest.raises(ValidationError) as exc_info:
        check_refund_request(_bill(), _items(), {}, _partial((999, 1)))
    assert exc_info.value.part_id == 999
    assert "not on this bill" in exc_info.value.detail


def test_same_part_twice_is_rejected():
    with pytest.raises(ValidationError) as exc_info:
        check_refund_request(_bill(), _items(), {}, _partial((BRAKE_PAD, 1), (BRAKE_PAD, 1)))
    assert exc_info.value.line == 1


def test_amount_that_does_not_match_items_is_rejected():
    with pytest.raises(ValidationError) as exc_info:
        check_refund_request(_bill(), _items(), {}, _partial((BRAKE_PAD, 2), amount="150"))
    assert "does not match" in exc_info.value.detail


def test_amount_within_a_cent_of_items_total_is_accepted():
    plan = check_refund_request(_bill(), _items(), {}, _partial((BRAKE_PAD, 2), amount="100.004"))
    assert plan.amount == Decimal("100.00")


def test_unit_price_above_billed_price_is_rejected():
    req = RefundRequest(
        refund_type="partial",
        refund_reason="price dispute",
        items=[RefundLineRequest(part_id=BRAKE_PAD, quantity=1, unit_price=Decimal("60"))],
    )
    with pytest.raises(ValidationError) as exc_info:
        check_refund_request(_bill(), _items(), {}, req)
    assert exc_info.value.part_id == BRAKE_PAD


def test_discounted_unit_price_is_honoured():
    req = RefundRequest(
        refund_type="partial",
        refund_reason="damaged box",
        items=[RefundLineRequest(part_id=BRAKE_PAD, quantity=2, unit_price=Decimal("40"))],
    )
    plan = check_refund_request(_bill(), _items(), {}, req)
    assert plan.amount == Decimal("80.00")
    assert plan.lines[0].unit_price == Decimal("40.00")


def test_fully_refunded_bill_accepts_nothing():
    with pytest.raises(ValidationError) as exc_info:
        check_refund_request(_bill(refunded="325.00", status="refunded"), _items(), {BRAKE_PAD: 5, OIL_FILTER: 3}, _partial((BRAKE_PAD, 1)))
    assert "already fully refunded" in exc_info.value.detail


def test_bill_with_nothing_left_is_terminal_even_if_status_lags():
    with pytest.raises(ValidationError):
        check_refund_request(_bill(refunded="325.00", status="partially_refunded"), _items(), {}, _partial(amount="1"))


def test_full_refund_covers_all_remaining_quantities():
    req = RefundRequest(refund_type="full", refund_reason="wrong car")
    plan = check_refund_request(_bill(refunded="100.00", status="partially_refunded"), _items(), {BRAKE_PAD: 2}, req)

    assert plan.amount == Decimal("225.00")
    assert plan.new_status == "refunded"
    assert [(l.part_id, l.quantity) for l in plan.lines] == [(BRAKE_PAD, 3), (OIL_FILTER, 3)]


def test_full_refund_rejects_explicit_items():
    req = RefundRequest(refund_type="full", refund_reason="x", items=[RefundLineRequest(part_id=BRAKE_PAD, quantity=1)])
    with pytest.raises(ValidationError):
        check_refund_request(_bill(), _items(), {}, req)


def test_full_refund_amount_must_match_remaining():
    req = RefundRequest(refund_type="full", refund_reason="x", refund_amount=Decimal("300"))
    with pytest.raises(ValidationError) as exc_info:
        check_refund_request(_bill(), _items(), {}, req)
    assert "remaining refundable amount 325.00" in exc_info.value.detail


def test_amount_only_partial_refund_has_no_lines():
    plan = check_refund_request(_bill(), _items(), {}, _partial(amount="20"))
    assert plan.lines == []
    assert plan.amount == Decimal("20.00")
    assert plan.new_status == "partially_refunded"


def test_amount_only_partial_refund_needs_an_amount():
    with pytest.raises(ValidationError):
        check_refund_request(_bill(), _items(), {}, _partial())


def test_amount_only_refund_cannot_exceed_remaining():
    with pytest.raises(ValidationError) as exc_info:
        check_refund_request(_bill(refunded="300.00", status="partially_refunded"), _items(), {}, _partial(amount="30"))
    assert "exceeds the remaining refundable amount 25.00" in exc_info.value.detail


def test_zero_value_refund_is_rejected():
    req = RefundRequest(
        refund_type="partial",
        refund_reason="free sample",
        items=[RefundLineRequest(part_id=BRAKE_PAD, quantity=1, unit_price=Decimal("0"))],
    )
    with pytest.raises(ValidationError):
        check_refund_request(_bill(), _items(), {}, req)


def test_summarize_billed_parts_merges_repeated_part_lines():
    rows = [
        {"part_id": 7, "part_name": "Spark Plug", "quantity": 2, "unit_price": Decimal("10"), "total_price": Decimal("20")},
        {"part_id": 7, "part_name": "Spark Plug", "quantity": 2, "unit_price": Decimal("12"), "total_price": Decimal("24")},
    ]
    (bp,) = summarize_billed_parts(rows, {7: 1})
    assert bp.quantity == 4
    assert bp.unit_price == Decimal("11.00")
    assert bp.refunded_quantity == 1
    assert bp.remaining_quantity == 3


@pytest.mark.parametrize(
    "total,refunded,expected",
    [
        ("325", "0", "active"),
        ("325", "100", "partially_refunded"),
        ("325", "324.99", "partially_refunded"),
        ("325", "325", "refunded"),
    ],
)
def test_derive_status(total, refunded, expected):
    assert derive_status(Decimal(total), Decimal(refunded)) == expected


def test_amount_one_cent_off_items_total_is_accepted():
    plan = check_refund_request(_bill(), _items(), {}, _partial((BRAKE_PAD, 2), amount="100.01"))
    assert plan.amount == Decimal("100.00")

    with pytest.raises(ValidationError):
        check_refund_request(_bill(), _items(), {}, _partial((BRAKE_PAD, 2), amount="100.02"))


def test_full_refund_lines_add_up_to_what_is_left_after_goodwill_refund():
    req = RefundRequest(refund_type="full", refund_reason="wrong car")
    plan = check_refund_request(_bill(refunded="300.00", status="partially_refunded"), _items(), {}, req)

    assert plan.amount == Decimal("25.00")
    assert [(l.part_id, l.quantity, l.total_price) for l in plan.lines] == [
        (BRAKE_PAD, 5, Decimal("19.23")),
        (OIL_FILTER, 3, Decimal("5.77")),
    ]
    assert sum(l.total_price for l in plan.lines) == plan.amount


def test_full_refund_spreading_never_goes_negative():
    items = [
        {"part_id": p, "part_name": f"Part {p}", "quantity": 1, "unit_price": Decimal("10"), "total_price": Decimal("10")}
        for p in (1, 2, 3, 4)
    ]
    bill = {"id": 1, "total_amount": Decimal("40"), "refund_amount": Decimal("39.98"), "status": "partially_refunded"}
    plan = check_refund_request(bill, items, {}, RefundRequest(refund_type="full", refund_reason="x"))

    totals = [l.total_price for l in plan.lines]
    assert sum(totals) == Decimal("0.02")
    assert all(t >= 0 for t in totals)

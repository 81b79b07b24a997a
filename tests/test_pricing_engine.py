import random
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from pricing.catalog import BUNDLED_CATALOG, BUNDLED_DELIVERY_METHODS, Catalog
from pricing.engine import calculate_price_breakdown
from pricing.models import NailSet
from pricing.money import percent_of
from pricing.promotions import PromoRule

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

WELCOME10 = PromoRule(code="WELCOME10", type="percentage", value=Decimal("10"), id="promo-1")


def test_single_almond_set_with_free_pickup():
    breakdown = calculate_price_breakdown(
        [{"id": "set-1", "shapeId": "almond", "quantity": 2}],
        {"method": "pickup", "speed": "standard"},
    )

    assert [(item.id, item.amount_cents) for item in breakdown.line_items] == [("set-1", 9000)]
    assert breakdown.line_items[0].label == "Almond Set (2 sets)"
    assert breakdown.total_cents == 9000
    assert breakdown.warnings == ()


def test_rush_delivery_with_percentage_promo(almond_set):
    breakdown = calculate_price_breakdown(
        [almond_set],
        {"method": "delivery", "speed": "rush"},
        "welcome10",
        promotions=[WELCOME10],
        as_of=NOW,
    )

    assert breakdown.sets_subtotal_cents == 9000
    assert breakdown.fulfillment_fee_cents == 1500
    assert breakdown.discount_cents == 900
    assert breakdown.total_cents == 9600
    assert [item.id for item in breakdown.line_items] == ["set-almond", "fulfillment", "promo"]
    assert breakdown.line_items[-1].amount_cents == -900
    assert breakdown.promo.code == "WELCOME10"
    assert breakdown.estimated_completion_days == 1


def test_unknown_promo_code_is_a_warning_not_an_error(almond_set):
    breakdown = calculate_price_breakdown(
        [almond_set],
        {"method": "pickup", "speed": "standard"},
        "BOGUS",
        promotions=[WELCOME10],
    )

    assert breakdown.discount_cents == 0
    assert breakdown.total_cents == 9000
    assert breakdown.warning_codes() == ["invalid_promo_code"]
    assert breakdown.warnings[0].message == "Invalid promo code"


def test_shuffling_sets_does_not_change_total():
    sets = [
        NailSet(id=f"set-{index}", shape_id=shape, quantity=quantity, description="x")
        for index, (shape, quantity) in enumerate(
            [("almond", 1), ("coffin", 3), ("square", 2), ("stiletto", 1), ("oval", 4)]
        )
    ]
    expected = calculate_price_breakdown(sets, {"method": "shipping", "speed": "priority"}).total_cents

    rng = random.Random(7)
    for _ in range(10):
        shuffled = sets[:]
        rng.shuffle(shuffled)
        assert calculate_price_breakdown(shuffled, {"method": "shipping", "speed": "priority"}).total_cents == expected


def test_identical_input_gives_identical_output():
    sets = [{"shapeId": "coffin", "quantity": "2"}, {"shapeId": "oval"}]
    fulfillment = {"method": "delivery", "speed": "priority"}

    first = calculate_price_breakdown(sets, fulfillment, "WELCOME10", promotions=[WELCOME10], as_of=NOW)
    second = calculate_price_breakdown(sets, fulfillment, "WELCOME10", promotions=[WELCOME10], as_of=NOW)

    assert first == second
    assert first.to_dict() == second.to_dict()


@pytest.mark.parametrize("percent", ["0", "12.5", "33", "100"])
def test_percentage_discount_applies_to_sets_only(percent):
    rule = PromoRule(code="PCT", type="percentage", value=Decimal(percent))
    breakdown = calculate_price_breakdown(
        [{"shapeId": "almond", "quantity": 1}],
        {"method": "shipping", "speed": "standard"},
        "PCT",
        promotions=[rule],
        as_of=NOW,
    )

    assert breakdown.discount_cents == percent_of(4500, Decimal(percent))
    assert breakdown.total_cents == 4500 + 700 - breakdown.discount_cents
    assert breakdown.total_cents >= 0


def test_half_cent_discount_rounds_up():
    rule = PromoRule(code="PCT", type="percentage", value=Decimal("12.5"))
    breakdown = calculate_price_breakdown([{"shapeId": "almond"}], None, "PCT", promotions=[rule], as_of=NOW)

    # 12.5% от $45.00 = $5.625
    assert breakdown.discount_cents == 563


def test_fixed_discount_never_makes_total_negative():
    rule = PromoRule(code="BIG", type="fixed_amount", value=Decimal("500"))
    breakdown = calculate_price_breakdown(
        [{"shapeId": "square"}], {"method": "pickup", "speed": "standard"}, "BIG", promotions=[rule], as_of=NOW
    )

    assert breakdown.discount_cents == 4000
    assert breakdown.total_cents == 0


def test_free_shipping_covers_the_fee_only():
    rule = PromoRule(code="SHIPFREE", type="free_shipping")
    breakdown = calculate_price_breakdown(
        [{"shapeId": "square"}], {"method": "shipping", "speed": "rush"}, "SHIPFREE", promotions=[rule], as_of=NOW
    )

    assert breakdown.discount_cents == 2000
    assert breakdown.total_cents == 4000


def test_free_order_discounts_everything():
    rule = PromoRule(code="GIFT", type="free_order")
    breakdown = calculate_price_breakdown(
        [{"shapeId": "coffin", "quantity": 2}], {"method": "delivery", "speed": "priority"}, "GIFT",
        promotions=[rule], as_of=NOW,
    )

    assert breakdown.total_cents == 0
    assert breakdown.discount_cents == 10000


def test_unknown_shape_is_priced_at_zero_with_warning():
    breakdown = calculate_price_breakdown(
        [{"id": "a", "shapeId": "almond"}, {"id": "b", "shapeId": "heart", "name": "Valentine"}]
    )

    assert breakdown.total_cents == 4500
    assert breakdown.warning_codes() == ["unknown_shape"]
    assert breakdown.warnings[0].ref == "b"
    assert breakdown.line_items[1].label == "Valentine (1 set)"
    assert breakdown.line_items[1].amount_cents == 0


@pytest.mark.parametrize("quantity", [None, "abc", -3, 0, 2.7, True])
def test_malformed_quantity_defaults_silently(quantity):
    breakdown = calculate_price_breakdown([{"shapeId": "oval", "quantity": quantity}])

    if quantity == 2.7:
        assert breakdown.total_cents == 8000
    else:
        assert breakdown.total_cents == 4000
    assert breakdown.warnings == ()


def test_unknown_method_falls_back_to_pickup():
    breakdown = calculate_price_breakdown([{"shapeId": "oval"}], {"method": "teleport", "speed": "rush"})

    assert breakdown.method == "pickup"
    assert breakdown.fulfillment_fee_cents == 1000
    assert breakdown.warning_codes() == ["unknown_method"]


def test_missing_speed_uses_default_without_warning():
    breakdown = calculate_price_breakdown([{"shapeId": "oval"}], {"method": "shipping"})

    assert breakdown.speed == "standard"
    assert breakdown.fulfillment_fee_cents == 700
    assert breakdown.estimated_completion_days == 14
    assert breakdown.warnings == ()


def test_empty_input_prices_to_zero():
    breakdown = calculate_price_breakdown()

    assert breakdown.total_cents == 0
    assert breakdown.line_items == ()


@pytest.mark.parametrize(
    "overrides, code",
    [
        ({"active": False}, "promo_expired"),
        ({"end_date": NOW - timedelta(days=1)}, "promo_expired"),
        ({"start_date": NOW + timedelta(days=1)}, "promo_not_started"),
        ({"max_uses": 5, "uses_count": 5}, "promo_exhausted"),
        ({"per_user_limit": 1, "user_uses_count": 1}, "promo_user_limit"),
        ({"min_order_amount": Decimal("100")}, "promo_min_order"),
        ({"type": "buy_one_get_one"}, "invalid_promo_code"),
    ],
)
def test_ineligible_promo_gives_no_discount(overrides, code):
    fields = {"code": "SAVE", "type": "fixed_amount", "value": Decimal("5"), **overrides}
    rule = PromoRule(**fields)
    breakdown = calculate_price_breakdown(
        [{"shapeId": "almond", "quantity": 2}], None, "SAVE", promotions=[rule], as_of=NOW
    )

    assert breakdown.discount_cents == 0
    assert breakdown.total_cents == 9000
    assert breakdown.warning_codes() == [code]


def test_zero_max_uses_means_unlimited():
    rule = PromoRule(code="SAVE", type="fixed_amount", value=Decimal("5"), max_uses=0, uses_count=40)
    breakdown = calculate_price_breakdown([{"shapeId": "almond"}], None, "SAVE", promotions=[rule], as_of=NOW)

    assert breakdown.discount_cents == 500


def test_snapshot_dict_shape(almond_set):
    snapshot = calculate_price_breakdown(
        [almond_set], {"method": "delivery", "speed": "rush"}, "WELCOME10", promotions=[WELCOME10], as_of=NOW
    ).to_dict()

    assert snapshot["total"] == 96.0
    assert snapshot["totalCents"] == 9600
    assert snapshot["subtotal"] == 105.0
    assert snapshot["discount"] == 9.0
    assert snapshot["fulfillment"] == {"method": "delivery", "speed": "rush"}
    assert snapshot["promo"]["code"] == "WELCOME10"
    assert snapshot["lineItems"][1]["label"] == "Local Delivery • Rush"


def test_catalog_default_is_bundled():
    assert calculate_price_breakdown([{"shapeId": "stiletto"}]).total_cents == 5000
    assert BUNDLED_CATALOG.default_method.id == "pickup"


@pytest.mark.parametrize(
    "nail_set, fulfillment, codes",
    [
        ({"shapeId": ["almond"]}, None, ["unknown_shape"]),
        ({"shapeId": "oval", "quantity": float("inf")}, None, []),
        ({"shapeId": "oval"}, {"method": ["pickup"]}, ["unknown_method"]),
        ({"shapeId": "oval"}, {"method": "shipping", "speed": {"id": "rush"}}, ["unknown_speed"]),
    ],
)
def test_malformed_fields_become_warnings(nail_set, fulfillment, codes):
    breakdown = calculate_price_breakdown([nail_set], fulfillment)

    assert breakdown.warning_codes() == codes
    assert breakdown.total_cents >= 0


def test_set_subtotal_rounds_after_multiplying():
    catalog = Catalog.build(
        [{"id": "micro", "name": "Micro", "basePrice": "12.345"}], BUNDLED_DELIVERY_METHODS
    )

    breakdown = calculate_price_breakdown(
        [{"id": "set-1", "shapeId": "micro", "quantity": 2}], {"method": "pickup"}, catalog=catalog
    )

    assert breakdown.sets_subtotal_cents == 2469
    assert breakdown.line_items[0].amount_cents == 2469

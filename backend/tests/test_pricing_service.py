"""
Pricing rule evaluator tests.

The evaluator is pure, so these run without an app or database.
"""

import unittest
from datetime import datetime
from decimal import Decimal

from settlepos.services.pricing_service import (
    CartItem,
    CustomerContext,
    Rule,
    RuleKind,
    RuleScope,
    Selector,
    distribute_amount,
    evaluate_pricing,
)

# A Wednesday
NOW = datetime(2026, 3, 4, 10, 0, 0)


def item(key, product_id, qty, price, **kwargs):
    return CartItem(id=key, product_id=product_id, qty=Decimal(str(qty)), unit_price=Decimal(str(price)), **kwargs)


class EvaluatePricingTests(unittest.TestCase):
    def test_no_rules_returns_plain_subtotal(self):
        result = evaluate_pricing([item(0, 1, 2, "50.00"), item(1, 2, 1, "20.00")], [], now=NOW)
        self.assertEqual(result.subtotal, Decimal("120.00"))
        self.assertEqual(result.discount_total, Decimal("0.00"))
        self.assertEqual(result.total, Decimal("120.00"))
        self.assertEqual(result.discounts, ())

    def test_item_percent_off_on_selected_product(self):
        rule = Rule(id=1, name="10% soap", kind=RuleKind.PERCENT_OFF, percent=Decimal("10"),
                    selector=Selector(product_ids=frozenset({1})))
        result = evaluate_pricing([item(0, 1, 2, "50.00"), item(1, 2, 1, "20.00")], [rule], now=NOW)
        self.assertEqual(result.discount_total, Decimal("10.00"))
        self.assertEqual(result.item(0).line_total, Decimal("90.00"))
        self.assertEqual(result.item(1).line_total, Decimal("20.00"))
        self.assertEqual(result.total, Decimal("110.00"))

    def test_amount_off_never_exceeds_matched_lines(self):
        rule = Rule(id=1, name="Less 500", kind=RuleKind.AMOUNT_OFF, amount=Decimal("500"))
        result = evaluate_pricing([item(0, 1, 1, "30.00"), item(1, 2, 1, "70.00")], [rule], now=NOW)
        self.assertEqual(result.discount_total, Decimal("100.00"))
        self.assertEqual(result.total, Decimal("0.00"))

    def test_price_override_only_lowers(self):
        rule = Rule(id=1, name="Promo price", kind=RuleKind.PRICE_OVERRIDE, override_price=Decimal("40.00"))
        result = evaluate_pricing([item(0, 1, 3, "50.00"), item(1, 2, 1, "35.00")], [rule], now=NOW)
        self.assertEqual(result.item(0).line_total, Decimal("120.00"))
        self.assertEqual(result.item(1).line_total, Decimal("35.00"))

    def test_buy_x_get_y_same_product(self):
        rule = Rule(id=1, name="Buy 2 take 1", kind=RuleKind.BUY_X_GET_Y, buy_qty=2, get_qty=1,
                    selector=Selector(product_ids=frozenset({1})))
        result = evaluate_pricing([item(0, 1, 4, "25.00")], [rule], now=NOW)
        # two sets of two -> two bars free
        self.assertEqual(result.discount_total, Decimal("50.00"))
        self.assertEqual(result.item(0).line_total, Decimal("50.00"))

    def test_buy_x_get_y_max_applications_caps_whole_order(self):
        rule = Rule(id=1, name="Buy 1 take 1", kind=RuleKind.BUY_X_GET_Y, buy_qty=1, get_qty=1,
                    max_applications=2)
        result = evaluate_pricing([item(0, 1, 3, "10.00"), item(1, 2, 3, "10.00")], [rule], now=NOW)
        self.assertEqual(result.discount_total, Decimal("20.00"))

    def test_buy_x_get_y_different_product_adds_free_line(self):
        rule = Rule(id=1, name="Feed + free scoop", kind=RuleKind.BUY_X_GET_Y, buy_qty=1, get_qty=1,
                    get_product_id=9, get_product_name="Scoop", get_unit_price=Decimal("15.00"),
                    selector=Selector(product_ids=frozenset({1})))
        result = evaluate_pricing([item(0, 1, 2, "300.00")], [rule], now=NOW)
        self.assertEqual(len(result.free_items), 1)
        free = result.free_items[0]
        self.assertEqual(free.product_id, 9)
        self.assertEqual(free.qty, 2)
        self.assertEqual(free.line_total, Decimal("0.00"))
        self.assertEqual(result.total, Decimal("600.00"))

    def test_order_scope_percent_spreads_exactly(self):
        rule = Rule(id=1, name="3% off all", kind=RuleKind.PERCENT_OFF, scope=RuleScope.ORDER,
                    percent=Decimal("3"))
        items = [item(0, 1, 1, "33.33"), item(1, 2, 1, "33.33"), item(2, 3, 1, "33.34")]
        result = evaluate_pricing(items, [rule], now=NOW)
        self.assertEqual(result.discount_total, Decimal("3.00"))
        shares = sum((i.discount for i in result.items), Decimal("0"))
        self.assertEqual(shares, result.discount_total)

    def test_rules_run_by_priority_and_non_stackable_stops(self):
        late = Rule(id=1, name="late", kind=RuleKind.AMOUNT_OFF, amount=Decimal("5"), priority=20)
        early = Rule(id=2, name="early", kind=RuleKind.PERCENT_OFF, percent=Decimal("10"), priority=10,
                     stackable=False)
        result = evaluate_pricing([item(0, 1, 1, "100.00")], [late, early], now=NOW)
        self.assertEqual([d.rule_id for d in result.discounts], [2])
        self.assertEqual(result.total, Decimal("90.00"))

    def test_stacked_rules_apply_on_reduced_net(self):
        first = Rule(id=1, name="10%", kind=RuleKind.PERCENT_OFF, percent=Decimal("10"), priority=1)
        second = Rule(id=2, name="10% again", kind=RuleKind.PERCENT_OFF, percent=Decimal("10"), priority=2)
        result = evaluate_pricing([item(0, 1, 1, "100.00")], [first, second], now=NOW)
        self.assertEqual(result.total, Decimal("81.00"))


class EligibilityTests(unittest.TestCase):
    def setUp(self):
        self.cart = [item(0, 1, 1, "100.00", tags=frozenset({"toiletries"}))]

    def _discount(self, rule, customer=None, now=NOW):
        return evaluate_pricing(self.cart, [rule], customer, now).discount_total

    def test_disabled_rule_is_ignored(self):
        rule = Rule(id=1, name="off", kind=RuleKind.PERCENT_OFF, percent=Decimal("10"), enabled=False)
        self.assertEqual(self._discount(rule), Decimal("0.00"))

    def test_validity_window(self):
        rule = Rule(id=1, name="march", kind=RuleKind.PERCENT_OFF, percent=Decimal("10"),
                    valid_from=datetime(2026, 3, 1), valid_until=datetime(2026, 3, 4, 10, 0, 0))
        # valid_until is exclusive
        self.assertEqual(self._discount(rule), Decimal("0.00"))
        self.assertEqual(self._discount(rule, now=datetime(2026, 3, 2)), Decimal("10.00"))

    def test_days_of_week(self):
        rule = Rule(id=1, name="wednesday", kind=RuleKind.PERCENT_OFF, percent=Decimal("10"),
                    days_of_week=frozenset({2}))
        self.assertEqual(self._discount(rule), Decimal("10.00"))
        self.assertEqual(self._discount(rule, now=datetime(2026, 3, 5)), Decimal("0.00"))

    def test_min_subtotal(self):
        rule = Rule(id=1, name="big cart", kind=RuleKind.AMOUNT_OFF, amount=Decimal("5"),
                    min_subtotal=Decimal("150"))
        self.assertEqual(self._discount(rule), Decimal("0.00"))

    def test_customer_list(self):
        rule = Rule(id=1, name="vip", kind=RuleKind.PERCENT_OFF, percent=Decimal("5"),
                    customer_ids=frozenset({7}))
        self.assertEqual(self._discount(rule), Decimal("0.00"))
        self.assertEqual(self._discount(rule, CustomerContext(id=7)), Decimal("5.00"))

    def test_any_tags_matches_customer_or_item_tags(self):
        suki = Rule(id=1, name="suki", kind=RuleKind.PERCENT_OFF, percent=Decimal("5"),
                    any_tags=frozenset({"suki"}))
        self.assertEqual(self._discount(suki), Decimal("0.00"))
        self.assertEqual(self._discount(suki, CustomerContext(id=1, tags=frozenset({"suki"}))), Decimal("5.00"))

        toiletries = Rule(id=2, name="toiletries", kind=RuleKind.PERCENT_OFF, percent=Decimal("5"),
                          any_tags=frozenset({"toiletries"}))
        self.assertEqual(self._discount(toiletries), Decimal("5.00"))


class RoundingClosureTests(unittest.TestCase):
    def test_distribute_amount_adds_up(self):
        weights = [("a", Decimal("10.00")), ("b", Decimal("10.00")), ("c", Decimal("10.00"))]
        shares = distribute_amount(Decimal("10.00"), weights)
        self.assertEqual(sum((s.amount for s in shares), Decimal("0")), Decimal("10.00"))
        self.assertEqual(shares[-1].amount, Decimal("3.34"))

    def test_small_amount_over_many_lines_never_goes_negative(self):
        weights = [(i, Decimal("1.00")) for i in range(7)]
        shares = distribute_amount(Decimal("0.05"), weights)
        self.assertEqual(sum((s.amount for s in shares), Decimal("0")), Decimal("0.05"))
        self.assertTrue(all(Decimal("0") < s.amount <= Decimal("1.00") for s in shares))
        self.assertEqual(len(shares), 5)

    def test_leftover_cents_follow_largest_remainder(self):
        weights = [("a", Decimal("1.00")), ("b", Decimal("2.00")), ("c", Decimal("3.00"))]
        shares = {s.item_id: s.amount for s in distribute_amount(Decimal("1.00"), weights)}
        # exact 0.1666, 0.3333, 0.5: the one spare cent goes to "a"
        self.assertEqual(shares, {"a": Decimal("0.17"), "b": Decimal("0.33"), "c": Decimal("0.50")})

    def test_order_amount_off_keeps_every_line_discounted(self):
        rule = Rule(id=1, name="Less 0.05", kind=RuleKind.AMOUNT_OFF, scope=RuleScope.ORDER, amount=Decimal("0.05"))
        items = [item(i, i + 1, 1, "1.00") for i in range(7)]
        result = evaluate_pricing(items, [rule], now=NOW)
        self.assertEqual(result.total, Decimal("6.95"))
        for adjusted in result.items:
            self.assertGreaterEqual(adjusted.discount, Decimal("0"))
            self.assertLessEqual(adjusted.line_total, Decimal("1.00"))

    def test_total_equals_sum_of_line_totals(self):
        rules = [
            Rule(id=1, name="7%", kind=RuleKind.PERCENT_OFF, percent=Decimal("7"), priority=1),
            Rule(id=2, name="Less 3.33", kind=RuleKind.AMOUNT_OFF, scope=RuleScope.ORDER,
                 amount=Decimal("3.33"), priority=2),
        ]
        items = [item(i, i + 1, "1.5", "12.99") for i in range(7)]
        result = evaluate_pricing(items, rules, now=NOW)
        line_sum = sum((i.line_total for i in result.items), Decimal("0"))
        self.assertEqual(line_sum, result.total)
        self.assertEqual(result.subtotal - result.discount_total, result.total)
        for adjusted in result.items:
            self.assertEqual(adjusted.line_total, adjusted.line_total.quantize(Decimal("0.01")))
            self.assertGreaterEqual(adjusted.line_total, 0)

    def test_input_cart_is_not_mutated(self):
        cart = [item(0, 1, 2, "50.00")]
        rule = Rule(id=1, name="10%", kind=RuleKind.PERCENT_OFF, percent=Decimal("10"))
        evaluate_pricing(cart, [rule], now=NOW)
        self.assertEqual(cart[0].unit_price, Decimal("50.00"))


if __name__ == "__main__":
    unittest.main()

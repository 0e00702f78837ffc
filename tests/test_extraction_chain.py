import unittest

from app.config.settings import Settings
from app.errors import NoQuoteFoundError
from app.services.extraction import (
    METHOD_GLOBAL_STATE,
    METHOD_TRADES_TABLE,
    METHOD_TRADES_TEXT,
    PriceBand,
    TradesTableStrategy,
    TradesTextStrategy,
    build_extraction_chain,
    parse_positive_price,
)
from fake_browser import FakePage

LABEL = "Последние сделки"


def _chain():
    return build_extraction_chain(Settings(), clock=lambda: 1700000000.0)


class ParsePriceTest(unittest.TestCase):
    def test_parse_positive_price(self):
        self.assertEqual(parse_positive_price("87.45"), 87.45)
        self.assertEqual(parse_positive_price(91), 91.0)
        self.assertEqual(parse_positive_price("87.45 USDT"), 87.45)
        self.assertEqual(parse_positive_price(" 91.5abc"), 91.5)
        self.assertEqual(parse_positive_price("1.2e2"), 120.0)
        for raw in (None, "", "abc", "0", "-3.2", "NaN", "Infinity", "1e999", "USDT 87.45", True):
            with self.subTest(raw=raw):
                self.assertIsNone(parse_positive_price(raw))


class HeuristicTest(unittest.TestCase):
    def test_table_picks_first_in_band_cell_of_nearest_container(self):
        strategy = TradesTableStrategy(label=LABEL, band=PriceBand(50, 150))
        candidates = [
            ["12:01:03", "1500.00", "92.10", "85.00"],
            ["99.99"],
        ]

        self.assertEqual(strategy.pick_price(candidates), 92.10)

    def test_table_falls_through_to_outer_container(self):
        strategy = TradesTableStrategy(label=LABEL, band=PriceBand(50, 150))

        self.assertEqual(strategy.pick_price([["12:01", "10.5"], ["", "88.3"]]), 88.3)
        self.assertIsNone(strategy.pick_price([["abc"], []]))

    def test_text_checks_only_first_number_after_label(self):
        strategy = TradesTextStrategy(label=LABEL, band=PriceBand(50, 150))

        self.assertEqual(strategy.pick_price(f"Header 99.00\n{LABEL}\nPrice 86.7 Amount 12.00"), 86.7)
        self.assertIsNone(strategy.pick_price(f"{LABEL}\n12.50 then 86.70"))
        self.assertIsNone(strategy.pick_price("no label here 86.70"))


class ExtractionChainTest(unittest.IsolatedAsyncioTestCase):
    async def test_primary_state_field_wins(self):
        page = FakePage(
            gon_last="87.45",
            table_candidates=[["92.10"]],
            body_text=f"{LABEL} 93.00",
        )

        quote = await _chain().extract(page)

        self.assertEqual(quote.price_text, "87.45")
        self.assertEqual(quote.method, METHOD_GLOBAL_STATE)
        self.assertEqual(quote.observed_at, 1700000000.0)
        self.assertEqual(page.evaluated, ["read"])

    async def test_table_used_when_state_absent(self):
        page = FakePage(
            gon_last=None,
            table_candidates=[["12:00:01", "0.5", "92.10"]],
            body_text=f"{LABEL} 93.00",
        )

        quote = await _chain().extract(page)

        self.assertEqual(quote.price_text, "92.10")
        self.assertEqual(quote.method, METHOD_TRADES_TABLE)
        self.assertEqual(page.function_waits, [45000.0])
        # grace period after the state wait timed out, then a diagnostic probe
        self.assertEqual(page.waits_ms, [10000.0])
        self.assertEqual(page.evaluated, ["probe", "read", "table"])

    async def test_only_free_text_yields_tertiary_method(self):
        page = FakePage(gon_last=None, table_candidates=None, body_text=f"Рынок\n{LABEL}\n91.37 1200.00")

        quote = await _chain().extract(page)

        self.assertEqual(quote.price_text, "91.37")
        self.assertEqual(quote.method, METHOD_TRADES_TEXT)

    async def test_unusable_state_value_falls_through(self):
        page = FakePage(gon_last="0", body_text=f"{LABEL} 77.7")

        quote = await _chain().extract(page)

        self.assertEqual(quote.method, METHOD_TRADES_TEXT)

    async def test_strategy_error_is_treated_as_not_found(self):
        page = FakePage(
            gon_last="87.45",
            body_text=f"{LABEL} 90.01",
            evaluate_errors={"read": RuntimeError("Execution context was destroyed")},
        )

        quote = await _chain().extract(page)

        self.assertEqual(quote.price_text, "90.01")
        self.assertEqual(quote.method, METHOD_TRADES_TEXT)

    async def test_out_of_band_numbers_are_ignored(self):
        page = FakePage(gon_last=None, table_candidates=[["12.50", "999.99"]], body_text=f"{LABEL} 20.00")

        with self.assertRaises(NoQuoteFoundError):
            await _chain().extract(page)

    async def test_exhausted_chain_raises(self):
        with self.assertRaises(NoQuoteFoundError):
            await _chain().extract(FakePage())


if __name__ == "__main__":
    unittest.main()

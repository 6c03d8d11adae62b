import pytest

from expert_chat.services import storage
from expert_chat.services.market_prices import PriceStore, format_price_report, summarize_prices
from expert_chat.services.reference_data import DEFAULT_COORDINATES
from expert_chat.services.schemes import SchemeStore


def test_price_query_is_case_insensitive_and_newest_first(db_path):
    rows = PriceStore(db_path).query("WHE")
    assert [r["mandi_name"] for r in rows] == ["Indore", "Khanna", "Dewas"]


def test_price_query_filters(db_path):
    store = PriceStore(db_path)
    assert [r["mandi_name"] for r in store.query("Wheat", state="punjab")] == ["Khanna"]
    assert [r["commodity"] for r in store.query("soy", mandi="indore")] == ["Soybean"]


def test_price_query_is_capped(tmp_path):
    path = str(tmp_path / "many.db")
    storage.init_db(path)
    storage.insert_prices(path, [
        {"commodity": "Onion", "mandi_name": f"Mandi {i}", "mandi_state": "Maharashtra",
         "modal_price": 1500 + i, "price_date": f"2026-10-{i + 1:02d}"}
        for i in range(12)
    ])
    rows = PriceStore(path).query("Onion")
    assert len(rows) == 10
    assert rows[0]["mandi_name"] == "Mandi 11"


def test_like_wildcards_are_literal(db_path):
    assert PriceStore(db_path).query("%") == []
    assert PriceStore(db_path).query("_heat") == []


@pytest.mark.asyncio
async def test_async_query(db_path):
    rows = await PriceStore(db_path).aquery("Soybean")
    assert rows[0]["modal_price"] == 4550


def test_summary_treats_missing_modal_as_zero():
    summary = summarize_prices([
        {"modal_price": 3000, "price_date": "2026-10-10"},
        {"modal_price": None, "price_date": "2026-10-12"},
    ])
    assert summary == {"average_modal_price": "₹1500/quintal", "mandis_checked": 2,
                       "date_range": "2026-10-10 to 2026-10-12"}


def test_report_uses_row_unit():
    report = format_price_report("Tomato", [
        {"mandi_name": "Azadpur", "mandi_state": "Delhi", "modal_price": 12.5, "price_unit": "kg",
         "price_date": "2026-10-16"},
    ])
    assert report["prices"][0]["modal_price"] == "₹12.5/kg"
    assert report["prices"][0]["min_price"] is None


def test_no_price_report_mentions_state():
    report = format_price_report("Wheat", [], state="Kerala")
    assert report["message"].startswith("No recent price data found for Wheat in Kerala.")


def test_inactive_schemes_are_hidden(db_path):
    names = [s["scheme_name"] for s in SchemeStore(db_path).search("pilot")]
    assert names == []


def test_scheme_crop_filter(db_path):
    store = SchemeStore(db_path)
    assert [s["scheme_name"] for s in store.search("payment", crop="soybean")] == ["Bhavantar Bhugtan Yojana"]
    assert store.search("payment", crop="cotton") == []


def test_seed_only_fills_empty_tables(tmp_path):
    path = str(tmp_path / "seed.db")
    storage.init_db(path)

    first = storage.seed_sample_data(path)
    assert first["market_prices"] > 0
    assert first["govt_schemes"] > 0
    assert storage.seed_sample_data(path) == {"market_prices": 0, "govt_schemes": 0}

    indore = PriceStore(path).query("Wheat", mandi="Indore")
    assert indore[0]["modal_price"] == 2450


def test_gazetteer_lookup(reference):
    assert reference.resolve_coordinates("Bhopal, MP") == (23.2599, 77.4126)
    assert reference.resolve_coordinates("") == DEFAULT_COORDINATES
    with pytest.raises(TypeError):
        reference.crop_knowledge["wheat"]["sowing"] = "edited"

import pytest

from concierge.adapters import create_quote, find_service, get_service_price
from concierge.adapters.schemas import ServiceInfo
from concierge.errors import AdapterError

CATALOGUE = [
    ServiceInfo(name="Oil change", price=300, duration_minutes=60),
    ServiceInfo(name="Synthetic oil change", price=650, duration_minutes=60),
    ServiceInfo(name="Brake inspection", price=450, duration_minutes=90),
]


def test_quote_for_oil_change_applies_sixteen_percent_tax():
    quote = create_quote(CATALOGUE, "Ana", ["Oil change"], 0.16)

    assert quote.subtotal == 300
    assert quote.tax == 48
    assert quote.total == 348
    assert [line.service_name for line in quote.services] == ["Oil change"]


def test_quote_rounds_to_cents_and_reports_unknown_services():
    services = [ServiceInfo(name="Alignment", price=333.33)]
    quote = create_quote(services, "Luis", ["alignment", "Turbo rebuild"], 0.16, vehicle="Jetta 2015")

    assert quote.subtotal == 333.33
    assert quote.tax == 53.33
    assert quote.total == 386.66
    assert quote.not_found == ["Turbo rebuild"]
    assert quote.as_tool_data()["vehicle"] == "Jetta 2015"


def test_quote_without_known_services_is_rejected():
    with pytest.raises(AdapterError):
        create_quote(CATALOGUE, "Ana", ["Teleportation"], 0.16)
    with pytest.raises(AdapterError):
        create_quote(CATALOGUE, "Ana", [], 0.16)


def test_exact_name_wins_over_earlier_substring_match():
    catalogue = [CATALOGUE[1], CATALOGUE[0]]
    assert find_service(catalogue, "oil change").name == "Oil change"


def test_substring_match_takes_first_catalogue_entry():
    assert find_service(CATALOGUE, "oil").name == "Oil change"
    assert find_service(CATALOGUE, "brake").name == "Brake inspection"
    assert find_service(CATALOGUE, "   ") is None


def test_get_service_price_unknown_service():
    with pytest.raises(AdapterError, match="not found"):
        get_service_price(CATALOGUE, "Paint job")

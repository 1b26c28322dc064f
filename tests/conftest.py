import pytest
from decimal import Decimal

from exchange.paper import PaperTradingApi, forex_spec
from trading.session import SymbolLocks


@pytest.fixture
def spec():
    return forex_spec("EURUSD")


@pytest.fixture
def paper(spec):
    """Paper terminal at 1.10000 / 1.10010 with a flat market unless fed quotes."""
    api = PaperTradingApi(balance=Decimal("10000"))
    api.add_symbol(spec, "1.10000", "1.10010")
    return api


@pytest.fixture
def locks():
    return SymbolLocks()

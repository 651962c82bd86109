import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from _helper import FakeCatalog, InMemoryOrderStore

from marketplace.models import Caller
from marketplace.order_state import Role
from marketplace.orders import OrderLifecycleManager

FARMER_ID = "farmer-1"
OTHER_FARMER_ID = "farmer-2"
BUYER_ID = "buyer-1"
OTHER_BUYER_ID = "buyer-2"


@pytest.fixture
def catalog() -> FakeCatalog:
    c = FakeCatalog()
    c.add("prod-tomato", FARMER_ID, "50.00")
    return c


@pytest.fixture
def store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def manager(store, catalog) -> OrderLifecycleManager:
    return OrderLifecycleManager(store, catalog)


@pytest.fixture
def buyer() -> Caller:
    return Caller(user_id=BUYER_ID, role=Role.BUYER)


@pytest.fixture
def other_buyer() -> Caller:
    return Caller(user_id=OTHER_BUYER_ID, role=Role.BUYER)


@pytest.fixture
def farmer() -> Caller:
    return Caller(user_id=FARMER_ID, role=Role.FARMER)


@pytest.fixture
def other_farmer() -> Caller:
    return Caller(user_id=OTHER_FARMER_ID, role=Role.FARMER)

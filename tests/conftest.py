"""
Test fixtures for the collection explorer tests.

Provides database session fixtures and marketplace data builders.
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Generator, Optional
from sqlmodel import Session, SQLModel, create_engine
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from app.models import (
    Auction,
    Collection,
    Currency,
    CurrencyKind,
    Item,
    ItemAttribute,
    ItemStatus,
    Listing,
    ListingStatus,
    RarityRecord,
    Sale,
)


# Use in-memory SQLite for unit tests (fast, isolated)
TEST_DATABASE_URL = "sqlite:///:memory:"

CONTRACT = "0xAbC0000000000000000000000000000000000001"
ETH = 10**18


@pytest.fixture(autouse=True)
def clear_response_cache():
    """Cached top/facets responses and currency snapshots must not leak between tests."""
    from app.core.response_cache import clear_cache

    clear_cache()
    yield
    clear_cache()


@pytest.fixture(scope="function")
def test_engine():
    """Create a test database engine with in-memory SQLite."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def test_session(test_engine) -> Generator[Session, None, None]:
    """Provide a test database session."""
    with Session(test_engine) as session:
        yield session


@pytest.fixture(scope="function")
def client(test_engine):
    """Create test client with test database."""
    from app.db import get_session
    from app.main import app

    def override_get_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    client = TestClient(app)
    yield client

    app.dependency_overrides.clear()


# ============== BUILDERS ==============


def utc(**delta) -> datetime:
    return datetime.now(timezone.utc) + timedelta(**delta)


def make_collection(session: Session, contract: str = CONTRACT, name: str = "Comrades", **kwargs) -> Collection:
    collection = Collection(contract=contract, name=name, **kwargs)
    session.add(collection)
    session.commit()
    session.refresh(collection)
    return collection


def make_item(
    session: Session,
    collection: Collection,
    token_id: str,
    name: Optional[str] = None,
    status: ItemStatus = ItemStatus.SUCCESS,
    attributes: Optional[list[tuple[str, str]]] = None,
    created_at: Optional[datetime] = None,
    item_id: Optional[str] = None,
) -> Item:
    item = Item(
        collection_id=collection.id,
        contract=collection.contract,
        token_id=token_id,
        name=name or f"{collection.name} #{token_id}",
        image_url=f"ipfs://cid/{token_id}.png",
        status=status,
    )
    if created_at is not None:
        item.created_at = created_at
    if item_id is not None:
        item.id = item_id
    session.add(item)
    session.commit()
    for position, (trait_type, value) in enumerate(attributes or []):
        session.add(ItemAttribute(item_id=item.id, position=position, trait_type=trait_type, value=value))
    session.commit()
    session.refresh(item)
    return item


def make_listing(
    session: Session,
    item: Item,
    price: int,
    currency_id: Optional[str] = None,
    status: ListingStatus = ListingStatus.ACTIVE,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
) -> Listing:
    listing = Listing(
        item_id=item.id,
        price=Decimal(price),
        currency_id=currency_id,
        status=status,
        start_time=start_time or utc(hours=-1),
        end_time=end_time,
    )
    session.add(listing)
    session.commit()
    return listing


def make_sale(
    session: Session,
    item: Item,
    price: int,
    currency_id: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> Sale:
    sale = Sale(item_id=item.id, price=Decimal(price), currency_id=currency_id, timestamp=timestamp or utc(hours=-1))
    session.add(sale)
    session.commit()
    return sale


def make_auction(session: Session, item: Item, **kwargs) -> Auction:
    auction = Auction(
        item_id=item.id,
        start_time=kwargs.pop("start_time", utc(hours=-1)),
        end_time=kwargs.pop("end_time", utc(hours=1)),
        **kwargs,
    )
    session.add(auction)
    session.commit()
    return auction


def make_rarity(session: Session, item: Item, rank: Optional[int], score: float = 1.0) -> RarityRecord:
    record = RarityRecord(contract=item.contract.lower(), token_id=item.token_id, rank=rank, score=score)
    session.add(record)
    session.commit()
    return record


# ============== FIXTURES ==============


@pytest.fixture
def usdx(test_session: Session) -> Currency:
    """An active 6-decimal token."""
    currency = Currency(id="usdx", symbol="USDX", decimals=6, kind=CurrencyKind.ERC20, token_address="0xusdx")
    test_session.add(currency)
    test_session.commit()
    return currency


@pytest.fixture
def collection(test_session: Session) -> Collection:
    return make_collection(test_session)


@pytest.fixture
def market(test_session: Session, collection: Collection, usdx: Currency) -> dict:
    """
    A: listed for 10 native, B: listed for 5 USDX, C: unlisted.
    Items are created in A, B, C order.
    """
    a = make_item(test_session, collection, "1", attributes=[("Background", "Blue"), ("Hat", "Cap")])
    b = make_item(test_session, collection, "2", attributes=[("Background", "Red"), ("Hat", "Cap")])
    c = make_item(test_session, collection, "3", attributes=[("Background", "Blue")])
    make_listing(test_session, a, 10 * ETH)
    make_listing(test_session, b, 5_000000, currency_id=usdx.id)
    return {"A": a, "B": b, "C": c, "collection": collection, "usdx": usdx}

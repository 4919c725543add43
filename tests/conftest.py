"""
Pytest configuration and shared fixtures for the booking engine tests.
"""

import os
from datetime import datetime, time, timedelta
from decimal import Decimal

import jwt
import pytest
from flask import Flask

os.environ["TESTING"] = "True"
os.environ["FLASK_ENV"] = "testing"

from main import create_app  # noqa: E402
from app.extensions import db as database  # noqa: E402
from app.models import (  # noqa: E402
    AddOnService,
    Customer,
    PromoCode,
    Vendor,
    VendorHours,
    VendorService,
)

TEST_SECRET = "test-secret-key-for-testing-only"


def is_safe_test_database(db_uri: str) -> bool:
    """Refuse to run against anything that looks like a shared database."""
    if not db_uri:
        return False
    dangerous_patterns = ["railway", "amazonaws.com", "azure.com", "prod", "live"]
    lowered = db_uri.lower()
    if any(pattern in lowered for pattern in dangerous_patterns):
        print(f" DANGER: Database URL appears to be production: {db_uri}")
        return False
    return lowered.startswith("sqlite") or "test" in lowered


@pytest.fixture(scope="session")
def app():
    """Create and configure a test app instance."""
    test_db_url = os.environ.get("DATABASE_TEST_URL", "sqlite://")
    if not is_safe_test_database(test_db_url):
        pytest.exit("Tests aborted to prevent data loss")

    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": test_db_url,
            "SECRET_KEY": TEST_SECRET,
            "ENABLE_SCHEDULER": False,
        }
    )
    yield app


@pytest.fixture
def db(app: Flask):
    """Fresh schema for every test."""
    from app.models import Base

    with app.app_context():
        Base.metadata.drop_all(bind=database.engine)
        Base.metadata.create_all(bind=database.engine)

        yield database

        database.session.remove()
        Base.metadata.drop_all(bind=database.engine)


@pytest.fixture
def db_session(db):
    return db.session


@pytest.fixture
def client(app, db):
    return app.test_client()


@pytest.fixture
def make_token():
    def _make(sub, role="CUSTOMER", email=None, name=None, expires_in=3600):
        payload = {
            "sub": sub,
            "role": role,
            "email": email or f"{sub}@example.com",
            "name": name or sub,
            "exp": datetime.utcnow() + timedelta(seconds=expires_in),
        }
        return jwt.encode(payload, TEST_SECRET, algorithm="HS256")

    return _make


@pytest.fixture
def auth_headers(make_token):
    def _headers(sub, role="CUSTOMER", **kwargs):
        return {"Authorization": f"Bearer {make_token(sub, role, **kwargs)}"}

    return _headers


@pytest.fixture
def make_customer(db_session):
    def _make(auth_uid="customer_uid_1", first_time=True):
        customer = Customer(
            auth_uid=auth_uid,
            email=f"{auth_uid}@example.com",
            display_name="Test Customer",
            is_first_time_user=first_time,
        )
        db_session.add(customer)
        db_session.commit()
        return customer

    return _make


@pytest.fixture
def sample_customer(make_customer):
    return make_customer()


@pytest.fixture
def sample_vendor(db_session):
    """Open 09:00-18:00 with a 13:00-14:00 break, closed on Sundays."""
    vendor = Vendor(
        auth_uid="vendor_uid_1",
        business_name="Lotus Day Spa",
        commission_rate=Decimal("0.22"),
        total_earnings=Decimal("0.00"),
        pending_payouts=Decimal("0.00"),
    )
    db_session.add(vendor)
    db_session.flush()

    for weekday in range(7):
        db_session.add(
            VendorHours(
                vendor_id=vendor.id,
                weekday=weekday,
                is_open=weekday != 0,
                open_time=time(9, 0) if weekday else None,
                close_time=time(18, 0) if weekday else None,
                break_start=time(13, 0) if weekday else None,
                break_end=time(14, 0) if weekday else None,
            )
        )
    db_session.commit()
    return vendor


@pytest.fixture
def sample_service(db_session, sample_vendor):
    """Signature massage, 2500 for 60 minutes, with two add-ons."""
    service = VendorService(
        vendor_id=sample_vendor.id,
        name="Signature Massage",
        price=Decimal("2500.00"),
        duration=60,
        category="massage",
        is_active=True,
    )
    db_session.add(service)
    db_session.flush()
    db_session.add_all(
        [
            AddOnService(service_id=service.id, name="Hot Stones", price=Decimal("300.00"), duration=30),
            AddOnService(service_id=service.id, name="Aromatherapy", price=Decimal("200.00"), duration=0),
        ]
    )
    db_session.commit()
    return service


@pytest.fixture
def cheap_service(db_session, sample_vendor):
    service = VendorService(
        vendor_id=sample_vendor.id,
        name="Express Facial",
        price=Decimal("1000.00"),
        duration=30,
        category="facial",
        is_active=True,
    )
    db_session.add(service)
    db_session.commit()
    return service


@pytest.fixture
def save50_promo(db_session):
    promo = PromoCode(
        code="SAVE50",
        type="fixed",
        value=Decimal("50.00"),
        min_order_value=Decimal("300.00"),
        usage_limit=100,
        used_count=0,
        user_limit=1,
        is_active=True,
        start_date=datetime(2020, 1, 1),
        end_date=datetime(2100, 1, 1),
        applicable_services=[],
        applicable_vendors=[],
        created_by="admin",
    )
    db_session.add(promo)
    db_session.commit()
    return promo

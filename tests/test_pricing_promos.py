from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from app.errors import ConflictError, ValidationError
from app.models import PromoCode, PromoUsage
from app.services import loyalty_service, pricing_service, promo_service

NOW = datetime(2030, 1, 1, 9, 0)


def _promo(db_session, **overrides):
    fields = dict(
        code="TEST10",
        type="percentage",
        value=Decimal("10.00"),
        min_order_value=Decimal("0.00"),
        usage_limit=100,
        used_count=0,
        user_limit=1,
        is_active=True,
        start_date=NOW - timedelta(days=1),
        end_date=NOW + timedelta(days=30),
        applicable_services=[],
        applicable_vendors=[],
    )
    fields.update(overrides)
    promo = PromoCode(**fields)
    db_session.add(promo)
    db_session.commit()
    return promo


@pytest.mark.pricing
class TestComposePrice:
    def test_base_only(self, db, sample_service):
        breakdown = pricing_service.compose_price(sample_service)

        assert breakdown.base_price == Decimal("2500.00")
        assert breakdown.add_on_price == Decimal("0.00")
        assert breakdown.subtotal == Decimal("2500.00")
        assert breakdown.duration == 60

    def test_add_ons_sum_price_and_duration(self, db, sample_service):
        ids = [a.id for a in sample_service.add_on_service]
        breakdown = pricing_service.compose_price(sample_service, ids)

        assert breakdown.add_on_price == Decimal("500.00")
        assert breakdown.subtotal == Decimal("3000.00")
        assert breakdown.duration == 90

    def test_duplicate_add_ons_count_once(self, db, sample_service):
        hot_stones = next(a for a in sample_service.add_on_service if a.name == "Hot Stones")
        breakdown = pricing_service.compose_price(sample_service, [hot_stones.id, hot_stones.id])

        assert breakdown.add_on_ids == [hot_stones.id]
        assert breakdown.add_on_price == Decimal("300.00")

    def test_unknown_add_on_rejected(self, db, sample_service):
        with pytest.raises(ValidationError):
            pricing_service.compose_price(sample_service, [9999])


@pytest.mark.pricing
class TestPromoValidation:
    def test_save50_fixed_discount(self, db, sample_customer, sample_vendor, sample_service, save50_promo):
        result = promo_service.validate_and_apply_promo_code(
            "save50", sample_customer.id, Decimal("2500"), [sample_service.id], sample_vendor.id, now=NOW
        )

        assert result.is_valid is True
        assert result.discount == Decimal("50.00")
        assert result.promo_code_id == save50_promo.id

    def test_unknown_code(self, db, sample_customer, sample_vendor):
        result = promo_service.validate_and_apply_promo_code(
            "NOPE", sample_customer.id, Decimal("2500"), [], sample_vendor.id, now=NOW
        )
        assert result.is_valid is False
        assert result.reason == "not_found"
        assert result.discount == Decimal("0.00")

    def test_inactive_code_is_not_found(self, db, db_session, sample_customer, sample_vendor):
        _promo(db_session, is_active=False)
        result = promo_service.validate_and_apply_promo_code(
            "TEST10", sample_customer.id, Decimal("2500"), [], sample_vendor.id, now=NOW
        )
        assert result.reason == "not_found"

    def test_window_is_half_open(self, db, db_session, sample_customer, sample_vendor):
        promo = _promo(db_session)

        at_start = promo_service.validate_and_apply_promo_code(
            "TEST10", sample_customer.id, Decimal("100"), [], sample_vendor.id, now=promo.start_date
        )
        at_end = promo_service.validate_and_apply_promo_code(
            "TEST10", sample_customer.id, Decimal("100"), [], sample_vendor.id, now=promo.end_date
        )
        before = promo_service.validate_and_apply_promo_code(
            "TEST10",
            sample_customer.id,
            Decimal("100"),
            [],
            sample_vendor.id,
            now=promo.start_date - timedelta(seconds=1),
        )

        assert at_start.is_valid is True
        assert at_end.reason == "expired"
        assert before.reason == "not_started"

    def test_global_usage_limit(self, db, db_session, sample_customer, sample_vendor):
        _promo(db_session, usage_limit=5, used_count=5)
        result = promo_service.validate_and_apply_promo_code(
            "TEST10", sample_customer.id, Decimal("100"), [], sample_vendor.id, now=NOW
        )
        assert result.reason == "usage_limit"

    def test_user_limit_plus_one_fails(self, db, db_session, sample_customer, sample_vendor):
        promo = _promo(db_session, user_limit=2)

        for booking_id in (1, 2):
            result = promo_service.validate_and_apply_promo_code(
                "TEST10", sample_customer.id, Decimal("100"), [], sample_vendor.id, now=NOW
            )
            assert result.is_valid is True
            promo_service.record_promo_usage(promo.id, sample_customer.id, booking_id)

        third = promo_service.validate_and_apply_promo_code(
            "TEST10", sample_customer.id, Decimal("100"), [], sample_vendor.id, now=NOW
        )
        assert third.is_valid is False
        assert third.reason == "user_limit"

    def test_min_order_value(self, db, sample_customer, sample_vendor, save50_promo):
        result = promo_service.validate_and_apply_promo_code(
            "SAVE50", sample_customer.id, Decimal("299.99"), [], sample_vendor.id, now=NOW
        )
        assert result.reason == "min_order"

    def test_first_time_only(self, db, db_session, make_customer, sample_vendor):
        _promo(db_session, code="WELCOME", type="first_time", value=Decimal("200.00"))
        returning = make_customer("returning_uid", first_time=False)
        newcomer = make_customer("new_uid", first_time=True)

        rejected = promo_service.validate_and_apply_promo_code(
            "WELCOME", returning.id, Decimal("1000"), [], sample_vendor.id, now=NOW
        )
        accepted = promo_service.validate_and_apply_promo_code(
            "WELCOME", newcomer.id, Decimal("1000"), [], sample_vendor.id, now=NOW
        )

        assert rejected.reason == "first_time_only"
        assert accepted.discount == Decimal("200.00")

    def test_applicability_lists(self, db, db_session, sample_customer, sample_vendor, sample_service):
        _promo(db_session, code="SVC", applicable_services=[sample_service.id + 100])
        _promo(db_session, code="VND", applicable_vendors=[sample_vendor.id + 100])

        by_service = promo_service.validate_and_apply_promo_code(
            "SVC", sample_customer.id, Decimal("100"), [sample_service.id], sample_vendor.id, now=NOW
        )
        by_vendor = promo_service.validate_and_apply_promo_code(
            "VND", sample_customer.id, Decimal("100"), [sample_service.id], sample_vendor.id, now=NOW
        )

        assert by_service.reason == "service_not_applicable"
        assert by_vendor.reason == "vendor_not_applicable"

    def test_percentage_capped_and_rounded(self, db, db_session, sample_customer, sample_vendor):
        _promo(db_session, code="PCT", value=Decimal("15.00"), max_discount=Decimal("100.00"))
        _promo(db_session, code="ROUND", value=Decimal("10.00"))

        capped = promo_service.validate_and_apply_promo_code(
            "PCT", sample_customer.id, Decimal("2500"), [], sample_vendor.id, now=NOW
        )
        rounded = promo_service.validate_and_apply_promo_code(
            "ROUND", sample_customer.id, Decimal("1234.50"), [], sample_vendor.id, now=NOW
        )

        assert capped.discount == Decimal("100.00")
        # 123.45 rounds to whole units
        assert rounded.discount == Decimal("123.00")

    def test_fixed_never_exceeds_order(self, db, db_session, sample_customer, sample_vendor):
        _promo(db_session, code="BIG", type="fixed", value=Decimal("500.00"))
        result = promo_service.validate_and_apply_promo_code(
            "BIG", sample_customer.id, Decimal("120"), [], sample_vendor.id, now=NOW
        )
        assert result.discount == Decimal("120.00")


@pytest.mark.pricing
class TestPromoAdmin:
    def test_record_usage_respects_global_limit(self, db, db_session, make_customer):
        promo = _promo(db_session, usage_limit=1)
        first = make_customer("first_uid")
        second = make_customer("second_uid")

        promo_service.record_promo_usage(promo.id, first.id, 10)
        with pytest.raises(ConflictError):
            promo_service.record_promo_usage(promo.id, second.id, 11)

        db_session.expire_all()
        assert db_session.get(PromoCode, promo.id).used_count == 1
        assert db_session.query(PromoUsage).count() == 1

    def test_create_uppercases_and_rejects_duplicates(self, db):
        promo = promo_service.create_promo_code(
            code="spring25",
            type="percentage",
            value=25,
            usage_limit=50,
            start_date=NOW,
            end_date=NOW + timedelta(days=10),
        )
        assert promo.code == "SPRING25"

        with pytest.raises(ConflictError):
            promo_service.create_promo_code(
                code="SPRING25",
                type="fixed",
                value=10,
                usage_limit=5,
                start_date=NOW,
                end_date=NOW + timedelta(days=10),
            )

    def test_create_validates_window_and_type(self, db):
        with pytest.raises(ValidationError):
            promo_service.create_promo_code(
                code="BAD", type="fixed", value=10, usage_limit=1, start_date=NOW, end_date=NOW
            )
        with pytest.raises(ValidationError):
            promo_service.create_promo_code(
                code="BAD", type="bogus", value=10, usage_limit=1,
                start_date=NOW, end_date=NOW + timedelta(days=1),
            )

    def test_welcome_discount(self, db):
        promo = promo_service.create_first_time_user_discount(now=NOW)

        assert promo.code == "WELCOME200"
        assert promo.type == "first_time"
        assert promo.min_order_value == Decimal("500.00")
        assert promo.user_limit == 1
        assert promo.end_date == NOW + timedelta(days=365)

    def test_active_list_and_deactivate(self, db, db_session):
        live = _promo(db_session, code="LIVE")
        _promo(db_session, code="OLD", start_date=NOW - timedelta(days=60), end_date=NOW - timedelta(days=30))

        assert [p.code for p in promo_service.get_active_promo_codes(now=NOW)] == ["LIVE"]

        promo_service.deactivate_promo_code(live.id)
        assert promo_service.get_active_promo_codes(now=NOW) == []

    def test_analytics(self, db, db_session, sample_customer):
        promo = _promo(db_session, usage_limit=4)
        promo_service.record_promo_usage(promo.id, sample_customer.id, 7, discount=Decimal("25"))

        analytics = promo_service.get_promo_code_analytics(promo.id)

        assert analytics["total_usage"] == 1
        assert analytics["remaining_usage"] == 3
        assert analytics["usage_rate"] == 25.0
        assert analytics["total_discount_given"] == 25.0


@pytest.mark.pricing
class TestQuote:
    def test_save50_quote(self, db, sample_customer, sample_vendor, sample_service, save50_promo):
        quote = pricing_service.quote(
            sample_customer.id, sample_vendor.id, sample_service.id, promo_code="SAVE50", now=NOW
        )

        assert quote.breakdown.subtotal == Decimal("2500.00")
        assert quote.discount_amount == Decimal("50.00")
        assert quote.final_price == Decimal("2450.00")
        assert quote.warnings == []

    def test_loyalty_redemption_on_1000(self, db, sample_customer, sample_vendor, cheap_service):
        loyalty_service.award_points(sample_customer.id, 150, now=NOW - timedelta(days=1))

        quote = pricing_service.quote(
            sample_customer.id, sample_vendor.id, cheap_service.id, loyalty_points=150, now=NOW
        )

        assert quote.loyalty_discount == Decimal("150.00")
        assert quote.final_price == Decimal("850.00")

    def test_soft_failures_become_warnings(self, db, sample_customer, sample_vendor, sample_service):
        quote = pricing_service.quote(
            sample_customer.id,
            sample_vendor.id,
            sample_service.id,
            promo_code="NOPE",
            loyalty_points=50,
            now=NOW,
        )

        assert quote.final_price == Decimal("2500.00")
        assert len(quote.warnings) == 2
        assert quote.promo.reason == "not_found"
        assert quote.loyalty.reason == "below_minimum"

    def test_strict_raises(self, db, sample_customer, sample_vendor, sample_service):
        with pytest.raises(ValidationError) as exc:
            pricing_service.quote(
                sample_customer.id, sample_vendor.id, sample_service.id,
                promo_code="NOPE", strict=True, now=NOW,
            )
        assert exc.value.reason == "not_found"

    def test_final_price_never_negative(self, db, db_session, sample_customer, sample_vendor, cheap_service):
        _promo(db_session, code="HALF", type="percentage", value=Decimal("50.00"))
        loyalty_service.award_points(sample_customer.id, 900, now=NOW - timedelta(days=1))

        quote = pricing_service.quote(
            sample_customer.id, sample_vendor.id, cheap_service.id,
            promo_code="HALF", loyalty_points=900, now=NOW,
        )

        assert quote.discount_amount == Decimal("1400.00")
        assert quote.final_price == Decimal("0.00")

    def test_insufficient_points_is_soft(self, db, sample_customer, sample_vendor, cheap_service):
        result = pricing_service.resolve_loyalty_redemption(sample_customer.id, 100, now=NOW)
        assert result.is_valid is False
        assert result.reason == "insufficient_points"

"""
Tests for the query engine: pagination, filters, sorting, cache keys,
overdue and stats rules, and sparse daily analytics.
"""

import math
from datetime import datetime, timedelta

import pytest

from oms.models import Order, Roll, RollStatus
from oms.query import (
    MAX_WINDOW,
    DailyRollup,
    Pagination,
    QueryFilter,
    compute_stats,
    find_overdue,
    is_completed,
    is_overdue,
    is_pending,
    list_cache_key,
    normalize_sort,
    paginate,
    parse_range,
    rollup_by_day,
    sort_orders,
)

NOW = datetime(2024, 6, 15, 12, 0, 0)


def make_order(order_id="o1", company="Acme Steel", statuses=("pending",), grade="ALLOYS",
               created_at=NOW, expected_delivery=None) -> Order:
    return Order(
        id=order_id,
        company_name=company,
        order_date=created_at,
        expected_delivery=expected_delivery,
        rolls=[Roll(roll_number=f"R{i}", grade=grade, status=s) for i, s in enumerate(statuses)],
        created_at=created_at,
        updated_at=created_at,
    )


# ── Pagination ───────────────────────────────────────────────────────────

class TestPagination:
    def test_defaults(self):
        p = Pagination.from_params()
        assert (p.page, p.limit, p.skip) == (1, 10, 0)

    def test_skip(self):
        assert Pagination.from_params(3, 20).skip == 40

    @pytest.mark.parametrize("page,limit", [(0, 0), (-1, -5), ("abc", "x"), (None, "")])
    def test_non_positive_and_malformed_values_clamp_to_defaults(self, page, limit):
        p = Pagination.from_params(page, limit)
        assert (p.page, p.limit) == (1, 10)

    def test_string_numbers_accepted(self):
        p = Pagination.from_params("2", "5")
        assert (p.page, p.limit) == (2, 5)

    def test_huge_values_clamp_to_window(self):
        p = Pagination.from_params(str(10 ** 20), "10")
        assert p.limit == 10
        assert p.skip <= MAX_WINDOW
        p = Pagination.from_params("3", str(10 ** 20))
        assert p.limit == MAX_WINDOW
        assert p.skip <= MAX_WINDOW

    @pytest.mark.parametrize("total,limit", [(0, 10), (1, 10), (10, 10), (11, 10), (95, 7)])
    def test_pages_is_ceil_of_total_over_limit(self, total, limit):
        envelope = Pagination(page=1, limit=limit).envelope(total)
        assert envelope == {"total": total, "page": 1, "pages": math.ceil(total / limit)}

    def test_paginate_never_exceeds_limit(self):
        orders = [make_order(order_id=str(i), created_at=NOW + timedelta(seconds=i)) for i in range(23)]
        for page in range(1, 5):
            p = Pagination(page=page, limit=10)
            items, total = paginate(orders, QueryFilter(), p)
            assert total == 23
            assert len(items) <= p.limit
        assert len(paginate(orders, QueryFilter(), Pagination(page=3, limit=10))[0]) == 3


# ── Filters ──────────────────────────────────────────────────────────────

class TestQueryFilter:
    def test_empty_filter_matches_everything(self):
        f = QueryFilter.from_params()
        assert f.is_empty()
        assert f.matches(make_order(statuses=()))

    def test_blank_params_are_absent(self):
        assert QueryFilter.from_params(status="  ", grade="", company_name=None).is_empty()

    def test_company_name_is_case_insensitive_substring(self):
        order = make_order(company="Acme Steel Works")
        assert QueryFilter(company_name="steel").matches(order)
        assert QueryFilter(company_name="ACME").matches(order)
        assert not QueryFilter(company_name="iron").matches(order)

    def test_company_name_is_literal_not_regex(self):
        assert not QueryFilter(company_name="Ac.e").matches(make_order(company="Acme"))
        assert QueryFilter(company_name="a.b").matches(make_order(company="Foo A.B Ltd"))

    def test_status_matches_any_roll(self):
        order = make_order(statuses=("dispatched", "processing"))
        assert QueryFilter(status=RollStatus.PROCESSING).matches(order)
        assert not QueryFilter(status=RollStatus.PENDING).matches(order)

    def test_grade_matches_any_roll(self):
        order = make_order(grade="CHILLED")
        assert QueryFilter(grade="CHILLED").matches(order)
        assert not QueryFilter(grade="ALLOYS").matches(order)

    def test_fields_are_anded(self):
        order = make_order(company="Acme", statuses=("pending",), grade="ALLOYS")
        assert QueryFilter(status=RollStatus.PENDING, grade="ALLOYS", company_name="acme").matches(order)
        assert not QueryFilter(status=RollStatus.PENDING, grade="CHILLED").matches(order)

    def test_unknown_status_rejected(self):
        with pytest.raises(ValueError):
            QueryFilter.from_params(status="shipped")

    def test_to_params_uses_wire_names(self):
        f = QueryFilter.from_params(status="pending", company_name="acme")
        assert f.to_params() == {"status": "pending", "companyName": "acme"}


# ── Sorting and cache keys ───────────────────────────────────────────────

class TestSorting:
    def test_unknown_sort_falls_back_to_newest_first(self):
        assert normalize_sort("price") == "-createdAt"
        assert normalize_sort(None) == "-createdAt"
        assert normalize_sort("companyName") == "companyName"

    def test_default_is_newest_first(self):
        older = make_order("a", created_at=NOW)
        newer = make_order("b", created_at=NOW + timedelta(hours=1))
        assert [o.id for o in sort_orders([older, newer])] == ["b", "a"]

    def test_company_name_sort_ignores_case(self):
        orders = [make_order("1", company="beta"), make_order("2", company="Alpha")]
        assert [o.company_name for o in sort_orders(orders, "companyName")] == ["Alpha", "beta"]


class TestListCacheKey:
    def test_deterministic(self):
        f1 = QueryFilter.from_params(status="pending", grade="ALLOYS")
        f2 = QueryFilter.from_params(grade="ALLOYS", status="pending")
        p = Pagination(1, 10)
        assert list_cache_key(f1, p) == list_cache_key(f2, p)

    def test_differs_by_page_limit_filter_and_sort(self):
        base = list_cache_key(QueryFilter(), Pagination(1, 10))
        assert base != list_cache_key(QueryFilter(), Pagination(2, 10))
        assert base != list_cache_key(QueryFilter(), Pagination(1, 20))
        assert base != list_cache_key(QueryFilter(grade="A"), Pagination(1, 10))
        assert base != list_cache_key(QueryFilter(), Pagination(1, 10), "companyName")

    def test_key_format(self):
        key = list_cache_key(QueryFilter(), Pagination())
        assert key.startswith("orders:list:")
        assert len(key) == len("orders:list:") + 16


# ── Status rules ─────────────────────────────────────────────────────────

class TestStatusRules:
    yesterday = NOW - timedelta(days=1)

    def test_all_dispatched_past_due_is_not_overdue(self):
        order = make_order(statuses=("dispatched", "dispatched"), expected_delivery=self.yesterday)
        assert not is_overdue(order, NOW)

    def test_one_pending_past_due_is_overdue(self):
        order = make_order(statuses=("dispatched", "pending"), expected_delivery=self.yesterday)
        assert is_overdue(order, NOW)

    def test_future_or_missing_delivery_is_not_overdue(self):
        assert not is_overdue(make_order(expected_delivery=NOW + timedelta(days=1)), NOW)
        assert not is_overdue(make_order(expected_delivery=None), NOW)

    def test_delivery_exactly_now_is_not_overdue(self):
        assert not is_overdue(make_order(expected_delivery=NOW), NOW)

    def test_zero_rolls_has_no_status(self):
        order = make_order(statuses=(), expected_delivery=self.yesterday)
        assert not is_overdue(order, NOW)
        assert not is_pending(order)
        assert not is_completed(order)

    def test_find_overdue_sorted_by_expected_delivery(self):
        late = make_order("late", expected_delivery=NOW - timedelta(days=5))
        later = make_order("later", expected_delivery=NOW - timedelta(days=1))
        done = make_order("done", statuses=("dispatched",), expected_delivery=NOW - timedelta(days=3))
        assert [o.id for o in find_overdue([later, done, late], NOW)] == ["late", "later"]

    def test_stats(self):
        orders = [
            make_order("1", statuses=("pending", "dispatched")),
            make_order("2", statuses=("dispatched", "dispatched")),
            make_order("3", statuses=("processing",)),
            make_order("4", statuses=()),
        ]
        stats = compute_stats(orders, now=NOW)
        assert stats == {
            "totalOrders": 4,
            "pendingOrders": 1,
            "completedOrders": 1,
            "lastUpdated": "2024-06-15T12:00:00.000Z",
        }


# ── Analytics ────────────────────────────────────────────────────────────

class TestAnalytics:
    @pytest.mark.parametrize("value,expected", [
        ("30d", 30), ("7d", 7), ("7", 7), (" 14D ", 14),
        (None, 30), ("", 30), ("0d", 30), ("-3d", 30), ("week", 30),
    ])
    def test_parse_range(self, value, expected):
        assert parse_range(value) == expected

    def test_series_is_sparse_and_sorted(self):
        rollup = DailyRollup.trailing(5, now=NOW)
        orders = [
            make_order("c", statuses=("pending",), created_at=NOW - timedelta(days=2)),
            make_order("a", statuses=("pending", "pending"), created_at=NOW - timedelta(days=4)),
            make_order("b", statuses=("pending",), created_at=NOW - timedelta(days=4, hours=1)),
        ]
        series = [bucket.to_dict() for bucket in rollup_by_day(orders, rollup)]
        assert series == [
            {"date": "2024-06-11", "orderCount": 2, "totalRollCount": 3},
            {"date": "2024-06-13", "orderCount": 1, "totalRollCount": 1},
        ]

    def test_window_past_calendar_start_covers_everything(self):
        rollup = DailyRollup.trailing(1_000_000, now=NOW)
        assert rollup.since.year == 1
        series = rollup_by_day([make_order(created_at=datetime(1999, 1, 1))], rollup)
        assert [bucket.date for bucket in series] == ["1999-01-01"]

    def test_orders_before_window_excluded(self):
        rollup = DailyRollup.trailing(5, now=NOW)
        old = make_order(created_at=NOW - timedelta(days=6))
        assert rollup_by_day([old], rollup) == []

    def test_zero_roll_order_counts_as_order(self):
        rollup = DailyRollup.trailing(1, now=NOW)
        series = rollup_by_day([make_order(statuses=(), created_at=NOW)], rollup)
        assert series[0].order_count == 1
        assert series[0].total_roll_count == 0

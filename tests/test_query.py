"""
Tests for the SQL query builder.
"""

import pytest

from photogallery.query import QueryBuilder

pytestmark = pytest.mark.unit


def test_base_query_only():
    assert QueryBuilder("SELECT * FROM images").build() == ("SELECT * FROM images", [])


def test_conditions_are_conjunctive_and_ordered():
    q = QueryBuilder("SELECT * FROM images i")
    q.where("i.width > ?", 10).where("i.height < ? OR i.height > ?", 5, 50)

    query, args = q.build()

    assert query == (
        "SELECT * FROM images i "
        "WHERE (i.width > ?) AND (i.height < ? OR i.height > ?)"
    )
    assert args == [10, 5, 50]


def test_order_and_pagination_come_last():
    q = QueryBuilder("SELECT * FROM images i WHERE 1 = ?", 1)
    q.order_by("i.created DESC", "i.image_id").limit(20, 40)

    query, args = q.build()

    assert query.endswith("ORDER BY i.created DESC, i.image_id LIMIT ? OFFSET ?")
    assert args == [1, 20, 40]


def test_count_ignores_order_and_pagination():
    q = QueryBuilder("SELECT i.* FROM images i").where("i.width = ?", 3)
    q.order_by("i.created DESC").limit(10)

    query, args = q.build_count()

    assert query == "SELECT COUNT(*) FROM (SELECT i.* FROM images i WHERE (i.width = ?))"
    assert args == [3]

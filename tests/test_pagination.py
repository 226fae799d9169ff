"""Tests for the page-token stack and start-index arithmetic."""

import json
import math

import pytest

from baton_databricks.connector.pagination import (
    Bag,
    PageState,
    parse_page_token,
    prepare_next_token,
)


class TestPrepareNextToken:
    @pytest.mark.parametrize("total", [0, 1, 49, 50, 51, 100, 101])
    def test_walk_visits_each_index_once(self, total):
        size = 50
        page, pages, visited = 1, 0, []
        while True:
            count = max(0, min(size, total - page + 1))
            if count:
                pages += 1
            visited.extend(range(page, page + count))
            token = prepare_next_token(page, count, total)
            if not token:
                break
            page = int(token)

        assert pages == math.ceil(total / size)
        assert visited == list(range(1, total + 1))

    def test_exact_multiple(self):
        assert prepare_next_token(1, 50, 100) == "51"
        assert prepare_next_token(51, 50, 100) == ""

    def test_empty_page_ends_listing(self):
        assert prepare_next_token(1, 0, 500) == ""


class TestBag:
    def test_push_pop_order(self):
        bag = Bag()
        bag.push(PageState("role"))
        bag.push(PageState("user"))
        bag.push(PageState("group"))

        assert bag.pop().resource_type_id == "group"
        assert bag.resource_type_id == "user"
        assert bag.pop().resource_type_id == "user"
        assert bag.pop().resource_type_id == "role"
        assert bag.pop() is None

    def test_next_replaces_or_drops_current(self):
        bag = Bag()
        bag.push(PageState("user"))
        bag.push(PageState("group", token="1"))

        bag.next("51")
        assert bag.current == PageState("group", "", "51")

        bag.next("")
        assert bag.current == PageState("user")

    def test_marshal_round_trip(self):
        bag = Bag()
        bag.push(PageState("user", "ws", "1"))
        bag.push(PageState("group", "ws", "51"))

        restored = Bag.unmarshal(bag.marshal())

        assert restored.current == bag.current
        assert restored.states == bag.states
        assert json.loads(bag.marshal())["current_state"]["token"] == "51"

    def test_empty_bag_marshals_to_empty_string(self):
        assert Bag().marshal() == ""
        assert Bag.unmarshal("").current is None

    @pytest.mark.parametrize("token", ["not json", "[1, 2]", '{"current_state": {"bogus": 1}}'])
    def test_invalid_token(self, token):
        with pytest.raises(ValueError, match="invalid page token"):
            Bag.unmarshal(token)


class TestParsePageToken:
    def test_seeds_initial_state(self):
        bag, page = parse_page_token("", "user", "ws")

        assert page == 1
        assert bag.current == PageState("user", "ws", "")

    def test_resumes_from_token(self):
        bag = Bag()
        bag.push(PageState("user", token="101"))

        _, page = parse_page_token(bag.marshal(), "user")

        assert page == 101

    def test_non_numeric_page(self):
        bag = Bag()
        bag.push(PageState("user", token="abc"))

        with pytest.raises(ValueError, match="invalid page index"):
            parse_page_token(bag.marshal(), "user")

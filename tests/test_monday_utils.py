import json
from unittest.mock import MagicMock, patch

import pytest
import requests

import config
import monday_utils
from monday_utils import MondayAPIError, execute_monday_graphql, find_column


def _response(status_code=200, payload=None):
    response = MagicMock(status_code=status_code)
    response.json.return_value = payload if payload is not None else {"data": {}}
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status_code} error")
    return response


@pytest.fixture
def no_sleep():
    with patch.object(monday_utils.time, "sleep") as sleep:
        yield sleep


class TestExecuteMondayGraphql:
    def test_returns_decoded_response(self, no_sleep):
        with patch.object(monday_utils.requests, "post", return_value=_response(payload={"data": {"items": []}})) as post:
            assert execute_monday_graphql("query { me { id } }") == {"data": {"items": []}}
        headers = post.call_args.kwargs["headers"]
        assert headers["Authorization"] == config.MONDAY_API_KEY
        assert headers["API-Version"] == config.MONDAY_API_VERSION
        no_sleep.assert_not_called()

    def test_rate_limit_backs_off_exponentially(self, no_sleep):
        responses = [_response(429), _response(429), _response(payload={"data": {"ok": True}})]
        with patch.object(monday_utils.requests, "post", side_effect=responses):
            assert execute_monday_graphql("query") == {"data": {"ok": True}}
        assert [c.args[0] for c in no_sleep.call_args_list] == [2, 4]

    def test_transport_errors_exhaust_retries(self, no_sleep):
        with patch.object(monday_utils.requests, "post", side_effect=requests.exceptions.ConnectionError("refused")) as post:
            with pytest.raises(MondayAPIError):
                execute_monday_graphql("query")
        assert post.call_count == monday_utils.MAX_RETRIES

    def test_graphql_errors_are_not_retried(self, no_sleep):
        errors = [{"message": "Column not found"}]
        with patch.object(monday_utils.requests, "post", return_value=_response(payload={"errors": errors})) as post:
            with pytest.raises(MondayAPIError) as excinfo:
                execute_monday_graphql("mutation")
        assert excinfo.value.errors == errors
        assert post.call_count == 1

    def test_variables_are_sent(self, no_sleep):
        with patch.object(monday_utils.requests, "post", return_value=_response()) as post:
            execute_monday_graphql("query ($id: ID!)", {"id": 1})
        assert post.call_args.kwargs["json"] == {"query": "query ($id: ID!)", "variables": {"id": 1}}


class TestFindColumn:
    COLUMNS = [
        {"id": "text0", "title": "Data de FINALIZAÇÃO prevista", "type": "text"},
        {"id": "date4", "title": "Entrega", "type": "date"},
        {"id": "date5", "title": "FINALIZAÇÃO", "type": "date"},
    ]

    def test_exact_title_first(self):
        assert find_column(self.COLUMNS, "finalização", "date")["id"] == "date5"

    def test_type_before_substring(self):
        assert find_column(self.COLUMNS[:2], "FINALIZAÇÃO", "date")["id"] == "date4"

    def test_substring_last(self):
        assert find_column(self.COLUMNS[:1], "FINALIZAÇÃO", "date")["id"] == "text0"

    def test_not_found(self):
        assert find_column(self.COLUMNS, "RESPONSÁVEL", "people") is None
        assert find_column(None, "x") is None


class TestQueriesAndMutations:
    def test_change_column_value_double_encodes_value(self):
        with patch.object(monday_utils, "execute_monday_graphql",
                          return_value={"data": {"change_column_value": {"id": "1"}}}) as execute:
            assert monday_utils.change_column_value(10, 20, "date4", {"date": "2024-01-02", "time": "03:04:05"})
        mutation = execute.call_args.args[0]
        assert 'column_id: "date4"' in mutation
        assert json.dumps(json.dumps({"date": "2024-01-02", "time": "03:04:05"})) in mutation

    def test_get_subitems_keeps_order(self):
        payload = {"data": {"items": [{"id": "1", "subitems": [{"id": "3", "name": "C"}, {"id": "2", "name": "B"}]}]}}
        with patch.object(monday_utils, "execute_monday_graphql", return_value=payload):
            assert [s["id"] for s in monday_utils.get_subitems_of_item(1)] == ["3", "2"]

    def test_get_subitems_of_missing_item(self):
        with patch.object(monday_utils, "execute_monday_graphql", return_value={"data": {"items": []}}):
            assert monday_utils.get_subitems_of_item(1) == []

    def test_get_column_value_parses_json(self):
        payload = {"data": {"items": [{"column_values": [{"id": "date4", "text": "2024-01-02", "value": '{"date": "2024-01-02"}'}]}]}}
        with patch.object(monday_utils, "execute_monday_graphql", return_value=payload):
            assert monday_utils.get_column_value(1, "date4") == {"value": {"date": "2024-01-02"}, "text": "2024-01-02"}

    def test_board_lookup_without_board_raises(self):
        with patch.object(monday_utils, "execute_monday_graphql", return_value={"data": {"items": [{"id": "1", "board": None}]}}):
            with pytest.raises(MondayAPIError):
                monday_utils.get_item_board_and_columns(1)

    def test_find_subitem_by_name_trims(self):
        payload = {"data": {"items": [{"subitems": [{"id": "7", "name": " ABRIR O. S. "}]}]}}
        with patch.object(monday_utils, "execute_monday_graphql", return_value=payload):
            assert monday_utils.find_subitem_by_name(1, "ABRIR O. S.")["id"] == "7"
            assert monday_utils.find_subitem_by_name(1, "VISTORIA") is None

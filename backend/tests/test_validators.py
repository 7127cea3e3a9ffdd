"""
Tests for request validation, SQL safety checks and parameter sanitizing.
"""
import pytest

from querygate.schemas import ApiErrorType
from querygate.validators import (
    DANGEROUS_SQL_MESSAGE,
    EMPTY_SQL_MESSAGE,
    MISSING,
    SELECT_ONLY_MESSAGE,
    RequestValidationError,
    check_sql_query,
    is_non_empty_string,
    is_supported_format,
    is_valid_number,
    parse_host_id,
    sanitize_query_params,
    truncate_string,
    validate_data_request,
    validate_enum_value,
    validate_format,
    validate_host_id,
    validate_search_params,
    validate_sql_query,
)


class TestHostId:
    """hostId validation"""

    @pytest.mark.parametrize("value", [0, 3, "0", "12", "7abc"])
    def test_accepted(self, value):
        """Non-negative integers and integer prefixes pass"""
        assert validate_host_id(value) is None

    def test_missing(self):
        """Absent hostId is reported as missing"""
        err = validate_host_id(None)
        assert err.type is ApiErrorType.VALIDATION_ERROR
        assert err.message == "Missing required field: hostId"

    @pytest.mark.parametrize("value", [-1, "-2", "abc", True, [1]])
    def test_rejected(self, value):
        """Negative or non-numeric values are invalid"""
        assert validate_host_id(value).message == "Invalid hostId: must be a non-negative number"

    def test_parse_host_id(self):
        """parse_host_id returns the index or raises"""
        assert parse_host_id("2") == 2
        with pytest.raises(RequestValidationError, match="Missing required parameter: hostId"):
            parse_host_id(None)
        with pytest.raises(RequestValidationError, match="non-negative"):
            parse_host_id("x")


class TestFieldValidators:
    """Format, enum and required field checks"""

    def test_format(self):
        """Only known output formats are accepted"""
        assert validate_format(None) is None
        assert validate_format("CSV") is None
        assert "Supported formats" in validate_format("XML").message
        assert "must be a string" in validate_format(5).message
        assert is_supported_format("JSONEachRow")
        assert not is_supported_format("jsoneachrow")

    def test_enum(self):
        """Enum checks list the allowed values"""
        assert validate_enum_value("a", ["a", "b"], "mode") is None
        assert validate_enum_value(None, ["a"], "mode") is None
        assert validate_enum_value("c", ["a", "b"], "mode").message == "Invalid mode: must be one of a, b"

    def test_search_params(self):
        """The first missing required param is reported"""
        assert validate_search_params({"database": "db", "table": "t"}, ["database", "table"]) is None
        err = validate_search_params({"database": "db", "table": "  "}, ["database", "table"])
        assert err.message == "Missing required parameter: table"

    def test_data_request_order(self):
        """query is checked before hostId, hostId before format"""
        assert validate_data_request({}).message == "Missing required field: query"
        assert validate_data_request({"query": "SELECT 1"}).message == "Missing required field: hostId"
        assert validate_data_request({"query": "SELECT 1", "hostId": 0, "format": "XML"}) is not None
        assert validate_data_request({"query": "SELECT 1", "hostId": 0}) is None


class TestSqlSafety:
    """Read-only SQL enforcement"""

    @pytest.mark.parametrize("sql", [
        "SELECT 1",
        "  select count() from system.parts",
        "WITH t AS (SELECT 1) SELECT * FROM t",
        "SELECT deleted_at, updated_by FROM db.t",
    ])
    def test_plain_reads_pass(self, sql):
        """Ordinary reads are accepted"""
        validate_sql_query(sql)
        assert check_sql_query(sql) is None

    @pytest.mark.parametrize("sql", [
        "DROP TABLE x",
        "SELECT 1; DELETE FROM x",
        "SELECT * FROM t -- trailing",
        "SELECT /* hidden */ 1",
        "SELECT * FROM t WHERE a = 1 OR 1=1",
        "SELECT a FROM t UNION SELECT b FROM u",
        "SELECT * FROM users WHERE name = '' OR 'a'='a'",
        "EXEC sp_who",
    ])
    def test_injection_shapes_rejected(self, sql):
        """Mutating keywords and injection shapes are rejected"""
        with pytest.raises(RequestValidationError) as info:
            validate_sql_query(sql)
        assert info.value.error.message == DANGEROUS_SQL_MESSAGE
        assert info.value.error.details["pattern"]

    def test_keyword_inside_literal_rejected(self):
        """Whole-word mutating keywords are rejected even inside string literals"""
        assert check_sql_query("SELECT * FROM audit WHERE action = 'DELETE'").message == DANGEROUS_SQL_MESSAGE

    def test_non_select_rejected(self):
        """Statements must start with SELECT or WITH"""
        assert check_sql_query("SHOW TABLES").message == SELECT_ONLY_MESSAGE

    @pytest.mark.parametrize("sql", ["", "   ", None])
    def test_empty_rejected(self, sql):
        """Blank input is its own error"""
        assert check_sql_query(sql).message == EMPTY_SQL_MESSAGE


class TestSanitizeQueryParams:
    """Flattening parameter maps"""

    def test_scalars(self):
        """Scalars become strings"""
        out = sanitize_query_params({"s": "x", "i": 5, "f": 2.0, "g": 2.5, "t": True, "n": None})
        assert out == {"s": "x", "i": "5", "f": "2", "g": "2.5", "t": "true", "n": ""}

    def test_collections(self):
        """Lists join with commas, mappings become compact JSON"""
        out = sanitize_query_params({"ids": [1, 2, 3], "obj": {"k": 1, "l": [1, 2]}})
        assert out == {"ids": "1,2,3", "obj": '{"k":1,"l":[1,2]}'}

    def test_nested_lists(self):
        """Nested lists are stringified element by element"""
        assert sanitize_query_params({"a": [1, [2, 3]]}) == {"a": "1,2,3"}
        assert sanitize_query_params({"a": [None, True, 1.0]}) == {"a": "null,true,1"}

    def test_mixed_map(self):
        """Lists, None, MISSING and mappings in one call"""
        raw = {"a": [1, 2, 3], "b": None, "c": MISSING, "d": {"k": 1}}
        assert sanitize_query_params(raw) == {"a": "1,2,3", "b": "", "d": '{"k":1}'}

    def test_missing_dropped(self):
        """MISSING entries never reach the server"""
        assert sanitize_query_params({"a": MISSING, "b": 1}) == {"b": "1"}
        assert not MISSING

    def test_none_input(self):
        """No params gives an empty map"""
        assert sanitize_query_params(None) == {}

    def test_values_are_strings(self):
        """Every output value is a string"""
        out = sanitize_query_params({"a": 1, "b": [None, True], "c": {"x": None}, "d": 0.1})
        assert all(isinstance(v, str) for v in out.values())


class TestHelpers:
    """Small predicates"""

    def test_truncate(self):
        """Long text is cut and marked"""
        assert truncate_string("abcdef", 3) == "abc..."
        assert truncate_string("abc", 3) == "abc"

    def test_predicates(self):
        """String and number checks"""
        assert is_non_empty_string(" x ")
        assert not is_non_empty_string("  ")
        assert is_valid_number(0)
        assert not is_valid_number(float("nan"))
        assert not is_valid_number(True)
        assert not is_valid_number("1")

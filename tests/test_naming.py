import pytest

from metaql.naming import (
    camel_to_snake,
    constant_case,
    model_name_to_get_many,
    operation_query_name,
    order_by_type_name,
    pluralize,
    singularize,
    snake_to_camel,
    to_camel_case_plural,
    to_camel_case_singular,
)


@pytest.mark.parametrize("raw,expected", [
    ("createdAt", "created_at"),
    ("HTTPResponse", "http_response"),
    ("already_snake", "already_snake"),
    ("postCommentsByPostId", "post_comments_by_post_id"),
])
def test_camel_to_snake(raw, expected):
    assert camel_to_snake(raw) == expected


def test_snake_to_camel_both_cases():
    assert snake_to_camel("post_comments") == "postComments"
    assert snake_to_camel("post_comments", upper_first=True) == "PostComments"
    # idempotent for identifiers without underscores
    assert snake_to_camel("userId") == "userId"


@pytest.mark.parametrize("word,plural", [
    ("User", "Users"),
    ("Category", "Categories"),
    ("Address", "Addresses"),
    ("Person", "People"),
    ("UserSetting", "UserSettings"),
    ("Day", "Days"),
    ("Metadata", "Metadata"),
])
def test_pluralize_and_back(word, plural):
    assert pluralize(word) == plural
    assert singularize(plural) == word


def test_singularize_snake_table_names():
    assert singularize("post_comments") == "post_comment"
    assert singularize("users") == "user"


def test_operation_names():
    assert to_camel_case_plural("User") == "users"
    assert to_camel_case_plural("PostComment") == "postComments"
    assert to_camel_case_singular("users") == "user"
    assert order_by_type_name("User") == "UsersOrderBy"
    assert model_name_to_get_many("UserSetting") == "userSettings"
    assert operation_query_name("users") == "getUsersQuery"
    assert operation_query_name("users", "CountQuery") == "getUsersCountQuery"


def test_constant_case():
    assert constant_case("createdAt") == "CREATED_AT"
    assert constant_case("name") == "NAME"
